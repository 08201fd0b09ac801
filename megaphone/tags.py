"""Extra data recorded with metric and logging calls."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field


@dataclass
class Tags:
    """Metric tags plus extra values kept for error reporting."""

    tags: dict[str, str] = field(default_factory=dict)
    extra: dict[str, str] = field(default_factory=dict)

    def extend(self, tags: Mapping[str, str]) -> None:
        """Add or replace tags."""
        self.tags.update(tags)

    @classmethod
    def init(cls, config: Mapping | None) -> "Tags":
        """The base tags for the service; currently empty."""
        return cls()

    def to_dict(self) -> dict[str, str]:
        """The tags with empty values left out, as serialized."""
        return {key: value for key, value in self.tags.items() if value}

    def to_tree(self) -> dict[str, str]:
        """All tags, ordered by key."""
        return dict(sorted(self.tags.items()))