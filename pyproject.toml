[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "megaphone"
version = "0.3.0"
description = "A small HTTP service that publishes broadcast channel versions to authorized readers."
requires-python = ">=3.11"
keywords = ["broadcast", "versions", "http", "service", "bearer", "statsd"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Environment :: Web Environment",
    "Framework :: Flask",
    "Intended Audience :: Developers",
    "Intended Audience :: System Administrators",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Internet :: WWW/HTTP",
]
dependencies = [
    "flask",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[project.scripts]
megaphone = "megaphone.web:main"

[tool.hatch.build.targets.wheel]
packages = ["megaphone"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py311"

[tool.mypy]
python_version = "3.11"
warn_unused_ignores = true
