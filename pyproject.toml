[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "tribeserver"
version = "0.1.0"
description = "HTTP request handlers for people profiles, organizations, bounty metrics and websocket notifications"
requires-python = ">=3.10"
dependencies = [
    "requests",
]
keywords = ["bounties", "organizations", "profiles", "lightning", "websocket", "api", "handlers"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Internet :: WWW/HTTP :: HTTP Servers",
    "Typing :: Typed",
]

[project.optional-dependencies]
test = [
    "pytest",
    "responses",
]

[tool.hatch.build.targets.wheel]
packages = ["tribeserver"]

[tool.hatch.build.targets.sdist]
include = [
    "tribeserver",
    "tests",
]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.ruff.lint]
select = ["E", "F", "W", "I", "B", "UP"]

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
warn_redundant_casts = true
