[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "twag"
version = "0.1.0"
description = "Trusted WLAN access gateway building blocks: subscriber sessions, EAP identity helpers, access-point registry and access routing"
requires-python = ">=3.10"
dependencies = []
keywords = [
    "eap",
    "eap-aka",
    "radius",
    "twag",
    "wifi-offload",
    "session-management",
    "epc",
    "routing",
]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Intended Audience :: Telecommunications Industry",
    "Intended Audience :: System Administrators",
    "Operating System :: POSIX :: Linux",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Networking",
    "Typing :: Typed",
]

[project.optional-dependencies]
test = [
    "pytest",
    "pytest-asyncio",
]

[tool.hatch.build.targets.wheel]
packages = ["twag"]

[tool.hatch.build.targets.sdist]
include = ["twag", "tests", "README.md", "pyproject.toml"]

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
