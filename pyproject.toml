[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "crobot"
version = "0.1.0"
description = "Drive AI coding agents over the Agent Client Protocol to review pull requests and extract structured findings"
requires-python = ">=3.10"
dependencies = []
keywords = ["code-review", "acp", "json-rpc", "agent", "pull-request", "llm"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Operating System :: POSIX",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Software Development :: Quality Assurance",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["crobot"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
