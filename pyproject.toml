[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "distkit"
version = "0.1.0"
description = "In-process building blocks for distributed systems: service discovery, metrics and health checks, RPC with retries, access control, rate limiting and circuit breaking"
requires-python = ">=3.10"
dependencies = []
keywords = [
    "distributed",
    "service-discovery",
    "metrics",
    "prometheus",
    "health-check",
    "rpc",
    "retry",
    "acl",
    "circuit-breaker",
    "rate-limiting",
]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Distributed Computing",
    "Topic :: Software Development :: Libraries :: Python Modules",
]

[project.optional-dependencies]
test = [
    "pytest",
    "pytest-asyncio",
]

[tool.hatch.build.targets.wheel]
packages = ["distkit"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
