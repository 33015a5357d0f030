[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "kubegw"
version = "0.1.0"
description = "Upstream cluster state, endpoint picking, health checks and flow control for a multi-cluster Kubernetes API gateway"
requires-python = ">=3.10"
keywords = [
    "kubernetes",
    "gateway",
    "proxy",
    "apiserver",
    "flow-control",
    "load-balancing",
    "multi-cluster",
    "feature-gates",
]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Intended Audience :: System Administrators",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Internet :: Proxy Servers",
    "Topic :: System :: Clustering",
]
dependencies = [
    "cryptography",
    "httpx",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["kubegw"]

[tool.hatch.build.targets.sdist]
include = [
    "kubegw",
    "tests",
    "pyproject.toml",
    "README.md",
]

[tool.pytest.ini_options]
testpaths = ["tests"]
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
