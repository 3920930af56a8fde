[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "hormmanage"
version = "0.0.1.dev0"
description = "Web service host for the horm management console: YAML configuration, HTTP codec with JSON envelopes, handler routing, registry hooks and graceful shutdown."
requires-python = ">=3.10"
keywords = ["http", "server", "service", "registry", "graceful-shutdown", "horm"]
classifiers = [
    "Development Status :: 2 - Pre-Alpha",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Internet :: WWW/HTTP :: HTTP Servers",
]
dependencies = [
    "pyyaml",
    "psutil",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["hormmanage"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
