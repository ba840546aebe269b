[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "fluentreload"
version = "0.1.0"
description = "Generate, track and reload Fluentd configurations gathered per namespace"
requires-python = ">=3.10"
dependencies = []
keywords = ["fluentd", "logging", "configuration", "reload", "kubernetes", "namespace"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: System Administrators",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Logging",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["fluentreload"]

[tool.pytest.ini_options]
addopts = "-ra"
testpaths = ["tests"]
