[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "pbdispatch"
version = "0.1.0"
description = "Playbook run dispatching core: protocols, connector clients, dispatch manager and API handlers"
requires-python = ">=3.10"
dependencies = []
keywords = ["ansible", "playbook", "dispatch", "satellite", "cloud-connector"]
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
    "Topic :: System :: Systems Administration",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["pbdispatch"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
