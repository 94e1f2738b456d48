[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "boshutils"
version = "0.1.0"
description = "Command running, file system, IPv4, UUID and worker-pool helpers, with in-memory fakes for testing"
requires-python = ">=3.10"
dependencies = []
keywords = ["subprocess", "filesystem", "fakes", "testing", "uuid", "worker-pool", "ipv4"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Operating System :: POSIX",
    "Operating System :: Microsoft :: Windows",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Software Development :: Libraries",
    "Topic :: Software Development :: Testing :: Mocking",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["boshutils"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
