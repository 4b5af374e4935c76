[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "melemu"
version = "0.1.0"
description = "Peripheral, loader-layout and kernel-service emulation for management-engine firmware modules"
requires-python = ">=3.10"
dependencies = []
keywords = [
    "emulator",
    "firmware",
    "pci",
    "spi",
    "trace",
    "manifest",
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
    "Topic :: System :: Emulators",
    "Topic :: Software Development :: Embedded Systems",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["melemu"]

[tool.pytest.ini_options]
addopts = "-ra"
