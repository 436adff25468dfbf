[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "espflasher"
version = "0.1.0"
description = "Host-side library for flashing ESP chips through their ROM serial bootloader"
requires-python = ">=3.10"
dependencies = []
keywords = ["esp32", "esp8266", "bootloader", "flash", "slip", "serial", "embedded"]
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
    "Topic :: Software Development :: Embedded Systems",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["espflasher"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
