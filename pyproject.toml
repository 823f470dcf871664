[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "gbacart"
version = "0.1.0"
description = "Game Boy Advance cartridge, save-memory, RTC and DMA models with a debugger expression parser"
requires-python = ">=3.10"
dependencies = []
keywords = ["gba", "emulator", "cartridge", "eeprom", "flash", "sram", "rtc", "dma"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Operating System :: OS Independent",
    "Topic :: System :: Emulators",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["gbacart"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
