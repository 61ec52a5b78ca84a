[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "picosio"
version = "0.1.0"
description = "Atari 8-bit SIO disk drive emulator serving ATR and XEX images over a serial link, with CAS and WAV tape decoding"
requires-python = ">=3.10"
keywords = [
    "atari",
    "atari-8-bit",
    "sio",
    "emulator",
    "atr",
    "xex",
    "cas",
    "wav",
    "cassette",
    "disk-image",
    "retro",
]
classifiers = [
    "Development Status :: 4 - Beta",
    "Environment :: Console",
    "Intended Audience :: End Users/Desktop",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Emulators",
    "Topic :: System :: Hardware",
]
dependencies = [
    "pyserial>=3.5",
]

[project.optional-dependencies]
test = [
    "pytest>=7.0",
]

[project.scripts]
picosio = "picosio.sio:main"

[tool.hatch.build.targets.wheel]
packages = ["picosio"]

[tool.hatch.build.targets.sdist]
include = [
    "picosio",
    "tests",
]

[tool.pytest.ini_options]
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
