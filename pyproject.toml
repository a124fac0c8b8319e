[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "kotai"
version = "0.1.0"
description = "Personal voice assistant with system control, command history, a web interface and an ADB bridge"
requires-python = ">=3.10"
keywords = ["assistant", "voice", "speech", "automation", "adb", "websocket"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Environment :: Console",
    "Environment :: Web Environment",
    "Intended Audience :: End Users/Desktop",
    "Natural Language :: Russian",
    "Operating System :: Microsoft :: Windows",
    "Operating System :: POSIX",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Multimedia :: Sound/Audio :: Speech",
    "Topic :: Utilities",
]
dependencies = [
    "psutil",
    "httpx",
    "aiohttp",
    "pygame",
]

[project.optional-dependencies]
test = [
    "pytest",
    "pytest-asyncio",
]

[project.scripts]
kotai = "kotai.cli:main"

[tool.hatch.build.targets.wheel]
packages = ["kotai"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"
