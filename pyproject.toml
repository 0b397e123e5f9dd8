[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "ribble"
version = "0.1.2"
description = "Audio visualisation analysis, background job workers and a WAV recording cache"
requires-python = ">=3.10"
dependencies = [
    "numpy",
]
keywords = ["audio", "visualizer", "fft", "spectrum", "wav", "recording"]
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
    "Topic :: Multimedia :: Sound/Audio :: Analysis",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["ribble"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
