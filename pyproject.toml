[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "fontdiff"
version = "0.1.0"
description = "Font-aware brotli binary diffs: hand-built brotli streams that rebuild a derived font subset from a base subset used as a shared dictionary."
requires-python = ">=3.10"
dependencies = []
keywords = [
    "brotli",
    "font",
    "opentype",
    "truetype",
    "subset",
    "binary diff",
    "patch",
    "shared dictionary",
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
    "Topic :: Text Processing :: Fonts",
    "Topic :: System :: Archiving :: Compression",
]

[project.optional-dependencies]
test = [
    "pytest",
    "brotli",
]

[tool.hatch.build.targets.wheel]
packages = ["fontdiff"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.ruff.lint]
select = ["E", "F", "W", "I", "B", "UP"]

[tool.mypy]
python_version = "3.10"
files = ["fontdiff"]
