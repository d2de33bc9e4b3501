[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "bdjuno"
version = "2.0.0"
description = "Chain data parsing modules that store governance, staking, mint, slashing and price data through a database object."
requires-python = ">=3.10"
keywords = ["blockchain", "indexer", "cosmos", "governance", "staking", "pricefeed", "bech32"]
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
    "Topic :: Database :: Front-Ends",
]
dependencies = [
    "requests>=2.25",
    "pyyaml>=5.4",
]

[project.optional-dependencies]
test = [
    "pytest>=7.0",
]

[tool.hatch.build.targets.wheel]
packages = ["bdjuno"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
