[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "zzlang"
version = "0.1.0"
description = "Name resolution and C/Rust code emission for the ZZ systems language"
requires-python = ">=3.10"
dependencies = []
keywords = ["compiler", "zz", "code generation", "c", "rust", "bindings"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Software Development :: Compilers",
    "Topic :: Software Development :: Code Generators",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["zzlang"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
