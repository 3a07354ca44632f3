[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "phplocal"
version = "0.1.0"
description = "Run local PHP tooling: pick a PHP binary, run Composer, prepare PHP server processes and track them in pid files"
requires-python = ">=3.10"
keywords = ["php", "php-fpm", "php-cgi", "composer", "pidfile", "development-server"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Environment :: Console",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Software Development",
]
dependencies = [
    "packaging",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["phplocal"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
