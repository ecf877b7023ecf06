[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "floormap"
version = "0.1.0"
description = "Floor plan maps with placed objects, stored in SQLite, served as a JSON web service, with a command-line tool for import and export"
requires-python = ">=3.10"
keywords = ["floor plan", "map", "wsgi", "json", "sqlite"]
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
    "Topic :: Internet :: WWW/HTTP :: Dynamic Content",
]
dependencies = [
    "werkzeug",
    "pillow",
    "python-dotenv",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[project.scripts]
floormap-cli = "floormap.cli:main"
floormap-server = "floormap.server:main"

[tool.hatch.build.targets.wheel]
packages = ["floormap"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
ignore_missing_imports = true
