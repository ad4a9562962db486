[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "osmstream"
version = "0.1.0"
description = "Read and write OpenStreetMap data streams in PBF and XML form"
requires-python = ">=3.10"
dependencies = []
keywords = ["openstreetmap", "osm", "pbf", "protobuf", "gis", "xml"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Intended Audience :: Science/Research",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Scientific/Engineering :: GIS",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["osmstream"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
