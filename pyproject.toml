[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "spzkit"
version = "1.1.0"
description = "Read, write and convert 3D Gaussian splats in the compressed SPZ format and in PLY"
requires-python = ">=3.10"
dependencies = []
keywords = ["gaussian-splatting", "spz", "ply", "point-cloud", "3d", "compression"]
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
    "Topic :: Multimedia :: Graphics :: Graphics Conversion",
    "Topic :: Multimedia :: Graphics :: 3D Rendering",
]

[project.optional-dependencies]
test = ["pytest", "hypothesis"]

[project.scripts]
ply_to_spz = "spzkit.cli:ply_to_spz_main"
spz_to_ply = "spzkit.cli:spz_to_ply_main"
spz_info = "spzkit.cli:spz_info_main"

[tool.hatch.build.targets.wheel]
packages = ["spzkit"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
