[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "visfeat"
version = "0.1.0"
description = "Monocular visual feature tracking with optical flow, semantic rejection, a pinhole camera model and lidar cloud handling"
requires-python = ">=3.10"
keywords = ["visual odometry", "feature tracking", "optical flow", "camera model", "lidar", "point cloud"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Science/Research",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Scientific/Engineering :: Image Processing",
]
dependencies = [
    "numpy",
    "scipy",
    "pyyaml",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["visfeat"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
