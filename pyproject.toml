[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "gvinsfactors"
version = "0.1.0"
description = "Residual factors, IMU preintegration and marginalization for GNSS-visual-inertial least-squares navigation"
requires-python = ">=3.10"
dependencies = [
    "numpy",
]
keywords = [
    "navigation",
    "imu",
    "preintegration",
    "odometer",
    "gnss",
    "visual-inertial",
    "marginalization",
    "least-squares",
]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Science/Research",
    "Intended Audience :: Developers",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Operating System :: OS Independent",
    "Topic :: Scientific/Engineering",
    "Topic :: Scientific/Engineering :: Mathematics",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["gvinsfactors"]

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
warn_unused_ignores = true
ignore_missing_imports = true
