[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "gigecap"
version = "0.1.0"
description = "GigE Vision camera discovery and capture, TCP frame streaming, pipeline configuration and command queue tools"
requires-python = ">=3.10"
keywords = ["gige", "gvcp", "gvsp", "camera", "capture", "machine-vision", "streaming"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Intended Audience :: Science/Research",
    "Operating System :: POSIX",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Multimedia :: Video :: Capture",
    "Topic :: System :: Networking",
]
dependencies = [
    "psutil",
    "numpy",
    "pillow",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[project.scripts]
gigecap-discover = "gigecap.discovery:main"
gigecap-capture = "gigecap.camera:main"
gigecap-raw2bmp = "gigecap.imaging:main"
gigecap-frame-server = "gigecap.frames:server_main"
gigecap-frame-client = "gigecap.frames:client_main"

[tool.hatch.build.targets.wheel]
packages = ["gigecap"]

[tool.pytest.ini_options]
addopts = "-ra"
testpaths = ["tests"]

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
