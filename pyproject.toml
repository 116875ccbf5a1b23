[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "hprtsetup"
version = "1.0.0"
description = "One-click setup of an HPRT printer on macOS for remote Clodop printing over VPN"
requires-python = ">=3.10"
keywords = ["hprt", "printer", "cups", "clodop", "vpn", "socat", "macos"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Environment :: MacOS X",
    "Environment :: X11 Applications :: Tk",
    "Intended Audience :: End Users/Desktop",
    "Intended Audience :: System Administrators",
    "Operating System :: MacOS :: MacOS X",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Printing",
    "Topic :: System :: Systems Administration",
]
dependencies = [
    "pyyaml",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[project.scripts]
hprtsetup = "hprtsetup.app:main"

[tool.hatch.build.targets.wheel]
packages = ["hprtsetup"]

[tool.pytest.ini_options]
addopts = "-ra"
