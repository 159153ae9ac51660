[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "hanihunter"
version = "0.1.0"
description = "Anime video downloader library with site resolvers, resumable and m3u8 downloads, progress display and download-task bookkeeping"
requires-python = ">=3.10"
keywords = ["downloader", "anime", "m3u8", "hls", "resolver"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Environment :: Console",
    "Intended Audience :: Developers",
    "Intended Audience :: End Users/Desktop",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Internet :: WWW/HTTP",
    "Topic :: Multimedia :: Video",
]
dependencies = [
    "requests",
    "beautifulsoup4",
    "cryptography",
    "platformdirs",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["hanihunter"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
