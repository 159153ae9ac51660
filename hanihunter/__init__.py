"""Anime video downloader library: site resolvers, downloads, progress and task state."""

__version__ = "0.1.0"