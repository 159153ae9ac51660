"""Core resolver types and the domain-based resolver registry."""

from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from urllib.parse import urlsplit

log = logging.getLogger(__name__)

UA = (
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/39.0.2171.27 Safari/537.36"
)


@dataclass
class Video:
    """One downloadable rendition of an episode."""

    id: str
    quality: str
    url: str
    is_m3u8: bool = False
    title: str = ""
    size: int = 0
    ext: str = ""


@dataclass
class HAnime:
    """An episode together with its available renditions keyed by quality."""

    url: str = ""
    site: str = ""
    title: str = ""
    videos: dict[str, Video] = field(default_factory=dict)


@dataclass(frozen=True)
class ResolveOption:
    series: bool = False
    playlist: bool = False


class UnsupportedSiteError(LookupError):
    """Raised when no resolver is registered for a URL's host."""


class Resolver(ABC):
    """Turns a page URL into downloadable episodes."""

    @abstractmethod
    def resolve(self, url: str, option: ResolveOption) -> list[HAnime]:
        """Resolve ``url`` into a list of episodes."""


def sort_videos(videos: Mapping[str, Video] | Iterable[Video], ascending: bool = False) -> list[Video]:
    """Sort videos by size, largest first unless ``ascending``; ties keep their order."""
    items = videos.values() if isinstance(videos, Mapping) else videos
    return sorted(items, key=lambda v: v.size, reverse=not ascending)


def _host(url: str) -> str:
    try:
        netloc = urlsplit(url).netloc
    except ValueError as exc:
        raise ValueError(f"解析链接 {url!r} 失败: {exc}") from exc
    return netloc.rpartition("@")[2]


class ResolverRegistry:
    """Maps site host names to resolvers."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._resolvers: dict[str, Resolver] = {}

    def register(self, domain: str, resolver: Resolver) -> None:
        with self._lock:
            self._resolvers[domain] = resolver

    def resolve(self, url: str, option: ResolveOption | None = None) -> list[HAnime]:
        domain = _host(url)
        log.info("站点: %s", domain)
        with self._lock:
            resolver = self._resolvers.get(domain)
        if resolver is None:
            raise UnsupportedSiteError(f"暂不支持站点 {domain!r}")
        return resolver.resolve(url, option or ResolveOption())