"""Resolver for hanime.tv videos, series and playlists."""

from __future__ import annotations

import json
import logging
import time
from collections.abc import Mapping
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Any
from urllib.parse import urlsplit

import requests
from bs4 import Tag

from ..htmlutil import find_tags, get_attr
from ..net import RequestError, get, get_html_page, new_session
from ..util import random_int
from .base import UA, HAnime, ResolveOption, Resolver, Video

log = logging.getLogger(__name__)

SITE = "hanime.tv"
VIDEO_API_URL = "https://hanime.tv/api/v8/video?id="
_VIDEO_PATH_PREFIX = "/videos/hentai/"


def _obj(data: Mapping[str, Any], key: str) -> Mapping[str, Any]:
    value = data.get(key)
    return value if isinstance(value, Mapping) else {}


def _list(data: Mapping[str, Any], key: str) -> list:
    value = data.get(key)
    return value if isinstance(value, list) else []


@dataclass(frozen=True)
class Stream:
    """One stream entry of a video manifest server."""

    id: int = 0
    height: str = ""
    size: int = 0
    url: str = ""

    @classmethod
    def _from_json(cls, data: Mapping[str, Any]) -> Stream:
        return cls(
            id=int(data.get("id") or 0),
            height=str(data.get("height") or ""),
            size=int(data.get("filesize_mbs") or 0),
            url=str(data.get("url") or ""),
        )


@dataclass
class VideoInfo:
    """The parts of the video API response that resolving needs."""

    name: str = ""
    slug: str = ""
    franchise_id: int = 0
    franchise_name: str = ""
    franchise_slug: str = ""
    franchise_title: str = ""
    servers: list[list[Stream]] = field(default_factory=list)
    franchise_slugs: list[str] = field(default_factory=list)

    @classmethod
    def from_json(cls, data: str | bytes | Mapping[str, Any]) -> VideoInfo:
        if isinstance(data, (str, bytes, bytearray)):
            data = json.loads(data)
        if not isinstance(data, Mapping):
            raise ValueError("video response is not a JSON object")
        video = _obj(data, "hentai_video")
        franchise = _obj(data, "hentai_franchise")
        manifest = _obj(data, "videos_manifest")
        servers = [
            [Stream._from_json(s) for s in _list(server, "streams") if isinstance(s, Mapping)]
            for server in _list(manifest, "servers")
            if isinstance(server, Mapping)
        ]
        return cls(
            name=str(video.get("name") or ""),
            slug=str(video.get("slug") or ""),
            franchise_id=int(franchise.get("id") or 0),
            franchise_name=str(franchise.get("name") or ""),
            franchise_slug=str(franchise.get("slug") or ""),
            franchise_title=str(franchise.get("title") or ""),
            servers=servers,
            franchise_slugs=[
                str(item.get("slug") or "")
                for item in _list(data, "hentai_franchise_hentai_videos")
                if isinstance(item, Mapping)
            ],
        )


@lru_cache(maxsize=None)
def _client() -> requests.Session:
    return new_session()


def get_video_id(path: str) -> str:
    """Extract the video slug from a ``/videos/hentai/<slug>`` path."""
    if not path.startswith(_VIDEO_PATH_PREFIX):
        raise ValueError(f"在 {path!r} 中未找到视频 ID")
    parts = path.split("/")
    if len(parts) != 4:
        raise ValueError(f"在 {path!r} 中未找到视频 ID")
    return parts[3]


def video_map(info: VideoInfo) -> tuple[dict[str, Video], list[str]]:
    """Build the quality-to-video map from the first server, skipping 1080p."""
    if not info.servers:
        raise ValueError(f"视频 {info.slug!r} 没有可用的播放服务器")
    videos: dict[str, Video] = {}
    episodes: list[str] = []
    for stream in info.servers[0]:
        if stream.height == "1080":
            continue
        quality = f"{stream.height}p"
        episodes.append(info.slug)
        log.debug("找到视频分辨率: %s %s", info.slug, quality)
        videos[quality] = Video(
            id=str(stream.id),
            quality=quality,
            url=stream.url,
            is_m3u8=True,
            title=info.slug,
            size=stream.size,
            ext="mp4",
        )
    return videos, episodes


def get_video_info(slug: str) -> VideoInfo:
    """Fetch video details from the site API."""
    with get(_client(), VIDEO_API_URL + slug, {"User-Agent": UA}) as response:
        try:
            data = response.content
        except requests.RequestException as exc:
            raise RequestError(f"读取视频 {slug!r} 响应失败: {exc}") from exc
    try:
        return VideoInfo.from_json(data)
    except (ValueError, TypeError) as exc:
        raise ValueError(f"解析视频 {slug!r} 的 JSON 响应失败: {exc}") from exc


def parse_playlist_slugs(doc: Tag, url: str) -> list[str]:
    """Collect video slugs from a parsed playlist page."""
    panels = find_tags(doc, "div", True, [("class", "playlists__panel panel__content")])
    if not panels:
        raise ValueError(f"在 {url!r} 中未找到播放列表")
    links = find_tags(panels[0], "a", True, [("class", "flex row")])
    if not links:
        raise ValueError(f"在 {url!r} 中未找到视频")
    paths = (urlsplit(get_attr(a, "href")).path for a in links)
    return [p[len(_VIDEO_PATH_PREFIX):] for p in paths if p.startswith(_VIDEO_PATH_PREFIX)]


def get_playlist_slugs(url: str) -> list[str]:
    """Fetch a playlist page and return the slugs of its videos."""
    doc = get_html_page(_client(), url, {"User-Agent": UA})
    return parse_playlist_slugs(doc, url)


def _first_episode(episodes: list[str], slug: str) -> str:
    if not episodes:
        raise ValueError(f"视频 {slug!r} 没有可下载的清晰度")
    return episodes[0]


class HanimeTvResolver(Resolver):
    """Resolves hanime.tv video, series and playlist URLs."""

    def resolve(self, url: str, option: ResolveOption | None = None) -> list[HAnime]:
        option = option or ResolveOption()
        if "playlists" in url:
            return self._resolve_playlist(url)

        try:
            parts = urlsplit(url)
        except ValueError as exc:
            raise ValueError(f"解析链接 {url!r} 失败: {exc}") from exc
        site = parts.netloc.rpartition("@")[2]

        info = get_video_info(get_video_id(parts.path))
        log.info("已找到视频：%s，正在搜索剧集，请稍候...", info.franchise_title)

        if not option.series:
            videos, episodes = video_map(info)
            log.info("找到剧集：%s", [_first_episode(episodes, info.slug)])
            return [HAnime(url=url, site=site, title=info.franchise_title, videos=videos)]

        result: list[HAnime] = []
        titles: list[str] = []
        for slug in info.franchise_slugs:
            video = get_video_info(slug)
            videos, episodes = video_map(video)
            titles.append(_first_episode(episodes, slug))
            result.append(HAnime(site=site, title=video.franchise_slug, videos=videos))
        log.info("找到剧集：%s", titles)
        return result

    def _resolve_playlist(self, url: str) -> list[HAnime]:
        result: list[HAnime] = []
        for slug in get_playlist_slugs(url):
            info = get_video_info(slug)
            log.info("已找到视频：%s，正在搜索剧集，请稍候...", info.franchise_title)
            videos, episodes = video_map(info)
            log.info("找到剧集：%s", _first_episode(episodes, slug))
            result.append(HAnime(title=info.franchise_title, videos=videos))
            time.sleep(random_int(900, 3000) / 1000)
        return result