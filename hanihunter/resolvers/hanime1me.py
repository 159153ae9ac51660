"""Resolver for hanime1.me videos, series and playlists."""

from __future__ import annotations

import logging
import re
import time
from functools import lru_cache
from urllib.parse import parse_qs, urlsplit

import requests
from bs4 import Comment, Declaration, Doctype, NavigableString, ProcessingInstruction, Tag

from ..htmlutil import find_tags, get_attr
from ..net import RequestError, get, get_html_page, new_session
from ..util import INVALID_DIR_SYMBOLS, random_int, replace_chars
from .base import UA, HAnime, ResolveOption, Resolver, Video

log = logging.getLogger(__name__)

SITE = "hanime1.me"
DEFAULT_ANI_TITLE = "unknown"
PAGE_FETCH_RETRIES = 3
DL_INFO_RETRIES = 4

_DOWNLOAD_URL = "https://hanime1.me/download?v="
_ONCLICK_LINK = re.compile(r"""['"]((?:https?:)?//[^'"]+|/[^'"]+)['"]""")
_QUALITY = re.compile(r"(\d{3,4}p)")
_VIDEO_ID = re.compile(r"[^/]+-\d+p")
_NON_TEXT = (Comment, Declaration, Doctype, ProcessingInstruction)


@lru_cache(maxsize=None)
def _client() -> requests.Session:
    return new_session()


def _pause(low_ms: int, high_ms: int) -> None:
    time.sleep(random_int(low_ms, high_ms) / 1000)


def _rewrap(exc: Exception, message: str) -> Exception:
    return type(exc)(f"{message}: {exc}")


def get_site_and_vid(url: str) -> tuple[str, str]:
    """Return the host and the ``v`` query parameter of a watch URL."""
    try:
        parts = urlsplit(url)
    except ValueError as exc:
        raise ValueError(f"解析链接 {url!r} 失败: {exc}") from exc
    values = parse_qs(parts.query, keep_blank_values=True).get("v")
    if not values:
        raise ValueError("未找到视频 ID（参数 v）")
    return parts.netloc.rpartition("@")[2], values[0]


def _vid_or_empty(url: str) -> str:
    try:
        return get_site_and_vid(url)[1]
    except ValueError:
        return ""


def remove_dir_invalid_symbols(title: str) -> str:
    """Drop characters that are not allowed in directory names."""
    return replace_chars(title, INVALID_DIR_SYMBOLS)


def normalize_title(text: str) -> str:
    """Collapse all runs of whitespace into single spaces."""
    return " ".join(text.split())


def normalize_download_link(link: str) -> str:
    """Turn a raw link into an absolute URL, or '' when it is not usable."""
    link = link.strip()
    if link in ("", "#"):
        return ""
    lower = link.lower()
    if lower.startswith("javascript:"):
        return ""
    if link.startswith("//"):
        return "https:" + link
    if link.startswith("/"):
        return "https://hanime1.me" + link
    if lower.startswith(("https://", "http://")):
        return link
    if "/" in link or "?" in link:
        return "https://hanime1.me/" + link.lstrip("/")
    return ""


def extract_download_link(tag: Tag) -> str:
    """Find the first usable download link among a tag's attributes."""
    candidates = [
        get_attr(tag, name)
        for name in ("href", "data-href", "data-url", "data-download", "data-src")
    ]
    onclick = get_attr(tag, "onclick")
    if onclick:
        match = _ONCLICK_LINK.search(onclick)
        if match:
            candidates.append(match.group(1))
    return next((u for u in map(normalize_download_link, candidates) if u), "")


def text_content(node) -> str:
    """Concatenate all text below ``node``, comments excluded."""
    if node is None:
        return ""
    if isinstance(node, NavigableString):
        return "" if isinstance(node, _NON_TEXT) else str(node)
    return "".join(
        str(item)
        for item in node.descendants
        if isinstance(item, NavigableString) and not isinstance(item, _NON_TEXT)
    )


def get_id(link: str) -> str:
    """Return the ``<name>-<height>p`` part of a link, or ''."""
    match = _VIDEO_ID.search(link)
    return match.group(0) if match else ""


def get_series_links(node: Tag) -> list[str]:
    """Collect the watch links of the series list inside ``node``."""
    lists = find_tags(node, "div", True, [("id", "playlist-scroll")])
    if not lists:
        return []
    links = (get_attr(a, "href") for a in find_tags(lists[0], "a", False, None))
    return [href for href in links if "watch" in href]


def parse_ani_info(doc: Tag, url: str) -> tuple[str, list[str]]:
    """Extract the title and series links from a parsed watch page."""
    wrappers = find_tags(doc, "div", True, [("id", "video-playlist-wrapper")])
    if not wrappers:
        raise ValueError(f"获取剧集信息失败（{url!r}）")
    wrapper = wrappers[0]

    title = DEFAULT_ANI_TITLE
    headings = find_tags(wrapper, "h4", False, None)
    if headings:
        title = normalize_title(text_content(headings[0]))
    if title != DEFAULT_ANI_TITLE:
        title = remove_dir_invalid_symbols(title)
    return title, get_series_links(wrapper)


def _html_page_with_retry(url: str):
    last: Exception | None = None
    for _ in range(PAGE_FETCH_RETRIES):
        try:
            return get_html_page(_client(), url, {"User-Agent": UA})
        except RequestError as exc:
            last = exc
            _pause(500, 1200)
    assert last is not None
    raise last


def get_ani_info(url: str) -> tuple[str, list[str]]:
    """Fetch a watch page and return its title and series links."""
    try:
        doc = _html_page_with_retry(url)
    except RequestError as exc:
        raise RequestError(f"获取视频页面 {url!r} 失败: {exc}") from exc
    return parse_ani_info(doc, url)


def get_video_info(url: str) -> tuple[int, str]:
    """Probe a download link and return its size and file extension."""
    if not url.strip():
        raise ValueError("下载链接为空")
    try:
        parts = urlsplit(url)
    except ValueError:
        parts = None
    if parts is None or not parts.scheme or not parts.netloc:
        raise ValueError(f"下载链接格式无效: {url!r}")

    response = None
    last: Exception | None = None
    for _ in range(PAGE_FETCH_RETRIES):
        try:
            response = get(_client(), url, {"User-Agent": UA})
            break
        except RequestError as exc:
            last = exc
            _pause(500, 1200)
    if response is None:
        raise RequestError(f"从 {url!r} 获取下载信息失败: {last}")

    with response:
        content_type = response.headers.get("Content-Type", "")
        content_length = response.headers.get("Content-Length", "")

    ext = "mp4"
    if content_type:
        kinds = content_type.split("/")
        if len(kinds) > 1:
            ext = kinds[1].split(";")[0]

    size = 0
    if content_length:
        try:
            size = int(content_length)
        except ValueError:
            size = 0
    return size, ext


def get_dl_info(vid: str) -> tuple[dict[str, Video], list[str]]:
    """Read the download page of a video and return its renditions and titles."""
    url = _DOWNLOAD_URL + vid
    try:
        doc = _html_page_with_retry(url)
    except RequestError as exc:
        raise RequestError(f"获取下载页面失败: {exc}") from exc

    tables = find_tags(doc, "table", True, [("class", "download-table")])
    if not tables:
        raise ValueError("未找到下载信息")

    videos: dict[str, Video] = {}
    episodes: list[str] = []
    for anchor in find_tags(tables[0], "a", False, None):
        link = extract_download_link(anchor)
        if not link:
            continue

        title = normalize_title(remove_dir_invalid_symbols(get_attr(anchor, "download")))
        video_id = get_id(link) or f"video-{len(videos) + 1}"

        pieces = video_id.split("-")
        quality = pieces[1] if len(pieces) > 1 else ""
        if not quality:
            match = _QUALITY.search(link)
            quality = match.group(1) if match else f"unknown-{len(videos) + 1}"
        if not title:
            title = video_id

        try:
            size, ext = get_video_info(link)
        except (ValueError, RequestError) as exc:
            log.debug("跳过不可用下载链接: %r, err=%s", link, exc)
            continue
        if ext == "octet-stream":
            ext = "mp4"

        episodes.append(title)
        log.debug("找到视频: %s - %s - %s", title, quality, ext)
        videos[quality] = Video(
            id=video_id, quality=quality, url=link, title=title, size=size, ext=ext
        )

    if not videos:
        raise ValueError("未找到可用下载链接，可能需要登录或页面结构已变更")
    return videos, episodes


def _dl_info_with_retry(vid: str) -> tuple[dict[str, Video], list[str]]:
    last: Exception | None = None
    for _ in range(DL_INFO_RETRIES):
        try:
            return get_dl_info(vid)
        except (ValueError, RequestError) as exc:
            last = exc
            _pause(800, 1800)
    assert last is not None
    raise last


def resolve_playlist(url: str) -> list[HAnime]:
    """Resolve every video linked from a playlist page."""
    doc = _html_page_with_retry(url)
    playlists = find_tags(doc, "div", True, [("id", "home-rows-wrapper")])
    if not playlists:
        raise ValueError(f"在 {url!r} 中未找到播放列表")

    result: list[HAnime] = []
    for anchor in find_tags(playlists[0], "a", True, [("class", "playlist-show-links")]):
        href = get_attr(anchor, "href")
        if "watch" not in href:
            continue
        site, vid = get_site_and_vid(href)
        title, _ = get_ani_info(href)
        log.info("已找到视频：%s，正在搜索剧集，请稍候...", title)
        videos, episodes = _dl_info_with_retry(vid)
        if episodes:
            log.info("找到剧集：%s", episodes[0])
        _pause(900, 3000)
        result.append(HAnime(url=href, site=site, title=title, videos=videos))
    return result


class Hanime1meResolver(Resolver):
    """Resolves hanime1.me watch, series and playlist URLs."""

    def resolve(self, url: str, option: ResolveOption | None = None) -> list[HAnime]:
        option = option or ResolveOption()
        if "playlist" in url:
            return resolve_playlist(url)

        try:
            site, vid = get_site_and_vid(url)
        except ValueError as exc:
            raise ValueError(f"解析链接 {url!r} 失败: {exc}") from exc

        try:
            title, series = get_ani_info(url)
        except (ValueError, RequestError) as exc:
            raise _rewrap(exc, f"获取视频信息失败（{url!r}）") from exc

        if title == DEFAULT_ANI_TITLE:
            log.warning("获取视频标题失败")
        log.info("已找到视频：%s，正在搜索剧集，请稍候...", title)

        if not option.series:
            try:
                videos, episodes = _dl_info_with_retry(vid)
            except (ValueError, RequestError) as exc:
                raise _rewrap(exc, f"获取下载信息失败（{vid!r}）") from exc
            if episodes:
                log.info("找到剧集：%r", episodes[0])
            return [HAnime(url=url, site=site, title=title, videos=videos)]

        result: list[HAnime] = []
        titles: list[str] = []
        for link in series:
            episode_vid = _vid_or_empty(link)
            try:
                videos, episodes = _dl_info_with_retry(episode_vid)
            except (ValueError, RequestError) as exc:
                raise _rewrap(exc, f"获取下载信息失败（{episode_vid!r}）") from exc
            if episodes:
                titles.append(episodes[0])
            result.append(HAnime(url=link, site=site, title=title, videos=videos))
        log.info("找到剧集 %s", titles)
        return result