"""Download resolved videos, either as single files or as encrypted HLS playlists."""

from __future__ import annotations

import logging
import os
import re
import shutil
import time
from collections.abc import Callable, Iterable, Mapping
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, BinaryIO, Optional, Union
from urllib.parse import urljoin

import requests
from requests.adapters import HTTPAdapter

from .crypto import aes_decrypt
from .net import RequestError, get, new_session, request
from .resolvers.base import UA, HAnime, Video, sort_videos
from .tui.progressbar import (
    ProgressBar,
    ProgressCounter,
    ProgressErrMsg,
    ProgressModel,
    ProgressMsg,
    ProgressStatusMsg,
    ProgressWriter,
    Status,
)
from .util import merge_to_mp4, random_int

log = logging.getLogger(__name__)

DEFAULT_THREADS = 20
MAX_THREADS = 64
RETRY_SLEEP_MIN_MS = 250
RETRY_SLEEP_MAX_MS = 900

_CHUNK = 64 * 1024
_TS_USER_AGENT = (
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/39.0.2171.27 Safari/537.36"
)
_ATTRIBUTE = re.compile(r'([A-Z0-9-]+)=("[^"]*"|[^,]*)')

_NORMALIZED_STATUS = {
    Status.DOWNLOADING: "downloading",
    Status.MERGING: "merging",
    Status.COMPLETE: "complete",
    Status.RETRY: "retrying",
    Status.ERROR: "error",
}

Sender = Callable[[Any], Any]


class DownloadError(Exception):
    """Raised when a video cannot be downloaded."""


@dataclass(frozen=True)
class ProgressEvent:
    """A progress notification for machine-readable consumers."""

    file_name: str
    ratio: float = 0.0
    status: str = ""
    speed: int = 0
    remaining_s: float = 0.0
    downloaded: int = 0
    total: int = 0


@dataclass
class DownloadOption:
    output_dir: str = "."
    quality: str = ""
    info: bool = False
    low_quality: bool = False
    retry: int = 0
    threads: int = 0
    progress_callback: Optional[Callable[[ProgressEvent], None]] = None


@dataclass
class MediaPlaylist:
    """The parts of an HLS media playlist needed for downloading."""

    segments: list[str] = field(default_factory=list)
    key_method: str = ""
    key_uri: str = ""
    key_iv: str = ""


def normalize_status(status: Union[str, Status]) -> str:
    """Map a display status to its machine-readable name; unknown ones map to ''."""
    return _NORMALIZED_STATUS.get(status, "")


def clamp_ratio(ratio: float) -> float:
    """Clamp a ratio into [0, 1]."""
    if ratio < 0:
        return 0.0
    if ratio > 1:
        return 1.0
    return ratio


def format_videos_info(videos: Iterable[Video]) -> str:
    """Describe the given videos, one per line."""
    return "".join(f" 标题: {v.title}, 清晰度: {v.quality}, 格式: {v.ext}\n" for v in videos)


def create_file_list(path: Union[str, os.PathLike], count: int) -> None:
    """Write an ffmpeg concat list naming ``0.ts`` .. ``<count-1>.ts``."""
    try:
        with open(path, "w", encoding="utf-8") as file:
            file.writelines(f"file '{i}.ts'\n" for i in range(count))
    except OSError as exc:
        raise DownloadError(f"创建 {str(path)!r} 失败: {exc}") from exc


def _attributes(text: str) -> dict[str, str]:
    return {key: value.strip('"') for key, value in _ATTRIBUTE.findall(text)}


def parse_media_playlist(text: str, base_url: str = "") -> MediaPlaylist:
    """Parse an HLS media playlist; relative URIs are resolved against ``base_url``."""
    lines = [line.strip() for line in text.splitlines()]
    lines = [line for line in lines if line]
    if not lines or not lines[0].startswith("#EXTM3U"):
        raise ValueError("解析 m3u8 数据失败: 缺少 #EXTM3U 头")
    if any(line.startswith("#EXT-X-STREAM-INF") for line in lines):
        raise ValueError("未找到媒体数据")

    playlist = MediaPlaylist()
    key_seen = False
    for line in lines[1:]:
        if line.startswith("#EXT-X-KEY:"):
            if not key_seen:
                attrs = _attributes(line[len("#EXT-X-KEY:"):])
                playlist.key_method = attrs.get("METHOD", "")
                uri = attrs.get("URI", "")
                playlist.key_uri = urljoin(base_url, uri) if uri else ""
                playlist.key_iv = attrs.get("IV", "")
                key_seen = True
        elif not line.startswith("#"):
            playlist.segments.append(urljoin(base_url, line))
    return playlist


def save_ts(
    session: Optional[requests.Session],
    path: Union[str, os.PathLike],
    url: str,
    key: bytes,
    iv: bytes,
) -> None:
    """Download one segment, decrypt it and write it to ``path``."""
    if session is None:
        session = new_session()
    with get(session, url, {"User-Agent": _TS_USER_AGENT}) as response:
        if response.status_code == 404:
            raise DownloadError("返回 404，请确认该视频当前是否可在线播放")
        try:
            data = response.content
        except requests.RequestException as exc:
            raise RequestError(f"读取 {url!r} 数据失败: {exc}") from exc

    if not data:
        return

    try:
        plain = aes_decrypt(data, key, iv)
    except ValueError as exc:
        raise DownloadError(f"解密 {url!r} 数据失败: {exc}") from exc

    try:
        Path(path).write_bytes(plain)
    except OSError as exc:
        raise DownloadError(f"写入 {str(path)!r} 失败: {exc}") from exc


def get_key_iv(playlist: MediaPlaylist) -> tuple[bytes, bytes]:
    """Fetch the playlist's key; the IV is the key unless the playlist names one."""
    if not playlist.key_uri:
        raise DownloadError("获取 m3u8 密钥失败: 播放列表没有密钥")
    try:
        with request("GET", playlist.key_uri) as response:
            key = response.content
    except (RequestError, requests.RequestException) as exc:
        raise DownloadError(f"获取 m3u8 密钥失败: {exc}") from exc

    iv = playlist.key_iv.encode() if playlist.key_iv else key
    return key, iv


def _get_m3u8_data(url: str) -> str:
    with get(new_session(), url, {"User-Agent": UA}) as response:
        try:
            return response.content.decode("utf-8", errors="replace")
        except requests.RequestException as exc:
            raise RequestError(f"读取 m3u8 数据失败: {exc}") from exc


def _retry_pause() -> None:
    time.sleep(random_int(RETRY_SLEEP_MIN_MS, RETRY_SLEEP_MAX_MS) / 1000)


def _ts_session(threads: int) -> requests.Session:
    session = new_session()
    adapter = HTTPAdapter(pool_connections=16, pool_maxsize=threads + 16)
    session.mount("http://", adapter)
    session.mount("https://", adapter)
    return session


class Downloader:
    """Downloads the chosen rendition of an episode, reporting progress as it goes."""

    def __init__(self, option: DownloadOption, send: Optional[Sender] = None) -> None:
        self.option = option
        self._send = send

    def download(self, anime: HAnime, model: Optional[ProgressModel] = None) -> None:
        videos = sort_videos(anime.videos, self.option.low_quality)

        if self.option.info:
            log.info("可用视频如下：\n%s", format_videos_info(videos))
            return
        if not videos:
            raise DownloadError(f"{anime.title!r} 没有可下载的视频")

        video = videos[0]
        if self.option.quality:
            video = anime.videos.get(self.option.quality.lower(), video)

        try:
            self._save(video, anime.title, model)
        except Exception as exc:
            raise DownloadError(f"下载文件 {video.title!r} 失败: {exc}") from exc

    def send_status(self, file_name: str, status: Union[str, Status]) -> None:
        self._post(ProgressStatusMsg(file_name, status))
        self._emit(ProgressEvent(file_name=file_name, status=normalize_status(status)))

    def send_progress(self, file_name: str, ratio: float) -> None:
        self._post(ProgressMsg(file_name, ratio))
        self._emit(ProgressEvent(file_name=file_name, ratio=clamp_ratio(ratio)))

    def _post(self, msg: Any) -> None:
        if self._send is not None:
            self._send(msg)

    def _emit(self, event: ProgressEvent) -> None:
        callback = self.option.progress_callback
        if callback is not None:
            callback(event)

    def _save(self, video: Video, title: str, model: Optional[ProgressModel]) -> None:
        output_dir = Path(self.option.output_dir) / title
        try:
            output_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            self._post(ProgressErrMsg(exc))
            raise DownloadError(f"创建下载目录 {str(output_dir)!r} 失败: {exc}") from exc

        file_name = f"{video.title} {video.quality}.{video.ext}"
        file_path = output_dir / file_name
        try:
            existing = file_path.lstat()
        except OSError:
            existing = None
        if existing is not None and (existing.st_size == video.size or video.is_m3u8):
            log.info("文件 %r 已存在，跳过", str(file_path))
            return

        if not video.is_m3u8:
            self._save_single(video, file_path, file_name, model)
        else:
            self._save_m3u8(video, output_dir, file_path, file_name, model)

    def _save_single(
        self, video: Video, file_path: Path, file_name: str, model: Optional[ProgressModel]
    ) -> None:
        total = video.size

        def on_progress(name: str, ratio: float, dl_time: float, speed: int) -> None:
            self._post(ProgressMsg(name, ratio, speed, dl_time))
            self._emit(
                ProgressEvent(
                    file_name=name,
                    ratio=clamp_ratio(ratio),
                    status="downloading",
                    speed=speed,
                    remaining_s=dl_time,
                    downloaded=int(total * clamp_ratio(ratio)),
                    total=total,
                )
            )

        writer = ProgressWriter(total=total, file_name=file_name, on_progress=on_progress)
        if model is not None:
            model.add(ProgressBar(file_name=file_name, writer=writer))

        try:
            file = open(file_path, "ab")
        except OSError as exc:
            self.send_status(file_name, Status.ERROR)
            raise DownloadError(f"创建文件 {str(file_path)!r} 失败: {exc}") from exc

        with file:
            try:
                current = os.fstat(file.fileno()).st_size
            except OSError as exc:
                self.send_status(file_name, Status.ERROR)
                raise DownloadError(f"读取文件状态 {str(file_path)!r} 失败: {exc}") from exc

            if current > 0:
                writer.downloaded = current
                ratio = current / total if total else 1.0
                self.send_progress(file_name, ratio)
                self._emit(
                    ProgressEvent(
                        file_name=file_name,
                        ratio=clamp_ratio(ratio),
                        status="downloading",
                        downloaded=current,
                        total=total,
                    )
                )

            attempt = 0
            while True:
                attempt += 1
                headers = {"Range": f"bytes={current}-"}
                try:
                    self._write_file(writer, file, video.url, headers)
                    break
                except (RequestError, requests.RequestException, OSError) as exc:
                    if attempt - 1 >= self.option.retry:
                        self.send_status(file_name, Status.ERROR)
                        raise DownloadError(str(exc)) from exc
                    current += writer.copied
                    self.send_status(file_name, Status.RETRY)
                    _retry_pause()

        self.send_status(file_name, Status.COMPLETE)

    def _write_file(
        self, writer: ProgressWriter, file: BinaryIO, url: str, headers: Mapping[str, str]
    ) -> int:
        writer.copied = 0
        with request("GET", url, headers) as response:
            self._post(ProgressStatusMsg(writer.file_name, Status.DOWNLOADING.value))
            return writer.copy(response.iter_content(_CHUNK), file)

    def _save_m3u8(
        self,
        video: Video,
        output_dir: Path,
        file_path: Path,
        file_name: str,
        model: Optional[ProgressModel],
    ) -> None:
        playlist = parse_media_playlist(_get_m3u8_data(video.url), video.url)
        segments = playlist.segments

        tmp_dir = output_dir / f"tmp-{file_name}"
        try:
            tmp_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise DownloadError(f"创建目录 {str(tmp_dir)!r} 失败: {exc}") from exc

        try:
            file_list = tmp_dir / "fileList.txt"
            create_file_list(file_list, len(segments))
            key, iv = get_key_iv(playlist)

            total = len(segments)

            def on_progress(name: str, ratio: float) -> None:
                self._post(ProgressMsg(name, ratio))
                self._emit(
                    ProgressEvent(
                        file_name=name,
                        ratio=clamp_ratio(ratio),
                        status="downloading",
                        downloaded=int(total * clamp_ratio(ratio)),
                        total=total,
                    )
                )

            counter = ProgressCounter(total=total, file_name=file_name, on_progress=on_progress)
            if model is not None:
                model.add(ProgressBar(file_name=file_name, counter=counter))

            threads = self.option.threads if self.option.threads > 0 else DEFAULT_THREADS
            threads = min(threads, MAX_THREADS)
            session = _ts_session(threads)

            def fetch(index: int, url: str) -> None:
                path = tmp_dir / f"{index}.ts"
                attempt = 0
                while True:
                    attempt += 1
                    try:
                        save_ts(session, path, url, key, iv)
                        break
                    except Exception:
                        if attempt - 1 >= self.option.retry:
                            raise
                        _retry_pause()
                counter.increase()

            first_error: Optional[BaseException] = None
            with ThreadPoolExecutor(max_workers=threads) as pool:
                futures = [pool.submit(fetch, i, url) for i, url in enumerate(segments)]
                for future in as_completed(futures):
                    error = future.exception()
                    if error is not None and first_error is None:
                        first_error = error
            if first_error is not None:
                self.send_status(file_name, Status.ERROR)
                raise DownloadError(f"下载 {file_name} 失败: {first_error}") from first_error

            self._merge(file_list, file_name, file_path)
        finally:
            shutil.rmtree(tmp_dir, ignore_errors=True)

    def _merge(self, file_list: Path, file_name: str, file_path: Path) -> None:
        self.send_status(file_name, Status.MERGING)
        try:
            merge_to_mp4(file_list, file_path)
        except Exception as exc:
            raise DownloadError(f"合并文件失败: {exc}") from exc
        self.send_status(file_name, Status.COMPLETE)