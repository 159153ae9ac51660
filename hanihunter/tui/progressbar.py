"""Terminal progress bars for file downloads."""

from __future__ import annotations

import threading
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from enum import Enum
from typing import BinaryIO, Optional, Union

from ..util import format_size

PADDING = 2
MAX_WIDTH = 80
DEFAULT_BAR_WIDTH = 40
MIB = float(1 << 20)
_CHUNK = 64 * 1024
_HELP_COLOR = "#626262"


def _colored(text: str, hex_color: str) -> str:
    r, g, b = (int(hex_color[i : i + 2], 16) for i in (1, 3, 5))
    return f"\x1b[38;2;{r};{g};{b}m{text}\x1b[0m"


class Status(str, Enum):
    """Display status of a progress bar."""

    DOWNLOADING = "下载中"
    MERGING = "合并中"
    COMPLETE = "已完成"
    ERROR = "失败"
    RETRY = "重试中"

    @property
    def color(self) -> str:
        return _STATUS_COLORS[self]


_STATUS_COLORS = {
    Status.DOWNLOADING: "#FF6600",
    Status.MERGING: "#FFCC66",
    Status.COMPLETE: "#00FF00",
    Status.RETRY: "#CC66CC",
    Status.ERROR: "#CC0000",
}


def _trunc_div(a: int, b: int) -> int:
    q = abs(a) // abs(b)
    return q if (a >= 0) == (b >= 0) else -q


@dataclass
class ProgressWriter:
    """Counts written bytes and reports ratio, remaining time and speed."""

    total: int
    file_name: str
    on_progress: Optional[Callable[[str, float, float, int], None]] = None
    downloaded: int = 0
    speed: int = 0
    dl_time: float = 0.0
    start_time: float = field(default_factory=time.monotonic)
    copied: int = 0  # bytes written by the most recent copy()

    def write(self, data: bytes) -> int:
        self.downloaded += len(data)
        if self.total > 0 and self.on_progress is not None:
            elapsed = int(time.monotonic() - self.start_time)
            speed = self.downloaded // elapsed if elapsed > 0 else 0
            dl_time = float(_trunc_div(self.total - self.downloaded, speed)) if speed > 0 else 0.0
            self.on_progress(self.file_name, self.downloaded / self.total, dl_time, speed)
        return len(data)

    def copy(self, reader: Union[BinaryIO, Iterable[bytes]], file: BinaryIO) -> int:
        """Copy ``reader`` into ``file`` while counting progress; returns bytes copied."""
        self.copied = 0
        if hasattr(reader, "read"):
            chunks: Iterable[bytes] = iter(lambda: reader.read(_CHUNK), b"")
        else:
            chunks = reader
        for chunk in chunks:
            if not chunk:
                continue
            file.write(chunk)
            self.copied += len(chunk)
            self.write(chunk)
        return self.copied


@dataclass
class ProgressCounter:
    """Counts finished pieces of a multi-part download."""

    total: int
    file_name: str
    on_progress: Optional[Callable[[str, float], None]] = None
    downloaded: int = 0
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def increase(self) -> None:
        with self._lock:
            self.downloaded += 1
            done = self.downloaded
        if self.total > 0 and self.on_progress is not None:
            self.on_progress(self.file_name, done / self.total)


@dataclass
class ProgressBar:
    """One bar in the view, backed by a byte writer or a piece counter."""

    file_name: str
    writer: Optional[ProgressWriter] = None
    counter: Optional[ProgressCounter] = None
    status: str = Status.DOWNLOADING.value
    percent: float = 0.0
    width: int = DEFAULT_BAR_WIDTH

    def _render(self) -> str:
        percent = max(0.0, min(1.0, self.percent))
        text = f" {percent * 100:3.0f}%"
        bar_width = max(0, self.width - len(text))
        filled = int(bar_width * percent + 0.5)
        return "█" * filled + "░" * (bar_width - filled) + text


@dataclass(frozen=True)
class ProgressMsg:
    file_name: str
    ratio: float
    speed: int = 0
    dl_time: float = 0.0


@dataclass(frozen=True)
class ProgressStatusMsg:
    file_name: str
    status: str


@dataclass(frozen=True)
class ProgressErrMsg:
    err: BaseException


@dataclass(frozen=True)
class ProgressCompleteMsg:
    pass


@dataclass(frozen=True)
class WindowSizeMsg:
    width: int
    height: int = 0


def render_status(status: str) -> str:
    """Colour a known status label; unknown labels render as ''."""
    try:
        known = Status(status)
    except ValueError:
        return ""
    return _colored(known.value, known.color)


def _duration(seconds: int) -> str:
    if seconds == 0:
        return "0s"
    sign = "-" if seconds < 0 else ""
    seconds = abs(seconds)
    hours, rest = divmod(seconds, 3600)
    minutes, secs = divmod(rest, 60)
    if hours:
        return f"{sign}{hours}h{minutes}m{secs}s"
    if minutes:
        return f"{sign}{minutes}m{secs}s"
    return f"{sign}{secs}s"


def download_status(writer: ProgressWriter) -> str:
    """Describe downloaded size, total size, speed and remaining time."""
    return (
        f"{writer.downloaded / MIB:.2f} MiB/{writer.total / MIB:.2f} MiB "
        f"{format_size(writer.speed)} {_duration(int(writer.dl_time))}"
    )


Message = Union[ProgressMsg, ProgressStatusMsg, ProgressErrMsg, ProgressCompleteMsg, WindowSizeMsg]


class ProgressModel:
    """Holds progress bars and renders them as text."""

    def __init__(self) -> None:
        self.width = 0
        self.err: Optional[BaseException] = None
        self.bars: dict[str, ProgressBar] = {}
        self._lock = threading.Lock()

    def add(self, bar: ProgressBar) -> None:
        with self._lock:
            self.bars[bar.file_name] = bar

    def update(self, msg: Message) -> bool:
        """Apply a message; returns True when the display should stop."""
        if isinstance(msg, WindowSizeMsg):
            self.width = min(msg.width - PADDING * 2 - 4, MAX_WIDTH)
            return False
        if isinstance(msg, ProgressCompleteMsg):
            return True
        if isinstance(msg, ProgressErrMsg):
            self.err = msg.err
            return True
        with self._lock:
            bar = self.bars.get(msg.file_name)
        if bar is None:
            return False
        if isinstance(msg, ProgressMsg):
            bar.percent = msg.ratio
            if bar.writer is not None:
                bar.writer.speed = msg.speed
                bar.writer.dl_time = msg.dl_time
        elif isinstance(msg, ProgressStatusMsg):
            bar.status = msg.status
        return False

    def view(self) -> str:
        if self.err is not None:
            return f"下载出错: {self.err}\n"
        if self.width == 0:
            return ""

        pad = " " * PADDING
        with self._lock:
            bars = sorted(self.bars.values(), key=lambda b: b.file_name)
        lines = []
        for bar in bars:
            bar.width = self.width
            if bar.counter is not None:
                stats = f"{bar.counter.downloaded}/{bar.counter.total}"
            elif bar.writer is not None:
                stats = download_status(bar.writer)
            else:
                stats = ""
            line = pad.join(["", bar._render(), stats, bar.file_name, render_status(bar.status)])
            lines.append("\n" + line)
        return "".join(lines) + "\n\n\n" + _colored("按 Ctrl+C 退出\n\n", _HELP_COLOR)