"""Download tasks managed by the web UI: requests, progress, settings and snapshots."""

from __future__ import annotations

import json
import threading
from collections import deque
from collections.abc import Mapping
from dataclasses import dataclass, fields, replace
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Optional, Union

import platformdirs

MAX_TASK_LOG_LINES = 2000
MAX_THREADS = 64
DEFAULT_THREADS = 20
DEFAULT_RETRIES = 10
DEFAULT_LOG_LEVEL = "info"

PROGRESS_EVENT_PREFIX = "@@progress "
PROGRESS_JSON_ENV = "HANI_PROGRESS_JSON"

_FILE_KEY_FALLBACK = "_task"
_ZERO_TIME = "0001-01-01T00:00:00Z"
_INT_RANGES = {
    "uint8": (0, 255),
    "int": (-(2**63), 2**63 - 1),
}

JsonInput = Union[str, bytes, bytearray, Mapping[str, Any], None]


class TaskStatus(str, Enum):
    """Lifecycle state of a download task."""

    QUEUED = "queued"
    RUNNING = "running"
    DONE = "done"
    ERROR = "error"
    CANCELED = "canceled"

    @property
    def active(self) -> bool:
        return self in (TaskStatus.QUEUED, TaskStatus.RUNNING)


def _now() -> datetime:
    return datetime.now().astimezone()


def _format_time(moment: Optional[datetime]) -> str:
    return _ZERO_TIME if moment is None else moment.isoformat()


def _load_json(data: JsonInput, *, first_value_only: bool = False) -> Any:
    if data is None or isinstance(data, Mapping):
        return data
    if isinstance(data, (bytes, bytearray)):
        data = bytes(data).decode("utf-8", errors="replace")
    if first_value_only:
        decoder = json.JSONDecoder()
        start = len(data) - len(data.lstrip())
        value, _ = decoder.raw_decode(data, start)
        return value
    return json.loads(data)


def _coerce(kind: str, value: Any, name: str) -> Any:
    if kind == "str" and isinstance(value, str):
        return value
    if kind == "bool" and isinstance(value, bool):
        return value
    if kind == "float" and isinstance(value, (int, float)) and not isinstance(value, bool):
        return float(value)
    if kind in _INT_RANGES and isinstance(value, int) and not isinstance(value, bool):
        low, high = _INT_RANGES[kind]
        if low <= value <= high:
            return value
    raise ValueError(f"invalid value for field {name!r}: {value!r}")


def _decode_object(
    obj: Any, spec: Mapping[str, tuple[str, str]], *, strict: bool
) -> dict[str, Any]:
    """Map JSON keys (matched case-insensitively) onto attribute values."""
    if obj is None:
        return {}
    if not isinstance(obj, Mapping):
        raise ValueError("expected a JSON object")
    by_lower = {name.lower(): entry for name, entry in spec.items()}
    values: dict[str, Any] = {}
    for key, value in obj.items():
        entry = spec.get(key) or by_lower.get(str(key).lower())
        if entry is None:
            if strict:
                raise ValueError(f"unknown field {key!r}")
            continue
        if value is None:
            continue
        attr, kind = entry
        values[attr] = _coerce(kind, value, key)
    return values


_REQUEST_FIELDS = {
    "url": ("url", "str"),
    "outputDir": ("output_dir", "str"),
    "workDir": ("work_dir", "str"),
    "quality": ("quality", "str"),
    "retry": ("retry", "uint8"),
    "threads": ("threads", "uint8"),
    "timeoutSec": ("timeout_sec", "int"),
    "info": ("info", "bool"),
    "lowQuality": ("low_quality", "bool"),
    "series": ("series", "bool"),
    "logLevel": ("log_level", "str"),
}

_SETTINGS_FIELDS = {
    "outputDir": ("output_dir", "str"),
    "workDir": ("work_dir", "str"),
    "quality": ("quality", "str"),
    "retry": ("retry", "uint8"),
    "threads": ("threads", "uint8"),
    "timeoutSec": ("timeout_sec", "int"),
    "info": ("info", "bool"),
    "series": ("series", "bool"),
    "lowQuality": ("low_quality", "bool"),
    "logLevel": ("log_level", "str"),
}

_PROGRESS_FIELDS = {
    "file": ("file", "str"),
    "ratio": ("ratio", "float"),
    "percent": ("percent", "int"),
    "status": ("status", "str"),
    "speed": ("speed", "int"),
    "remainingSec": ("remaining_s", "int"),
    "downloaded": ("downloaded", "int"),
    "total": ("total", "int"),
}


@dataclass
class DownloadRequest:
    """Parameters of one download task as submitted by the browser."""

    url: str = ""
    output_dir: str = ""
    work_dir: str = ""
    quality: str = ""
    retry: int = 0
    threads: int = 0
    timeout_sec: int = 0
    info: bool = False
    low_quality: bool = False
    series: bool = False
    log_level: str = ""

    @classmethod
    def from_json(cls, data: JsonInput) -> DownloadRequest:
        """Decode a request body; unknown fields and mistyped values raise ValueError."""
        obj = _load_json(data, first_value_only=True)
        return cls(**_decode_object(obj, _REQUEST_FIELDS, strict=True))


@dataclass(frozen=True)
class ProgressLine:
    """A machine-readable progress event printed by a download process."""

    file: str = ""
    ratio: float = 0.0
    percent: int = 0
    status: str = ""
    speed: int = 0
    remaining_s: int = 0
    downloaded: int = 0
    total: int = 0

    @classmethod
    def _from_json(cls, data: JsonInput) -> ProgressLine:
        return cls(**_decode_object(_load_json(data), _PROGRESS_FIELDS, strict=False))


@dataclass
class WebUISettings:
    """Form defaults remembered between web UI sessions."""

    output_dir: str = ""
    work_dir: str = ""
    quality: str = ""
    retry: int = 0
    threads: int = 0
    timeout_sec: int = 0
    info: bool = False
    series: bool = False
    low_quality: bool = False
    log_level: str = ""

    @classmethod
    def from_json(cls, data: JsonInput) -> WebUISettings:
        return cls(**_decode_object(_load_json(data), _SETTINGS_FIELDS, strict=False))

    def to_json(self) -> str:
        """Serialise with two-space indentation and HTML-safe escaping."""
        payload = {name: getattr(self, attr) for name, (attr, _) in _SETTINGS_FIELDS.items()}
        text = json.dumps(payload, indent=2, ensure_ascii=False)
        for raw, escaped in (
            ("&", "\\u0026"),
            ("<", "\\u003c"),
            (">", "\\u003e"),
            ("\u2028", "\\u2028"),
            ("\u2029", "\\u2029"),
        ):
            text = text.replace(raw, escaped)
        return text


class DownloadTask:
    """State of one download task, safe to update from several threads."""

    def __init__(self, task_id: int, request: DownloadRequest) -> None:
        self.id = task_id
        self.request = request
        self.created_at = _now()
        self.started_at: Optional[datetime] = None
        self.finished_at: Optional[datetime] = None
        self.cancelled = threading.Event()

        self._status = TaskStatus.QUEUED
        self._error = ""
        self._exit_code = 0
        self._logs: deque[str] = deque(maxlen=MAX_TASK_LOG_LINES)
        self._ratio = 0.0
        self._stage = "queued"
        self._file = ""
        self._speed = 0
        self._remaining = 0
        self._file_progress: dict[str, float] = {}
        self._cancelable = True
        self._lock = threading.Lock()

    @property
    def status(self) -> TaskStatus:
        with self._lock:
            return self._status

    def apply_progress(self, event: ProgressLine) -> None:
        """Fold a progress event into the task's overall progress."""
        with self._lock:
            ratio = event.ratio
            if ratio <= 0 and event.percent > 0:
                ratio = event.percent / 100
            ratio = min(max(ratio, 0.0), 1.0)

            key = event.file.strip() or _FILE_KEY_FALLBACK
            if ratio > 0:
                self._file_progress[key] = ratio

            if self._file_progress:
                self._ratio = sum(self._file_progress.values()) / len(self._file_progress)
            self._ratio = min(max(self._ratio, 0.0), 1.0)

            if event.status:
                self._stage = event.status
            if event.speed > 0:
                self._speed = event.speed
            if event.remaining_s >= 0:
                self._remaining = event.remaining_s
            if event.file.strip():
                self._file = event.file

    def append_log(self, line: str) -> None:
        """Store a trimmed log line; blank lines are dropped, the oldest go first."""
        trimmed = line.strip()
        if not trimmed:
            return
        with self._lock:
            self._logs.append(trimmed)

    def mark_running(self) -> None:
        with self._lock:
            self._status = TaskStatus.RUNNING
            self.started_at = _now()
            if self._stage in ("", "queued"):
                self._stage = "downloading"

    def finish(self, status: Union[TaskStatus, str], exit_code: int, message: str) -> None:
        status = TaskStatus(status)
        with self._lock:
            self._status = status
            self._exit_code = exit_code
            self._error = message.strip()
            self.finished_at = _now()
            self._cancelable = False
            if status is TaskStatus.DONE:
                self._ratio = 1.0
                self._stage = "complete"
                self._remaining = 0
            elif status is TaskStatus.ERROR:
                self._stage = "error"
            elif status is TaskStatus.CANCELED:
                self._stage = "canceled"

    def cancel_if_active(self) -> bool:
        """Request cancellation; returns False when the task is no longer active."""
        with self._lock:
            if not self._status.active or not self._cancelable:
                return False
            self.cancelled.set()
            return True

    def snapshot(self, include_logs: bool = False) -> dict[str, Any]:
        """Return the task as the JSON object served by the API."""
        with self._lock:
            req = self.request
            result: dict[str, Any] = {
                "id": self.id,
                "url": req.url,
                "outputDir": req.output_dir,
                "workDir": req.work_dir,
                "quality": req.quality,
                "retry": req.retry,
                "threads": req.threads,
                "timeoutSec": req.timeout_sec,
                "info": req.info,
                "lowQuality": req.low_quality,
                "series": req.series,
                "logLevel": req.log_level,
                "status": self._status.value,
            }
            if self._error:
                result["error"] = self._error
            if self._exit_code:
                result["exitCode"] = self._exit_code
            result["progress"] = self._ratio
            result["progressPercent"] = int(self._ratio * 100 + 0.5)
            result["progressStage"] = self._stage
            if self._file:
                result["progressFile"] = self._file
            if self._speed:
                result["progressSpeed"] = self._speed
            if self._remaining:
                result["progressRemainingSec"] = self._remaining
            result["createdAt"] = _format_time(self.created_at)
            result["startedAt"] = _format_time(self.started_at)
            result["finishedAt"] = _format_time(self.finished_at)
            if include_logs and self._logs:
                result["logs"] = list(self._logs)
            return result


def parse_progress_line(task: Optional[DownloadTask], line: str) -> bool:
    """Apply ``line`` to ``task`` if it is a progress event; returns whether it was."""
    if task is None:
        return False
    line = line.strip()
    if not line.startswith(PROGRESS_EVENT_PREFIX):
        return False
    payload = line[len(PROGRESS_EVENT_PREFIX):].strip()
    if not payload:
        return False
    try:
        event = ProgressLine._from_json(payload)
    except ValueError:
        return False
    task.apply_progress(event)
    return True


def build_command_args(request: DownloadRequest) -> list[str]:
    """Build the command-line arguments that run the download for ``request``."""
    args: list[str] = []
    if request.log_level:
        args += ["--log-level", request.log_level]
    args.append("dl")
    if request.output_dir:
        args += ["-o", request.output_dir]
    if request.quality:
        args += ["-q", request.quality]
    if request.info:
        args.append("-i")
    if request.low_quality:
        args.append("--low-quality")
    if request.series:
        args.append("-s")
    args += ["--retry", str(request.retry)]
    args += ["--threads", str(request.threads)]
    args.append(request.url)
    return args


def normalize_settings(settings: WebUISettings, fallback_work_dir: str) -> WebUISettings:
    """Fill in missing settings and bring values into their allowed ranges."""
    threads = settings.threads or DEFAULT_THREADS
    return replace(
        settings,
        output_dir=settings.output_dir if settings.output_dir.strip() else fallback_work_dir,
        work_dir=settings.work_dir if settings.work_dir.strip() else fallback_work_dir,
        quality=settings.quality.strip(),
        retry=settings.retry or DEFAULT_RETRIES,
        threads=min(threads, MAX_THREADS),
        timeout_sec=max(settings.timeout_sec, 0),
        log_level=settings.log_level if settings.log_level.strip() else DEFAULT_LOG_LEVEL,
    )


def default_settings_path() -> Path:
    """Return where the web UI keeps its settings file."""
    config_dir = platformdirs.user_config_dir("hanime-hunter", appauthor=False, roaming=True)
    return Path(config_dir) / "webui-settings.json"


def load_settings(path: Union[str, Path]) -> WebUISettings:
    """Read settings from ``path``; a missing file yields empty settings."""
    try:
        data = Path(path).read_bytes()
    except FileNotFoundError:
        return WebUISettings()
    return WebUISettings.from_json(data)


def save_settings(path: Union[str, Path], settings: WebUISettings) -> None:
    """Write settings to ``path``, creating its directory if needed."""
    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_text(settings.to_json(), encoding="utf-8")


__all__ = [name for name in (
    "TaskStatus",
    "DownloadRequest",
    "ProgressLine",
    "WebUISettings",
    "DownloadTask",
    "parse_progress_line",
    "build_command_args",
    "normalize_settings",
    "default_settings_path",
    "load_settings",
    "save_settings",
)]

_ = fields  # dataclass introspection is available to callers through dataclasses