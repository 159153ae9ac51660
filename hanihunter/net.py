"""HTTP helpers built on requests."""

from __future__ import annotations

import urllib.request
import warnings
from collections.abc import Mapping
from functools import lru_cache

import requests
from bs4 import BeautifulSoup
from requests.structures import CaseInsensitiveDict

from .htmlutil import parse_html

TIMEOUT = 15 * 60

DEFAULT_HEADERS = {
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
    "Accept-Charset": "UTF-8,*;q=0.5",
    "Accept-Encoding": "gzip,deflate,sdch",
    "Accept-Language": "en-US,en;q=0.8",
    "User-Agent": (
        "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_13_6) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/69.0.3497.81 Safari/537.36"
    ),
}


class RequestError(Exception):
    """Raised when an HTTP request cannot be sent or answered."""


def system_proxies() -> dict[str, str]:
    """Return proxy settings from the environment, falling back to the system ones."""
    return dict(urllib.request.getproxies())


def new_session(verify: bool = True) -> requests.Session:
    """Create a session that honours proxy settings from the environment."""
    session = requests.Session()
    session.verify = verify
    session.trust_env = True
    return session


def get(
    session: requests.Session,
    url: str,
    headers: Mapping[str, str] | None = None,
) -> requests.Response:
    """Send a GET request; the caller closes the streamed response."""
    try:
        return session.get(url, headers=dict(headers or {}), timeout=TIMEOUT, stream=True)
    except (requests.RequestException, ValueError) as exc:
        raise RequestError(f"向 {url!r} 发送请求失败: {exc}") from exc


def get_html_page(
    session: requests.Session,
    url: str,
    headers: Mapping[str, str] | None = None,
) -> BeautifulSoup:
    """Fetch and parse an HTML page."""
    with get(session, url, headers) as response:
        try:
            content = response.content
        except requests.RequestException as exc:
            raise RequestError(f"读取 {url!r} 失败: {exc}") from exc
    return parse_html(content)


@lru_cache(maxsize=None)
def _shared_session() -> requests.Session:
    return new_session(verify=False)


def request(
    method: str,
    url: str,
    headers: Mapping[str, str] | None = None,
) -> requests.Response:
    """Send a request with browser-like default headers, overridden by ``headers``."""
    merged = CaseInsensitiveDict(DEFAULT_HEADERS)
    merged.update(headers or {})
    try:
        with warnings.catch_warnings():
            warnings.filterwarnings("ignore", message="Unverified HTTPS request")
            return _shared_session().request(
                method, url, headers=merged, timeout=TIMEOUT, stream=True
            )
    except (requests.RequestException, ValueError) as exc:
        raise RequestError(f"获取 HTTP 响应失败: {exc}") from exc