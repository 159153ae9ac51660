"""HTML parsing and tag lookup helpers."""

from __future__ import annotations

import re
from collections import deque
from collections.abc import Iterable, Mapping

from bs4 import BeautifulSoup, Tag

from .util import is_sub_slice


def parse_html(text: str | bytes) -> BeautifulSoup:
    """Parse an HTML document."""
    return BeautifulSoup(text, "html.parser")


def _attr_value(value) -> str:
    if isinstance(value, (list, tuple)):
        return " ".join(value)
    return str(value)


def _attr_pairs(tag: Tag) -> list[tuple[str, str]]:
    return [(key, _attr_value(value)) for key, value in tag.attrs.items()]


def find_tags(
    node: Tag,
    name: str,
    use_attrs: bool,
    attrs: Mapping[str, str] | Iterable[tuple[str, str]] | None,
) -> list[Tag]:
    """Find tags named ``name`` breadth-first, optionally requiring ``attrs``."""
    if isinstance(attrs, Mapping):
        wanted = list(attrs.items())
    else:
        wanted = list(attrs or ())

    found: list[Tag] = []
    queue: deque[Tag] = deque([node])
    while queue:
        current = queue.popleft()
        if current.name == name and (not use_attrs or is_sub_slice(_attr_pairs(current), wanted)):
            found.append(current)
        queue.extend(child for child in current.children if isinstance(child, Tag))
    return found


def find_by_regexp(doc: str, pattern: str) -> list[list[str]]:
    """Return every match as ``[whole, group1, group2, ...]``; absent groups are ''."""
    return [
        [match.group(0), *(group or "" for group in match.groups())]
        for match in re.finditer(pattern, doc)
    ]


def get_attr(node: Tag, name: str) -> str:
    """Return an attribute value, or '' when it is absent."""
    value = node.attrs.get(name)
    if value is None:
        return ""
    return _attr_value(value)