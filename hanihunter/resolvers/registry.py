"""The registry of all site resolvers."""

from __future__ import annotations

from functools import lru_cache

from .base import HAnime, ResolveOption, ResolverRegistry
from .hanime1me import SITE as HANIME1ME_SITE
from .hanime1me import Hanime1meResolver
from .hanimetv import SITE as HANIMETV_SITE
from .hanimetv import HanimeTvResolver


def build_registry() -> ResolverRegistry:
    """Create a registry holding every supported site."""
    registry = ResolverRegistry()
    registry.register(HANIME1ME_SITE, Hanime1meResolver())
    registry.register(HANIMETV_SITE, HanimeTvResolver())
    return registry


@lru_cache(maxsize=None)
def _default_registry() -> ResolverRegistry:
    return build_registry()


def resolve(url: str, option: ResolveOption | None = None) -> list[HAnime]:
    """Resolve ``url`` with the resolver registered for its host."""
    return _default_registry().resolve(url, option)