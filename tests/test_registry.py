import pytest

from hanihunter.resolvers.base import ResolveOption, UnsupportedSiteError
from hanihunter.resolvers.registry import build_registry, resolve


def test_unsupported_site():
    with pytest.raises(UnsupportedSiteError):
        resolve("https://unknown.example.com/watch?v=1", ResolveOption())


def test_build_registry_rejects_unknown_host():
    with pytest.raises(UnsupportedSiteError):
        build_registry().resolve("https://other.example.com/x")


def test_hanime1me_is_registered():
    # The site's resolver rejects a link without a video id before any request.
    with pytest.raises(ValueError) as info:
        build_registry().resolve("https://hanime1.me/watch", ResolveOption())
    assert not isinstance(info.value, UnsupportedSiteError)


def test_hanimetv_is_registered():
    with pytest.raises(ValueError) as info:
        resolve("https://hanime.tv/other/path", ResolveOption())
    assert not isinstance(info.value, UnsupportedSiteError)