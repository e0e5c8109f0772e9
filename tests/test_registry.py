from __future__ import annotations

import pytest

from core.errors import InvalidArgument
from core.registry import DeviceTokenRegistry, token_prefix
from fakes import FakeStore


def test_add_is_idempotent() -> None:
    store = FakeStore()
    registry = DeviceTokenRegistry(store)

    registry.add("u1", "tok-1")
    once = registry.list_tokens("u1")
    registry.add("u1", "tok-1")

    assert registry.list_tokens("u1") == once == {"tok-1"}


def test_remove_absent_token_succeeds() -> None:
    registry = DeviceTokenRegistry(FakeStore())

    registry.remove("u1", "never-added")

    assert registry.list_tokens("u1") == set()


def test_unknown_user_has_no_tokens() -> None:
    registry = DeviceTokenRegistry(FakeStore())

    assert registry.list_tokens("ghost") == set()
    assert registry.list_tokens("") == set()


def test_tokens_are_kept_per_user() -> None:
    registry = DeviceTokenRegistry(FakeStore())

    registry.add("u1", "phone")
    registry.add("u1", "tablet")
    registry.add("u2", "phone")
    registry.remove("u1", "phone")

    assert registry.list_tokens("u1") == {"tablet"}
    assert registry.list_tokens("u2") == {"phone"}


def test_blank_values_are_rejected() -> None:
    registry = DeviceTokenRegistry(FakeStore())

    with pytest.raises(InvalidArgument):
        registry.add("u1", "   ")
    with pytest.raises(InvalidArgument):
        registry.remove("", "tok")


def test_token_prefix_hides_most_of_the_token() -> None:
    assert token_prefix("abcdefghijklmnop") == "abcdefgh..."
    assert token_prefix("short") == "short"


def test_user_id_is_normalized_on_lookup() -> None:
    registry = DeviceTokenRegistry(FakeStore())

    registry.add(" u1 ", "tok")

    assert registry.list_tokens(" u1 ") == {"tok"}
    assert registry.list_tokens("u1") == {"tok"}
    assert registry.list_tokens("   ") == set()
