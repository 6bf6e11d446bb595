import threading

import pytest

from packrt.registry import (
    Registry,
    RuntimeAPIError,
    get_global,
    get_last_error,
    list_global_names,
    register_global,
    remove_global,
    set_last_error,
)


def _double(x):
    return x * 2


def _triple(x):
    return x * 3


def test_register_and_get():
    reg = Registry()
    reg.register("f", _double)
    assert reg.get("f") is _double
    assert reg.get("f")(4) == 8


def test_get_missing_returns_none():
    reg = Registry()
    assert reg.get("absent") is None


def test_duplicate_registration_raises():
    reg = Registry()
    reg.register("f", _double)
    with pytest.raises(RuntimeAPIError, match="already registered"):
        reg.register("f", _triple)
    assert reg.get("f") is _double


def test_override_replaces():
    reg = Registry()
    reg.register("f", _double)
    reg.register("f", _triple, override=True)
    assert reg.get("f") is _triple


def test_remove():
    reg = Registry()
    reg.register("f", _double)
    assert reg.remove("f") is True
    assert reg.remove("f") is False
    assert reg.get("f") is None


def test_list_names():
    reg = Registry()
    reg.register("a", _double)
    reg.register("b", _triple)
    assert sorted(reg.list_names()) == ["a", "b"]
    assert "a" in reg
    assert len(reg) == 2


def test_global_registry_round_trip():
    name = "tests.registry.global_double"
    register_global(name, _double)
    try:
        assert get_global(name) is _double
        assert name in list_global_names()
        with pytest.raises(RuntimeAPIError):
            register_global(name, _triple)
    finally:
        assert remove_global(name) is True
    assert get_global(name) is None


def test_error_sets_last_error():
    reg = Registry()
    reg.register("dup", _double)
    with pytest.raises(RuntimeAPIError) as info:
        reg.register("dup", _double)
    assert get_last_error() == str(info.value)


def test_last_error_is_thread_local():
    set_last_error("main thread message")
    seen = []

    def worker():
        seen.append(get_last_error())
        set_last_error("worker message")
        seen.append(get_last_error())

    t = threading.Thread(target=worker)
    t.start()
    t.join()
    assert seen == ["", "worker message"]
    assert get_last_error() == "main thread message"