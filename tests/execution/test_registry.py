"""Tests for HandlerRegistry and the decorator API."""

import pytest

from backplane.core.errors import HandlerNotFoundError
from backplane.execution.registry import (
    HandlerRegistry,
    get_default_registry,
    register_handler,
    reset_default_registry,
)


@pytest.fixture(autouse=True)
def _clean_default_registry():
    reset_default_registry()
    yield
    reset_default_registry()


class TestHandlerRegistry:
    """Injectable registry."""

    def test_register_and_get(self):
        registry = HandlerRegistry()
        handler = lambda job: "ok"  # noqa: E731
        registry.register("verify_archive", handler, description="Verify checksums")
        assert registry.get("verify_archive") is handler
        assert registry.list_handlers() == [{"type": "verify_archive", "description": "Verify checksums"}]

    def test_missing_handler(self):
        registry = HandlerRegistry()
        registry.register("a", lambda job: None)
        with pytest.raises(HandlerNotFoundError, match="Available: \\['a'\\]"):
            registry.get("b")

    def test_unregister_and_clear(self):
        registry = HandlerRegistry()
        registry.register("a", lambda job: None)
        registry.register("b", lambda job: None)
        assert registry.unregister("a") is True
        assert registry.unregister("a") is False
        registry.clear()
        assert not registry.has("b")


class TestDecorator:
    """register_handler."""

    def test_registers_on_given_registry(self):
        registry = HandlerRegistry()

        @register_handler("prune_snapshots", registry=registry)
        def prune(job):
            """Drop expired snapshots."""
            return {"pruned": 3}

        assert registry.get("prune_snapshots") is prune
        assert registry.list_handlers()[0]["description"] == "Drop expired snapshots."

    def test_registers_on_default_registry(self):
        @register_handler("noop")
        def noop(job):
            return None

        assert get_default_registry().has("noop")
        reset_default_registry()
        assert not get_default_registry().has("noop")
