"""
Tests for the in-flight session registry.
"""

import re
from unittest.mock import patch

import pytest

from reklog.core.exceptions import UnknownSessionError
from reklog.core.registry import Session, SessionRegistry, generate_session_id


class TestSessionRegistry:
    """Test start/consume correlation."""

    def test_start_stores_uppercased_method(self) -> None:
        registry = SessionRegistry()
        session_id = registry.start("/api/users", "post")

        session = registry.consume(session_id)
        assert session.endpoint == "/api/users"
        assert session.method == "POST"
        assert session.session_id == session_id

    def test_default_method_is_get(self) -> None:
        registry = SessionRegistry()
        session = registry.consume(registry.start("/health"))

        assert session.method == "GET"

    def test_session_ids_unique(self) -> None:
        registry = SessionRegistry()
        ids = {registry.start("/x") for _ in range(1000)}

        assert len(ids) == 1000
        assert len(registry) == 1000

    def test_session_id_format(self) -> None:
        assert re.fullmatch(r"\d+_[0-9a-z]{9}", generate_session_id())

    def test_colliding_id_regenerated(self) -> None:
        """Test a generated id that is still live is never reused."""
        registry = SessionRegistry()
        with patch(
            "reklog.core.registry.generate_session_id",
            side_effect=["1_aaaaaaaaa", "1_aaaaaaaaa", "1_bbbbbbbbb"],
        ):
            first = registry.start("/a")
            second = registry.start("/b")

        assert first == "1_aaaaaaaaa"
        assert second == "1_bbbbbbbbb"

    def test_consume_is_destructive(self) -> None:
        registry = SessionRegistry()
        session_id = registry.start("/x")

        registry.consume(session_id)

        assert session_id not in registry
        with pytest.raises(UnknownSessionError) as exc_info:
            registry.consume(session_id)
        assert exc_info.value.session_id == session_id

    def test_consume_unknown(self) -> None:
        with pytest.raises(UnknownSessionError):
            SessionRegistry().consume("missing")

    def test_discard(self) -> None:
        registry = SessionRegistry()
        session_id = registry.start("/x")

        assert registry.discard(session_id) is True
        assert registry.discard(session_id) is False
        assert len(registry) == 0

    def test_orphans_persist(self) -> None:
        registry = SessionRegistry()
        kept = registry.start("/orphan")
        registry.consume(registry.start("/done"))

        assert list(registry._sessions) == [kept]


class TestSession:
    """Test elapsed time computation."""

    def test_elapsed_ms_truncates(self) -> None:
        session = Session("id", "/x", "GET", start_time=1_000_000)

        assert session.elapsed_ms(11_999_999) == 10

    def test_elapsed_ms_never_negative(self) -> None:
        session = Session("id", "/x", "GET", start_time=5_000_000)

        assert session.elapsed_ms(0) == 0

    def test_session_is_frozen(self) -> None:
        session = Session("id", "/x", "GET", start_time=0)

        with pytest.raises(AttributeError):
            session.endpoint = "/y"  # type: ignore[misc]
