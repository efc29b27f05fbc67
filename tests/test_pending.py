from __future__ import annotations

from tuicord.pending import PendingSendTable


def test_rest_first_then_stream_is_noop() -> None:
    table = PendingSendTable()
    pending = table.register("c1")

    assert table.resolve(pending, "M1") is True
    assert table.consume_event("c1", "M1", pending.nonce) is False
    assert len(table) == 0


def test_stream_first_consumes_by_nonce() -> None:
    table = PendingSendTable()
    pending = table.register("c1")

    assert table.consume_event("c1", "M1", pending.nonce) is True
    assert pending.message_id == "M1"
    assert table.resolve(pending, "M1") is False
    assert len(table) == 0


def test_nonce_from_other_conversation_does_not_match() -> None:
    table = PendingSendTable()
    pending = table.register("c1")

    assert table.consume_event("c2", "M1", pending.nonce) is False
    assert len(table) == 1


def test_event_without_nonce_or_id_is_ignored() -> None:
    table = PendingSendTable()
    table.register("c1")

    assert table.consume_event("c1", None) is False
    assert table.consume_event("c1", "M9") is False
    assert len(table) == 1


def test_discard_and_clear() -> None:
    table = PendingSendTable()
    first = table.register("c1")
    table.register("c1")

    table.discard(first)
    assert len(table) == 1
    table.clear()
    assert len(table) == 0


def test_nonces_are_unique() -> None:
    table = PendingSendTable()
    nonces = {table.register("c1").nonce for _ in range(50)}
    assert len(nonces) == 50
