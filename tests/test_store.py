from __future__ import annotations

import random

import pytest
from rich.text import Text

from tuicord.models import Attachment, Message, ProviderMessage
from tuicord.sanitize import ContentSanitizer, MappingResolver
from tuicord.store import (
    DELETED_MARKER,
    EMPTY_PLACEHOLDER,
    MessageStore,
    format_time,
    message_from_payload,
    system_message,
)

_SANITIZER = ContentSanitizer(MappingResolver(users={"123": "alice"}))


def _msg(message_id: str | None, ts: int, content: str = "x", **kwargs) -> Message:
    defaults = dict(
        id=message_id,
        author_name="bob",
        raw_content=content,
        rendered_content=_SANITIZER(content),
        timestamp_ms=ts,
        author_id="u-bob",
    )
    defaults.update(kwargs)
    return Message(**defaults)


def _plain(lines: list[str]) -> str:
    return "\n".join(Text.from_markup(line).plain for line in lines)


def test_history_then_duplicate_created_event_keeps_three() -> None:
    store = MessageStore(_SANITIZER)
    for message_id, ts in (("A", 1), ("B", 2), ("C", 3)):
        assert store.append(_msg(message_id, ts))

    assert store.append(_msg("B", 2)) is False
    assert [m.id for m in store] == ["A", "B", "C"]


def test_append_keeps_chronological_order() -> None:
    store = MessageStore(_SANITIZER)
    store.append(_msg("late", 30))
    store.append(_msg("early", 10))
    store.append(_msg("middle", 20))
    store.append(_msg("tie", 20))

    assert [m.id for m in store] == ["early", "middle", "tie", "late"]
    timestamps = [m.timestamp_ms for m in store]
    assert timestamps == sorted(timestamps)


@pytest.mark.parametrize("seed", range(20))
def test_shuffled_appends_stay_unique_and_ordered(seed: int) -> None:
    rng = random.Random(seed)
    batch = [_msg(f"m{rng.randrange(15)}", rng.randrange(50)) for _ in range(30)]
    batch += [_msg(None, rng.randrange(50)) for _ in range(10)]
    rng.shuffle(batch)

    store = MessageStore(_SANITIZER)
    for message in batch:
        store.append(message)

    ids = [m.id for m in store if m.id is not None]
    assert len(ids) == len(set(ids))
    assert set(ids) == {m.id for m in batch if m.id is not None}
    assert sum(1 for m in store if m.id is None) == 10
    timestamps = [m.timestamp_ms for m in store]
    assert timestamps == sorted(timestamps)


def test_system_messages_are_never_deduplicated() -> None:
    store = MessageStore(_SANITIZER)
    store.append(system_message("one", timestamp_ms=1))
    store.append(system_message("one", timestamp_ms=1))
    assert len(store) == 2


def test_apply_edit_resanitizes() -> None:
    store = MessageStore(_SANITIZER)
    store.append(_msg("A", 1, "before"))

    assert store.apply_edit("A", "<@123> **after**")
    assert store.get("A").rendered_content == "@alice after"
    assert store.apply_edit("missing", "x") is False


def test_delete_marks_and_keeps_reply_target() -> None:
    store = MessageStore(_SANITIZER)
    store.append(_msg("A", 1, "first post"))
    store.append(_msg("B", 2, "answer", reply_to_id="A"))

    assert store.apply_delete("A")
    assert store.is_deleted("A")
    assert store.resolve_reply("A") is not None

    rendered = _plain(store.render())
    assert DELETED_MARKER in rendered
    assert "↪ Replying to bob: first post" in rendered


def test_delete_unknown_id_is_noop() -> None:
    store = MessageStore(_SANITIZER)
    assert store.apply_delete("nope") is False


def test_reset_clears_everything() -> None:
    store = MessageStore(_SANITIZER)
    store.append(_msg("A", 1))
    store.apply_delete("A")
    store.reset()

    assert len(store) == 0
    assert not store.is_deleted("A")
    assert store.append(_msg("A", 1))


def test_find_by_prefix() -> None:
    store = MessageStore(_SANITIZER)
    store.append(_msg("1234", 1))
    store.append(_msg("1299", 2, is_attachment=True, attachment=Attachment(url="https://x/y.png")))

    assert store.find_by_prefix("12").id == "1234"
    assert store.find_by_prefix("12", attachments_only=True).id == "1299"
    assert store.find_by_prefix("9") is None


def test_render_prefixes_and_placeholders() -> None:
    store = MessageStore(_SANITIZER)
    store.append(_msg("A", 1, "", author_name="bob"))
    store.append(_msg("B", 2, "mine", is_own=True))
    store.append(system_message("Uploading file...", timestamp_ms=3))
    store.append(
        _msg(
            "C",
            4,
            "",
            is_attachment=True,
            attachment=Attachment(url="https://x/cat.png", filename="cat.png"),
        )
    )
    store.append(_msg("D", 5, "", sticker_name="wave"))

    rendered = _plain(store.render())
    assert EMPTY_PLACEHOLDER in rendered
    assert "You [" in rendered
    assert "System [" in rendered
    assert "Uploading file..." in rendered
    assert "[File: cat.png]" in rendered
    assert "[Sticker: wave]" in rendered
    assert "(A)" in rendered


def test_render_shows_media_placeholder_for_attachment_reply() -> None:
    store = MessageStore(_SANITIZER)
    store.append(_msg("A", 1, "", is_attachment=True, attachment=Attachment(url="https://x/a.png")))
    store.append(_msg("B", 2, "nice", reply_to_id="A"))

    assert "↪ Replying to bob: [Media]" in _plain(store.render())


def test_render_survives_hostile_content() -> None:
    store = MessageStore(_SANITIZER)
    store.append(_msg("A", 1, "[/red] [bold] \\", author_name="[red]evil"))

    rendered = _plain(store.render())
    assert "[red]evil" in rendered
    assert "[/red] [bold]" in rendered


def test_long_reply_preview_is_truncated() -> None:
    store = MessageStore(_SANITIZER)
    store.append(_msg("A", 1, "x" * 80))
    store.append(_msg("B", 2, "reply", reply_to_id="A"))

    preview_line = store.render()[3]
    assert Text.from_markup(preview_line).plain == "↪ Replying to bob: " + "x" * 30 + "..."


def test_message_from_payload_fills_defaults() -> None:
    payload = ProviderMessage(id="A", conversation_id="c1", content=None, timestamp_ms=None)
    message = message_from_payload(payload, own_user_id="me", sanitizer=_SANITIZER)

    assert message.author_name == "Unknown"
    assert message.raw_content == ""
    assert isinstance(message.timestamp_ms, int)
    assert message.is_own is False


def test_message_from_payload_uses_system_text_and_marks_own() -> None:
    payload = ProviderMessage(
        id="A",
        conversation_id="c1",
        author_id="me",
        author_name="Me",
        content="",
        timestamp_ms=5,
        system_text="Pinned a message.",
    )
    message = message_from_payload(payload, own_user_id="me", sanitizer=_SANITIZER)

    assert message.is_own
    assert message.rendered_content == "Pinned a message."


def test_format_time_falls_back() -> None:
    assert format_time(10**20) == "--:--"
