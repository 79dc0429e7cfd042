"""Tests for the Message model and its expiry predicates."""

from datetime import UTC, datetime, timedelta

from ephemera.messages.models import (
    MediaType,
    Message,
    conversation_key,
    from_iso,
    to_iso,
    ttl_deadline,
)

NOW = datetime(2026, 1, 5, 12, 0, tzinfo=UTC)


def _make_message(**kwargs) -> Message:
    defaults = {
        "id": "m1",
        "sender_id": "alice",
        "receiver_id": "bob",
        "content": "hello",
        "created_at": NOW,
    }
    defaults.update(kwargs)
    return Message(**defaults)


# -- conversation_key ----------------------------------------------------------


def test_conversation_key_is_order_independent() -> None:
    assert conversation_key("bob", "alice") == conversation_key("alice", "bob") == "alice:bob"


def test_message_conversation_key() -> None:
    assert _make_message(sender_id="zed", receiver_id="amy").conversation_key == "amy:zed"


# -- Timestamps ----------------------------------------------------------------


def test_iso_is_fixed_width_and_sortable() -> None:
    whole = to_iso(NOW)
    fractional = to_iso(NOW + timedelta(microseconds=5))
    assert len(whole) == len(fractional)
    assert whole < fractional


def test_iso_roundtrip_preserves_instant() -> None:
    assert from_iso(to_iso(NOW)) == NOW
    assert to_iso(None) is None
    assert from_iso(None) is None


def test_ttl_deadline_is_three_hours() -> None:
    assert ttl_deadline(NOW, 3) == NOW + timedelta(hours=3)


# -- Expiry predicates ---------------------------------------------------------


def test_plain_message_is_never_eligible() -> None:
    message = _make_message()
    assert not message.is_expiry_eligible(NOW + timedelta(days=365))
    assert not message.is_reapable(NOW + timedelta(days=365))


def test_ttl_boundary() -> None:
    message = _make_message(expires_at=NOW + timedelta(hours=3))
    assert not message.is_reapable(NOW + timedelta(hours=3) - timedelta(seconds=1))
    assert message.is_reapable(NOW + timedelta(hours=3))


def test_saved_suspends_every_predicate() -> None:
    message = _make_message(
        expires_at=NOW - timedelta(hours=1),
        is_view_once=True,
        is_viewed=True,
        is_saved=True,
    )
    assert not message.is_expiry_eligible(NOW)
    assert not message.is_reapable(NOW)


def test_viewed_view_once_respects_grace_for_reaper_only() -> None:
    message = _make_message(
        is_view_once=True,
        is_viewed=True,
        view_count=2,
        save_grace_until=NOW + timedelta(seconds=10),
    )
    assert message.is_expiry_eligible(NOW)
    assert not message.is_reapable(NOW)
    assert message.is_reapable(NOW + timedelta(seconds=11))


def test_content_ref_prefers_media() -> None:
    assert _make_message(media_ref="https://cdn/x.jpg").content_ref() == "https://cdn/x.jpg"
    assert _make_message().content_ref() == "hello"


# -- Serialization -------------------------------------------------------------


def test_row_roundtrip_keeps_reactions_and_media_type() -> None:
    message = _make_message(
        media_type=MediaType.SNAPSHOT,
        media_ref="https://cdn/snap.jpg",
        is_view_once=True,
        reactions={"bob": "🔥"},
        version=4,
    )
    restored = Message.from_row(message.to_row())
    assert restored == message
    assert restored.media_type is MediaType.SNAPSHOT


def test_to_dict_is_json_friendly() -> None:
    data = _make_message(expires_at=NOW).to_dict()
    assert data["media_type"] == "text"
    assert data["expires_at"] == to_iso(NOW)
    assert data["version"] == 1
