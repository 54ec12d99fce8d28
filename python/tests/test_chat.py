"""Tests for the chat core.

Covers:
- Sending: validation, participant checks, broadcast after commit
- Viewer-projected history and leave cuts
- Unread counts and read receipts
- The viewer's room list: hiding, preview, unread, ordering
- HTTP endpoints for history, room list and leave
"""

import pytest
from fastapi.testclient import TestClient

from talentlink.errors import ApiError, ApiErrorCode
from talentlink.services import chat, messages, rooms
from talentlink.services.live_bus import room_topic
from tests.factories import create_room, create_user
from tests.helpers import auth_headers, data_of, error_code_of


@pytest.fixture
def pair(db_session, frozen_clock):
    """Room between owner (uid a) and guest (uid b)."""
    a = create_user(db_session, "owner", name="Olivia", major="Design")
    b = create_user(db_session, "guest", name="Gabe", major="CS")
    room = create_room(db_session, a, b, post_ref=7)
    return room, a, b


def _contents(views) -> list[str]:
    return [v.content for v in views]


class TestSendText:
    def test_send_persists_and_returns_view(self, db_session, bus, pair):
        room, a, b = pair

        view = chat.send_text(db_session, bus, a, room.id, b, "hello")

        assert view.id is not None
        assert view.kind == "TEXT"
        assert view.linku_id is None
        assert view.linku_status is None
        assert (view.sender_uid, view.receiver_uid) == (a, b)

    @pytest.mark.parametrize("content", ["", "   ", "\n\t"])
    def test_blank_content_rejected(self, db_session, bus, pair, content):
        room, a, b = pair

        with pytest.raises(ApiError) as exc_info:
            chat.send_text(db_session, bus, a, room.id, b, content)
        assert exc_info.value.code == ApiErrorCode.E_INVALID_REQUEST

    def test_content_length_bounded(self, db_session, bus, pair):
        room, a, b = pair

        chat.send_text(db_session, bus, a, room.id, b, "x" * 2000)
        with pytest.raises(ApiError) as exc_info:
            chat.send_text(db_session, bus, a, room.id, b, "x" * 2001)
        assert exc_info.value.code == ApiErrorCode.E_INVALID_REQUEST

    def test_self_send_rejected(self, db_session, bus, pair):
        room, a, _ = pair

        with pytest.raises(ApiError) as exc_info:
            chat.send_text(db_session, bus, a, room.id, a, "me")
        assert exc_info.value.code == ApiErrorCode.E_SELF_SEND

    def test_outsider_rejected(self, db_session, bus, pair):
        room, a, b = pair
        outsider = create_user(db_session, "outsider")

        with pytest.raises(ApiError) as exc_info:
            chat.send_text(db_session, bus, outsider, room.id, b, "hi")
        assert exc_info.value.code == ApiErrorCode.E_NOT_PARTICIPANT

        with pytest.raises(ApiError) as exc_info:
            chat.send_text(db_session, bus, a, room.id, outsider, "hi")
        assert exc_info.value.code == ApiErrorCode.E_NOT_PARTICIPANT

    def test_unknown_room(self, db_session, bus, pair):
        _, a, b = pair

        with pytest.raises(ApiError) as exc_info:
            chat.send_text(db_session, bus, a, 999, b, "hi")
        assert exc_info.value.code == ApiErrorCode.E_ROOM_NOT_FOUND

    def test_broadcast_after_commit(self, db_session, bus, pair):
        """Subscribers receive the stored message, with its assigned id."""
        room, a, b = pair
        subscription = bus.subscribe(room_topic(room.id))

        view = chat.send_text(db_session, bus, a, room.id, b, "hello")

        events, dropped = subscription.drain()
        assert dropped == 0
        assert events == [view.to_wire()]
        assert events[0]["createdAt"].startswith("2026-03-02T10:00:00")

    def test_rejected_send_broadcasts_nothing(self, db_session, bus, pair):
        room, a, _ = pair
        subscription = bus.subscribe(room_topic(room.id))

        with pytest.raises(ApiError):
            chat.send_text(db_session, bus, a, room.id, a, "me")

        assert subscription.drain() == ([], 0)

    def test_created_at_never_goes_backwards(self, db_session, bus, pair, frozen_clock):
        room, a, b = pair
        first = chat.send_text(db_session, bus, a, room.id, b, "first")

        frozen_clock.set(9, 0)
        second = chat.send_text(db_session, bus, b, room.id, a, "second")

        assert second.created_at == first.created_at
        assert _contents(chat.get_history(db_session, a, room.id)) == ["first", "second"]


class TestHistoryAndLeave:
    def test_leave_truncates_viewer_only(self, db_session, bus, pair, frozen_clock):
        room, a, b = pair
        chat.send_text(db_session, bus, a, room.id, b, "m1")
        frozen_clock.set(10, 1)
        chat.send_text(db_session, bus, b, room.id, a, "m2")

        frozen_clock.set(10, 2)
        chat.leave_room(db_session, b, room.id)

        frozen_clock.set(10, 3)
        chat.send_text(db_session, bus, a, room.id, b, "m3")

        assert _contents(chat.get_history(db_session, b, room.id)) == ["m3"]
        assert _contents(chat.get_history(db_session, a, room.id)) == ["m1", "m2", "m3"]

    def test_history_right_after_leave_is_empty(self, db_session, bus, pair, frozen_clock):
        room, a, b = pair
        chat.send_text(db_session, bus, a, room.id, b, "m1")
        frozen_clock.advance(seconds=5)

        chat.leave_room(db_session, b, room.id)

        assert chat.get_history(db_session, b, room.id) == []

    def test_leave_with_clock_behind_latest_message(self, db_session, bus, pair, frozen_clock):
        """A leave never lands before a message that already exists."""
        room, a, b = pair
        chat.send_text(db_session, bus, a, room.id, b, "m1")

        frozen_clock.set(9, 0)
        chat.leave_room(db_session, b, room.id)

        assert chat.get_history(db_session, b, room.id) == []

    def test_each_leave_moves_the_cut(self, db_session, bus, pair, frozen_clock):
        room, a, b = pair
        chat.send_text(db_session, bus, a, room.id, b, "m1")
        frozen_clock.advance(minutes=1)
        chat.leave_room(db_session, b, room.id)
        frozen_clock.advance(minutes=1)
        chat.send_text(db_session, bus, a, room.id, b, "m2")
        frozen_clock.advance(minutes=1)
        chat.leave_room(db_session, b, room.id)
        frozen_clock.advance(minutes=1)
        chat.send_text(db_session, bus, a, room.id, b, "m3")

        assert _contents(chat.get_history(db_session, b, room.id)) == ["m3"]

    def test_history_only_grows_between_calls(self, db_session, bus, pair, frozen_clock):
        room, a, b = pair
        chat.send_text(db_session, bus, a, room.id, b, "m1")
        before = _contents(chat.get_history(db_session, b, room.id))

        frozen_clock.advance(seconds=1)
        chat.send_text(db_session, bus, b, room.id, a, "m2")
        after = _contents(chat.get_history(db_session, b, room.id))

        assert after[: len(before)] == before
        assert after == ["m1", "m2"]

    def test_message_in_same_tick_as_leave_stays_visible(
        self, db_session, bus, pair, frozen_clock
    ):
        """A reply sent at the very instant of a leave is after the cut."""
        room, a, b = pair
        chat.send_text(db_session, bus, a, room.id, b, "m1")
        chat.leave_room(db_session, b, room.id)

        reply = chat.send_text(db_session, bus, a, room.id, b, "m2")

        assert reply.created_at > frozen_clock.now
        assert _contents(chat.get_history(db_session, b, room.id)) == ["m2"]
        [card] = chat.list_my_rooms(db_session, b)
        assert card.last_message.content == "m2"

    def test_message_after_leave_with_clock_behind_stays_visible(
        self, db_session, bus, pair, frozen_clock
    ):
        room, a, b = pair
        frozen_clock.set(10, 5)
        chat.leave_room(db_session, b, room.id)

        frozen_clock.set(10, 0)
        chat.send_text(db_session, bus, a, room.id, b, "late clock")

        assert _contents(chat.get_history(db_session, b, room.id)) == ["late clock"]
        assert chat.unread_count(db_session, b, room.id) == 0

    def test_history_reads_under_room_lock(self, db_session, bus, pair, monkeypatch):
        """The room row is locked before messages are listed and marked read."""
        room, a, b = pair
        chat.send_text(db_session, bus, a, room.id, b, "hi")
        calls = []

        original_lock, original_list, original_mark = (
            rooms.lock_room,
            messages.list_after,
            messages.mark_read,
        )
        monkeypatch.setattr(
            rooms, "lock_room", lambda *args: calls.append("lock") or original_lock(*args)
        )
        monkeypatch.setattr(
            messages, "list_after", lambda *args: calls.append("list") or original_list(*args)
        )
        monkeypatch.setattr(
            messages, "mark_read", lambda *args: calls.append("mark") or original_mark(*args)
        )

        chat.get_history(db_session, b, room.id)

        assert calls == ["lock", "list", "mark"]

    def test_outsider_cannot_read_or_leave(self, db_session, pair):
        room, _, _ = pair
        outsider = create_user(db_session, "outsider")

        for call in (chat.get_history, chat.leave_room):
            with pytest.raises(ApiError) as exc_info:
                call(db_session, outsider, room.id)
            assert exc_info.value.code == ApiErrorCode.E_NOT_PARTICIPANT


class TestUnread:
    def test_unread_and_read_receipt(self, db_session, bus, pair):
        room, a, b = pair
        chat.send_text(db_session, bus, a, room.id, b, "hi")

        assert chat.unread_count(db_session, b, room.id) == 1
        assert chat.unread_count(db_session, a, room.id) == 0

        assert _contents(chat.get_history(db_session, b, room.id)) == ["hi"]

        assert chat.unread_count(db_session, b, room.id) == 0
        assert chat.unread_count(db_session, a, room.id) == 0

    def test_reading_does_not_touch_outbound(self, db_session, bus, pair):
        """The sender opening the room doesn't mark the receiver's copy read."""
        room, a, b = pair
        chat.send_text(db_session, bus, a, room.id, b, "hi")

        chat.get_history(db_session, a, room.id)

        assert chat.unread_count(db_session, b, room.id) == 1

    def test_unread_only_counts_after_cut(self, db_session, bus, pair, frozen_clock):
        room, a, b = pair
        chat.send_text(db_session, bus, a, room.id, b, "before")
        frozen_clock.advance(minutes=1)
        chat.leave_room(db_session, b, room.id)
        frozen_clock.advance(minutes=1)
        chat.send_text(db_session, bus, a, room.id, b, "after")

        assert chat.unread_count(db_session, b, room.id) == 1


class TestListMyRooms:
    def test_card_contents(self, db_session, bus, pair):
        room, a, b = pair
        chat.send_text(db_session, bus, a, room.id, b, "hi")
        chat.send_text(db_session, bus, a, room.id, b, "are you there?")

        [card] = chat.list_my_rooms(db_session, b)

        assert card.room_id == room.id
        assert card.other_user.uid == a
        assert card.other_user.name == "Olivia"
        assert card.other_user.major == "Design"
        assert card.last_message.content == "are you there?"
        assert card.unread == 2

    def test_room_without_messages_is_listed(self, db_session, pair):
        room, a, _ = pair

        [card] = chat.list_my_rooms(db_session, a)

        assert card.room_id == room.id
        assert card.last_message is None
        assert card.unread == 0

    def test_left_room_hidden_until_new_message(self, db_session, bus, pair, frozen_clock):
        room, a, b = pair
        chat.send_text(db_session, bus, a, room.id, b, "old")
        frozen_clock.advance(minutes=1)
        chat.leave_room(db_session, b, room.id)

        assert chat.list_my_rooms(db_session, b) == []
        assert len(chat.list_my_rooms(db_session, a)) == 1

        frozen_clock.advance(minutes=1)
        chat.send_text(db_session, bus, a, room.id, b, "new")

        [card] = chat.list_my_rooms(db_session, b)
        assert card.last_message.content == "new"
        assert card.unread == 1

    def test_left_empty_room_is_hidden(self, db_session, pair):
        room, a, _ = pair

        chat.leave_room(db_session, a, room.id)

        assert chat.list_my_rooms(db_session, a) == []

    def test_ordered_by_latest_activity(self, db_session, bus, pair, frozen_clock):
        room_ab, a, b = pair
        c = create_user(db_session, "c")
        d = create_user(db_session, "d")
        room_ac = create_room(db_session, c, a, post_ref=9)
        room_ad = create_room(db_session, d, a, post_ref=None)

        chat.send_text(db_session, bus, b, room_ab.id, a, "from b")
        frozen_clock.advance(minutes=5)
        chat.send_text(db_session, bus, c, room_ac.id, a, "from c")

        cards = chat.list_my_rooms(db_session, a)

        assert [card.room_id for card in cards] == [room_ac.id, room_ab.id, room_ad.id]


class TestChatEndpoints:
    def test_history_marks_read_and_leave(self, authenticated_client: TestClient, db_session, bus):
        a = create_user(db_session, "owner")
        b = create_user(db_session, "guest")
        room = create_room(db_session, a, b)
        chat.send_text(db_session, bus, a, room.id, b, "hi")

        cards = data_of(authenticated_client.get("/chat/my-rooms", headers=auth_headers("guest")))
        assert cards[0]["roomId"] == room.id
        assert cards[0]["unread"] == 1
        assert cards[0]["otherUser"]["handle"] == "owner"

        history = data_of(
            authenticated_client.get(
                f"/chat/rooms/{room.id}/messages", headers=auth_headers("guest")
            )
        )
        assert [m["content"] for m in history] == ["hi"]
        assert history[0]["kind"] == "TEXT"
        assert history[0]["senderUid"] == a

        cards = data_of(authenticated_client.get("/chat/my-rooms", headers=auth_headers("guest")))
        assert cards[0]["unread"] == 0

        left = authenticated_client.delete(
            f"/chat/rooms/{room.id}/leave", headers=auth_headers("guest")
        )
        assert data_of(left) == {"roomId": room.id, "left": True}

        cards = data_of(authenticated_client.get("/chat/my-rooms", headers=auth_headers("guest")))
        assert cards == []

    def test_outsider_gets_403(self, authenticated_client: TestClient, db_session):
        a = create_user(db_session, "owner")
        b = create_user(db_session, "guest")
        room = create_room(db_session, a, b)

        response = authenticated_client.get(
            f"/chat/rooms/{room.id}/messages", headers=auth_headers("mallory")
        )

        assert response.status_code == 403
        assert error_code_of(response) == "E_NOT_PARTICIPANT"
