"""Tests for the LinkU core.

Covers:
- propose/accept/reject/review transitions and the cards they write
- Invitee-only authorization and conflicting transitions
- Room state view (newest ACCEPTED, else newest PENDING)
- Reviews: validation, uniqueness, listing and deletion
- Rating aggregation and the completed-LinkU list
- HTTP endpoints
"""

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm.exc import StaleDataError

from talentlink.db.models import LinkuConnection, MessageKind
from talentlink.errors import ApiError, ApiErrorCode
from talentlink.services import chat, linku, linku_store
from talentlink.services.live_bus import room_topic
from tests.factories import create_room, create_user
from tests.helpers import auth_headers, data_of, error_code_of


@pytest.fixture
def pair(db_session, frozen_clock):
    """Room between proposer (uid a) and invitee (uid b), post 7."""
    a = create_user(db_session, "proposer", name="Pia", major="Design")
    b = create_user(db_session, "invitee", name="Ivan", major="CS")
    room = create_room(db_session, a, b, post_ref=7)
    return room, a, b


def _propose(db, bus, catalog, room, a, b, **kwargs) -> int:
    return linku.propose(db, bus, catalog, a, room.id, b, **kwargs).connection_id


def _complete(db, bus, catalog, room, a, b, kindness=5) -> int:
    connection_id = _propose(db, bus, catalog, room, a, b)
    linku.accept(db, bus, b, connection_id)
    linku.write_review(db, bus, b, room.id, "GOOD", kindness, "good")
    return connection_id


def _connection(db, connection_id) -> LinkuConnection:
    db.expire_all()
    return db.get(LinkuConnection, connection_id)


class TestHappyPath:
    def test_propose_accept_review(self, db_session, bus, post_catalog, pair, frozen_clock):
        room, a, b = pair
        subscription = bus.subscribe(room_topic(room.id))

        state = linku.propose(db_session, bus, post_catalog, a, room.id, b)
        assert state.status == "PENDING"
        assert not state.linked

        [card] = subscription.drain()[0]
        assert card["kind"] == MessageKind.LINKU_PROPOSE.value
        assert (card["senderUid"], card["receiverUid"]) == (a, b)
        assert card["linkuStatus"] == "PENDING"
        assert card["linkuId"] == state.connection_id
        assert card["content"] == linku.PROPOSE_DEFAULT_TEXT

        frozen_clock.advance(days=1)
        accepted = linku.accept(db_session, bus, b, state.connection_id)
        assert accepted.linked
        assert accepted.can_review

        [card] = subscription.drain()[0]
        assert card["kind"] == MessageKind.LINKU_ACCEPT.value
        assert (card["senderUid"], card["receiverUid"]) == (b, a)
        assert card["linkuStatus"] == "ACCEPTED"

        assert linku.get_state(db_session, b, room.id).can_review
        proposer_view = linku.get_state(db_session, a, room.id)
        assert proposer_view.linked
        assert not proposer_view.can_review

        frozen_clock.advance(days=2)
        review = linku.write_review(db_session, bus, b, room.id, "GOOD", 5, "good")
        assert review.kindness_score == 5
        assert review.relation_rating == "GOOD"
        assert review.reviewer_name == "Ivan"
        assert review.created_at == "2026-03-05 10:00"

        [card] = subscription.drain()[0]
        assert card["kind"] == MessageKind.REVIEW_NOTICE.value
        assert (card["senderUid"], card["receiverUid"]) == (b, a)
        assert card["linkuStatus"] is None
        assert card["content"] == "Ivan left a review."

        connection = _connection(db_session, state.connection_id)
        assert connection.completed
        assert connection.status == "ACCEPTED"

        summary = linku.rating_summary(db_session, a)
        assert summary.average_score == 5.0
        assert summary.review_count == 1
        assert summary.accepted_count == 1
        assert summary.ongoing_count == 0

        assert not linku.get_state(db_session, b, room.id).can_review

    def test_history_shows_current_status_on_cards(self, db_session, bus, post_catalog, pair):
        room, a, b = pair
        connection_id = _propose(db_session, bus, post_catalog, room, a, b)
        linku.accept(db_session, bus, b, connection_id)

        history = chat.get_history(db_session, a, room.id)

        assert [m.kind for m in history] == ["LINKU_PROPOSE", "LINKU_ACCEPT"]
        assert {m.linku_status for m in history} == {"ACCEPTED"}
        assert {m.linku_id for m in history} == {connection_id}

    def test_custom_message_and_post(self, db_session, bus, post_catalog, pair):
        room, a, b = pair

        connection_id = _propose(
            db_session, bus, post_catalog, room, a, b, message="Team up?", post_ref=9
        )

        assert _connection(db_session, connection_id).post_ref == 9
        assert chat.get_history(db_session, b, room.id)[0].content == "Team up?"

    def test_post_defaults_to_room_post(self, db_session, bus, post_catalog, pair):
        room, a, b = pair

        connection_id = _propose(db_session, bus, post_catalog, room, a, b)

        assert _connection(db_session, connection_id).post_ref == 7


class TestProposeValidation:
    def test_self_proposal(self, db_session, bus, post_catalog, pair):
        room, a, _ = pair

        with pytest.raises(ApiError) as exc_info:
            linku.propose(db_session, bus, post_catalog, a, room.id, a)
        assert exc_info.value.code == ApiErrorCode.E_INVALID_REQUEST

    def test_target_outside_room(self, db_session, bus, post_catalog, pair):
        room, a, _ = pair
        outsider = create_user(db_session, "outsider")

        with pytest.raises(ApiError) as exc_info:
            linku.propose(db_session, bus, post_catalog, a, room.id, outsider)
        assert exc_info.value.code == ApiErrorCode.E_NOT_PARTICIPANT

    def test_unknown_post(self, db_session, bus, post_catalog, pair):
        room, a, b = pair

        with pytest.raises(ApiError) as exc_info:
            linku.propose(db_session, bus, post_catalog, a, room.id, b, post_ref=404)
        assert exc_info.value.code == ApiErrorCode.E_NOT_FOUND
        assert linku.get_state(db_session, a, room.id).connection_id is None


class TestTransitions:
    def test_requester_cannot_accept(self, db_session, bus, post_catalog, pair):
        room, a, b = pair
        connection_id = _propose(db_session, bus, post_catalog, room, a, b)

        with pytest.raises(ApiError) as exc_info:
            linku.accept(db_session, bus, a, connection_id)

        assert exc_info.value.code == ApiErrorCode.E_NOT_AUTHORIZED
        assert _connection(db_session, connection_id).status == "PENDING"

    def test_requester_cannot_reject(self, db_session, bus, post_catalog, pair):
        room, a, b = pair
        connection_id = _propose(db_session, bus, post_catalog, room, a, b)

        with pytest.raises(ApiError) as exc_info:
            linku.reject(db_session, bus, a, connection_id)
        assert exc_info.value.code == ApiErrorCode.E_NOT_AUTHORIZED

    def test_unknown_connection(self, db_session, bus, pair):
        _, _, b = pair

        with pytest.raises(ApiError) as exc_info:
            linku.accept(db_session, bus, b, 999)
        assert exc_info.value.code == ApiErrorCode.E_LINKU_NOT_FOUND

    def test_reproposal_after_rejection(self, db_session, bus, post_catalog, pair, frozen_clock):
        room, a, b = pair
        first = _propose(db_session, bus, post_catalog, room, a, b)
        rejected = linku.reject(db_session, bus, b, first)
        assert rejected.status == "REJECTED"
        assert not rejected.linked

        assert linku.get_state(db_session, a, room.id).connection_id is None

        frozen_clock.advance(minutes=1)
        second = _propose(db_session, bus, post_catalog, room, a, b)

        state = linku.get_state(db_session, b, room.id)
        assert second != first
        assert state.connection_id == second
        assert state.status == "PENDING"
        assert _connection(db_session, first).status == "REJECTED"

        kinds = [m.kind for m in chat.get_history(db_session, a, room.id)]
        assert kinds == ["LINKU_PROPOSE", "LINKU_REJECT", "LINKU_PROPOSE"]

    def test_accept_after_reject_conflicts(self, db_session, bus, post_catalog, pair):
        room, a, b = pair
        connection_id = _propose(db_session, bus, post_catalog, room, a, b)
        linku.reject(db_session, bus, b, connection_id)

        with pytest.raises(ApiError) as exc_info:
            linku.accept(db_session, bus, b, connection_id)
        assert exc_info.value.code == ApiErrorCode.E_CONFLICT

    def test_reject_after_accept_conflicts(self, db_session, bus, post_catalog, pair):
        room, a, b = pair
        connection_id = _propose(db_session, bus, post_catalog, room, a, b)
        linku.accept(db_session, bus, b, connection_id)

        with pytest.raises(ApiError) as exc_info:
            linku.reject(db_session, bus, b, connection_id)

        assert exc_info.value.code == ApiErrorCode.E_CONFLICT
        assert _connection(db_session, connection_id).status == "ACCEPTED"

    def test_reaccept_keeps_first_accepted_at(
        self, db_session, bus, post_catalog, pair, frozen_clock
    ):
        room, a, b = pair
        connection_id = _propose(db_session, bus, post_catalog, room, a, b)
        linku.accept(db_session, bus, b, connection_id)
        first_accepted_at = _connection(db_session, connection_id).accepted_at

        frozen_clock.advance(hours=3)
        state = linku.accept(db_session, bus, b, connection_id)

        assert state.linked
        assert _connection(db_session, connection_id).accepted_at == first_accepted_at
        kinds = [m.kind for m in chat.get_history(db_session, a, room.id)]
        assert kinds == ["LINKU_PROPOSE", "LINKU_ACCEPT", "LINKU_ACCEPT"]

    def test_accept_after_completion_conflicts(self, db_session, bus, post_catalog, pair):
        room, a, b = pair
        connection_id = _complete(db_session, bus, post_catalog, room, a, b)

        with pytest.raises(ApiError) as exc_info:
            linku.accept(db_session, bus, b, connection_id)

        assert exc_info.value.code == ApiErrorCode.E_CONFLICT
        assert _connection(db_session, connection_id).completed

    def test_concurrent_change_maps_to_conflict(
        self, db_session, bus, post_catalog, pair, monkeypatch
    ):
        room, a, b = pair
        connection_id = _propose(db_session, bus, post_catalog, room, a, b)

        def stale(db, cid):
            raise StaleDataError("version mismatch")

        monkeypatch.setattr(linku_store, "lock_connection", stale)

        with pytest.raises(ApiError) as exc_info:
            linku.accept(db_session, bus, b, connection_id)
        assert exc_info.value.code == ApiErrorCode.E_CONFLICT

    def test_failed_transition_broadcasts_nothing(self, db_session, bus, post_catalog, pair):
        room, a, b = pair
        connection_id = _propose(db_session, bus, post_catalog, room, a, b)
        subscription = bus.subscribe(room_topic(room.id))

        with pytest.raises(ApiError):
            linku.accept(db_session, bus, a, connection_id)

        assert subscription.drain() == ([], 0)


class TestReviews:
    def test_duplicate_review_rejected(self, db_session, bus, post_catalog, pair):
        room, a, b = pair
        _complete(db_session, bus, post_catalog, room, a, b)

        with pytest.raises(ApiError) as exc_info:
            linku.write_review(db_session, bus, b, room.id, "BEST", 4)
        assert exc_info.value.code == ApiErrorCode.E_ALREADY_REVIEWED

    def test_review_requires_accepted_linku(self, db_session, bus, post_catalog, pair):
        room, a, b = pair
        _propose(db_session, bus, post_catalog, room, a, b)

        with pytest.raises(ApiError) as exc_info:
            linku.write_review(db_session, bus, b, room.id, "GOOD", 5)
        assert exc_info.value.code == ApiErrorCode.E_NO_ACTIVE_LINKU

    def test_only_invitee_reviews(self, db_session, bus, post_catalog, pair):
        room, a, b = pair
        connection_id = _propose(db_session, bus, post_catalog, room, a, b)
        linku.accept(db_session, bus, b, connection_id)

        with pytest.raises(ApiError) as exc_info:
            linku.write_review(db_session, bus, a, room.id, "GOOD", 5)
        assert exc_info.value.code == ApiErrorCode.E_NOT_AUTHORIZED

    @pytest.mark.parametrize(
        "relation,kindness,content",
        [("MEH", 3, ""), ("GOOD", 0, ""), ("GOOD", 6, ""), ("GOOD", 3, "x" * 1001)],
    )
    def test_invalid_review(self, db_session, bus, post_catalog, pair, relation, kindness, content):
        room, a, b = pair
        connection_id = _propose(db_session, bus, post_catalog, room, a, b)
        linku.accept(db_session, bus, b, connection_id)

        with pytest.raises(ApiError) as exc_info:
            linku.write_review(db_session, bus, b, room.id, relation, kindness, content)

        assert exc_info.value.code == ApiErrorCode.E_INVALID_REQUEST
        assert not _connection(db_session, connection_id).completed

    def test_review_targets_latest_accepted(
        self, db_session, bus, post_catalog, pair, frozen_clock
    ):
        """A second LinkU in the same room can be reviewed after the first."""
        room, a, b = pair
        first = _complete(db_session, bus, post_catalog, room, a, b, kindness=5)
        frozen_clock.advance(days=1)
        second = _complete(db_session, bus, post_catalog, room, a, b, kindness=4)
        frozen_clock.advance(days=1)
        _complete(db_session, bus, post_catalog, room, a, b, kindness=4)

        assert first != second
        assert _connection(db_session, second).completed

        summary = linku.rating_summary(db_session, a)
        assert summary.review_count == 3
        assert summary.average_score == 4.3
        assert summary.accepted_count == 3
        assert summary.ongoing_count == 0

    def test_average_rounds_half_up(self, db_session, bus, post_catalog, pair, frozen_clock):
        """Kindness 4, 4, 4, 5 averages 4.25 and is shown as 4.3."""
        room, a, b = pair
        for kindness in (4, 4, 4, 5):
            _complete(db_session, bus, post_catalog, room, a, b, kindness=kindness)
            frozen_clock.advance(days=1)

        summary = linku.rating_summary(db_session, a)

        assert summary.review_count == 4
        assert summary.average_score == 4.3

    @pytest.mark.parametrize(
        ("total", "count", "expected"),
        [(5, 4, 1.3), (9, 4, 2.3), (13, 4, 3.3), (17, 4, 4.3), (13, 3, 4.3), (0, 0, 0.0)],
    )
    def test_average_one_decimal(self, total, count, expected):
        assert linku._average_one_decimal(total, count) == expected

    def test_list_reviews_newest_first(self, db_session, bus, post_catalog, pair, frozen_clock):
        room, a, b = pair
        _complete(db_session, bus, post_catalog, room, a, b, kindness=5)
        frozen_clock.advance(days=1)
        _complete(db_session, bus, post_catalog, room, a, b, kindness=2)

        reviews = linku.list_reviews(db_session, a)

        assert [r.kindness_score for r in reviews] == [2, 5]
        assert reviews[0].reviewer_major == "CS"
        assert linku.list_reviews(db_session, b) == []
        assert [r.id for r in linku.list_reviews_by_handle(db_session, "proposer")] == [
            r.id for r in reviews
        ]

    def test_delete_review_keeps_completion(self, db_session, bus, post_catalog, pair):
        room, a, b = pair
        connection_id = _complete(db_session, bus, post_catalog, room, a, b)
        [review] = linku.list_reviews(db_session, a)

        linku.delete_review(db_session, a, review.id)

        assert linku.list_reviews(db_session, a) == []
        assert _connection(db_session, connection_id).completed
        assert not linku.get_state(db_session, b, room.id).can_review

        summary = linku.rating_summary(db_session, a)
        assert summary.average_score == 0.0
        assert summary.review_count == 0
        assert summary.accepted_count == 1
        assert summary.ongoing_count == 0

        with pytest.raises(ApiError) as exc_info:
            linku.write_review(db_session, bus, b, room.id, "GOOD", 5)
        assert exc_info.value.code == ApiErrorCode.E_ALREADY_REVIEWED

    def test_delete_review_permissions(self, db_session, bus, post_catalog, pair):
        room, a, b = pair
        _complete(db_session, bus, post_catalog, room, a, b)
        [review] = linku.list_reviews(db_session, a)
        outsider = create_user(db_session, "outsider")

        with pytest.raises(ApiError) as exc_info:
            linku.delete_review(db_session, outsider, review.id)
        assert exc_info.value.code == ApiErrorCode.E_NOT_AUTHORIZED

        linku.delete_review(db_session, b, review.id)

        with pytest.raises(ApiError) as exc_info:
            linku.delete_review(db_session, b, review.id)
        assert exc_info.value.code == ApiErrorCode.E_REVIEW_NOT_FOUND


class TestRatingsAndConnections:
    def test_ongoing_counts(self, db_session, bus, post_catalog, pair):
        room, a, b = pair
        connection_id = _propose(db_session, bus, post_catalog, room, a, b)
        linku.accept(db_session, bus, b, connection_id)

        for uid in (a, b):
            summary = linku.rating_summary(db_session, uid)
            assert summary.ongoing_count == 1
            assert summary.accepted_count == 1
            assert summary.review_count == 0

    def test_rating_lookups(self, db_session, pair):
        _, a, _ = pair

        assert linku.rating_summary_by_handle(db_session, "proposer").review_count == 0
        assert linku.rating_summary_for_user(db_session, a).average_score == 0.0

        with pytest.raises(ApiError) as exc_info:
            linku.rating_summary_by_handle(db_session, "nobody")
        assert exc_info.value.code == ApiErrorCode.E_USER_NOT_FOUND

    def test_my_connections(self, db_session, bus, post_catalog, pair, frozen_clock):
        room, a, b = pair
        connection_id = _propose(db_session, bus, post_catalog, room, a, b)
        frozen_clock.advance(days=1)
        linku.accept(db_session, bus, b, connection_id)
        frozen_clock.advance(days=2)
        linku.write_review(db_session, bus, b, room.id, "BEST", 5)

        for uid in (a, b):
            [view] = linku.my_connections(db_session, post_catalog, uid)
            assert view.connection_id == connection_id
            assert view.proposer_uid == a
            assert view.proposer_name == "Pia"
            assert view.partner_uid == b
            assert view.partner_name == "Ivan"
            assert view.post_ref == 7
            assert view.post_title == "Logo design help"
            assert view.start_date == "2026-03-03"
            assert view.end_date == "2026-03-05"
            assert view.period == "2026-03-03 ~ 2026-03-05"

    def test_my_connections_without_review_is_ongoing(self, db_session, bus, post_catalog, pair):
        room, a, b = pair
        _complete(db_session, bus, post_catalog, room, a, b)
        [review] = linku.list_reviews(db_session, a)
        linku.delete_review(db_session, b, review.id)

        [view] = linku.my_connections(db_session, post_catalog, a)

        assert view.end_date is None
        assert view.period == "2026-03-02 ~ ongoing"

    def test_uncompleted_linku_not_listed(self, db_session, bus, post_catalog, pair):
        room, a, b = pair
        connection_id = _propose(db_session, bus, post_catalog, room, a, b)
        linku.accept(db_session, bus, b, connection_id)

        assert linku.my_connections(db_session, post_catalog, a) == []


class TestLinkuEndpoints:
    def test_full_flow(self, authenticated_client: TestClient, db_session):
        a = create_user(db_session, "proposer", name="Pia")
        b = create_user(db_session, "invitee", name="Ivan")
        room = create_room(db_session, a, b)

        proposed = authenticated_client.post(
            f"/chat/rooms/{room.id}/linku/propose",
            json={"targetUid": b, "message": "Work together?"},
            headers=auth_headers("proposer"),
        )
        assert proposed.status_code == 200
        connection_id = data_of(proposed)["connectionId"]
        assert data_of(proposed)["status"] == "PENDING"

        forbidden = authenticated_client.post(
            f"/chat/linku/{connection_id}/accept", headers=auth_headers("proposer")
        )
        assert forbidden.status_code == 403
        assert error_code_of(forbidden) == "E_NOT_AUTHORIZED"

        accepted = authenticated_client.post(
            f"/chat/linku/{connection_id}/accept", headers=auth_headers("invitee")
        )
        assert data_of(accepted) == {
            "linked": True,
            "canReview": True,
            "connectionId": connection_id,
            "status": "ACCEPTED",
        }

        state = data_of(
            authenticated_client.get(
                f"/chat/rooms/{room.id}/linku", headers=auth_headers("proposer")
            )
        )
        assert state["linked"] is True
        assert state["canReview"] is False

        reviewed = authenticated_client.post(
            f"/chat/rooms/{room.id}/linku/reviews",
            json={"relationRating": "GOOD", "kindnessScore": 4, "content": "great"},
            headers=auth_headers("invitee"),
        )
        assert reviewed.status_code == 200
        review_id = data_of(reviewed)["id"]

        again = authenticated_client.post(
            f"/chat/rooms/{room.id}/linku/reviews",
            json={"relationRating": "GOOD", "kindnessScore": 4},
            headers=auth_headers("invitee"),
        )
        assert again.status_code == 409
        assert error_code_of(again) == "E_ALREADY_REVIEWED"

        rating = data_of(
            authenticated_client.get(
                "/chat/linku/rating/user-id/proposer", headers=auth_headers("invitee")
            )
        )
        assert rating == {
            "averageScore": 4.0,
            "reviewCount": 1,
            "ongoingCount": 0,
            "acceptedCount": 1,
        }
        by_uid = authenticated_client.get(
            f"/chat/linku/rating/{a}", headers=auth_headers("invitee")
        )
        assert data_of(by_uid) == rating

        mine = data_of(
            authenticated_client.get("/chat/linku/reviews/me", headers=auth_headers("proposer"))
        )
        assert [r["id"] for r in mine] == [review_id]
        assert mine[0]["reviewerName"] == "Ivan"

        connections = data_of(
            authenticated_client.get(
                "/chat/linku/connections/me", headers=auth_headers("invitee")
            )
        )
        assert [c["connectionId"] for c in connections] == [connection_id]
        assert connections[0]["postTitle"] == "Logo design help"

        deleted = authenticated_client.delete(
            f"/chat/linku/reviews/{review_id}", headers=auth_headers("proposer")
        )
        assert data_of(deleted) == {"id": review_id, "deleted": True}

        public = data_of(
            authenticated_client.get(
                "/chat/linku/reviews/user-id/proposer", headers=auth_headers("invitee")
            )
        )
        assert public == []

    def test_reject_endpoint(self, authenticated_client: TestClient, db_session):
        a = create_user(db_session, "proposer")
        b = create_user(db_session, "invitee")
        room = create_room(db_session, a, b)

        proposed = authenticated_client.post(
            f"/chat/rooms/{room.id}/linku/propose",
            json={"targetUid": b},
            headers=auth_headers("proposer"),
        )
        connection_id = data_of(proposed)["connectionId"]

        response = authenticated_client.post(
            f"/chat/linku/{connection_id}/reject", headers=auth_headers("invitee")
        )

        assert response.status_code == 200
        assert data_of(response)["status"] == "REJECTED"

    def test_invalid_kindness_returns_400(self, authenticated_client: TestClient, db_session):
        a = create_user(db_session, "proposer")
        b = create_user(db_session, "invitee")
        room = create_room(db_session, a, b)

        response = authenticated_client.post(
            f"/chat/rooms/{room.id}/linku/reviews",
            json={"relationRating": "GOOD", "kindnessScore": 9},
            headers=auth_headers("invitee"),
        )

        assert response.status_code == 400
        assert error_code_of(response) == "E_INVALID_REQUEST"

    def test_unknown_handle_returns_404(self, authenticated_client: TestClient):
        response = authenticated_client.get(
            "/chat/linku/rating/user-id/nobody", headers=auth_headers("someone")
        )

        assert response.status_code == 404
        assert error_code_of(response) == "E_USER_NOT_FOUND"
