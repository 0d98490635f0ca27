"""
HTTP-level tests for the matchmaking API.

Uses FastAPI TestClient with the service layer mocked, to verify status
codes, response shapes, caller identity and error mapping without a
database.
"""

from datetime import date, datetime, time
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from courtside.api.main import app
from courtside.database.db import get_db_session
from courtside.database.models import (
    GenderPreference,
    Match,
    MatchPlayer,
    MatchStatus,
    QueueEntry,
    QueueStatus,
)
from courtside.services.exceptions import (
    AlreadyTerminal,
    Conflict,
    DuplicateActiveEntry,
    DuplicateFeedback,
    Forbidden,
    NotFound,
    ValidationError,
)
from courtside.services.match_service import match_to_dict
from courtside.services.subscription_service import get_subscription_manager

USER = {"X-User-Id": "7"}


async def _no_db_session():
    yield AsyncMock()


@pytest.fixture
def client():
    """Create a TestClient for the app with the database session stubbed out."""
    app.dependency_overrides[get_db_session] = _no_db_session
    yield TestClient(app)
    app.dependency_overrides.clear()


def _entry(**overrides):
    values = dict(
        id=11,
        user_id=7,
        sport_id=1,
        venue_id=None,
        preferred_date=date(2024, 6, 1),
        preferred_time=time(17, 0),
        gender_preference=GenderPreference.ANY,
        rating_tolerance=200,
        latitude=None,
        longitude=None,
        radius_km=None,
        status=QueueStatus.WAITING,
        match_id=None,
        created_at=datetime(2024, 5, 30, 12, 0),
        expires_at=datetime(2024, 5, 30, 12, 10),
    )
    values.update(overrides)
    return QueueEntry(**values)


def _match(**overrides):
    values = dict(
        id=21,
        sport_id=1,
        venue_id=None,
        court_id=None,
        scheduled_date=date(2024, 6, 1),
        scheduled_time=time(17, 0),
        status=MatchStatus.PENDING,
        winner_id=None,
        created_at=datetime(2024, 5, 30, 12, 1),
        completed_at=None,
    )
    values.update(overrides)
    match = Match(**values)
    match.players = [
        MatchPlayer(user_id=7, queue_entry_id=10, rating_before=1400, confirmed=False),
        MatchPlayer(user_id=8, queue_entry_id=11, rating_before=1500, confirmed=False),
    ]
    return match


JOIN_PAYLOAD = {
    "sport_id": 1,
    "preferred_date": "2024-06-01",
    "preferred_time": "17:00:00",
    "gender_preference": "any",
    "rating_tolerance": 200,
}


# ============================================================================
# Health / identity
# ============================================================================


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"


def test_missing_user_header_returns_401(client):
    response = client.post("/api/queue", json=JOIN_PAYLOAD)
    assert response.status_code == 401


# ============================================================================
# POST /api/queue
# ============================================================================


@patch("courtside.services.matchmaking_service.join_queue", new_callable=AsyncMock)
def test_join_queue_waiting(mock_join, client):
    mock_join.return_value = _entry()

    response = client.post("/api/queue", json=JOIN_PAYLOAD, headers=USER)

    assert response.status_code == 201
    data = response.json()
    assert data["status"] == "waiting"
    assert data["match_id"] is None
    args = mock_join.call_args.args
    assert args[1] == 7
    assert args[2] == 1
    assert "sport_id" not in args[3]
    assert args[3]["rating_tolerance"] == 200


@patch("courtside.services.matchmaking_service.join_queue", new_callable=AsyncMock)
def test_join_queue_matched(mock_join, client):
    mock_join.return_value = _entry(status=QueueStatus.MATCHED, match_id=21)

    response = client.post("/api/queue", json=JOIN_PAYLOAD, headers=USER)

    assert response.status_code == 201
    assert response.json()["status"] == "matched"
    assert response.json()["match_id"] == 21


@pytest.mark.parametrize(
    "overrides",
    [
        {"rating_tolerance": -1},
        {"latitude": -6.2},
        {"latitude": 95, "longitude": 10},
        {"radius_km": 0, "latitude": 1, "longitude": 1},
        {"preferred_date": None},
        {"gender_preference": "robot"},
    ],
)
def test_join_queue_invalid_criteria_returns_422(overrides, client):
    payload = {**JOIN_PAYLOAD, **overrides}
    response = client.post("/api/queue", json=payload, headers=USER)
    assert response.status_code == 422


@pytest.mark.parametrize(
    "error,status_code",
    [
        (DuplicateActiveEntry("already queued"), 409),
        (NotFound("Sport 1 not found"), 404),
        (ValidationError("bad criteria"), 400),
    ],
)
def test_join_queue_error_mapping(error, status_code, client):
    with patch(
        "courtside.services.matchmaking_service.join_queue",
        new_callable=AsyncMock,
        side_effect=error,
    ):
        response = client.post("/api/queue", json=JOIN_PAYLOAD, headers=USER)

    assert response.status_code == status_code
    assert response.json()["detail"] == str(error)


@patch("courtside.services.matchmaking_service.join_queue", new_callable=AsyncMock)
def test_join_queue_unexpected_error_returns_500(mock_join, client):
    mock_join.side_effect = RuntimeError("boom")

    response = client.post("/api/queue", json=JOIN_PAYLOAD, headers=USER)

    assert response.status_code == 500


# ============================================================================
# Queue entry lookups and cancel
# ============================================================================


@patch("courtside.services.queue_service.get_active_entry", new_callable=AsyncMock)
def test_active_entry_none(mock_active, client):
    mock_active.return_value = None

    response = client.get("/api/queue/active", headers=USER)

    assert response.status_code == 200
    assert response.json() is None


@patch("courtside.services.queue_service.get_entry", new_callable=AsyncMock)
def test_get_entry_owner(mock_get, client):
    mock_get.return_value = _entry()

    response = client.get("/api/queue/11", headers=USER)

    assert response.status_code == 200
    assert response.json()["id"] == 11


@patch("courtside.services.queue_service.get_entry", new_callable=AsyncMock)
def test_get_entry_other_user_forbidden(mock_get, client):
    mock_get.return_value = _entry(user_id=8)

    response = client.get("/api/queue/11", headers=USER)

    assert response.status_code == 403


@patch("courtside.services.queue_service.cancel", new_callable=AsyncMock)
def test_cancel_entry(mock_cancel, client):
    mock_cancel.return_value = _entry(status=QueueStatus.CANCELLED)

    response = client.delete("/api/queue/11", headers=USER)

    assert response.status_code == 204
    mock_cancel.assert_awaited_once()
    assert mock_cancel.call_args.args[1:] == (11, 7)


@pytest.mark.parametrize(
    "error,status_code",
    [
        (NotFound("missing"), 404),
        (Forbidden("not yours"), 403),
        (AlreadyTerminal("already matched"), 409),
    ],
)
def test_cancel_entry_errors(error, status_code, client):
    with patch(
        "courtside.services.queue_service.cancel", new_callable=AsyncMock, side_effect=error
    ):
        response = client.delete("/api/queue/11", headers=USER)
    assert response.status_code == status_code


# ============================================================================
# Matches
# ============================================================================


@patch("courtside.services.match_service.get_match", new_callable=AsyncMock)
def test_get_match(mock_get, client):
    mock_get.return_value = _match()

    response = client.get("/api/matches/21", headers=USER)

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "pending"
    assert [p["rating_before"] for p in data["players"]] == [1400, 1500]
    assert mock_get.call_args.kwargs["requester_id"] == 7


@patch("courtside.services.match_service.get_match", new_callable=AsyncMock)
def test_get_match_forbidden(mock_get, client):
    mock_get.side_effect = Forbidden("Not a participant in this match")

    response = client.get("/api/matches/21", headers=USER)

    assert response.status_code == 403


@patch("courtside.services.match_service.confirm_participation", new_callable=AsyncMock)
def test_confirm_match(mock_confirm, client):
    mock_confirm.return_value = _match(status=MatchStatus.CONFIRMED)

    response = client.post("/api/matches/21/confirm", headers=USER)

    assert response.status_code == 200
    assert response.json()["status"] == "confirmed"


@patch("courtside.services.match_service.start_match", new_callable=AsyncMock)
def test_start_match_not_confirmed(mock_start, client):
    mock_start.side_effect = AlreadyTerminal("Match 21 is pending, not confirmed")

    response = client.post("/api/matches/21/start", headers=USER)

    assert response.status_code == 409


@patch("courtside.services.match_service.decline_match", new_callable=AsyncMock)
def test_decline_match(mock_decline, client):
    mock_decline.return_value = _match(status=MatchStatus.CANCELLED)

    response = client.post("/api/matches/21/decline", headers=USER)

    assert response.status_code == 200
    assert response.json()["status"] == "cancelled"


FEEDBACK = {"reported_winner_id": 7, "tone": 4, "aggressiveness": 2, "sportsmanship": 5}


@patch("courtside.services.settlement_service.submit_feedback", new_callable=AsyncMock)
def test_submit_feedback_settles(mock_feedback, client):
    mock_feedback.return_value = {
        "match_id": 21,
        "status": "completed",
        "winner_id": 7,
        "rating_changes": {7: 26, 8: -26},
        "settled": True,
    }

    response = client.post("/api/matches/21/feedback", json=FEEDBACK, headers=USER)

    assert response.status_code == 200
    data = response.json()
    assert data["settled"] is True
    assert data["rating_changes"] == {"7": 26, "8": -26}
    args = mock_feedback.call_args
    assert args.args[1:4] == (21, 7, 7)
    assert args.kwargs["tone"] == 4


def test_submit_feedback_out_of_range_returns_422(client):
    response = client.post(
        "/api/matches/21/feedback", json={**FEEDBACK, "tone": 6}, headers=USER
    )
    assert response.status_code == 422


@pytest.mark.parametrize(
    "error,status_code",
    [
        (DuplicateFeedback("already submitted"), 409),
        (Forbidden("not a participant"), 403),
        (ValidationError("cancelled"), 400),
        (Conflict("retry"), 409),
    ],
)
def test_submit_feedback_errors(error, status_code, client):
    with patch(
        "courtside.services.settlement_service.submit_feedback",
        new_callable=AsyncMock,
        side_effect=error,
    ):
        response = client.post("/api/matches/21/feedback", json=FEEDBACK, headers=USER)
    assert response.status_code == status_code


# ============================================================================
# Players
# ============================================================================


@patch("courtside.services.player_service.get_player_ratings", new_callable=AsyncMock)
def test_player_ratings(mock_ratings, client):
    mock_ratings.return_value = [
        {"sport_id": 1, "rating": 1426, "tier": "Advanced", "games_played": 1, "wins": 1, "losses": 0}
    ]

    response = client.get("/api/players/7/ratings")

    assert response.status_code == 200
    assert response.json()[0]["tier"] == "Advanced"


@patch("courtside.services.player_service.get_player_ratings", new_callable=AsyncMock)
def test_player_ratings_unknown_player(mock_ratings, client):
    mock_ratings.side_effect = NotFound("Player 99 not found")

    response = client.get("/api/players/99/ratings")

    assert response.status_code == 404


@patch("courtside.services.match_service.list_player_matches", new_callable=AsyncMock)
def test_player_match_history(mock_list, client):
    item = match_to_dict(_match(status=MatchStatus.COMPLETED, winner_id=7))
    item.update(result="won", rating_change=26)
    mock_list.return_value = [item]

    response = client.get("/api/players/7/matches?status=completed", headers=USER)

    assert response.status_code == 200
    data = response.json()
    assert data[0]["result"] == "won"
    assert data[0]["rating_change"] == 26
    mock_list.assert_awaited_once()
    assert mock_list.await_args.kwargs["status"] == MatchStatus.COMPLETED


def test_player_match_history_of_someone_else_forbidden(client):
    response = client.get("/api/players/8/matches", headers=USER)
    assert response.status_code == 403


def test_player_match_history_rejects_unknown_status(client):
    response = client.get("/api/players/7/matches?status=bogus", headers=USER)
    assert response.status_code == 422


# ============================================================================
# Admin
# ============================================================================


def test_admin_requires_token(client, monkeypatch):
    monkeypatch.setenv("ADMIN_TOKEN", "s3cret")

    assert client.post("/api/admin/matches/21/resolve", json={"winner_id": 7}).status_code == 403
    response = client.post(
        "/api/admin/matches/21/resolve",
        json={"winner_id": 7},
        headers={"X-Admin-Token": "wrong"},
    )
    assert response.status_code == 403


def test_admin_disabled_without_configured_token(client, monkeypatch):
    monkeypatch.delenv("ADMIN_TOKEN", raising=False)

    response = client.post(
        "/api/admin/queue/sweep", headers={"X-Admin-Token": ""}
    )

    assert response.status_code == 403


@patch("courtside.services.settlement_service.force_resolve", new_callable=AsyncMock)
def test_admin_resolve(mock_resolve, client, monkeypatch):
    monkeypatch.setenv("ADMIN_TOKEN", "s3cret")
    mock_resolve.return_value = {
        "match_id": 21,
        "status": "completed",
        "winner_id": 8,
        "rating_changes": {7: -14, 8: 14},
        "settled": True,
    }

    response = client.post(
        "/api/admin/matches/21/resolve",
        json={"winner_id": 8},
        headers={"X-Admin-Token": "s3cret"},
    )

    assert response.status_code == 200
    assert response.json()["winner_id"] == 8
    assert mock_resolve.call_args.args[1:] == (21, 8)


def test_admin_sweep(client, monkeypatch):
    monkeypatch.setenv("ADMIN_TOKEN", "s3cret")
    sweeper = MagicMock()
    sweeper.run_once = AsyncMock(
        return_value={"expired": 1, "evaluated": 2, "matches_created": 1}
    )

    with patch("courtside.api.routes.admin.get_queue_sweeper_service", return_value=sweeper):
        response = client.post("/api/admin/queue/sweep", headers={"X-Admin-Token": "s3cret"})

    assert response.status_code == 200
    assert response.json() == {"expired": 1, "evaluated": 2, "matches_created": 1}


# ============================================================================
# WebSocket subscriptions
# ============================================================================


@patch("courtside.api.routes.subscriptions._load_snapshot", new_callable=AsyncMock)
def test_ws_queue_sends_snapshot_and_answers_ping(mock_snapshot, client):
    mock_snapshot.return_value = {"id": 11, "status": "waiting"}

    with client.websocket_connect("/ws/queue/11?user_id=7") as ws:
        assert ws.receive_json() == {
            "topic": "queue_entry",
            "id": 11,
            "data": {"id": 11, "status": "waiting"},
        }
        ws.send_text("ping")
        assert ws.receive_text() == "pong"

    mock_snapshot.assert_awaited_once_with("queue_entry", 11, 7)


def test_ws_requires_user_id(client):
    with client.websocket_connect("/ws/matches/21") as ws:
        with pytest.raises(WebSocketDisconnect) as exc_info:
            ws.receive_json()
    assert exc_info.value.code == 1008


@patch("courtside.api.routes.subscriptions._load_snapshot", new_callable=AsyncMock)
def test_ws_rejects_non_participant(mock_snapshot, client):
    mock_snapshot.side_effect = Forbidden("Not a participant in this match")

    with client.websocket_connect("/ws/matches/21?user_id=9") as ws:
        with pytest.raises(WebSocketDisconnect) as exc_info:
            ws.receive_json()
    assert exc_info.value.code == 1008


def test_ws_delivers_change_committed_while_snapshot_loads(client):
    """A publish that lands between subscribing and the snapshot read still reaches the client."""

    async def stale_snapshot_then_match(topic, entity_id, user_id):
        await get_subscription_manager().publish(
            topic, entity_id, {"id": entity_id, "status": "matched", "match_id": 21}
        )
        return {"id": entity_id, "status": "waiting"}

    with patch(
        "courtside.api.routes.subscriptions._load_snapshot",
        new_callable=AsyncMock,
        side_effect=stale_snapshot_then_match,
    ):
        with client.websocket_connect("/ws/queue/11?user_id=7") as ws:
            assert ws.receive_json()["data"]["status"] == "waiting"
            assert ws.receive_json() == {
                "topic": "queue_entry",
                "id": 11,
                "data": {"id": 11, "status": "matched", "match_id": 21},
            }

    assert ("queue_entry", 11) not in get_subscription_manager().subscribers


@patch("courtside.api.routes.subscriptions._load_snapshot", new_callable=AsyncMock)
def test_ws_rejection_drops_subscription(mock_snapshot, client):
    mock_snapshot.side_effect = NotFound("Match 21 not found")

    with client.websocket_connect("/ws/matches/21?user_id=7") as ws:
        with pytest.raises(WebSocketDisconnect):
            ws.receive_json()

    assert ("match", 21) not in get_subscription_manager().subscribers
