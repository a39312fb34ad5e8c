"""
Tests for the public game and self-service routes: HTTP-level checks of
status codes, response envelopes, endpoint rate limits and error handling
without a database.
"""

import pytest
from unittest.mock import AsyncMock, patch

from fastapi.testclient import TestClient

from cancha.api.main import app
from cancha.utils.errors import ErrorCode, ServiceResult

SHARE_TOKEN = "partido-del-jueves-0123456789"
REG_TOKEN = "ab" * 32


@pytest.fixture
def client():
    """Create a TestClient for the app."""
    return TestClient(app)


# ============================================================================
# GET /api/games/{share_token}
# ============================================================================


@patch("cancha.services.friend_registration_service.get_public_game_info", new_callable=AsyncMock)
def test_get_game_returns_envelope(mock_info, client):
    mock_info.return_value = ServiceResult.ok(
        "Partido encontrado", game={"title": "Partido del jueves"}, registration_open=True
    )

    response = client.get(f"/api/games/{SHARE_TOKEN}")

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["data"]["game"]["title"] == "Partido del jueves"
    assert body["data"]["registration_open"] is True


@patch("cancha.services.friend_registration_service.get_public_game_info", new_callable=AsyncMock)
def test_get_game_invalid_token_returns_404(mock_info, client):
    mock_info.return_value = ServiceResult.fail(ErrorCode.INVALID_TOKEN)

    response = client.get("/api/games/no-existe-este-partido-000")

    assert response.status_code == 404
    body = response.json()
    assert body["success"] is False
    assert body["code"] == "INVALID_TOKEN"


@patch("cancha.services.friend_registration_service.get_public_game_info", new_callable=AsyncMock)
def test_get_game_rate_limited(mock_info, client):
    mock_info.return_value = ServiceResult.ok("Partido encontrado", game={}, registration_open=True)

    for _ in range(30):
        assert client.get(f"/api/games/{SHARE_TOKEN}").status_code == 200

    response = client.get(f"/api/games/{SHARE_TOKEN}")
    assert response.status_code == 429
    assert response.json()["code"] == "RATE_LIMIT_EXCEEDED"
    assert int(response.headers["Retry-After"]) > 0


@patch("cancha.services.friend_registration_service.get_public_game_info", new_callable=AsyncMock)
def test_internal_error_returns_500_without_details(mock_info, client):
    mock_info.side_effect = Exception("database crashed")

    response = client.get(f"/api/games/{SHARE_TOKEN}")

    assert response.status_code == 500
    body = response.json()
    assert body["code"] == "SERVER_ERROR"
    assert "database crashed" not in response.text


# ============================================================================
# POST /api/games/{share_token}/register
# ============================================================================


@patch("cancha.services.friend_registration_service.register_friend", new_callable=AsyncMock)
def test_register_returns_201(mock_register, client):
    mock_register.return_value = ServiceResult.ok(
        "¡Inscripción confirmada!",
        status="confirmed",
        waiting_list_position=None,
        registration_token=REG_TOKEN,
        management_url=f"http://testserver/mi-registro/{REG_TOKEN}",
    )

    response = client.post(
        f"/api/games/{SHARE_TOKEN}/register",
        json={"player_name": "Juan Pérez", "player_phone": "+5491155500001"},
    )

    assert response.status_code == 201
    assert response.json()["data"]["registration_token"] == REG_TOKEN
    args = mock_register.call_args.args
    assert args[1] == SHARE_TOKEN
    assert args[2] == {"player_name": "Juan Pérez", "player_phone": "+5491155500001"}


@pytest.mark.parametrize(
    "code,status",
    [
        (ErrorCode.VALIDATION_ERROR, 400),
        (ErrorCode.REGISTRATION_CLOSED, 400),
        (ErrorCode.INVALID_TOKEN, 404),
        (ErrorCode.DUPLICATE_REGISTRATION, 409),
        (ErrorCode.GAME_FULL, 409),
    ],
)
@patch("cancha.services.friend_registration_service.register_friend", new_callable=AsyncMock)
def test_register_failure_status_codes(mock_register, client, code, status):
    mock_register.return_value = ServiceResult.fail(code)

    response = client.post(
        f"/api/games/{SHARE_TOKEN}/register",
        json={"player_name": "Juan Pérez", "player_phone": "+5491155500001"},
    )

    assert response.status_code == status
    assert response.json()["code"] == code.value


def test_register_missing_fields_returns_400(client):
    response = client.post(f"/api/games/{SHARE_TOKEN}/register", json={"player_name": "Juan"})

    assert response.status_code == 400
    assert response.json()["code"] == "VALIDATION_ERROR"


@patch("cancha.services.friend_registration_service.register_friend", new_callable=AsyncMock)
def test_register_rate_limited_after_five(mock_register, client):
    mock_register.return_value = ServiceResult.fail(ErrorCode.DUPLICATE_REGISTRATION)
    payload = {"player_name": "Juan Pérez", "player_phone": "+5491155500001"}

    for _ in range(5):
        assert client.post(f"/api/games/{SHARE_TOKEN}/register", json=payload).status_code == 409

    response = client.post(f"/api/games/{SHARE_TOKEN}/register", json=payload)
    assert response.status_code == 429


# ============================================================================
# DELETE /api/games/{share_token}/register and GET .../status
# ============================================================================


@patch("cancha.services.friend_registration_service.cancel_friend_registration", new_callable=AsyncMock)
def test_cancel_by_phone(mock_cancel, client):
    mock_cancel.return_value = ServiceResult.ok(
        "Inscripción cancelada exitosamente", refund_info={"eligible": False, "amount": 0.0}
    )

    response = client.delete(
        f"/api/games/{SHARE_TOKEN}/register", params={"phone": "+5491155500001", "reason": "Viaje"}
    )

    assert response.status_code == 200
    args = mock_cancel.call_args.args
    assert args[2] == "+5491155500001"
    assert args[3] == "Viaje"


def test_cancel_by_phone_requires_phone(client):
    response = client.delete(f"/api/games/{SHARE_TOKEN}/register")
    assert response.status_code == 400


@patch("cancha.services.friend_registration_service.get_player_registration_status", new_callable=AsyncMock)
def test_registration_status(mock_status, client):
    mock_status.return_value = ServiceResult.ok(
        "Inscripción activa", is_registered=True, status="waiting_list", waiting_list_position=2
    )

    response = client.get(f"/api/games/{SHARE_TOKEN}/status", params={"phone": "+5491155500001"})

    assert response.status_code == 200
    assert response.json()["data"]["waiting_list_position"] == 2


# ============================================================================
# /api/mi-registro/{token}
# ============================================================================


@patch("cancha.services.friend_registration_service.get_registration_by_token", new_callable=AsyncMock)
def test_get_my_registration(mock_get, client):
    mock_get.return_value = ServiceResult.ok(
        "Inscripción encontrada",
        registration={"player_name": "Juan Pérez"},
        game={"title": "Partido del jueves"},
        status={"can_cancel": True},
    )

    response = client.get(f"/api/mi-registro/{REG_TOKEN}")

    assert response.status_code == 200
    assert response.json()["data"]["status"]["can_cancel"] is True


@patch("cancha.services.friend_registration_service.get_registration_by_token", new_callable=AsyncMock)
def test_get_my_registration_invalid_token(mock_get, client):
    mock_get.return_value = ServiceResult.fail(ErrorCode.INVALID_TOKEN)

    response = client.get("/api/mi-registro/not-a-token")

    assert response.status_code == 404
    assert response.json()["code"] == "INVALID_TOKEN"


@patch("cancha.services.friend_registration_service.cancel_registration_by_token", new_callable=AsyncMock)
def test_cancel_my_registration(mock_cancel, client):
    mock_cancel.return_value = ServiceResult.ok(
        "Inscripción cancelada exitosamente",
        refund_info={"eligible": True, "amount": 1500.0, "reason": "Cancelación con más de 24 horas de anticipación"},
    )

    response = client.post(
        f"/api/mi-registro/{REG_TOKEN}/cancel", json={"reason": "Me lesioné", "confirm": True}
    )

    assert response.status_code == 200
    assert response.json()["data"]["refund_info"]["amount"] == 1500.0
    assert mock_cancel.call_args.args[2] == "Me lesioné"


def test_cancel_requires_confirmation(client):
    response = client.post(f"/api/mi-registro/{REG_TOKEN}/cancel", json={"confirm": False})
    assert response.status_code == 400
    assert response.json()["code"] == "VALIDATION_ERROR"


def test_cancel_reason_too_long(client):
    response = client.post(
        f"/api/mi-registro/{REG_TOKEN}/cancel", json={"reason": "x" * 501, "confirm": True}
    )
    assert response.status_code == 400


@pytest.mark.parametrize(
    "code,status",
    [
        (ErrorCode.ALREADY_CANCELLED, 409),
        (ErrorCode.CANCELLATION_NOT_ALLOWED, 403),
        (ErrorCode.INVALID_TOKEN, 404),
    ],
)
@patch("cancha.services.friend_registration_service.cancel_registration_by_token", new_callable=AsyncMock)
def test_cancel_my_registration_failures(mock_cancel, client, code, status):
    mock_cancel.return_value = ServiceResult.fail(code)

    response = client.post(f"/api/mi-registro/{REG_TOKEN}/cancel", json={"confirm": True})

    assert response.status_code == status
    assert response.json()["code"] == code.value


def test_health(client):
    response = client.get("/api/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"
