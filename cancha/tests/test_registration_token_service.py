"""
Tests for registration tokens and management URLs.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest

from cancha.services import registration_token_service


def test_generate_token_format():
    token = registration_token_service.generate_token()
    assert len(token) == 64
    assert registration_token_service.is_valid_format(token)


def test_generated_tokens_are_unique():
    tokens = {registration_token_service.generate_token() for _ in range(200)}
    assert len(tokens) == 200


@pytest.mark.parametrize(
    "token",
    [
        None,
        "",
        "abc",
        "g" * 64,
        "A" * 64,
        "a" * 63,
        "a" * 65,
        "0" * 60 + "../x",
        " " + "a" * 63,
    ],
)
def test_invalid_formats(token):
    assert registration_token_service.is_valid_format(token) is False


def test_management_url():
    token = "ab" * 32
    assert (
        registration_token_service.create_management_url(token, "https://cancha.example/")
        == f"https://cancha.example/mi-registro/{token}"
    )


def test_management_url_uses_app_url_by_default():
    token = "cd" * 32
    assert registration_token_service.create_management_url(token) == (
        f"http://testserver/mi-registro/{token}"
    )


@pytest.mark.asyncio
async def test_malformed_token_never_queries_database():
    session = MagicMock()
    session.execute = AsyncMock()

    result = await registration_token_service.find_registration_by_token(session, "not-a-token")

    assert result is None
    session.execute.assert_not_called()


@pytest.mark.asyncio
async def test_unknown_token_returns_none(db_session):
    token = registration_token_service.generate_token()
    assert await registration_token_service.find_registration_by_token(db_session, token) is None
