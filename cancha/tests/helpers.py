"""
Factories and HTTP helpers shared by the test modules.
"""

from datetime import timedelta
from typing import Optional

from httpx import AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from cancha.database.models import AdminRole, Game, GameStatus
from cancha.services import user_service
from cancha.utils.constants import CSRF_COOKIE_NAME, CSRF_HEADER_NAME, SESSION_COOKIE_NAME
from cancha.utils.datetime_utils import utcnow

TEST_PASSWORD = "Sup3r-Segura!2024"


async def create_admin(
    session: AsyncSession,
    username: str = "santiago",
    password: str = TEST_PASSWORD,
    email: Optional[str] = "santiago@cancha.test",
    role: str = AdminRole.ADMIN.value,
) -> int:
    return await user_service.create_admin_user(
        session, username=username, password=password, name=username.title(), email=email, role=role
    )


async def create_test_game(
    session: AsyncSession,
    share_token: str = "partido-del-jueves-0123456789",
    hours_from_now: float = 48,
    max_players: int = 4,
    min_players: int = 2,
    status: str = GameStatus.OPEN.value,
    field_cost_per_player: float = 1500,
) -> Game:
    game = Game(
        title="Partido del jueves",
        description="Fútbol 5 entre amigos",
        game_date=utcnow() + timedelta(hours=hours_from_now),
        min_players=min_players,
        max_players=max_players,
        field_cost_per_player=field_cost_per_player,
        game_duration_minutes=90,
        status=status,
        share_token=share_token,
        team_a_name="Equipo A",
        team_b_name="Equipo B",
        confirmed_count=0,
    )
    session.add(game)
    await session.commit()
    return game


def cookie_from_response(response, name: str) -> Optional[str]:
    """Value of a cookie set by a response, or None (empty for deletions)."""
    for header in response.headers.get_list("set-cookie"):
        cookie_name, _, rest = header.partition("=")
        if cookie_name.strip() == name:
            value = rest.split(";", 1)[0].strip().strip('"')
            return value
    return None


async def get_csrf_headers(client: AsyncClient) -> dict:
    """Fetch a CSRF token and build the headers that submit it."""
    response = await client.get("/api/auth/login")
    client.cookies.clear()
    token = response.json()["data"]["csrf_token"]
    return {CSRF_HEADER_NAME: token, "Cookie": f"{CSRF_COOKIE_NAME}={token}"}


async def login(client: AsyncClient, username: str = "santiago", password: str = TEST_PASSWORD, **extra):
    """Log in and return (response, session token)."""
    headers = await get_csrf_headers(client)
    headers.update(extra.pop("headers", {}))
    response = await client.post(
        "/api/auth/login",
        json={"username": username, "password": password, **extra},
        headers=headers,
    )
    client.cookies.clear()
    return response, cookie_from_response(response, SESSION_COOKIE_NAME)


def auth_headers(session_token: str, csrf_token: str = "csrf-test-token") -> dict:
    """Headers carrying a session cookie plus a matching CSRF pair."""
    return {
        CSRF_HEADER_NAME: csrf_token,
        "Cookie": f"{SESSION_COOKIE_NAME}={session_token}; {CSRF_COOKIE_NAME}={csrf_token}",
    }
