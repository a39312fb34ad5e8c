"""
Tests for scripts/create_admin_user.py: creating, resetting and deactivating admins.
"""

import importlib.util
from pathlib import Path
from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy import select, func

from cancha.database import db
from cancha.database.models import AdminSession
from cancha.services import password_service, session_service, user_service
from cancha.services.security_service import RequestContext

from cancha.tests.helpers import TEST_PASSWORD, create_admin

CONTEXT = RequestContext(ip_address="203.0.113.7", user_agent="pytest", path="/", method="POST")
NEW_PASSWORD = "Otra-Clave!2025"
SCRIPT_PATH = Path(__file__).resolve().parents[2] / "scripts" / "create_admin_user.py"


def load_script():
    spec = importlib.util.spec_from_file_location("create_admin_user", SCRIPT_PATH)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


@pytest.fixture
def script(test_engine, monkeypatch):
    # Tables already exist and the test engine is disposed by its fixture
    monkeypatch.setattr(db, "init_database", AsyncMock())
    monkeypatch.setattr(db, "close_database", AsyncMock())
    return load_script()


async def count_sessions(db_session) -> int:
    return await db_session.scalar(select(func.count()).select_from(AdminSession))


async def admin_with_sessions(db_session, count=2) -> dict:
    await create_admin(db_session)
    user = await user_service.get_admin_for_login(db_session, "santiago")
    for _ in range(count):
        await session_service.create_session(db_session, user, False, CONTEXT)
    await db_session.commit()
    return user


@pytest.mark.asyncio
async def test_create_admin(script, db_session):
    with patch.object(password_service, "generate_secure_password", return_value=NEW_PASSWORD):
        await script.main(["agustin", "--name", "Agustín", "--generate-password"])

    user = await user_service.get_admin_for_login(db_session, "agustin")
    assert user["name"] == "Agustín"
    assert password_service.verify_password(NEW_PASSWORD, user["password_hash"])


def test_create_requires_name(script):
    with pytest.raises(SystemExit) as exc_info:
        script.parse_args(["agustin"])
    assert exc_info.value.code == 2


@pytest.mark.asyncio
async def test_reset_password_signs_out_every_session(script, db_session):
    await admin_with_sessions(db_session)
    assert await count_sessions(db_session) == 2

    with patch.object(password_service, "generate_secure_password", return_value=NEW_PASSWORD):
        await script.main(["santiago", "--reset-password", "--generate-password"])

    db_session.expire_all()
    assert await count_sessions(db_session) == 0
    user = await user_service.get_admin_for_login(db_session, "santiago")
    assert password_service.verify_password(NEW_PASSWORD, user["password_hash"])
    assert not password_service.verify_password(TEST_PASSWORD, user["password_hash"])


@pytest.mark.asyncio
async def test_reset_password_unknown_admin(script, db_session):
    with pytest.raises(SystemExit) as exc_info:
        await script.main(["nadie", "--reset-password", "--generate-password"])
    assert "not found" in str(exc_info.value.code)


@pytest.mark.asyncio
async def test_deactivate_and_activate(script, db_session):
    await admin_with_sessions(db_session, count=1)

    await script.main(["santiago", "--deactivate"])
    db_session.expire_all()
    assert (await user_service.get_admin_for_login(db_session, "santiago"))["is_active"] is False
    assert await count_sessions(db_session) == 0

    await script.main(["santiago", "--activate"])
    db_session.expire_all()
    assert (await user_service.get_admin_for_login(db_session, "santiago"))["is_active"] is True
