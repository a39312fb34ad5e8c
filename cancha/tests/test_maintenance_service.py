"""
Tests for the maintenance worker.
"""

import asyncio
from datetime import timedelta
from unittest.mock import AsyncMock, patch

import pytest

from cancha.database.models import LoginAttempt
from cancha.services.maintenance_service import MaintenanceService, get_maintenance_service
from cancha.utils.datetime_utils import utcnow


def test_singleton():
    assert get_maintenance_service() is get_maintenance_service()


@pytest.mark.asyncio
async def test_run_once_removes_old_attempts(db_session):
    db_session.add(
        LoginAttempt(
            ip_address="203.0.113.7",
            action_type="login",
            success=False,
            attempted_at=utcnow() - timedelta(hours=30),
        )
    )
    await db_session.commit()

    counts = await MaintenanceService().run_once()

    assert counts == {"expired_sessions": 0, "old_login_attempts": 1}


@pytest.mark.asyncio
async def test_worker_runs_immediately_and_stops():
    service = MaintenanceService(poll_interval_seconds=3600)
    with patch.object(service, "run_once", new_callable=AsyncMock) as mock_run:
        mock_run.return_value = {"expired_sessions": 0, "old_login_attempts": 0}
        service.start()
        await asyncio.sleep(0.05)
        service.stop()
        await asyncio.sleep(0)

    mock_run.assert_awaited_once()


@pytest.mark.asyncio
async def test_worker_survives_errors():
    service = MaintenanceService(poll_interval_seconds=0.01)
    with patch.object(service, "run_once", new_callable=AsyncMock) as mock_run:
        mock_run.side_effect = RuntimeError("database unavailable")
        service.start()
        await asyncio.sleep(0.1)
        service.stop()
        await asyncio.sleep(0)

    assert mock_run.await_count >= 2
