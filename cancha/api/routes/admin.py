"""Admin routes: game management, teams, results, audit log and maintenance."""

import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from cancha.api.routes import api_response
from cancha.api.auth_dependencies import AuthContext, require_admin
from cancha.database.db import get_db_session
from cancha.database.models import GameStatus
from cancha.models.schemas import (
    GameCreateRequest,
    GameResultRequest,
    GameStatusUpdateRequest,
    GameUpdateRequest,
    TeamAssignmentRequest,
    TeamNamesUpdateRequest,
    RegistrationUpdateRequest,
)
from cancha.services import audit_service, game_service, result_service, team_service
from cancha.services.maintenance_service import get_maintenance_service
from cancha.utils.errors import AppError, NotFoundError, ServerError, ValidationError, raise_for_result

logger = logging.getLogger(__name__)
router = APIRouter()

_GAME_STATUSES = {status.value for status in GameStatus}


@router.post("/api/admin/games", status_code=201)
async def create_game(
    payload: GameCreateRequest,
    auth: AuthContext = Depends(require_admin),
    session: AsyncSession = Depends(get_db_session),
):
    """Create a game and its share link."""
    try:
        result = raise_for_result(
            await game_service.create_game(
                session, payload.model_dump(), auth.user["id"], auth.request
            )
        )
        return api_response(result.message, **result.data)
    except AppError:
        raise
    except Exception as e:
        logger.error(f"Error creating game: {e}", exc_info=True)
        raise ServerError()


@router.get("/api/admin/games")
async def list_games(
    status: Optional[str] = Query(None),
    auth: AuthContext = Depends(require_admin),
    session: AsyncSession = Depends(get_db_session),
):
    """List games, optionally filtered by status."""
    if status and status not in _GAME_STATUSES:
        raise ValidationError("Estado de partido inválido", field="status")
    try:
        games = await game_service.list_games(session, status)
        return api_response("Partidos", games=games)
    except Exception as e:
        logger.error(f"Error listing games: {e}", exc_info=True)
        raise ServerError()


@router.get("/api/admin/games/{game_id}")
async def get_game(
    game_id: int,
    auth: AuthContext = Depends(require_admin),
    session: AsyncSession = Depends(get_db_session),
):
    """Game detail including the full roster."""
    try:
        game = await game_service.get_game_detail(session, game_id)
        if game is None:
            raise NotFoundError("Partido no encontrado")
        return api_response("Partido", game=game)
    except AppError:
        raise
    except Exception as e:
        logger.error(f"Error loading game {game_id}: {e}", exc_info=True)
        raise ServerError()


@router.api_route("/api/admin/games/{game_id}", methods=["PUT", "PATCH"])
async def update_game(
    game_id: int,
    payload: GameUpdateRequest,
    auth: AuthContext = Depends(require_admin),
    session: AsyncSession = Depends(get_db_session),
):
    """Edit the details of a game; only the fields sent are changed."""
    try:
        result = raise_for_result(
            await game_service.update_game(
                session,
                game_id,
                payload.model_dump(exclude_unset=True),
                auth.user["id"],
                auth.request,
            )
        )
        return api_response(result.message, **result.data)
    except AppError:
        raise
    except Exception as e:
        logger.error(f"Error updating game {game_id}: {e}", exc_info=True)
        raise ServerError()


@router.delete("/api/admin/games/{game_id}")
async def delete_game(
    game_id: int,
    auth: AuthContext = Depends(require_admin),
    session: AsyncSession = Depends(get_db_session),
):
    """Delete a game that has not been played or cancelled; its players are told."""
    try:
        result = raise_for_result(
            await game_service.delete_game(session, game_id, auth.user["id"], auth.request)
        )
        return api_response(result.message, **result.data)
    except AppError:
        raise
    except Exception as e:
        logger.error(f"Error deleting game {game_id}: {e}", exc_info=True)
        raise ServerError()


@router.put("/api/admin/games/{game_id}/status")
async def update_game_status(
    game_id: int,
    payload: GameStatusUpdateRequest,
    auth: AuthContext = Depends(require_admin),
    session: AsyncSession = Depends(get_db_session),
):
    try:
        result = raise_for_result(
            await game_service.update_game_status(
                session, game_id, payload.status, auth.user["id"], auth.request
            )
        )
        return api_response(result.message, **result.data)
    except AppError:
        raise
    except Exception as e:
        logger.error(f"Error updating status of game {game_id}: {e}", exc_info=True)
        raise ServerError()


@router.put("/api/admin/games/{game_id}/teams")
async def update_team_names(
    game_id: int,
    payload: TeamNamesUpdateRequest,
    auth: AuthContext = Depends(require_admin),
    session: AsyncSession = Depends(get_db_session),
):
    try:
        result = raise_for_result(
            await game_service.update_team_names(
                session,
                game_id,
                payload.team_a_name,
                payload.team_b_name,
                auth.user["id"],
                auth.request,
            )
        )
        return api_response(result.message, **result.data)
    except AppError:
        raise
    except Exception as e:
        logger.error(f"Error updating teams of game {game_id}: {e}", exc_info=True)
        raise ServerError()


@router.post("/api/admin/games/{game_id}/teams")
async def assign_teams(
    game_id: int,
    payload: TeamAssignmentRequest,
    auth: AuthContext = Depends(require_admin),
    session: AsyncSession = Depends(get_db_session),
):
    """Split the confirmed players into the two teams, randomly or as given."""
    try:
        result = raise_for_result(
            await team_service.assign_teams(
                session,
                game_id,
                payload.method,
                payload.manual_assignments,
                auth.user["id"],
                auth.request,
            )
        )
        return api_response(result.message, **result.data)
    except AppError:
        raise
    except Exception as e:
        logger.error(f"Error assigning teams for game {game_id}: {e}", exc_info=True)
        raise ServerError()


@router.get("/api/admin/games/{game_id}/teams")
async def get_teams(
    game_id: int,
    auth: AuthContext = Depends(require_admin),
    session: AsyncSession = Depends(get_db_session),
):
    try:
        teams = await team_service.get_teams(session, game_id)
        if teams is None:
            raise NotFoundError("Partido no encontrado")
        return api_response("Equipos", **teams)
    except AppError:
        raise
    except Exception as e:
        logger.error(f"Error loading teams of game {game_id}: {e}", exc_info=True)
        raise ServerError()


@router.post("/api/admin/games/{game_id}/result")
async def record_result(
    game_id: int,
    payload: GameResultRequest,
    auth: AuthContext = Depends(require_admin),
    session: AsyncSession = Depends(get_db_session),
):
    """Record the final score; the game is marked completed."""
    try:
        result = raise_for_result(
            await result_service.record_result(
                session, game_id, payload.model_dump(), auth.user["id"], auth.request
            )
        )
        return api_response(result.message, **result.data)
    except AppError:
        raise
    except Exception as e:
        logger.error(f"Error recording result of game {game_id}: {e}", exc_info=True)
        raise ServerError()


@router.get("/api/admin/games/{game_id}/result")
async def get_result(
    game_id: int,
    auth: AuthContext = Depends(require_admin),
    session: AsyncSession = Depends(get_db_session),
):
    try:
        result = raise_for_result(await result_service.get_result(session, game_id))
        return api_response(result.message, **result.data)
    except AppError:
        raise
    except Exception as e:
        logger.error(f"Error loading result of game {game_id}: {e}", exc_info=True)
        raise ServerError()


@router.put("/api/admin/games/{game_id}/result")
async def update_result(
    game_id: int,
    payload: GameResultRequest,
    auth: AuthContext = Depends(require_admin),
    session: AsyncSession = Depends(get_db_session),
):
    """Correct a result recorded earlier."""
    try:
        result = raise_for_result(
            await result_service.update_result(
                session, game_id, payload.model_dump(), auth.user["id"], auth.request
            )
        )
        return api_response(result.message, **result.data)
    except AppError:
        raise
    except Exception as e:
        logger.error(f"Error updating result of game {game_id}: {e}", exc_info=True)
        raise ServerError()


@router.patch("/api/admin/registrations/{registration_id}")
async def update_registration(
    registration_id: int,
    payload: RegistrationUpdateRequest,
    auth: AuthContext = Depends(require_admin),
    session: AsyncSession = Depends(get_db_session),
):
    """Update payment status, amount or team of a registration."""
    try:
        result = raise_for_result(
            await game_service.update_registration(
                session,
                registration_id,
                auth.user["id"],
                auth.request,
                payment_status=payload.payment_status,
                payment_amount=payload.payment_amount,
                team_assignment=payload.team_assignment,
                clear_team=payload.clear_team,
            )
        )
        return api_response(result.message, **result.data)
    except AppError:
        raise
    except Exception as e:
        logger.error(f"Error updating registration {registration_id}: {e}", exc_info=True)
        raise ServerError()


@router.get("/api/admin/audit")
async def list_audit_log(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    action_type: Optional[str] = Query(None, max_length=50),
    entity_type: Optional[str] = Query(None, max_length=50),
    entity_id: Optional[int] = Query(None),
    admin_user_id: Optional[int] = Query(None),
    date_from: Optional[datetime] = Query(None),
    date_to: Optional[datetime] = Query(None),
    auth: AuthContext = Depends(require_admin),
    session: AsyncSession = Depends(get_db_session),
):
    """Audit log entries, newest first, with optional filters."""
    try:
        entries, total = await audit_service.get_audit_log(
            session,
            limit=limit,
            offset=(page - 1) * limit,
            action_type=action_type,
            entity_type=entity_type,
            entity_id=entity_id,
            admin_user_id=admin_user_id,
            date_from=date_from,
            date_to=date_to,
        )
        return api_response(
            "Registros de auditoría obtenidos",
            entries=entries,
            total=total,
            page=page,
            limit=limit,
            has_more=page * limit < total,
        )
    except Exception as e:
        logger.error(f"Error listing audit log: {e}", exc_info=True)
        raise ServerError()


@router.post("/api/admin/maintenance/cleanup")
async def run_cleanup(auth: AuthContext = Depends(require_admin)):
    """Run the session and login-attempt cleanup immediately."""
    try:
        counts = await get_maintenance_service().run_once()
        logger.info(f"Admin {auth.user['id']} ran maintenance cleanup: {counts}")
        return api_response("Limpieza completada", **counts)
    except Exception as e:
        logger.error(f"Error running cleanup: {e}", exc_info=True)
        raise ServerError()
