"""
Game results: recording and correcting the final score.

A result can only be stored once the game has kicked off. Storing one marks
the game completed.
"""

import logging
from typing import Dict, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from cancha.database.models import AuditAction, Game, GameResult, GameStatus, WinningTeam
from cancha.services import audit_service
from cancha.services.friend_registration_service import effective_game_status
from cancha.services.security_service import RequestContext
from cancha.utils.datetime_utils import utcnow, to_iso
from cancha.utils.errors import ErrorCode, ServiceResult

logger = logging.getLogger(__name__)

RESULT_STATUSES = {GameStatus.IN_PROGRESS.value, GameStatus.COMPLETED.value}


def winning_team(team_a_score: int, team_b_score: int) -> str:
    if team_a_score > team_b_score:
        return WinningTeam.TEAM_A.value
    if team_b_score > team_a_score:
        return WinningTeam.TEAM_B.value
    return WinningTeam.DRAW.value


def result_to_dict(result: GameResult) -> Dict:
    return {
        "id": result.id,
        "game_id": result.game_id,
        "team_a_score": result.team_a_score,
        "team_b_score": result.team_b_score,
        "winning_team": result.winning_team,
        "notes": result.notes,
        "recorded_by": result.recorded_by,
        "recorded_at": to_iso(result.recorded_at),
    }


async def get_game_result(session: AsyncSession, game_id: int) -> Optional[GameResult]:
    result = await session.execute(
        select(GameResult)
        .where(GameResult.game_id == game_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def _load_game_for_result(session: AsyncSession, game_id: int):
    game = await session.get(Game, game_id, populate_existing=True)
    if game is None:
        return None, ServiceResult.fail(ErrorCode.NOT_FOUND, "Partido no encontrado")
    if effective_game_status(game) not in RESULT_STATUSES:
        return None, ServiceResult.fail(
            ErrorCode.INVALID_GAME_STATE,
            "Solo se pueden registrar resultados de partidos en progreso o completados",
        )
    return game, None


async def _store_result(
    session: AsyncSession,
    game: Game,
    game_result: Optional[GameResult],
    scores: Dict,
    admin_user_id: int,
    action: AuditAction,
    context: RequestContext,
) -> Dict:
    now = utcnow()
    if game_result is None:
        game_result = GameResult(game_id=game.id)
        session.add(game_result)
    game_result.team_a_score = scores["team_a_score"]
    game_result.team_b_score = scores["team_b_score"]
    game_result.winning_team = winning_team(scores["team_a_score"], scores["team_b_score"])
    game_result.notes = (scores.get("notes") or "").strip() or None
    game_result.recorded_by = admin_user_id
    game_result.recorded_at = now

    game.status = GameStatus.COMPLETED.value
    game.results_recorded_at = now
    await session.flush()
    result_dict = result_to_dict(game_result)
    game_id = game.id
    await session.commit()

    logger.info(f"Admin {admin_user_id} stored the result of game {game_id}")
    await audit_service.record_audit(
        action.value,
        "game",
        game_id,
        {
            "team_a_score": result_dict["team_a_score"],
            "team_b_score": result_dict["team_b_score"],
            "winning_team": result_dict["winning_team"],
            "notes": result_dict["notes"],
        },
        context=context,
        admin_user_id=admin_user_id,
    )
    return result_dict


async def record_result(
    session: AsyncSession,
    game_id: int,
    scores: Dict,
    admin_user_id: int,
    context: RequestContext,
) -> ServiceResult:
    """
    Record the final score of a game, replacing any earlier one.

    Args:
        session: Database session
        game_id: Game the score belongs to
        scores: Validated GameResultRequest fields
        admin_user_id: Acting admin
        context: Request metadata for the audit trail

    Returns:
        ServiceResult with the stored "result"; NOT_FOUND or
        INVALID_GAME_STATE on failure
    """
    game, failure = await _load_game_for_result(session, game_id)
    if failure:
        return failure
    existing = await get_game_result(session, game_id)
    result_dict = await _store_result(
        session, game, existing, scores, admin_user_id, AuditAction.RECORD_RESULT, context
    )
    return ServiceResult.ok("Resultado registrado exitosamente", result=result_dict)


async def update_result(
    session: AsyncSession,
    game_id: int,
    scores: Dict,
    admin_user_id: int,
    context: RequestContext,
) -> ServiceResult:
    """Correct a result recorded earlier. NOT_FOUND when none exists yet."""
    game, failure = await _load_game_for_result(session, game_id)
    if failure:
        return failure
    existing = await get_game_result(session, game_id)
    if existing is None:
        return ServiceResult.fail(
            ErrorCode.NOT_FOUND, "No existe un resultado previo para actualizar"
        )
    result_dict = await _store_result(
        session, game, existing, scores, admin_user_id, AuditAction.UPDATE_RESULT, context
    )
    return ServiceResult.ok("Resultado actualizado exitosamente", result=result_dict)


async def get_result(session: AsyncSession, game_id: int) -> ServiceResult:
    game = await session.get(Game, game_id, populate_existing=True)
    if game is None:
        return ServiceResult.fail(ErrorCode.NOT_FOUND, "Partido no encontrado")
    game_result = await get_game_result(session, game_id)
    if game_result is None:
        return ServiceResult.fail(
            ErrorCode.NOT_FOUND, "No se ha registrado un resultado para este partido"
        )
    return ServiceResult.ok(
        "Resultado del partido",
        result=result_to_dict(game_result),
        game={
            "id": game.id,
            "status": game.status,
            "results_recorded_at": to_iso(game.results_recorded_at),
        },
    )
