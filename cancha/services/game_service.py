"""
Game administration service: creating, editing and deleting games, status
and team name changes, roster and payment management.
"""

import logging
import secrets
from datetime import datetime
from typing import Dict, List, Optional

from sqlalchemy import delete, select, func
from sqlalchemy.ext.asyncio import AsyncSession

from cancha.database.models import (
    Game,
    GameRegistration,
    GameResult,
    GameStatus,
    RegistrationStatus,
    PaymentStatus,
    AuditAction,
    Notification,
    NotificationType,
)
from cancha.services import audit_service, notification_service, result_service
from cancha.services.friend_registration_service import (
    effective_game_status,
    promote_from_waiting_list,
)
from cancha.services.security_service import RequestContext
from cancha.utils.datetime_utils import ensure_utc, utcnow, to_iso
from cancha.utils.errors import ErrorCode, ServiceResult

logger = logging.getLogger(__name__)

TERMINAL_STATUSES = {GameStatus.COMPLETED.value, GameStatus.CANCELLED.value}


def generate_share_token() -> str:
    return secrets.token_urlsafe(32)


def _game_to_dict(game: Game, waiting_list_count: int = 0) -> Dict:
    return {
        "id": game.id,
        "title": game.title,
        "description": game.description,
        "game_date": to_iso(game.game_date),
        "min_players": game.min_players,
        "max_players": game.max_players,
        "confirmed_count": game.confirmed_count,
        "waiting_list_count": waiting_list_count,
        "field_cost_per_player": float(game.field_cost_per_player or 0),
        "game_duration_minutes": game.game_duration_minutes,
        "status": game.status,
        "effective_status": effective_game_status(game),
        "share_token": game.share_token,
        "team_a_name": game.team_a_name,
        "team_b_name": game.team_b_name,
        "teams_assigned_at": to_iso(game.teams_assigned_at),
        "results_recorded_at": to_iso(game.results_recorded_at),
        "created_by": game.created_by,
        "created_at": to_iso(game.created_at),
    }


def _registration_to_dict(registration: GameRegistration) -> Dict:
    return {
        "id": registration.id,
        "player_name": registration.player_name,
        "player_phone": registration.player_phone,
        "status": registration.status,
        "payment_status": registration.payment_status,
        "payment_amount": float(registration.payment_amount or 0),
        "team_assignment": registration.team_assignment,
        "registered_at": to_iso(registration.registered_at),
        "paid_at": to_iso(registration.paid_at),
        "cancelled_at": to_iso(registration.cancelled_at),
        "cancellation_reason": registration.cancellation_reason,
    }


async def _get_game(session: AsyncSession, game_id: int) -> Optional[Game]:
    return await session.get(Game, game_id, populate_existing=True)


async def create_game(
    session: AsyncSession, game_data: Dict, created_by: int, context: RequestContext
) -> ServiceResult:
    """
    Create a game with a fresh share token.

    Args:
        session: Database session
        game_data: Validated GameCreateRequest fields
        created_by: Admin user ID
        context: Request metadata for the audit trail

    Returns:
        ServiceResult with the created "game"
    """
    game = Game(
        title=game_data["title"].strip(),
        description=game_data.get("description"),
        game_date=game_data["game_date"],
        min_players=game_data["min_players"],
        max_players=game_data["max_players"],
        field_cost_per_player=game_data["field_cost_per_player"],
        game_duration_minutes=game_data["game_duration_minutes"],
        status=game_data.get("status", GameStatus.OPEN.value),
        team_a_name=game_data["team_a_name"].strip(),
        team_b_name=game_data["team_b_name"].strip(),
        share_token=generate_share_token(),
        confirmed_count=0,
        created_by=created_by,
    )
    session.add(game)
    await session.flush()
    await session.refresh(game)
    game_dict = _game_to_dict(game)
    await session.commit()

    logger.info(f"Admin {created_by} created game {game_dict['id']} ({game_dict['title']!r})")
    await audit_service.record_audit(
        AuditAction.GAME_CREATE.value,
        "game",
        game_dict["id"],
        {"title": game_dict["title"], "game_date": game_dict["game_date"]},
        context=context,
        admin_user_id=created_by,
    )
    return ServiceResult.ok("Partido creado exitosamente", game=game_dict)


async def _waiting_counts(session: AsyncSession, game_ids: List[int]) -> Dict[int, int]:
    if not game_ids:
        return {}
    result = await session.execute(
        select(GameRegistration.game_id, func.count())
        .where(
            GameRegistration.game_id.in_(game_ids),
            GameRegistration.status == RegistrationStatus.WAITING_LIST.value,
        )
        .group_by(GameRegistration.game_id)
    )
    return {game_id: count for game_id, count in result.all()}


async def list_games(session: AsyncSession, status: Optional[str] = None) -> List[Dict]:
    """
    List games, soonest first.

    Args:
        session: Database session
        status: Optional stored status filter

    Returns:
        List of game dictionaries
    """
    query = select(Game).order_by(Game.game_date.asc()).execution_options(populate_existing=True)
    if status:
        query = query.where(Game.status == status)
    result = await session.execute(query)
    games = result.scalars().all()
    waiting = await _waiting_counts(session, [game.id for game in games])
    return [_game_to_dict(game, waiting.get(game.id, 0)) for game in games]


async def get_game_detail(session: AsyncSession, game_id: int) -> Optional[Dict]:
    """
    Game with its full roster and result, for admins only.

    Returns:
        Game dictionary with "registrations" and "result", or None if not found
    """
    game = await _get_game(session, game_id)
    if game is None:
        return None

    result = await session.execute(
        select(GameRegistration)
        .where(GameRegistration.game_id == game_id)
        .order_by(GameRegistration.id)
    )
    registrations = [_registration_to_dict(r) for r in result.scalars().all()]
    waiting = sum(1 for r in registrations if r["status"] == RegistrationStatus.WAITING_LIST.value)
    game_result = await result_service.get_game_result(session, game_id)
    return {
        **_game_to_dict(game, waiting),
        "registrations": registrations,
        "result": result_service.result_to_dict(game_result) if game_result else None,
    }


async def update_game_status(
    session: AsyncSession,
    game_id: int,
    new_status: str,
    admin_user_id: int,
    context: RequestContext,
) -> ServiceResult:
    """
    Change a game's stored status. Completed and cancelled games are final.

    Returns:
        ServiceResult with the updated "game"; NOT_FOUND or
        INVALID_STATUS_TRANSITION on failure
    """
    game = await _get_game(session, game_id)
    if game is None:
        return ServiceResult.fail(ErrorCode.NOT_FOUND, "Partido no encontrado")

    old_status = game.status
    if old_status in TERMINAL_STATUSES and new_status != old_status:
        return ServiceResult.fail(
            ErrorCode.INVALID_STATUS_TRANSITION,
            f"No se puede cambiar el estado de un partido {old_status}",
        )

    game.status = new_status
    await session.flush()
    await session.refresh(game)
    game_dict = _game_to_dict(game)
    await session.commit()

    await audit_service.record_audit(
        AuditAction.GAME_STATUS_UPDATE.value,
        "game",
        game_id,
        {"from": old_status, "to": new_status},
        context=context,
        admin_user_id=admin_user_id,
    )
    return ServiceResult.ok("Estado del partido actualizado", game=game_dict)


async def update_team_names(
    session: AsyncSession,
    game_id: int,
    team_a_name: str,
    team_b_name: str,
    admin_user_id: int,
    context: RequestContext,
) -> ServiceResult:
    game = await _get_game(session, game_id)
    if game is None:
        return ServiceResult.fail(ErrorCode.NOT_FOUND, "Partido no encontrado")

    game.team_a_name = team_a_name.strip()
    game.team_b_name = team_b_name.strip()
    await session.flush()
    await session.refresh(game)
    game_dict = _game_to_dict(game)
    await session.commit()

    await audit_service.record_audit(
        AuditAction.GAME_TEAMS_UPDATE.value,
        "game",
        game_id,
        {"team_a_name": game_dict["team_a_name"], "team_b_name": game_dict["team_b_name"]},
        context=context,
        admin_user_id=admin_user_id,
    )
    return ServiceResult.ok("Nombres de equipos actualizados", game=game_dict)


_EDITABLE_FIELDS = (
    "title",
    "description",
    "game_date",
    "min_players",
    "max_players",
    "field_cost_per_player",
    "game_duration_minutes",
    "team_a_name",
    "team_b_name",
)
_STRIPPED_FIELDS = {"title", "team_a_name", "team_b_name"}


def _audit_value(value):
    return to_iso(value) if isinstance(value, datetime) else value


async def _active_registrations(session: AsyncSession, game_id: int) -> List[GameRegistration]:
    result = await session.execute(
        select(GameRegistration)
        .where(
            GameRegistration.game_id == game_id,
            GameRegistration.status != RegistrationStatus.CANCELLED.value,
        )
        .order_by(GameRegistration.id)
    )
    return list(result.scalars().all())


async def update_game(
    session: AsyncSession,
    game_id: int,
    changes: Dict,
    admin_user_id: int,
    context: RequestContext,
) -> ServiceResult:
    """
    Edit the details of a game that is not completed or cancelled.

    Raising max_players promotes waiting players into the new slots. Moving
    the game date notifies every active player.

    Args:
        session: Database session
        game_id: Game to edit
        changes: Fields set on a GameUpdateRequest
        admin_user_id: Acting admin
        context: Request metadata for the audit trail

    Returns:
        ServiceResult with the updated "game"; NOT_FOUND, INVALID_GAME_STATE
        or VALIDATION_ERROR on failure
    """
    game = await _get_game(session, game_id)
    if game is None:
        return ServiceResult.fail(ErrorCode.NOT_FOUND, "Partido no encontrado")
    if game.status in TERMINAL_STATUSES:
        return ServiceResult.fail(
            ErrorCode.INVALID_GAME_STATE, "No se puede modificar un partido completado o cancelado"
        )

    changes = {name: value for name, value in changes.items() if name in _EDITABLE_FIELDS}
    for name in _STRIPPED_FIELDS & changes.keys():
        changes[name] = changes[name].strip()

    min_players = changes.get("min_players", game.min_players)
    max_players = changes.get("max_players", game.max_players)
    if max_players < min_players:
        return ServiceResult.fail(
            ErrorCode.VALIDATION_ERROR, "El máximo de jugadores no puede ser menor que el mínimo"
        )
    if max_players < game.confirmed_count:
        return ServiceResult.fail(
            ErrorCode.VALIDATION_ERROR,
            "No se puede reducir el máximo de jugadores por debajo de los confirmados "
            f"({game.confirmed_count})",
        )
    team_a_name = changes.get("team_a_name", game.team_a_name)
    team_b_name = changes.get("team_b_name", game.team_b_name)
    if team_a_name.lower() == team_b_name.lower():
        return ServiceResult.fail(
            ErrorCode.VALIDATION_ERROR, "Los nombres de los equipos deben ser distintos"
        )

    previous = {name: _audit_value(getattr(game, name)) for name in changes}
    date_changed = "game_date" in changes and ensure_utc(changes["game_date"]) != ensure_utc(
        game.game_date
    )
    for name, value in changes.items():
        setattr(game, name, value)
    await session.flush()

    promoted = 0
    if max_players > previous.get("max_players", max_players):
        while await promote_from_waiting_list(session, game):
            promoted += 1

    notified = 0
    if date_changed:
        for registration in await _active_registrations(session, game_id):
            await notification_service.queue_notification(
                session,
                player_phone=registration.player_phone,
                message_type=NotificationType.GAME_UPDATE.value,
                message_content=notification_service.game_updated_message(
                    registration.player_name, game.title, game.game_date
                ),
                game_id=game_id,
                registration_id=registration.id,
            )
            notified += 1

    await session.refresh(game)
    waiting = await _waiting_counts(session, [game_id])
    game_dict = _game_to_dict(game, waiting.get(game_id, 0))
    await session.commit()

    logger.info(f"Admin {admin_user_id} updated game {game_id}: {sorted(changes)}")
    await audit_service.record_audit(
        AuditAction.GAME_UPDATE.value,
        "game",
        game_id,
        {
            "changes": {name: _audit_value(value) for name, value in changes.items()},
            "previous": previous,
            "promoted": promoted,
            "notified": notified,
        },
        context=context,
        admin_user_id=admin_user_id,
    )
    return ServiceResult.ok("Partido actualizado exitosamente", game=game_dict)


async def delete_game(
    session: AsyncSession, game_id: int, admin_user_id: int, context: RequestContext
) -> ServiceResult:
    """
    Delete a game together with its registrations, result and queued messages.

    Active players get a cancellation message queued without a game
    reference, so it outlives the game row. Completed and cancelled games
    stay as history.

    Returns:
        ServiceResult with "game_id" and "notified"; NOT_FOUND or
        INVALID_GAME_STATE on failure
    """
    game = await _get_game(session, game_id)
    if game is None:
        return ServiceResult.fail(ErrorCode.NOT_FOUND, "Partido no encontrado")
    if game.status == GameStatus.COMPLETED.value:
        return ServiceResult.fail(ErrorCode.INVALID_GAME_STATE, "No se puede eliminar un partido completado")
    if game.status == GameStatus.CANCELLED.value:
        return ServiceResult.fail(ErrorCode.INVALID_GAME_STATE, "El partido ya está cancelado")

    title = game.title
    previous_status = game.status
    registrations = await _active_registrations(session, game_id)

    await session.execute(delete(Notification).where(Notification.game_id == game_id))
    for registration in registrations:
        await notification_service.queue_notification(
            session,
            player_phone=registration.player_phone,
            message_type=NotificationType.GAME_CANCELLED.value,
            message_content=notification_service.game_cancelled_message(
                registration.player_name, title
            ),
        )
    await session.execute(delete(GameResult).where(GameResult.game_id == game_id))
    await session.execute(delete(GameRegistration).where(GameRegistration.game_id == game_id))
    await session.execute(delete(Game).where(Game.id == game_id))
    await session.commit()

    logger.info(f"Admin {admin_user_id} deleted game {game_id} ({title!r})")
    await audit_service.record_audit(
        AuditAction.GAME_DELETE.value,
        "game",
        game_id,
        {
            "title": title,
            "previous_status": previous_status,
            "registered_players": len(registrations),
        },
        context=context,
        admin_user_id=admin_user_id,
    )
    return ServiceResult.ok(
        "Partido eliminado exitosamente", game_id=game_id, notified=len(registrations)
    )


async def update_registration(
    session: AsyncSession,
    registration_id: int,
    admin_user_id: int,
    context: RequestContext,
    payment_status: Optional[str] = None,
    payment_amount: Optional[float] = None,
    team_assignment: Optional[str] = None,
    clear_team: bool = False,
) -> ServiceResult:
    """
    Update payment and team fields of a registration.

    Marking a payment as paid stamps paid_at; any other status clears it.
    Cancelled registrations cannot be assigned to a team.

    Returns:
        ServiceResult with the updated "registration"
    """
    registration = await session.get(GameRegistration, registration_id, populate_existing=True)
    if registration is None:
        return ServiceResult.fail(ErrorCode.NOT_FOUND, "Inscripción no encontrada")

    changes = {}
    if payment_status is not None:
        registration.payment_status = payment_status
        registration.paid_at = utcnow() if payment_status == PaymentStatus.PAID.value else None
        changes["payment_status"] = payment_status
    if payment_amount is not None:
        registration.payment_amount = payment_amount
        changes["payment_amount"] = payment_amount
    if team_assignment is not None or clear_team:
        if registration.status == RegistrationStatus.CANCELLED.value and team_assignment:
            return ServiceResult.fail(
                ErrorCode.VALIDATION_ERROR, "No se puede asignar equipo a una inscripción cancelada"
            )
        registration.team_assignment = None if clear_team else team_assignment
        changes["team_assignment"] = registration.team_assignment

    await session.flush()
    registration_dict = _registration_to_dict(registration)
    await session.commit()

    await audit_service.record_audit(
        AuditAction.PAYMENT_UPDATE.value,
        "game_registration",
        registration_id,
        changes,
        context=context,
        admin_user_id=admin_user_id,
    )
    return ServiceResult.ok("Inscripción actualizada", registration=registration_dict)
