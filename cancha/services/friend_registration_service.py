"""
Friend registration business logic.

Friends register through a game's public share token. Capacity is enforced
with an atomic conditional update on games.confirmed_count, so two concurrent
registrations can never both take the last slot. When a game is full the
friend goes onto the waiting list (bounded by MAX_WAITING_LIST_SIZE); that
policy applies to every registration path. Cancelling a confirmed
registration frees its slot and promotes the oldest waiting-list entry.

Every public function returns a ServiceResult. Unexpected database errors
are raised.
"""

import logging
import re
from datetime import datetime, timedelta
from typing import Dict, Optional, Tuple

from sqlalchemy import select, update, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from cancha.database.models import (
    Game,
    GameRegistration,
    GameStatus,
    RegistrationStatus,
    PaymentStatus,
    TeamAssignment,
    NotificationType,
    AuditAction,
)
from cancha.services import audit_service, notification_service, registration_token_service
from cancha.services.security_service import RequestContext
from cancha.utils.constants import (
    LOCATION_NAME,
    PLAYER_NAME_MIN_LENGTH,
    PLAYER_NAME_MAX_LENGTH,
    PHONE_MIN_LENGTH,
    PHONE_MAX_LENGTH,
    REGISTRATION_CUTOFF_HOURS,
    CANCELLATION_CUTOFF_HOURS,
    FULL_REFUND_CUTOFF_HOURS,
    MAX_WAITING_LIST_SIZE,
    GAME_ACCESS_GRACE_HOURS,
)
from cancha.utils.datetime_utils import utcnow, ensure_utc, to_iso, hours_until
from cancha.utils.errors import ErrorCode, ServiceResult

logger = logging.getLogger(__name__)

PHONE_PATTERN = re.compile(r"[1-9]\d{0,15}")
SHARE_TOKEN_PATTERN = re.compile(r"[A-Za-z0-9_-]{20,128}")
_PHONE_SEPARATORS = re.compile(r"[\s\-().]")

_CLOSED_FOR_CANCELLATION = {
    GameStatus.IN_PROGRESS.value,
    GameStatus.COMPLETED.value,
    GameStatus.CANCELLED.value,
}


# ---------------------------------------------------------------------------
# Validation and time rules
# ---------------------------------------------------------------------------


def normalize_phone(phone: str) -> str:
    """Digits only: separators and one leading "+" are dropped, so +54911... and 54911... match."""
    digits = _PHONE_SEPARATORS.sub("", phone or "")
    return digits[1:] if digits.startswith("+") else digits


def is_valid_share_token(share_token: Optional[str]) -> bool:
    return isinstance(share_token, str) and SHARE_TOKEN_PATTERN.fullmatch(share_token) is not None


def validate_player_data(player_name: str, player_phone: str) -> Optional[ServiceResult]:
    """Return a failed result describing the first invalid field, or None."""
    name = (player_name or "").strip()
    if len(name) < PLAYER_NAME_MIN_LENGTH:
        return ServiceResult.fail(
            ErrorCode.VALIDATION_ERROR,
            f"El nombre debe tener al menos {PLAYER_NAME_MIN_LENGTH} caracteres",
        )
    if len(name) > PLAYER_NAME_MAX_LENGTH:
        return ServiceResult.fail(
            ErrorCode.VALIDATION_ERROR,
            f"El nombre no puede tener más de {PLAYER_NAME_MAX_LENGTH} caracteres",
        )

    phone = normalize_phone(player_phone)
    if not (PHONE_MIN_LENGTH <= len(phone) <= PHONE_MAX_LENGTH) or not PHONE_PATTERN.fullmatch(phone):
        return ServiceResult.fail(ErrorCode.VALIDATION_ERROR, "Número de teléfono inválido")
    return None


def effective_game_status(game: Game, now: Optional[datetime] = None) -> str:
    """Stored status, advanced by the clock once an open or closed game kicks off."""
    now = now or utcnow()
    if game.status not in (GameStatus.OPEN.value, GameStatus.CLOSED.value):
        return game.status
    kickoff = ensure_utc(game.game_date)
    if now >= kickoff + timedelta(minutes=game.game_duration_minutes):
        return GameStatus.COMPLETED.value
    if now >= kickoff:
        return GameStatus.IN_PROGRESS.value
    return game.status


def is_game_accessible(game: Game, now: Optional[datetime] = None) -> bool:
    now = now or utcnow()
    if game.status == GameStatus.CANCELLED.value:
        return False
    return now < ensure_utc(game.game_date) + timedelta(hours=GAME_ACCESS_GRACE_HOURS)


def is_registration_open(game: Game, now: Optional[datetime] = None) -> bool:
    return (
        game.status == GameStatus.OPEN.value
        and hours_until(game.game_date, now) > REGISTRATION_CUTOFF_HOURS
    )


def check_cancellation_allowed(game: Game, now: Optional[datetime] = None) -> Tuple[bool, str]:
    """
    Decide whether registrations of a game may still be cancelled.

    Returns:
        (allowed, reason shown to the player when not allowed)
    """
    now = now or utcnow()
    status = effective_game_status(game, now)
    if status in _CLOSED_FOR_CANCELLATION:
        return False, "No se puede cancelar la inscripción: el partido ya comenzó, terminó o fue cancelado"
    if hours_until(game.game_date, now) < CANCELLATION_CUTOFF_HOURS:
        return False, (
            f"No se puede cancelar con menos de {CANCELLATION_CUTOFF_HOURS} horas "
            "de anticipación al partido"
        )
    return True, ""


def compute_refund_info(registration: GameRegistration, game: Game, now: Optional[datetime] = None) -> Dict:
    """Refund eligibility for a cancellation happening at `now`."""
    amount = float(registration.payment_amount or 0)
    if registration.payment_status != PaymentStatus.PAID.value:
        return {"eligible": False, "amount": 0.0, "reason": "No hay pagos registrados para reembolsar"}
    if hours_until(game.game_date, now) >= FULL_REFUND_CUTOFF_HOURS:
        return {
            "eligible": True,
            "amount": amount,
            "reason": f"Cancelación con más de {FULL_REFUND_CUTOFF_HOURS} horas de anticipación",
        }
    return {
        "eligible": False,
        "amount": 0.0,
        "reason": f"Cancelación con menos de {FULL_REFUND_CUTOFF_HOURS} horas de anticipación",
    }


def mask_phone(phone: str) -> str:
    if len(phone) <= 4:
        return "*" * len(phone)
    return "*" * (len(phone) - 4) + phone[-4:]


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------


async def _get_game_by_share_token(
    session: AsyncSession, share_token: str, for_update: bool = False
) -> Optional[Game]:
    query = (
        select(Game)
        .where(Game.share_token == share_token)
        .execution_options(populate_existing=True)
    )
    if for_update:
        query = query.with_for_update()
    result = await session.execute(query)
    return result.scalar_one_or_none()


async def _get_active_registration(
    session: AsyncSession, game_id: int, phone: str
) -> Optional[GameRegistration]:
    result = await session.execute(
        select(GameRegistration).where(
            GameRegistration.game_id == game_id,
            GameRegistration.player_phone == phone,
            GameRegistration.status != RegistrationStatus.CANCELLED.value,
        )
    )
    return result.scalar_one_or_none()


async def _count_waiting_list(session: AsyncSession, game_id: int) -> int:
    result = await session.execute(
        select(func.count())
        .select_from(GameRegistration)
        .where(
            GameRegistration.game_id == game_id,
            GameRegistration.status == RegistrationStatus.WAITING_LIST.value,
        )
    )
    return result.scalar() or 0


async def get_waiting_list_position(
    session: AsyncSession, registration: GameRegistration
) -> Optional[int]:
    """1-based position on the waiting list, None if not waiting."""
    if registration.status != RegistrationStatus.WAITING_LIST.value:
        return None
    result = await session.execute(
        select(func.count())
        .select_from(GameRegistration)
        .where(
            GameRegistration.game_id == registration.game_id,
            GameRegistration.status == RegistrationStatus.WAITING_LIST.value,
            GameRegistration.id < registration.id,
        )
    )
    return (result.scalar() or 0) + 1


async def _reserve_slot(session: AsyncSession, game_id: int) -> bool:
    """Take one confirmed slot if any is left. Atomic at the database."""
    result = await session.execute(
        update(Game)
        .where(Game.id == game_id, Game.confirmed_count < Game.max_players)
        .values(confirmed_count=Game.confirmed_count + 1)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


async def _release_slot(session: AsyncSession, game_id: int) -> None:
    await session.execute(
        update(Game)
        .where(Game.id == game_id, Game.confirmed_count > 0)
        .values(confirmed_count=Game.confirmed_count - 1)
        .execution_options(synchronize_session=False)
    )


async def promote_from_waiting_list(session: AsyncSession, game: Game) -> Optional[GameRegistration]:
    """Move the oldest waiting registration into a free slot and notify the player."""
    result = await session.execute(
        select(GameRegistration)
        .where(
            GameRegistration.game_id == game.id,
            GameRegistration.status == RegistrationStatus.WAITING_LIST.value,
        )
        .order_by(GameRegistration.id)
        .limit(1)
    )
    candidate = result.scalar_one_or_none()
    if candidate is None or not await _reserve_slot(session, game.id):
        return None

    candidate.status = RegistrationStatus.CONFIRMED.value
    await notification_service.queue_notification(
        session,
        player_phone=candidate.player_phone,
        message_type=NotificationType.PROMOTED_FROM_WAITING_LIST.value,
        message_content=notification_service.promoted_message(
            candidate.player_name,
            game.title,
            game.game_date,
            registration_token_service.create_management_url(candidate.registration_token),
        ),
        game_id=game.id,
        registration_id=candidate.id,
    )
    logger.info(f"Promoted registration {candidate.id} from the waiting list of game {game.id}")
    return candidate


def _public_game_dict(game: Game, waiting_list_count: int, now: Optional[datetime] = None) -> Dict:
    return {
        "title": game.title,
        "description": game.description,
        "game_date": to_iso(game.game_date),
        "location": LOCATION_NAME,
        "min_players": game.min_players,
        "max_players": game.max_players,
        "current_players": game.confirmed_count,
        "spots_left": max(game.max_players - game.confirmed_count, 0),
        "waiting_list_count": waiting_list_count,
        "field_cost_per_player": float(game.field_cost_per_player or 0),
        "game_duration_minutes": game.game_duration_minutes,
        "status": effective_game_status(game, now),
        "team_a_name": game.team_a_name,
        "team_b_name": game.team_b_name,
    }


# ---------------------------------------------------------------------------
# Operations
# ---------------------------------------------------------------------------


async def get_public_game_info(session: AsyncSession, share_token: str) -> ServiceResult:
    """
    Public view of a game reached through its share link.

    Args:
        session: Database session
        share_token: Public game token

    Returns:
        ServiceResult with "game" and "registration_open"
    """
    if not is_valid_share_token(share_token):
        return ServiceResult.fail(ErrorCode.INVALID_TOKEN)

    game = await _get_game_by_share_token(session, share_token)
    if game is None:
        return ServiceResult.fail(ErrorCode.INVALID_TOKEN, "Partido no encontrado")

    now = utcnow()
    if not is_game_accessible(game, now):
        return ServiceResult.fail(ErrorCode.INVALID_TOKEN, "Este partido ya no está disponible")

    waiting = await _count_waiting_list(session, game.id)
    return ServiceResult.ok(
        "Partido encontrado",
        game=_public_game_dict(game, waiting, now),
        registration_open=is_registration_open(game, now),
    )


async def register_friend(
    session: AsyncSession,
    share_token: str,
    player_data: Dict,
    context: RequestContext,
) -> ServiceResult:
    """
    Register a friend for the game behind a share token.

    Args:
        session: Database session
        share_token: Public game token
        player_data: Dict with "player_name" and "player_phone"
        context: Request metadata for the audit trail

    Returns:
        ServiceResult; on success data holds the registration token, the
        management URL, the status ("confirmed" or "waiting_list") and the
        waiting list position. Failure codes: INVALID_TOKEN,
        VALIDATION_ERROR, REGISTRATION_CLOSED, DUPLICATE_REGISTRATION,
        GAME_FULL.
    """
    if not is_valid_share_token(share_token):
        return ServiceResult.fail(ErrorCode.INVALID_TOKEN)

    invalid = validate_player_data(player_data.get("player_name"), player_data.get("player_phone"))
    if invalid:
        return invalid
    player_name = player_data["player_name"].strip()
    player_phone = normalize_phone(player_data["player_phone"])

    game = await _get_game_by_share_token(session, share_token, for_update=True)
    if game is None:
        return ServiceResult.fail(ErrorCode.INVALID_TOKEN, "Partido no encontrado")
    if game.status != GameStatus.OPEN.value:
        await session.rollback()
        return ServiceResult.fail(
            ErrorCode.INVALID_TOKEN, "Las inscripciones para este partido no están abiertas"
        )

    now = utcnow()
    if not is_registration_open(game, now):
        await session.rollback()
        return ServiceResult.fail(
            ErrorCode.REGISTRATION_CLOSED,
            f"Las inscripciones cierran {REGISTRATION_CUTOFF_HOURS} horas antes del partido",
        )

    if await _get_active_registration(session, game.id, player_phone):
        await session.rollback()
        return ServiceResult.fail(
            ErrorCode.DUPLICATE_REGISTRATION, "Este número de teléfono ya está inscrito en el partido"
        )

    if await _reserve_slot(session, game.id):
        status = RegistrationStatus.CONFIRMED.value
    else:
        if await _count_waiting_list(session, game.id) >= MAX_WAITING_LIST_SIZE:
            await session.rollback()
            return ServiceResult.fail(
                ErrorCode.GAME_FULL, "El partido y la lista de espera están completos"
            )
        status = RegistrationStatus.WAITING_LIST.value

    token = registration_token_service.generate_token()
    registration = GameRegistration(
        game_id=game.id,
        player_name=player_name,
        player_phone=player_phone,
        status=status,
        payment_status=PaymentStatus.PENDING.value,
        payment_amount=game.field_cost_per_player,
        registration_token=token,
        registered_at=now,
    )
    session.add(registration)
    try:
        await session.flush()
    except IntegrityError:
        # A concurrent request registered the same phone first
        await session.rollback()
        return ServiceResult.fail(
            ErrorCode.DUPLICATE_REGISTRATION, "Este número de teléfono ya está inscrito en el partido"
        )

    management_url = registration_token_service.create_management_url(token)
    position = await get_waiting_list_position(session, registration)
    if status == RegistrationStatus.CONFIRMED.value:
        message_type = NotificationType.REGISTRATION_CONFIRMED.value
        content = notification_service.registration_confirmed_message(
            player_name, game.title, game.game_date, management_url
        )
    else:
        message_type = NotificationType.WAITING_LIST.value
        content = notification_service.waiting_list_message(
            player_name, game.title, position, management_url
        )
    await notification_service.queue_notification(
        session,
        player_phone=player_phone,
        message_type=message_type,
        message_content=content,
        game_id=game.id,
        registration_id=registration.id,
    )

    registration_id = registration.id
    game_id = game.id
    await session.commit()

    logger.info(f"Registered {status} registration {registration_id} for game {game_id}")
    await audit_service.record_audit(
        AuditAction.FRIEND_REGISTER.value,
        "game_registration",
        registration_id,
        {"game_id": game_id, "status": status, "waiting_list_position": position},
        context=context,
    )

    if status == RegistrationStatus.CONFIRMED.value:
        message = "¡Inscripción confirmada!"
    else:
        message = f"El partido está completo. Quedaste en la lista de espera (posición {position})."

    return ServiceResult.ok(
        message,
        status=status,
        waiting_list_position=position,
        registration_token=token,
        management_url=management_url,
        registration={
            "player_name": player_name,
            "status": status,
            "payment_status": registration.payment_status,
            "registered_at": to_iso(registration.registered_at),
        },
    )


async def _cancel_registration(
    session: AsyncSession,
    registration: GameRegistration,
    reason: Optional[str],
    context: RequestContext,
    audit_action: str,
) -> ServiceResult:
    if registration.status == RegistrationStatus.CANCELLED.value:
        return ServiceResult.fail(ErrorCode.ALREADY_CANCELLED, "Esta inscripción ya fue cancelada")

    result = await session.execute(
        select(Game)
        .where(Game.id == registration.game_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    game = result.scalar_one()

    now = utcnow()
    allowed, not_allowed_reason = check_cancellation_allowed(game, now)
    if not allowed:
        await session.rollback()
        return ServiceResult.fail(ErrorCode.CANCELLATION_NOT_ALLOWED, not_allowed_reason)

    was_confirmed = registration.status == RegistrationStatus.CONFIRMED.value
    refund_info = compute_refund_info(registration, game, now)

    registration.status = RegistrationStatus.CANCELLED.value
    registration.cancelled_at = now
    registration.cancellation_reason = reason.strip() if reason and reason.strip() else None

    promoted = None
    if was_confirmed:
        await _release_slot(session, game.id)
        promoted = await promote_from_waiting_list(session, game)

    await notification_service.queue_notification(
        session,
        player_phone=registration.player_phone,
        message_type=NotificationType.REGISTRATION_CANCELLED.value,
        message_content=notification_service.cancellation_message(registration.player_name, game.title),
        game_id=game.id,
        registration_id=registration.id,
    )

    registration_id = registration.id
    game_id = game.id
    await session.commit()

    logger.info(f"Cancelled registration {registration_id} for game {game_id}")
    await audit_service.record_audit(
        audit_action,
        "game_registration",
        registration_id,
        {
            "game_id": game_id,
            "reason": registration.cancellation_reason,
            "refund_eligible": refund_info["eligible"],
            "promoted_registration_id": promoted.id if promoted else None,
        },
        context=context,
    )

    return ServiceResult.ok("Inscripción cancelada exitosamente", refund_info=refund_info)


async def cancel_registration_by_token(
    session: AsyncSession, token: str, reason: Optional[str], context: RequestContext
) -> ServiceResult:
    """
    Cancel the registration owning a registration token.

    Failure codes: INVALID_TOKEN (unknown or malformed token),
    ALREADY_CANCELLED, CANCELLATION_NOT_ALLOWED (game started, finished,
    cancelled, or inside the cancellation cutoff).

    Returns:
        ServiceResult with "refund_info" on success
    """
    registration = await registration_token_service.find_registration_by_token(session, token)
    if registration is None:
        return ServiceResult.fail(ErrorCode.INVALID_TOKEN)
    return await _cancel_registration(
        session, registration, reason, context, AuditAction.TOKEN_CANCEL.value
    )


async def cancel_friend_registration(
    session: AsyncSession,
    share_token: str,
    player_phone: str,
    reason: Optional[str],
    context: RequestContext,
) -> ServiceResult:
    """Cancel a registration identified by game share token and phone number."""
    if not is_valid_share_token(share_token):
        return ServiceResult.fail(ErrorCode.INVALID_TOKEN)

    game = await _get_game_by_share_token(session, share_token)
    if game is None:
        return ServiceResult.fail(ErrorCode.INVALID_TOKEN, "Partido no encontrado")

    registration = await _get_active_registration(session, game.id, normalize_phone(player_phone))
    if registration is None:
        return ServiceResult.fail(
            ErrorCode.NOT_FOUND, "No se encontró una inscripción activa con ese teléfono"
        )
    return await _cancel_registration(
        session, registration, reason, context, AuditAction.FRIEND_CANCEL.value
    )


async def get_registration_by_token(session: AsyncSession, token: str) -> ServiceResult:
    """
    Self-service projection of a registration.

    Contains only the owner's own data and public game details; no
    database ids and no other players.

    Returns:
        ServiceResult with "registration", "game" and "status"
    """
    registration = await registration_token_service.find_registration_by_token(session, token)
    if registration is None:
        return ServiceResult.fail(ErrorCode.INVALID_TOKEN)

    game = await session.get(Game, registration.game_id, populate_existing=True)
    now = utcnow()
    waiting = await _count_waiting_list(session, game.id)
    position = await get_waiting_list_position(session, registration)
    is_cancelled = registration.status == RegistrationStatus.CANCELLED.value
    cancellation_allowed, _ = check_cancellation_allowed(game, now)

    team_name = None
    if registration.team_assignment == TeamAssignment.TEAM_A.value:
        team_name = game.team_a_name
    elif registration.team_assignment == TeamAssignment.TEAM_B.value:
        team_name = game.team_b_name

    return ServiceResult.ok(
        "Inscripción encontrada",
        registration={
            "player_name": registration.player_name,
            "player_phone": mask_phone(registration.player_phone),
            "status": registration.status,
            "payment_status": registration.payment_status,
            "payment_amount": float(registration.payment_amount or 0),
            "team_assignment": registration.team_assignment,
            "team_name": team_name,
            "registered_at": to_iso(registration.registered_at),
            "paid_at": to_iso(registration.paid_at),
            "cancelled_at": to_iso(registration.cancelled_at),
            "cancellation_reason": registration.cancellation_reason,
        },
        game=_public_game_dict(game, waiting, now),
        status={
            "is_confirmed": registration.status == RegistrationStatus.CONFIRMED.value,
            "is_waiting_list": position is not None,
            "is_cancelled": is_cancelled,
            "waiting_list_position": position,
            "can_cancel": not is_cancelled and cancellation_allowed,
            "hours_until_game": round(hours_until(game.game_date, now), 2),
        },
    )


async def get_player_registration_status(
    session: AsyncSession, share_token: str, player_phone: str
) -> ServiceResult:
    """Whether a phone number holds an active registration for a game."""
    if not is_valid_share_token(share_token):
        return ServiceResult.fail(ErrorCode.INVALID_TOKEN)

    game = await _get_game_by_share_token(session, share_token)
    if game is None:
        return ServiceResult.fail(ErrorCode.INVALID_TOKEN, "Partido no encontrado")

    registration = await _get_active_registration(session, game.id, normalize_phone(player_phone))
    if registration is None:
        return ServiceResult.ok("Sin inscripción activa", is_registered=False, status=None, waiting_list_position=None)

    return ServiceResult.ok(
        "Inscripción activa",
        is_registered=True,
        status=registration.status,
        waiting_list_position=await get_waiting_list_position(session, registration),
    )
