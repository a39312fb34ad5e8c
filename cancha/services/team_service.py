"""
Team assignment: splitting a game's confirmed players into the two teams.
"""

import logging
import math
import random
from typing import Dict, List, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from cancha.database.models import (
    AuditAction,
    Game,
    GameRegistration,
    GameStatus,
    NotificationType,
    RegistrationStatus,
    TeamAssignment,
)
from cancha.services import audit_service, notification_service
from cancha.services.friend_registration_service import effective_game_status
from cancha.services.security_service import RequestContext
from cancha.utils.datetime_utils import utcnow, to_iso
from cancha.utils.errors import ErrorCode, ServiceResult

logger = logging.getLogger(__name__)

MIN_PLAYERS_FOR_TEAMS = 2
# Teams of this many players or more must differ by at most one
BALANCE_FROM_PLAYERS = 4

_system_random = random.SystemRandom()


def split_randomly(registration_ids: List[int], rng: Optional[random.Random] = None) -> Dict[int, str]:
    """Shuffle players into two teams; team A gets the extra player on odd counts."""
    shuffled = list(registration_ids)
    (rng or _system_random).shuffle(shuffled)
    half = math.ceil(len(shuffled) / 2)
    return {
        registration_id: TeamAssignment.TEAM_A.value if index < half else TeamAssignment.TEAM_B.value
        for index, registration_id in enumerate(shuffled)
    }


def check_manual_assignments(
    assignments: Dict[int, str], registration_ids: List[int]
) -> Optional[ServiceResult]:
    """Every confirmed player, and only them, must be on a team."""
    unknown = sorted(set(assignments) - set(registration_ids))
    if unknown:
        return ServiceResult.fail(
            ErrorCode.VALIDATION_ERROR,
            f"Las inscripciones {unknown} no son jugadores confirmados de este partido",
        )
    missing = sorted(set(registration_ids) - set(assignments))
    if missing:
        return ServiceResult.fail(
            ErrorCode.VALIDATION_ERROR,
            f"Todos los jugadores deben ser asignados a un equipo (faltan {missing})",
        )
    return None


def is_balanced(assignments: Dict[int, str]) -> bool:
    if len(assignments) < BALANCE_FROM_PLAYERS:
        return True
    team_a = sum(1 for team in assignments.values() if team == TeamAssignment.TEAM_A.value)
    return abs(team_a - (len(assignments) - team_a)) <= 1


def _player_dict(registration: GameRegistration) -> Dict:
    return {
        "id": registration.id,
        "player_name": registration.player_name,
        "player_phone": registration.player_phone,
        "team_assignment": registration.team_assignment,
        "payment_status": registration.payment_status,
        "registered_at": to_iso(registration.registered_at),
    }


def _teams_dict(game: Game, registrations: List[GameRegistration]) -> Dict:
    players = [_player_dict(registration) for registration in registrations]
    return {
        "team_a_name": game.team_a_name,
        "team_b_name": game.team_b_name,
        "team_a": [p for p in players if p["team_assignment"] == TeamAssignment.TEAM_A.value],
        "team_b": [p for p in players if p["team_assignment"] == TeamAssignment.TEAM_B.value],
        "unassigned": [p for p in players if not p["team_assignment"]],
        "teams_assigned_at": to_iso(game.teams_assigned_at),
    }


async def _confirmed_registrations(session: AsyncSession, game_id: int) -> List[GameRegistration]:
    result = await session.execute(
        select(GameRegistration)
        .where(
            GameRegistration.game_id == game_id,
            GameRegistration.status == RegistrationStatus.CONFIRMED.value,
        )
        .order_by(GameRegistration.registered_at, GameRegistration.id)
        .execution_options(populate_existing=True)
    )
    return list(result.scalars().all())


async def assign_teams(
    session: AsyncSession,
    game_id: int,
    method: str,
    manual_assignments: Optional[Dict[int, str]],
    admin_user_id: int,
    context: RequestContext,
) -> ServiceResult:
    """
    Put every confirmed player of a game on team A or team B.

    Draft, completed and cancelled games cannot get teams. Open games are
    closed once teams are assigned; waiting-list players keep no team.

    Args:
        session: Database session
        game_id: Game to split
        method: "random" or "manual"
        manual_assignments: Registration id -> team, for the manual method
        admin_user_id: Acting admin
        context: Request metadata for the audit trail

    Returns:
        ServiceResult with "team_a", "team_b", "unassigned" and "method"
    """
    game = await session.get(Game, game_id, populate_existing=True)
    if game is None:
        return ServiceResult.fail(ErrorCode.NOT_FOUND, "Partido no encontrado")

    status = effective_game_status(game)
    if status == GameStatus.DRAFT.value:
        return ServiceResult.fail(
            ErrorCode.INVALID_GAME_STATE, "El partido debe estar abierto para asignar equipos"
        )
    if status in (GameStatus.COMPLETED.value, GameStatus.CANCELLED.value):
        return ServiceResult.fail(
            ErrorCode.INVALID_GAME_STATE,
            "No se pueden asignar equipos a un partido completado o cancelado",
        )

    registrations = await _confirmed_registrations(session, game_id)
    if len(registrations) < MIN_PLAYERS_FOR_TEAMS:
        return ServiceResult.fail(
            ErrorCode.VALIDATION_ERROR,
            f"Se necesitan al menos {MIN_PLAYERS_FOR_TEAMS} jugadores confirmados para "
            f"asignar equipos (actual: {len(registrations)})",
        )

    registration_ids = [registration.id for registration in registrations]
    if method == "manual":
        invalid = check_manual_assignments(manual_assignments or {}, registration_ids)
        if invalid:
            return invalid
        assignments = {rid: manual_assignments[rid] for rid in registration_ids}
    else:
        assignments = split_randomly(registration_ids)

    if not is_balanced(assignments):
        return ServiceResult.fail(
            ErrorCode.VALIDATION_ERROR,
            "Los equipos deben estar balanceados (diferencia máxima de 1 jugador)",
        )

    await session.execute(
        update(GameRegistration)
        .where(
            GameRegistration.game_id == game_id,
            GameRegistration.status != RegistrationStatus.CONFIRMED.value,
        )
        .values(team_assignment=None)
        .execution_options(synchronize_session=False)
    )
    team_names = {
        TeamAssignment.TEAM_A.value: game.team_a_name,
        TeamAssignment.TEAM_B.value: game.team_b_name,
    }
    for registration in registrations:
        registration.team_assignment = assignments[registration.id]
        await notification_service.queue_notification(
            session,
            player_phone=registration.player_phone,
            message_type=NotificationType.TEAMS_ASSIGNED.value,
            message_content=notification_service.teams_assigned_message(
                registration.player_name, game.title, team_names[registration.team_assignment]
            ),
            game_id=game_id,
            registration_id=registration.id,
        )

    game.teams_assigned_at = utcnow()
    if game.status == GameStatus.OPEN.value:
        game.status = GameStatus.CLOSED.value
    await session.flush()
    teams = _teams_dict(game, registrations)
    await session.commit()

    team_a_count = len(teams["team_a"])
    team_b_count = len(teams["team_b"])
    logger.info(
        f"Admin {admin_user_id} assigned teams for game {game_id} "
        f"({method}, {team_a_count} vs {team_b_count})"
    )
    await audit_service.record_audit(
        AuditAction.ASSIGN_TEAMS.value,
        "game",
        game_id,
        {
            "method": method,
            "team_a_count": team_a_count,
            "team_b_count": team_b_count,
            "assignments": {str(rid): team for rid, team in assignments.items()},
        },
        context=context,
        admin_user_id=admin_user_id,
    )
    return ServiceResult.ok("Equipos asignados exitosamente", method=method, **teams)


async def get_teams(session: AsyncSession, game_id: int) -> Optional[Dict]:
    """Current teams of a game's confirmed players, or None if the game does not exist."""
    game = await session.get(Game, game_id, populate_existing=True)
    if game is None:
        return None
    registrations = await _confirmed_registrations(session, game_id)
    return _teams_dict(game, registrations)
