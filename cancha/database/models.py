"""
SQLAlchemy ORM models for the Cancha Leconte games system.
"""

import enum
from sqlalchemy import (
    Column,
    Integer,
    String,
    Text,
    Boolean,
    Numeric,
    DateTime,
    ForeignKey,
    CheckConstraint,
    Index,
    JSON,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from cancha.database.db import Base
from cancha.utils.datetime_utils import utcnow


class AdminRole(str, enum.Enum):
    """Admin user role enum."""

    ADMIN = "admin"


class RateLimitAction(str, enum.Enum):
    """Action types tracked in the login attempts log."""

    LOGIN = "login"
    GENERAL = "general"


class GameStatus(str, enum.Enum):
    """Game lifecycle status."""

    DRAFT = "draft"
    OPEN = "open"
    CLOSED = "closed"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class RegistrationStatus(str, enum.Enum):
    """Registration status enum."""

    CONFIRMED = "confirmed"
    WAITING_LIST = "waiting_list"
    CANCELLED = "cancelled"


class PaymentStatus(str, enum.Enum):
    """Payment status enum."""

    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    REFUNDED = "refunded"


class TeamAssignment(str, enum.Enum):
    """Team assignment enum."""

    TEAM_A = "team_a"
    TEAM_B = "team_b"


class WinningTeam(str, enum.Enum):
    """Outcome stored with a game result."""

    TEAM_A = "team_a"
    TEAM_B = "team_b"
    DRAW = "draw"


class NotificationType(str, enum.Enum):
    """WhatsApp notification type enum."""

    REGISTRATION_CONFIRMED = "registration_confirmed"
    WAITING_LIST = "waiting_list"
    PROMOTED_FROM_WAITING_LIST = "promoted_from_waiting_list"
    REGISTRATION_CANCELLED = "registration_cancelled"
    GAME_UPDATE = "game_update"
    GAME_CANCELLED = "game_cancelled"
    TEAMS_ASSIGNED = "teams_assigned"


class DeliveryStatus(str, enum.Enum):
    """Notification delivery status, as reported by the WhatsApp webhook."""

    PENDING = "pending"
    SENT = "sent"
    DELIVERED = "delivered"
    READ = "read"
    FAILED = "failed"


class AuditAction(str, enum.Enum):
    """Audit log action types."""

    FRIEND_REGISTER = "FRIEND_REGISTER"
    FRIEND_CANCEL = "FRIEND_CANCEL"
    TOKEN_CANCEL = "TOKEN_CANCEL"
    GAME_CREATE = "GAME_CREATE"
    GAME_STATUS_UPDATE = "GAME_STATUS_UPDATE"
    GAME_TEAMS_UPDATE = "GAME_TEAMS_UPDATE"
    PAYMENT_UPDATE = "PAYMENT_UPDATE"
    GAME_UPDATE = "GAME_UPDATE"
    GAME_DELETE = "GAME_DELETE"
    ASSIGN_TEAMS = "ASSIGN_TEAMS"
    RECORD_RESULT = "RECORD_RESULT"
    UPDATE_RESULT = "UPDATE_RESULT"


class AdminUser(Base):
    """Administrator accounts. Deactivated, never deleted."""

    __tablename__ = "admin_users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    username = Column(String(50), nullable=False, unique=True)
    email = Column(String(255), nullable=True, unique=True)
    password_hash = Column(String(255), nullable=False)
    name = Column(String(100), nullable=False)
    role = Column(String(20), nullable=False, default=AdminRole.ADMIN.value)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
    last_login_at = Column(DateTime(timezone=True), nullable=True)

    sessions = relationship("AdminSession", back_populates="user", cascade="all, delete-orphan")


class AdminSession(Base):
    """Server-side record backing a signed session cookie."""

    __tablename__ = "admin_sessions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("admin_users.id", ondelete="CASCADE"), nullable=False)
    session_nonce = Column(String(64), nullable=False, unique=True)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    remember_me = Column(Boolean, nullable=False, default=False)
    ip_address = Column(String(45), nullable=True)
    user_agent = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    user = relationship("AdminUser", back_populates="sessions")

    __table_args__ = (
        Index("idx_admin_sessions_user_id", "user_id"),
        Index("idx_admin_sessions_expires_at", "expires_at"),
    )


class LoginAttempt(Base):
    """Append-only attempt log used for rate limiting and auditing."""

    __tablename__ = "login_attempts"

    id = Column(Integer, primary_key=True, autoincrement=True)
    ip_address = Column(String(45), nullable=False)
    action_type = Column(String(20), nullable=False, default=RateLimitAction.LOGIN.value)
    identifier = Column(String(255), nullable=True)  # username or email
    success = Column(Boolean, nullable=False, default=False)
    user_agent = Column(Text, nullable=True)
    attempted_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (
        Index("idx_login_attempts_ip_action_time", "ip_address", "action_type", "attempted_at"),
        Index("idx_login_attempts_attempted_at", "attempted_at"),
    )


class Game(Base):
    """A scheduled game at the field."""

    __tablename__ = "games"

    id = Column(Integer, primary_key=True, autoincrement=True)
    title = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    game_date = Column(DateTime(timezone=True), nullable=False)
    min_players = Column(Integer, nullable=False, default=8)
    max_players = Column(Integer, nullable=False, default=22)
    field_cost_per_player = Column(Numeric(10, 2, asdecimal=False), nullable=False, default=0)
    game_duration_minutes = Column(Integer, nullable=False, default=90)
    status = Column(String(20), nullable=False, default=GameStatus.OPEN.value)
    share_token = Column(String(128), nullable=False, unique=True)
    team_a_name = Column(String(50), nullable=False, default="Equipo A")
    team_b_name = Column(String(50), nullable=False, default="Equipo B")
    # Confirmed registrations; only changed through conditional updates
    confirmed_count = Column(Integer, nullable=False, default=0)
    teams_assigned_at = Column(DateTime(timezone=True), nullable=True)
    results_recorded_at = Column(DateTime(timezone=True), nullable=True)
    created_by = Column(Integer, ForeignKey("admin_users.id"), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    registrations = relationship("GameRegistration", back_populates="game")

    __table_args__ = (
        CheckConstraint("min_players > 0", name="ck_games_min_players_positive"),
        CheckConstraint("max_players >= min_players", name="ck_games_max_gte_min"),
        CheckConstraint("confirmed_count >= 0", name="ck_games_confirmed_count_non_negative"),
        Index("idx_games_status_date", "status", "game_date"),
    )


class GameRegistration(Base):
    """A friend's registration for a game."""

    __tablename__ = "game_registrations"

    id = Column(Integer, primary_key=True, autoincrement=True)
    game_id = Column(Integer, ForeignKey("games.id", ondelete="CASCADE"), nullable=False)
    player_name = Column(String(100), nullable=False)
    player_phone = Column(String(20), nullable=False)
    status = Column(String(20), nullable=False, default=RegistrationStatus.CONFIRMED.value)
    payment_status = Column(String(20), nullable=False, default=PaymentStatus.PENDING.value)
    payment_amount = Column(Numeric(10, 2, asdecimal=False), nullable=True)
    team_assignment = Column(String(10), nullable=True)
    registration_token = Column(String(64), nullable=True, unique=True)
    registered_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    paid_at = Column(DateTime(timezone=True), nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)
    cancellation_reason = Column(Text, nullable=True)

    game = relationship("Game", back_populates="registrations")

    __table_args__ = (
        # One active registration per phone and game
        Index(
            "uq_game_registrations_active_phone",
            "game_id",
            "player_phone",
            unique=True,
            postgresql_where=text("status != 'cancelled'"),
            sqlite_where=text("status != 'cancelled'"),
        ),
        Index("idx_game_registrations_game_status", "game_id", "status", "registered_at"),
    )


class Notification(Base):
    """Queued WhatsApp notification and its delivery state."""

    __tablename__ = "notifications"

    id = Column(Integer, primary_key=True, autoincrement=True)
    game_id = Column(Integer, ForeignKey("games.id", ondelete="CASCADE"), nullable=True)
    registration_id = Column(
        Integer, ForeignKey("game_registrations.id", ondelete="SET NULL"), nullable=True
    )
    player_phone = Column(String(20), nullable=False)
    message_type = Column(String(50), nullable=False)  # NotificationType enum value
    message_content = Column(Text, nullable=False)
    delivery_status = Column(String(20), nullable=False, default=DeliveryStatus.PENDING.value)
    whatsapp_message_id = Column(String(255), nullable=True, unique=True)
    error_message = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    sent_at = Column(DateTime(timezone=True), nullable=True)
    delivered_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index("idx_notifications_delivery_status", "delivery_status", "created_at"),
    )


class AuditLog(Base):
    """Audit trail of admin and self-service actions."""

    __tablename__ = "admin_audit_log"

    id = Column(Integer, primary_key=True, autoincrement=True)
    admin_user_id = Column(Integer, ForeignKey("admin_users.id"), nullable=True)
    action_type = Column(String(50), nullable=False)  # AuditAction enum value
    entity_type = Column(String(50), nullable=False)
    entity_id = Column(Integer, nullable=True)
    action_details = Column(JSON().with_variant(JSONB(), "postgresql"), nullable=True)
    ip_address = Column(String(45), nullable=True)
    user_agent = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (
        Index("idx_admin_audit_log_entity", "entity_type", "entity_id"),
    )


class GameResult(Base):
    """Final score of a game, one per game."""

    __tablename__ = "game_results"

    id = Column(Integer, primary_key=True, autoincrement=True)
    game_id = Column(Integer, ForeignKey("games.id", ondelete="CASCADE"), nullable=False, unique=True)
    team_a_score = Column(Integer, nullable=False)
    team_b_score = Column(Integer, nullable=False)
    winning_team = Column(String(10), nullable=False)  # WinningTeam enum value
    notes = Column(Text, nullable=True)
    recorded_by = Column(Integer, ForeignKey("admin_users.id"), nullable=True)
    recorded_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (
        CheckConstraint("team_a_score >= 0", name="ck_game_results_team_a_score"),
        CheckConstraint("team_b_score >= 0", name="ck_game_results_team_b_score"),
    )
