"""
Pydantic models for API request/response validation.
"""

from datetime import datetime
from typing import Dict, Optional, List, Literal
from pydantic import BaseModel, Field, ConfigDict, field_validator, model_validator

from cancha.utils.constants import CANCELLATION_REASON_MAX_LENGTH
from cancha.utils.datetime_utils import utcnow, ensure_utc


class LoginRequest(BaseModel):
    """Admin login with username (or email) and password."""

    username: str = Field(..., min_length=3, max_length=255)
    password: str = Field(..., min_length=8, max_length=255)
    remember_me: bool = False

    @field_validator("username")
    @classmethod
    def validate_username(cls, value: str) -> str:
        value = value.strip()
        if "@" in value:
            return value
        if len(value) > 50:
            raise ValueError("username must be at most 50 characters")
        if not all(char.isascii() and (char.isalnum() or char in "_-") for char in value):
            raise ValueError("username may only contain letters, digits, '_' and '-'")
        return value


class FriendRegistrationRequest(BaseModel):
    """Friend registration submitted from the public game link."""

    player_name: str = Field(..., max_length=200)
    player_phone: str = Field(..., max_length=40)


class CancelRegistrationRequest(BaseModel):
    """Self-service cancellation."""

    reason: Optional[str] = Field(None, max_length=CANCELLATION_REASON_MAX_LENGTH)
    confirm: bool

    @field_validator("confirm")
    @classmethod
    def must_confirm(cls, value: bool) -> bool:
        if value is not True:
            raise ValueError("Debes confirmar la cancelación")
        return value


class GameCreateRequest(BaseModel):
    """Request to create a game."""

    title: str = Field(..., min_length=3, max_length=200)
    description: Optional[str] = Field(None, max_length=1000)
    game_date: datetime
    min_players: int = Field(8, ge=1, le=50)
    max_players: int = Field(22, ge=1, le=50)
    field_cost_per_player: float = Field(0, ge=0, le=100000)
    game_duration_minutes: int = Field(90, ge=30, le=240)
    status: Literal["draft", "open"] = "open"
    team_a_name: str = Field("Equipo A", min_length=1, max_length=50)
    team_b_name: str = Field("Equipo B", min_length=1, max_length=50)

    @model_validator(mode="after")
    def validate_game(self):
        if self.max_players < self.min_players:
            raise ValueError("max_players must be greater than or equal to min_players")
        if ensure_utc(self.game_date) <= utcnow():
            raise ValueError("game_date must be in the future")
        return self


class GameStatusUpdateRequest(BaseModel):
    """Request to change a game's status."""

    status: Literal["draft", "open", "closed", "in_progress", "completed", "cancelled"]


class TeamNamesUpdateRequest(BaseModel):
    """Request to rename the two teams of a game."""

    team_a_name: str = Field(..., min_length=1, max_length=50)
    team_b_name: str = Field(..., min_length=1, max_length=50)

    @model_validator(mode="after")
    def names_differ(self):
        if self.team_a_name.strip().lower() == self.team_b_name.strip().lower():
            raise ValueError("Team names must be different")
        return self


class GameUpdateRequest(BaseModel):
    """Partial edit of a game. Status changes go through the status endpoint."""

    title: Optional[str] = Field(None, min_length=3, max_length=200)
    description: Optional[str] = Field(None, max_length=1000)
    game_date: Optional[datetime] = None
    min_players: Optional[int] = Field(None, ge=1, le=50)
    max_players: Optional[int] = Field(None, ge=1, le=50)
    field_cost_per_player: Optional[float] = Field(None, ge=0, le=100000)
    game_duration_minutes: Optional[int] = Field(None, ge=30, le=240)
    team_a_name: Optional[str] = Field(None, min_length=1, max_length=50)
    team_b_name: Optional[str] = Field(None, min_length=1, max_length=50)

    @model_validator(mode="after")
    def validate_changes(self):
        changes = self.model_dump(exclude_unset=True)
        if not changes:
            raise ValueError("No changes provided")
        for name, value in changes.items():
            if value is None and name != "description":
                raise ValueError(f"{name} cannot be null")
        if self.min_players and self.max_players and self.max_players < self.min_players:
            raise ValueError("max_players must be greater than or equal to min_players")
        if self.game_date and ensure_utc(self.game_date) <= utcnow():
            raise ValueError("game_date must be in the future")
        return self


class TeamAssignmentRequest(BaseModel):
    """Split the confirmed players of a game into the two teams."""

    method: Literal["random", "manual"]
    # registration id -> team
    manual_assignments: Optional[Dict[int, Literal["team_a", "team_b"]]] = None

    @model_validator(mode="after")
    def manual_needs_assignments(self):
        if self.method == "manual" and not self.manual_assignments:
            raise ValueError("manual_assignments is required when method is manual")
        return self


class GameResultRequest(BaseModel):
    """Final score of a game."""

    team_a_score: int = Field(..., ge=0, le=100)
    team_b_score: int = Field(..., ge=0, le=100)
    notes: Optional[str] = Field(None, max_length=1000)


class RegistrationUpdateRequest(BaseModel):
    """Admin update of a registration's payment and team."""

    payment_status: Optional[Literal["pending", "paid", "failed", "refunded"]] = None
    payment_amount: Optional[float] = Field(None, ge=0)
    team_assignment: Optional[Literal["team_a", "team_b"]] = None
    clear_team: bool = False

    @model_validator(mode="after")
    def has_changes(self):
        if (
            self.payment_status is None
            and self.payment_amount is None
            and self.team_assignment is None
            and not self.clear_team
        ):
            raise ValueError("No changes provided")
        return self


class WhatsAppError(BaseModel):
    """Error reported for a failed message."""

    code: int
    title: Optional[str] = None
    message: Optional[str] = None


class WhatsAppStatus(BaseModel):
    """Delivery status of one outgoing message."""

    id: str
    status: Literal["sent", "delivered", "read", "failed"]
    timestamp: str
    recipient_id: str
    errors: Optional[List[WhatsAppError]] = None

    @field_validator("timestamp")
    @classmethod
    def numeric_timestamp(cls, value: str) -> str:
        if not value.isdigit():
            raise ValueError("timestamp must be a unix timestamp")
        return value


class WhatsAppChangeValue(BaseModel):
    """Value of a webhook change; messages and contacts are ignored."""

    model_config = ConfigDict(extra="allow")
    messaging_product: Optional[str] = None
    statuses: Optional[List[WhatsAppStatus]] = None


class WhatsAppChange(BaseModel):
    field: str
    value: WhatsAppChangeValue


class WhatsAppEntry(BaseModel):
    id: str
    changes: List[WhatsAppChange]


class WhatsAppWebhookPayload(BaseModel):
    """Body of a WhatsApp Business webhook notification."""

    object: str
    entry: List[WhatsAppEntry]
