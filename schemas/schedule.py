from pydantic import BaseModel, Field
from typing import Optional
from datetime import date, datetime
from enum import Enum


class MasterBattleOut(BaseModel):
    """A global battle window. Timestamps are aware UTC."""

    battle_id: str
    start_timestamp: datetime
    end_timestamp: datetime
    created_by: Optional[str] = None
    notes: Optional[str] = None
    is_automatic: bool


class BattleScheduleInfo(BaseModel):
    """Snapshot of the schedule as seen at one instant."""

    current_battle: Optional[MasterBattleOut] = None
    next_battle: Optional[MasterBattleOut] = None
    next_battle_start: Optional[datetime] = None
    scheduler_enabled: bool
    available_battles: list[MasterBattleOut]


class MasterBattlePage(BaseModel):
    battles: list[MasterBattleOut]
    total: int
    page: int
    limit: int
    total_pages: int
    has_next: bool
    has_previous: bool


# ---------------------- Scheduler Runs ---------------------- #


class SchedulerRunStatus(str, Enum):
    """Outcome of one scheduler check or manual creation."""

    CREATED = "created"
    SKIPPED_EXISTING = "skipped_existing"
    NOT_DUE = "not_due"
    DISABLED = "disabled"
    NOT_CONFIGURED = "not_configured"
    ERROR = "error"


class SchedulerRunResult(BaseModel):
    status: SchedulerRunStatus
    battle_id: Optional[str] = None
    next_battle_start: Optional[datetime] = None
    message: Optional[str] = None

    class Config:
        use_enum_values = True


# ---------------------- Requests ---------------------- #


class CreateMasterBattleRequest(BaseModel):
    """Manual override: create a battle starting on a Game Time date."""

    start_date: date
    created_by: Optional[str] = Field(default=None, max_length=255)
    notes: Optional[str] = None


class UpdateNextBattleDateRequest(BaseModel):
    """Naive values are read as Game Time wall clock."""

    next_battle_start: datetime


class SchedulerEnabledRequest(BaseModel):
    enabled: bool


class NextBattleDateOut(BaseModel):
    next_battle_start: datetime
    battle_id: str
