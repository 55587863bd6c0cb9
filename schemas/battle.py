from datetime import date, datetime
from typing import Literal, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from utils.constants import ActionCode
from utils.game_time import validate_battle_id


# ------------------------------- Inputs ------------------------------- #

class PlayerStatsInput(BaseModel):
    """One playing participant's raw stats."""

    player_id: int = Field(ge=1)
    rank: int = Field(ge=1, description="In-game rank within the battle")
    score: int = Field(ge=0)
    fp: int = Field(gt=0, description="Player FP at battle time")
    action_code: ActionCode = ActionCode.HOLD
    action_reason: Optional[str] = None

    class Config:
        use_enum_values = True


class NonplayerStatsInput(BaseModel):
    """A roster member who did not play."""

    player_id: int = Field(ge=1)
    fp: int = Field(gt=0)
    reserve: bool = False
    action_code: ActionCode = ActionCode.HOLD
    action_reason: Optional[str] = None

    class Config:
        use_enum_values = True


def _check_unique_players(players, nonplayers) -> None:
    ids = [p.player_id for p in players] + [np.player_id for np in nonplayers]
    duplicates = sorted({pid for pid in ids if ids.count(pid) > 1})
    if duplicates:
        raise ValueError(f"Duplicate player ids: {duplicates}")


class BattleEntry(BaseModel):
    """
    A clan's full record for one master battle.

    Score must be positive since margin_ratio is expressed as a share of it.
    """

    battle_id: str = Field(pattern=r"^\d{8}$", description="YYYYMMDD master battle id")
    score: int = Field(gt=0)
    baseline_fp: int = Field(gt=0)
    opponent_name: str = Field(min_length=1, max_length=100)
    opponent_rovio_id: int = Field(ge=0)
    opponent_country: str = Field(min_length=1, max_length=100)
    opponent_score: int = Field(ge=0)
    opponent_fp: int = Field(gt=0)
    players: list[PlayerStatsInput] = Field(min_length=1)
    nonplayers: list[NonplayerStatsInput] = Field(default_factory=list)

    @field_validator("battle_id")
    @classmethod
    def validate_battle_date(cls, v: str) -> str:
        if not validate_battle_id(v):
            raise ValueError(f"battle_id {v} is not a calendar date")
        return v

    @model_validator(mode="after")
    def validate_unique_players(self) -> "BattleEntry":
        _check_unique_players(self.players, self.nonplayers)
        return self


class BattleUpdate(BaseModel):
    """
    Partial update of a clan battle. Supplied fields replace persisted ones;
    players / nonplayers replace the whole list when given. battle_id is not
    updatable, and any unknown field is rejected.
    """

    class Config:
        extra = "forbid"

    score: Optional[int] = Field(default=None, gt=0)
    baseline_fp: Optional[int] = Field(default=None, gt=0)
    opponent_name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    opponent_rovio_id: Optional[int] = Field(default=None, ge=0)
    opponent_country: Optional[str] = Field(default=None, min_length=1, max_length=100)
    opponent_score: Optional[int] = Field(default=None, ge=0)
    opponent_fp: Optional[int] = Field(default=None, gt=0)
    players: Optional[list[PlayerStatsInput]] = Field(default=None, min_length=1)
    nonplayers: Optional[list[NonplayerStatsInput]] = None


SortColumn = Literal[
    "start_timestamp",
    "score",
    "ratio",
    "average_ratio",
    "margin_ratio",
    "fp_margin",
    "opponent_name",
    "result",
]


class BattleQuery(BaseModel):
    """Filters, sort and pagination for listing a clan's battles."""

    start_date: Optional[date] = None
    end_date: Optional[date] = None
    opponent_name: Optional[str] = None
    opponent_country: Optional[str] = None
    result: Optional[Literal[-1, 0, 1]] = None
    sort_by: SortColumn = "start_timestamp"
    sort_order: Literal["asc", "desc"] = "desc"
    page: int = Field(default=1, ge=1)
    limit: int = Field(default=20, ge=1, le=100)

    @model_validator(mode="after")
    def validate_date_range(self) -> "BattleQuery":
        if self.start_date and self.end_date and self.start_date > self.end_date:
            raise ValueError("start_date must be on or before end_date")
        return self


# ------------------------------- Outputs ------------------------------- #

class PlayerStatOut(BaseModel):
    player_id: int
    player_name: str
    rank: int
    score: int
    fp: int
    ratio: float
    ratio_rank: int
    action_code: str
    action_reason: Optional[str] = None


class NonplayerStatOut(BaseModel):
    player_id: int
    player_name: str
    fp: int
    reserve: bool
    action_code: str
    action_reason: Optional[str] = None


class BattleDetail(BaseModel):
    """A persisted clan battle with derived metrics and child stats."""

    clan_id: int
    battle_id: str
    month_id: str
    year_id: str
    start_timestamp: datetime
    end_timestamp: datetime

    score: int
    baseline_fp: int
    opponent_name: str
    opponent_rovio_id: int
    opponent_country: str
    opponent_score: int
    opponent_fp: int

    result: int
    fp: int
    ratio: float
    average_ratio: float
    projected_score: float
    margin_ratio: float
    fp_margin: float
    nonplaying_count: int
    nonplaying_fp_ratio: float
    reserve_count: int
    reserve_fp_ratio: float

    players: list[PlayerStatOut]
    nonplayers: list[NonplayerStatOut]


class BattleList(BaseModel):
    battles: list[BattleDetail]
    total: int
    page: int
    limit: int
    total_pages: int
