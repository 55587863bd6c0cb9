from datetime import datetime

from pydantic import BaseModel


# ------------------------------- Outputs ------------------------------- #

class PeriodSummaryOut(BaseModel):
    """A clan's monthly or yearly summary."""

    clan_id: int
    period_id: str
    battle_count: int
    won_count: int
    lost_count: int
    tied_count: int
    period_complete: bool

    average_fp: float
    average_baseline_fp: float
    average_ratio: float
    average_average_ratio: float
    average_projected_score: float
    average_margin_ratio: float
    average_fp_margin: float
    average_nonplaying_count: float
    average_nonplaying_fp_ratio: float
    average_reserve_count: float
    average_reserve_fp_ratio: float

    created_at: datetime
    updated_at: datetime


class IndividualSummaryOut(BaseModel):
    player_id: int
    player_name: str
    period_id: str
    battles_played: int
    average_score: float
    average_fp: float
    average_ratio: float
    average_rank: float
    average_ratio_rank: float
