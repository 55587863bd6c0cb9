"""
Period Performance Tables

Monthly and yearly projections of ClanBattle rows, keyed by clan and period
id (YYYYMM / YYYY). Rows are fully recomputed by the aggregation service on
every battle write and deleted when their period has no battles left.

period_complete is set independently (by an admin) and survives recomputes.
"""

from datetime import datetime

from peewee import (
    AutoField,
    BooleanField,
    CharField,
    DateTimeField,
    DoubleField,
    ForeignKeyField,
    IntegerField,
)

from db.base import BaseModel
from db.models.clans import Clan, RosterMember


class ClanPerformance(BaseModel):
    """
    Shared columns for a clan's period summary. Not a table on its own.

    Attributes:
        clan: Summarized clan
        period_id: YYYYMM (monthly) or YYYY (yearly)
        battle_count, won_count, lost_count, tied_count: Result counts
        period_complete: Independently set "period closed" flag
        average_*: Arithmetic mean of the matching ClanBattle column;
            average_ratio is the mean of ClanBattle.ratio and
            average_average_ratio the mean of ClanBattle.average_ratio
    """

    id = AutoField(primary_key=True)
    clan = ForeignKeyField(Clan, backref="+", on_delete="CASCADE", column_name="clan_id")
    period_id = CharField(max_length=6)

    battle_count = IntegerField()
    won_count = IntegerField()
    lost_count = IntegerField()
    tied_count = IntegerField()
    period_complete = BooleanField(default=False)

    average_fp = DoubleField()
    average_baseline_fp = DoubleField()
    average_ratio = DoubleField()
    average_average_ratio = DoubleField()
    average_projected_score = DoubleField()
    average_margin_ratio = DoubleField()
    average_fp_margin = DoubleField()
    average_nonplaying_count = DoubleField()
    average_nonplaying_fp_ratio = DoubleField()
    average_reserve_count = DoubleField()
    average_reserve_fp_ratio = DoubleField()

    created_at = DateTimeField(default=datetime.utcnow)
    updated_at = DateTimeField(default=datetime.utcnow)

    class Meta:
        indexes = (
            (("clan", "period_id"), True),
        )

    def __repr__(self) -> str:
        return (
            f"<{self.__class__.__name__}("
            f"clan_id={self.clan_id}, "
            f"period={self.period_id}, "
            f"battles={self.battle_count}, "
            f"W/L/T={self.won_count}/{self.lost_count}/{self.tied_count})>"
        )

    @classmethod
    def get_for_period(cls, clan_id: int, period_id: str):
        return cls.get_or_none((cls.clan == clan_id) & (cls.period_id == period_id))


class MonthlyClanPerformance(ClanPerformance):
    class Meta:
        table_name = "monthly_clan_performance"


class YearlyClanPerformance(ClanPerformance):
    class Meta:
        table_name = "yearly_clan_performance"


class IndividualPerformance(BaseModel):
    """
    Shared columns for a player's period summary. Not a table on its own.

    Only players with at least MIN_BATTLES_FOR_INDIVIDUAL_STATS battles in
    the period get a row.
    """

    id = AutoField(primary_key=True)
    clan = ForeignKeyField(Clan, backref="+", on_delete="CASCADE", column_name="clan_id")
    period_id = CharField(max_length=6)
    player = ForeignKeyField(RosterMember, backref="+", on_delete="CASCADE", column_name="player_id")

    battles_played = IntegerField()
    average_score = DoubleField()
    average_fp = DoubleField()
    average_ratio = DoubleField()
    average_rank = DoubleField()
    average_ratio_rank = DoubleField()

    created_at = DateTimeField(default=datetime.utcnow)

    class Meta:
        indexes = (
            (("clan", "period_id", "player"), True),
        )

    def __repr__(self) -> str:
        return (
            f"<{self.__class__.__name__}("
            f"clan_id={self.clan_id}, "
            f"period={self.period_id}, "
            f"player_id={self.player_id}, "
            f"battles={self.battles_played})>"
        )


class MonthlyIndividualPerformance(IndividualPerformance):
    class Meta:
        table_name = "monthly_individual_performance"


class YearlyIndividualPerformance(IndividualPerformance):
    class Meta:
        table_name = "yearly_individual_performance"
