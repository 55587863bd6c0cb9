"""
Clan Battle Tables

One ClanBattle row per clan per master battle, with per-player child rows.
Calculated columns are always written together with the inputs they derive
from (see services/battle_service.py); they are never patched on their own.

month_id / year_id are the 6-/4-digit prefixes of battle_id, stored as
indexed columns so period summaries don't need prefix matching.
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
    SmallIntegerField,
    TextField,
)

from db.base import BaseModel
from db.models.clans import Clan, RosterMember
from db.models.master_battles import MasterBattle


class ClanBattle(BaseModel):
    """
    A clan's result for one master battle.

    Attributes:
        id: Auto-incrementing primary key
        clan: Clan that fought
        battle: Master battle (column battle_id, YYYYMMDD)
        month_id, year_id: battle_id prefixes for period queries
        start_timestamp, end_timestamp: Window copied from the master battle
        score, baseline_fp: Clan inputs
        opponent_*: Opponent inputs
        result: 1 win, 0 tie, -1 loss
        fp: Players' FP plus non-reserve nonplayers' FP
        ratio: score / baseline_fp * 10
        average_ratio: score / fp * 10
        projected_score: score * (1 + nonplaying_fp_ratio / 100)
        margin_ratio: (score - opponent_score) / score * 100
        fp_margin: (baseline_fp - opponent_fp) / baseline_fp * 100
        nonplaying_count, nonplaying_fp_ratio: Non-reserve nonplayers
        reserve_count, reserve_fp_ratio: Reserves
    """

    id = AutoField(primary_key=True)
    clan = ForeignKeyField(
        Clan,
        backref="battles",
        on_delete="CASCADE",
        column_name="clan_id",
    )
    battle = ForeignKeyField(
        MasterBattle,
        backref="clan_battles",
        on_delete="RESTRICT",
        column_name="battle_id",
    )
    month_id = CharField(max_length=6)
    year_id = CharField(max_length=4)
    start_timestamp = DateTimeField()
    end_timestamp = DateTimeField()

    # Inputs
    score = IntegerField()
    baseline_fp = IntegerField()
    opponent_name = CharField(max_length=100)
    opponent_rovio_id = IntegerField()
    opponent_country = CharField(max_length=100)
    opponent_score = IntegerField()
    opponent_fp = IntegerField()

    # Calculated
    result = SmallIntegerField()
    fp = IntegerField()
    ratio = DoubleField()
    average_ratio = DoubleField()
    projected_score = DoubleField()
    margin_ratio = DoubleField()
    fp_margin = DoubleField()
    nonplaying_count = IntegerField()
    nonplaying_fp_ratio = DoubleField()
    reserve_count = IntegerField()
    reserve_fp_ratio = DoubleField()

    created_at = DateTimeField(default=datetime.utcnow)
    updated_at = DateTimeField(default=datetime.utcnow)

    class Meta:
        table_name = "clan_battles"
        indexes = (
            # Unique: a clan records each master battle once
            (("clan", "battle"), True),
            # Period summaries
            (("clan", "month_id"), False),
            (("clan", "year_id"), False),
        )

    def __repr__(self) -> str:
        return (
            f"<ClanBattle("
            f"clan_id={self.clan_id}, "
            f"battle_id={self.battle_id}, "
            f"result={self.result}, "
            f"ratio={self.ratio})>"
        )

    def save(self, *args, **kwargs):
        """Override save to auto-update updated_at timestamp."""
        self.updated_at = datetime.utcnow()
        return super().save(*args, **kwargs)

    @classmethod
    def get_for_clan(cls, clan_id: int, battle_id: str) -> "ClanBattle | None":
        return cls.get_or_none((cls.clan == clan_id) & (cls.battle == battle_id))


class ClanBattlePlayerStats(BaseModel):
    """
    One playing participant's stats for a clan battle.

    Attributes:
        clan_battle: Parent battle record
        player: Roster member
        rank: In-game rank (input)
        score, fp: Inputs
        ratio: score / fp * 10
        ratio_rank: Position by ratio, highest first, ties by input order
        action_code, action_reason: Post-battle disposition
    """

    id = AutoField(primary_key=True)
    clan_battle = ForeignKeyField(
        ClanBattle,
        backref="player_stats",
        on_delete="CASCADE",
        column_name="clan_battle_id",
    )
    player = ForeignKeyField(
        RosterMember,
        backref="battle_stats",
        on_delete="CASCADE",
        column_name="player_id",
    )
    rank = IntegerField()
    score = IntegerField()
    fp = IntegerField()
    ratio = DoubleField()
    ratio_rank = IntegerField()
    action_code = CharField(max_length=20)
    action_reason = TextField(null=True)

    created_at = DateTimeField(default=datetime.utcnow)

    class Meta:
        table_name = "clan_battle_player_stats"
        indexes = (
            (("clan_battle", "player"), True),
        )

    def __repr__(self) -> str:
        return (
            f"<ClanBattlePlayerStats("
            f"clan_battle_id={self.clan_battle_id}, "
            f"player_id={self.player_id}, "
            f"ratio={self.ratio}, "
            f"ratio_rank={self.ratio_rank})>"
        )


class ClanBattleNonplayerStats(BaseModel):
    """
    A roster member who did not play in a clan battle.

    Attributes:
        clan_battle: Parent battle record
        player: Roster member
        fp: Member's FP at battle time
        reserve: Reserves are excluded from the clan FP pool
        action_code, action_reason: Post-battle disposition
    """

    id = AutoField(primary_key=True)
    clan_battle = ForeignKeyField(
        ClanBattle,
        backref="nonplayer_stats",
        on_delete="CASCADE",
        column_name="clan_battle_id",
    )
    player = ForeignKeyField(
        RosterMember,
        backref="nonplayer_stats",
        on_delete="CASCADE",
        column_name="player_id",
    )
    fp = IntegerField()
    reserve = BooleanField(default=False)
    action_code = CharField(max_length=20)
    action_reason = TextField(null=True)

    created_at = DateTimeField(default=datetime.utcnow)

    class Meta:
        table_name = "clan_battle_nonplayer_stats"
        indexes = (
            (("clan_battle", "player"), True),
        )

    def __repr__(self) -> str:
        return (
            f"<ClanBattleNonplayerStats("
            f"clan_battle_id={self.clan_battle_id}, "
            f"player_id={self.player_id}, "
            f"reserve={self.reserve})>"
        )
