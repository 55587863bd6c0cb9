"""
Master Battle Table

Global, clan-independent schedule. One row per battle window; every
ClanBattle references one. Rows are never deleted.
"""

from datetime import datetime

from peewee import (
    CharField,
    DateTimeField,
    TextField,
)

from db.base import BaseModel


class MasterBattle(BaseModel):
    """
    One global battle window.

    Attributes:
        battle_id: YYYYMMDD of the Game Time start date (primary key)
        start_timestamp: Window start, naive UTC (midnight Game Time)
        end_timestamp: Window end, naive UTC (23:59:59.999 Game Time next day)
        created_by: Actor id for manual overrides; null for the scheduler
        notes: Free-form metadata (the only mutable column)
        created_at: When this record was created
        updated_at: When this record was last modified
    """

    battle_id = CharField(max_length=8, primary_key=True)
    start_timestamp = DateTimeField(index=True)
    end_timestamp = DateTimeField()
    created_by = CharField(max_length=255, null=True)
    notes = TextField(null=True)

    created_at = DateTimeField(default=datetime.utcnow)
    updated_at = DateTimeField(default=datetime.utcnow)

    class Meta:
        table_name = "master_battles"

    def __repr__(self) -> str:
        return (
            f"<MasterBattle("
            f"battle_id={self.battle_id}, "
            f"start={self.start_timestamp}, "
            f"end={self.end_timestamp}, "
            f"created_by={self.created_by})>"
        )

    def save(self, *args, **kwargs):
        """Override save to auto-update updated_at timestamp."""
        self.updated_at = datetime.utcnow()
        return super().save(*args, **kwargs)

    @property
    def is_automatic(self) -> bool:
        """True when the scheduler (not an actor) created this battle."""
        return self.created_by is None

    @classmethod
    def exists(cls, battle_id: str) -> bool:
        return cls.select().where(cls.battle_id == battle_id).exists()

    @classmethod
    def get_current(cls, now_utc: datetime) -> "MasterBattle | None":
        """
        Get the battle whose window contains now_utc.

        Args:
            now_utc: Naive UTC instant
        """
        return (
            cls.select()
            .where(
                (cls.start_timestamp <= now_utc) & (cls.end_timestamp >= now_utc)
            )
            .order_by(cls.start_timestamp.desc())
            .first()
        )
