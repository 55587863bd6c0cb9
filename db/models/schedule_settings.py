"""
Schedule Setting Table

Singleton row (id=1) holding the scheduler's durable state.
"""

from datetime import datetime

from peewee import (
    BooleanField,
    DateTimeField,
    IntegerField,
)

from db.base import BaseModel

SINGLETON_ID = 1


class ScheduleSetting(BaseModel):
    """
    Durable scheduler state.

    Attributes:
        id: Always 1
        next_battle_start: Next battle start (a Game Time instant), naive UTC
        scheduler_enabled: Whether automatic creation runs
        updated_at: When this record was last modified
    """

    id = IntegerField(primary_key=True, default=SINGLETON_ID)
    next_battle_start = DateTimeField(null=True)
    scheduler_enabled = BooleanField(default=True)
    updated_at = DateTimeField(default=datetime.utcnow)

    class Meta:
        table_name = "schedule_settings"

    def __repr__(self) -> str:
        return (
            f"<ScheduleSetting("
            f"next_battle_start={self.next_battle_start}, "
            f"enabled={self.scheduler_enabled})>"
        )

    @classmethod
    def load(cls) -> "ScheduleSetting":
        """Get the singleton row, creating it with defaults if missing."""
        setting, _ = cls.get_or_create(id=SINGLETON_ID)
        return setting

    @classmethod
    def store(cls, next_battle_start: datetime | None, scheduler_enabled: bool) -> None:
        """
        Upsert the singleton row.

        Args:
            next_battle_start: Naive UTC instant, or None to clear
            scheduler_enabled: Scheduler flag
        """
        (
            cls.insert(
                id=SINGLETON_ID,
                next_battle_start=next_battle_start,
                scheduler_enabled=scheduler_enabled,
                updated_at=datetime.utcnow(),
            )
            .on_conflict(
                conflict_target=[cls.id],
                preserve=[cls.next_battle_start, cls.scheduler_enabled, cls.updated_at],
            )
            .execute()
        )
