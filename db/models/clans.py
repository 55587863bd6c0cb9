"""
Clan and Roster Tables

Dimension tables referenced by battle records. Roster members are mutated
by post-battle action codes (see services/roster_actions.py).
"""

from datetime import date, datetime

from peewee import (
    AutoField,
    BooleanField,
    CharField,
    DateField,
    DateTimeField,
    ForeignKeyField,
    IntegerField,
)

from db.base import BaseModel


class Clan(BaseModel):
    """
    A registered clan.

    Attributes:
        id: Auto-incrementing primary key (clan id)
        rovio_id: In-game clan identifier
        name: Clan display name
        country: Clan country
        registration_date: When the clan registered
        active: Whether the clan is active
    """

    id = AutoField(primary_key=True)
    rovio_id = IntegerField(index=True)
    name = CharField(max_length=100)
    country = CharField(max_length=100)
    registration_date = DateField(default=date.today)
    active = BooleanField(default=True)

    created_at = DateTimeField(default=datetime.utcnow)
    updated_at = DateTimeField(default=datetime.utcnow)

    class Meta:
        table_name = "clans"

    def __repr__(self) -> str:
        return f"<Clan(id={self.id}, name='{self.name}', rovio_id={self.rovio_id})>"

    def save(self, *args, **kwargs):
        """Override save to auto-update updated_at timestamp."""
        self.updated_at = datetime.utcnow()
        return super().save(*args, **kwargs)


class RosterMember(BaseModel):
    """
    A player on a clan's roster.

    Attributes:
        id: Auto-incrementing primary key (player id)
        clan: Owning clan
        player_name: In-game name
        active: False once kicked or moved to reserve
        joined_date: When the player joined
        left_date: When the player left voluntarily
        kicked_date: When a KICK action code was applied
    """

    id = AutoField(primary_key=True)
    clan = ForeignKeyField(
        Clan,
        backref="roster",
        on_delete="CASCADE",
        column_name="clan_id",
    )
    player_name = CharField(max_length=100)
    active = BooleanField(default=True)
    joined_date = DateField(default=date.today)
    left_date = DateField(null=True)
    kicked_date = DateField(null=True)

    created_at = DateTimeField(default=datetime.utcnow)
    updated_at = DateTimeField(default=datetime.utcnow)

    class Meta:
        table_name = "roster_members"
        indexes = (
            (("clan", "active"), False),
        )

    def __repr__(self) -> str:
        return (
            f"<RosterMember("
            f"id={self.id}, "
            f"clan_id={self.clan_id}, "
            f"name='{self.player_name}', "
            f"active={self.active})>"
        )

    def save(self, *args, **kwargs):
        """Override save to auto-update updated_at timestamp."""
        self.updated_at = datetime.utcnow()
        return super().save(*args, **kwargs)

    @classmethod
    def ids_for_clan(cls, clan_id: int, player_ids: list[int]) -> set[int]:
        """Subset of player_ids that belong to clan_id's roster."""
        if not player_ids:
            return set()
        rows = cls.select(cls.id).where(
            (cls.clan == clan_id) & (cls.id.in_(player_ids))
        )
        return {row.id for row in rows}
