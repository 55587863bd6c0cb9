from urllib.parse import urlparse

from peewee import DatabaseProxy, Model
from playhouse.db_url import connect, parse
from playhouse.pool import PooledPostgresqlDatabase

from core.settings import settings

# Bound to a concrete database by init_db() (server startup, tests)
db = DatabaseProxy()


class BaseModel(Model):
    class Meta:
        database = db


def _create_database(database_url: str):
    """Build the peewee database for a URL: pooled Postgres or SQLite."""
    scheme = urlparse(database_url).scheme
    if scheme in ("postgres", "postgresql"):
        parsed_url = parse(database_url)
        db_name = parsed_url.pop('database')
        return PooledPostgresqlDatabase(
            db_name,
            max_connections=settings.db_max_connections,
            stale_timeout=settings.db_stale_timeout,
            **parsed_url
        )
    # SQLite only enforces ON DELETE CASCADE with foreign_keys enabled
    return connect(database_url, pragmas={'foreign_keys': 1})


def get_models() -> list:
    """All models in foreign-key dependency order."""
    from .models import (
        MasterBattle,
        ScheduleSetting,
        Clan,
        RosterMember,
        ClanBattle,
        ClanBattlePlayerStats,
        ClanBattleNonplayerStats,
        MonthlyClanPerformance,
        YearlyClanPerformance,
        MonthlyIndividualPerformance,
        YearlyIndividualPerformance,
    )

    return [
        # Schedule
        MasterBattle, ScheduleSetting,
        # Dimension tables
        Clan, RosterMember,
        # Battle records (FK to MasterBattle, Clan, RosterMember)
        ClanBattle, ClanBattlePlayerStats, ClanBattleNonplayerStats,
        # Derived period summaries
        MonthlyClanPerformance, YearlyClanPerformance,
        MonthlyIndividualPerformance, YearlyIndividualPerformance,
    ]


# Function to initialize database connection
def init_db(database_url: str | None = None):
    """Bind the proxy, connect and create tables if they don't exist."""
    database = _create_database(database_url or settings.database_url)
    db.initialize(database)
    db.connect(reuse_if_open=True)

    # safe=True is idempotent
    db.create_tables(get_models(), safe=True)
    return database


# Function to close database connection
def close_db():
    """Close database connection."""
    if not db.is_closed():
        db.close()


def run_with_connection(func, *args, **kwargs):
    """
    Run func with a connection owned by the current thread.

    Used from worker threads (asyncio.to_thread) since peewee connections
    are thread-local.
    """
    opened = False
    if db.is_closed():
        db.connect()
        opened = True

    try:
        return func(*args, **kwargs)
    finally:
        if opened and not db.is_closed():
            db.close()
