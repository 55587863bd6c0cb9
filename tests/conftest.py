import os

# Settings are read at import time
os.environ.setdefault("SCHEDULER_API_TOKEN", "test-token")
os.environ.setdefault("LOG_FORMAT", "console")
os.environ.setdefault("DB_RETRY_BASE_DELAY", "0.01")

from datetime import date, datetime

import pytest

from db.base import close_db, init_db
from db.models import Clan, MasterBattle, RosterMember
from services.aggregation_service import AggregationService
from services.battle_scheduler import BattleScheduler
from services.battle_service import BattleService
from services.schedule_service import PeeweeScheduleStore, ScheduleService
from utils.game_time import GAME_TZ, battle_window, derive_battle_id, to_storage

# 2025-11-08 12:00 Game Time, the middle of battle 20251108's first day
NOW = GAME_TZ.localize(datetime(2025, 11, 8, 12, 0))


class FixedClock:
    """Callable clock returning a settable Game Time instant."""

    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture
def database(tmp_path):
    # File-backed so worker threads share it
    database = init_db(f"sqlite:///{tmp_path / 'test.db'}")
    yield database
    close_db()


@pytest.fixture
def clock():
    return FixedClock()


@pytest.fixture
def store(database):
    return PeeweeScheduleStore()


@pytest.fixture
def scheduler(store, clock):
    return BattleScheduler(store=store, clock=clock)


@pytest.fixture
def schedule_service(store, clock):
    return ScheduleService(store=store, clock=clock)


@pytest.fixture
def aggregator(database):
    return AggregationService()


@pytest.fixture
def battle_service(aggregator, clock):
    return BattleService(aggregator=aggregator, clock=clock)


def make_master_battle(start_date: date, created_by=None, notes=None) -> MasterBattle:
    start, end = battle_window(start_date)
    return MasterBattle.create(
        battle_id=derive_battle_id(start_date),
        start_timestamp=to_storage(start),
        end_timestamp=to_storage(end),
        created_by=created_by,
        notes=notes,
    )


@pytest.fixture
def clan(database):
    return Clan.create(rovio_id=1001, name="Red Flock", country="Finland")


@pytest.fixture
def other_clan(database):
    return Clan.create(rovio_id=2002, name="Piggy Island", country="Sweden")


@pytest.fixture
def roster(clan):
    names = ["Red", "Chuck", "Bomb", "Matilda", "Stella", "Terence"]
    return [RosterMember.create(clan=clan, player_name=name) for name in names]


@pytest.fixture
def master_battle(database):
    return make_master_battle(date(2025, 11, 8))


def battle_entry(roster, battle_id="20251108", **overrides) -> dict:
    """
    A valid entry: three players, one nonplayer and one reserve.

    Player fp 100 each, nonplayer fp 100 (counted), reserve fp 50 (excluded).
    """
    entry = {
        "battle_id": battle_id,
        "score": 3000,
        "baseline_fp": 400,
        "opponent_name": "Pig City",
        "opponent_rovio_id": 555,
        "opponent_country": "Norway",
        "opponent_score": 2500,
        "opponent_fp": 380,
        "players": [
            {"player_id": roster[0].id, "rank": 1, "score": 1200, "fp": 100},
            {"player_id": roster[1].id, "rank": 2, "score": 1000, "fp": 100},
            {"player_id": roster[2].id, "rank": 3, "score": 800, "fp": 100},
        ],
        "nonplayers": [
            {"player_id": roster[3].id, "fp": 100},
            {"player_id": roster[4].id, "fp": 50, "reserve": True},
        ],
    }
    entry.update(overrides)
    return entry
