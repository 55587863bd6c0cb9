from datetime import date, datetime, timedelta

import pytest
import pytz

from core.errors import ConflictError, NotFoundError, ValidationError
from db.models import MasterBattle
from services.schedule_service import ScheduleState
from utils.game_time import GAME_TZ

from conftest import make_master_battle


@pytest.fixture
def battles(database):
    # 20251102 and 20251105 finished, 20251108 current, 20251111 upcoming
    return [
        make_master_battle(date(2025, 11, 2)),
        make_master_battle(date(2025, 11, 5)),
        make_master_battle(date(2025, 11, 8)),
        make_master_battle(date(2025, 11, 11)),
    ]


def test_schedule_info(schedule_service, store, battles):
    store.save_state(ScheduleState(next_battle_start=GAME_TZ.localize(datetime(2025, 11, 14))))

    info = schedule_service.get_battle_schedule_info()

    assert info.current_battle.battle_id == "20251108"
    assert info.next_battle.battle_id == "20251111"
    assert info.next_battle_start == GAME_TZ.localize(datetime(2025, 11, 14))
    assert info.scheduler_enabled is True
    assert [b.battle_id for b in info.available_battles] == ["20251108", "20251105", "20251102"]


def test_schedule_info_between_battles(schedule_service, clock, battles):
    # Rest day: 20251105 ended at 23:59:59.999 on the 6th
    clock.now = GAME_TZ.localize(datetime(2025, 11, 7, 9, 0))

    info = schedule_service.get_battle_schedule_info()

    assert info.current_battle is None
    assert info.next_battle.battle_id == "20251108"


def test_master_battle_out_is_aware_utc(schedule_service, battles):
    battle = schedule_service.get_battle_by_id("20251108")

    assert battle.start_timestamp == datetime(2025, 11, 8, 5, 0, tzinfo=pytz.utc)
    assert battle.is_automatic is True


def test_get_battle_by_id_errors(schedule_service, database):
    with pytest.raises(NotFoundError):
        schedule_service.get_battle_by_id("20251108")
    with pytest.raises(ValidationError):
        schedule_service.get_battle_by_id("2025118")


def test_get_all_battles_paginates(schedule_service, battles):
    page = schedule_service.get_all_battles(page=1, limit=3, sort_order="asc")

    assert [b.battle_id for b in page.battles] == ["20251102", "20251105", "20251108"]
    assert page.total == 4
    assert page.total_pages == 2
    assert page.has_next is True
    assert page.has_previous is False

    last = schedule_service.get_all_battles(page=2, limit=3, sort_order="asc")
    assert [b.battle_id for b in last.battles] == ["20251111"]
    assert last.has_next is False


def test_get_all_battles_date_range(schedule_service, battles):
    page = schedule_service.get_all_battles(start_date=date(2025, 11, 5), end_date=date(2025, 11, 8))

    assert [b.battle_id for b in page.battles] == ["20251108", "20251105"]


def test_get_all_battles_rejects_bad_sort(schedule_service, database):
    with pytest.raises(ValidationError):
        schedule_service.get_all_battles(sort_order="sideways")


def test_recent_battles_limit(schedule_service, battles):
    assert [b.battle_id for b in schedule_service.get_recent_battles(limit=2)] == ["20251108", "20251105"]


def test_next_battle_date_unset(schedule_service, database):
    with pytest.raises(NotFoundError):
        schedule_service.get_next_battle_date()


def test_update_next_battle_date(schedule_service, scheduler, clock):
    target = GAME_TZ.localize(datetime(2025, 11, 20))

    result = schedule_service.update_next_battle_date(target)

    assert result.battle_id == "20251120"
    assert schedule_service.get_next_battle_date().next_battle_start == target

    clock.now = target + timedelta(minutes=1)
    assert scheduler.check_and_advance().battle_id == "20251120"


def test_update_next_battle_date_naive_is_game_time(schedule_service):
    result = schedule_service.update_next_battle_date(datetime(2025, 11, 20))

    assert result.next_battle_start == datetime(2025, 11, 20, 5, 0, tzinfo=pytz.utc)


def test_update_next_battle_date_must_be_future(schedule_service, clock):
    with pytest.raises(ValidationError):
        schedule_service.update_next_battle_date(clock.now - timedelta(minutes=1))


def test_set_scheduler_enabled(schedule_service, scheduler, store):
    schedule_service.set_scheduler_enabled(False)
    assert scheduler.is_enabled() is False

    schedule_service.set_scheduler_enabled(True)
    assert store.load_state().scheduler_enabled is True


def test_create_master_battle(schedule_service, store):
    battle = schedule_service.create_master_battle(date(2025, 12, 1), created_by="admin")

    assert battle.battle_id == "20251201"
    assert battle.created_by == "admin"
    assert MasterBattle.exists("20251201")
    assert store.load_state().next_battle_start is None


def test_create_master_battle_conflict(schedule_service, battles):
    with pytest.raises(ConflictError):
        schedule_service.create_master_battle(date(2025, 11, 8))
