"""
Schedule Service

Battle Schedule Store and its read/admin operations.

ScheduleStore is the persistence seam used by the scheduler: the durable
state (next battle start + enabled flag) and MasterBattle existence/insert.
ScheduleService layers the schedule queries and manual overrides on top.

All instants handed out are aware (UTC for battle windows, Game Time for
next_battle_start); rows store naive UTC.
"""

import math
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Callable, Optional

from peewee import IntegrityError

from core.errors import ConflictError, NotFoundError, ValidationError
from core.logging import get_logger
from core.resilience import with_db_retry
from db.base import db
from db.models import MasterBattle, ScheduleSetting
from schemas.schedule import (
    BattleScheduleInfo,
    MasterBattleOut,
    MasterBattlePage,
    NextBattleDateOut,
)
from utils.constants import AVAILABLE_BATTLES_LIMIT
from utils.game_time import (
    GAME_TZ,
    battle_window,
    derive_battle_id,
    from_storage,
    game_midnight,
    now_game_time,
    to_game_time,
    to_storage,
    validate_battle_id,
)


@dataclass
class ScheduleState:
    """Durable scheduler state. next_battle_start is an aware Game Time instant."""

    next_battle_start: Optional[datetime] = None
    scheduler_enabled: bool = True


class ScheduleStore(ABC):
    """Persistence for schedule state and master battles."""

    @abstractmethod
    def load_state(self) -> ScheduleState:
        ...

    @abstractmethod
    def save_state(self, state: ScheduleState) -> None:
        ...

    @abstractmethod
    def battle_exists(self, battle_id: str) -> bool:
        ...

    @abstractmethod
    def insert_master_battle(
        self,
        battle_id: str,
        start: datetime,
        end: datetime,
        created_by: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> MasterBattle:
        """
        Insert a master battle.

        Raises:
            ConflictError: If battle_id already exists
        """
        ...


class PeeweeScheduleStore(ScheduleStore):
    """ScheduleStore backed by the schedule_settings / master_battles tables."""

    def load_state(self) -> ScheduleState:
        setting = ScheduleSetting.load()
        next_start = from_storage(setting.next_battle_start)
        return ScheduleState(
            next_battle_start=to_game_time(next_start) if next_start else None,
            scheduler_enabled=setting.scheduler_enabled,
        )

    @with_db_retry()
    def save_state(self, state: ScheduleState) -> None:
        next_start = state.next_battle_start
        ScheduleSetting.store(
            next_battle_start=to_storage(next_start) if next_start else None,
            scheduler_enabled=state.scheduler_enabled,
        )

    def battle_exists(self, battle_id: str) -> bool:
        return MasterBattle.exists(battle_id)

    @with_db_retry()
    def insert_master_battle(
        self,
        battle_id: str,
        start: datetime,
        end: datetime,
        created_by: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> MasterBattle:
        try:
            with db.atomic():
                return MasterBattle.create(
                    battle_id=battle_id,
                    start_timestamp=to_storage(start),
                    end_timestamp=to_storage(end),
                    created_by=created_by,
                    notes=notes,
                )
        except IntegrityError as e:
            raise ConflictError(f"Battle {battle_id} already exists") from e


def master_battle_out(battle: MasterBattle) -> MasterBattleOut:
    return MasterBattleOut(
        battle_id=battle.battle_id,
        start_timestamp=from_storage(battle.start_timestamp),
        end_timestamp=from_storage(battle.end_timestamp),
        created_by=battle.created_by,
        notes=battle.notes,
        is_automatic=battle.is_automatic,
    )


class ScheduleService:
    """Schedule queries and manual overrides."""

    def __init__(
        self,
        store: Optional[ScheduleStore] = None,
        clock: Callable[[], datetime] = now_game_time,
    ):
        self.store = store or PeeweeScheduleStore()
        self.clock = clock
        self.log = get_logger("schedule_service")

    def _now_storage(self) -> datetime:
        return to_storage(self.clock())

    # ------------------------------- Queries ------------------------------- #

    def get_all_battles(
        self,
        page: int = 1,
        limit: int = 50,
        sort_order: str = "desc",
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
    ) -> MasterBattlePage:
        """
        Page through every master battle.

        Args:
            page: 1-based page number
            limit: Page size
            sort_order: "asc" or "desc" by start time
            start_date: Only battles starting on/after this Game Time date
            end_date: Only battles starting on/before this Game Time date
        """
        if page < 1 or limit < 1:
            raise ValidationError("page and limit must be positive")
        if sort_order not in ("asc", "desc"):
            raise ValidationError(f"Invalid sort order: {sort_order}")

        query = MasterBattle.select()
        if start_date:
            query = query.where(
                MasterBattle.start_timestamp >= to_storage(game_midnight(start_date))
            )
        if end_date:
            query = query.where(
                MasterBattle.start_timestamp
                < to_storage(game_midnight(end_date + timedelta(days=1)))
            )

        total = query.count()
        order = (
            MasterBattle.start_timestamp.asc()
            if sort_order == "asc"
            else MasterBattle.start_timestamp.desc()
        )
        rows = query.order_by(order).paginate(page, limit)

        total_pages = math.ceil(total / limit) if total else 0
        return MasterBattlePage(
            battles=[master_battle_out(b) for b in rows],
            total=total,
            page=page,
            limit=limit,
            total_pages=total_pages,
            has_next=page < total_pages,
            has_previous=page > 1,
        )

    def get_available_battles(self) -> list[MasterBattleOut]:
        """Battles that have started (clans may record them), newest first."""
        return self.get_recent_battles(limit=AVAILABLE_BATTLES_LIMIT)

    def get_recent_battles(self, limit: int = 10) -> list[MasterBattleOut]:
        """The most recent started battles, newest first."""
        rows = (
            MasterBattle.select()
            .where(MasterBattle.start_timestamp <= self._now_storage())
            .order_by(MasterBattle.start_timestamp.desc())
            .limit(limit)
        )
        return [master_battle_out(b) for b in rows]

    def get_battle_by_id(self, battle_id: str) -> MasterBattleOut:
        if not validate_battle_id(battle_id):
            raise ValidationError(f"Invalid battle ID: {battle_id}")

        battle = MasterBattle.get_or_none(MasterBattle.battle_id == battle_id)
        if battle is None:
            raise NotFoundError(f"Battle {battle_id} not found")
        return master_battle_out(battle)

    def get_next_battle_date(self) -> NextBattleDateOut:
        state = self.store.load_state()
        if state.next_battle_start is None:
            raise NotFoundError("Next battle date is not configured")
        return NextBattleDateOut(
            next_battle_start=state.next_battle_start,
            battle_id=derive_battle_id(state.next_battle_start),
        )

    def get_battle_schedule_info(self) -> BattleScheduleInfo:
        """Current battle, next scheduled battle and the recordable battles."""
        now = self._now_storage()
        state = self.store.load_state()

        current = MasterBattle.get_current(now)
        upcoming = (
            MasterBattle.select()
            .where(MasterBattle.start_timestamp > now)
            .order_by(MasterBattle.start_timestamp.asc())
            .first()
        )

        return BattleScheduleInfo(
            current_battle=master_battle_out(current) if current else None,
            next_battle=master_battle_out(upcoming) if upcoming else None,
            next_battle_start=state.next_battle_start,
            scheduler_enabled=state.scheduler_enabled,
            available_battles=self.get_available_battles(),
        )

    # ------------------------------- Overrides ------------------------------- #

    def update_next_battle_date(self, next_battle_start: datetime) -> NextBattleDateOut:
        """
        Reset the cadence anchor.

        Args:
            next_battle_start: Aware instant, or naive Game Time wall clock

        Raises:
            ValidationError: If the instant is not in the future
        """
        if next_battle_start.tzinfo is None:
            next_battle_start = GAME_TZ.localize(next_battle_start)
        next_battle_start = to_game_time(next_battle_start)

        if next_battle_start <= self.clock():
            raise ValidationError("Next battle date must be in the future")

        state = self.store.load_state()
        state.next_battle_start = next_battle_start
        self.store.save_state(state)

        self.log.info(
            "next_battle_date_updated",
            next_battle_start=next_battle_start.isoformat(),
        )
        return NextBattleDateOut(
            next_battle_start=next_battle_start,
            battle_id=derive_battle_id(next_battle_start),
        )

    def set_scheduler_enabled(self, enabled: bool) -> None:
        state = self.store.load_state()
        state.scheduler_enabled = enabled
        self.store.save_state(state)
        self.log.info("scheduler_enabled_changed", enabled=enabled)

    def create_master_battle(
        self,
        start_date: date,
        created_by: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> MasterBattleOut:
        """
        Create a battle outside the cadence. Schedule state is untouched.

        Raises:
            ConflictError: If a battle already exists for the date
        """
        battle_id = derive_battle_id(start_date)
        if self.store.battle_exists(battle_id):
            raise ConflictError(f"Battle {battle_id} already exists")

        start, end = battle_window(start_date)
        battle = self.store.insert_master_battle(
            battle_id, start, end, created_by=created_by, notes=notes
        )
        self.log.info(
            "master_battle_created",
            battle_id=battle_id,
            created_by=created_by,
            manual=True,
        )
        return master_battle_out(battle)
