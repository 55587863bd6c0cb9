"""
Battle Scheduler

Idempotent periodic advance of the global battle schedule. An external
cron trigger calls check_and_advance(); each call creates at most one
MasterBattle and moves next_battle_start forward one cadence.

Safe to call any number of times: an existing battle for the due date is
skipped (the schedule still advances), and failures are logged and
reported in the result rather than raised, so the next tick retries from
persisted state.
"""

from datetime import date, datetime
from typing import Callable, Optional

from core.errors import ConflictError, SchedulerTransientError
from core.logging import get_logger
from schemas.schedule import SchedulerRunResult, SchedulerRunStatus
from services.schedule_service import PeeweeScheduleStore, ScheduleStore
from utils.constants import AUTO_CREATED_NOTE
from utils.game_time import (
    GAME_TZ,
    advance_battle_start,
    battle_window,
    derive_battle_id,
    now_game_time,
)


class BattleScheduler:
    """Creates master battles on the fixed cadence."""

    def __init__(
        self,
        store: Optional[ScheduleStore] = None,
        clock: Callable[[], datetime] = now_game_time,
    ):
        self.store = store or PeeweeScheduleStore()
        self.clock = clock
        self.log = get_logger("scheduler")

    def is_enabled(self) -> bool:
        return self.store.load_state().scheduler_enabled

    def check_and_advance(self, now: Optional[datetime] = None) -> SchedulerRunResult:
        """
        Create the due battle (if any) and advance the schedule.

        Args:
            now: Override the current instant. Naive values are Game Time.

        Returns:
            SchedulerRunResult describing what happened. Never raises.
        """
        if now is None:
            now = self.clock()
        elif now.tzinfo is None:
            now = GAME_TZ.localize(now)

        try:
            return self._check_and_advance(now)
        except Exception as e:
            error = SchedulerTransientError("Scheduled battle check failed", details=str(e))
            self.log.exception(
                "scheduler_check_failed",
                error=error.message,
                error_type=type(e).__name__,
            )
            return SchedulerRunResult(
                status=SchedulerRunStatus.ERROR,
                message=f"{error.message}: {e}",
            )

    def _check_and_advance(self, now: datetime) -> SchedulerRunResult:
        state = self.store.load_state()

        if not state.scheduler_enabled:
            self.log.info("scheduler_disabled")
            return SchedulerRunResult(status=SchedulerRunStatus.DISABLED)

        if state.next_battle_start is None:
            self.log.warning("scheduler_next_date_not_configured")
            return SchedulerRunResult(
                status=SchedulerRunStatus.NOT_CONFIGURED,
                message="No next battle date configured",
            )

        if now < state.next_battle_start:
            self.log.debug(
                "scheduler_not_due",
                now=now.isoformat(),
                next_battle_start=state.next_battle_start.isoformat(),
            )
            return SchedulerRunResult(
                status=SchedulerRunStatus.NOT_DUE,
                next_battle_start=state.next_battle_start,
            )

        battle_id = derive_battle_id(state.next_battle_start)
        created = self._create_if_missing(
            battle_id, state.next_battle_start, created_by=None, notes=AUTO_CREATED_NOTE
        )

        state.next_battle_start = advance_battle_start(state.next_battle_start)
        self.store.save_state(state)

        self.log.info(
            "scheduler_advanced",
            battle_id=battle_id,
            created=created,
            next_battle_start=state.next_battle_start.isoformat(),
        )
        return SchedulerRunResult(
            status=SchedulerRunStatus.CREATED if created else SchedulerRunStatus.SKIPPED_EXISTING,
            battle_id=battle_id,
            next_battle_start=state.next_battle_start,
        )

    def manually_create_battle(
        self,
        start_date: date,
        created_by: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> SchedulerRunResult:
        """
        Create a battle for an arbitrary date, outside the cadence.

        Uses the same existence check as the scheduled path; the schedule
        state is left untouched.
        """
        battle_id = derive_battle_id(start_date)
        created = self._create_if_missing(battle_id, start_date, created_by=created_by, notes=notes)
        return SchedulerRunResult(
            status=SchedulerRunStatus.CREATED if created else SchedulerRunStatus.SKIPPED_EXISTING,
            battle_id=battle_id,
        )

    def _create_if_missing(self, battle_id: str, start, created_by, notes) -> bool:
        """Insert the master battle unless it exists. Returns True if created."""
        if self.store.battle_exists(battle_id):
            self.log.info("master_battle_exists", battle_id=battle_id)
            return False

        start_utc, end_utc = battle_window(start)
        try:
            self.store.insert_master_battle(
                battle_id, start_utc, end_utc, created_by=created_by, notes=notes
            )
        except ConflictError:
            # Lost a race with another trigger
            self.log.info("master_battle_insert_conflict", battle_id=battle_id)
            return False

        self.log.info(
            "master_battle_created",
            battle_id=battle_id,
            start=start_utc.isoformat(),
            end=end_utc.isoformat(),
            created_by=created_by,
        )
        return True
