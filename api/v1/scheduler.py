"""
Scheduler API Routes

Endpoints for the external cron trigger and schedule administration. Uses
token-based authentication so a scheduled job can call /check every few
minutes; each call is idempotent.

Service calls are synchronous peewee code, so they run in a worker thread
with a connection owned by that thread.
"""

import asyncio
from datetime import date
from typing import Literal, Optional

from fastapi import APIRouter, Depends, Query, Security

from core.logging import get_logger
from core.scheduler_auth import verify_scheduler_token
from db.base import run_with_connection
from schemas.common import BaseResponse, success_response
from schemas.schedule import (
    CreateMasterBattleRequest,
    SchedulerEnabledRequest,
    SchedulerRunStatus,
    UpdateNextBattleDateRequest,
)
from services.battle_scheduler import BattleScheduler
from services.schedule_service import ScheduleService

router = APIRouter(prefix="/scheduler", tags=["scheduler"])
log = get_logger("scheduler_api")


def get_scheduler() -> BattleScheduler:
    return BattleScheduler()


def get_schedule_service() -> ScheduleService:
    return ScheduleService()


async def _run(func, *args, **kwargs):
    return await asyncio.to_thread(run_with_connection, func, *args, **kwargs)


@router.post("/check", response_model=BaseResponse)
async def check_and_advance(
    _: str = Security(verify_scheduler_token),
    scheduler: BattleScheduler = Depends(get_scheduler),
) -> dict:
    """
    Run one scheduler tick.

    Creates the due master battle (if any) and advances the schedule.
    Always 200: failures are reported in data.status and retried on the
    next call.
    """
    result = await _run(scheduler.check_and_advance)
    message = result.message or f"Scheduler check: {result.status}"
    return success_response(message=message, data=result.model_dump(mode="json"))


@router.post("/battles", response_model=BaseResponse)
async def create_battle(
    request: CreateMasterBattleRequest,
    _: str = Security(verify_scheduler_token),
    scheduler: BattleScheduler = Depends(get_scheduler),
) -> dict:
    """
    Manually create a master battle starting on a Game Time date.

    Outside the cadence; the next scheduled date is unchanged. An existing
    battle for the date is reported as skipped_existing.
    """
    result = await _run(
        scheduler.manually_create_battle,
        request.start_date,
        created_by=request.created_by,
        notes=request.notes,
    )
    created = result.status == SchedulerRunStatus.CREATED
    message = f"Battle {result.battle_id} {'created' if created else 'already exists'}"
    return success_response(message=message, data=result.model_dump(mode="json"))


@router.get("/battles", response_model=BaseResponse)
async def list_battles(
    _: str = Security(verify_scheduler_token),
    service: ScheduleService = Depends(get_schedule_service),
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=100),
    sort_order: Literal["asc", "desc"] = Query("desc"),
    start_date: Optional[date] = Query(None, description="Earliest start date (YYYY-MM-DD, Game Time)"),
    end_date: Optional[date] = Query(None, description="Latest start date (YYYY-MM-DD, Game Time)"),
) -> dict:
    """Page through all master battles."""
    result = await _run(
        service.get_all_battles,
        page=page,
        limit=limit,
        sort_order=sort_order,
        start_date=start_date,
        end_date=end_date,
    )
    return success_response(message="Battles retrieved", data=result.model_dump(mode="json"))


@router.get("/battles/{battle_id}", response_model=BaseResponse)
async def get_battle(
    battle_id: str,
    _: str = Security(verify_scheduler_token),
    service: ScheduleService = Depends(get_schedule_service),
) -> dict:
    battle = await _run(service.get_battle_by_id, battle_id)
    return success_response(message="Battle retrieved", data=battle.model_dump(mode="json"))


@router.get("/info", response_model=BaseResponse)
async def get_schedule_info(
    _: str = Security(verify_scheduler_token),
    service: ScheduleService = Depends(get_schedule_service),
) -> dict:
    """Current battle, next battle, next start date and recordable battles."""
    info = await _run(service.get_battle_schedule_info)
    return success_response(message="Schedule info retrieved", data=info.model_dump(mode="json"))


@router.get("/next-battle-date", response_model=BaseResponse)
async def get_next_battle_date(
    _: str = Security(verify_scheduler_token),
    service: ScheduleService = Depends(get_schedule_service),
) -> dict:
    result = await _run(service.get_next_battle_date)
    return success_response(message="Next battle date retrieved", data=result.model_dump(mode="json"))


@router.put("/next-battle-date", response_model=BaseResponse)
async def update_next_battle_date(
    request: UpdateNextBattleDateRequest,
    _: str = Security(verify_scheduler_token),
    service: ScheduleService = Depends(get_schedule_service),
) -> dict:
    """Reset the cadence anchor. Must be in the future."""
    result = await _run(service.update_next_battle_date, request.next_battle_start)
    log.info("next_battle_date_override", battle_id=result.battle_id)
    return success_response(message="Next battle date updated", data=result.model_dump(mode="json"))


@router.put("/enabled", response_model=BaseResponse)
async def set_scheduler_enabled(
    request: SchedulerEnabledRequest,
    _: str = Security(verify_scheduler_token),
    service: ScheduleService = Depends(get_schedule_service),
) -> dict:
    await _run(service.set_scheduler_enabled, request.enabled)
    return success_response(
        message=f"Scheduler {'enabled' if request.enabled else 'disabled'}",
        data={"scheduler_enabled": request.enabled},
    )
