"""
Battle Service

Records a clan's result for a master battle: validates the entry against
the schedule and roster, derives every calculated field, and writes the
battle, its stat rows and roster action codes in one transaction.

Period summaries are refreshed after the commit. Aggregation is
best-effort: a failure there is logged and never undoes the battle write,
and the next write (or AggregationService.rebuild_clan) repairs it.
"""

import math
from datetime import datetime, timedelta
from typing import Callable, Optional

from peewee import IntegrityError
from pydantic import ValidationError as PydanticValidationError

from core.errors import ConflictError, NotFoundError, ValidationError
from core.logging import battle_log_context, get_logger
from core.resilience import with_db_retry
from db.base import db
from db.models import (
    Clan,
    ClanBattle,
    ClanBattleNonplayerStats,
    ClanBattlePlayerStats,
    MasterBattle,
    RosterMember,
)
from schemas.battle import (
    BattleDetail,
    BattleEntry,
    BattleList,
    BattleQuery,
    BattleUpdate,
    NonplayerStatOut,
    PlayerStatOut,
)
from services.aggregation_service import AggregationService
from services.roster_actions import apply_action_codes
from utils.calculations import calculate_battle_metrics, ratio, ratio_ranks
from utils.game_time import (
    from_storage,
    game_calendar_date,
    game_midnight,
    month_id_of,
    now_game_time,
    to_storage,
    validate_battle_id,
    year_id_of,
)

INPUT_FIELDS = [
    "score",
    "baseline_fp",
    "opponent_name",
    "opponent_rovio_id",
    "opponent_country",
    "opponent_score",
    "opponent_fp",
]


def _validate(schema, data):
    """Coerce data into schema, mapping pydantic errors to ValidationError."""
    if isinstance(data, schema):
        return data
    try:
        return schema.model_validate(data)
    except PydanticValidationError as e:
        details = [
            {"loc": list(err["loc"]), "msg": err["msg"]}
            for err in e.errors()
        ]
        raise ValidationError(f"Invalid {schema.__name__}", details=details) from e


def derive_battle_fields(entry: BattleEntry) -> tuple[dict, list[dict], list[dict]]:
    """
    Compute the derived values for an entry.

    Returns:
        (ClanBattle metrics, player rows, nonplayer rows); player rows carry
        ratio and ratio_rank
    """
    players = [p.model_dump() for p in entry.players]
    nonplayers = [np.model_dump() for np in entry.nonplayers]

    try:
        for player in players:
            player["ratio"] = ratio(player["score"], player["fp"])
        for player, rank in zip(players, ratio_ranks([p["ratio"] for p in players])):
            player["ratio_rank"] = rank

        metrics = calculate_battle_metrics(
            entry.score,
            entry.baseline_fp,
            entry.opponent_score,
            entry.opponent_fp,
            players,
            nonplayers,
        )
    except ValueError as e:
        raise ValidationError(str(e)) from e

    return metrics, players, nonplayers


class BattleService:
    """Create, update, delete and query a clan's battle records."""

    def __init__(
        self,
        aggregator: Optional[AggregationService] = None,
        clock: Callable[[], datetime] = now_game_time,
    ):
        self.aggregator = aggregator or AggregationService()
        self.clock = clock
        self.log = get_logger("battle_service")

    # ------------------------------- Writes ------------------------------- #

    def create_battle(self, clan_id: int, entry) -> BattleDetail:
        """
        Record a clan's result for a master battle.

        Args:
            clan_id: Recording clan
            entry: BattleEntry or a dict in its shape

        Raises:
            ValidationError: Malformed entry
            NotFoundError: Unknown clan, battle or roster member
            ConflictError: The clan already recorded this battle
        """
        entry = _validate(BattleEntry, entry)

        with battle_log_context(clan_id, entry.battle_id):
            self._get_clan(clan_id)

            master = MasterBattle.get_or_none(MasterBattle.battle_id == entry.battle_id)
            if master is None:
                raise NotFoundError(f"Battle {entry.battle_id} not found")

            self._check_roster(clan_id, entry)

            if ClanBattle.get_for_clan(clan_id, entry.battle_id) is not None:
                raise ConflictError(
                    f"Clan {clan_id} already recorded battle {entry.battle_id}"
                )

            clan_battle = self._insert_battle(clan_id, master, entry)
            self.log.info(
                "battle_created",
                clan_battle_id=clan_battle.id,
                result=clan_battle.result,
                players=len(entry.players),
                nonplayers=len(entry.nonplayers),
            )

            self._refresh_aggregates(clan_id, entry.battle_id)
            return self.get_battle_by_id(clan_id, entry.battle_id)

    def update_battle(self, clan_id: int, battle_id: str, update) -> BattleDetail:
        """
        Merge supplied fields over a recorded battle and recompute it.

        battle_id and the window are immutable. Derived fields and all child
        rows are replaced from the merged inputs; action codes are re-applied.

        Raises:
            ValidationError: Malformed update or merged entry
            NotFoundError: Unknown battle record or roster member
        """
        update = _validate(BattleUpdate, update)

        with battle_log_context(clan_id, battle_id):
            clan_battle = self._get_clan_battle(clan_id, battle_id)

            merged = self._entry_dict(clan_battle)
            merged.update(update.model_dump(exclude_unset=True, exclude_none=True))
            entry = _validate(BattleEntry, merged)

            self._check_roster(clan_id, entry)
            self._replace_battle(clan_battle, entry)
            self.log.info(
                "battle_updated",
                fields=sorted(update.model_fields_set),
            )

            self._refresh_aggregates(clan_id, battle_id)
            return self.get_battle_by_id(clan_id, battle_id)

    def delete_battle(self, clan_id: int, battle_id: str) -> None:
        """
        Remove a battle record and its stats.

        Raises:
            NotFoundError: If the clan has no record for battle_id
        """
        with battle_log_context(clan_id, battle_id):
            clan_battle = self._get_clan_battle(clan_id, battle_id)
            self._delete_battle(clan_battle)
            self.log.info("battle_deleted")
            self._refresh_aggregates(clan_id, battle_id)

    @with_db_retry()
    def _insert_battle(self, clan_id: int, master: MasterBattle, entry: BattleEntry) -> ClanBattle:
        metrics, players, nonplayers = derive_battle_fields(entry)
        try:
            with db.atomic():
                clan_battle = ClanBattle.create(
                    clan=clan_id,
                    battle=master.battle_id,
                    month_id=month_id_of(master.battle_id),
                    year_id=year_id_of(master.battle_id),
                    start_timestamp=master.start_timestamp,
                    end_timestamp=master.end_timestamp,
                    **{field: getattr(entry, field) for field in INPUT_FIELDS},
                    **metrics,
                )
                self._write_children(clan_battle, clan_id, players, nonplayers)
        except IntegrityError as e:
            # Unique (clan, battle) index lost the race to a concurrent write
            raise ConflictError(
                f"Clan {clan_id} already recorded battle {entry.battle_id}"
            ) from e
        return clan_battle

    @with_db_retry()
    def _replace_battle(self, clan_battle: ClanBattle, entry: BattleEntry) -> None:
        metrics, players, nonplayers = derive_battle_fields(entry)
        with db.atomic():
            (
                ClanBattle.update(
                    **{field: getattr(entry, field) for field in INPUT_FIELDS},
                    **metrics,
                    updated_at=datetime.utcnow(),
                )
                .where(ClanBattle.id == clan_battle.id)
                .execute()
            )
            self._delete_children(clan_battle)
            self._write_children(clan_battle, clan_battle.clan_id, players, nonplayers)

    @with_db_retry()
    def _delete_battle(self, clan_battle: ClanBattle) -> None:
        with db.atomic():
            self._delete_children(clan_battle)
            clan_battle.delete_instance()

    def _write_children(self, clan_battle: ClanBattle, clan_id: int, players, nonplayers) -> None:
        if players:
            ClanBattlePlayerStats.insert_many([
                {
                    "clan_battle": clan_battle.id,
                    "player": p["player_id"],
                    "rank": p["rank"],
                    "score": p["score"],
                    "fp": p["fp"],
                    "ratio": p["ratio"],
                    "ratio_rank": p["ratio_rank"],
                    "action_code": p["action_code"],
                    "action_reason": p["action_reason"],
                }
                for p in players
            ]).execute()
        if nonplayers:
            ClanBattleNonplayerStats.insert_many([
                {
                    "clan_battle": clan_battle.id,
                    "player": np["player_id"],
                    "fp": np["fp"],
                    "reserve": np["reserve"],
                    "action_code": np["action_code"],
                    "action_reason": np["action_reason"],
                }
                for np in nonplayers
            ]).execute()

        apply_action_codes(
            clan_id,
            players + nonplayers,
            today=game_calendar_date(self.clock()),
        )

    def _delete_children(self, clan_battle: ClanBattle) -> None:
        ClanBattlePlayerStats.delete().where(
            ClanBattlePlayerStats.clan_battle == clan_battle.id
        ).execute()
        ClanBattleNonplayerStats.delete().where(
            ClanBattleNonplayerStats.clan_battle == clan_battle.id
        ).execute()

    def _refresh_aggregates(self, clan_id: int, battle_id: str) -> None:
        try:
            self.aggregator.refresh_for_battle(clan_id, battle_id)
        except Exception:
            self.log.exception("aggregation_failed")

    # ------------------------------- Lookups ------------------------------- #

    def _get_clan(self, clan_id: int) -> Clan:
        clan = Clan.get_or_none(Clan.id == clan_id)
        if clan is None:
            raise NotFoundError(f"Clan {clan_id} not found")
        return clan

    def _get_clan_battle(self, clan_id: int, battle_id: str) -> ClanBattle:
        if not validate_battle_id(battle_id):
            raise ValidationError(f"Invalid battle ID: {battle_id}")
        clan_battle = ClanBattle.get_for_clan(clan_id, battle_id)
        if clan_battle is None:
            raise NotFoundError(f"Clan {clan_id} has no record for battle {battle_id}")
        return clan_battle

    def _check_roster(self, clan_id: int, entry: BattleEntry) -> None:
        player_ids = [p.player_id for p in entry.players] + [
            np.player_id for np in entry.nonplayers
        ]
        missing = sorted(set(player_ids) - RosterMember.ids_for_clan(clan_id, player_ids))
        if missing:
            raise NotFoundError(
                f"Players not on clan {clan_id} roster: {missing}",
                details={"player_ids": missing},
            )

    def _entry_dict(self, clan_battle: ClanBattle) -> dict:
        """Persisted inputs in BattleEntry shape."""
        entry = {field: getattr(clan_battle, field) for field in INPUT_FIELDS}
        entry["battle_id"] = clan_battle.battle_id
        entry["players"] = [
            {
                "player_id": s.player_id,
                "rank": s.rank,
                "score": s.score,
                "fp": s.fp,
                "action_code": s.action_code,
                "action_reason": s.action_reason,
            }
            for s in clan_battle.player_stats.order_by(ClanBattlePlayerStats.id)
        ]
        entry["nonplayers"] = [
            {
                "player_id": s.player_id,
                "fp": s.fp,
                "reserve": s.reserve,
                "action_code": s.action_code,
                "action_reason": s.action_reason,
            }
            for s in clan_battle.nonplayer_stats.order_by(ClanBattleNonplayerStats.id)
        ]
        return entry

    # ------------------------------- Queries ------------------------------- #

    def get_battle_by_id(self, clan_id: int, battle_id: str) -> BattleDetail:
        """
        Raises:
            NotFoundError: If the clan has no record for battle_id
        """
        return self._to_detail(self._get_clan_battle(clan_id, battle_id))

    def get_battles(self, clan_id: int, query=None) -> BattleList:
        """
        List a clan's battles with filters, sorting and pagination.

        Args:
            clan_id: Clan to list
            query: BattleQuery or a dict in its shape (defaults apply when None)
        """
        query = _validate(BattleQuery, query or {})
        self._get_clan(clan_id)

        battles = ClanBattle.select().where(ClanBattle.clan == clan_id)
        if query.start_date:
            battles = battles.where(
                ClanBattle.start_timestamp >= to_storage(game_midnight(query.start_date))
            )
        if query.end_date:
            battles = battles.where(
                ClanBattle.start_timestamp
                < to_storage(game_midnight(query.end_date + timedelta(days=1)))
            )
        # contains() is case-insensitive (ILIKE / LIKE)
        if query.opponent_name:
            battles = battles.where(ClanBattle.opponent_name.contains(query.opponent_name))
        if query.opponent_country:
            battles = battles.where(ClanBattle.opponent_country.contains(query.opponent_country))
        if query.result is not None:
            battles = battles.where(ClanBattle.result == query.result)

        total = battles.count()

        sort_column = getattr(ClanBattle, query.sort_by)
        if query.sort_order == "asc":
            order = [sort_column.asc(), ClanBattle.battle.asc()]
        else:
            order = [sort_column.desc(), ClanBattle.battle.desc()]
        page = battles.order_by(*order).paginate(query.page, query.limit)

        return BattleList(
            battles=[self._to_detail(b) for b in page],
            total=total,
            page=query.page,
            limit=query.limit,
            total_pages=math.ceil(total / query.limit) if total else 0,
        )

    def _to_detail(self, clan_battle: ClanBattle) -> BattleDetail:
        players = (
            ClanBattlePlayerStats.select(ClanBattlePlayerStats, RosterMember)
            .join(RosterMember)
            .where(ClanBattlePlayerStats.clan_battle == clan_battle.id)
            .order_by(ClanBattlePlayerStats.ratio_rank)
        )
        nonplayers = (
            ClanBattleNonplayerStats.select(ClanBattleNonplayerStats, RosterMember)
            .join(RosterMember)
            .where(ClanBattleNonplayerStats.clan_battle == clan_battle.id)
            .order_by(ClanBattleNonplayerStats.reserve, ClanBattleNonplayerStats.id)
        )

        return BattleDetail(
            clan_id=clan_battle.clan_id,
            battle_id=clan_battle.battle_id,
            month_id=clan_battle.month_id,
            year_id=clan_battle.year_id,
            start_timestamp=from_storage(clan_battle.start_timestamp),
            end_timestamp=from_storage(clan_battle.end_timestamp),
            **{field: getattr(clan_battle, field) for field in INPUT_FIELDS},
            result=clan_battle.result,
            fp=clan_battle.fp,
            ratio=clan_battle.ratio,
            average_ratio=clan_battle.average_ratio,
            projected_score=clan_battle.projected_score,
            margin_ratio=clan_battle.margin_ratio,
            fp_margin=clan_battle.fp_margin,
            nonplaying_count=clan_battle.nonplaying_count,
            nonplaying_fp_ratio=clan_battle.nonplaying_fp_ratio,
            reserve_count=clan_battle.reserve_count,
            reserve_fp_ratio=clan_battle.reserve_fp_ratio,
            players=[
                PlayerStatOut(
                    player_id=s.player_id,
                    player_name=s.player.player_name,
                    rank=s.rank,
                    score=s.score,
                    fp=s.fp,
                    ratio=s.ratio,
                    ratio_rank=s.ratio_rank,
                    action_code=s.action_code,
                    action_reason=s.action_reason,
                )
                for s in players
            ],
            nonplayers=[
                NonplayerStatOut(
                    player_id=s.player_id,
                    player_name=s.player.player_name,
                    fp=s.fp,
                    reserve=s.reserve,
                    action_code=s.action_code,
                    action_reason=s.action_reason,
                )
                for s in nonplayers
            ],
        )
