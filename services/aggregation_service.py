"""
Aggregation Service

Monthly and yearly projections of a clan's battle records.

Every recompute reads the period's ClanBattle rows fresh and rebuilds the
summary from scratch, so it is idempotent and safe to run after any write
(or several times after concurrent writes). A recompute that produces the
same values leaves the stored rows untouched.
"""

from datetime import datetime
from typing import Optional

from core.errors import NotFoundError, ValidationError
from core.logging import get_logger
from core.resilience import with_db_retry
from db.base import db
from db.models import (
    Clan,
    ClanBattle,
    ClanBattlePlayerStats,
    MonthlyClanPerformance,
    MonthlyIndividualPerformance,
    RosterMember,
    YearlyClanPerformance,
    YearlyIndividualPerformance,
)
from db.models.performance import ClanPerformance
from schemas.performance import IndividualSummaryOut, PeriodSummaryOut
from utils.calculations import (
    BATTLE_AVERAGE_FIELDS,
    PLAYER_AVERAGE_FIELDS,
    summarize_battles,
    summarize_players,
)
from utils.constants import MIN_BATTLES_FOR_INDIVIDUAL_STATS, PeriodKind
from utils.game_time import month_id_of, parse_month_id, parse_year_id, year_id_of

# kind -> (clan summary model, individual summary model, ClanBattle period column name)
PERIOD_MODELS = {
    PeriodKind.MONTH: (MonthlyClanPerformance, MonthlyIndividualPerformance, "month_id"),
    PeriodKind.YEAR: (YearlyClanPerformance, YearlyIndividualPerformance, "year_id"),
}

PERIOD_ID_PARSERS = {
    PeriodKind.MONTH: parse_month_id,
    PeriodKind.YEAR: parse_year_id,
}

BATTLE_INPUT_FIELDS = ["result"] + list(BATTLE_AVERAGE_FIELDS)


def _apply_changes(row, values: dict) -> bool:
    """Set values on row, returning True if anything differed."""
    changed = False
    for field, value in values.items():
        if getattr(row, field) != value:
            setattr(row, field, value)
            changed = True
    return changed


class AggregationService:
    """Rebuilds period summaries from ClanBattle rows."""

    def __init__(self, min_battles: int = MIN_BATTLES_FOR_INDIVIDUAL_STATS):
        self.min_battles = min_battles
        self.log = get_logger("aggregation")

    def _models(self, kind, period_id: Optional[str] = None):
        try:
            kind = PeriodKind(kind)
        except ValueError:
            raise ValidationError(f"Invalid period kind: {kind}")
        if period_id is not None:
            try:
                PERIOD_ID_PARSERS[kind](period_id)
            except (TypeError, ValueError) as e:
                raise ValidationError(str(e), details={"period_id": period_id, "kind": kind.value})
        return PERIOD_MODELS[kind]

    @with_db_retry()
    def recompute_period_summary(
        self, clan_id: int, period_id: str, kind: PeriodKind
    ) -> Optional[ClanPerformance]:
        """
        Rebuild one clan period summary and its individual rows.

        Args:
            clan_id: Clan to summarize
            period_id: YYYYMM for months, YYYY for years
            kind: PeriodKind.MONTH or PeriodKind.YEAR

        Returns:
            The summary row, or None if the period has no battles (any
            existing rows for it are deleted)
        """
        summary_model, individual_model, column_name = self._models(kind, period_id)
        period_column = getattr(ClanBattle, column_name)
        in_period = (ClanBattle.clan == clan_id) & (period_column == period_id)

        with db.atomic():
            battles = list(
                ClanBattle.select()
                .where(in_period)
                .order_by(ClanBattle.battle)
            )
            summary = summary_model.get_for_period(clan_id, period_id)

            if not battles:
                if summary is not None:
                    summary.delete_instance()
                individual_model.delete().where(
                    (individual_model.clan == clan_id)
                    & (individual_model.period_id == period_id)
                ).execute()
                self.log.info(
                    "period_summary_removed",
                    clan_id=clan_id,
                    period_id=period_id,
                    kind=PeriodKind(kind).value,
                )
                return None

            values = summarize_battles([
                {field: getattr(b, field) for field in BATTLE_INPUT_FIELDS}
                for b in battles
            ])

            if summary is None:
                # period_complete defaults to False on first write only
                summary = summary_model.create(clan=clan_id, period_id=period_id, **values)
                changed = True
            else:
                changed = _apply_changes(summary, values)
                if changed:
                    summary.updated_at = datetime.utcnow()
                    summary.save()

            players_changed = self._rebuild_individuals(
                individual_model, in_period, clan_id, period_id
            )

        self.log.info(
            "period_summary_recomputed",
            clan_id=clan_id,
            period_id=period_id,
            kind=PeriodKind(kind).value,
            battle_count=values["battle_count"],
            changed=changed,
            players_changed=players_changed,
        )
        return summary

    def _rebuild_individuals(self, individual_model, in_period, clan_id: int, period_id: str) -> int:
        stats = (
            ClanBattlePlayerStats.select(ClanBattlePlayerStats, ClanBattle)
            .join(ClanBattle)
            .where(in_period)
            .order_by(ClanBattle.battle, ClanBattlePlayerStats.player)
        )
        summaries = summarize_players(
            (
                {'player_id': s.player_id, **{f: getattr(s, f) for f in PLAYER_AVERAGE_FIELDS}}
                for s in stats
            ),
            self.min_battles,
        )

        existing = {
            row.player_id: row
            for row in individual_model.select().where(
                (individual_model.clan == clan_id) & (individual_model.period_id == period_id)
            )
        }

        changed = 0
        for player_id, values in summaries.items():
            row = existing.pop(player_id, None)
            if row is None:
                individual_model.create(
                    clan=clan_id, period_id=period_id, player=player_id, **values
                )
                changed += 1
            elif _apply_changes(row, values):
                row.save()
                changed += 1

        # Players who dropped below the threshold
        for row in existing.values():
            row.delete_instance()
            changed += 1
        return changed

    def refresh_for_battle(self, clan_id: int, battle_id: str) -> None:
        """Recompute the month and year containing battle_id."""
        self.recompute_period_summary(clan_id, month_id_of(battle_id), PeriodKind.MONTH)
        self.recompute_period_summary(clan_id, year_id_of(battle_id), PeriodKind.YEAR)

    def rebuild_clan(self, clan_id: int) -> int:
        """
        Recompute every period the clan has battles or summaries for.

        Returns:
            Number of periods recomputed
        """
        count = 0
        for kind, (summary_model, _, column_name) in PERIOD_MODELS.items():
            period_column = getattr(ClanBattle, column_name)
            period_ids = {
                period_id
                for (period_id,) in ClanBattle.select(period_column)
                .where(ClanBattle.clan == clan_id)
                .distinct()
                .tuples()
            }
            period_ids |= {
                row.period_id
                for row in summary_model.select(summary_model.period_id)
                .where(summary_model.clan == clan_id)
            }
            for period_id in sorted(period_ids):
                self.recompute_period_summary(clan_id, period_id, kind)
                count += 1

        self.log.info("clan_summaries_rebuilt", clan_id=clan_id, periods=count)
        return count

    def set_period_complete(
        self, clan_id: int, period_id: str, kind: PeriodKind, complete: bool = True
    ) -> None:
        """
        Set the independent period_complete flag on a summary.

        Raises:
            NotFoundError: If the period has no summary
        """
        summary_model, _, _ = self._models(kind, period_id)
        summary = summary_model.get_for_period(clan_id, period_id)
        if summary is None:
            raise NotFoundError(f"No {PeriodKind(kind).value} summary for {period_id}")

        if summary.period_complete != complete:
            summary.period_complete = complete
            summary.updated_at = datetime.utcnow()
            summary.save()
        self.log.info(
            "period_complete_set",
            clan_id=clan_id,
            period_id=period_id,
            complete=complete,
        )

    # ------------------------------- Reads ------------------------------- #

    def get_period_summaries(self, clan_id: int, kind: PeriodKind) -> list[PeriodSummaryOut]:
        """All of a clan's summaries for one period kind, newest period first."""
        summary_model, _, _ = self._models(kind)
        if Clan.get_or_none(Clan.id == clan_id) is None:
            raise NotFoundError(f"Clan {clan_id} not found")

        rows = (
            summary_model.select()
            .where(summary_model.clan == clan_id)
            .order_by(summary_model.period_id.desc())
        )
        return [_summary_out(row) for row in rows]

    def get_period_summary(self, clan_id: int, period_id: str, kind: PeriodKind) -> PeriodSummaryOut:
        """
        One clan period summary.

        Raises:
            ValidationError: period_id does not match kind
            NotFoundError: If the period has no summary
        """
        summary_model, _, _ = self._models(kind, period_id)
        summary = summary_model.get_for_period(clan_id, period_id)
        if summary is None:
            raise NotFoundError(f"No {PeriodKind(kind).value} summary for {period_id}")
        return _summary_out(summary)

    def get_individual_summaries(
        self, clan_id: int, period_id: str, kind: PeriodKind
    ) -> list[IndividualSummaryOut]:
        """
        Player summaries for a period, best average ratio first.

        Players under the battle threshold have no row, so the list can be
        empty for a period that does have a clan summary.

        Raises:
            ValidationError: period_id does not match kind
            NotFoundError: If the period has no summary
        """
        summary_model, individual_model, _ = self._models(kind, period_id)
        if summary_model.get_for_period(clan_id, period_id) is None:
            raise NotFoundError(f"No {PeriodKind(kind).value} summary for {period_id}")

        rows = (
            individual_model.select(individual_model, RosterMember)
            .join(RosterMember)
            .where((individual_model.clan == clan_id) & (individual_model.period_id == period_id))
            .order_by(individual_model.average_ratio.desc(), individual_model.player)
        )
        return [
            IndividualSummaryOut(
                player_id=row.player_id,
                player_name=row.player.player_name,
                period_id=row.period_id,
                battles_played=row.battles_played,
                **{column: getattr(row, column) for column in PLAYER_AVERAGE_FIELDS.values()},
            )
            for row in rows
        ]


def _summary_out(row: ClanPerformance) -> PeriodSummaryOut:
    return PeriodSummaryOut(
        clan_id=row.clan_id,
        period_id=row.period_id,
        battle_count=row.battle_count,
        won_count=row.won_count,
        lost_count=row.lost_count,
        tied_count=row.tied_count,
        period_complete=row.period_complete,
        created_at=row.created_at,
        updated_at=row.updated_at,
        **{column: getattr(row, column) for column in BATTLE_AVERAGE_FIELDS.values()},
    )
