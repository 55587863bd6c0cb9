from datetime import date

import pytest

from core.errors import NotFoundError, ValidationError
from db.models import (
    ClanBattle,
    MonthlyClanPerformance,
    MonthlyIndividualPerformance,
    YearlyClanPerformance,
    YearlyIndividualPerformance,
)
from utils.constants import PeriodKind

from conftest import battle_entry, make_master_battle


@pytest.fixture
def november(battle_service, clan, roster):
    """Three November battles: a win, a loss and a tie."""
    results = [
        (date(2025, 11, 2), 3000, 2500),  # ratio 75
        (date(2025, 11, 5), 2000, 2500),  # ratio 50
        (date(2025, 11, 8), 2600, 2600),  # ratio 65
    ]
    for start, score, opponent_score in results:
        battle = make_master_battle(start)
        battle_service.create_battle(
            clan.id,
            battle_entry(roster, battle_id=battle.battle_id, score=score, opponent_score=opponent_score),
        )


def test_month_summary_counts_and_means(clan, november):
    summary = MonthlyClanPerformance.get_for_period(clan.id, "202511")

    assert summary.battle_count == 3
    assert (summary.won_count, summary.lost_count, summary.tied_count) == (1, 1, 1)
    assert summary.average_ratio == pytest.approx((75.0 + 50.0 + 65.0) / 3)
    assert summary.average_fp == 400.0
    assert summary.average_reserve_fp_ratio == 12.5
    assert summary.period_complete is False


def test_year_summary(clan, november):
    summary = YearlyClanPerformance.get_for_period(clan.id, "2025")

    assert summary.battle_count == 3


def test_periods_split_across_months(battle_service, clan, roster, november):
    battle = make_master_battle(date(2025, 10, 30))
    battle_service.create_battle(clan.id, battle_entry(roster, battle_id=battle.battle_id))

    assert MonthlyClanPerformance.get_for_period(clan.id, "202510").battle_count == 1
    assert MonthlyClanPerformance.get_for_period(clan.id, "202511").battle_count == 3
    assert YearlyClanPerformance.get_for_period(clan.id, "2025").battle_count == 4


def individual_rows(clan_id, period_id):
    return {
        row.player_id: row.__data__
        for row in MonthlyIndividualPerformance.select().where(
            (MonthlyIndividualPerformance.clan == clan_id)
            & (MonthlyIndividualPerformance.period_id == period_id)
        )
    }


def test_recompute_is_idempotent(aggregator, clan, november):
    before = MonthlyClanPerformance.get_for_period(clan.id, "202511")
    players_before = individual_rows(clan.id, "202511")

    aggregator.recompute_period_summary(clan.id, "202511", PeriodKind.MONTH)
    aggregator.recompute_period_summary(clan.id, "202511", "month")

    after = MonthlyClanPerformance.get_for_period(clan.id, "202511")
    assert after.__data__ == before.__data__
    assert len(players_before) == 3
    assert individual_rows(clan.id, "202511") == players_before


def test_individual_rows_need_three_battles(battle_service, clan, roster, november):
    monthly = {row.player_id: row for row in MonthlyIndividualPerformance.select()}

    # Players 0-2 played all three battles, everyone else never played
    assert sorted(monthly) == sorted(p.id for p in roster[:3])
    red = monthly[roster[0].id]
    assert red.battles_played == 3
    assert red.average_score == 1200.0
    assert red.average_ratio_rank == 1.0
    assert YearlyIndividualPerformance.select().count() == 3


def test_individual_row_removed_when_below_threshold(battle_service, clan, roster, november):
    battle_service.delete_battle(clan.id, "20251105")

    assert MonthlyIndividualPerformance.select().count() == 0
    assert MonthlyClanPerformance.get_for_period(clan.id, "202511").battle_count == 2


def test_deleting_last_battle_removes_summaries(battle_service, clan, roster, master_battle):
    battle_service.create_battle(clan.id, battle_entry(roster))
    assert MonthlyClanPerformance.get_for_period(clan.id, "202511") is not None

    battle_service.delete_battle(clan.id, "20251108")

    assert MonthlyClanPerformance.get_for_period(clan.id, "202511") is None
    assert YearlyClanPerformance.get_for_period(clan.id, "2025") is None


def test_period_complete_survives_recompute(aggregator, battle_service, clan, roster, november):
    aggregator.set_period_complete(clan.id, "202511", PeriodKind.MONTH)

    battle_service.update_battle(clan.id, "20251108", {"score": 3000})

    summary = MonthlyClanPerformance.get_for_period(clan.id, "202511")
    assert summary.period_complete is True
    assert summary.won_count == 2
    assert summary.lost_count == 1
    assert summary.tied_count == 0


def test_set_period_complete_missing(aggregator, clan):
    with pytest.raises(NotFoundError):
        aggregator.set_period_complete(clan.id, "202401", PeriodKind.MONTH)


def test_invalid_period_kind(aggregator, clan):
    with pytest.raises(ValidationError):
        aggregator.recompute_period_summary(clan.id, "202511", "week")


def test_summaries_are_per_clan(battle_service, clan, other_clan, roster, master_battle):
    battle_service.create_battle(clan.id, battle_entry(roster))

    assert MonthlyClanPerformance.get_for_period(other_clan.id, "202511") is None


def test_rebuild_clan_repairs_stale_rows(aggregator, clan, november):
    MonthlyClanPerformance.update(battle_count=99).execute()
    # Direct delete leaves the summary stale
    ClanBattle.delete().where(ClanBattle.battle == "20251108").execute()

    periods = aggregator.rebuild_clan(clan.id)

    assert periods == 2
    summary = MonthlyClanPerformance.get_for_period(clan.id, "202511")
    assert summary.battle_count == 2
    assert (summary.won_count, summary.lost_count, summary.tied_count) == (1, 1, 0)


@pytest.mark.parametrize(
    "period_id, kind",
    [
        ("2025", PeriodKind.MONTH),
        ("202513", PeriodKind.MONTH),
        ("2025ab", PeriodKind.MONTH),
        ("202511", PeriodKind.YEAR),
        ("", PeriodKind.YEAR),
    ],
)
def test_period_id_must_match_kind(aggregator, clan, november, period_id, kind):
    with pytest.raises(ValidationError):
        aggregator.recompute_period_summary(clan.id, period_id, kind)
    with pytest.raises(ValidationError):
        aggregator.set_period_complete(clan.id, period_id, kind)
    with pytest.raises(ValidationError):
        aggregator.get_period_summary(clan.id, period_id, kind)


class TestSummaryReads:
    def test_period_summaries_newest_first(self, aggregator, battle_service, clan, roster, november):
        battle = make_master_battle(date(2025, 10, 30))
        battle_service.create_battle(clan.id, battle_entry(roster, battle_id=battle.battle_id))

        months = aggregator.get_period_summaries(clan.id, PeriodKind.MONTH)
        years = aggregator.get_period_summaries(clan.id, "year")

        assert [m.period_id for m in months] == ["202511", "202510"]
        assert [m.battle_count for m in months] == [3, 1]
        assert [(y.period_id, y.battle_count) for y in years] == [("2025", 4)]

    def test_period_summaries_empty_for_new_clan(self, aggregator, other_clan):
        assert aggregator.get_period_summaries(other_clan.id, PeriodKind.MONTH) == []

    def test_period_summaries_unknown_clan(self, aggregator, database):
        with pytest.raises(NotFoundError):
            aggregator.get_period_summaries(9999, PeriodKind.MONTH)

    def test_period_summary(self, aggregator, clan, november):
        aggregator.set_period_complete(clan.id, "202511", PeriodKind.MONTH)

        summary = aggregator.get_period_summary(clan.id, "202511", PeriodKind.MONTH)

        assert summary.clan_id == clan.id
        assert summary.battle_count == 3
        assert (summary.won_count, summary.lost_count, summary.tied_count) == (1, 1, 1)
        assert summary.average_reserve_fp_ratio == 12.5
        assert summary.period_complete is True

    def test_period_summary_missing(self, aggregator, clan, november):
        with pytest.raises(NotFoundError):
            aggregator.get_period_summary(clan.id, "202510", PeriodKind.MONTH)
        with pytest.raises(NotFoundError):
            aggregator.get_period_summary(clan.id, "2024", PeriodKind.YEAR)

    def test_individual_summaries_ranked_by_ratio(self, aggregator, clan, roster, november):
        players = aggregator.get_individual_summaries(clan.id, "202511", PeriodKind.MONTH)

        assert [p.player_name for p in players] == ["Red", "Chuck", "Bomb"]
        assert players[0].player_id == roster[0].id
        assert players[0].battles_played == 3
        assert players[0].average_score == 1200.0
        assert players[0].average_ratio_rank == 1.0
        assert players[0].average_ratio > players[1].average_ratio > players[2].average_ratio

    def test_individual_summaries_below_threshold(self, aggregator, battle_service, clan, roster, master_battle):
        battle_service.create_battle(clan.id, battle_entry(roster))

        assert aggregator.get_individual_summaries(clan.id, "2025", PeriodKind.YEAR) == []

    def test_individual_summaries_missing_period(self, aggregator, clan, november):
        with pytest.raises(NotFoundError):
            aggregator.get_individual_summaries(clan.id, "202512", PeriodKind.MONTH)
