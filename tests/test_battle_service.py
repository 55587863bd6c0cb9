import threading
from datetime import date

import pytest

from core.errors import ConflictError, NotFoundError, ValidationError
from db.base import run_with_connection
from db.models import (
    ClanBattle,
    ClanBattleNonplayerStats,
    ClanBattlePlayerStats,
    MonthlyClanPerformance,
    RosterMember,
)
from services.battle_service import BattleService

from conftest import battle_entry, make_master_battle


class TestCreateBattle:
    def test_derived_fields(self, battle_service, clan, roster, master_battle):
        detail = battle_service.create_battle(clan.id, battle_entry(roster))

        assert detail.battle_id == "20251108"
        assert detail.month_id == "202511"
        assert detail.year_id == "2025"
        assert detail.result == 1
        assert detail.fp == 400
        assert detail.ratio == 75.0
        assert detail.average_ratio == 75.0
        assert detail.nonplaying_count == 1
        assert detail.nonplaying_fp_ratio == 25.0
        assert detail.projected_score == 3750.0
        assert detail.margin_ratio == pytest.approx(16.6667, rel=1e-4)
        assert detail.fp_margin == 5.0
        assert detail.reserve_count == 1
        assert detail.reserve_fp_ratio == 12.5

    def test_window_copied_from_master_battle(self, battle_service, clan, roster, master_battle):
        battle_service.create_battle(clan.id, battle_entry(roster))

        record = ClanBattle.get_for_clan(clan.id, "20251108")
        assert record.start_timestamp == master_battle.start_timestamp
        assert record.end_timestamp == master_battle.end_timestamp

    def test_player_ratios_and_ranks(self, battle_service, clan, roster, master_battle):
        players = [
            {"player_id": roster[0].id, "rank": 1, "score": 500, "fp": 100},
            {"player_id": roster[1].id, "rank": 2, "score": 800, "fp": 100},
            {"player_id": roster[2].id, "rank": 3, "score": 500, "fp": 100},
        ]

        detail = battle_service.create_battle(clan.id, battle_entry(roster, players=players))

        by_player = {p.player_id: p for p in detail.players}
        assert by_player[roster[0].id].ratio == 50.0
        assert by_player[roster[1].id].ratio_rank == 1
        # Ties keep input order
        assert by_player[roster[0].id].ratio_rank == 2
        assert by_player[roster[2].id].ratio_rank == 3
        assert [p.ratio_rank for p in detail.players] == [1, 2, 3]

    def test_nonplayers_listed_non_reserves_first(self, battle_service, clan, roster, master_battle):
        detail = battle_service.create_battle(clan.id, battle_entry(roster))

        assert [np.reserve for np in detail.nonplayers] == [False, True]
        assert detail.nonplayers[0].player_name == "Matilda"

    def test_unknown_clan(self, battle_service, roster, master_battle):
        with pytest.raises(NotFoundError):
            battle_service.create_battle(9999, battle_entry(roster))

    def test_unknown_master_battle(self, battle_service, clan, roster, master_battle):
        with pytest.raises(NotFoundError):
            battle_service.create_battle(clan.id, battle_entry(roster, battle_id="20251111"))
        assert ClanBattle.select().count() == 0

    def test_player_not_on_roster(self, battle_service, clan, other_clan, roster, master_battle):
        outsider = RosterMember.create(clan=other_clan, player_name="Leonard")
        entry = battle_entry(roster)
        entry["players"][0]["player_id"] = outsider.id

        with pytest.raises(NotFoundError) as exc:
            battle_service.create_battle(clan.id, entry)
        assert exc.value.details == {"player_ids": [outsider.id]}

    def test_duplicate_player_ids(self, battle_service, clan, roster, master_battle):
        entry = battle_entry(roster)
        entry["nonplayers"][0]["player_id"] = roster[0].id

        with pytest.raises(ValidationError):
            battle_service.create_battle(clan.id, entry)
        assert ClanBattle.select().count() == 0

    @pytest.mark.parametrize(
        "overrides",
        [
            {"battle_id": "2025118"},
            {"battle_id": "20251340"},
            {"score": 0},
            {"baseline_fp": 0},
            {"opponent_fp": -1},
            {"players": []},
        ],
    )
    def test_invalid_entry(self, battle_service, clan, roster, master_battle, overrides):
        with pytest.raises(ValidationError):
            battle_service.create_battle(clan.id, battle_entry(roster, **overrides))

    def test_invalid_action_code(self, battle_service, clan, roster, master_battle):
        entry = battle_entry(roster)
        entry["players"][0]["action_code"] = "BAN"

        with pytest.raises(ValidationError):
            battle_service.create_battle(clan.id, entry)

    def test_duplicate_battle_conflict(self, battle_service, clan, roster, master_battle):
        battle_service.create_battle(clan.id, battle_entry(roster))

        with pytest.raises(ConflictError):
            battle_service.create_battle(clan.id, battle_entry(roster))
        assert ClanBattle.select().count() == 1

    def test_unique_index_maps_to_conflict(self, battle_service, clan, roster, master_battle, monkeypatch):
        battle_service.create_battle(clan.id, battle_entry(roster))
        # Simulate losing the race: the pre-check sees nothing
        monkeypatch.setattr(ClanBattle, "get_for_clan", classmethod(lambda cls, c, b: None))

        with pytest.raises(ConflictError):
            battle_service.create_battle(clan.id, battle_entry(roster))
        assert ClanBattlePlayerStats.select().count() == 3

    def test_concurrent_creates_one_wins(self, battle_service, clan, roster, master_battle):
        barrier = threading.Barrier(2)
        outcomes = []

        def submit():
            barrier.wait()
            try:
                run_with_connection(battle_service.create_battle, clan.id, battle_entry(roster))
                outcomes.append("created")
            except ConflictError:
                outcomes.append("conflict")

        threads = [threading.Thread(target=submit) for _ in range(2)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert sorted(outcomes) == ["conflict", "created"]
        assert ClanBattle.select().count() == 1

    def test_same_battle_different_clans(self, battle_service, clan, other_clan, roster, master_battle):
        other_roster = [RosterMember.create(clan=other_clan, player_name=f"Pig {i}") for i in range(5)]

        battle_service.create_battle(clan.id, battle_entry(roster))
        battle_service.create_battle(other_clan.id, battle_entry(other_roster))

        assert ClanBattle.select().count() == 2


class TestActionCodes:
    def test_kick_and_reserve_update_roster(self, battle_service, clan, roster, master_battle):
        entry = battle_entry(roster)
        entry["players"][2]["action_code"] = "KICK"
        entry["players"][2]["action_reason"] = "inactive"
        entry["nonplayers"][1]["action_code"] = "RESERVE"
        entry["players"][0]["action_code"] = "WARN"

        detail = battle_service.create_battle(clan.id, entry)

        kicked = RosterMember.get_by_id(roster[2].id)
        assert kicked.active is False
        assert kicked.kicked_date == date(2025, 11, 8)
        reserved = RosterMember.get_by_id(roster[4].id)
        assert reserved.active is False
        assert reserved.kicked_date is None
        assert RosterMember.get_by_id(roster[0].id).active is True

        kicked_stat = next(p for p in detail.players if p.player_id == roster[2].id)
        assert kicked_stat.action_code == "KICK"
        assert kicked_stat.action_reason == "inactive"

    def test_failed_write_leaves_roster_untouched(self, battle_service, clan, roster, master_battle, monkeypatch):
        battle_service.create_battle(clan.id, battle_entry(roster))
        monkeypatch.setattr(ClanBattle, "get_for_clan", classmethod(lambda cls, c, b: None))
        entry = battle_entry(roster)
        entry["players"][0]["action_code"] = "KICK"

        with pytest.raises(ConflictError):
            battle_service.create_battle(clan.id, entry)
        assert RosterMember.get_by_id(roster[0].id).active is True


class TestUpdateBattle:
    def test_update_recomputes(self, battle_service, clan, roster, master_battle):
        battle_service.create_battle(clan.id, battle_entry(roster))

        detail = battle_service.update_battle(
            clan.id, "20251108", {"score": 2000, "opponent_score": 2500}
        )

        assert detail.result == -1
        assert detail.ratio == 50.0
        assert detail.margin_ratio == -25.0
        assert detail.projected_score == 2500.0
        # Untouched inputs carried over
        assert detail.opponent_name == "Pig City"
        assert len(detail.players) == 3

    def test_update_replaces_children(self, battle_service, clan, roster, master_battle):
        battle_service.create_battle(clan.id, battle_entry(roster))
        players = [{"player_id": roster[5].id, "rank": 1, "score": 3000, "fp": 300}]

        detail = battle_service.update_battle(clan.id, "20251108", {"players": players})

        assert [p.player_id for p in detail.players] == [roster[5].id]
        assert detail.fp == 400
        assert ClanBattlePlayerStats.select().count() == 1
        assert ClanBattleNonplayerStats.select().count() == 2

    def test_update_rejects_merged_duplicates(self, battle_service, clan, roster, master_battle):
        battle_service.create_battle(clan.id, battle_entry(roster))
        players = [{"player_id": roster[3].id, "rank": 1, "score": 3000, "fp": 300}]

        with pytest.raises(ValidationError):
            battle_service.update_battle(clan.id, "20251108", {"players": players})

    def test_update_cannot_change_battle_id(self, battle_service, clan, roster, master_battle):
        battle_service.create_battle(clan.id, battle_entry(roster))

        with pytest.raises(ValidationError) as exc:
            battle_service.update_battle(
                clan.id, "20251108", {"battle_id": "20251111", "score": 2999}
            )

        assert exc.value.details[0]["loc"] == ["battle_id"]
        record = ClanBattle.get_for_clan(clan.id, "20251108")
        assert record.score == 3000
        assert ClanBattle.get_for_clan(clan.id, "20251111") is None

    def test_update_missing_battle(self, battle_service, clan, roster, master_battle):
        with pytest.raises(NotFoundError):
            battle_service.update_battle(clan.id, "20251108", {"score": 10})

    def test_update_refreshes_summary(self, battle_service, clan, roster, master_battle):
        battle_service.create_battle(clan.id, battle_entry(roster))
        battle_service.update_battle(clan.id, "20251108", {"score": 2000})

        summary = MonthlyClanPerformance.get_for_period(clan.id, "202511")
        assert summary.average_ratio == 50.0
        assert summary.lost_count == 1


class TestDeleteBattle:
    def test_delete(self, battle_service, clan, roster, master_battle):
        battle_service.create_battle(clan.id, battle_entry(roster))

        battle_service.delete_battle(clan.id, "20251108")

        assert ClanBattle.select().count() == 0
        assert ClanBattlePlayerStats.select().count() == 0
        assert ClanBattleNonplayerStats.select().count() == 0
        assert MonthlyClanPerformance.get_for_period(clan.id, "202511") is None

    def test_delete_missing(self, battle_service, clan, database):
        with pytest.raises(NotFoundError):
            battle_service.delete_battle(clan.id, "20251108")


class TestAggregationTrigger:
    def test_aggregation_failure_keeps_battle(self, clan, roster, master_battle, clock):
        class BrokenAggregator:
            calls = 0

            def refresh_for_battle(self, clan_id, battle_id):
                BrokenAggregator.calls += 1
                raise RuntimeError("summary table locked")

        service = BattleService(aggregator=BrokenAggregator(), clock=clock)

        detail = service.create_battle(clan.id, battle_entry(roster))

        assert BrokenAggregator.calls == 1
        assert detail.battle_id == "20251108"
        assert ClanBattle.get_for_clan(clan.id, "20251108") is not None
        assert MonthlyClanPerformance.select().count() == 0


class TestGetBattles:
    @pytest.fixture
    def history(self, battle_service, clan, roster):
        outcomes = [
            (date(2025, 10, 27), "Pig City", "Norway", 3000, 2500),
            (date(2025, 10, 30), "Egg Thieves", "Denmark", 2000, 2500),
            (date(2025, 11, 2), "pig town", "Norway", 2500, 2500),
            (date(2025, 11, 5), "Feather Fall", "Iceland", 3500, 1000),
        ]
        for start, name, country, score, opponent_score in outcomes:
            battle = make_master_battle(start)
            battle_service.create_battle(
                clan.id,
                battle_entry(
                    roster,
                    battle_id=battle.battle_id,
                    opponent_name=name,
                    opponent_country=country,
                    score=score,
                    opponent_score=opponent_score,
                ),
            )

    def test_default_newest_first(self, battle_service, clan, history):
        result = battle_service.get_battles(clan.id)

        assert [b.battle_id for b in result.battles] == ["20251105", "20251102", "20251030", "20251027"]
        assert result.total == 4

    def test_opponent_name_case_insensitive(self, battle_service, clan, history):
        result = battle_service.get_battles(clan.id, {"opponent_name": "PIG"})

        assert sorted(b.battle_id for b in result.battles) == ["20251027", "20251102"]

    def test_filter_country_and_result(self, battle_service, clan, history):
        result = battle_service.get_battles(clan.id, {"opponent_country": "norway", "result": 0})

        assert [b.battle_id for b in result.battles] == ["20251102"]

    def test_date_range(self, battle_service, clan, history):
        result = battle_service.get_battles(
            clan.id, {"start_date": date(2025, 10, 30), "end_date": date(2025, 11, 2)}
        )

        assert [b.battle_id for b in result.battles] == ["20251102", "20251030"]

    def test_sort_and_paginate(self, battle_service, clan, history):
        result = battle_service.get_battles(
            clan.id, {"sort_by": "score", "sort_order": "asc", "page": 2, "limit": 2}
        )

        assert [b.score for b in result.battles] == [3000, 3500]
        assert result.total_pages == 2

    def test_rejects_unknown_sort_column(self, battle_service, clan, history):
        with pytest.raises(ValidationError):
            battle_service.get_battles(clan.id, {"sort_by": "password"})

    def test_get_battle_by_id_missing(self, battle_service, clan, database):
        with pytest.raises(NotFoundError):
            battle_service.get_battle_by_id(clan.id, "20251108")
