# Import all models to ensure they are registered with the database
from .master_battles import MasterBattle
from .schedule_settings import ScheduleSetting

from .clans import Clan, RosterMember
from .clan_battles import ClanBattle, ClanBattlePlayerStats, ClanBattleNonplayerStats

from .performance import (
    MonthlyClanPerformance,
    YearlyClanPerformance,
    MonthlyIndividualPerformance,
    YearlyIndividualPerformance,
)

__all__ = [
    'MasterBattle', 'ScheduleSetting', 'Clan', 'RosterMember',
    'ClanBattle', 'ClanBattlePlayerStats', 'ClanBattleNonplayerStats',
    'MonthlyClanPerformance', 'YearlyClanPerformance',
    'MonthlyIndividualPerformance', 'YearlyIndividualPerformance',
]
