from enum import Enum

# ----------------------------- Game Time ----------------------------- #
# Game Time is fixed UTC-5 all year (never observes DST)
GAME_TIME_OFFSET_MINUTES = -5 * 60


# ----------------------------- Battle Schedule ----------------------------- #
BATTLE_CADENCE_DAYS = 3  # 2 battle days + 1 rest day
BATTLE_ID_LENGTH = 8  # YYYYMMDD
MONTH_ID_LENGTH = 6  # YYYYMM
YEAR_ID_LENGTH = 4  # YYYY
AUTO_CREATED_NOTE = 'Automatically created by scheduler'
AVAILABLE_BATTLES_LIMIT = 100


# ----------------------------- Calculations ----------------------------- #
RATIO_MULTIPLIER = 10  # puts ratio scores on an approximate 100 point scale
PERCENTAGE_MULTIPLIER = 100
MIN_BATTLES_FOR_INDIVIDUAL_STATS = 3


# ----------------------------- Battle Results ----------------------------- #
RESULT_WIN = 1
RESULT_TIE = 0
RESULT_LOSS = -1


class ActionCode(str, Enum):
    """Post-battle disposition applied to a roster member."""
    HOLD = 'HOLD'
    WARN = 'WARN'
    KICK = 'KICK'
    RESERVE = 'RESERVE'
    PASS = 'PASS'


class PeriodKind(str, Enum):
    """Summary period granularity."""
    MONTH = 'month'
    YEAR = 'year'
