"""
Battle Calculations

Pure formulas for per-battle derived metrics and period summaries.
Callers validate inputs first; the zero guards here only cover cases the
input layer allows (e.g. an all-reserve roster with no counted FP).
"""

from typing import Iterable, Sequence

from utils.constants import (
    PERCENTAGE_MULTIPLIER,
    RATIO_MULTIPLIER,
    RESULT_LOSS,
    RESULT_TIE,
    RESULT_WIN,
)


# ------------------------------- Battle level ------------------------------- #

def battle_result(score: int, opponent_score: int) -> int:
    """1 for a win, -1 for a loss, 0 for a tie."""
    if score > opponent_score:
        return RESULT_WIN
    if score < opponent_score:
        return RESULT_LOSS
    return RESULT_TIE


def ratio(score: float, fp: float) -> float:
    """Score-to-FP ratio: (score / fp) * 10. Used for clans and players."""
    if fp == 0:
        raise ValueError("fp cannot be zero")
    return score / fp * RATIO_MULTIPLIER


def projected_score(score: float, nonplaying_fp_ratio: float) -> float:
    """Score the clan would have posted had every non-reserve member played."""
    return score * (1 + nonplaying_fp_ratio / PERCENTAGE_MULTIPLIER)


def margin_ratio(score: float, opponent_score: float) -> float:
    """Winning (+) or losing (-) margin as a percentage of our score."""
    if score == 0:
        raise ValueError("score cannot be zero")
    return (score - opponent_score) / score * PERCENTAGE_MULTIPLIER


def fp_margin(baseline_fp: float, opponent_fp: float) -> float:
    """Baseline FP advantage (+) or deficit (-) as a percentage."""
    if baseline_fp == 0:
        raise ValueError("baseline_fp cannot be zero")
    return (baseline_fp - opponent_fp) / baseline_fp * PERCENTAGE_MULTIPLIER


def fp_share(part_fp: float, total_fp: float) -> float:
    """part_fp as a percentage of total_fp; 0 when nothing counted."""
    if total_fp == 0:
        return 0.0
    return part_fp / total_fp * PERCENTAGE_MULTIPLIER


def ratio_ranks(ratios: Sequence[float]) -> list[int]:
    """
    Rank ratios highest first, returning ranks in input order.

    Ties keep input order (sorted() is stable).

    Example:
        ratio_ranks([50.0, 80.0, 50.0])  # [2, 1, 3]
    """
    order = sorted(range(len(ratios)), key=lambda i: -ratios[i])
    ranks = [0] * len(ratios)
    for rank, index in enumerate(order, 1):
        ranks[index] = rank
    return ranks


def calculate_battle_metrics(
    score: int,
    baseline_fp: int,
    opponent_score: int,
    opponent_fp: int,
    player_stats: Sequence[dict],
    nonplayer_stats: Sequence[dict],
) -> dict:
    """
    Derive every calculated ClanBattle field from the raw inputs.

    Args:
        player_stats: dicts with at least 'fp'
        nonplayer_stats: dicts with at least 'fp' and 'reserve'

    Returns:
        Dict of column name -> value for the derived ClanBattle fields
    """
    player_fp = sum(p['fp'] for p in player_stats)
    nonplaying_fp = sum(np['fp'] for np in nonplayer_stats if not np['reserve'])
    reserve_fp = sum(np['fp'] for np in nonplayer_stats if np['reserve'])

    # Reserves are excluded from the clan's FP pool
    total_fp = player_fp + nonplaying_fp

    nonplaying_fp_ratio = fp_share(nonplaying_fp, total_fp)

    return {
        'result': battle_result(score, opponent_score),
        'fp': total_fp,
        'ratio': ratio(score, baseline_fp),
        'average_ratio': ratio(score, total_fp),
        'projected_score': projected_score(score, nonplaying_fp_ratio),
        'margin_ratio': margin_ratio(score, opponent_score),
        'fp_margin': fp_margin(baseline_fp, opponent_fp),
        'nonplaying_count': sum(1 for np in nonplayer_stats if not np['reserve']),
        'nonplaying_fp_ratio': nonplaying_fp_ratio,
        'reserve_count': sum(1 for np in nonplayer_stats if np['reserve']),
        'reserve_fp_ratio': fp_share(reserve_fp, total_fp),
    }


# ------------------------------- Period level ------------------------------- #

# ClanBattle column -> summary column holding its period mean
BATTLE_AVERAGE_FIELDS = {
    'fp': 'average_fp',
    'baseline_fp': 'average_baseline_fp',
    'ratio': 'average_ratio',
    'average_ratio': 'average_average_ratio',
    'projected_score': 'average_projected_score',
    'margin_ratio': 'average_margin_ratio',
    'fp_margin': 'average_fp_margin',
    'nonplaying_count': 'average_nonplaying_count',
    'nonplaying_fp_ratio': 'average_nonplaying_fp_ratio',
    'reserve_count': 'average_reserve_count',
    'reserve_fp_ratio': 'average_reserve_fp_ratio',
}

# ClanBattlePlayerStats column -> individual summary column
PLAYER_AVERAGE_FIELDS = {
    'score': 'average_score',
    'fp': 'average_fp',
    'ratio': 'average_ratio',
    'rank': 'average_rank',
    'ratio_rank': 'average_ratio_rank',
}


def average(values: Iterable[float]) -> float:
    values = list(values)
    if not values:
        raise ValueError("Cannot calculate average of empty sequence")
    return sum(values) / len(values)


def summarize_battles(battles: Sequence[dict]) -> dict:
    """
    Period clan summary: result counts plus the mean of every derived metric.

    Args:
        battles: Non-empty sequence of ClanBattle field dicts

    Returns:
        Dict keyed by summary column name
    """
    if not battles:
        raise ValueError("Cannot summarize a period with no battles")

    summary = {
        'battle_count': len(battles),
        'won_count': sum(1 for b in battles if b['result'] == RESULT_WIN),
        'lost_count': sum(1 for b in battles if b['result'] == RESULT_LOSS),
        'tied_count': sum(1 for b in battles if b['result'] == RESULT_TIE),
    }
    for field, column in BATTLE_AVERAGE_FIELDS.items():
        summary[column] = average(b[field] for b in battles)
    return summary


def summarize_players(player_stats: Iterable[dict], min_battles: int) -> dict[int, dict]:
    """
    Per-player period summaries for players with at least min_battles rows.

    Args:
        player_stats: dicts with 'player_id' and the PLAYER_AVERAGE_FIELDS keys

    Returns:
        player_id -> summary dict (battles_played plus averages)
    """
    grouped: dict[int, list[dict]] = {}
    for stat in player_stats:
        grouped.setdefault(stat['player_id'], []).append(stat)

    summaries = {}
    for player_id, stats in grouped.items():
        if len(stats) < min_battles:
            continue
        summary = {'battles_played': len(stats)}
        for field, column in PLAYER_AVERAGE_FIELDS.items():
            summary[column] = average(s[field] for s in stats)
        summaries[player_id] = summary
    return summaries
