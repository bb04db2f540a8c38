"""
achievements.py — Pure achievement evaluation.

evaluate() answers "which catalog entries should this user unlock now?".
It never touches the database: the ledger passes in the catalog and the
set of achievement ids already earned, and persists whatever comes back.
The earned set is updated in place with whatever is returned, so calling it
again with the same stats and the same set returns [].

Each entry is measured against one stat, picked by its condition_type:

    points       → stats.points                   vs points_required
    reports      → stats.total_leakages_reported  vs condition_value
    water_saved  → stats.water_saved_litres       vs condition_value
"""

from __future__ import annotations

from typing import Iterable

from hydrozen.models.ledger import Achievement, AchievementProgress, UserStats


def _by_threshold(catalog: Iterable[Achievement]) -> list[Achievement]:
    # id breaks ties so equal thresholds come back in a stable order
    return sorted(catalog, key=lambda a: (a.threshold, a.id))


def measure(stats: UserStats, achievement: Achievement) -> float:
    """The stat *achievement* is judged on."""
    if achievement.condition_type == "reports":
        return stats.total_leakages_reported
    if achievement.condition_type == "water_saved":
        return stats.water_saved_litres
    return stats.points


def evaluate(
    user_id: str,
    stats: UserStats,
    catalog: Iterable[Achievement],
    already_earned: set[str],
) -> list[Achievement]:
    """
    Return achievements newly unlocked by *stats*, lowest threshold first.

    All qualifying achievements unlock in one pass. Their ids are added to
    *already_earned*.
    """
    if stats.user_id != user_id:
        raise ValueError(f"stats belong to {stats.user_id!r}, not {user_id!r}")

    unlocked = [
        achievement
        for achievement in _by_threshold(catalog)
        if achievement.id not in already_earned
        and measure(stats, achievement) >= achievement.threshold
    ]
    already_earned.update(a.id for a in unlocked)
    return unlocked


def progress(
    stats: UserStats,
    catalog: Iterable[Achievement],
    already_earned: set[str],
) -> list[AchievementProgress]:
    """Per-achievement progress for the rewards page."""
    rows = []
    for achievement in _by_threshold(catalog):
        earned = achievement.id in already_earned
        if earned or achievement.threshold == 0:
            ratio = 1.0
        else:
            ratio = min(measure(stats, achievement) / achievement.threshold, 1.0)
        rows.append(AchievementProgress(achievement=achievement, earned=earned, progress=max(ratio, 0.0)))
    return rows
