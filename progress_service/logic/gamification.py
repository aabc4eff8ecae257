"""
Gamification logic for progress-service

Implements:
- Points and leveling (lifetime points, XP, derived level)
- Completion rewards with the performance bonus
- Daily streak tracking
"""
from typing import Dict, Any, Optional, Tuple
from datetime import date, datetime
import logging

from progress_service import dynamo
from progress_service.aws_client import aws_client
from progress_service.exceptions import InvalidPointsError
from progress_service.schemas import AddPointsResult

logger = logging.getLogger(__name__)

# Fixed rules of the reward economy, intentionally not configurable
XP_PER_LEVEL = 1000
BONUS_SCORE_THRESHOLD = 80


# ============= XP AND LEVELING =============

def calculate_level(xp: int) -> int:
    """
    Calculate level based on total XP

    Formula: level = 1 + (xp // XP_PER_LEVEL)
    """
    if xp < 0:
        return 1

    return 1 + (xp // XP_PER_LEVEL)


def xp_for_next_level(level: int) -> int:
    """Total XP at which `level` is left behind"""
    return level * XP_PER_LEVEL


def level_progress(xp: int, level: int) -> int:
    """Percent (0-99) of the current level already earned"""
    return (xp % XP_PER_LEVEL) * 100 // XP_PER_LEVEL


def points_to_next_level(xp: int, level: int) -> int:
    return max(0, xp_for_next_level(level) - xp)


def level_info(child: Dict[str, Any]) -> Dict[str, int]:
    """
    Level summary for a child

    Returns:
        Dict with level, experiencePoints, xpForNextLevel, levelProgress, pointsToNextLevel
    """
    xp = child.get('experiencePoints', 0)
    level = child.get('level', 1)

    return {
        'level': level,
        'experiencePoints': xp,
        'xpForNextLevel': xp_for_next_level(level),
        'levelProgress': level_progress(xp, level),
        'pointsToNextLevel': points_to_next_level(xp, level),
    }


def add_points(child: Dict[str, Any], points: int) -> Tuple[Dict[str, Any], AddPointsResult]:
    """
    Add points to a child dict and re-derive the level

    Level only ever moves up: a stored level above the derived one is kept.

    Args:
        child: Child data dict
        points: Non-negative amount to award

    Returns:
        Tuple of (updated_child, result)
    """
    if points < 0:
        raise InvalidPointsError(f"Points must be >= 0, got {points}")

    current_level = child.get('level', 1)

    child['totalPoints'] = child.get('totalPoints', 0) + points
    child['experiencePoints'] = child.get('experiencePoints', 0) + points

    new_level = calculate_level(child['experiencePoints'])
    level_up = new_level > current_level
    child['level'] = max(current_level, new_level)

    return child, AddPointsResult(
        leveledUp=level_up,
        newLevel=child['level'],
        totalPoints=child['totalPoints'],
        experiencePoints=child['experiencePoints'],
    )


def award_points(child_id: str, points: int) -> AddPointsResult:
    """
    Persist a point award for a child

    Totals are incremented atomically in DynamoDB; the level write is guarded
    so that it never decreases, and only the writer that actually raised it
    reports the level-up.
    """
    if points < 0:
        raise InvalidPointsError(f"Points must be >= 0, got {points}")

    child = dynamo.add_child_points(child_id, points)
    logger.info(
        f"Child {child_id} gained {points} points. "
        f"Total: {child['totalPoints']}, XP: {child['experiencePoints']}"
    )
    return sync_level(child_id, child)


def sync_level(child_id: str, child: Optional[Dict[str, Any]] = None) -> AddPointsResult:
    """
    Raise the stored level to the one derived from the child's XP

    Safe to repeat: the guarded write is a no-op once the level is current.
    """
    if child is None:
        child = dynamo.require_child(child_id)

    xp = child.get('experiencePoints', 0)
    new_level = calculate_level(xp)

    level_up = False
    if new_level > child.get('level', 1):
        level_up = dynamo.raise_child_level(child_id, new_level)

    stored_level = max(new_level, child.get('level', 1))

    if level_up:
        logger.info(f"Child {child_id} leveled up to {stored_level}!")
        aws_client.notify_level_up(child_id, stored_level)

    return AddPointsResult(
        leveledUp=level_up,
        newLevel=stored_level,
        totalPoints=child.get('totalPoints', 0),
        experiencePoints=xp,
    )


def completion_points(base_points: int, bonus_points: int, score: Optional[int]) -> int:
    """
    Reward for completing an activity

    The bonus is added only when the score reaches BONUS_SCORE_THRESHOLD.
    """
    if score is not None and score >= BONUS_SCORE_THRESHOLD:
        return base_points + bonus_points
    return base_points


# ============= STREAK TRACKING =============

def update_streak(child: Dict[str, Any], activity_date: Optional[date] = None) -> Dict[str, Any]:
    """
    Update a child's streak based on calendar days

    Streak logic:
    - First activity ever: streak = 1
    - Same day: unchanged
    - Next day: +1, longestStreak follows the high-water mark
    - Gap of more than one day: reset to 1

    Args:
        child: Child data dict
        activity_date: Day of activity (defaults to today, UTC)

    Returns:
        Updated child dict
    """
    if activity_date is None:
        activity_date = datetime.utcnow().date()

    last_date_str = child.get('lastActivityDate')

    if not last_date_str:
        child['currentStreak'] = 1
        child['longestStreak'] = max(child.get('longestStreak', 0), 1)
        child['lastActivityDate'] = activity_date.isoformat()
        logger.info(f"Child {child.get('childId')} started streak: 1 day")
        return child

    last_date = date.fromisoformat(last_date_str[:10])
    diff_days = (activity_date - last_date).days

    if diff_days == 1:
        child['currentStreak'] = child.get('currentStreak', 0) + 1
        if child['currentStreak'] > child.get('longestStreak', 0):
            child['longestStreak'] = child['currentStreak']
        logger.info(f"Child {child.get('childId')} increased streak to {child['currentStreak']} days")
    elif diff_days > 1:
        logger.info(f"Child {child.get('childId')} broke streak of {child.get('currentStreak', 0)} days")
        child['currentStreak'] = 1

    if diff_days >= 0:
        child['lastActivityDate'] = activity_date.isoformat()

    return child


def record_daily_activity(child_id: str, activity_date: Optional[date] = None) -> Dict[str, Any]:
    """Apply update_streak to a stored child and persist the counters"""
    child = dynamo.require_child(child_id)
    child = update_streak(child, activity_date)
    dynamo.save_child_streak(
        child_id,
        child['currentStreak'],
        child['longestStreak'],
        child['lastActivityDate'],
    )
    return child
