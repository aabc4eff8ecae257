"""
Achievement Evaluator

Workflow for check_achievements:
1. Load child profile, earned achievements and full progress history
2. Build a ChildStats snapshot
3. Evaluate every active, unearned definition (all requirements must hold)
4. Grant in one transaction with the reward and the definition's global
   counter, then re-derive the level
"""
from typing import List, Dict, Any, Optional, Callable
import logging

from progress_service import dynamo
from progress_service import dynamo_achievements
from progress_service.aws_client import aws_client
from progress_service.logic import gamification
from progress_service.logic.progress_ledger import STATUS_COMPLETED
from progress_service.schemas_achievements import (
    AchievementDefinition,
    AchievementStatus,
    ChildAchievementsResponse,
    ChildStats,
    GamesCompleted,
    ModulesCompleted,
    PerfectScores,
    ReachLevel,
    SpecificGames,
    SpecificModules,
    StreakDays,
    TimeSpentMinutes,
    TotalPoints,
)

logger = logging.getLogger(__name__)

PERFECT_SCORE = 100


# ============================================================================
# Stats
# ============================================================================

def build_child_stats(child: Dict[str, Any], progress_records: List[Dict[str, Any]]) -> ChildStats:
    """Aggregate a child's profile and progress history"""
    completed_games = [
        r for r in progress_records
        if r.get('contentType') == dynamo.GAME and r.get('status') == STATUS_COMPLETED
    ]
    completed_modules = [
        r for r in progress_records
        if r.get('contentType') == dynamo.LEARNING_MODULE and r.get('status') == STATUS_COMPLETED
    ]

    return ChildStats(
        games_completed=len(completed_games),
        completed_game_ids=sorted({r['contentId'] for r in completed_games}),
        modules_completed=len(completed_modules),
        completed_module_ids=sorted({r['contentId'] for r in completed_modules}),
        total_points=child.get('totalPoints', 0),
        current_streak=child.get('currentStreak', 0),
        level=child.get('level', 1),
        perfect_scores=sum(1 for r in progress_records if r.get('bestScore') == PERFECT_SCORE),
        time_spent_minutes=sum(r.get('timeSpent', 0) for r in progress_records) // 60,
    )


def load_child_stats(child_id: str) -> ChildStats:
    child = dynamo.require_child(child_id)
    return build_child_stats(child, dynamo.query_child_progress(child_id))


# ============================================================================
# Requirement evaluation
# ============================================================================

def _games_completed(req: GamesCompleted, stats: ChildStats) -> bool:
    return stats.games_completed >= req.count


def _specific_games(req: SpecificGames, stats: ChildStats) -> bool:
    return set(req.contentIds).issubset(stats.completed_game_ids)


def _modules_completed(req: ModulesCompleted, stats: ChildStats) -> bool:
    return stats.modules_completed >= req.count


def _specific_modules(req: SpecificModules, stats: ChildStats) -> bool:
    return set(req.contentIds).issubset(stats.completed_module_ids)


def _total_points(req: TotalPoints, stats: ChildStats) -> bool:
    return stats.total_points >= req.points


def _streak_days(req: StreakDays, stats: ChildStats) -> bool:
    return stats.current_streak >= req.days


def _reach_level(req: ReachLevel, stats: ChildStats) -> bool:
    return stats.level >= req.level


def _perfect_scores(req: PerfectScores, stats: ChildStats) -> bool:
    return stats.perfect_scores >= req.count


def _time_spent(req: TimeSpentMinutes, stats: ChildStats) -> bool:
    return stats.time_spent_minutes >= req.minutes


EVALUATORS: Dict[type, Callable[[Any, ChildStats], bool]] = {
    GamesCompleted: _games_completed,
    SpecificGames: _specific_games,
    ModulesCompleted: _modules_completed,
    SpecificModules: _specific_modules,
    TotalPoints: _total_points,
    StreakDays: _streak_days,
    ReachLevel: _reach_level,
    PerfectScores: _perfect_scores,
    TimeSpentMinutes: _time_spent,
}


def is_satisfied(definition: AchievementDefinition, stats: ChildStats) -> bool:
    """
    True when every requirement of the definition holds.

    A definition without requirements is never granted automatically.
    """
    if not definition.requirements:
        return False
    return all(EVALUATORS[type(req)](req, stats) for req in definition.requirements)


# ============================================================================
# Granting
# ============================================================================

def _sorted_definitions(items: List[Dict[str, Any]]) -> List[AchievementDefinition]:
    definitions = [AchievementDefinition(**item) for item in items]
    return sorted(definitions, key=lambda d: (d.order, d.achievementId))


def check_achievements(child_id: str) -> List[Dict[str, Any]]:
    """
    Grant every newly satisfied achievement exactly once.

    Definitions are evaluated in (order, achievementId) order; rewards granted
    earlier in the run count towards later point / level requirements.

    Returns:
        List of newly unlocked achievements
    """
    child = dynamo.require_child(child_id)
    earned_ids = {a['achievementId'] for a in dynamo_achievements.get_child_achievements(child_id)}
    stats = build_child_stats(child, dynamo.query_child_progress(child_id))

    candidates = [
        d for d in _sorted_definitions(dynamo_achievements.list_definitions(active_only=True))
        if d.achievementId not in earned_ids
    ]
    logger.info(f"Checking {len(candidates)} achievements for child {child_id}")

    unlocked = []
    for definition in candidates:
        if not is_satisfied(definition, stats):
            continue

        entry = dynamo_achievements.grant_achievement(
            child_id, definition.achievementId, definition.pointsReward
        )
        if entry is None:
            # Granted by a concurrent evaluation
            continue

        result = gamification.sync_level(child_id)
        stats.total_points = result.totalPoints
        stats.level = result.newLevel

        aws_client.notify_achievement(child_id, definition.achievementId, definition.name)

        logger.info(
            f"Child {child_id} unlocked achievement {definition.achievementId} "
            f"(+{definition.pointsReward} points)"
        )
        unlocked.append({
            'achievementId': definition.achievementId,
            'name': definition.name,
            'icon': definition.icon,
            'pointsReward': definition.pointsReward,
            'earnedAt': entry['earnedAt'],
        })

    return unlocked


# ============================================================================
# Queries
# ============================================================================

def get_child_achievements(child_id: str) -> ChildAchievementsResponse:
    """
    Achievements available to a child with earned flags.

    Definitions outside the child's age group are listed only when already
    earned; unearned secret achievements are hidden.
    """
    child = dynamo.require_child(child_id)
    earned = {a['achievementId']: a['earnedAt'] for a in dynamo_achievements.get_child_achievements(child_id)}

    statuses = []
    for definition in _sorted_definitions(dynamo_achievements.list_definitions(active_only=True)):
        is_earned = definition.achievementId in earned
        if not is_earned and child['ageGroup'] not in definition.ageGroups:
            continue
        if not is_earned and definition.isSecret:
            continue

        statuses.append(AchievementStatus(
            achievementId=definition.achievementId,
            name=definition.name,
            description=definition.description,
            category=definition.category,
            icon=definition.icon,
            pointsReward=definition.pointsReward,
            earned=is_earned,
            earnedAt=earned.get(definition.achievementId),
            isSecret=definition.isSecret,
        ))

    return ChildAchievementsResponse(
        earned=sum(1 for s in statuses if s.earned),
        total=len(statuses),
        achievements=statuses,
    )


def award_badge(child_id: str, name: str, icon: Optional[str] = None) -> Dict[str, Any]:
    """
    Give a child an ad hoc badge, once per name

    Returns:
        {'awarded': bool, 'badge': {...}}
    """
    dynamo.require_child(child_id)

    badge = dynamo_achievements.put_badge(child_id, name, icon)
    if badge is None:
        existing = next(b for b in dynamo_achievements.get_child_badges(child_id) if b['name'] == name)
        return {'awarded': False, 'badge': existing}

    logger.info(f"Child {child_id} received badge '{name}'")
    return {'awarded': True, 'badge': badge}
