"""
Event listeners - boundary operations of the progress engine

Every completion-type event runs the same pipeline for one child:

1. Progress Ledger transition, saved under the record's version (primary write)
2. Point award and level re-derivation
3. Achievement evaluation        (best-effort)
4. Leaderboard recomputation     (best-effort)

A failure in 3 or 4 is logged, the child is queued for reconciliation and
the result carries a degraded EventOutcome instead of an error.
Not-found errors for the child or the content item are raised to the caller.
"""
import logging
from typing import Dict, Any, Optional, List, Tuple

from progress_service import dynamo
from progress_service import dynamo_reconcile
from progress_service.config import get_settings
from progress_service.exceptions import ContentNotFoundError
from progress_service.logic import achievement_service
from progress_service.logic import gamification
from progress_service.logic import leaderboard_service
from progress_service.logic import progress_ledger
from progress_service.schemas import (
    OUTCOME_DEGRADED,
    CompletionOutcome,
    EventOutcome,
    EventResult,
    QuizResult,
)

settings = get_settings()
logger = logging.getLogger(__name__)

REASON_ACHIEVEMENTS = "achievements"
REASON_LEADERBOARDS = "leaderboards"

COMPLETION_LOGS = {
    dynamo.GAME: 'completedGames',
    dynamo.LEARNING_MODULE: 'completedLessons',
}


# ============================================================================
# Helpers
# ============================================================================

def parse_progress_id(progress_id: str) -> Tuple[str, str, str]:
    """Split "{contentType}:{contentId}:{attemptKey}" into its parts"""
    content_type, _, rest = progress_id.partition(':')
    content_id, _, attempt_key = rest.rpartition(':')
    if content_type not in dynamo.CONTENT_TYPES or not content_id or not attempt_key:
        raise ValueError(f"Invalid progress id: {progress_id}")
    return content_type, content_id, attempt_key


def require_content(content_type: str, content_id: str) -> Dict[str, Any]:
    content = dynamo.get_content_item(content_type, content_id)
    if content is None:
        raise ContentNotFoundError(f"{content_type}/{content_id}")
    return content


def _reward(content: Dict[str, Any], field: str, default: int) -> int:
    value = content.get(field)
    return default if value is None else value


def _public(record: Dict[str, Any]) -> Dict[str, Any]:
    return {k: v for k, v in record.items() if k not in ('PK', 'SK')}


def apply_derived_updates(child_id: str, log_context: Dict[str, Any]) -> Tuple[List[Dict[str, Any]], EventOutcome]:
    """
    Run achievement evaluation and leaderboard recomputation for a child

    Returns:
        Tuple of (unlocked_achievements, outcome)
    """
    reasons = []
    unlocked = []

    try:
        unlocked = achievement_service.check_achievements(child_id)
    except Exception as e:
        logger.error(f"Achievement evaluation failed: {str(e)}", extra=log_context, exc_info=True)
        reasons.append(REASON_ACHIEVEMENTS)

    try:
        leaderboard_service.update_leaderboards(child_id)
    except Exception as e:
        logger.error(f"Leaderboard update failed: {str(e)}", extra=log_context, exc_info=True)
        reasons.append(REASON_LEADERBOARDS)

    if not reasons:
        return unlocked, EventOutcome()

    try:
        dynamo_reconcile.enqueue(child_id, reasons)
    except Exception as e:
        logger.error(f"Could not queue child for reconciliation: {str(e)}", extra=log_context, exc_info=True)

    logger.warning(f"Event applied with stale derived state: {reasons}", extra=log_context)
    return unlocked, EventOutcome(status=OUTCOME_DEGRADED, reasons=reasons)


def _finish(
    child: Dict[str, Any],
    progress: Dict[str, Any],
    points: int,
    newly_completed: bool,
    log_context: Dict[str, Any]
) -> EventResult:
    """Steps 2-4 of the pipeline once the progress record is saved"""
    child_id = child['childId']

    if points > 0:
        gamification.award_points(child_id, points)

    if newly_completed:
        dynamo.append_child_completion(child_id, COMPLETION_LOGS[progress['contentType']], {
            'contentId': progress['contentId'],
            'progressId': progress['progressId'],
            'completedAt': progress['completedAt'],
            'score': progress.get('score', 0),
        })
        logger.info("Activity completed", extra=log_context)

    unlocked, outcome = apply_derived_updates(child_id, log_context)

    new_level = dynamo.require_child(child_id).get('level', 1)
    leveled_up = new_level > child.get('level', 1)

    log_context['points_earned'] = points
    log_context['achievements_unlocked'] = [a['achievementId'] for a in unlocked]
    log_context['outcome'] = outcome.status
    logger.info(f"Event processed: +{points} points, {len(unlocked)} achievements", extra=log_context)

    return EventResult(
        progress=_public(progress),
        pointsEarned=points,
        leveledUp=leveled_up,
        newLevel=new_level,
        achievementsUnlocked=unlocked,
        outcome=outcome,
    )


# ============================================================================
# Listeners
# ============================================================================

def on_activity_started(
    child_id: str,
    content_type: str,
    content_id: str,
    attempt_key: Optional[str] = None
) -> EventResult:
    """
    Open (or return) the progress record of an attempt and count the day
    towards the child's streak. Starting a learning module is enrolling.
    """
    log_context = {
        'event': 'on_activity_started',
        'correlation_id': f"start_{content_type}_{content_id}_{attempt_key or ''}",
        'child_id': child_id,
        'content_id': content_id,
    }
    logger.info("Activity started event received", extra=log_context)

    child = dynamo.require_child(child_id)
    require_content(content_type, content_id)

    progress, created = progress_ledger.start_activity(child_id, content_type, content_id, attempt_key)
    child = gamification.record_daily_activity(child_id)

    log_context['record_created'] = created
    logger.info(f"Progress {progress['progressId']} ready", extra=log_context)

    return EventResult(progress=_public(progress), newLevel=child.get('level', 1))


def on_activity_completed(child_id: str, progress_id: str, outcome: CompletionOutcome) -> EventResult:
    """
    Apply a completion / checkpoint report to a progress record

    Unknown attempt keys get a fresh record. The completion reward is paid
    once per record.
    """
    log_context = {
        'event': 'on_activity_completed',
        'correlation_id': f"complete_{progress_id}",
        'child_id': child_id,
        'progress_id': progress_id,
    }
    logger.info("Activity completed event received", extra=log_context)

    content_type, content_id, attempt_key = parse_progress_id(progress_id)
    child = dynamo.require_child(child_id)
    content = require_content(content_type, content_id)

    if content_type == dynamo.GAME:
        base = _reward(content, 'pointsPerCompletion', settings.DEFAULT_GAME_POINTS)
        bonus = _reward(content, 'bonusPoints', settings.DEFAULT_GAME_BONUS)
    else:
        base = _reward(content, 'completionPoints', settings.DEFAULT_MODULE_COMPLETION_POINTS)
        bonus = 0

    progress, points, newly_completed = progress_ledger.apply_update(
        child_id, content_type, content_id, attempt_key,
        lambda progress: progress_ledger.record_completion(
            progress, outcome, base, bonus, total_items=content.get('totalItems')
        ),
    )

    return _finish(child, progress, points, newly_completed, log_context)


def on_lesson_completed(
    child_id: str,
    module_id: str,
    lesson_number: int,
    time_spent: int = 0,
    score: Optional[int] = None
) -> EventResult:
    """Log one lesson of a learning module; each lesson number pays once"""
    log_context = {
        'event': 'on_lesson_completed',
        'correlation_id': f"lesson_{module_id}_{lesson_number}",
        'child_id': child_id,
        'content_id': module_id,
        'lesson_number': lesson_number,
    }
    logger.info("Lesson completed event received", extra=log_context)

    child = dynamo.require_child(child_id)
    module = require_content(dynamo.LEARNING_MODULE, module_id)

    if module.get('totalItems') and lesson_number > module['totalItems']:
        raise ValueError(f"Lesson {lesson_number} out of range for module {module_id} ({module['totalItems']} lessons)")

    points_per_lesson = _reward(module, 'pointsPerLesson', settings.DEFAULT_LESSON_POINTS)
    progress, points, newly_completed = progress_ledger.apply_update(
        child_id, dynamo.LEARNING_MODULE, module_id, None,
        lambda progress: progress_ledger.record_lesson(
            progress, lesson_number, score, time_spent, points_per_lesson, module.get('totalItems')
        ),
    )

    return _finish(child, progress, points, newly_completed, log_context)


def on_quiz_submitted(child_id: str, module_id: str, result: QuizResult) -> EventResult:
    """
    Record a graded quiz attempt

    Grading happens before this call; a pass completes the module.
    """
    log_context = {
        'event': 'on_quiz_submitted',
        'correlation_id': f"quiz_{module_id}_{child_id}",
        'child_id': child_id,
        'content_id': module_id,
        'score': result.score,
    }
    logger.info("Quiz submitted event received", extra=log_context)

    child = dynamo.require_child(child_id)
    module = require_content(dynamo.LEARNING_MODULE, module_id)

    passing_score = _reward(module, 'passingScore', settings.DEFAULT_PASSING_SCORE)
    completion_reward = _reward(module, 'completionPoints', settings.DEFAULT_MODULE_COMPLETION_POINTS)
    progress, points, newly_completed = progress_ledger.apply_update(
        child_id, dynamo.LEARNING_MODULE, module_id, None,
        lambda progress: progress_ledger.record_quiz_attempt(
            progress, result, passing_score, completion_reward
        ),
    )

    log_context['passed'] = progress['quizAttempts'][-1]['passed']
    return _finish(child, progress, points, newly_completed, log_context)


# ============================================================================
# Reconciliation
# ============================================================================

def reconcile_pending() -> Dict[str, Any]:
    """
    Re-derive the level, re-run achievement evaluation and leaderboard
    recomputation for every queued child; entries stay queued when the retry fails again.
    """
    reconciled = []
    failed = []

    for entry in dynamo_reconcile.list_pending():
        child_id = entry['childId']
        log_context = {
            'event': 'reconcile',
            'correlation_id': f"reconcile_{child_id}_{entry.get('attempts', 0)}",
            'child_id': child_id,
            'reasons': entry['reasons'],
        }
        try:
            gamification.sync_level(child_id)
            achievement_service.check_achievements(child_id)
            leaderboard_service.update_leaderboards(child_id)
        except Exception as e:
            logger.error(f"Reconciliation failed: {str(e)}", extra=log_context, exc_info=True)
            failed.append(child_id)
            continue

        dynamo_reconcile.remove(child_id)
        logger.info("Child reconciled", extra=log_context)
        reconciled.append(child_id)

    return {'reconciled': reconciled, 'failed': failed}
