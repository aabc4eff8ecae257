"""
Progress Ledger - lifecycle of one (child, content item, attempt) record

Records are created in-progress, move to completed and never leave
completed. The transition functions below are pure: they mutate and return
the record dict plus the points it earned, persistence is left to the caller
(see listeners) except for start/lookup which must hit the store to stay
idempotent.
"""
from typing import Dict, Any, Optional, Tuple, Callable
import logging

from progress_service import dynamo
from progress_service.config import get_settings
from progress_service.exceptions import ConcurrentModificationError, StaleVersionError
from progress_service.logic import gamification
from progress_service.schemas import CompletionOutcome, QuizResult

settings = get_settings()
logger = logging.getLogger(__name__)

STATUS_IN_PROGRESS = "in-progress"
STATUS_COMPLETED = "completed"


def new_progress_record(
    child_id: str,
    content_type: str,
    content_id: str,
    attempt_key: Optional[str] = None,
    now: Optional[str] = None
) -> Dict[str, Any]:
    """Blank in-progress record for one attempt"""
    now = now or dynamo.utcnow_iso()
    progress_id = dynamo.build_progress_id(content_type, content_id, attempt_key)

    return {
        'progressId': progress_id,
        'childId': child_id,
        'contentType': content_type,
        'contentId': content_id,
        'attemptKey': progress_id.rsplit(':', 1)[1],
        'status': STATUS_IN_PROGRESS,
        'score': 0,
        'bestScore': 0,
        'attempts': 1,
        'timeSpent': 0,
        'currentLevel': 1,
        'currentLesson': 1,
        'levelsCompleted': [],
        'lessonsCompleted': [],
        'quizAttempts': [],
        'pointsEarned': 0,
        'bonusPointsEarned': 0,
        'completionPercentage': 0,
        'completionRewardPaid': False,
        'version': 0,
        'startedAt': now,
        'completedAt': None,
        'lastAccessedAt': now,
        'createdAt': now,
        'updatedAt': now,
    }


def start_activity(
    child_id: str,
    content_type: str,
    content_id: str,
    attempt_key: Optional[str] = None
) -> Tuple[Dict[str, Any], bool]:
    """
    Create the in-progress record for an attempt, or return the existing one

    Returns:
        Tuple of (record, created)
    """
    record = new_progress_record(child_id, content_type, content_id, attempt_key)
    stored, created = dynamo.create_progress_if_absent(record)

    if created:
        logger.info(f"Child {child_id} started {content_type} {content_id} ({record['progressId']})")
    else:
        logger.debug(f"Progress {record['progressId']} already exists for child {child_id}")

    return stored, created


def get_or_create_progress(
    child_id: str,
    content_type: str,
    content_id: str,
    attempt_key: Optional[str] = None
) -> Dict[str, Any]:
    """
    Lookup used by completion reports

    Unknown attempt keys get a fresh in-progress record so that retried or
    out-of-order client reports are accepted.
    """
    progress_id = dynamo.build_progress_id(content_type, content_id, attempt_key)
    existing = dynamo.get_progress(child_id, progress_id)
    if existing:
        return existing

    logger.info(f"No progress {progress_id} for child {child_id}, creating it from completion report")
    record, _ = start_activity(child_id, content_type, content_id, attempt_key)
    return record


def save(progress: Dict[str, Any]) -> Dict[str, Any]:
    return dynamo.save_progress(progress)


def apply_update(
    child_id: str,
    content_type: str,
    content_id: str,
    attempt_key: Optional[str],
    transition: Callable[[Dict[str, Any]], Tuple[Dict[str, Any], int, bool]]
) -> Tuple[Dict[str, Any], int, bool]:
    """
    Read, transition and save a record under optimistic locking

    On a version conflict the transition is re-applied to a fresh read, so
    a retried report that raced the original sees its effects and pays
    nothing. Points returned here are only those of the committed write.

    Raises:
        ConcurrentModificationError: Version kept moving for PROGRESS_MAX_RETRIES attempts
    """
    for attempt in range(1, settings.PROGRESS_MAX_RETRIES + 1):
        progress = get_or_create_progress(child_id, content_type, content_id, attempt_key)
        progress, points, newly_completed = transition(progress)
        try:
            save(progress)
            return progress, points, newly_completed
        except StaleVersionError:
            logger.warning(
                f"Progress {progress['progressId']} of child {child_id} changed concurrently, "
                f"retrying ({attempt}/{settings.PROGRESS_MAX_RETRIES})"
            )

    progress_id = dynamo.build_progress_id(content_type, content_id, attempt_key)
    raise ConcurrentModificationError(f"{child_id}/{progress_id}", settings.PROGRESS_MAX_RETRIES)


# ============= TRANSITIONS =============

def add_time_spent(progress: Dict[str, Any], seconds: int, now: Optional[str] = None) -> Dict[str, Any]:
    """timeSpent only grows"""
    if seconds and seconds > 0:
        progress['timeSpent'] = progress.get('timeSpent', 0) + seconds
    progress['lastAccessedAt'] = now or dynamo.utcnow_iso()
    return progress


def _append_unique(log: list, number_key: str, number: int, entry: Dict[str, Any]) -> bool:
    if any(item.get(number_key) == number for item in log):
        return False
    log.append({number_key: number, **entry})
    return True


def _update_score(progress: Dict[str, Any], score: Optional[int]) -> None:
    if score is None:
        return
    progress['score'] = score
    if score > progress.get('bestScore', 0):
        progress['bestScore'] = score


def mark_completed(progress: Dict[str, Any], now: Optional[str] = None) -> bool:
    """
    Move a record to the terminal completed state

    Returns:
        True only on the first transition; completedAt is never overwritten
    """
    newly_completed = progress.get('status') != STATUS_COMPLETED
    progress['status'] = STATUS_COMPLETED
    progress['completionPercentage'] = 100
    if not progress.get('completedAt'):
        progress['completedAt'] = now or dynamo.utcnow_iso()
    return newly_completed


def record_completion(
    progress: Dict[str, Any],
    outcome: CompletionOutcome,
    base_points: int,
    bonus_points: int,
    total_items: Optional[int] = None,
    now: Optional[str] = None
) -> Tuple[Dict[str, Any], int, bool]:
    """
    Apply a completion / checkpoint report to a record

    The completion reward is paid once per record (completionRewardPaid):
    on the first transition to completed, or by a "completed" report for a
    record that lessons already completed. A repeated report never pays twice.

    Args:
        progress: Record dict
        outcome: score, timeSpent, levelOrLesson, completed
        base_points: Content-defined completion reward
        bonus_points: Extra reward when the score reaches the bonus threshold
        total_items: Levels / lessons of the content item, when known

    Returns:
        Tuple of (progress, points_earned, newly_completed)
    """
    now = now or dynamo.utcnow_iso()
    was_completed = progress.get('status') == STATUS_COMPLETED

    _update_score(progress, outcome.score)
    add_time_spent(progress, outcome.timeSpent, now)

    if outcome.levelOrLesson is not None:
        number = outcome.levelOrLesson
        entry = {'completedAt': now, 'score': outcome.score or 0}
        if progress['contentType'] == dynamo.LEARNING_MODULE:
            _append_unique(progress.setdefault('lessonsCompleted', []), 'lessonNumber', number, entry)
            progress['currentLesson'] = number + 1
        else:
            _append_unique(progress.setdefault('levelsCompleted', []), 'levelNumber', number, entry)
            progress['currentLevel'] = number

    if total_items:
        calculate_completion(progress, total_items, now)
    if outcome.completed:
        mark_completed(progress, now)

    points = 0
    newly_completed = not was_completed and progress['status'] == STATUS_COMPLETED
    if (newly_completed or outcome.completed) and not progress.get('completionRewardPaid'):
        points = gamification.completion_points(base_points, bonus_points, outcome.score)
        progress['pointsEarned'] = progress.get('pointsEarned', 0) + points
        progress['bonusPointsEarned'] = progress.get('bonusPointsEarned', 0) + (points - base_points)
        progress['completionRewardPaid'] = True
    elif outcome.completed:
        logger.debug(f"Progress {progress['progressId']} already rewarded, no points awarded")

    return progress, points, newly_completed


def record_lesson(
    progress: Dict[str, Any],
    lesson_number: int,
    score: Optional[int],
    time_spent: int,
    points_per_lesson: int,
    total_lessons: Optional[int] = None,
    now: Optional[str] = None
) -> Tuple[Dict[str, Any], int, bool]:
    """
    Log a completed lesson of a learning module

    Each lesson number is logged and rewarded once. Logging the last lesson
    completes the record; the module's completion reward is left to the quiz.

    Returns:
        Tuple of (progress, points_earned, newly_completed)
    """
    now = now or dynamo.utcnow_iso()
    was_completed = progress.get('status') == STATUS_COMPLETED

    added = _append_unique(
        progress.setdefault('lessonsCompleted', []),
        'lessonNumber',
        lesson_number,
        {'completedAt': now, 'score': score or 0},
    )

    points = 0
    if added:
        points = points_per_lesson
        progress['pointsEarned'] = progress.get('pointsEarned', 0) + points
    else:
        logger.debug(f"Lesson {lesson_number} already logged on {progress['progressId']}")

    add_time_spent(progress, time_spent, now)
    progress['currentLesson'] = lesson_number + 1

    if total_lessons:
        calculate_completion(progress, total_lessons, now)

    newly_completed = not was_completed and progress.get('status') == STATUS_COMPLETED
    return progress, points, newly_completed


def record_quiz_attempt(
    progress: Dict[str, Any],
    result: QuizResult,
    passing_score: int,
    completion_reward: int,
    now: Optional[str] = None
) -> Tuple[Dict[str, Any], int, bool]:
    """
    Append a graded quiz attempt

    A pass completes the module. The module's completion reward is paid by
    the first pass, also when finishing every lesson already completed the
    record, and never twice.

    Returns:
        Tuple of (progress, points_earned, newly_completed)
    """
    now = now or dynamo.utcnow_iso()
    attempts = progress.setdefault('quizAttempts', [])

    passed = result.passed if result.passed is not None else result.score >= passing_score

    attempts.append({
        'attemptNumber': len(attempts) + 1,
        'score': result.score,
        'totalQuestions': result.totalQuestions,
        'correctAnswers': result.correctAnswers,
        'timeSpent': result.timeSpent,
        'completedAt': now,
        'passed': passed,
    })
    progress['attempts'] = len(attempts)

    _update_score(progress, result.score)
    add_time_spent(progress, result.timeSpent, now)

    newly_completed = mark_completed(progress, now) if passed else False

    points = 0
    if passed and not progress.get('completionRewardPaid'):
        points = completion_reward
        progress['pointsEarned'] = progress.get('pointsEarned', 0) + points
        progress['completionRewardPaid'] = True

    return progress, points, newly_completed


def calculate_completion(progress: Dict[str, Any], total_items: int, now: Optional[str] = None) -> int:
    """
    Derive completionPercentage from logged lessons / levels

    percentage = min(100, completed / total * 100), rounded half up.
    Reaching 100 forces the completed status.

    Returns:
        The new percentage
    """
    if progress.get('status') == STATUS_COMPLETED:
        progress['completionPercentage'] = 100
        return 100

    if progress['contentType'] == dynamo.LEARNING_MODULE:
        completed = len(progress.get('lessonsCompleted', []))
    else:
        completed = len(progress.get('levelsCompleted', []))

    if total_items and total_items > 0:
        progress['completionPercentage'] = min(100, (completed * 200 + total_items) // (2 * total_items))

    if progress.get('completionPercentage', 0) >= 100:
        mark_completed(progress, now)

    return progress['completionPercentage']
