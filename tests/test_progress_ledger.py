"""
Unit tests for the Progress Ledger
"""
import pytest
from unittest.mock import patch

from progress_service import dynamo
from progress_service.exceptions import ConcurrentModificationError, StaleVersionError
from progress_service.logic import progress_ledger
from progress_service.schemas import CompletionOutcome, QuizResult


def game_record(**fields):
    record = progress_ledger.new_progress_record("c1", dynamo.GAME, "memory", "s1", now="2026-03-10T10:00:00")
    record.update(fields)
    return record


def module_record(**fields):
    record = progress_ledger.new_progress_record("c1", dynamo.LEARNING_MODULE, "safety-101", now="2026-03-10T10:00:00")
    record.update(fields)
    return record


class TestStartActivity:
    """Record creation is idempotent per attempt"""

    def test_start_twice_returns_same_record(self, make_child):
        """Second start for the same attempt returns the stored record"""
        make_child("c1")
        first, created = progress_ledger.start_activity("c1", dynamo.GAME, "memory", "s1")
        second, created_again = progress_ledger.start_activity("c1", dynamo.GAME, "memory", "s1")

        assert created is True
        assert created_again is False
        assert first['progressId'] == second['progressId'] == "game:memory:s1"
        assert second['status'] == progress_ledger.STATUS_IN_PROGRESS

    def test_games_get_one_record_per_session(self, make_child):
        """Different attempt keys give separate records"""
        make_child("c1")
        progress_ledger.start_activity("c1", dynamo.GAME, "memory", "s1")
        progress_ledger.start_activity("c1", dynamo.GAME, "memory", "s2")

        assert len(dynamo.query_child_progress("c1", dynamo.GAME)) == 2

    def test_modules_get_a_single_record(self, make_child):
        """Attempt keys are ignored for learning modules"""
        make_child("c1")
        first, _ = progress_ledger.start_activity("c1", dynamo.LEARNING_MODULE, "safety-101", "x")
        second, created = progress_ledger.start_activity("c1", dynamo.LEARNING_MODULE, "safety-101", "y")

        assert first['progressId'] == "learning-module:safety-101:enrollment"
        assert created is False
        assert len(dynamo.query_child_progress("c1", dynamo.LEARNING_MODULE)) == 1

    def test_unknown_attempt_creates_fresh_record(self, make_child):
        """A completion report for an unseen attempt does not fail"""
        make_child("c1")
        record = progress_ledger.get_or_create_progress("c1", dynamo.GAME, "memory", "late")

        assert record['progressId'] == "game:memory:late"
        assert dynamo.get_progress("c1", "game:memory:late") is not None


class TestRecordCompletion:
    """Score, logs, time and the completed transition"""

    def test_best_score_is_high_water_mark(self):
        """Scores [40, 90, 70] leave bestScore at 90"""
        record = game_record()
        for score in (40, 90, 70):
            progress_ledger.record_completion(record, CompletionOutcome(score=score), 100, 50)

        assert record['bestScore'] == 90
        assert record['score'] == 70

    def test_time_spent_accumulates(self):
        record = game_record()
        progress_ledger.record_completion(record, CompletionOutcome(timeSpent=30), 100, 50)
        progress_ledger.record_completion(record, CompletionOutcome(timeSpent=45), 100, 50)
        assert record['timeSpent'] == 75

    def test_level_log_deduplicated(self):
        """Reporting the same level twice logs it once"""
        record = game_record()
        progress_ledger.record_completion(record, CompletionOutcome(levelOrLesson=2, score=60), 100, 50)
        progress_ledger.record_completion(record, CompletionOutcome(levelOrLesson=2, score=95), 100, 50)

        assert [lv['levelNumber'] for lv in record['levelsCompleted']] == [2]
        assert record['currentLevel'] == 2

    def test_points_awarded_once(self):
        """Only the first completed report earns points"""
        record = game_record()
        _, points, newly = progress_ledger.record_completion(
            record, CompletionOutcome(score=90, completed=True), 100, 50, now="2026-03-10T11:00:00"
        )
        _, again, newly_again = progress_ledger.record_completion(
            record, CompletionOutcome(score=100, completed=True), 100, 50, now="2026-03-10T12:00:00"
        )

        assert (points, newly) == (150, True)
        assert (again, newly_again) == (0, False)
        assert record['pointsEarned'] == 150
        assert record['bonusPointsEarned'] == 50
        assert record['completedAt'] == "2026-03-10T11:00:00"
        assert record['status'] == progress_ledger.STATUS_COMPLETED

    def test_not_completed_earns_nothing(self):
        record = game_record()
        _, points, newly = progress_ledger.record_completion(record, CompletionOutcome(score=100), 100, 50)
        assert points == 0
        assert newly is False
        assert record['status'] == progress_ledger.STATUS_IN_PROGRESS

    def test_last_level_completes_game(self):
        """Logging every level of a game completes it and pays the reward"""
        record = game_record()
        progress_ledger.record_completion(record, CompletionOutcome(levelOrLesson=1, score=70), 100, 50, total_items=2)
        _, points, newly = progress_ledger.record_completion(
            record, CompletionOutcome(levelOrLesson=2, score=70), 100, 50, total_items=2
        )

        assert newly is True
        assert points == 100
        assert record['completionPercentage'] == 100


class TestCalculateCompletion:
    """Derived completion percentage"""

    @pytest.mark.parametrize("done,total,expected", [(0, 4, 0), (2, 4, 50), (1, 3, 33), (2, 3, 67), (5, 4, 100)])
    def test_percentage(self, done, total, expected):
        record = module_record(lessonsCompleted=[{'lessonNumber': n} for n in range(1, done + 1)])
        assert progress_ledger.calculate_completion(record, total) == expected

    def test_full_completion_forces_status(self):
        record = module_record(lessonsCompleted=[{'lessonNumber': 1}, {'lessonNumber': 2}])
        progress_ledger.calculate_completion(record, 2, now="2026-03-10T12:00:00")

        assert record['status'] == progress_ledger.STATUS_COMPLETED
        assert record['completedAt'] == "2026-03-10T12:00:00"


class TestLessons:
    """Lesson flow of learning modules"""

    def test_same_lesson_twice_counts_once(self):
        """lessonsCompleted grows by one and points are paid once"""
        record = module_record()
        _, first_points, _ = progress_ledger.record_lesson(record, 1, 80, 60, 50, total_lessons=4)
        _, second_points, _ = progress_ledger.record_lesson(record, 1, 90, 60, 50, total_lessons=4)

        assert len(record['lessonsCompleted']) == 1
        assert first_points == 50
        assert second_points == 0
        assert record['pointsEarned'] == 50
        assert record['timeSpent'] == 120
        assert record['currentLesson'] == 2
        assert record['completionPercentage'] == 25

    def test_last_lesson_completes_module(self):
        record = module_record()
        progress_ledger.record_lesson(record, 1, None, 0, 50, total_lessons=2)
        _, _, newly = progress_ledger.record_lesson(record, 2, None, 0, 50, total_lessons=2)

        assert newly is True
        assert record['status'] == progress_ledger.STATUS_COMPLETED


class TestQuizAttempts:
    """Quiz attempt log and completion reward"""

    def test_first_pass_pays_completion_reward(self):
        """Fail, pass, pass: only the first pass earns points"""
        record = module_record()

        _, failed_points, failed_newly = progress_ledger.record_quiz_attempt(
            record, QuizResult(score=50, totalQuestions=10, correctAnswers=5), 70, 200
        )
        _, pass_points, pass_newly = progress_ledger.record_quiz_attempt(
            record, QuizResult(score=80, totalQuestions=10, correctAnswers=8), 70, 200
        )
        _, repeat_points, _ = progress_ledger.record_quiz_attempt(
            record, QuizResult(score=100, totalQuestions=10, correctAnswers=10), 70, 200
        )

        assert (failed_points, failed_newly) == (0, False)
        assert (pass_points, pass_newly) == (200, True)
        assert repeat_points == 0
        assert [a['passed'] for a in record['quizAttempts']] == [False, True, True]
        assert [a['attemptNumber'] for a in record['quizAttempts']] == [1, 2, 3]
        assert record['attempts'] == 3
        assert record['bestScore'] == 100

    def test_explicit_pass_flag_wins(self):
        """A caller-supplied pass flag overrides the passing score"""
        record = module_record()
        progress_ledger.record_quiz_attempt(record, QuizResult(score=40, passed=True), 70, 200)
        assert record['status'] == progress_ledger.STATUS_COMPLETED

    def test_pass_after_all_lessons_still_pays(self):
        """Lessons complete the record, the first pass pays the module reward once"""
        record = module_record()
        _, _, lessons_newly = progress_ledger.record_lesson(record, 1, None, 0, 50, total_lessons=1)

        _, points, newly = progress_ledger.record_quiz_attempt(record, QuizResult(score=90), 70, 200)
        _, again, _ = progress_ledger.record_quiz_attempt(record, QuizResult(score=95), 70, 200)

        assert lessons_newly is True
        assert (points, newly) == (200, False)
        assert again == 0
        assert record['pointsEarned'] == 250
        assert record['completionRewardPaid'] is True

    def test_completed_report_pays_reward_for_lesson_completed_module(self):
        """An explicit completion report pays once when lessons finished the module"""
        record = module_record()
        progress_ledger.record_lesson(record, 1, None, 0, 50, total_lessons=1)

        _, points, newly = progress_ledger.record_completion(record, CompletionOutcome(completed=True), 200, 0)
        _, quiz_points, _ = progress_ledger.record_quiz_attempt(record, QuizResult(score=90), 70, 200)

        assert (points, newly) == (200, False)
        assert quiz_points == 0


class TestVersionedSave:
    """Optimistic locking on progress records"""

    def test_stale_save_rejected(self, make_child):
        make_child("c1")
        record, _ = progress_ledger.start_activity("c1", dynamo.GAME, "memory", "s1")
        stale = dict(record)

        progress_ledger.save(record)
        assert record['version'] == 1

        with pytest.raises(StaleVersionError):
            progress_ledger.save(stale)
        assert dynamo.get_progress("c1", "game:memory:s1")['version'] == 1

    def test_conflict_reapplies_transition_to_fresh_read(self, make_child):
        """The retry sees the lesson logged by the winning writer"""
        make_child("c1")
        real_save = dynamo.save_progress
        saves = []

        def save_losing_first_race(record):
            saves.append(record.get('version'))
            if len(saves) == 1:
                winner = progress_ledger.get_or_create_progress("c1", dynamo.LEARNING_MODULE, "safety-101")
                progress_ledger.record_lesson(winner, 1, None, 0, 50)
                real_save(winner)
            return real_save(record)

        with patch('progress_service.dynamo.save_progress', side_effect=save_losing_first_race):
            progress, points, _ = progress_ledger.apply_update(
                "c1", dynamo.LEARNING_MODULE, "safety-101", None,
                lambda p: progress_ledger.record_lesson(p, 1, None, 0, 50),
            )

        assert points == 0
        assert saves == [0, 1]
        assert progress['version'] == 2
        assert len(dynamo.get_progress("c1", progress['progressId'])['lessonsCompleted']) == 1

    def test_gives_up_after_retries(self, make_child):
        make_child("c1")
        with patch('progress_service.dynamo.save_progress', side_effect=StaleVersionError("key", 0)) as mock_save:
            with pytest.raises(ConcurrentModificationError):
                progress_ledger.apply_update(
                    "c1", dynamo.GAME, "memory", "s1", lambda p: (p, 0, False)
                )

        assert mock_save.call_count == progress_ledger.settings.PROGRESS_MAX_RETRIES
