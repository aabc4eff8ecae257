"""
Integration tests for the event pipeline
"""
import pytest
from unittest.mock import patch

from progress_service import dynamo, dynamo_reconcile, dynamo_achievements
from progress_service.exceptions import ChildNotFoundError, ContentNotFoundError
from progress_service.logic import listeners
from progress_service.schemas import CompletionOutcome, QuizResult
from progress_service.schemas_leaderboards import SCOPE_GLOBAL, PERIOD_ALL_TIME
from progress_service.logic import leaderboard_service


class TestParseProgressId:
    """Progress identifiers"""

    def test_parse(self):
        assert listeners.parse_progress_id("game:memory:s1") == ("game", "memory", "s1")

    def test_content_id_with_colon(self):
        assert listeners.parse_progress_id("game:a:b:s1") == ("game", "a:b", "s1")

    @pytest.mark.parametrize("bad", ["memory", "quiz:memory:s1", "game::s1", "game:memory:"])
    def test_invalid(self, bad):
        with pytest.raises(ValueError):
            listeners.parse_progress_id(bad)


class TestActivityStarted:
    """onActivityStarted"""

    def test_start_creates_record_and_streak(self, make_child, make_content):
        make_child("c1")
        make_content("memory")

        result = listeners.on_activity_started("c1", dynamo.GAME, "memory", "s1")

        assert result.progress['status'] == "in-progress"
        assert 'PK' not in result.progress
        assert dynamo.get_child("c1")['currentStreak'] == 1

    def test_unknown_content(self, make_child):
        make_child("c1")
        with pytest.raises(ContentNotFoundError):
            listeners.on_activity_started("c1", dynamo.GAME, "missing", "s1")

    def test_unknown_child(self, make_content):
        make_content("memory")
        with pytest.raises(ChildNotFoundError):
            listeners.on_activity_started("ghost", dynamo.GAME, "memory", "s1")


class TestActivityCompleted:
    """onActivityCompleted runs ledger, points, achievements, leaderboards"""

    def test_full_pipeline(self, make_child, make_content, make_definition):
        make_child("c1", totalPoints=900, experiencePoints=900)
        make_content("memory", pointsPerCompletion=100, bonusPoints=50)
        make_definition("first-game", [{'kind': 'games-completed', 'count': 1}], points_reward=25)
        listeners.on_activity_started("c1", dynamo.GAME, "memory", "s1")

        result = listeners.on_activity_completed(
            "c1", "game:memory:s1", CompletionOutcome(score=90, timeSpent=120, completed=True)
        )

        assert result.outcome.status == "ok"
        assert result.pointsEarned == 150
        assert result.leveledUp is True
        assert result.newLevel == 2
        assert [a['achievementId'] for a in result.achievementsUnlocked] == ["first-game"]

        child = dynamo.get_child("c1")
        assert child['totalPoints'] == 900 + 150 + 25
        assert [g['contentId'] for g in child['completedGames']] == ["memory"]

        board = leaderboard_service.get_leaderboard(SCOPE_GLOBAL, PERIOD_ALL_TIME)
        assert board.rankings[0].score == 1075
        assert board.rankings[0].achievementsEarned == 1

    def test_repeat_completion_pays_nothing(self, make_child, make_content):
        make_child("c1")
        make_content("memory")
        outcome = CompletionOutcome(score=60, completed=True)

        first = listeners.on_activity_completed("c1", "game:memory:s1", outcome)
        second = listeners.on_activity_completed("c1", "game:memory:s1", outcome)

        assert first.pointsEarned == 100
        assert second.pointsEarned == 0
        child = dynamo.get_child("c1")
        assert child['totalPoints'] == 100
        assert len(child['completedGames']) == 1

    def test_unknown_attempt_key_accepted(self, make_child, make_content):
        """Completion without a prior start creates the record"""
        make_child("c1")
        make_content("memory")

        result = listeners.on_activity_completed("c1", "game:memory:retry-7", CompletionOutcome(completed=True))

        assert result.progress['progressId'] == "game:memory:retry-7"
        assert result.progress['status'] == "completed"

    def test_default_rewards_when_content_has_none(self, make_child, make_content):
        make_child("c1")
        make_content("memory")

        result = listeners.on_activity_completed("c1", "game:memory:s1", CompletionOutcome(score=85, completed=True))
        assert result.pointsEarned == listeners.settings.DEFAULT_GAME_POINTS + listeners.settings.DEFAULT_GAME_BONUS

    def test_missing_content(self, make_child):
        make_child("c1")
        with pytest.raises(ContentNotFoundError):
            listeners.on_activity_completed("c1", "game:nope:s1", CompletionOutcome(completed=True))


class TestDegradedOutcome:
    """Derived-update failures keep the primary write and are queued"""

    @patch('progress_service.logic.leaderboard_service.update_leaderboards')
    def test_leaderboard_failure_is_degraded(self, mock_update, make_child, make_content):
        mock_update.side_effect = RuntimeError("throttled")
        make_child("c1")
        make_content("memory")

        result = listeners.on_activity_completed("c1", "game:memory:s1", CompletionOutcome(completed=True))

        assert result.outcome.is_degraded
        assert result.outcome.reasons == ["leaderboards"]
        assert dynamo.get_progress("c1", "game:memory:s1")['status'] == "completed"
        assert dynamo.get_child("c1")['totalPoints'] == 100

        pending = dynamo_reconcile.list_pending()
        assert [(p['childId'], p['reasons']) for p in pending] == [("c1", ["leaderboards"])]

    @patch('progress_service.logic.achievement_service.check_achievements')
    @patch('progress_service.logic.leaderboard_service.update_leaderboards')
    def test_both_failures_reported(self, mock_update, mock_check, make_child, make_content):
        mock_update.side_effect = RuntimeError("throttled")
        mock_check.side_effect = RuntimeError("boom")
        make_child("c1")
        make_content("memory")

        result = listeners.on_activity_completed("c1", "game:memory:s1", CompletionOutcome(completed=True))

        assert result.outcome.reasons == ["achievements", "leaderboards"]
        assert result.achievementsUnlocked == []

    def test_reconcile_clears_queue(self, make_child, make_content, make_definition):
        make_child("c1")
        make_content("memory")
        make_definition("first-game", [{'kind': 'games-completed', 'count': 1}], points_reward=10)

        with patch('progress_service.logic.achievement_service.check_achievements', side_effect=RuntimeError("boom")):
            result = listeners.on_activity_completed("c1", "game:memory:s1", CompletionOutcome(completed=True))
        assert result.outcome.is_degraded

        summary = listeners.reconcile_pending()

        assert summary == {'reconciled': ["c1"], 'failed': []}
        assert dynamo_reconcile.list_pending() == []
        assert [a['achievementId'] for a in dynamo_achievements.get_child_achievements("c1")] == ["first-game"]

    def test_reconcile_keeps_failing_entries(self, make_child):
        make_child("c1")
        dynamo_reconcile.enqueue("c1", ["leaderboards"])

        with patch('progress_service.logic.leaderboard_service.update_leaderboards', side_effect=RuntimeError("still down")):
            summary = listeners.reconcile_pending()

        assert summary == {'reconciled': [], 'failed': ["c1"]}
        assert len(dynamo_reconcile.list_pending()) == 1


class TestLessonAndQuiz:
    """Learning module flows"""

    def test_lesson_twice_counts_once(self, make_child, make_content):
        make_child("c1")
        make_content("safety", dynamo.LEARNING_MODULE, pointsPerLesson=50, totalItems=3)

        first = listeners.on_lesson_completed("c1", "safety", 1, time_spent=60)
        second = listeners.on_lesson_completed("c1", "safety", 1, time_spent=30)

        assert first.pointsEarned == 50
        assert second.pointsEarned == 0
        assert len(second.progress['lessonsCompleted']) == 1
        assert second.progress['timeSpent'] == 90
        assert dynamo.get_child("c1")['totalPoints'] == 50

    def test_lesson_out_of_range(self, make_child, make_content):
        make_child("c1")
        make_content("safety", dynamo.LEARNING_MODULE, totalItems=3)
        with pytest.raises(ValueError):
            listeners.on_lesson_completed("c1", "safety", 4)

    def test_quiz_pass_completes_module_once(self, make_child, make_content):
        make_child("c1")
        make_content("safety", dynamo.LEARNING_MODULE, completionPoints=200, passingScore=70)

        failed = listeners.on_quiz_submitted("c1", "safety", QuizResult(score=60))
        passed = listeners.on_quiz_submitted("c1", "safety", QuizResult(score=85))
        repeat = listeners.on_quiz_submitted("c1", "safety", QuizResult(score=95))

        assert failed.pointsEarned == 0
        assert passed.pointsEarned == 200
        assert passed.progress['status'] == "completed"
        assert repeat.pointsEarned == 0

        child = dynamo.get_child("c1")
        assert child['totalPoints'] == 200
        assert [m['contentId'] for m in child['completedLessons']] == ["safety"]

    def test_quiz_on_game_id_not_found(self, make_child, make_content):
        make_child("c1")
        make_content("memory")
        with pytest.raises(ContentNotFoundError):
            listeners.on_quiz_submitted("c1", "memory", QuizResult(score=90))

    def test_quiz_after_all_lessons_pays_completion_reward(self, make_child, make_content):
        """Lessons complete the module; the first passing quiz still pays its reward"""
        make_child("c1")
        make_content("safety", dynamo.LEARNING_MODULE, totalItems=2, pointsPerLesson=50, completionPoints=200)

        listeners.on_lesson_completed("c1", "safety", 1)
        last = listeners.on_lesson_completed("c1", "safety", 2)
        quiz = listeners.on_quiz_submitted("c1", "safety", QuizResult(score=90))
        repeat = listeners.on_quiz_submitted("c1", "safety", QuizResult(score=95))

        assert last.progress['status'] == "completed"
        assert quiz.pointsEarned == 200
        assert repeat.pointsEarned == 0

        child = dynamo.get_child("c1")
        assert child['totalPoints'] == 300
        assert len(child['completedLessons']) == 1


class TestConcurrentReports:
    """Reports racing on the same progress record"""

    def test_retry_racing_original_lesson_pays_once(self, make_child, make_content):
        """A retried lesson report saved first makes the original's write retry and pay nothing"""
        make_child("c1")
        make_content("safety", dynamo.LEARNING_MODULE, pointsPerLesson=50, totalItems=3)
        real_save = dynamo.save_progress
        saves = []

        def save_after_retry_lands(record):
            saves.append(record.get('version'))
            if len(saves) == 1:
                listeners.on_lesson_completed("c1", "safety", 1)
            return real_save(record)

        with patch('progress_service.dynamo.save_progress', side_effect=save_after_retry_lands):
            original = listeners.on_lesson_completed("c1", "safety", 1)

        assert original.pointsEarned == 0
        assert saves == [0, 0, 1]

        stored = dynamo.get_progress("c1", "learning-module:safety:enrollment")
        assert len(stored['lessonsCompleted']) == 1
        assert stored['pointsEarned'] == 50
        assert dynamo.get_child("c1")['totalPoints'] == 50


class TestAchievementRewardRecovery:
    """A failure after a grant never loses its reward"""

    def test_failure_after_grant_keeps_reward_and_reconciles(self, make_child, make_content, make_definition):
        make_child("c1", totalPoints=950, experiencePoints=950)
        make_content("memory", pointsPerCompletion=0, bonusPoints=0)
        make_definition("first-game", [{'kind': 'games-completed', 'count': 1}], points_reward=100)

        with patch('progress_service.logic.gamification.sync_level', side_effect=RuntimeError("throttled")):
            result = listeners.on_activity_completed("c1", "game:memory:s1", CompletionOutcome(completed=True))

        assert result.outcome.reasons == ["achievements"]
        child = dynamo.get_child("c1")
        assert child['totalPoints'] == 1050
        assert child['level'] == 1
        assert dynamo_achievements.get_definition("first-game")['timesEarned'] == 1

        assert listeners.reconcile_pending() == {'reconciled': ["c1"], 'failed': []}

        child = dynamo.get_child("c1")
        assert child['totalPoints'] == 1050
        assert child['level'] == 2
