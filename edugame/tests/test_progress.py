import datetime
import unittest

from edugame.common.error_handling import PreconditionError, ValidationError
from edugame.domain.progress import LearningProgress
from edugame.domain.session import GameSession, QuestionResult

TODAY = datetime.date(2024, 3, 10)


def completed_session(score=0, skills=(), game_id="game-1"):
    """Build a completed session; ``skills`` is a sequence of (skill, is_correct)."""
    session = GameSession(game_id=game_id, user_id="user-1")
    session.start()
    for index, (skill, is_correct) in enumerate(skills):
        session.record_question_result(QuestionResult(
            question_id=f"q{index}", answer="a", is_correct=is_correct, skill_area=skill
        ))
    session.score = score
    session.complete()
    return session


class TestExperienceAndLevels(unittest.TestCase):

    def setUp(self):
        self.progress = LearningProgress(user_id="user-1", subject="mathematics")

    def test_level_is_derived_from_experience(self):
        first = self.progress.update_from_game_result(completed_session(score=50), today=TODAY)
        self.assertEqual(self.progress.experience, 50)
        self.assertEqual(self.progress.current_level, 1)
        self.assertFalse(first["level_up"])
        self.assertTrue(first["applied"])

        second = self.progress.update_from_game_result(completed_session(score=60), today=TODAY)
        self.assertEqual(self.progress.experience, 110)
        self.assertEqual(self.progress.current_level, 2)
        self.assertTrue(second["level_up"])
        self.assertEqual((second["old_level"], second["new_level"]), (1, 2))

        level_ups = [a for a in self.progress.achievements if a["type"] == "level_up"]
        self.assertEqual(len(level_ups), 1)
        self.assertEqual(level_ups[0]["level"], 2)

    def test_negative_score_adds_no_experience(self):
        result = self.progress.update_from_game_result(completed_session(score=-15), today=TODAY)

        self.assertEqual(result["xp_added"], 0)
        self.assertEqual(self.progress.experience, 0)
        self.assertEqual(self.progress.statistics.games_completed, 1)

    def test_identity_is_required(self):
        with self.assertRaises(ValidationError) as ctx:
            LearningProgress(user_id="user-1", subject="")
        self.assertEqual(ctx.exception.details["field"], "subject")

    def test_only_completed_sessions_are_accepted(self):
        session = GameSession(game_id="game-1", user_id="user-1")

        with self.assertRaises(PreconditionError):
            self.progress.update_from_game_result(session)
        self.assertEqual(self.progress.statistics.games_completed, 0)

    def test_same_session_is_applied_once(self):
        session = completed_session(score=40, skills=[("addition", True)])
        self.progress.update_from_game_result(session, today=TODAY)
        repeat = self.progress.update_from_game_result(session, today=TODAY)

        self.assertFalse(repeat["applied"])
        self.assertEqual(repeat["xp_added"], 0)
        self.assertEqual(self.progress.experience, 40)
        self.assertEqual(self.progress.statistics.games_completed, 1)
        self.assertEqual(self.progress.skill_mastery["addition"].attempts, 1)

    def test_statistics_aggregate_across_sessions(self):
        self.progress.update_from_game_result(
            completed_session(skills=[("a", True), ("a", False)]), today=TODAY
        )
        self.progress.update_from_game_result(
            completed_session(skills=[("a", True), ("b", True)]), today=TODAY
        )

        stats = self.progress.statistics
        self.assertEqual(stats.questions_answered, 4)
        self.assertEqual(stats.correct_answers, 3)
        self.assertAlmostEqual(stats.average_accuracy, 0.75)
        self.assertEqual(len(self.progress.completed_games), 2)


class TestSkillMastery(unittest.TestCase):

    def setUp(self):
        self.progress = LearningProgress(user_id="user-1", subject="mathematics")

    def test_weak_and_strong_areas_need_minimum_attempts(self):
        skills = (
            [("fractions", False)] * 4 + [("fractions", True)]
            + [("addition", True)] * 5
            + [("geometry", False)] * 4
        )
        self.progress.update_from_game_result(completed_session(skills=skills), today=TODAY)

        self.assertEqual(self.progress.weak_areas, ["fractions"])
        self.assertEqual(self.progress.strong_areas, ["addition"])
        self.assertAlmostEqual(self.progress.skill_mastery["fractions"].mastery, 0.2)
        self.assertNotIn("geometry", self.progress.weak_areas)

    def test_untagged_results_are_ignored(self):
        self.progress.update_from_game_result(completed_session(skills=[(None, True)]), today=TODAY)
        self.assertEqual(self.progress.skill_mastery, {})


class TestStreaksAndSnapshots(unittest.TestCase):

    def setUp(self):
        self.progress = LearningProgress(user_id="user-1", subject="mathematics")

    def test_consecutive_days_extend_the_streak(self):
        self.progress.update_streak(TODAY)
        self.progress.update_streak(TODAY)
        self.progress.update_streak(TODAY + datetime.timedelta(days=1))

        self.assertEqual(self.progress.statistics.current_streak, 2)
        self.assertEqual(self.progress.statistics.longest_streak, 2)

    def test_gap_resets_the_streak_but_keeps_longest(self):
        self.progress.update_streak(TODAY)
        self.progress.update_streak(TODAY + datetime.timedelta(days=1))
        self.progress.update_streak(TODAY + datetime.timedelta(days=5))

        self.assertEqual(self.progress.statistics.current_streak, 1)
        self.assertEqual(self.progress.statistics.longest_streak, 2)

    def test_monthly_snapshot_is_upserted_per_month(self):
        march = datetime.datetime(2024, 3, 1)
        self.progress.record_monthly_progress(march)
        self.progress.experience = 150
        self.progress.current_level = 2
        self.progress.record_monthly_progress(march + datetime.timedelta(days=10))
        self.progress.record_monthly_progress(datetime.datetime(2024, 4, 2))

        monthly = self.progress.statistics.monthly_progress
        self.assertEqual([m["month"] for m in monthly], ["2024-03", "2024-04"])
        self.assertEqual(monthly[0]["level"], 2)

    def test_weekly_minutes_accumulate_and_reset(self):
        self.progress.update_weekly_progress(20)
        self.progress.update_weekly_progress(15)
        self.assertEqual(self.progress.statistics.weekly_current_minutes, 35)

        self.progress.reset_weekly_goals()
        self.assertEqual(self.progress.statistics.weekly_current_minutes, 0)

    def test_serialization_round_trip(self):
        self.progress.update_from_game_result(
            completed_session(score=120, skills=[("addition", True)]), today=TODAY
        )
        self.progress.add_recommendation({"type": "next_difficulty", "recommended_difficulty": 2})
        self.progress.add_to_learning_path({"game_id": "game-2"})

        restored = LearningProgress.from_dict(self.progress.to_dict())

        self.assertEqual(restored.to_dict(), self.progress.to_dict())
        self.assertEqual(restored.statistics.last_streak_date, TODAY)


if __name__ == "__main__":
    unittest.main()
