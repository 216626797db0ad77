from unittest.mock import AsyncMock, patch

import pytest

from edugame.adaptive.ai_service import AIRecommendationService
from edugame.adaptive.difficulty import AdjustmentDirection
from edugame.common.error_handling import (
    GameNotFoundError, GameNotRunningError, PersistenceError, PreconditionError,
    SessionClosedError, SessionNotFoundError, StaleWriteError
)
from edugame.domain.progress import LearningProgress, ProgressStatistics, SkillMastery
from edugame.domain.recommendation import AdaptationRecommendation
from edugame.domain.session import SessionStatus
from edugame.engine.engine import GameEngine
from edugame.events.names import GameEvents
from edugame.persistence.memory import InMemoryPersistence


class FixedAIService(AIRecommendationService):

    def __init__(self, response):
        self.response = response

    async def recommend_difficulty(self, signals):
        if isinstance(self.response, Exception):
            raise self.response
        return self.response


def question(qid, difficulty=1, points=None):
    data = {
        "id": qid,
        "type": "multiple-choice",
        "question": f"Question {qid}",
        "options": ["a", "b"],
        "correct_answer": "a",
        "difficulty": difficulty
    }
    if points is not None:
        data["points"] = points
    return data


@pytest.mark.asyncio
async def test_full_game_updates_progress(build_engine, make_quiz_definition):
    engine = await build_engine([make_quiz_definition()])
    published = []
    engine.event_bus.subscribe(GameEvents.PROGRESS_UPDATED, published.append)

    session = await engine.start_game("math-basics", "user-1")
    first = await engine.submit_answer(session.id, "4")
    second = await engine.submit_answer(session.id, "Rome")

    assert first["score"] == 10
    assert "progress" not in first
    assert second["score"] == 5
    assert second["completed"] is True
    assert second["progress"]["xp_added"] == 5

    stored = await engine.persistence.load(session.id)
    assert stored.status == SessionStatus.COMPLETED
    assert stored.performance.accuracy == 0.5
    assert stored.score == 5

    progress = await engine.get_progress("user-1", "mathematics")
    assert progress.statistics.games_completed == 1
    assert progress.experience == 5
    assert progress.recommendations[0]["type"] == "next_difficulty"
    assert progress.recommendations[0]["source"] == "fallback"
    assert progress.recommendations[1]["type"] == "learning_profile"
    assert progress.recommendations[1]["session_id"] == session.id
    assert progress.recommendations[1]["user_id"] == "user-1"
    assert progress.recommendations[1]["difficulty_adjustment"]["direction"] == "decrease"

    assert len(published) == 1
    assert published[0].data["experience"] == 5
    assert engine.get_engine_stats()["active_sessions"] == 0
    assert engine.get_engine_stats()["session_locks"] == 0


@pytest.mark.asyncio
async def test_unknown_game_is_rejected(build_engine):
    engine = await build_engine()

    with pytest.raises(GameNotFoundError):
        await engine.start_game("missing", "user-1")
    with pytest.raises(SessionNotFoundError):
        await engine.submit_answer("no-such-session", "4")


@pytest.mark.asyncio
async def test_engine_must_be_initialized(settings):
    engine = GameEngine(InMemoryPersistence(), settings=settings)

    with pytest.raises(PreconditionError):
        await engine.start_game("math-basics", "user-1")


@pytest.mark.asyncio
async def test_starting_twice_resumes_the_active_session(build_engine, make_quiz_definition):
    engine = await build_engine([make_quiz_definition()])

    first = await engine.start_game("math-basics", "user-1")
    await engine.pause_game(first.id)
    second = await engine.start_game("math-basics", "user-1")

    assert second.id == first.id
    assert second.status == SessionStatus.IN_PROGRESS
    assert [s.id for s in await engine.get_user_active_sessions("user-1")] == [first.id]


@pytest.mark.asyncio
async def test_paused_session_rejects_answers(build_engine, make_quiz_definition):
    engine = await build_engine([make_quiz_definition()])
    session = await engine.start_game("math-basics", "user-1")

    await engine.pause_game(session.id)
    with pytest.raises(GameNotRunningError):
        await engine.submit_answer(session.id, "4")

    await engine.resume_game(session.id)
    result = await engine.submit_answer(session.id, "4")
    assert result["is_correct"] is True
    stored = await engine.persistence.load(session.id)
    assert stored.status == SessionStatus.IN_PROGRESS
    assert [e["type"] for e in stored.events] == ["session_paused", "session_resumed"]


@pytest.mark.asyncio
async def test_session_is_rehydrated_by_another_engine(build_engine, make_quiz_definition):
    store = InMemoryPersistence([make_quiz_definition()])
    first_engine = await build_engine(persistence=store)
    session = await first_engine.start_game("math-basics", "user-1")
    await first_engine.submit_answer(session.id, "4")

    second_engine = await build_engine(persistence=store)
    result = await second_engine.submit_answer(session.id, "Paris")

    assert result["question_id"] == "q2"
    assert result["completed"] is True
    assert result["score"] == 20

    # The first engine still holds the older version of the session
    with pytest.raises(StaleWriteError):
        await first_engine.submit_answer(session.id, "Paris")


@pytest.mark.asyncio
@pytest.mark.parametrize("with_checkpoint", [True, False])
async def test_rehydrated_session_keeps_applied_difficulty(build_engine, make_quiz_definition, with_checkpoint):
    definition = make_quiz_definition(content={
        "questions": [question("q1"), question("q2"), question("q3")],
        "question_bank": [question("hard1", difficulty=3)]
    })
    store = InMemoryPersistence([definition])
    first_engine = await build_engine(persistence=store)
    session = await first_engine.start_game("math-basics", "user-1")
    await first_engine.submit_answer(session.id, "a")
    if with_checkpoint:
        await first_engine.save_checkpoint(session.id)
    outcome = await first_engine.adapt_difficulty(
        session.id,
        AdaptationRecommendation(new_difficulty=3, reason="instructor override", confidence=1.0, source="manual")
    )
    assert outcome["applied"] is True

    second_engine = await build_engine(persistence=store)
    shown = []
    second_engine.event_bus.subscribe(GameEvents.QUESTION_SHOWN, shown.append)

    assert (await second_engine.submit_answer(session.id, "a"))["question_id"] == "q2"
    assert shown[-1].data["question_id"] == "hard1"
    assert shown[-1].data["difficulty"] == 3

    result = await second_engine.submit_answer(session.id, "a")
    assert result["question_id"] == "hard1"
    assert result["completed"] is True


@pytest.mark.asyncio
async def test_paused_session_survives_shutdown(build_engine, make_quiz_definition):
    store = InMemoryPersistence([make_quiz_definition()])
    engine = await build_engine(persistence=store)
    session = await engine.start_game("math-basics", "user-1")
    await engine.submit_answer(session.id, "4")

    await engine.shutdown()
    assert (await store.load(session.id)).status == SessionStatus.PAUSED

    restarted = await build_engine(persistence=store)
    resumed = await restarted.resume_game(session.id)
    assert resumed.status == SessionStatus.IN_PROGRESS
    result = await restarted.submit_answer(session.id, "Paris")
    assert result["completed"] is True


@pytest.mark.asyncio
async def test_abandoned_session_is_closed(build_engine, make_quiz_definition):
    engine = await build_engine([make_quiz_definition()])
    abandoned = []
    engine.event_bus.subscribe(GameEvents.ABANDONED, abandoned.append)
    session = await engine.start_game("math-basics", "user-1")
    await engine.submit_answer(session.id, "4")

    result = await engine.abandon_game(session.id)

    assert result.status == SessionStatus.ABANDONED
    assert len(abandoned) == 1
    with pytest.raises(SessionClosedError):
        await engine.submit_answer(session.id, "Paris")
    assert await engine.get_progress("user-1", "mathematics") is None
    assert await engine.get_active_session(session.id) is None
    assert engine.lifecycle.get_lifecycle_stats()["total_games"] == 0


@pytest.mark.asyncio
async def test_complete_game_is_idempotent(build_engine, make_quiz_definition):
    engine = await build_engine([make_quiz_definition()])
    session = await engine.start_game("math-basics", "user-1")
    await engine.submit_answer(session.id, "4")

    first = await engine.complete_game(session.id, {"reason": "finished early"})
    second = await engine.complete_game(session.id)

    assert first["reason"] == "finished early"
    assert first["score"] == 10
    assert first["progress"]["applied"] is True
    assert "progress" not in second
    assert second["score"] == 10
    assert engine.get_engine_stats()["session_locks"] == 0

    progress = await engine.get_progress("user-1", "mathematics")
    assert progress.statistics.games_completed == 1


@pytest.mark.asyncio
async def test_explicit_recommendation_is_applied(build_engine, make_quiz_definition):
    definition = make_quiz_definition(questions=[question("q1"), question("q2"), question("q3")])
    engine = await build_engine([definition])
    session = await engine.start_game("math-basics", "user-1")
    await engine.submit_answer(session.id, "a")

    outcome = await engine.adapt_difficulty(
        session.id,
        AdaptationRecommendation(new_difficulty=3, reason="instructor override", confidence=1.0, source="manual")
    )

    assert outcome["applied"] is True
    assert outcome["difficulty"] == 3
    stored = await engine.persistence.load(session.id)
    assert stored.ai_adaptations[-1]["source"] == "manual"
    assert stored.performance.difficulty_changes[-1]["to"] == 3


@pytest.mark.asyncio
async def test_recommendation_from_ai_service(build_engine, make_quiz_definition):
    definition = make_quiz_definition(questions=[question("q1"), question("q2"), question("q3")])
    service = FixedAIService({"new_difficulty": 2, "reason": "ready for more", "confidence": 0.9})
    engine = await build_engine([definition], ai_service=service)
    session = await engine.start_game("math-basics", "user-1")
    await engine.submit_answer(session.id, "a")

    outcome = await engine.adapt_difficulty(session.id)

    assert outcome["applied"] is True
    assert outcome["recommendation"]["source"] == "ai"
    assert outcome["recommendation"]["reason"] == "ready for more"


@pytest.mark.asyncio
async def test_failing_ai_service_falls_back(build_engine, make_quiz_definition):
    definition = make_quiz_definition(questions=[question("q1"), question("q2"), question("q3")])
    engine = await build_engine([definition], ai_service=FixedAIService(RuntimeError("provider down")))
    session = await engine.start_game("math-basics", "user-1")
    await engine.submit_answer(session.id, "b")

    outcome = await engine.adapt_difficulty(session.id)

    assert outcome["recommendation"]["source"] == "fallback"
    assert outcome["difficulty"] == 1
    assert engine.advisor.stats["failures"] == 1


@pytest.mark.asyncio
async def test_adaptive_games_adapt_every_interval(build_engine, make_quiz_definition):
    definition = make_quiz_definition(
        content={
            "questions": [question(f"q{i}") for i in range(1, 5)],
            "question_bank": [question("hard1", difficulty=2), question("hard2", difficulty=2)]
        },
        ai_config={"adaptive_difficulty": True}
    )
    engine = await build_engine([definition])
    changes = []
    engine.event_bus.subscribe(GameEvents.DIFFICULTY_CHANGED, changes.append)
    session = await engine.start_game("math-basics", "user-1")

    await engine.submit_answer(session.id, "a")
    assert changes == []
    await engine.submit_answer(session.id, "a")

    assert len(changes) == 1
    assert changes[0].data["to"] == 2
    live = await engine.get_active_session(session.id)
    assert len(live.ai_adaptations) == 1
    result = await engine.submit_answer(session.id, "a")
    assert result["question_id"] == "q3"
    assert (await engine.submit_answer(session.id, "a"))["question_id"] == "hard1"


@pytest.mark.asyncio
async def test_level_up_is_published(build_engine, make_quiz_definition):
    definition = make_quiz_definition(questions=[question("q1", points=60), question("q2", points=60)])
    engine = await build_engine([definition])
    level_ups = []
    engine.event_bus.subscribe(GameEvents.LEVEL_UP, level_ups.append)
    session = await engine.start_game("math-basics", "user-1")

    await engine.submit_answer(session.id, "a")
    result = await engine.submit_answer(session.id, "a")

    assert result["progress"]["level_up"] is True
    assert len(level_ups) == 1
    assert (level_ups[0].data["old_level"], level_ups[0].data["new_level"]) == (1, 2)


@pytest.mark.asyncio
async def test_persistence_errors_propagate(build_engine, make_quiz_definition):
    engine = await build_engine([make_quiz_definition()])
    session = await engine.start_game("math-basics", "user-1")

    with patch.object(engine.persistence, "save", AsyncMock(side_effect=PersistenceError("disk full"))):
        with pytest.raises(PersistenceError):
            await engine.submit_answer(session.id, "4")


@pytest.mark.asyncio
async def test_checkpoint_and_progress_updates_are_persisted(build_engine, make_quiz_definition):
    engine = await build_engine([make_quiz_definition()])
    session = await engine.start_game("math-basics", "user-1")

    progress = await engine.update_progress(session.id, {"bonus_round": True})
    checkpoint = await engine.save_checkpoint(session.id, {"note": "before q1"})
    hint = await engine.use_hint(session.id)

    assert progress["bonus_round"] is True
    assert hint == "Count on your fingers"
    stored = await engine.persistence.load(session.id)
    assert stored.progress.extra["bonus_round"] is True
    assert stored.last_checkpoint.id == checkpoint.id
    assert stored.last_checkpoint.data["note"] == "before q1"
    assert stored.performance.hints_used == 1


@pytest.mark.asyncio
async def test_finishing_by_skip_releases_the_session_lock(build_engine, make_quiz_definition):
    engine = await build_engine([make_quiz_definition(config={"allow_skip": True})])
    session = await engine.start_game("math-basics", "user-1")
    await engine.submit_answer(session.id, "4")
    assert engine.get_engine_stats()["session_locks"] == 1

    result = await engine.skip_question(session.id)

    assert result["progress"]["applied"] is True
    assert engine.get_engine_stats()["session_locks"] == 0
    assert (await engine.persistence.load(session.id)).status == SessionStatus.COMPLETED


@pytest.fixture
def catalog(make_quiz_definition):
    return [
        make_quiz_definition(),
        make_quiz_definition("algebra", difficulty=5),
        make_quiz_definition("fraction-drill", difficulty=5, metadata={"skills": ["fractions"]}),
        make_quiz_definition("word-problems", difficulty=3),
        make_quiz_definition("map-reading", subject="geography", difficulty=2),
        make_quiz_definition("memory-match", type="memory", difficulty=2),
    ]


async def seed_progress(persistence):
    await persistence.save_progress(LearningProgress(
        user_id="user-1",
        subject="mathematics",
        skill_mastery={"fractions": SkillMastery("fractions", attempts=10, correct=2)},
        weak_areas=["fractions"],
        statistics=ProgressStatistics(games_completed=10, total_play_time=600, average_accuracy=0.6)
    ))


@pytest.mark.asyncio
async def test_learning_profile_spans_progress_and_session(build_engine, catalog):
    persistence = InMemoryPersistence(catalog)
    await seed_progress(persistence)
    engine = await build_engine(persistence=persistence)

    profile = await engine.get_learning_profile("user-1")
    assert profile.level == 4
    assert profile.weaknesses == ["fractions"]
    assert profile.content_focus.areas == ["fractions"]
    assert profile.difficulty_adjustment.direction == AdjustmentDirection.MAINTAIN
    assert profile.target_difficulty == 2

    session = await engine.start_game("math-basics", "user-1")
    await engine.submit_answer(session.id, "4", response_time_ms=3000)
    profile = await engine.get_learning_profile("user-1", session.id)
    assert profile.difficulty_adjustment.direction == AdjustmentDirection.INCREASE
    assert profile.target_difficulty == 3

    with pytest.raises(SessionNotFoundError):
        await engine.get_learning_profile("user-1", "missing")


@pytest.mark.asyncio
async def test_recommend_games_uses_profile_and_registered_types(build_engine, catalog):
    persistence = InMemoryPersistence(catalog)
    await seed_progress(persistence)
    engine = await build_engine(persistence=persistence)

    suggested = await engine.recommend_games("user-1")
    assert [d.id for d in suggested] == ["fraction-drill", "map-reading", "math-basics", "word-problems"]

    suggested = await engine.recommend_games("user-1", limit=2, subject="mathematics")
    assert [d.id for d in suggested] == ["fraction-drill", "math-basics"]
