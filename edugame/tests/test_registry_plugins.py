import pytest

from edugame.common.error_handling import (
    ConfigurationError, GameTypeNotRegisteredError, NotFoundError
)
from edugame.domain.game import GameDefinition
from edugame.engine.plugins import GamePlugin, PluginSystem
from edugame.engine.registry import GameRegistry, GameTemplate
from edugame.events.bus import EventBus
from edugame.events.names import GameEvents
from edugame.games.quiz import QUIZ_PLUGIN, QuizGame, validate_quiz


@pytest.fixture
def registry():
    reg = GameRegistry()
    reg.register_game_type("quiz", QuizGame, {
        "name": "Quiz",
        "category": "assessment",
        "subjects": ["mathematics", "science"],
        "grade_range": (3, 8),
        "features": ["hints", "skip"],
        "validator": validate_quiz
    })
    return reg


def _noop(context):
    return None


# ----------------------------------------------------------------------
# Registry
# ----------------------------------------------------------------------

def test_create_game_instance(registry, make_quiz_definition):
    game = registry.create_game_instance(make_quiz_definition())

    assert isinstance(game, QuizGame)
    assert game.id == "math-basics"


def test_unknown_type_is_rejected(registry):
    definition = GameDefinition(id="puzzle-1", type="puzzle", title="Puzzle")

    with pytest.raises(GameTypeNotRegisteredError):
        registry.create_game_instance(definition)


def test_invalid_definition_lists_validator_errors(registry):
    definition = GameDefinition(id="quiz-1", type="quiz", title="", content={"questions": []})

    with pytest.raises(ConfigurationError) as exc_info:
        registry.create_game_instance(definition)

    assert exc_info.value.details["errors"] == [
        "Game title is required",
        "Quiz must contain at least one question"
    ]


def test_non_callable_factory_is_rejected(registry):
    with pytest.raises(ConfigurationError):
        registry.register_game_type("broken", "not a factory")


def test_search_game_types(registry):
    registry.register_game_type("memory", QuizGame, {"name": "Memory match", "category": "practice"})

    assert [t.type_id for t in registry.search_game_types(name="MEMORY")] == ["memory"]
    assert [t.type_id for t in registry.search_game_types(category="assessment")] == ["quiz"]
    assert [t.type_id for t in registry.search_game_types(subject="history")] == ["memory"]
    assert [t.type_id for t in registry.search_game_types(grade=10)] == ["memory"]
    assert [t.type_id for t in registry.search_game_types(features=["hints", "skip"])] == ["quiz"]
    assert len(registry.get_game_types_by_subject("mathematics")) == 2


def test_templates_merge_overrides(registry):
    registry.register_template(GameTemplate(
        id="short-quiz",
        type_id="quiz",
        name="Short quiz",
        default_definition={"subject": "mathematics", "difficulty": 2, "config": {"points_per_correct": 5}},
        default_content={"questions": [{"id": "t1", "type": "true-false", "question": "1 < 2?",
                                        "correct_answer": True}]}
    ))

    definition = registry.create_from_template("short-quiz", {
        "id": "my-quiz",
        "config": {"allow_skip": True}
    })

    assert definition.id == "my-quiz"
    assert definition.type == "quiz"
    assert definition.title == "Short quiz"
    assert definition.difficulty == 2
    assert definition.config == {"points_per_correct": 5, "allow_skip": True}
    assert definition.content["questions"][0]["id"] == "t1"
    assert registry.get_templates_for_type("quiz")[0].id == "short-quiz"


def test_template_errors(registry):
    with pytest.raises(ConfigurationError):
        registry.register_template(GameTemplate(id="x", type_id="puzzle"))
    with pytest.raises(NotFoundError):
        registry.create_from_template("missing")


def test_unregister_drops_templates_and_stats(registry):
    registry.register_template(GameTemplate(id="t", type_id="quiz"))
    stats = registry.get_registry_stats()
    assert stats["total_game_types"] == 1
    assert stats["total_templates"] == 1
    assert stats["game_types_by_subject"] == {"mathematics": 1, "science": 1}

    assert registry.unregister_game_type("quiz") is True
    assert registry.get_template("t") is None
    assert registry.unregister_game_type("quiz") is False


# ----------------------------------------------------------------------
# Plugins
# ----------------------------------------------------------------------

def test_plugin_requires_core_fields():
    with pytest.raises(ConfigurationError):
        GamePlugin(id="", name="Nameless", initialize=_noop)


def test_duplicate_plugin_registration_fails():
    system = PluginSystem()
    system.register(GamePlugin(id="a", name="A", initialize=_noop))

    with pytest.raises(ConfigurationError):
        system.register(GamePlugin(id="a", name="A again", initialize=_noop))


@pytest.mark.asyncio
async def test_dependencies_load_first_in_deterministic_order():
    system = PluginSystem()
    loaded = []

    async def record(context):
        loaded.append(context.plugin_id)

    system.register(GamePlugin(id="c", name="C", initialize=record, dependencies=["a", "b"]))
    system.register(GamePlugin(id="b", name="B", initialize=record, dependencies=["a"]))
    system.register(GamePlugin(id="a", name="A", initialize=record))

    order = await system.initialize_all(GameRegistry())

    assert order == ["a", "b", "c"]
    assert loaded == ["a", "b", "c"]
    assert system.get_plugin_stats()["loaded"] == 3


def test_dependency_cycle_is_reported():
    system = PluginSystem()
    system.register(GamePlugin(id="a", name="A", initialize=_noop, dependencies=["b"]))
    system.register(GamePlugin(id="b", name="B", initialize=_noop, dependencies=["a"]))

    with pytest.raises(ConfigurationError) as exc_info:
        system.resolve_load_order()

    assert exc_info.value.details["cycle"] == ["a", "b", "a"]


def test_unknown_dependency_is_reported():
    system = PluginSystem()
    system.register(GamePlugin(id="a", name="A", initialize=_noop, dependencies=["ghost"]))

    with pytest.raises(ConfigurationError) as exc_info:
        system.resolve_load_order()

    assert exc_info.value.details["dependency"] == "ghost"


@pytest.mark.asyncio
async def test_failing_hook_does_not_stop_other_plugins():
    system = PluginSystem()

    def broken(context):
        raise RuntimeError("hook failed")

    async def healthy(context):
        return context["value"] * 2

    system.register(GamePlugin(id="a", name="A", initialize=_noop, hooks={"custom": broken}))
    system.register(GamePlugin(id="b", name="B", initialize=_noop, hooks={"custom": healthy}))
    await system.initialize_all(GameRegistry())

    results = await system.execute_hook("custom", {"value": 21})

    assert results == [
        {"plugin_id": "a", "error": "hook failed"},
        {"plugin_id": "b", "result": 42}
    ]


@pytest.mark.asyncio
async def test_event_hooks_are_bound_to_the_bus():
    system = PluginSystem()
    seen = []
    system.register(GamePlugin(
        id="a", name="A", initialize=_noop,
        hooks={GameEvents.COMPLETED: lambda event: seen.append(event.data["score"]), "internal": _noop}
    ))
    bus = EventBus()
    await system.initialize_all(GameRegistry(), bus)
    system.bind_event_hooks(bus)

    await bus.publish(GameEvents.COMPLETED, {"game_id": "g1", "score": 30})

    assert seen == [30]
    assert bus.listener_count("internal") == 0


@pytest.mark.asyncio
async def test_disabling_a_plugin_disables_its_dependents():
    system = PluginSystem()
    calls = []
    system.register(GamePlugin(id="a", name="A", initialize=_noop))
    system.register(GamePlugin(id="b", name="B", initialize=_noop, dependencies=["a"],
                               hooks={"custom": lambda ctx: calls.append("b")}))
    await system.initialize_all(GameRegistry())

    await system.disable_plugin("a")

    assert system.load_order == []
    assert await system.execute_hook("custom") == []
    assert calls == []
    with pytest.raises(NotFoundError):
        await system.disable_plugin("ghost")


@pytest.mark.asyncio
async def test_quiz_plugin_registers_type_and_templates():
    system = PluginSystem()
    registry = GameRegistry()
    system.register(QUIZ_PLUGIN)
    await system.initialize_all(registry, EventBus())

    assert registry.has_game_type("quiz")
    assert {t.id for t in registry.get_templates_for_type("quiz")} == {"basic-quiz", "math-quiz"}

    definition = registry.create_from_template("math-quiz", {
        "title": "Times tables",
        "content": {"questions": [{"id": "m1", "type": "text", "question": "3 x 4?", "correct_answer": "12"}]}
    })
    assert definition.subject == "mathematics"
    assert isinstance(registry.create_game_instance(definition), QuizGame)
