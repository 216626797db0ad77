"""Event names published on the game event bus."""


class GameEvents:
    """Namespace of event-name constants"""

    # Game lifecycle
    INITIALIZED = "game:initialized"
    STARTED = "game:started"
    PAUSED = "game:paused"
    RESUMED = "game:resumed"
    COMPLETED = "game:completed"
    ABANDONED = "game:abandoned"
    ERROR = "game:error"
    LOADED = "game:loaded"
    UNLOADED = "game:unloaded"
    STATE_CHANGED = "game:state-changed"

    # Gameplay
    PROGRESS = "game:progress"
    CHECKPOINT_SAVED = "game:checkpoint-saved"
    CHECKPOINT_RESTORED = "game:checkpoint-restored"
    ANSWER_RECORDED = "game:answer-recorded"
    HINT_USED = "game:hint-used"
    DIFFICULTY_CHANGED = "game:difficulty-changed"

    # Quiz variant
    QUESTION_SHOWN = "quiz:question-shown"

    # Learning progress
    PROGRESS_UPDATED = "progress:updated"
    LEVEL_UP = "progress:level-up"

    # Bus internals
    BUS_ERROR = "eventbus:error"

    WILDCARD = "*"
