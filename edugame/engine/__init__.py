"""
Engine Module

Lifecycle state machine, the game runtime contract, the game-type registry
and the plugin system. The engine context object lives in
``edugame.engine.engine``.
"""

from edugame.engine.base_game import BaseGame
from edugame.engine.lifecycle import LifecycleManager, LifecycleState
from edugame.engine.plugins import GamePlugin, PluginContext, PluginSystem
from edugame.engine.registry import GameRegistry, GameTemplate, GameTypeInfo

__all__ = [
    "BaseGame",
    "LifecycleManager",
    "LifecycleState",
    "GamePlugin",
    "PluginContext",
    "PluginSystem",
    "GameRegistry",
    "GameTemplate",
    "GameTypeInfo",
]
