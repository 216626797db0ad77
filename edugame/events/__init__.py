"""
Events Module

In-process publish/subscribe event bus and the event names it carries.
"""

from edugame.events.bus import EventBus, EventChain, GameEvent
from edugame.events.names import GameEvents

__all__ = ["EventBus", "EventChain", "GameEvent", "GameEvents"]
