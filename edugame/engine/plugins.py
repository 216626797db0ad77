"""
Game Plugin System

Plugins register game types, templates and hooks at startup. Load order is
resolved once, deterministically, from each plugin's declared dependencies;
cycles and unknown dependencies are configuration errors.
"""

import inspect
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Set

from edugame.common.error_handling import ConfigurationError, NotFoundError
from edugame.common.logger import app_logger
from edugame.events.bus import EventBus, GameEvent

# Module logger
logger = app_logger.getChild("engine.plugins")

PluginHook = Callable[[Any], Any]


@dataclass
class GamePlugin:
    """Declaration of a plugin."""
    id: str
    name: str
    initialize: Callable[['PluginContext'], Any]
    version: str = "1.0.0"
    game_types: List[str] = field(default_factory=lambda: ["*"])
    dependencies: List[str] = field(default_factory=list)
    hooks: Dict[str, PluginHook] = field(default_factory=dict)
    api: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if not self.id or not self.name or not self.version or not callable(self.initialize):
            raise ConfigurationError("Plugin must have id, name, version, and initialize function")

    def applies_to(self, game_type: str) -> bool:
        return "*" in self.game_types or game_type in self.game_types


@dataclass
class PluginContext:
    """What a plugin sees while initializing."""
    plugin_id: str
    registry: Any
    event_bus: Optional[EventBus]
    system: 'PluginSystem'

    def get_plugin_api(self, plugin_id: str) -> Optional[Dict[str, Any]]:
        plugin = self.system.get_plugin(plugin_id)
        return plugin.api if plugin else None

    def register_hook(self, hook_name: str, handler: PluginHook) -> None:
        self.system.register_hook(self.plugin_id, hook_name, handler)


class PluginSystem:
    """Registry and loader for game plugins"""

    def __init__(self):
        self._plugins: Dict[str, GamePlugin] = {}
        self._hooks: Dict[str, List[tuple]] = {}
        self.load_order: List[str] = []
        self._loaded: Set[str] = set()

    def register(self, plugin: GamePlugin) -> GamePlugin:
        if plugin.id in self._plugins:
            raise ConfigurationError(f"Plugin already registered: {plugin.id}")
        self._plugins[plugin.id] = plugin
        for hook_name, handler in plugin.hooks.items():
            self.register_hook(plugin.id, hook_name, handler)
        logger.info(f"Registered plugin: {plugin.name} v{plugin.version}")
        return plugin

    def get_plugin(self, plugin_id: str) -> Optional[GamePlugin]:
        return self._plugins.get(plugin_id)

    def get_plugins_for_game_type(self, game_type: str) -> List[GamePlugin]:
        return [p for p in self._plugins.values() if p.applies_to(game_type)]

    def register_hook(self, plugin_id: str, hook_name: str, handler: PluginHook) -> None:
        self._hooks.setdefault(hook_name, []).append((plugin_id, handler))

    def hook_names(self) -> List[str]:
        return list(self._hooks.keys())

    def resolve_load_order(self) -> List[str]:
        """
        Topologically sort plugins by their dependencies.

        Plugins are visited in registration order and dependencies in
        declaration order, so the result is deterministic.

        Raises:
            ConfigurationError: On a dependency cycle or an unknown dependency
        """
        ordered: List[str] = []
        visited: Set[str] = set()
        visiting: List[str] = []

        def visit(plugin_id: str) -> None:
            if plugin_id in visited:
                return
            if plugin_id in visiting:
                cycle = visiting[visiting.index(plugin_id):] + [plugin_id]
                raise ConfigurationError(
                    f"Circular plugin dependency: {' -> '.join(cycle)}",
                    details={"cycle": cycle}
                )
            visiting.append(plugin_id)
            for dependency in self._plugins[plugin_id].dependencies:
                if dependency not in self._plugins:
                    raise ConfigurationError(
                        f"Plugin {plugin_id} depends on unknown plugin {dependency}",
                        details={"plugin_id": plugin_id, "dependency": dependency}
                    )
                visit(dependency)
            visiting.pop()
            visited.add(plugin_id)
            ordered.append(plugin_id)

        for plugin_id in self._plugins:
            visit(plugin_id)
        return ordered

    async def initialize_all(self, registry: Any, event_bus: Optional[EventBus] = None) -> List[str]:
        """Initialize every plugin in dependency order."""
        for plugin_id in self.resolve_load_order():
            plugin = self._plugins[plugin_id]
            if plugin_id in self._loaded:
                continue
            context = PluginContext(plugin_id=plugin_id, registry=registry, event_bus=event_bus, system=self)
            try:
                result = plugin.initialize(context)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(f"Failed to initialize plugin {plugin.name}: {e}", exc_info=True)
                raise
            self._loaded.add(plugin_id)
            self.load_order.append(plugin_id)
            logger.info(f"Initialized plugin: {plugin.name}")

        logger.info(f"Initialized {len(self.load_order)} plugins")
        return list(self.load_order)

    async def execute_hook(self, hook_name: str, context: Any = None) -> List[Dict[str, Any]]:
        """
        Run a hook on every loaded plugin that registered it.

        A failing plugin is logged and reported in the results; it never
        stops the remaining plugins.
        """
        results = []
        for plugin_id, handler in list(self._hooks.get(hook_name, [])):
            plugin = self._plugins.get(plugin_id)
            if plugin is None or plugin_id not in self._loaded:
                continue
            try:
                result = handler(context)
                if inspect.isawaitable(result):
                    result = await result
                results.append({"plugin_id": plugin_id, "result": result})
            except Exception as e:
                logger.error(f"Hook {hook_name} failed in plugin {plugin_id}: {e}", exc_info=True)
                results.append({"plugin_id": plugin_id, "error": str(e)})
        return results

    def bind_event_hooks(self, event_bus: EventBus) -> None:
        """Route bus events to plugin hooks registered under the same event name."""
        for hook_name in self.hook_names():
            if ":" not in hook_name:
                continue

            async def relay(event: GameEvent, _name: str = hook_name):
                await self.execute_hook(_name, event)

            event_bus.on_async(hook_name, relay)

    async def disable_plugin(self, plugin_id: str) -> None:
        plugin = self._plugins.get(plugin_id)
        if plugin is None:
            raise NotFoundError("Plugin", plugin_id)
        if plugin_id not in self._loaded:
            return
        for dependent in self.get_dependent_plugins(plugin_id):
            await self.disable_plugin(dependent)
        await self.execute_hook("plugin:cleanup", {"plugin_id": plugin_id})
        self._loaded.discard(plugin_id)
        if plugin_id in self.load_order:
            self.load_order.remove(plugin_id)
        logger.info(f"Disabled plugin: {plugin.name}")

    def get_dependent_plugins(self, plugin_id: str) -> List[str]:
        return [p.id for p in self._plugins.values() if plugin_id in p.dependencies]

    def get_plugin_stats(self) -> Dict[str, Any]:
        by_game_type: Dict[str, int] = {}
        for plugin in self._plugins.values():
            for game_type in plugin.game_types:
                by_game_type[game_type] = by_game_type.get(game_type, 0) + 1
        return {
            "total": len(self._plugins),
            "loaded": len(self._loaded),
            "by_game_type": by_game_type
        }

    async def cleanup(self) -> None:
        for plugin_id in reversed(list(self.load_order)):
            await self.disable_plugin(plugin_id)
        self._plugins.clear()
        self._hooks.clear()
        self.load_order = []
