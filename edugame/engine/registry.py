"""
Game Type Registry

Maps a game type tag to the factory that builds its runtime, plus optional
content validators and reusable game templates.
"""

import copy
import uuid
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple

from edugame.common.error_handling import ConfigurationError, GameTypeNotRegisteredError, NotFoundError
from edugame.common.logger import app_logger
from edugame.domain.game import GameDefinition
from edugame.engine.base_game import BaseGame

# Module logger
logger = app_logger.getChild("engine.registry")

GameFactory = Callable[[GameDefinition], BaseGame]
GameValidator = Callable[[GameDefinition], List[str]]


@dataclass
class GameTypeInfo:
    """Descriptive metadata for a registered game type."""
    type_id: str
    factory: GameFactory
    name: str = ""
    description: str = ""
    category: str = "general"
    subjects: List[str] = field(default_factory=lambda: ["*"])
    grade_range: Tuple[int, int] = (1, 12)
    features: List[str] = field(default_factory=list)
    validator: Optional[GameValidator] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        self.name = self.name or self.type_id

    def supports_subject(self, subject: str) -> bool:
        return "*" in self.subjects or subject in self.subjects

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type_id": self.type_id,
            "name": self.name,
            "description": self.description,
            "category": self.category,
            "subjects": list(self.subjects),
            "grade_range": list(self.grade_range),
            "features": list(self.features),
            "metadata": dict(self.metadata)
        }


@dataclass
class GameTemplate:
    """Default definition values for creating games of one type."""
    id: str
    type_id: str
    name: str = ""
    description: str = ""
    default_definition: Dict[str, Any] = field(default_factory=dict)
    default_content: Dict[str, Any] = field(default_factory=dict)


def default_validator(definition: GameDefinition) -> List[str]:
    """Validation applied to types that register no validator of their own."""
    errors = []
    if not definition.title or not definition.title.strip():
        errors.append("Game title is required")
    if not definition.subject:
        errors.append("Game subject is required")
    return errors


class GameRegistry:
    """Registry of game types and templates"""

    def __init__(self):
        self._types: Dict[str, GameTypeInfo] = {}
        self._templates: Dict[str, GameTemplate] = {}

    def register_game_type(
        self,
        type_id: str,
        factory: GameFactory,
        info: Optional[Dict[str, Any]] = None
    ) -> GameTypeInfo:
        """
        Register a game type.

        Args:
            type_id: Type tag used by game definitions
            factory: Callable building a runtime from a GameDefinition
            info: Optional descriptive fields (name, description, category,
                subjects, grade_range, features, validator, metadata)

        Returns:
            The registered type info
        """
        if not callable(factory):
            raise ConfigurationError(f"Factory for game type {type_id} is not callable")

        info = dict(info or {})
        type_info = GameTypeInfo(
            type_id=type_id,
            factory=factory,
            name=info.get("name", ""),
            description=info.get("description", ""),
            category=info.get("category", "general"),
            subjects=list(info.get("subjects", ["*"])),
            grade_range=tuple(info.get("grade_range", (1, 12))),
            features=list(info.get("features", [])),
            validator=info.get("validator"),
            metadata=dict(info.get("metadata", {}))
        )
        if type_id in self._types:
            logger.warning(f"Game type {type_id} re-registered")
        self._types[type_id] = type_info
        logger.info(f"Registered game type: {type_id}")
        return type_info

    def unregister_game_type(self, type_id: str) -> bool:
        removed = self._types.pop(type_id, None) is not None
        if removed:
            self._templates = {k: t for k, t in self._templates.items() if t.type_id != type_id}
        return removed

    def has_game_type(self, type_id: str) -> bool:
        return type_id in self._types

    def get_game_type_info(self, type_id: str) -> Optional[GameTypeInfo]:
        return self._types.get(type_id)

    def get_all_game_types(self) -> List[GameTypeInfo]:
        return list(self._types.values())

    def get_game_types_by_subject(self, subject: str) -> List[GameTypeInfo]:
        return [t for t in self._types.values() if t.supports_subject(subject)]

    def get_game_types_by_category(self, category: str) -> List[GameTypeInfo]:
        return [t for t in self._types.values() if t.category == category]

    def search_game_types(
        self,
        name: Optional[str] = None,
        category: Optional[str] = None,
        subject: Optional[str] = None,
        grade: Optional[int] = None,
        features: Optional[List[str]] = None
    ) -> List[GameTypeInfo]:
        results = []
        for info in self._types.values():
            if name and name.lower() not in info.name.lower():
                continue
            if category and info.category != category:
                continue
            if subject and not info.supports_subject(subject):
                continue
            if grade is not None and not (info.grade_range[0] <= grade <= info.grade_range[1]):
                continue
            if features and not all(f in info.features for f in features):
                continue
            results.append(info)
        return results

    def validate_definition(self, definition: GameDefinition) -> List[str]:
        """Return the validation errors for a definition (empty when valid)."""
        info = self._types.get(definition.type)
        if info is None:
            raise GameTypeNotRegisteredError(definition.type)
        validator = info.validator or default_validator
        return list(validator(definition))

    def create_game_instance(self, definition: GameDefinition) -> BaseGame:
        """
        Build a runtime for a definition.

        Raises:
            GameTypeNotRegisteredError: If the definition's type is unknown
            ConfigurationError: If the definition fails validation
        """
        errors = self.validate_definition(definition)
        if errors:
            raise ConfigurationError(
                f"Invalid definition for game {definition.id}",
                details={"game_id": definition.id, "errors": errors}
            )
        return self._types[definition.type].factory(definition)

    # ------------------------------------------------------------------
    # Templates
    # ------------------------------------------------------------------

    def register_template(self, template: GameTemplate) -> GameTemplate:
        if template.type_id not in self._types:
            raise ConfigurationError(f"Invalid game type in template {template.id}: {template.type_id}")
        self._templates[template.id] = template
        logger.info(f"Registered game template: {template.id}")
        return template

    def get_template(self, template_id: str) -> Optional[GameTemplate]:
        return self._templates.get(template_id)

    def get_templates_for_type(self, type_id: str) -> List[GameTemplate]:
        return [t for t in self._templates.values() if t.type_id == type_id]

    def create_from_template(self, template_id: str, overrides: Optional[Dict[str, Any]] = None) -> GameDefinition:
        """Build a game definition from a template and overrides."""
        template = self._templates.get(template_id)
        if template is None:
            raise NotFoundError("Template", template_id)

        overrides = copy.deepcopy(overrides or {})
        data = copy.deepcopy(template.default_definition)
        content = copy.deepcopy(template.default_content)
        content.update(overrides.pop("content", {}))
        config = dict(data.get("config", {}))
        config.update(overrides.pop("config", {}))
        data.update(overrides)
        data.update({"type": template.type_id, "content": content, "config": config})
        data.setdefault("id", str(uuid.uuid4()))
        data.setdefault("title", template.name)
        return GameDefinition.from_dict(data)

    def get_registry_stats(self) -> Dict[str, Any]:
        by_category: Dict[str, int] = {}
        by_subject: Dict[str, int] = {}
        for info in self._types.values():
            by_category[info.category] = by_category.get(info.category, 0) + 1
            for subject in info.subjects:
                by_subject[subject] = by_subject.get(subject, 0) + 1
        return {
            "total_game_types": len(self._types),
            "total_templates": len(self._templates),
            "game_types_by_category": by_category,
            "game_types_by_subject": by_subject
        }

    def clear(self) -> None:
        self._types.clear()
        self._templates.clear()
