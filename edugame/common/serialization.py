"""
Serialization helpers for the domain records.

Records are stored as plain JSON-compatible dictionaries: datetimes and
dates become ISO strings, enums their values, and nested records the
output of their own ``to_dict``.
"""

import json
import datetime
from enum import Enum
from dataclasses import is_dataclass, fields
from typing import Any, Dict, List, Optional

_SCALARS = (str, int, float, bool, type(None))


def serialize(obj: Any, exclude_none: bool = False) -> Any:
    """
    Convert ``obj`` into a JSON-compatible value.

    Dictionary keys are coerced to strings. Objects with a ``to_dict``
    method are trusted to produce their own representation; other
    dataclasses and plain objects are walked field by field (private
    attributes skipped). Anything else falls back to ``str``.
    """
    if isinstance(obj, _SCALARS):
        return obj
    if isinstance(obj, (datetime.datetime, datetime.date)):
        return obj.isoformat()
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, dict):
        return {
            str(key): serialize(value, exclude_none)
            for key, value in obj.items()
            if not (exclude_none and value is None)
        }
    if isinstance(obj, (list, tuple, set)):
        return [serialize(item, exclude_none) for item in obj]

    if callable(getattr(obj, "to_dict", None)):
        return serialize(obj.to_dict(), exclude_none)
    if is_dataclass(obj):
        return serialize({f.name: getattr(obj, f.name) for f in fields(obj)}, exclude_none)
    if hasattr(obj, "__dict__"):
        public = {k: v for k, v in vars(obj).items() if not k.startswith("_")}
        return serialize(public, exclude_none)

    return str(obj)


def to_json(obj: Any, pretty: bool = False, exclude_none: bool = False) -> str:
    return json.dumps(
        serialize(obj, exclude_none),
        indent=2 if pretty else None,
        ensure_ascii=False,
        default=str
    )


def parse_datetime(value: Any) -> Optional[datetime.datetime]:
    """Parse an ISO string (or pass through a datetime); None stays None."""
    if value is None or isinstance(value, datetime.datetime):
        return value
    return datetime.datetime.fromisoformat(value)


def parse_date(value: Any) -> Optional[datetime.date]:
    """Parse an ISO date string (or pass through a date); None stays None."""
    if value is None:
        return None
    if isinstance(value, datetime.datetime):
        return value.date()
    if isinstance(value, datetime.date):
        return value
    return datetime.date.fromisoformat(value)


class SerializableMixin:
    """
    Default ``to_dict``/``from_dict`` for records listing their persisted
    attributes in ``__serializable_fields__``. Names also listed in
    ``__optional_fields__`` may be missing when loading.
    """

    __serializable_fields__: List[str] = []
    __optional_fields__: List[str] = []

    def to_dict(self) -> Dict[str, Any]:
        return {
            name: serialize(getattr(self, name))
            for name in self.__serializable_fields__
            if hasattr(self, name)
        }

    def to_json(self, pretty: bool = False) -> str:
        return to_json(self.to_dict(), pretty)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]):
        missing = [
            name for name in cls.__serializable_fields__
            if name not in data and name not in cls.__optional_fields__
        ]
        if missing:
            raise ValueError(f"Missing required field: {missing[0]}")
        return cls(**{name: data[name] for name in cls.__serializable_fields__ if name in data})

    @classmethod
    def from_json(cls, json_str: str):
        return cls.from_dict(json.loads(json_str))
