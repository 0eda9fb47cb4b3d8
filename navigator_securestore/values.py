"""Typed values: get/set of primitives mapped onto the ObjectStore.

Each value named ``name`` is the record ``"v_" + name`` in the folder of
its Python type.
"""
from datetime import datetime
from typing import Any, Optional

from .objects import ObjectStore
from .results import Result

PREFIX = "v_"

INT_RANGES = {
    "int8": (-(2 ** 7), 2 ** 7 - 1),
    "uint8": (0, 2 ** 8 - 1),
    "int16": (-(2 ** 15), 2 ** 15 - 1),
    "uint16": (0, 2 ** 16 - 1),
    "int32": (-(2 ** 31), 2 ** 31 - 1),
    "uint32": (0, 2 ** 32 - 1),
    "int64": (-(2 ** 63), 2 ** 63 - 1),
    "uint64": (0, 2 ** 64 - 1),
}


class Values:
    """Convenience accessors for single named values."""

    def __init__(self, objects: ObjectStore):
        self._objects = objects

    @staticmethod
    def record_key(name: str) -> str:
        return PREFIX + name

    def _get(self, cls: type, name: str, default: Any) -> Any:
        value = self._objects.load(cls, self.record_key(name))
        return default if value is None else value

    def _set(self, value: Any, name: str) -> str:
        return self._objects.save(value, self.record_key(name))

    def delete(self, name: str, cls: type) -> Result:
        return self._objects.delete(cls, self.record_key(name))

    # bool
    def set_bool(self, name: str, value: bool) -> str:
        return self._set(bool(value), name)

    def get_bool(self, name: str, default: bool = False) -> bool:
        return self._get(bool, name, default)

    # str
    def set_str(self, name: str, value: Optional[str]) -> Optional[str]:
        """Save ``value``; None deletes the stored string."""
        if value is None:
            self.delete(name, str)
            return None
        return self._set(str(value), name)

    def get_str(self, name: str, default: Optional[str] = None) -> Optional[str]:
        return self._get(str, name, default)

    # integers
    def set_int(self, name: str, value: int, kind: str = "int32") -> str:
        """Save an integer after checking it fits ``kind`` (int8 ... uint64).

        Raises:
            ValueError: On an unknown kind or an out-of-range value.
        """
        try:
            low, high = INT_RANGES[kind]
        except KeyError:
            raise ValueError(f"Unknown integer kind {kind!r}") from None
        if isinstance(value, bool) or not isinstance(value, int):
            raise TypeError(f"{kind} value must be an int, got {type(value).__name__}")
        if not low <= value <= high:
            raise ValueError(f"{value} out of range for {kind} [{low}, {high}]")
        return self._set(value, name)

    def get_int(self, name: str, default: int = 0) -> int:
        return self._get(int, name, default)

    # float
    def set_float(self, name: str, value: float) -> str:
        return self._set(float(value), name)

    def get_float(self, name: str, default: float = 0.0) -> float:
        return self._get(float, name, default)

    # datetime
    def set_datetime(self, name: str, value: Optional[datetime]) -> Optional[str]:
        """Save a timestamp; None deletes the stored one."""
        if value is None:
            self.delete(name, datetime)
            return None
        return self._set(value, name)

    def get_datetime(
        self, name: str, default: Optional[datetime] = None
    ) -> Optional[datetime]:
        return self._get(datetime, name, default)
