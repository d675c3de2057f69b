from types import MappingProxyType
from typing import Any, FrozenSet, Iterable, Mapping, Optional

from models import ExpenseCategory


class SimulationFlags:
    """
    Immutable set of run-level flags.

    Every ``with_*`` method returns a new instance, or this same instance when
    the requested value is already in place, so callers can compare by
    identity to detect a change.
    """

    __slots__ = ("_survivor_mode", "_contingency_active", "_refill_mode", "_custom")

    def __init__(
        self,
        survivor_mode: bool = False,
        contingency_active: Optional[Iterable[ExpenseCategory]] = None,
        refill_mode: bool = False,
        custom: Optional[Mapping[str, Any]] = None,
    ):
        object.__setattr__(self, "_survivor_mode", bool(survivor_mode))
        object.__setattr__(self, "_contingency_active", frozenset(contingency_active or ()))
        object.__setattr__(self, "_refill_mode", bool(refill_mode))
        object.__setattr__(self, "_custom", MappingProxyType(dict(custom or {})))

    def __setattr__(self, name, value):
        raise AttributeError("SimulationFlags is immutable")

    @classmethod
    def initial(cls) -> "SimulationFlags":
        return cls()

    @property
    def survivor_mode(self) -> bool:
        return self._survivor_mode

    @property
    def contingency_active(self) -> FrozenSet[ExpenseCategory]:
        return self._contingency_active

    @property
    def refill_mode(self) -> bool:
        return self._refill_mode

    @property
    def custom(self) -> Mapping[str, Any]:
        return self._custom

    def with_survivor_mode(self, mode: bool) -> "SimulationFlags":
        if self._survivor_mode == mode:
            return self
        return SimulationFlags(mode, self._contingency_active, self._refill_mode, self._custom)

    def with_contingency_active(self, category: Optional[ExpenseCategory], active: bool) -> "SimulationFlags":
        if category is None or (category in self._contingency_active) == active:
            return self
        if active:
            categories = self._contingency_active | {category}
        else:
            categories = self._contingency_active - {category}
        return SimulationFlags(self._survivor_mode, categories, self._refill_mode, self._custom)

    def with_refill_mode(self, mode: bool) -> "SimulationFlags":
        if self._refill_mode == mode:
            return self
        return SimulationFlags(self._survivor_mode, self._contingency_active, mode, self._custom)

    def with_custom_flag(self, key: Optional[str], value: Any) -> "SimulationFlags":
        """Sets ``key`` to ``value``; a ``None`` value removes the key."""
        if key is None:
            return self
        if value is None and key not in self._custom:
            return self
        if value is not None and key in self._custom and self._custom[key] == value:
            return self
        custom = dict(self._custom)
        if value is None:
            custom.pop(key)
        else:
            custom[key] = value
        return SimulationFlags(self._survivor_mode, self._contingency_active, self._refill_mode, custom)

    def is_contingency_active(self, category: Optional[ExpenseCategory]) -> bool:
        return category is not None and category in self._contingency_active

    def has_active_contingency(self) -> bool:
        return bool(self._contingency_active)

    def get_custom_flag(self, key: str, default: Any = None) -> Any:
        return self._custom.get(key, default)

    def __eq__(self, other):
        if not isinstance(other, SimulationFlags):
            return NotImplemented
        return (
            self._survivor_mode == other._survivor_mode
            and self._contingency_active == other._contingency_active
            and self._refill_mode == other._refill_mode
            and dict(self._custom) == dict(other._custom)
        )

    def __hash__(self):
        return hash((self._survivor_mode, self._contingency_active, self._refill_mode, tuple(sorted(self._custom))))

    def __repr__(self):
        return (
            f"SimulationFlags(survivor_mode={self._survivor_mode}, "
            f"contingency_active={sorted(c.value for c in self._contingency_active)}, "
            f"refill_mode={self._refill_mode}, custom={dict(self._custom)})"
        )
