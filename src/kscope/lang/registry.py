"""
Name Resolution Tables
======================

Two tables back every name lookup made during generation:

PrototypeRegistry
    Session-wide map from function name to the most recently seen
    prototype, fed by extern declarations and by every definition's own
    signature. It is the only state that survives handing a compilation
    unit to the execution engine, and it is how a later unit re-declares
    a function whose defining unit is no longer writable.

LocalBindings
    Map from parameter name to the backend value bound to it, valid for
    the body of one function only. There are no nested scopes: a variable
    reference always means a parameter of the enclosing function.
"""

import logging
from typing import Any, Iterable, Iterator, Optional

from kscope.lang.ast import PrototypeNode

logger = logging.getLogger(__name__)


class PrototypeRegistry:
    """
    Function prototypes known to the session.

    A later registration under the same name silently shadows the earlier
    one. register() returns the entry it replaced so a failed construct
    can put it back with restore().

    Example:
        registry = PrototypeRegistry()
        previous = registry.register(proto)
        try:
            generate_body()
        except LangError:
            registry.restore(proto.name, previous)
            raise
    """

    def __init__(self):
        self._prototypes: dict[str, PrototypeNode] = {}

    def register(self, proto: PrototypeNode) -> Optional[PrototypeNode]:
        """
        Record `proto` as the current prototype for its name.

        Returns:
            The prototype previously registered under that name, or None
        """
        previous = self._prototypes.get(proto.name)
        self._prototypes[proto.name] = proto
        logger.debug(f"Registered prototype {proto.name}/{proto.arity}")
        return previous

    def restore(self, name: str, previous: Optional[PrototypeNode]) -> None:
        """Undo a register() call: reinstate `previous`, or drop the name if None."""
        if previous is None:
            self._prototypes.pop(name, None)
        else:
            self._prototypes[name] = previous
        logger.debug(f"Restored registry entry for '{name}'")

    def get(self, name: str) -> Optional[PrototypeNode]:
        return self._prototypes.get(name)

    def names(self) -> list[str]:
        return sorted(self._prototypes)

    def snapshot(self) -> dict[str, PrototypeNode]:
        """Shallow copy of the current name -> prototype mapping."""
        return dict(self._prototypes)

    def __contains__(self, name: str) -> bool:
        return name in self._prototypes

    def __len__(self) -> int:
        return len(self._prototypes)

    def __iter__(self) -> Iterator[str]:
        return iter(self._prototypes)


class LocalBindings:
    """Parameter name -> generated value for the function being generated."""

    def __init__(self):
        self._values: dict[str, Any] = {}

    def reset(self, bindings: Iterable[tuple[str, Any]]) -> None:
        """Clear the table and bind each (name, value) pair; later duplicates win."""
        self._values.clear()
        for name, value in bindings:
            self._values[name] = value

    def lookup(self, name: str) -> Optional[Any]:
        return self._values.get(name)

    def names(self) -> list[str]:
        return list(self._values)

    def clear(self) -> None:
        self._values.clear()

    def __len__(self) -> int:
        return len(self._values)
