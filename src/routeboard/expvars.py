"""Registry of named process variables exposed on /debug/vars.

Each variable renders itself as a JSON text fragment. The registry can be
walked in a single pass to stream one JSON object without building the whole
document in memory, see iter_json_chunks().

A process-wide DEFAULT_REGISTRY is populated at import time with
``Goroutines`` (live thread count), ``cmdline`` and ``memstats``.
"""

from __future__ import annotations

import gc
import json
import logging
import sys
import threading
from typing import Any, Callable, Dict, Iterator, List, Tuple

import psutil

logger = logging.getLogger("routeboard.expvars")


class Var:
    """Brief: Base class for a published variable."""

    def value(self) -> Any:
        raise NotImplementedError

    def render(self) -> str:
        """Brief: Return the variable's current value as JSON text."""

        return json.dumps(self.value(), sort_keys=True, default=str)


class Func(Var):
    """Brief: Variable whose value is computed by calling fn() on each render.

    Example:
      >>> Func(lambda: 3).render()
      '3'
    """

    def __init__(self, fn: Callable[[], Any]) -> None:
        self._fn = fn

    def value(self) -> Any:
        return self._fn()


class Int(Var):
    """Brief: Thread-safe integer counter.

    Example:
      >>> v = Int()
      >>> v.add(2)
      >>> v.render()
      '2'
    """

    def __init__(self, initial: int = 0) -> None:
        self._lock = threading.Lock()
        self._value = int(initial)

    def add(self, delta: int) -> None:
        with self._lock:
            self._value += int(delta)

    def set(self, value: int) -> None:
        with self._lock:
            self._value = int(value)

    def value(self) -> int:
        with self._lock:
            return self._value


class String(Var):
    def __init__(self, initial: str = "") -> None:
        self._lock = threading.Lock()
        self._value = str(initial)

    def set(self, value: str) -> None:
        with self._lock:
            self._value = str(value)

    def value(self) -> str:
        with self._lock:
            return self._value


class VarRegistry:
    """Brief: Thread-safe name -> Var mapping iterated in sorted name order.

    Inputs (constructor): none

    Outputs:
      - VarRegistry instance.

    Example:
      >>> reg = VarRegistry()
      >>> reg.publish("requests", Int(1))
      >>> "".join(iter_json_chunks(reg))
      '{\\n"requests": 1\\n}\\n'
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._vars: Dict[str, Var] = {}

    def publish(self, name: str, var: Var) -> None:
        """Brief: Register a variable under a unique name.

        Raises:
          - ValueError: when the name is already taken.
        """

        with self._lock:
            if name in self._vars:
                raise ValueError(f"Reuse of exported var name: {name}")
            self._vars[name] = var

    def get(self, name: str) -> Var | None:
        with self._lock:
            return self._vars.get(name)

    def items(self) -> List[Tuple[str, Var]]:
        """Brief: Return (name, var) pairs sorted by name.

        The list is a copy taken under the lock so that rendering (which may
        call arbitrary functions) happens without holding it.
        """

        with self._lock:
            return sorted(self._vars.items())

    def do(self, fn: Callable[[str, Var], None]) -> None:
        for name, var in self.items():
            fn(name, var)


def iter_json_chunks(registry: VarRegistry) -> Iterator[str]:
    """Brief: Stream the registry as one JSON object, pair by pair.

    Inputs:
      - registry: VarRegistry to walk.

    Outputs:
      - Iterator of text chunks: "{\\n", then '"name": value' pairs joined by
        ",\\n", then "\\n}\\n".
    """

    yield "{\n"
    first = True
    for name, var in registry.items():
        try:
            rendered = var.render()
        except Exception:
            logger.exception("Failed to render process variable %s", name)
            rendered = "null"
        if not first:
            yield ",\n"
        first = False
        yield f"{json.dumps(name)}: {rendered}"
    yield "\n}\n"


def _memstats() -> Dict[str, Any]:
    proc = psutil.Process()
    mem = proc.memory_info()
    return {
        "rss_bytes": int(mem.rss),
        "vms_bytes": int(mem.vms),
        "gc_counts": list(gc.get_count()),
        "gc_collections": [int(s.get("collections", 0)) for s in gc.get_stats()],
    }


DEFAULT_REGISTRY = VarRegistry()
DEFAULT_REGISTRY.publish("Goroutines", Func(threading.active_count))
DEFAULT_REGISTRY.publish("cmdline", Func(lambda: list(sys.argv)))
DEFAULT_REGISTRY.publish("memstats", Func(_memstats))


def publish(name: str, var: Var) -> None:
    """Brief: Publish a variable in DEFAULT_REGISTRY."""

    DEFAULT_REGISTRY.publish(name, var)


def get(name: str) -> Var | None:
    return DEFAULT_REGISTRY.get(name)
