"""Boundary of the external pet simulation.

The rules that turn on-chain data into health, stage and type live in a
separate library. The indexer only needs the narrow surface described by
:class:`PetSimulation`; concrete implementations are plugged in through a
factory named ``"module:callable"`` (``INDEXER_SIMULATION``).
"""

from __future__ import annotations

import importlib
from typing import Any, Callable, Optional, Protocol, runtime_checkable

from ..core.errors import BootstrapFailure
from .ord_client import OrdClient


class SimulationLoadError(BootstrapFailure):
    pass


@runtime_checkable
class PetSimulation(Protocol):
    health: Any
    state: Any
    type: Any
    weakness: Optional[Any]
    death_at: Optional[Any]

    async def update(self, blockheight: int) -> None: ...

    def is_alive(self) -> bool: ...

    def is_immortal(self) -> bool: ...

    def render(self) -> str: ...

    def child_count(self) -> int: ...


SimulationFactory = Callable[[str, OrdClient], PetSimulation]


def load_simulation_factory(spec: Optional[str]) -> SimulationFactory:
    """Import ``"package.module:callable"`` and return the callable."""

    raw = (spec or "").strip()
    if not raw:
        raise SimulationLoadError("No simulation configured; set INDEXER_SIMULATION=module:callable")
    module_name, sep, attr = raw.partition(":")
    if not sep or not module_name or not attr:
        raise SimulationLoadError(f"Invalid simulation reference {raw!r}; expected module:callable")
    try:
        module = importlib.import_module(module_name)
    except ImportError as exc:
        raise SimulationLoadError(f"Cannot import simulation module {module_name!r}: {exc}") from exc
    factory: Any = module
    for part in attr.split("."):
        factory = getattr(factory, part, None)
        if factory is None:
            raise SimulationLoadError(f"{module_name!r} has no attribute {attr!r}")
    if not callable(factory):
        raise SimulationLoadError(f"Simulation reference {raw!r} is not callable")
    return factory
