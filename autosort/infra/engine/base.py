"""
Sorting Engine Protocol: Native Engine Interface
===================================================

Defines the contract the external sorting engine binding must implement.
The engine runs out of process (or behind a native extension) and owns the
actual graph algorithm, rule parsing and list merging; everything here is
asynchronous and may fail with plain exceptions whose message describes
the problem. ``EngineHandle`` translates those into typed errors.

Failure conventions expected from bindings:
  - a torn-down engine raises with the message ``already closed``
  - cycle failures start with ``Cyclic interaction`` and carry ``cycle``,
    a list of ``{"name", "typeOfEdgeToNextVertex"}`` entries
  - invalid-argument failures carry an ``arg`` attribute
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

EngineLogCallback = Callable[[int, str], None]


@dataclass
class ItemMetadata:
    """Rule-derived metadata for one item."""

    messages: list[Any] = field(default_factory=list)
    tags: list[Any] = field(default_factory=list)
    clean_info: list[Any] | None = None
    dirty_info: list[Any] | None = None
    group: str | None = None


@dataclass
class ItemInfo:
    """File-derived information for one loaded item."""

    is_valid_as_light_master: bool = False
    loads_archive: bool = False
    version: str = ""


class NativeEngine(ABC):
    """One running instance of the sorting engine, bound to one game."""

    @abstractmethod
    async def update_masterlist(self, path: str, repository: str, revision: str) -> bool:
        """Refresh the shared rule list. Returns True if it changed."""
        ...

    @abstractmethod
    async def load_lists(self, masterlist_path: str, userlist_path: str) -> None:
        """Load rule lists; an empty userlist path means none."""
        ...

    @abstractmethod
    async def load_current_load_order_state(self) -> None:
        ...

    @abstractmethod
    async def sort_plugins(self, plugins: list[str]) -> list[str]:
        ...

    @abstractmethod
    async def get_plugin_metadata(self, plugin: str) -> ItemMetadata:
        ...

    @abstractmethod
    async def get_plugin(self, plugin: str) -> ItemInfo:
        ...

    @abstractmethod
    async def load_plugins(self, plugins: list[str], header_only: bool) -> None:
        """Parse the given plugins so per-item info becomes available."""
        ...

    @abstractmethod
    async def get_groups_path(self, from_group: str, to_group: str) -> list[Any]:
        """Edges connecting two groups, same shape as a cycle."""
        ...

    @abstractmethod
    async def get_general_messages(self, evaluate_conditions: bool) -> list[Any]:
        """General messages; evaluating them drops the condition cache."""
        ...

    @abstractmethod
    def is_closed(self) -> bool:
        ...

    @abstractmethod
    def close(self) -> None:
        ...


class EngineFactory(ABC):
    """Creates native engine instances."""

    @abstractmethod
    async def create(
        self,
        game_id: str,
        game_path: str | None,
        local_path: str,
        language: str,
        log_callback: EngineLogCallback,
    ) -> NativeEngine:
        ...
