"""
Host Collaborators
===================

Interfaces of the components that own state this package only reads from
(or, for the fix path, delegates mutations to):

- HostState: active context, game location, deployed plugins and their
  order, auto-sort preference
- RuleStore: user- and masterlist rules
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Mapping

from autosort.core.types import PluginEntry, RuleEntry, RuleKind


class HostState(ABC):
    """Application state the orchestration layer runs against."""

    @abstractmethod
    def active_context(self) -> str | None:
        """Id of the active context, None if nothing is active."""
        ...

    @abstractmethod
    def game_path(self) -> str | None:
        """Install location of the active game, None if not discovered."""
        ...

    @abstractmethod
    def autosort_enabled(self) -> bool:
        """Persisted preference: sort automatically on changes."""
        ...

    @abstractmethod
    def plugins(self) -> Mapping[str, PluginEntry]:
        """All known plugins keyed by lower-cased name."""
        ...

    @abstractmethod
    def update_plugin_order(self, ordered: list[str]) -> None:
        """Publish a new authoritative plugin order."""
        ...


class RuleStore(ABC):
    """External owner of user-authored and shared ordering rules."""

    @abstractmethod
    def userlist_plugins(self) -> list[RuleEntry]:
        ...

    @abstractmethod
    def masterlist_plugins(self) -> list[RuleEntry]:
        ...

    @abstractmethod
    def remove_rule(self, plugin: str, reference: str, kind: RuleKind) -> None:
        """Drop the rule on ``plugin`` that references ``reference``."""
        ...

    @abstractmethod
    def set_group(self, plugin: str, group: str | None) -> None:
        """Assign a group to ``plugin``; None clears the user override."""
        ...

    @abstractmethod
    def remove_group_rule(self, group: str, reference: str) -> None:
        """Drop the user rule making ``group`` load after ``reference``."""
        ...
