"""
Canonical Type Definitions
===========================

Single source of truth for shared types used across the codebase.

This module defines:
- EdgeType: Why one item has to load before the next one in a cycle
- CycleEdge: One link in a cycle or group path reported by the engine
- PluginEntry: Deployment tracker view of a plugin
- RuleEntry / RuleKind: Read-only view of ordering rules
- EffectiveGroup: Group an item ends up in after override resolution

Item names are case-insensitive identities; compare them with
``same_item`` or key dictionaries with ``item_key``.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

__all__ = [
    "DEFAULT_GROUP",
    "CycleEdge",
    "EdgeType",
    "EffectiveGroup",
    "PluginEntry",
    "RuleEntry",
    "RuleKind",
    "USER_EDGE_TYPES",
    "item_key",
    "same_item",
]

DEFAULT_GROUP = "default"


def item_key(name: str) -> str:
    """Normalized key for an item name."""
    return name.lower()


def same_item(lhs: str | None, rhs: str | None) -> bool:
    if lhs is None or rhs is None:
        return False
    return lhs.lower() == rhs.lower()


class EdgeType(StrEnum):
    """Edge classification as reported by the engine.

    Values match the engine's wire names.
    """

    GROUP = "group"
    HARDCODED = "hardcoded"
    MASTER = "master"
    MASTER_FLAG = "masterFlag"
    MASTERLIST_LOAD_AFTER = "masterlistLoadAfter"
    MASTERLIST_REQUIREMENT = "masterlistRequirement"
    USER_LOAD_AFTER = "userlistLoadAfter"
    USER_REQUIREMENT = "userlistRequirement"
    OVERLAP = "overlap"
    TIE_BREAK = "tieBreak"


USER_EDGE_TYPES = frozenset({EdgeType.USER_LOAD_AFTER, EdgeType.USER_REQUIREMENT})


class RuleKind(StrEnum):
    """Kinds of item-to-item rule in a userlist entry."""

    AFTER = "after"
    REQUIRES = "requires"


@dataclass(frozen=True)
class CycleEdge:
    """
    One vertex of a cycle (or group path) plus the edge leaving it.

    ``name`` is an item name for plugin cycles and a group name for group
    paths. The edge points at the next vertex in the sequence.
    """

    name: str
    edge_type: EdgeType | str

    @property
    def is_user_edge(self) -> bool:
        return self.edge_type in USER_EDGE_TYPES

    @classmethod
    def from_raw(cls, raw: Any) -> CycleEdge:
        """Build from an engine payload (mapping or attribute object)."""
        if isinstance(raw, CycleEdge):
            return raw
        if isinstance(raw, Mapping):
            name = raw.get("name")
            edge_type = raw.get("typeOfEdgeToNextVertex")
        else:
            name = getattr(raw, "name", None)
            edge_type = getattr(raw, "typeOfEdgeToNextVertex", None)
        try:
            edge_type = EdgeType(edge_type)
        except ValueError:
            # unknown edge kinds are kept verbatim and rendered as such
            pass
        return cls(name=name or "", edge_type=edge_type)

    @classmethod
    def parse_sequence(cls, raw: Iterable[Any] | None) -> list[CycleEdge]:
        return [cls.from_raw(edge) for edge in (raw or [])]


@dataclass(frozen=True)
class EffectiveGroup:
    """Resolved group of an item. ``custom`` marks a user override."""

    group: str | None = None
    custom: bool = False

    @property
    def name(self) -> str:
        return self.group or DEFAULT_GROUP


@dataclass
class PluginEntry:
    """Plugin as known to the deployment tracker."""

    name: str
    file_path: str
    deployed: bool = False
    load_order: int | None = None

    @property
    def position(self) -> int:
        """Last known position, -1 if unknown."""
        return self.load_order if self.load_order is not None else -1


@dataclass
class RuleEntry:
    """Userlist or masterlist entry for one item."""

    name: str
    group: str | None = None
    after: list[str] = field(default_factory=list)
    requires: list[str] = field(default_factory=list)
