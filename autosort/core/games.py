"""Context support and per-context file layout."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from autosort.core.config import Settings, get_settings


def is_supported(context: str | None, settings: Settings | None = None) -> bool:
    if not context:
        return False
    cfg = settings or get_settings()
    return context in cfg.SUPPORTED_CONTEXTS


def engine_game_id(context: str, masterlist: bool, settings: Settings | None = None) -> str:
    """
    Id the engine (or the masterlist repository) knows a context by.

    Some contexts share data with another game: VR editions and total
    conversions either reuse the engine support or the masterlist of the
    game they're based on.
    """
    cfg = settings or get_settings()
    if masterlist and context in cfg.MASTERLIST_ALIASES:
        return cfg.MASTERLIST_ALIASES[context]
    return cfg.CONTEXT_ALIASES.get(context, context)


def masterlist_repository(context: str, settings: Settings | None = None) -> str:
    cfg = settings or get_settings()
    return cfg.MASTERLIST_REPOSITORY.format(game=engine_game_id(context, True, cfg))


@dataclass(frozen=True)
class ContextPaths:
    """On-disk layout for one context."""

    root: Path

    @classmethod
    def for_context(cls, context: str, settings: Settings | None = None) -> ContextPaths:
        cfg = settings or get_settings()
        return cls(root=cfg.DATA_DIR / context)

    @property
    def masterlist_dir(self) -> Path:
        return self.root / "masterlist"

    @property
    def masterlist(self) -> Path:
        return self.masterlist_dir / "masterlist.yaml"

    @property
    def userlist(self) -> Path:
        return self.root / "userlist.yaml"

    @property
    def local(self) -> Path:
        return self.root / "local"
