"""
Engine Layer: Sorting Engine Binding
======================================

Native protocol (``NativeEngine``, ``EngineFactory``) plus the typed
adapter (``EngineHandle``) the rest of the package talks to.
"""

from autosort.infra.engine.base import (
    EngineFactory,
    EngineLogCallback,
    ItemInfo,
    ItemMetadata,
    NativeEngine,
)
from autosort.infra.engine.handle import EngineHandle, translate_engine_error

__all__ = [
    "EngineFactory",
    "EngineHandle",
    "EngineLogCallback",
    "ItemInfo",
    "ItemMetadata",
    "NativeEngine",
    "translate_engine_error",
]
