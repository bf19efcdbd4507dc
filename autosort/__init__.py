"""autosort: orchestration layer around an external plugin sorting engine."""

__version__ = "1.0.0"
