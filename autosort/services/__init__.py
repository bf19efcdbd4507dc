"""Service package exports."""
from .autosort_service import AutosortService, configure_runtime
from .cycles import CycleResolver, Proposal, ProposalKind
from .lifecycle import EngineSlot, LifecycleManager
from .metadata import MetadataQuery, PluginMetadata
from .notifications import DialogRequest, DialogResult, Notification, NotificationCenter
from .sort_pipeline import SortOutcome, SortPipeline

__all__ = [
    'AutosortService',
    'CycleResolver',
    'DialogRequest',
    'DialogResult',
    'EngineSlot',
    'LifecycleManager',
    'MetadataQuery',
    'Notification',
    'NotificationCenter',
    'PluginMetadata',
    'Proposal',
    'ProposalKind',
    'SortOutcome',
    'SortPipeline',
    'configure_runtime',
]
