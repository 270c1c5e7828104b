from .api import create_app
from .event_stream import NomadEventWatcher
from .image import parse_image_reference
from .inventory import DriverRule, WorkloadInventory
from .loop import CycleOutcome, CycleReport, LoopState, ReconciliationLoop
from .metrics import DriftCollector, ReconcilerMetrics, register_drift_collector
from .models import (
    ArtifactReference,
    DriftVerdict,
    DriverType,
    Task,
    TaskKey,
    VerdictKind,
    Workload,
)
from .nomad_client import NomadClient
from .registry_client import RegistryClient
from .resolvers import ContainerRegistryResolver, ResolverRegistry, VersionResolver
from .store import CycleHealth, DriftEntry, DriftSnapshot, DriftStore
from .versions import Comparator, compare

__all__ = [
    "ArtifactReference",
    "Comparator",
    "ContainerRegistryResolver",
    "CycleHealth",
    "CycleOutcome",
    "CycleReport",
    "DriftCollector",
    "DriftEntry",
    "DriftSnapshot",
    "DriftStore",
    "DriftVerdict",
    "DriverRule",
    "DriverType",
    "LoopState",
    "NomadClient",
    "NomadEventWatcher",
    "ReconcilerMetrics",
    "ReconciliationLoop",
    "RegistryClient",
    "ResolverRegistry",
    "Task",
    "TaskKey",
    "VerdictKind",
    "VersionResolver",
    "Workload",
    "compare",
    "create_app",
    "parse_image_reference",
    "register_drift_collector",
]
