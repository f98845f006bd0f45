"""
cv-lifecycle - Content view lifecycle automation for Foreman/Katello.

This package publishes new content view versions, promotes composite
content views into a lifecycle environment, and deletes old versions
while keeping the ones composites still embed:
- Orchestrator: sequences the stages and builds the run summary
- TaskCompletionWatcher: waits for server background tasks
- VersionSetResolver: typed snapshots of fetched content views
- plan_deletions: retention planning

Example:
    >>> from cv_lifecycle import ManagerConfig, Orchestrator
    >>> from cv_lifecycle.client import ForemanClient, ForemanSettings
    >>>
    >>> config = ManagerConfig.from_env()
    >>> client = ForemanClient(ForemanSettings(), config.lifecycle.organization)
    >>> summary = await Orchestrator(client, config).run()

Invariants:
    - Promotion and cleanup never act on a snapshot older than the last publish
    - Versions embedded in a composite are never deleted
    - The run always ends with a summary unless the health check aborts it

Version: 1.0.0
"""

__version__ = "1.0.0"

from .config import ManagerConfig
from .models import ComponentRef, Entity, OperationHandle, Version, version_key
from .orchestrator import Orchestrator, Stage, run_lifecycle, select_stages
from .resolver import (
    InitialSnapshot,
    PostPublishSnapshot,
    ResolvedEntity,
    ResolvedSet,
    VersionSetResolver,
)
from .retention import ProtectedVersions, plan_deletions
from .summary import RunSummary, StageResult
from .watcher import TaskCompletionWatcher, WaitOutcome, WatchState

__all__ = [
    # Version
    "__version__",
    # Model
    "Entity",
    "Version",
    "ComponentRef",
    "OperationHandle",
    "version_key",
    # Configuration
    "ManagerConfig",
    # Components
    "TaskCompletionWatcher",
    "WaitOutcome",
    "WatchState",
    "VersionSetResolver",
    "ResolvedEntity",
    "ResolvedSet",
    "InitialSnapshot",
    "PostPublishSnapshot",
    "ProtectedVersions",
    "plan_deletions",
    # Orchestration
    "Orchestrator",
    "Stage",
    "select_stages",
    "run_lifecycle",
    "RunSummary",
    "StageResult",
]
