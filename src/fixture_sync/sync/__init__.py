"""Record resolution and fixture sync orchestration."""

from fixture_sync.sync.orchestrator import SyncOrchestrator, sync, sync_all
from fixture_sync.sync.resolver import RecordResolver, ResolvedRecord

__all__ = ["RecordResolver", "ResolvedRecord", "SyncOrchestrator", "sync", "sync_all"]
