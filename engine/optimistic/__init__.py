"""
Optimistic Engine: speculative cache mutations with scoped rollback.

Components:
  cache       EntityCache, the rendered view (synchronous)
  snapshots   SnapshotManager, per-mutation pre-states
  mutator     (view, change) → view  (pure, deterministic)
  dispatcher  CommitDispatcher, speculative apply + commit + reconcile / rollback
  drag        DragController, gesture → at most one mutation
  audit       AuditAppender, log lines for confirmed counter changes
  store       RemoteStore protocol and MemoryStore
"""

from engine.optimistic.audit import AuditAppender
from engine.optimistic.cache import EntityCache
from engine.optimistic.dispatcher import CommitDispatcher, CommitTicket
from engine.optimistic.drag import DragController, DropTarget
from engine.optimistic.mutations import make_count_adjustment, make_recategorize, make_reorder
from engine.optimistic.mutator import adjust_count, recategorize, reorder_within_category
from engine.optimistic.notifications import LoggingNotifier, Notifier, RecordingNotifier
from engine.optimistic.snapshots import SnapshotManager
from engine.optimistic.store import MemoryStore, RemoteStore
from engine.optimistic.types import AuditRecord, Entity, MutationDescriptor, MutationOutcome

__all__ = [
    "EntityCache",
    "SnapshotManager",
    "CommitDispatcher",
    "CommitTicket",
    "DragController",
    "DropTarget",
    "AuditAppender",
    "RemoteStore",
    "MemoryStore",
    "Notifier",
    "LoggingNotifier",
    "RecordingNotifier",
    "recategorize",
    "reorder_within_category",
    "adjust_count",
    "make_recategorize",
    "make_reorder",
    "make_count_adjustment",
    "Entity",
    "MutationDescriptor",
    "MutationOutcome",
    "AuditRecord",
]
