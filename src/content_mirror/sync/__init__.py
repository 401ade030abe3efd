"""Import, reconciliation and write-back of mirrored content."""

from .concurrency import ConcurrencyController, SaveResult, SyncCheck
from .enumerator import is_content_file, list_content_files
from .pipeline import ImportPipeline, ImportSummary, ProgressEvent, ProgressStep
from .reconciler import WebhookReconciler, WebhookResponse, collect_changes, verify_signature

__all__ = [
    "ConcurrencyController",
    "ImportPipeline",
    "ImportSummary",
    "ProgressEvent",
    "ProgressStep",
    "SaveResult",
    "SyncCheck",
    "WebhookReconciler",
    "WebhookResponse",
    "collect_changes",
    "is_content_file",
    "list_content_files",
    "verify_signature",
]
