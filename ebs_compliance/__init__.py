"""AWS EBS compliance audit and remediation toolkit."""

from __future__ import annotations

from .auditor import ReportWriter, audit_all_volumes, audit_volume
from .config import Settings
from .controls import CONTROLS, Control, run_control
from .findings import ControlResult, OrphanReport, VolumeAuditRecord
from .gateway import EbsGateway, RemediationError
from .orphans import find_orphaned_snapshots
from .retry import RetryExhaustedError, RetryPolicy

__all__ = [
    "CONTROLS",
    "Control",
    "ControlResult",
    "EbsGateway",
    "OrphanReport",
    "RemediationError",
    "ReportWriter",
    "RetryExhaustedError",
    "RetryPolicy",
    "Settings",
    "VolumeAuditRecord",
    "audit_all_volumes",
    "audit_volume",
    "find_orphaned_snapshots",
    "run_control",
]
