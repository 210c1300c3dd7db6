"""Detection of snapshots whose source volume no longer exists."""
from __future__ import annotations

import logging

from .controls.snapshot import PLACEHOLDER_VOLUME_ID
from .findings import OrphanReport
from .gateway import EbsGateway

logger = logging.getLogger(__name__)


def find_orphaned_snapshots(gateway: EbsGateway) -> OrphanReport:
    """Classify the account's snapshots by whether their volume still exists.

    Snapshots without a usable source volume id (missing, or the placeholder
    EC2 reports for copied snapshots) cannot be judged and are listed as
    unresolved rather than orphaned.
    """

    logger.info("Validating orphaned snapshots")
    report = OrphanReport()
    source_volumes = {}
    for snapshot in gateway.list_snapshots():
        snapshot_id = snapshot.get("SnapshotId")
        if not snapshot_id or snapshot_id in source_volumes:
            continue
        volume_id = snapshot.get("VolumeId")
        if not volume_id or volume_id == PLACEHOLDER_VOLUME_ID:
            report.unresolved.append(snapshot_id)
            continue
        source_volumes[snapshot_id] = volume_id

    existing = gateway.existing_volume_ids(source_volumes.values())
    report.orphaned = [
        snapshot_id
        for snapshot_id, volume_id in source_volumes.items()
        if volume_id not in existing
    ]

    if report.orphaned:
        logger.info("Found %d orphaned snapshot(s)", len(report.orphaned))
    else:
        logger.info("No orphaned snapshots found")
    if report.unresolved:
        logger.warning(
            "%d snapshot(s) have no source volume id and were skipped", len(report.unresolved)
        )
    return report


__all__ = ["find_orphaned_snapshots"]
