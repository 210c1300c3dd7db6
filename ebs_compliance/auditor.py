"""Per-volume and fleet-wide EBS compliance audits."""
from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from functools import partial
import json
import logging
from typing import IO, Iterable, List, Optional, Sequence

from .findings import VolumeAuditRecord
from .gateway import EbsGateway, is_attached, primary_attachment
from .utils import AWS_ERRORS

logger = logging.getLogger(__name__)


def audit_volume(
    gateway: EbsGateway,
    volume_id: str,
    *,
    protected_arns: Optional[Sequence[str]] = None,
) -> VolumeAuditRecord:
    """Return the current compliance state of *volume_id*.

    Each flag is looked up independently; a lookup that fails leaves its flag
    as ``None`` instead of guessing ``False``. *protected_arns* is the AWS
    Backup resource list already read for this run; without it the list is
    fetched for this volume.
    """

    delete_on_termination: Optional[bool] = None
    encrypted: Optional[bool] = None
    attached: Optional[bool] = None
    try:
        volume = gateway.describe_volume(volume_id)
    except AWS_ERRORS as exc:
        logger.warning("Failed to describe volume %s: %s", volume_id, exc)
    else:
        if volume is None:
            logger.warning("Volume %s not found", volume_id)
        else:
            attachment = primary_attachment(volume)
            if attachment is not None:
                delete_on_termination = attachment.get("DeleteOnTermination")
            encrypted = volume.get("Encrypted")
            attached = is_attached(volume)

    backup_plan: Optional[bool] = None
    try:
        backup_plan = gateway.is_backup_protected(volume_id, protected_arns)
    except AWS_ERRORS as exc:
        logger.warning("Failed to list protected resources for %s: %s", volume_id, exc)

    has_snapshots: Optional[bool] = None
    try:
        has_snapshots = gateway.count_snapshots(volume_id) > 0
    except AWS_ERRORS as exc:
        logger.warning("Failed to count snapshots for %s: %s", volume_id, exc)

    record = VolumeAuditRecord(
        volume_id=volume_id,
        delete_on_termination=delete_on_termination,
        encrypted=encrypted,
        backup_plan=backup_plan,
        has_snapshots=has_snapshots,
        attached=attached,
    )
    logger.info("Completed audit for volume %s", volume_id)
    return record


class ReportWriter:
    """Single writer that streams audit records into a JSON array file.

    Opening the writer truncates the file. Records are appended as they
    arrive and the closing bracket is written on :meth:`close`, so the file is
    a valid JSON array once the writer is closed, even after an error.
    """

    def __init__(self, path: str) -> None:
        self.path = path
        self.count = 0
        self._fh: Optional[IO[str]] = open(path, "w", encoding="utf-8")
        self._fh.write("[")
        self._fh.flush()

    def append(self, record: VolumeAuditRecord) -> None:
        if self._fh is None:
            raise ValueError("Report writer is closed")
        separator = ",\n  " if self.count else "\n  "
        self._fh.write(separator + json.dumps(record.to_dict()))
        self._fh.flush()
        self.count += 1

    def close(self) -> None:
        if self._fh is None:
            return
        self._fh.write("\n]\n" if self.count else "]\n")
        self._fh.close()
        self._fh = None

    def __enter__(self) -> "ReportWriter":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()


def audit_all_volumes(
    gateway: EbsGateway,
    report_path: str,
    *,
    parallel: bool = False,
    workers: int = 4,
    volume_ids: Optional[Iterable[str]] = None,
) -> List[VolumeAuditRecord]:
    """Audit every volume in the region and write the JSON report.

    The AWS Backup protected-resource list is read once at the start of the
    run and shared by every volume. With ``parallel`` the per-volume audits
    run on a pool of ``workers`` threads, but only the calling thread writes
    to the report, in enumeration order. A fatal error cancels the audits
    that have not started yet.
    """

    if workers < 1:
        raise ValueError("workers must be at least 1")

    logger.info("Starting comprehensive audit of all EBS volumes")
    records: List[VolumeAuditRecord] = []
    with ReportWriter(report_path) as writer:
        ids = list(volume_ids) if volume_ids is not None else gateway.list_volume_ids()
        logger.info("Found %d volume(s) to audit", len(ids))
        audit = partial(audit_volume, gateway, protected_arns=_protected_arns(gateway, ids))
        if parallel and len(ids) > 1:
            executor = ThreadPoolExecutor(max_workers=workers)
            futures = [executor.submit(audit, volume_id) for volume_id in ids]
            try:
                for future in futures:
                    record = future.result()
                    writer.append(record)
                    records.append(record)
            except BaseException:
                for future in futures:
                    future.cancel()
                executor.shutdown(wait=False)
                raise
            executor.shutdown()
        else:
            for volume_id in ids:
                record = audit(volume_id)
                writer.append(record)
                records.append(record)

    logger.info("Audit complete. Results saved to %s", report_path)
    return records


def _protected_arns(gateway: EbsGateway, volume_ids: List[str]) -> Optional[List[str]]:
    """Return this run's protected-resource ARNs, or ``None`` to look up per volume."""

    if not volume_ids:
        return None
    try:
        return gateway.protected_resource_arns()
    except AWS_ERRORS as exc:
        logger.warning("Failed to list protected resources: %s", exc)
        return None


__all__ = ["ReportWriter", "audit_all_volumes", "audit_volume"]
