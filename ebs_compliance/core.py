"""Summaries, console tables and Excel export for EBS compliance results."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Optional, Sequence

from .findings import ERROR, FAIL, PASS, ControlResult, Outcome, VolumeAuditRecord

RECORD_CHECKS = ("encrypted", "backup_plan", "has_snapshots", "attached")


@dataclass
class ComplianceSummary:
    """Counts of judged and indeterminate outcomes."""

    passed: int = 0
    failed: int = 0
    indeterminate: int = 0

    def add(self, outcome: Outcome) -> None:
        if outcome == PASS:
            self.passed += 1
        elif outcome == FAIL:
            self.failed += 1
        else:
            self.indeterminate += 1

    @property
    def compliance_rate(self) -> Optional[float]:
        """Share of judged outcomes that passed; indeterminate ones are left out."""

        judged = self.passed + self.failed
        if not judged:
            return None
        return self.passed / judged


def record_outcome(record: VolumeAuditRecord) -> Outcome:
    """Return FAIL if any checked flag is false, ERROR if any is unknown."""

    values = [getattr(record, name) for name in RECORD_CHECKS]
    if any(value is False for value in values):
        return FAIL
    if any(value is None for value in values):
        return ERROR
    return PASS


def summarize_results(results: Iterable[ControlResult]) -> ComplianceSummary:
    summary = ComplianceSummary()
    for result in results:
        summary.add(result.outcome)
    return summary


def summarize_records(records: Iterable[VolumeAuditRecord]) -> ComplianceSummary:
    summary = ComplianceSummary()
    for record in records:
        summary.add(record_outcome(record))
    return summary


def format_summary(summary: ComplianceSummary) -> str:
    rate = summary.compliance_rate
    rate_text = "n/a" if rate is None else f"{rate:.0%}"
    return (
        f"{summary.passed} passed, {summary.failed} failed, "
        f"{summary.indeterminate} indeterminate (compliance {rate_text})"
    )


def _flag(value: Optional[bool]) -> str:
    if value is None:
        return "?"
    return "yes" if value else "no"


def print_results(results: Iterable[ControlResult]) -> None:
    """Pretty-print control results to stdout."""

    results = list(results)
    if not results:
        print("No controls were run.")
        return

    header = f"{'Control':<8} {'Outcome':<8} {'Resource':<24} Message"
    print(header)
    print("-" * len(header))
    for result in results:
        resource = (result.resource_id[:21] + "...") if len(result.resource_id) > 24 else result.resource_id
        print(f"{result.control:<8} {result.outcome:<8} {resource:<24} {result.message}")
    print(format_summary(summarize_results(results)))


def print_records(records: Iterable[VolumeAuditRecord]) -> None:
    """Pretty-print volume audit records to stdout."""

    records = list(records)
    if not records:
        print("No volumes found.")
        return

    header = (
        f"{'Volume':<24} {'Outcome':<8} {'Encrypted':<10} {'Backup':<7} "
        f"{'Snapshots':<10} {'Attached':<9} DeleteOnTermination"
    )
    print(header)
    print("-" * len(header))
    for record in records:
        print(
            f"{record.volume_id:<24} {record_outcome(record):<8} {_flag(record.encrypted):<10} "
            f"{_flag(record.backup_plan):<7} {_flag(record.has_snapshots):<10} "
            f"{_flag(record.attached):<9} {_flag(record.delete_on_termination)}"
        )
    print(format_summary(summarize_records(records)))


def print_orphans(orphaned: Sequence[str], unresolved: Sequence[str] = ()) -> None:
    """Print orphaned snapshot ids one per line, then any that could not be judged."""

    if orphaned:
        print("Orphaned snapshots found:")
        print("\n".join(orphaned))
    else:
        print("No orphaned snapshots found.")
    if unresolved:
        print("Snapshots without a source volume id (not checked):")
        print("\n".join(unresolved))


def export_records_to_excel(records: Iterable[VolumeAuditRecord], path: str) -> str:
    """Write audit *records* to an Excel workbook located at *path*."""

    headers = (
        "Volume ID",
        "Outcome",
        "Encrypted",
        "Backup Plan",
        "Has Snapshots",
        "Attached",
        "Delete On Termination",
    )
    rows = (
        (
            record.volume_id,
            record_outcome(record),
            _flag(record.encrypted),
            _flag(record.backup_plan),
            _flag(record.has_snapshots),
            _flag(record.attached),
            _flag(record.delete_on_termination),
        )
        for record in records
    )
    return _export_rows_to_excel(
        rows,
        headers,
        path,
        sheet_title="Volumes",
        purpose="the volume audit",
    )


def export_results_to_excel(results: Iterable[ControlResult], path: str) -> str:
    """Write control *results* to an Excel workbook located at *path*."""

    headers = ("Control", "Resource ID", "Outcome", "Remediated", "Message")
    rows = (
        (result.control, result.resource_id, result.outcome, result.remediated, result.message)
        for result in results
    )
    return _export_rows_to_excel(
        rows,
        headers,
        path,
        sheet_title="Controls",
        purpose="control results",
    )


def _export_rows_to_excel(
    rows: Iterable[Sequence[object]],
    headers: Sequence[str],
    path: str,
    *,
    sheet_title: str,
    purpose: str,
) -> str:
    """Write ``rows`` with ``headers`` to an Excel sheet using :mod:`openpyxl`."""

    try:
        from openpyxl import Workbook
        from openpyxl.utils import get_column_letter
    except ImportError as exc:  # pragma: no cover - dependency missing during tests
        raise RuntimeError(
            "The 'openpyxl' package is required to export "
            f"{purpose} to Excel. Install it with 'pip install openpyxl'."
        ) from exc

    workbook = Workbook()
    sheet = workbook.active
    sheet.title = sheet_title

    sheet.append(list(headers))
    column_widths = [len(header) for header in headers]

    for row in rows:
        values = list(row)
        sheet.append(values)
        for idx, value in enumerate(values):
            column_widths[idx] = max(column_widths[idx], len(str(value)))

    for idx, width in enumerate(column_widths, start=1):
        column_letter = get_column_letter(idx)
        sheet.column_dimensions[column_letter].width = min(width + 2, 60)

    workbook.save(path)
    return path


__all__ = [
    "ComplianceSummary",
    "RECORD_CHECKS",
    "export_records_to_excel",
    "export_results_to_excel",
    "format_summary",
    "print_orphans",
    "print_records",
    "print_results",
    "record_outcome",
    "summarize_records",
    "summarize_results",
]
