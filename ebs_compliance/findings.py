"""Data models for EBS control results and audit records."""
from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Literal, Optional

Outcome = Literal["PASS", "FAIL", "ERROR"]

PASS: Outcome = "PASS"
FAIL: Outcome = "FAIL"
ERROR: Outcome = "ERROR"


@dataclass
class ControlResult:
    """Outcome of evaluating a single control against one resource.

    ``ERROR`` means the state could not be determined; it is kept apart from
    ``FAIL`` so that summaries only count resources that were actually judged.
    """

    control: int
    resource_id: str
    outcome: Outcome
    message: str
    remediated: bool = False
    details: Dict[str, str] = field(default_factory=dict)

    @property
    def passed(self) -> bool:
        return self.outcome == PASS

    @property
    def determinate(self) -> bool:
        return self.outcome in (PASS, FAIL)


@dataclass(frozen=True)
class VolumeAuditRecord:
    """Point-in-time compliance state of one EBS volume.

    Every flag is ``True``/``False`` when the provider answered and ``None``
    when the value could not be determined (or, for
    ``delete_on_termination``, when the volume has no attachment).
    """

    volume_id: str
    delete_on_termination: Optional[bool]
    encrypted: Optional[bool]
    backup_plan: Optional[bool]
    has_snapshots: Optional[bool]
    attached: Optional[bool]

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @property
    def indeterminate_fields(self) -> List[str]:
        """Names of the checked flags the provider could not answer."""

        return [
            name
            for name in ("encrypted", "backup_plan", "has_snapshots", "attached")
            if getattr(self, name) is None
        ]


@dataclass
class OrphanReport:
    """Snapshots whose source volume is gone, plus those that cannot be judged."""

    orphaned: List[str] = field(default_factory=list)
    unresolved: List[str] = field(default_factory=list)


__all__ = [
    "ERROR",
    "FAIL",
    "PASS",
    "ControlResult",
    "OrphanReport",
    "Outcome",
    "VolumeAuditRecord",
]
