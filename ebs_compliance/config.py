"""Runtime settings for the EBS compliance toolkit."""
from __future__ import annotations

import os
from dataclasses import dataclass, fields, replace
from typing import Any, Mapping, Optional


DEFAULT_REGION = "us-east-1"
DEFAULT_REPORT_FILE = "compliance_report.json"
DEFAULT_LOG_FILE = "ebs_compliance.log"


@dataclass(frozen=True)
class Settings:
    """Settings shared by the auditors, controls and CLI."""

    region: str = DEFAULT_REGION
    profile: Optional[str] = None
    report_file: str = DEFAULT_REPORT_FILE
    log_file: str = DEFAULT_LOG_FILE
    max_retries: int = 5
    initial_delay: float = 5.0
    workers: int = 4
    waiter_delay: int = 15
    waiter_max_attempts: int = 40
    remediation_volume_type: str = "gp3"

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        """Return settings using ``AWS_REGION`` from *environ* when present."""

        environ = os.environ if environ is None else environ
        region = environ.get("AWS_REGION") or DEFAULT_REGION
        return cls(region=region)

    def with_overrides(self, **overrides: Any) -> "Settings":
        """Return a copy with every non-``None`` value in *overrides* applied."""

        known = {field.name for field in fields(self)}
        unknown = sorted(set(overrides) - known)
        if unknown:
            raise ValueError(f"Unknown setting(s): {', '.join(unknown)}")
        values = {key: value for key, value in overrides.items() if value is not None}
        return replace(self, **values)


__all__ = ["DEFAULT_LOG_FILE", "DEFAULT_REGION", "DEFAULT_REPORT_FILE", "Settings"]
