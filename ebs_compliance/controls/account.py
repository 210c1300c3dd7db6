"""Account-wide EBS controls."""
from __future__ import annotations

from ..findings import FAIL, PASS, ControlResult
from ..gateway import EbsGateway
from ..utils import AWS_ERRORS, result_from_exception
from . import register_control


@register_control(5, "EBS encryption by default should be enabled", subject="account")
def encryption_by_default(gateway: EbsGateway, resource_id: str, *, control: int) -> ControlResult:
    """Pass only when the account flag is literally ``True``."""

    try:
        enabled = gateway.encryption_by_default()
    except AWS_ERRORS as exc:
        return result_from_exception(
            control, "Failed to read EBS encryption by default", exc, resource_id=resource_id
        )
    if enabled is True:
        return ControlResult(control, resource_id, PASS, "EBS encryption by default is enabled")
    return ControlResult(control, resource_id, FAIL, "EBS encryption by default is not enabled")


__all__ = ["encryption_by_default"]
