"""Read-only controls evaluated against a single EBS volume."""
from __future__ import annotations

from ..findings import ERROR, FAIL, PASS, ControlResult
from ..gateway import EbsGateway, is_attached
from ..utils import AWS_ERRORS, result_from_exception
from . import register_control


@register_control(
    6, "EBS volumes should be in a backup plan", subject="volume"
)
@register_control(
    10,
    "Ensure EBS volumes are part of a valid and automated backup plan",
    subject="volume",
)
def volume_in_backup_plan(gateway: EbsGateway, volume_id: str, *, control: int) -> ControlResult:
    """Pass when AWS Backup lists the volume as a protected resource."""

    try:
        protected = gateway.is_backup_protected(volume_id)
    except AWS_ERRORS as exc:
        return result_from_exception(
            control, "Failed to list protected resources", exc, resource_id=volume_id
        )
    if protected:
        return ControlResult(
            control, volume_id, PASS, f"Volume {volume_id} is protected by a backup plan"
        )
    return ControlResult(
        control, volume_id, FAIL, f"Volume {volume_id} is not protected by a backup plan"
    )


@register_control(7, "EBS volume snapshots should exist", subject="volume")
def volume_has_snapshots(gateway: EbsGateway, volume_id: str, *, control: int) -> ControlResult:
    """Pass when at least one snapshot references the volume."""

    try:
        count = gateway.count_snapshots(volume_id)
    except AWS_ERRORS as exc:
        return result_from_exception(
            control, "Failed to describe snapshots", exc, resource_id=volume_id
        )
    if count > 0:
        return ControlResult(
            control,
            volume_id,
            PASS,
            f"Snapshots exist for volume {volume_id}",
            details={"snapshot_count": str(count)},
        )
    return ControlResult(control, volume_id, FAIL, f"No snapshots found for volume {volume_id}")


@register_control(
    8,
    "Ensure EBS volumes are attached to EC2 instances for proper usage and cost management",
    subject="volume",
)
@register_control(11, "Ensure volume is attached to an EC2 instance", subject="volume")
def volume_attached(gateway: EbsGateway, volume_id: str, *, control: int) -> ControlResult:
    """Pass when the primary attachment state is ``attached``."""

    try:
        volume = gateway.describe_volume(volume_id)
    except AWS_ERRORS as exc:
        return result_from_exception(
            control, "Failed to describe volume", exc, resource_id=volume_id
        )
    if volume is None:
        return ControlResult(control, volume_id, ERROR, f"Volume {volume_id} not found")
    if is_attached(volume):
        return ControlResult(
            control, volume_id, PASS, f"Volume {volume_id} is attached to an EC2 instance"
        )
    return ControlResult(
        control,
        volume_id,
        FAIL,
        f"Volume {volume_id} is not attached. Please manually attach it to an instance.",
    )


@register_control(
    9,
    "Ensure EBS volumes are encrypted at rest to protect data confidentiality",
    subject="volume",
)
@register_control(12, "Ensure volume encryption at rest is enabled", subject="volume")
def volume_encrypted(gateway: EbsGateway, volume_id: str, *, control: int) -> ControlResult:
    """Pass when the volume reports ``Encrypted``."""

    try:
        volume = gateway.describe_volume(volume_id)
    except AWS_ERRORS as exc:
        return result_from_exception(
            control, "Failed to describe volume", exc, resource_id=volume_id
        )
    if volume is None:
        return ControlResult(control, volume_id, ERROR, f"Volume {volume_id} not found")
    encrypted = volume.get("Encrypted")
    if encrypted is True:
        return ControlResult(control, volume_id, PASS, f"Volume {volume_id} is encrypted at rest")
    if encrypted is False:
        return ControlResult(
            control,
            volume_id,
            FAIL,
            f"Volume {volume_id} is not encrypted at rest. "
            "Consider migrating to an encrypted volume.",
        )
    return ControlResult(
        control, volume_id, ERROR, f"Volume {volume_id} did not report its encryption state"
    )


__all__ = ["volume_attached", "volume_encrypted", "volume_has_snapshots", "volume_in_backup_plan"]
