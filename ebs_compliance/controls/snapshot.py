"""Controls evaluated against a single EBS snapshot."""
from __future__ import annotations

from ..findings import ERROR, FAIL, PASS, ControlResult
from ..gateway import EbsGateway, is_attached
from ..utils import AWS_ERRORS, result_from_exception
from . import register_control

# EC2 reports this volume id for snapshots copied from another snapshot.
PLACEHOLDER_VOLUME_ID = "vol-ffffffff"


@register_control(3, "EBS snapshots should be encrypted", subject="snapshot")
def snapshot_encrypted(gateway: EbsGateway, snapshot_id: str, *, control: int) -> ControlResult:
    try:
        snapshot = gateway.describe_snapshot(snapshot_id)
    except AWS_ERRORS as exc:
        return result_from_exception(
            control, "Failed to describe snapshot", exc, resource_id=snapshot_id
        )
    if snapshot is None:
        return ControlResult(control, snapshot_id, ERROR, f"Snapshot {snapshot_id} not found")
    encrypted = snapshot.get("Encrypted")
    if encrypted is True:
        return ControlResult(control, snapshot_id, PASS, f"Snapshot {snapshot_id} is encrypted")
    if encrypted is False:
        return ControlResult(control, snapshot_id, FAIL, f"Snapshot {snapshot_id} is not encrypted")
    return ControlResult(
        control,
        snapshot_id,
        ERROR,
        f"Snapshot {snapshot_id} did not report its encryption state",
    )


@register_control(4, "EBS snapshots should not be publicly restorable", subject="snapshot")
def snapshot_not_public(gateway: EbsGateway, snapshot_id: str, *, control: int) -> ControlResult:
    """Fail on any ``createVolumePermission`` grant, whoever the grantee is."""

    try:
        permissions = gateway.create_volume_permissions(snapshot_id)
    except AWS_ERRORS as exc:
        return result_from_exception(
            control, "Failed to describe snapshot attribute", exc, resource_id=snapshot_id
        )
    if not permissions:
        return ControlResult(
            control, snapshot_id, PASS, f"Snapshot {snapshot_id} is not publicly restorable"
        )
    grantees = sorted(
        permission.get("Group") or permission.get("UserId") or "unknown"
        for permission in permissions
    )
    return ControlResult(
        control,
        snapshot_id,
        FAIL,
        f"Snapshot {snapshot_id} is publicly restorable",
        details={"grantees": ", ".join(grantees)},
    )


@register_control(13, "Ensure snapshots are attached (via volume)", subject="snapshot")
def snapshot_volume_attached(
    gateway: EbsGateway, snapshot_id: str, *, control: int
) -> ControlResult:
    """Resolve the snapshot's source volume and check that it is attached.

    A source volume that has been deleted cannot be attached and fails.
    """

    try:
        snapshot = gateway.describe_snapshot(snapshot_id)
    except AWS_ERRORS as exc:
        return result_from_exception(
            control, "Failed to describe snapshot", exc, resource_id=snapshot_id
        )
    if snapshot is None:
        return ControlResult(control, snapshot_id, ERROR, f"Snapshot {snapshot_id} not found")

    volume_id = snapshot.get("VolumeId")
    if not volume_id or volume_id == PLACEHOLDER_VOLUME_ID:
        return ControlResult(
            control, snapshot_id, FAIL, f"Snapshot {snapshot_id} does not belong to any volume."
        )

    details = {"volume_id": volume_id}
    try:
        volume = gateway.describe_volume(volume_id)
    except AWS_ERRORS as exc:
        result = result_from_exception(
            control,
            f"Failed to describe source volume {volume_id}",
            exc,
            resource_id=snapshot_id,
        )
        result.details.update(details)
        return result
    if volume is None:
        return ControlResult(
            control,
            snapshot_id,
            FAIL,
            f"Snapshot {snapshot_id} belongs to volume {volume_id}, which no longer exists",
            details=details,
        )
    if is_attached(volume):
        return ControlResult(
            control,
            snapshot_id,
            PASS,
            f"Snapshot {snapshot_id} belongs to volume {volume_id}, which is attached",
            details=details,
        )
    return ControlResult(
        control,
        snapshot_id,
        FAIL,
        f"Snapshot {snapshot_id} belongs to volume {volume_id}, which is not attached",
        details=details,
    )


__all__ = [
    "PLACEHOLDER_VOLUME_ID",
    "snapshot_encrypted",
    "snapshot_not_public",
    "snapshot_volume_attached",
]
