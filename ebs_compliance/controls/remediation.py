"""Controls that repair a non-compliant volume when allowed to."""
from __future__ import annotations

import logging
from typing import Dict

from ..findings import ERROR, FAIL, PASS, ControlResult
from ..gateway import EbsGateway, RemediationError, is_attached, primary_attachment
from ..utils import AWS_ERRORS, result_from_exception
from . import register_control

logger = logging.getLogger(__name__)

ENCRYPTION_SNAPSHOT_DESCRIPTION = "Automated encryption snapshot"


@register_control(
    1,
    "Attached EBS volumes should have delete on termination enabled",
    subject="volume",
    remediates=True,
)
def delete_on_termination(
    gateway: EbsGateway, volume_id: str, *, control: int, remediate: bool = True
) -> ControlResult:
    """Require delete-on-termination on an attached volume, enabling it if off.

    An unattached volume fails without remediation since there is no
    attachment to modify.
    """

    try:
        volume = gateway.describe_volume(volume_id)
    except AWS_ERRORS as exc:
        return result_from_exception(
            control, "Failed to describe volume", exc, resource_id=volume_id
        )
    if volume is None:
        return ControlResult(control, volume_id, ERROR, f"Volume {volume_id} not found")

    if not is_attached(volume):
        return ControlResult(
            control, volume_id, FAIL, f"Volume {volume_id} is not attached to any instance"
        )

    attachment = primary_attachment(volume) or {}
    if attachment.get("DeleteOnTermination") is True:
        return ControlResult(
            control,
            volume_id,
            PASS,
            f"Delete on Termination is enabled for volume {volume_id}",
        )

    instance_id = attachment.get("InstanceId", "")
    device = attachment.get("Device", "")
    details = {"instance_id": instance_id, "device": device}
    if not remediate:
        return ControlResult(
            control,
            volume_id,
            FAIL,
            f"Delete on Termination is disabled for volume {volume_id}",
            details=details,
        )

    logger.info(
        "Setting Delete on Termination flag for volume %s (%s on %s)",
        volume_id,
        device,
        instance_id,
    )
    try:
        gateway.set_delete_on_termination(instance_id, device)
    except AWS_ERRORS as exc:
        result = result_from_exception(
            control,
            "Failed to enable Delete on Termination",
            exc,
            resource_id=volume_id,
        )
        result.details.update(details)
        return result
    return ControlResult(
        control,
        volume_id,
        FAIL,
        f"Delete on Termination was disabled for volume {volume_id}; it is now enabled",
        remediated=True,
        details=details,
    )


@register_control(
    2,
    "Attached EBS volumes should have encryption enabled",
    subject="volume",
    remediates=True,
)
def encryption_at_rest(
    gateway: EbsGateway, volume_id: str, *, control: int, remediate: bool = True
) -> ControlResult:
    """Require encryption, creating an encrypted copy of unencrypted volumes.

    The copy is made from a fresh snapshot in the volume's availability zone.
    The original volume is left untouched; swapping it out is up to the
    operator. A failed step leaves created resources in place and names them
    in the result details.
    """

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
        return ControlResult(control, volume_id, PASS, f"Volume {volume_id} is already encrypted")
    if encrypted is not False:
        return ControlResult(
            control, volume_id, ERROR, f"Volume {volume_id} did not report its encryption state"
        )
    if not remediate:
        return ControlResult(control, volume_id, FAIL, f"Volume {volume_id} is not encrypted")

    created: Dict[str, str] = {}
    try:
        logger.info("Volume %s is not encrypted. Creating snapshot...", volume_id)
        snapshot_id = gateway.create_snapshot(volume_id, ENCRYPTION_SNAPSHOT_DESCRIPTION)
        created["snapshot_id"] = snapshot_id
        gateway.wait_snapshot_completed(snapshot_id)

        logger.info("Creating new encrypted volume from snapshot %s...", snapshot_id)
        new_volume_id = gateway.create_encrypted_volume(
            snapshot_id, volume["AvailabilityZone"]
        )
        created["new_volume_id"] = new_volume_id
        gateway.wait_volume_available(new_volume_id)
    except (RemediationError, *AWS_ERRORS) as exc:
        logger.error(
            "Encryption remediation for %s stopped; created so far: %s",
            volume_id,
            created or "nothing",
        )
        return ControlResult(
            control,
            volume_id,
            ERROR,
            f"Failed to create an encrypted copy of volume {volume_id}: {exc}",
            details=created,
        )

    return ControlResult(
        control,
        volume_id,
        FAIL,
        f"Volume {volume_id} is not encrypted; created encrypted volume {new_volume_id}",
        remediated=True,
        details=created,
    )


__all__ = ["ENCRYPTION_SNAPSHOT_DESCRIPTION", "delete_on_termination", "encryption_at_rest"]
