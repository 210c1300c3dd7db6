"""Thin adapter over the EC2 and AWS Backup APIs used by the EBS checks."""
from __future__ import annotations

import logging
import uuid
from typing import Iterable, List, Optional, Set

import boto3
from botocore.exceptions import ClientError, WaiterError

from .config import Settings
from .retry import RetryPolicy
from .utils import batch_iterable, error_code, safe_paginate

logger = logging.getLogger(__name__)

VOLUME_FILTER_BATCH_SIZE = 200  # describe_volumes accepts up to 200 filter values
NOT_FOUND_CODES = frozenset(
    {
        "InvalidVolume.NotFound",
        "InvalidVolumeID.Malformed",
        "InvalidSnapshot.NotFound",
        "InvalidSnapshotID.Malformed",
    }
)
REMEDIATION_TOKEN_TAG = "ebs-compliance:remediation-token"


def primary_attachment(volume: dict) -> Optional[dict]:
    """Return the first attachment of a volume description, if any."""

    attachments = volume.get("Attachments") or []
    return attachments[0] if attachments else None


def is_attached(volume: dict) -> bool:
    """Return ``True`` iff the primary attachment state is exactly ``attached``."""

    attachment = primary_attachment(volume)
    return attachment is not None and attachment.get("State") == "attached"


class RemediationError(RuntimeError):
    """A remediation step could not be completed."""


class EbsGateway:
    """Read and write EBS state through boto3 clients.

    Read calls go through the retry policy. Mutations are issued once, or with
    a reconciliation step that detects an earlier attempt that already landed.
    """

    def __init__(
        self,
        ec2: boto3.client,
        backup: boto3.client,
        *,
        retry: Optional[RetryPolicy] = None,
        waiter_delay: int = 15,
        waiter_max_attempts: int = 40,
        volume_type: str = "gp3",
    ) -> None:
        self.ec2 = ec2
        self.backup = backup
        self.retry = retry or RetryPolicy()
        self.waiter_delay = waiter_delay
        self.waiter_max_attempts = waiter_max_attempts
        self.volume_type = volume_type

    @classmethod
    def from_session(cls, session: boto3.session.Session, settings: Settings) -> "EbsGateway":
        return cls(
            session.client("ec2"),
            session.client("backup"),
            retry=RetryPolicy(settings.max_retries, settings.initial_delay),
            waiter_delay=settings.waiter_delay,
            waiter_max_attempts=settings.waiter_max_attempts,
            volume_type=settings.remediation_volume_type,
        )

    # ------------------------------------------------------------------ reads

    def list_volume_ids(self) -> List[str]:
        """Return every volume id visible to the session, in API order."""

        return self.retry.call(
            lambda: [
                volume["VolumeId"]
                for volume in safe_paginate(self.ec2, "describe_volumes", "Volumes")
            ],
            description="describe-volumes",
        )

    def describe_volume(self, volume_id: str) -> Optional[dict]:
        """Return the volume description, or ``None`` if it does not exist."""

        try:
            response = self.retry.call(
                self.ec2.describe_volumes,
                VolumeIds=[volume_id],
                description=f"describe-volumes {volume_id}",
            )
        except ClientError as exc:
            if error_code(exc) in NOT_FOUND_CODES:
                return None
            raise
        volumes = response.get("Volumes", [])
        return volumes[0] if volumes else None

    def existing_volume_ids(self, volume_ids: Iterable[str]) -> Set[str]:
        """Return the subset of *volume_ids* that still exist.

        A ``volume-id`` filter is used instead of ``VolumeIds`` so that missing
        volumes are simply absent from the response rather than failing the call.
        """

        wanted = list(dict.fromkeys(volume_ids))
        found: Set[str] = set()
        for batch in batch_iterable(wanted, VOLUME_FILTER_BATCH_SIZE):
            filters = [{"Name": "volume-id", "Values": list(batch)}]
            volumes = self.retry.call(
                lambda: list(
                    safe_paginate(self.ec2, "describe_volumes", "Volumes", Filters=filters)
                ),
                description="describe-volumes (existence)",
            )
            found.update(volume["VolumeId"] for volume in volumes)
        return found

    def list_snapshots(self) -> List[dict]:
        """Return snapshots owned by the calling account."""

        return self.retry.call(
            lambda: list(
                safe_paginate(self.ec2, "describe_snapshots", "Snapshots", OwnerIds=["self"])
            ),
            description="describe-snapshots --owner-ids self",
        )

    def describe_snapshot(self, snapshot_id: str) -> Optional[dict]:
        """Return the snapshot description, or ``None`` if it does not exist."""

        try:
            response = self.retry.call(
                self.ec2.describe_snapshots,
                SnapshotIds=[snapshot_id],
                description=f"describe-snapshots {snapshot_id}",
            )
        except ClientError as exc:
            if error_code(exc) in NOT_FOUND_CODES:
                return None
            raise
        snapshots = response.get("Snapshots", [])
        return snapshots[0] if snapshots else None

    def count_snapshots(self, volume_id: str) -> int:
        """Return how many snapshots the account holds for *volume_id*."""

        filters = [{"Name": "volume-id", "Values": [volume_id]}]
        snapshots = self.retry.call(
            lambda: list(
                safe_paginate(
                    self.ec2,
                    "describe_snapshots",
                    "Snapshots",
                    OwnerIds=["self"],
                    Filters=filters,
                )
            ),
            description=f"describe-snapshots volume-id={volume_id}",
        )
        return len(snapshots)

    def create_volume_permissions(self, snapshot_id: str) -> List[dict]:
        """Return the ``createVolumePermission`` grants on a snapshot."""

        response = self.retry.call(
            self.ec2.describe_snapshot_attribute,
            SnapshotId=snapshot_id,
            Attribute="createVolumePermission",
            description=f"describe-snapshot-attribute {snapshot_id}",
        )
        return response.get("CreateVolumePermissions", [])

    def encryption_by_default(self) -> Optional[bool]:
        """Return the account's EBS encryption-by-default flag for the region."""

        response = self.retry.call(
            self.ec2.get_ebs_encryption_by_default,
            description="get-ebs-encryption-by-default",
        )
        return response.get("EbsEncryptionByDefault")

    def protected_resource_arns(self) -> List[str]:
        """Return the ARNs of resources protected by AWS Backup."""

        return self.retry.call(
            lambda: [
                item["ResourceArn"]
                for item in safe_paginate(self.backup, "list_protected_resources", "Results")
                if item.get("ResourceArn")
            ],
            description="backup list-protected-resources",
        )

    def is_backup_protected(
        self, volume_id: str, arns: Optional[Iterable[str]] = None
    ) -> bool:
        """Return ``True`` when a protected-resource ARN names *volume_id*.

        *arns* defaults to a fresh :meth:`protected_resource_arns` listing.
        """

        if arns is None:
            arns = self.protected_resource_arns()
        return any(arn.rsplit("/", 1)[-1] == volume_id for arn in arns)

    # -------------------------------------------------------------- mutations

    def set_delete_on_termination(self, instance_id: str, device: str) -> None:
        """Enable delete-on-termination for *device* on *instance_id*."""

        self.ec2.modify_instance_attribute(
            InstanceId=instance_id,
            BlockDeviceMappings=[
                {"DeviceName": device, "Ebs": {"DeleteOnTermination": True}}
            ],
        )

    def create_snapshot(self, volume_id: str, description: str) -> str:
        """Start a snapshot of *volume_id* and return its id.

        The snapshot is tagged with a one-off token; when a retry follows a
        failed response, the token is used to find a snapshot that was created
        anyway instead of creating a second one.
        """

        token = uuid.uuid4().hex
        tags = [
            {
                "ResourceType": "snapshot",
                "Tags": [{"Key": REMEDIATION_TOKEN_TAG, "Value": token}],
            }
        ]

        def create() -> str:
            response = self.ec2.create_snapshot(
                VolumeId=volume_id, Description=description, TagSpecifications=tags
            )
            return response["SnapshotId"]

        def reconcile() -> Optional[str]:
            response = self.ec2.describe_snapshots(
                OwnerIds=["self"],
                Filters=[{"Name": f"tag:{REMEDIATION_TOKEN_TAG}", "Values": [token]}],
            )
            snapshots = response.get("Snapshots", [])
            return snapshots[0]["SnapshotId"] if snapshots else None

        return self.retry.call_with_reconcile(
            create, reconcile, description=f"create-snapshot {volume_id}"
        )

    def create_encrypted_volume(
        self, snapshot_id: str, availability_zone: str, volume_type: Optional[str] = None
    ) -> str:
        """Create an encrypted volume from *snapshot_id* and return its id.

        A fixed ``ClientToken`` makes repeated requests return the same volume.
        """

        token = uuid.uuid4().hex
        response = self.retry.call(
            self.ec2.create_volume,
            SnapshotId=snapshot_id,
            AvailabilityZone=availability_zone,
            VolumeType=volume_type or self.volume_type,
            Encrypted=True,
            ClientToken=token,
            description=f"create-volume --snapshot-id {snapshot_id}",
        )
        return response["VolumeId"]

    def wait_snapshot_completed(self, snapshot_id: str) -> None:
        self._wait("snapshot_completed", SnapshotIds=[snapshot_id])

    def wait_volume_available(self, volume_id: str) -> None:
        self._wait("volume_available", VolumeIds=[volume_id])

    def _wait(self, waiter_name: str, **kwargs) -> None:
        waiter = self.ec2.get_waiter(waiter_name)
        timeout = self.waiter_delay * self.waiter_max_attempts
        logger.info("Waiting for %s (timeout %ss)", waiter_name.replace("_", " "), timeout)
        try:
            waiter.wait(
                WaiterConfig={"Delay": self.waiter_delay, "MaxAttempts": self.waiter_max_attempts},
                **kwargs,
            )
        except WaiterError as exc:
            raise RemediationError(f"Gave up waiting for {waiter_name}: {exc}") from exc


__all__ = [
    "EbsGateway",
    "NOT_FOUND_CODES",
    "REMEDIATION_TOKEN_TAG",
    "RemediationError",
    "is_attached",
    "primary_attachment",
]
