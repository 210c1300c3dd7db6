"""Shared fixtures: in-memory stand-ins for the EC2 and AWS Backup clients."""

from __future__ import annotations

import itertools
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

import pytest
from botocore.exceptions import ClientError, WaiterError


PROJECT_ROOT = Path(__file__).resolve().parents[2]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))


from ebs_compliance.gateway import EbsGateway
from ebs_compliance.retry import RetryPolicy


def client_error(code: str, operation: str = "Operation") -> ClientError:
    return ClientError({"Error": {"Code": code, "Message": f"{code} raised"}}, operation)


class FakePaginator:
    def __init__(self, method) -> None:
        self._method = method

    def paginate(self, **kwargs):
        yield self._method(**kwargs)


class FakeWaiter:
    def __init__(self, client: "FakeClient", name: str) -> None:
        self.client = client
        self.name = name

    def wait(self, **kwargs) -> None:
        self.client.calls.append((f"wait:{self.name}", kwargs))
        if self.name in self.client.stalled_waiters:
            raise WaiterError(
                name=self.name, reason="Max attempts exceeded", last_response={}
            )


class FakeClient:
    """Base fake that records calls and can inject failures per operation."""

    def __init__(self) -> None:
        self.calls: List[tuple] = []
        self.failures: Dict[str, List[Exception]] = {}
        self.stalled_waiters: set = set()

    def fail(self, operation: str, *errors: Exception) -> None:
        self.failures.setdefault(operation, []).extend(errors)

    def _record(self, operation: str, kwargs: Dict[str, Any]) -> None:
        self.calls.append((operation, kwargs))
        pending = self.failures.get(operation)
        if pending:
            raise pending.pop(0)

    def count(self, operation: str) -> int:
        return sum(1 for name, _ in self.calls if name == operation)

    def get_paginator(self, operation: str) -> FakePaginator:
        return FakePaginator(getattr(self, operation))

    def get_waiter(self, name: str) -> FakeWaiter:
        return FakeWaiter(self, name)


class FakeEc2(FakeClient):
    def __init__(self) -> None:
        super().__init__()
        self.volumes: Dict[str, dict] = {}
        self.snapshots: Dict[str, dict] = {}
        self.permissions: Dict[str, List[dict]] = {}
        self.encryption_default: Optional[bool] = True
        self._ids = itertools.count(1)
        # Create calls whose side effect lands even though an error is raised.
        self.land_then_fail: Dict[str, Exception] = {}

    # -- fixtures helpers
    def add_volume(
        self,
        volume_id: str,
        *,
        encrypted: bool = True,
        state: Optional[str] = "attached",
        delete_on_termination: Optional[bool] = True,
        instance_id: str = "i-0123",
        device: str = "/dev/xvda",
        zone: str = "us-east-1a",
    ) -> dict:
        attachments = []
        if state is not None:
            attachment = {"State": state, "InstanceId": instance_id, "Device": device}
            if delete_on_termination is not None:
                attachment["DeleteOnTermination"] = delete_on_termination
            attachments.append(attachment)
        volume = {
            "VolumeId": volume_id,
            "Encrypted": encrypted,
            "AvailabilityZone": zone,
            "Attachments": attachments,
        }
        self.volumes[volume_id] = volume
        return volume

    def add_snapshot(
        self, snapshot_id: str, volume_id: Optional[str], *, encrypted: bool = True
    ) -> dict:
        snapshot = {"SnapshotId": snapshot_id, "Encrypted": encrypted, "Tags": []}
        if volume_id is not None:
            snapshot["VolumeId"] = volume_id
        self.snapshots[snapshot_id] = snapshot
        return snapshot

    # -- EC2 API
    def describe_volumes(self, VolumeIds=None, Filters=None, **kwargs):
        self._record("describe_volumes", {"VolumeIds": VolumeIds, "Filters": Filters})
        if VolumeIds:
            missing = [vid for vid in VolumeIds if vid not in self.volumes]
            if missing:
                raise client_error("InvalidVolume.NotFound", "DescribeVolumes")
            return {"Volumes": [self.volumes[vid] for vid in VolumeIds]}
        volumes = list(self.volumes.values())
        for flt in Filters or []:
            if flt["Name"] == "volume-id":
                volumes = [v for v in volumes if v["VolumeId"] in flt["Values"]]
        return {"Volumes": volumes}

    def describe_snapshots(self, SnapshotIds=None, OwnerIds=None, Filters=None, **kwargs):
        self._record(
            "describe_snapshots",
            {"SnapshotIds": SnapshotIds, "OwnerIds": OwnerIds, "Filters": Filters},
        )
        if SnapshotIds:
            missing = [sid for sid in SnapshotIds if sid not in self.snapshots]
            if missing:
                raise client_error("InvalidSnapshot.NotFound", "DescribeSnapshots")
            return {"Snapshots": [self.snapshots[sid] for sid in SnapshotIds]}
        snapshots = list(self.snapshots.values())
        for flt in Filters or []:
            name = flt["Name"]
            if name == "volume-id":
                snapshots = [s for s in snapshots if s.get("VolumeId") in flt["Values"]]
            elif name.startswith("tag:"):
                key = name[len("tag:"):]
                snapshots = [
                    s
                    for s in snapshots
                    if any(t["Key"] == key and t["Value"] in flt["Values"] for t in s["Tags"])
                ]
        return {"Snapshots": snapshots}

    def describe_snapshot_attribute(self, SnapshotId, Attribute):
        self._record(
            "describe_snapshot_attribute", {"SnapshotId": SnapshotId, "Attribute": Attribute}
        )
        if SnapshotId not in self.snapshots:
            raise client_error("InvalidSnapshot.NotFound", "DescribeSnapshotAttribute")
        return {
            "SnapshotId": SnapshotId,
            "CreateVolumePermissions": self.permissions.get(SnapshotId, []),
        }

    def get_ebs_encryption_by_default(self, **kwargs):
        self._record("get_ebs_encryption_by_default", kwargs)
        if self.encryption_default is None:
            return {}
        return {"EbsEncryptionByDefault": self.encryption_default}

    def modify_instance_attribute(self, **kwargs):
        self._record("modify_instance_attribute", kwargs)
        for volume in self.volumes.values():
            for attachment in volume["Attachments"]:
                if (
                    attachment["InstanceId"] == kwargs["InstanceId"]
                    and attachment["Device"] == kwargs["BlockDeviceMappings"][0]["DeviceName"]
                ):
                    attachment["DeleteOnTermination"] = True
        return {}

    def create_snapshot(self, VolumeId, Description, TagSpecifications=None):
        snapshot_id = f"snap-new{next(self._ids)}"
        tags = TagSpecifications[0]["Tags"] if TagSpecifications else []
        landed = self.land_then_fail.pop("create_snapshot", None)
        if landed is not None:
            self.calls.append(("create_snapshot", {"VolumeId": VolumeId}))
            self.add_snapshot(snapshot_id, VolumeId)["Tags"] = list(tags)
            raise landed
        self._record("create_snapshot", {"VolumeId": VolumeId, "Description": Description})
        self.add_snapshot(snapshot_id, VolumeId)["Tags"] = list(tags)
        return {"SnapshotId": snapshot_id}

    def create_volume(self, **kwargs):
        self._record("create_volume", kwargs)
        volume_id = f"vol-new{next(self._ids)}"
        self.add_volume(
            volume_id,
            encrypted=kwargs.get("Encrypted", False),
            state=None,
            zone=kwargs["AvailabilityZone"],
        )
        return {"VolumeId": volume_id}


class FakeBackup(FakeClient):
    def __init__(self) -> None:
        super().__init__()
        self.protected: List[str] = []

    def list_protected_resources(self, **kwargs):
        self._record("list_protected_resources", kwargs)
        return {
            "Results": [
                {"ResourceArn": arn, "ResourceType": "EBS"} for arn in self.protected
            ]
        }

    def protect(self, volume_id: str) -> None:
        self.protected.append(f"arn:aws:ec2:us-east-1:123456789012:volume/{volume_id}")


@pytest.fixture
def sleeps() -> List[float]:
    return []


@pytest.fixture
def ec2() -> FakeEc2:
    return FakeEc2()


@pytest.fixture
def backup() -> FakeBackup:
    return FakeBackup()


@pytest.fixture
def gateway(ec2: FakeEc2, backup: FakeBackup, sleeps: List[float]) -> EbsGateway:
    policy = RetryPolicy(max_retries=3, initial_delay=1, sleep=sleeps.append)
    return EbsGateway(ec2, backup, retry=policy, waiter_delay=1, waiter_max_attempts=2)
