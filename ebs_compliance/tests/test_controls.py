"""Tests for the numbered EBS controls."""

from __future__ import annotations

import pytest
from botocore.exceptions import ClientError

from ebs_compliance.controls import CONTROL_REGISTRY, CONTROLS, run_control
from ebs_compliance.controls.remediation import ENCRYPTION_SNAPSHOT_DESCRIPTION
from ebs_compliance.retry import RetryExhaustedError


def _error(code: str) -> ClientError:
    return ClientError({"Error": {"Code": code, "Message": code}}, "Operation")


def test_registry_exposes_thirteen_controls() -> None:
    """Controls 1-13 are registered with titles and subjects."""

    assert sorted(CONTROLS) == list(range(1, 14))
    assert [control.number for control in CONTROL_REGISTRY] == list(range(1, 14))
    assert CONTROLS[5].subject == "account"
    assert {CONTROLS[n].subject for n in (3, 4, 13)} == {"snapshot"}


def test_duplicate_controls_share_rules() -> None:
    """Numbered duplicates evaluate the same rule."""

    assert CONTROLS[6].rule_id == CONTROLS[10].rule_id
    assert CONTROLS[8].rule_id == CONTROLS[11].rule_id
    assert CONTROLS[9].rule_id == CONTROLS[12].rule_id
    assert CONTROLS[1].remediates and CONTROLS[2].remediates
    assert not any(CONTROLS[n].remediates for n in range(3, 14))


def test_registering_a_different_rule_twice_fails() -> None:
    with pytest.raises(ValueError):
        CONTROL_REGISTRY.register(1, "duplicate", subject="volume")(lambda *a, **k: None)


def test_unknown_control_and_missing_id_are_rejected(gateway) -> None:
    with pytest.raises(ValueError):
        run_control(14, gateway, "vol-1")
    with pytest.raises(ValueError):
        run_control(8, gateway, "  ")


# -- control 1: delete on termination


def test_control1_passes_when_flag_enabled(gateway, ec2) -> None:
    ec2.add_volume("vol-1", delete_on_termination=True)

    result = run_control(1, gateway, "vol-1")

    assert result.outcome == "PASS"
    assert ec2.count("modify_instance_attribute") == 0


def test_control1_remediates_disabled_flag(gateway, ec2) -> None:
    """The flag is enabled on the attachment's instance and device."""

    ec2.add_volume("vol-1", delete_on_termination=False, instance_id="i-9", device="/dev/sdf")

    result = run_control(1, gateway, "vol-1")

    assert result.outcome == "FAIL"
    assert result.remediated is True
    _, kwargs = ec2.calls[-1]
    assert kwargs == {
        "InstanceId": "i-9",
        "BlockDeviceMappings": [
            {"DeviceName": "/dev/sdf", "Ebs": {"DeleteOnTermination": True}}
        ],
    }
    assert ec2.volumes["vol-1"]["Attachments"][0]["DeleteOnTermination"] is True


def test_control1_dry_run_does_not_modify(gateway, ec2) -> None:
    ec2.add_volume("vol-1", delete_on_termination=False)

    result = run_control(1, gateway, "vol-1", remediate=False)

    assert result.outcome == "FAIL"
    assert result.remediated is False
    assert ec2.count("modify_instance_attribute") == 0


def test_control1_fails_unattached_volume(gateway, ec2) -> None:
    ec2.add_volume("vol-1", state=None)

    result = run_control(1, gateway, "vol-1")

    assert result.outcome == "FAIL"
    assert ec2.count("modify_instance_attribute") == 0


def test_control1_missing_volume_is_indeterminate(gateway) -> None:
    assert run_control(1, gateway, "vol-404").outcome == "ERROR"


def test_control1_remediation_failure_is_indeterminate(gateway, ec2) -> None:
    ec2.add_volume("vol-1", delete_on_termination=False)
    ec2.fail("modify_instance_attribute", _error("UnauthorizedOperation"))

    result = run_control(1, gateway, "vol-1")

    assert result.outcome == "ERROR"
    assert result.details["instance_id"] == "i-0123"


# -- control 2: encryption with remediation


def test_control2_passes_encrypted_volume(gateway, ec2) -> None:
    ec2.add_volume("vol-1", encrypted=True)

    assert run_control(2, gateway, "vol-1").outcome == "PASS"
    assert ec2.count("create_snapshot") == 0


def test_control2_creates_encrypted_copy(gateway, ec2) -> None:
    """Snapshot, wait, create an encrypted volume in the same zone, wait."""

    ec2.add_volume("vol-1", encrypted=False, zone="us-east-1c")

    result = run_control(2, gateway, "vol-1")

    assert result.outcome == "FAIL"
    assert result.remediated is True
    new_volume_id = result.details["new_volume_id"]
    assert ec2.volumes[new_volume_id]["Encrypted"] is True
    assert ec2.volumes[new_volume_id]["AvailabilityZone"] == "us-east-1c"
    operations = [name for name, _ in ec2.calls if name != "describe_volumes"]
    assert operations == [
        "create_snapshot",
        "wait:snapshot_completed",
        "create_volume",
        "wait:volume_available",
    ]
    snapshot_call = next(kwargs for name, kwargs in ec2.calls if name == "create_snapshot")
    assert snapshot_call["Description"] == ENCRYPTION_SNAPSHOT_DESCRIPTION


def test_control2_stalled_snapshot_aborts(gateway, ec2) -> None:
    """A snapshot that never completes stops the workflow and names it."""

    ec2.add_volume("vol-1", encrypted=False)
    ec2.stalled_waiters.add("snapshot_completed")

    result = run_control(2, gateway, "vol-1")

    assert result.outcome == "ERROR"
    assert result.details["snapshot_id"] in ec2.snapshots
    assert "new_volume_id" not in result.details
    assert ec2.count("create_volume") == 0


def test_control2_dry_run(gateway, ec2) -> None:
    ec2.add_volume("vol-1", encrypted=False)

    result = run_control(2, gateway, "vol-1", remediate=False)

    assert result.outcome == "FAIL"
    assert ec2.count("create_snapshot") == 0


# -- snapshot controls


def test_control3_snapshot_encryption(gateway, ec2) -> None:
    ec2.add_snapshot("snap-1", "vol-1", encrypted=True)
    ec2.add_snapshot("snap-2", "vol-1", encrypted=False)

    assert run_control(3, gateway, "snap-1").outcome == "PASS"
    assert run_control(3, gateway, "snap-2").outcome == "FAIL"
    assert run_control(3, gateway, "snap-404").outcome == "ERROR"


@pytest.mark.parametrize(
    "permissions, outcome",
    [
        ([], "PASS"),
        ([{"Group": "all"}], "FAIL"),
        ([{"UserId": "210987654321"}], "FAIL"),
    ],
)
def test_control4_any_grant_fails(gateway, ec2, permissions, outcome) -> None:
    """Any create-volume permission fails, whoever the grantee is."""

    ec2.add_snapshot("snap-1", "vol-1")
    ec2.permissions["snap-1"] = permissions

    assert run_control(4, gateway, "snap-1").outcome == outcome


def test_control13_delegates_to_volume_attachment(gateway, ec2) -> None:
    ec2.add_volume("vol-1", state="attached")
    ec2.add_volume("vol-2", state="detaching")
    ec2.add_snapshot("snap-1", "vol-1")
    ec2.add_snapshot("snap-2", "vol-2")
    ec2.add_snapshot("snap-3", None)

    first = run_control(13, gateway, "snap-1")
    assert first.outcome == "PASS"
    assert first.details["volume_id"] == "vol-1"
    assert run_control(13, gateway, "snap-2").outcome == "FAIL"
    assert run_control(13, gateway, "snap-3").outcome == "FAIL"


def test_control13_deleted_source_volume_fails(gateway, ec2) -> None:
    """A deleted source volume is a definite "not attached"."""

    ec2.add_snapshot("snap-1", "vol-deleted")

    result = run_control(13, gateway, "snap-1")

    assert result.outcome == "FAIL"
    assert "no longer exists" in result.message
    assert result.details["volume_id"] == "vol-deleted"


def test_control13_source_volume_lookup_failure_is_indeterminate(gateway, ec2) -> None:
    ec2.add_volume("vol-1")
    ec2.add_snapshot("snap-1", "vol-1")
    ec2.fail("describe_volumes", _error("UnauthorizedOperation"))

    result = run_control(13, gateway, "snap-1")

    assert result.outcome == "ERROR"
    assert result.details["volume_id"] == "vol-1"


# -- account and volume read-only controls


@pytest.mark.parametrize("flag, outcome", [(True, "PASS"), (False, "FAIL"), (None, "FAIL")])
def test_control5_requires_literal_true(gateway, ec2, flag, outcome) -> None:
    ec2.encryption_default = flag

    result = run_control(5, gateway)

    assert result.outcome == outcome
    assert result.resource_id == "account"


def test_control5_lookup_failure_is_indeterminate(gateway, ec2) -> None:
    ec2.fail("get_ebs_encryption_by_default", _error("UnauthorizedOperation"))

    assert run_control(5, gateway).outcome == "ERROR"


@pytest.mark.parametrize("number", [6, 10])
def test_backup_controls(gateway, backup, number) -> None:
    backup.protect("vol-1")

    assert run_control(number, gateway, "vol-1").outcome == "PASS"
    assert run_control(number, gateway, "vol-2").outcome == "FAIL"


def test_control7_requires_a_snapshot(gateway, ec2) -> None:
    ec2.add_snapshot("snap-1", "vol-1")

    assert run_control(7, gateway, "vol-1").outcome == "PASS"
    assert run_control(7, gateway, "vol-2").outcome == "FAIL"


@pytest.mark.parametrize("number", [8, 11])
def test_attachment_controls(gateway, ec2, number) -> None:
    ec2.add_volume("vol-1", state="attached")
    ec2.add_volume("vol-2", state=None)

    assert run_control(number, gateway, "vol-1").outcome == "PASS"
    assert run_control(number, gateway, "vol-2").outcome == "FAIL"
    assert run_control(number, gateway, "vol-3").outcome == "ERROR"


@pytest.mark.parametrize("number", [9, 12])
def test_encryption_controls_are_read_only(gateway, ec2, number) -> None:
    ec2.add_volume("vol-1", encrypted=False)

    assert run_control(number, gateway, "vol-1").outcome == "FAIL"
    assert ec2.count("create_snapshot") == 0


def test_access_denied_is_indeterminate_not_fail(gateway, ec2) -> None:
    """A lookup the provider refuses is reported as ERROR."""

    ec2.fail("describe_volumes", _error("UnauthorizedOperation"))

    assert run_control(8, gateway, "vol-1").outcome == "ERROR"


def test_retry_exhaustion_propagates(gateway, ec2) -> None:
    """Running out of retries is fatal rather than an ERROR result."""

    ec2.fail("describe_volumes", *[_error("Throttling")] * 3)

    with pytest.raises(RetryExhaustedError):
        run_control(9, gateway, "vol-1")
