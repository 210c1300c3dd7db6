"""Command line interface for the EBS compliance tool."""
from __future__ import annotations

import argparse
import logging
from typing import Callable, List, Optional

import boto3
from botocore.exceptions import ProfileNotFound

from .auditor import audit_all_volumes
from .config import Settings
from .controls import CONTROL_REGISTRY, run_control
from .core import (
    export_records_to_excel,
    print_orphans,
    print_records,
    print_results,
)
from .findings import PASS
from .gateway import EbsGateway
from .log import configure_logging
from .orphans import find_orphaned_snapshots
from .retry import RetryExhaustedError
from .utils import AWS_ERRORS

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_RETRIES_EXHAUSTED = 2

SUBJECT_PROMPTS = {
    "volume": "Enter EBS Volume ID: ",
    "snapshot": "Enter EBS Snapshot ID: ",
}

InputFunc = Callable[[str], str]


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """Return parsed command line arguments."""

    parser = argparse.ArgumentParser(
        description="Audit and remediate AWS EBS volumes and snapshots.",
        epilog="Run without a command for the interactive menu.",
    )
    parser.add_argument("--profile", help="AWS CLI profile to use", default=None)
    parser.add_argument(
        "--region",
        help="AWS region to audit (defaults to $AWS_REGION, then us-east-1)",
        default=None,
    )
    parser.add_argument("--report", dest="report_file", help="Path of the JSON audit report")
    parser.add_argument("--log-file", dest="log_file", help="Path of the log file")
    parser.add_argument("--max-retries", type=int, help="Attempts for retried AWS calls")
    parser.add_argument(
        "--initial-delay", type=float, help="Seconds to wait before the first retry"
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")

    subparsers = parser.add_subparsers(dest="command")

    control = subparsers.add_parser("control", help="Run a single numbered control")
    control.add_argument("number", type=int, help="Control number (1-13)")
    control.add_argument(
        "resource_id", nargs="?", default=None, help="Volume or snapshot id, if required"
    )
    control.add_argument(
        "--dry-run",
        action="store_true",
        help="Report remediation that would happen without changing anything",
    )

    audit = subparsers.add_parser("audit", help="Audit all volumes in the region")
    audit.add_argument(
        "--parallel", action="store_true", help="Audit volumes on a worker pool"
    )
    audit.add_argument("--workers", type=int, default=None, help="Worker pool size")
    audit.add_argument(
        "--excel",
        dest="excel_path",
        help="Optional path to also export the audit as an Excel workbook (.xlsx)",
    )

    subparsers.add_parser("orphans", help="List snapshots whose volume no longer exists")
    subparsers.add_parser("list-controls", help="List the available controls")
    return parser.parse_args(argv)


def build_settings(args: argparse.Namespace) -> Settings:
    return Settings.from_env().with_overrides(
        region=args.region,
        profile=args.profile,
        report_file=args.report_file,
        log_file=args.log_file,
        max_retries=args.max_retries,
        initial_delay=args.initial_delay,
        workers=getattr(args, "workers", None),
    )


def build_gateway(settings: Settings) -> EbsGateway:
    """Create a gateway for *settings*, failing when no credentials resolve."""

    session = boto3.Session(profile_name=settings.profile, region_name=settings.region)
    if session.get_credentials() is None:
        raise RuntimeError(
            "No AWS credentials found. Configure a profile or environment credentials."
        )
    return EbsGateway.from_session(session, settings)


def list_controls() -> None:
    for control in CONTROL_REGISTRY:
        print(f"{control.number}) {control.title}")


def run_single_control(
    gateway: EbsGateway,
    number: int,
    resource_id: Optional[str],
    *,
    remediate: bool = True,
) -> int:
    result = run_control(number, gateway, resource_id, remediate=remediate)
    print_results([result])
    return EXIT_OK if result.outcome == PASS else EXIT_FAILURE


def run_audit(
    gateway: EbsGateway,
    settings: Settings,
    *,
    parallel: bool = False,
    excel_path: Optional[str] = None,
) -> int:
    records = audit_all_volumes(
        gateway, settings.report_file, parallel=parallel, workers=settings.workers
    )
    print_records(records)
    if excel_path:
        try:
            path = export_records_to_excel(records, excel_path)
        except RuntimeError as exc:
            logger.error("Failed to export Excel report: %s", exc)
        else:
            print(f"Excel report written to {path}")
    return EXIT_OK


def run_orphans(gateway: EbsGateway) -> int:
    report = find_orphaned_snapshots(gateway)
    print_orphans(report.orphaned, report.unresolved)
    return EXIT_OK


def run_interactive(
    gateway: EbsGateway, settings: Settings, input_func: InputFunc = input
) -> int:
    """Present the numbered menu and dispatch the selected action."""

    print("AWS EBS Compliance Automation Tool")
    print("======================================")
    print("Select action to perform:")
    print("1) Run individual control")
    print("2) Audit all volumes in the account/region")
    print("3) Validate orphaned snapshots")

    choice = input_func("Enter choice (1-3): ").strip()
    if choice == "1":
        print("Select control to run:")
        list_controls()
        selection = input_func(f"Enter control number (1-{len(CONTROL_REGISTRY)}): ").strip()
        try:
            number = int(selection)
        except ValueError:
            number = -1
        if number not in CONTROL_REGISTRY:
            logger.error("Invalid control selection")
            return EXIT_FAILURE
        prompt = SUBJECT_PROMPTS.get(CONTROL_REGISTRY[number].subject)
        resource_id = input_func(prompt).strip() if prompt else None
        return run_single_control(gateway, number, resource_id)
    if choice == "2":
        return run_audit(gateway, settings)
    if choice == "3":
        return run_orphans(gateway)

    logger.error("Invalid selection. Please choose a valid option.")
    return EXIT_FAILURE


def main(argv: Optional[List[str]] = None, input_func: InputFunc = input) -> int:
    """CLI entry point used by ``python -m ebs_compliance``."""

    args = parse_args(argv)
    if args.command == "list-controls":
        list_controls()
        return EXIT_OK

    try:
        settings = build_settings(args)
    except ValueError as exc:
        print(f"Error: {exc}")
        return EXIT_FAILURE

    configure_logging(settings.log_file, verbose=args.verbose)
    logger.info("Starting AWS EBS Compliance Automation Tool")

    try:
        gateway = build_gateway(settings)
    except (ProfileNotFound, RuntimeError, ValueError) as exc:
        logger.error("%s", exc)
        return EXIT_FAILURE
    logger.info("Using AWS Region: %s", settings.region)

    try:
        if args.command == "control":
            return run_single_control(
                gateway, args.number, args.resource_id, remediate=not args.dry_run
            )
        if args.command == "audit":
            return run_audit(
                gateway, settings, parallel=args.parallel, excel_path=args.excel_path
            )
        if args.command == "orphans":
            return run_orphans(gateway)
        return run_interactive(gateway, settings, input_func)
    except RetryExhaustedError as exc:
        logger.error("%s", exc)
        return EXIT_RETRIES_EXHAUSTED
    except AWS_ERRORS as exc:
        logger.error("AWS request failed: %s", exc)
        return EXIT_FAILURE
    except ValueError as exc:
        logger.error("%s", exc)
        return EXIT_FAILURE
    except (EOFError, KeyboardInterrupt):
        logger.error("Aborted")
        return EXIT_FAILURE


__all__ = ["main", "parse_args", "run_interactive"]
