"""Shared helpers for EBS audits and controls."""
from __future__ import annotations

from typing import Iterable, Iterator, Sequence, TypeVar

import boto3
from botocore.exceptions import BotoCoreError, ClientError, OperationNotPageableError

from .findings import ERROR, ControlResult

T = TypeVar("T")

# Failures raised by the SDK for a call that could not be answered.
AWS_ERRORS = (ClientError, BotoCoreError)


def safe_paginate(client: boto3.client, method_name: str, result_key: str, **kwargs) -> Iterator[dict]:
    """Iterate through paginated boto3 results while handling pagination gaps."""

    try:
        paginator = client.get_paginator(method_name)
    except OperationNotPageableError:
        response = getattr(client, method_name)(**kwargs)
        for item in response.get(result_key, []):
            yield item
        return

    for page in paginator.paginate(**kwargs):
        for item in page.get(result_key, []):
            yield item


def batch_iterable(items: Sequence[T], size: int) -> Iterable[Sequence[T]]:
    """Yield slices of *items* with at most ``size`` members."""

    for i in range(0, len(items), size):
        yield items[i : i + size]


def error_code(exc: BaseException) -> str:
    """Return the AWS error code carried by *exc*, or an empty string."""

    if isinstance(exc, ClientError):
        return exc.response.get("Error", {}).get("Code", "")
    return ""


def result_from_exception(
    control: int,
    action: str,
    exc: Exception,
    *,
    resource_id: str = "*",
) -> ControlResult:
    """Create an indeterminate :class:`ControlResult` for a failed lookup."""

    action = action.rstrip(".")
    return ControlResult(
        control=control,
        resource_id=resource_id,
        outcome=ERROR,
        message=f"{action}: {exc}",
    )


__all__ = [
    "AWS_ERRORS",
    "batch_iterable",
    "error_code",
    "result_from_exception",
    "safe_paginate",
]
