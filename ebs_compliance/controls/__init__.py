"""Numbered EBS compliance controls and their registry."""
from __future__ import annotations

from dataclasses import dataclass
import importlib
import logging
import pkgutil
from types import MappingProxyType
from typing import Callable, Dict, Iterator, Literal, Mapping, Optional

from ..findings import FAIL, PASS, ControlResult
from ..gateway import EbsGateway

logger = logging.getLogger(__name__)

Subject = Literal["volume", "snapshot", "account"]
ControlRule = Callable[..., ControlResult]


@dataclass(frozen=True)
class Control:
    """A numbered control bound to the rule that evaluates it."""

    number: int
    title: str
    subject: Subject
    rule: ControlRule
    remediates: bool = False

    @property
    def rule_id(self) -> str:
        """Name of the shared rule; duplicate controls report the same id."""

        return self.rule.__name__


class ControlRegistry:
    """Registry that maps control numbers to :class:`Control` definitions."""

    def __init__(self) -> None:
        self._controls: Dict[int, Control] = {}

    def register(
        self,
        number: int,
        title: str,
        *,
        subject: Subject,
        remediates: bool = False,
    ) -> Callable[[ControlRule], ControlRule]:
        """Return a decorator that registers the wrapped rule as *number*.

        Stacking the decorator registers one rule under several numbers.
        """

        if number < 1:
            raise ValueError("Control numbers start at 1")

        def decorator(func: ControlRule) -> ControlRule:
            existing = self._controls.get(number)
            if existing is not None and existing.rule is not func:
                raise ValueError(f"Control {number} is already registered")
            self._controls[number] = Control(number, title, subject, func, remediates)
            return func

        return decorator

    def __contains__(self, number: object) -> bool:
        return number in self._controls

    def __getitem__(self, number: int) -> Control:
        return self._controls[number]

    def __iter__(self) -> Iterator[Control]:
        return iter(sorted(self._controls.values(), key=lambda control: control.number))

    def __len__(self) -> int:
        return len(self._controls)

    def as_mapping(self) -> Mapping[int, Control]:
        return MappingProxyType(self._controls)


CONTROL_REGISTRY = ControlRegistry()
register_control = CONTROL_REGISTRY.register


def run_control(
    number: int,
    gateway: EbsGateway,
    resource_id: Optional[str] = None,
    *,
    remediate: bool = True,
) -> ControlResult:
    """Evaluate control *number* against *resource_id* and log the outcome.

    Account-wide controls ignore *resource_id*. ``remediate=False`` runs the
    remediating controls as read-only checks.
    """

    if number not in CONTROL_REGISTRY:
        valid = ", ".join(str(control.number) for control in CONTROL_REGISTRY)
        raise ValueError(f"Unknown control '{number}'. Valid controls: {valid}")
    control = CONTROL_REGISTRY[number]

    if control.subject == "account":
        resource_id = "account"
    else:
        resource_id = (resource_id or "").strip()
        if not resource_id:
            raise ValueError(f"Control {number} requires a {control.subject} id")

    logger.info("Running EBS Control %d: %s", number, control.title)
    if control.remediates:
        result = control.rule(gateway, resource_id, control=number, remediate=remediate)
    else:
        result = control.rule(gateway, resource_id, control=number)
    log_result(result)
    return result


def log_result(result: ControlResult) -> None:
    """Log *result* at a level matching its outcome."""

    if result.outcome == PASS:
        logger.info("%s", result.message)
    elif result.outcome == FAIL:
        logger.error("%s", result.message)
    else:
        logger.warning("Could not determine compliance: %s", result.message)


def _import_control_modules() -> None:
    """Import modules that register controls via decorators."""

    package_name = __name__
    package_paths = getattr(__spec__, "submodule_search_locations", None)
    if not package_paths:
        return

    for module_info in pkgutil.iter_modules(package_paths):
        module_name = module_info.name
        if module_name.startswith("_"):
            continue
        importlib.import_module(f"{package_name}.{module_name}")


_import_control_modules()

CONTROLS: Mapping[int, Control] = CONTROL_REGISTRY.as_mapping()

__all__ = [
    "CONTROLS",
    "CONTROL_REGISTRY",
    "Control",
    "ControlRegistry",
    "ControlRule",
    "log_result",
    "register_control",
    "run_control",
]
