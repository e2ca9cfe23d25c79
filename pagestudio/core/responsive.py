"""
Responsive Value Resolution
Flow: Prop value → Responsive check → Cascade walk (requested → mobile) → Concrete value

A responsive value is a mapping ``{"mobile": T, "tablet"?: T, "desktop"?: T}``.
``mobile`` is the mandatory baseline; a larger breakpoint without its own entry
inherits the value of the next smaller breakpoint that has one.
"""

import copy
from enum import Enum
from typing import Any, Dict, List, Mapping, Union

from pydantic import BaseModel, Field


class Breakpoint(str, Enum):
    """Viewport buckets, ordered from smallest to largest."""
    MOBILE = "mobile"
    TABLET = "tablet"
    DESKTOP = "desktop"


class BreakpointConfig(BaseModel):
    """Display metadata for a breakpoint."""
    name: str = Field(..., description="Display name")
    width: int = Field(..., description="Canvas width in pixels")
    icon: str = Field(..., description="Toolbar icon")


# Cascade order: smallest first
BREAKPOINT_ORDER: List[Breakpoint] = [Breakpoint.MOBILE, Breakpoint.TABLET, Breakpoint.DESKTOP]

BREAKPOINTS: Dict[Breakpoint, BreakpointConfig] = {
    Breakpoint.MOBILE: BreakpointConfig(name="Mobile", width=375, icon="Smartphone"),
    Breakpoint.TABLET: BreakpointConfig(name="Tablet", width=768, icon="Tablet"),
    Breakpoint.DESKTOP: BreakpointConfig(name="Desktop", width=1280, icon="Monitor"),
}

_BREAKPOINT_KEYS = frozenset(bp.value for bp in BREAKPOINT_ORDER)

BreakpointLike = Union[Breakpoint, str]


def to_breakpoint(breakpoint: BreakpointLike) -> Breakpoint:
    """Coerce a breakpoint name into :class:`Breakpoint`."""
    if isinstance(breakpoint, Breakpoint):
        return breakpoint
    try:
        return Breakpoint(str(breakpoint).lower())
    except ValueError:
        raise ValueError(
            f"Unknown breakpoint '{breakpoint}', expected one of {sorted(_BREAKPOINT_KEYS)}"
        ) from None


def is_responsive(value: Any) -> bool:
    """
    Check whether a prop value is a responsive mapping.

    Only mappings whose keys are all breakpoint names and that contain
    ``mobile`` qualify, so structured values such as spacing boxes are never
    mistaken for responsive ones.
    """
    if not isinstance(value, Mapping) or not value:
        return False
    keys = set(value.keys())
    return Breakpoint.MOBILE.value in keys and keys <= _BREAKPOINT_KEYS


def resolve(value: Any, breakpoint: BreakpointLike) -> Any:
    """
    Resolve a possibly responsive value for a breakpoint.

    Args:
        value: Plain value or responsive mapping
        breakpoint: Requested breakpoint

    Returns:
        Any: The value that applies at ``breakpoint``
    """
    if not is_responsive(value):
        return value

    target = to_breakpoint(breakpoint)
    index = BREAKPOINT_ORDER.index(target)

    # Walk downward through the cascade; mobile always terminates the walk
    for candidate in reversed(BREAKPOINT_ORDER[1:index + 1]):
        entry = value.get(candidate.value)
        if entry is not None:
            return entry
    return value[Breakpoint.MOBILE.value]


def resolve_props(props: Mapping[str, Any], breakpoint: BreakpointLike) -> Dict[str, Any]:
    """Resolve every prop of a node for one breakpoint."""
    target = to_breakpoint(breakpoint)
    return {name: resolve(value, target) for name, value in props.items()}


def expand_responsive(value: Any) -> Dict[str, Any]:
    """
    Convert a value into a fully populated responsive mapping (lossless).

    Plain values seed every breakpoint. Already responsive values get their
    inherited entries written out explicitly, which does not change what any
    breakpoint resolves to.
    """
    if is_responsive(value):
        return {bp.value: copy.deepcopy(resolve(value, bp)) for bp in BREAKPOINT_ORDER}
    return {bp.value: copy.deepcopy(value) for bp in BREAKPOINT_ORDER}


def collapse_responsive(value: Any) -> Any:
    """
    Collapse a responsive mapping down to its mobile baseline.

    This is lossy: tablet and desktop overrides are discarded. Plain values are
    returned unchanged.
    """
    if not is_responsive(value):
        return value
    return copy.deepcopy(value[Breakpoint.MOBILE.value])


def with_breakpoint_value(value: Any, breakpoint: BreakpointLike, new_value: Any) -> Any:
    """
    Return a copy of ``value`` with ``breakpoint`` set to ``new_value``.

    Editing the mobile entry of a plain value stays plain; editing any other
    breakpoint turns the value responsive with the old value as baseline.
    """
    target = to_breakpoint(breakpoint)
    if not is_responsive(value):
        if target is Breakpoint.MOBILE:
            return copy.deepcopy(new_value)
        return {Breakpoint.MOBILE.value: copy.deepcopy(value), target.value: copy.deepcopy(new_value)}

    updated = copy.deepcopy(dict(value))
    updated[target.value] = copy.deepcopy(new_value)
    return updated


def has_override(value: Any, breakpoint: BreakpointLike) -> bool:
    """Whether ``breakpoint`` carries its own entry instead of inheriting."""
    target = to_breakpoint(breakpoint)
    if not is_responsive(value):
        return target is Breakpoint.MOBILE
    return value.get(target.value) is not None
