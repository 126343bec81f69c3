"""Qualification policy deciding which targets are monitored."""

from __future__ import annotations

from typing import TYPE_CHECKING

from pydantic import BaseModel, ConfigDict, Field


if TYPE_CHECKING:
    from keepalive_monitor.models.target import TargetInfo


class SelectionPolicy(BaseModel):
    """Class-based target selection.

    Attributes:
        default_class: Monitor targets that carry no class at all.
        ingress_class: Only monitor classified targets of this class; empty
            means every class.
    """

    model_config = ConfigDict(frozen=True)

    default_class: bool = Field(default=True, description="Monitor targets without a class")
    ingress_class: str = Field(default="", description="Class to monitor (empty = all)")


def disqualification_reason(info: TargetInfo, policy: SelectionPolicy) -> str | None:
    """Why ``info`` is not monitored under ``policy``, or None if it qualifies."""
    if info.deletion_requested:
        return "deleted"
    if info.opt_out:
        return "opted_out"
    effective = info.effective_class
    if effective is None:
        return None if policy.default_class else "no_class"
    if policy.ingress_class and effective != policy.ingress_class:
        return "class_mismatch"
    return None


def qualifies(info: TargetInfo, policy: SelectionPolicy) -> bool:
    return disqualification_reason(info, policy) is None
