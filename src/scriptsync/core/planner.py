"""
Plan engine for scriptsync.

Decides, per address, whether a stored script should be created, updated,
replaced (name or target cluster changed), deleted, or left as-is (NOOP).
Desired vs current is compared on the declared shape with semantic JSON
equality, so key order or whitespace in params/templates never cause a diff.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Literal, Mapping, Optional

from .codec import diff_fields
from .reconciler import ResourceState

Op = Literal["NOOP", "CREATE", "UPDATE", "REPLACE", "DELETE"]


@dataclass(frozen=True)
class Decision:
    """Represents a plan outcome for a single address.

    Attributes:
        op: One of ``"NOOP"``, ``"CREATE"``, ``"UPDATE"``, ``"REPLACE"`` or ``"DELETE"``.
        address: Manifest key of the stored script.
        reason: Human-friendly explanation of the decision.
        declared: Desired declared shape (None for DELETE).
        current: Last known state (None for CREATE).
    """
    op: Op
    address: str
    reason: str
    declared: Optional[Dict[str, Any]] = None
    current: Optional[ResourceState] = None


def decide(address: str, declared: Optional[Dict[str, Any]], current: Optional[ResourceState]) -> Decision:
    if declared is None:
        if current is None:
            return Decision(op="NOOP", address=address, reason="Not declared, not present")
        return Decision(op="DELETE", address=address, reason="No longer declared", current=current)

    if current is None:
        return Decision(op="CREATE", address=address, reason="Not found", declared=declared)

    changed = diff_fields(declared, current.declared)
    if not changed:
        return Decision(op="NOOP", address=address, reason="Identical", declared=declared, current=current)
    if "name" in changed or "connection" in changed:
        what = "Name" if "name" in changed else "Target cluster"
        return Decision(op="REPLACE", address=address, reason=f"{what} changed (forces new)", declared=declared, current=current)
    return Decision(
        op="UPDATE",
        address=address,
        reason="Fields differ: " + ", ".join(changed),
        declared=declared,
        current=current,
    )


def plan(declared: Mapping[str, Dict[str, Any]], current: Mapping[str, ResourceState]) -> List[Decision]:
    """Decisions for every declared address, then deletions for orphaned state, both sorted."""
    decisions = [decide(a, declared[a], current.get(a)) for a in sorted(declared)]
    decisions.extend(decide(a, None, current[a]) for a in sorted(current) if a not in declared)
    return decisions
