"""
Version-diff engine.

Compares two snapshots and produces the ordered list of additions, removals
and updates between them.
"""

from dataclasses import dataclass
from typing import List, Sequence, Tuple

from .models import DependencyRecord, Snapshot


class Operation:
    """A single change between two snapshots."""

    def records(self) -> Tuple[DependencyRecord, ...]:
        raise NotImplementedError

    @property
    def name(self) -> str:
        return self.records()[0].name


@dataclass(frozen=True)
class Add(Operation):
    record: DependencyRecord

    def records(self) -> Tuple[DependencyRecord, ...]:
        return (self.record,)


@dataclass(frozen=True)
class Remove(Operation):
    record: DependencyRecord

    def records(self) -> Tuple[DependencyRecord, ...]:
        return (self.record,)


@dataclass(frozen=True)
class Update(Operation):
    old: DependencyRecord
    new: DependencyRecord

    def records(self) -> Tuple[DependencyRecord, ...]:
        return (self.old, self.new)


def _reconcile(
    old: Sequence[DependencyRecord], new: Sequence[DependencyRecord]
) -> List[Operation]:
    """
    Reconcile the records of one name present on both sides.

    Records present unchanged on both sides are dropped. The remainders are
    paired by rank: the i-th smallest old record becomes an Update to the
    i-th smallest new one. Whatever is left over is removed or added.
    """
    unchanged = set(old) & set(new)
    old_rest = sorted(r for r in set(old) if r not in unchanged)
    new_rest = sorted(r for r in set(new) if r not in unchanged)

    common = min(len(old_rest), len(new_rest))
    ops: List[Operation] = [Remove(r) for r in old_rest[common:]]
    ops.extend(Update(o, n) for o, n in zip(old_rest[:common], new_rest[:common]))
    ops.extend(Add(r) for r in new_rest[common:])
    return ops


def diff(old: Snapshot, new: Snapshot) -> List[Operation]:
    """
    Compute the operations turning ``old`` into ``new``.

    Names are walked in ascending order. Within a name, removals come first,
    then updates, then additions.

    Args:
        old: Snapshot before the change
        new: Snapshot after the change

    Returns:
        List[Operation]: Ordered operations; empty when the snapshots are equal
    """
    old_names = list(old)
    new_names = list(new)
    ops: List[Operation] = []

    i = j = 0
    while i < len(old_names) and j < len(new_names):
        old_name, new_name = old_names[i], new_names[j]
        if old_name < new_name:
            ops.extend(Remove(r) for r in old[old_name])
            i += 1
        elif new_name < old_name:
            ops.extend(Add(r) for r in new[new_name])
            j += 1
        else:
            ops.extend(_reconcile(old[old_name], new[new_name]))
            i += 1
            j += 1

    for old_name in old_names[i:]:
        ops.extend(Remove(r) for r in old[old_name])
    for new_name in new_names[j:]:
        ops.extend(Add(r) for r in new[new_name])

    return ops


def summarize(ops: Sequence[Operation]) -> Tuple[int, int, int]:
    """Count ``(added, removed, updated)`` operations."""
    added = sum(1 for op in ops if isinstance(op, Add))
    removed = sum(1 for op in ops if isinstance(op, Remove))
    updated = sum(1 for op in ops if isinstance(op, Update))
    return added, removed, updated
