"""
ModelRest — Relation Set Reconciler
====================================

What:  Diffs a submitted collection against the current members of a
       relation and applies the difference.
How:   ``reconcile`` is a pure function producing a ``ReconciliationPlan``
       (insert / update / delete). ``apply_plan`` executes it against the
       persistence layer: one batched delete first, then the updates and
       inserts.
Who:   Used by the relation PUT endpoint (``PUT /<collection>/:id/<relation>``).

Identifier matching:
    Ids from a JSON body or a URL may be strings while the stored ids are
    numbers, so members are matched with ``ids_equal`` rather than ``==``.

Example:
    current   = [{"id": 34, "name": "A"}, {"id": 37, "name": "B"}]
    submitted = [{"id": "34", "name": "A2"}, {"id": 99999, "name": "C"}, {"name": "D"}]

    plan.update → [{"id": "34", "name": "A2"}]
    plan.insert → [{"name": "C"}, {"name": "D"}]      (ids stripped)
    plan.delete → [{"id": 37, "name": "B"}]
"""

import logging
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Dict, Hashable, List, Mapping, Optional, Sequence, Tuple

logger = logging.getLogger(__name__)


# ══════════════════════════════════════════════════════════════════════════
# Identifier Comparison
# ══════════════════════════════════════════════════════════════════════════

def _as_number(value: Any) -> Optional[Decimal]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, Decimal)):
        number = Decimal(value)
    elif isinstance(value, float):
        number = Decimal(repr(value))
    elif isinstance(value, str) and value.strip():
        try:
            number = Decimal(value.strip())
        except InvalidOperation:
            return None
    else:
        return None
    return number if number.is_finite() else None


def identity_key(value: Any) -> Optional[Hashable]:
    """
    Normal form of an identifier; two ids are equal when their keys are.

    - None and blank strings have no key (a missing id matches nothing)
    - booleans keep their identity
    - numbers and numeric strings reduce to their value: 34, "34", 34.0
    - everything else reduces to its string form: UUID(...) and its text
    """
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    if isinstance(value, bool):
        return ("bool", value)
    number = _as_number(value)
    if number is not None:
        return ("number", number)
    return ("text", str(value))


def ids_equal(left: Any, right: Any) -> bool:
    """Coercing identifier comparison: ``ids_equal(34, "34")`` is True."""
    left_key = identity_key(left)
    return left_key is not None and left_key == identity_key(right)


def identifier_of(item: Any, id_key: str) -> Any:
    if isinstance(item, Mapping):
        return item.get(id_key)
    return getattr(item, id_key, None)


# ══════════════════════════════════════════════════════════════════════════
# Plan
# ══════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class ReconciliationPlan:
    """
    Three disjoint sets computed for one relation PUT.

    Attributes:
        insert:  Submitted items without a matching current member, with any
                 client-supplied identifier removed
        update:  Submitted items whose identifier matches a current member
        delete:  Current members matched by no submitted item
    """

    id_key: str
    insert: Tuple[Dict[str, Any], ...]
    update: Tuple[Dict[str, Any], ...]
    delete: Tuple[Any, ...]

    @property
    def delete_ids(self) -> List[Any]:
        return [identifier_of(member, self.id_key) for member in self.delete]

    @property
    def is_empty(self) -> bool:
        return not (self.insert or self.update or self.delete)


def reconcile(current: Sequence[Any], submitted: Sequence[Mapping[str, Any]], id_key: str) -> ReconciliationPlan:
    """
    Classifies ``submitted`` against ``current``.

    Args:
        current:    Current relation members (mappings or ORM instances)
        submitted:  Items from the request body
        id_key:     Name of the identifier property

    Returns:
        ReconciliationPlan where ``insert`` and ``update`` partition
        ``submitted`` and ``delete`` is the unmatched part of ``current``.
    """
    by_id = {}
    for index, member in enumerate(current):
        key = identity_key(identifier_of(member, id_key))
        if key is not None:
            by_id[key] = index

    inserts, updates = [], []
    matched = set()
    for item in submitted:
        key = identity_key(identifier_of(item, id_key))
        if key is None or key not in by_id:
            inserts.append({k: v for k, v in item.items() if k != id_key})
        else:
            updates.append(dict(item))
            matched.add(by_id[key])

    deletes = [member for index, member in enumerate(current) if index not in matched]
    return ReconciliationPlan(
        id_key=id_key,
        insert=tuple(inserts),
        update=tuple(updates),
        delete=tuple(deletes),
    )


async def apply_plan(
    plan: ReconciliationPlan,
    related_query: Callable[[], Any],
    query_by_id: Callable[[Any], Any],
) -> None:
    """
    Executes a plan inside the caller's transaction.

    Args:
        plan:           Output of ``reconcile``
        related_query:  Returns a fresh RelatedQuery over the relation
        query_by_id:    Returns a ModelQuery matching one related row by id

    The delete batch completes before any update or insert starts, so an id
    freed by the delete can be reassigned to an insert. Updates and inserts
    have no ordering between them; they share the request's session, which
    serializes them on its connection. Any failure propagates and aborts the
    enclosing transaction.
    """
    if plan.delete:
        await related_query().where_in(plan.id_key, plan.delete_ids).delete()

    for item in plan.update:
        await query_by_id(item[plan.id_key]).patch({k: v for k, v in item.items() if k != plan.id_key})
    for item in plan.insert:
        await related_query().insert(item)

    logger.debug(
        "Reconciled relation: %d inserted, %d updated, %d deleted",
        len(plan.insert), len(plan.update), len(plan.delete),
    )
