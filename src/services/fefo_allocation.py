"""
FEFO allocation shared by production completion and order fulfillment.

Allocation is two-pass:

1. Pre-flight: every requirement is compared against the quantity believed
   available (a cached aggregate, or the sum of candidate lots). Nothing is
   mutated. A shortage raises InsufficientStock before any write.
2. Deduction: for each requirement, fresh FEFO-ordered candidates are walked
   greedily, taking min(lot quantity, remaining) from each. If the
   candidates run out first, another transaction consumed the stock after
   the pre-flight and ConcurrentStockExhaustion is raised. The plan is
   computed in full before any lot is touched, so a failed walk leaves
   every lot unchanged.

Callers compose both passes inside one session_scope().
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Callable, Dict, List, Sequence, Union

from .exceptions import ConcurrentStockExhaustion, InsufficientStock

Quantity = Union[int, Decimal]


@dataclass
class Requirement:
    """Quantity of one item (ingredient or product) a workflow needs.

    Attributes:
        item_id: Ingredient or product ID
        item_name: Name used in error messages
        required: Quantity needed
        available: Quantity believed available at pre-flight time
        unit: Optional unit for reporting
    """

    item_id: int
    item_name: str
    required: Quantity
    available: Quantity
    unit: str = ""

    @property
    def shortfall(self) -> Quantity:
        return max(self.required - self.available, 0)

    @property
    def is_satisfied(self) -> bool:
        return self.available >= self.required


@dataclass
class Allocation:
    """One step of a FEFO walk: take ``quantity`` from ``lot``."""

    lot: Any
    quantity: Quantity


def find_shortages(requirements: Sequence[Requirement]) -> List[Dict[str, Any]]:
    """
    List every requirement that current availability cannot cover.

    Args:
        requirements: Requirements to check

    Returns:
        List of dicts with item_id, item_name, required, available,
        shortfall and unit; empty when everything is covered
    """
    return [
        {
            "item_id": req.item_id,
            "item_name": req.item_name,
            "required": req.required,
            "available": req.available,
            "shortfall": req.shortfall,
            "unit": req.unit,
        }
        for req in requirements
        if not req.is_satisfied
    ]


def ensure_available(requirements: Sequence[Requirement]) -> None:
    """
    Pre-flight pass: raise if any requirement exceeds availability.

    Raises:
        InsufficientStock: For the first uncovered requirement
    """
    for req in requirements:
        if not req.is_satisfied:
            raise InsufficientStock(req.item_name, req.required, req.available)


def plan_fefo(
    candidates: Sequence[Any],
    required: Quantity,
    quantity_of: Callable[[Any], Quantity],
) -> tuple:
    """
    Greedy FEFO walk over already-ordered candidates, without mutating them.

    Args:
        candidates: Lots in consumption order (soonest expiry first)
        required: Quantity to cover
        quantity_of: Returns the quantity currently held by a lot

    Returns:
        Tuple (allocations, remaining) where remaining is what the
        candidates could not cover
    """
    allocations: List[Allocation] = []
    remaining = required
    for lot in candidates:
        if remaining <= 0:
            break
        held = quantity_of(lot)
        if held <= 0:
            continue
        take = min(held, remaining)
        allocations.append(Allocation(lot=lot, quantity=take))
        remaining -= take
    return allocations, remaining


def allocate_fefo(
    candidates: Sequence[Any],
    required: Quantity,
    item_name: str,
    quantity_of: Callable[[Any], Quantity],
    take: Callable[[Any, Quantity], Any],
) -> List[Allocation]:
    """
    Deduction pass: allocate ``required`` across FEFO candidates.

    Args:
        candidates: Freshly queried lots in consumption order
        required: Quantity to allocate
        item_name: Name used in error messages
        quantity_of: Returns the quantity currently held by a lot
        take: Applies one decrement (lot, amount)

    Returns:
        The allocations applied, in consumption order

    Raises:
        ConcurrentStockExhaustion: If the candidates cannot cover required
    """
    allocations, remaining = plan_fefo(candidates, required, quantity_of)
    if remaining > 0:
        raise ConcurrentStockExhaustion(item_name, required, remaining)

    for allocation in allocations:
        take(allocation.lot, allocation.quantity)
    return allocations
