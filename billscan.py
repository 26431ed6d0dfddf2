import logging
from dataclasses import dataclass, field
from typing import Iterable, Optional, Sequence

from rapidfuzz.distance import Levenshtein

from models import TransactionDirection
from schemas import BillSplitIn, LineItemIn


logger = logging.getLogger(__name__)

# one cent: the 0.01 tolerance between a bill total and its sub-categories
AMOUNT_TOLERANCE_CENTS = 1

DEFAULT_BILL_CATEGORIES = (
    "Groceries",
    "Junk Food (Non-Essential)",
    "Clothing",
    "Stationery",
    "Medicine",
    "Personal Care",
    "Household Items",
    "Electronics",
    "Entertainment",
    "Transportation",
    "Utilities",
    "Education",
    "Dining Out",
    "Fees/Taxes",
    "Salary",
    "Refund",
    "Business",
    "Other",
)

NON_ESSENTIAL_CATEGORIES = frozenset(
    {"Junk Food (Non-Essential)", "Entertainment", "Dining Out"}
)


class BillCategoryAmbiguous(ValueError):
    pass


class InconsistentBreakdownError(ValueError):
    pass


@dataclass
class ConsolidatedSplit:
    category: str
    subtotal_cents: int
    is_non_essential: bool = False
    items: list[LineItemIn] = field(default_factory=list)


def line_items_total(items: Iterable[LineItemIn]) -> int:
    return sum(item.unit_price_cents * item.quantity for item in items)


def match_category(name: str, known: Sequence[str]) -> str:
    """
    Map a scanned sub-category name onto a known category name.

    Exact (case-insensitive) matches win, then a single candidate within one
    edit. Anything further away is kept as typed.
    """
    clean = name.strip()
    lower = clean.lower()
    # first spelling wins when the same name is known in several casings
    candidates: dict[str, str] = {}
    for candidate in known:
        candidates.setdefault(candidate.lower(), candidate)
    if lower in candidates:
        return candidates[lower]

    best_distance: Optional[int] = None
    best: list[str] = []
    for candidate_lower, candidate in candidates.items():
        dist = int(Levenshtein.distance(lower, candidate_lower))
        if best_distance is None or dist < best_distance:
            best_distance = dist
            best = [candidate]
        elif dist == best_distance:
            best.append(candidate)

    if best_distance is not None and best_distance <= 1:
        if len(best) > 1:
            options = ", ".join(sorted(best))
            raise BillCategoryAmbiguous(
                f"Category '{clean}' is ambiguous; matches: {options}"
            )
        return best[0]
    return clean


def _is_non_essential(category: str, items: Sequence[LineItemIn]) -> bool:
    if category in NON_ESSENTIAL_CATEGORIES:
        return True
    return category == "Electronics" and any(
        "gaming" in item.name.lower() for item in items
    )


def consolidate_breakdown(
    splits: Sequence[BillSplitIn], known_categories: Sequence[str]
) -> list[ConsolidatedSplit]:
    merged: dict[str, ConsolidatedSplit] = {}
    for split in splits:
        name = split.category.strip()
        if not name:
            raise ValueError("Sub-category name cannot be empty")
        category = match_category(name, known_categories)

        if split.items:
            subtotal = line_items_total(split.items)
            stated = split.subtotal_cents
            if stated is not None and abs(stated - subtotal) > AMOUNT_TOLERANCE_CENTS:
                logger.warning(
                    f"bill_subtotal_adjusted: category={category} "
                    f"stated_cents={stated} items_cents={subtotal}"
                )
        elif split.subtotal_cents is not None:
            subtotal = split.subtotal_cents
        else:
            raise ValueError(f"Sub-category '{name}' needs items or a subtotal")

        target = merged.get(category)
        if target is None:
            target = ConsolidatedSplit(category=category, subtotal_cents=0)
            merged[category] = target
        target.subtotal_cents += subtotal
        target.items.extend(split.items)
        target.is_non_essential = (
            target.is_non_essential
            or split.is_non_essential
            or _is_non_essential(category, split.items)
        )
    return list(merged.values())


def check_breakdown_total(
    amount_cents: int, splits: Sequence[ConsolidatedSplit]
) -> None:
    total = sum(s.subtotal_cents for s in splits)
    if abs(total - amount_cents) > AMOUNT_TOLERANCE_CENTS:
        raise InconsistentBreakdownError(
            f"Bill total ({amount_cents} cents) does not match sum of "
            f"sub-category totals ({total} cents)"
        )


def dominant_category(
    splits: Sequence[ConsolidatedSplit], direction: TransactionDirection
) -> str:
    dominant = "Refund" if direction == TransactionDirection.credit else "Other"
    best = 0
    for split in splits:
        if split.subtotal_cents > best:
            best = split.subtotal_cents
            dominant = split.category
    return dominant
