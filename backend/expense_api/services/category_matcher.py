"""Category matcher for model-suggested expense categories.

The model labels every line item with a free text category. Before the
items can become expenses each label has to resolve to one of the
canonical categories owned by the category store. Matching proceeds in
strict priority order:

1. Exact match on the normalised (trimmed, lowercased) name.
2. Substring match in either direction; the first category in list
   order wins.
3. The generic fallback category, named ``inne`` or ``other``.
4. The first category in the list.

Because of the last rule ``match`` always returns a category for a
non-empty category list.

Grouping happens on the raw label, before normalisation. Two labels
that differ only in case or surrounding whitespace therefore produce
two separate expense groups even if both resolve to the same canonical
category.
"""

from __future__ import annotations

from typing import List, Sequence, Tuple

from pydantic import BaseModel

from expense_api.models.schemas import Category, RawExtractedItem, ReceiptExpenseGroup
from expense_api.services.errors import PipelineInvariantError

FALLBACK_CATEGORY_NAMES = frozenset({"inne", "other"})


class GroupedItem(BaseModel):
    name: str
    amount: float


def _normalise(value: str) -> str:
    return value.strip().lower()


def match(label: str, categories: Sequence[Category]) -> Category:
    """Resolve a free text label to one canonical category."""
    if not categories:
        raise PipelineInvariantError("Category matcher requires at least one category")

    wanted = _normalise(label)
    names = [(cat, _normalise(cat.name)) for cat in categories]

    for cat, name in names:
        if name == wanted:
            return cat

    for cat, name in names:
        if name in wanted or wanted in name:
            return cat

    for cat, name in names:
        if name in FALLBACK_CATEGORY_NAMES:
            return cat

    return categories[0]


def group(items: Sequence[RawExtractedItem]) -> List[Tuple[str, List[GroupedItem]]]:
    """Group items by their raw label, keeping first-seen label order.

    Returns an ordered association list of ``(label, items)`` pairs.
    """
    groups: List[Tuple[str, List[GroupedItem]]] = []
    index: dict[str, int] = {}
    for item in items:
        position = index.get(item.category)
        if position is None:
            index[item.category] = len(groups)
            groups.append((item.category, []))
            position = index[item.category]
        groups[position][1].append(GroupedItem(name=item.name, amount=item.amount))
    return groups


def map_expenses_with_categories(
    items: Sequence[RawExtractedItem],
    categories: Sequence[Category],
) -> List[ReceiptExpenseGroup]:
    """Turn raw items into one expense group per distinct raw label.

    Amounts are summed as floats and formatted to two decimals; each
    item is rendered as ``"<name> - <amount>"``.
    """
    expenses: List[ReceiptExpenseGroup] = []
    for label, grouped in group(items):
        category = match(label, categories)
        total = 0.0
        for entry in grouped:
            total += entry.amount
        expenses.append(
            ReceiptExpenseGroup(
                category_id=category.id,
                category_name=category.name,
                amount=f"{total:.2f}",
                items=[f"{entry.name} - {entry.amount:.2f}" for entry in grouped],
            )
        )
    return expenses


__all__ = ["match", "group", "map_expenses_with_categories", "GroupedItem"]
