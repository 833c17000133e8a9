"""Labour vs material classification for line items.

Rules, in priority order:

1. Items billed by the hour are always labour.
2. Descriptions mentioning a material indicator are materials.
3. Descriptions mentioning a labour indicator are labour.
4. Anything else defaults to labour.

Matching is a case-insensitive substring test. The same rules are rendered
into the LLM prompts and re-applied locally, so drafted, corrected and
catalog-picked items are always tagged the same way.
"""

from collections.abc import Iterable

from tradie_invoices.invoicing.models import ItemType, LineItem, Unit

MATERIAL_INDICATORS: tuple[str, ...] = (
    "bags",
    "sheets",
    "rolls",
    "fittings",
    "fixtures",
    "parts",
    "supplies",
    "cement",
    "timber",
    "pipe",
    "cable",
    "wire",
    "plaster",
    "paint",
    "tiles",
    "screws",
    "bolts",
    "nails",
    "brackets",
)

LABOUR_INDICATORS: tuple[str, ...] = (
    "hours",
    "installation",
    "labour",
    "repair",
    "service",
    "callout",
    "consultation",
    "inspection",
)


def _mentions(description: str, indicators: Iterable[str]) -> bool:
    text = description.lower()
    return any(token in text for token in indicators)


def classify_item(description: str, unit: Unit | str) -> ItemType:
    """Return the item type for a description and unit."""
    if Unit(unit) is Unit.HOUR:
        return ItemType.LABOUR
    if _mentions(description, MATERIAL_INDICATORS):
        return ItemType.MATERIAL
    if _mentions(description, LABOUR_INDICATORS):
        return ItemType.LABOUR
    return ItemType.LABOUR


def classify_line_item(item: LineItem) -> LineItem:
    """Return a copy of ``item`` tagged by the classification rules."""
    item_type = classify_item(item.description, item.unit)
    if item_type is item.item_type:
        return item
    return item.model_copy(update={"item_type": item_type})


def classify_line_items(items: Iterable[LineItem]) -> list[LineItem]:
    return [classify_line_item(item) for item in items]


def describe_rules() -> str:
    """Render the rules as prompt text for the LLM."""
    return (
        "ITEM TYPE RULES (apply in order):\n"
        '1. unit "hr" is always "labour"\n'
        f'2. descriptions mentioning any of: {", ".join(MATERIAL_INDICATORS)} '
        'are "material"\n'
        f'3. descriptions mentioning any of: {", ".join(LABOUR_INDICATORS)} '
        'are "labour"\n'
        '4. otherwise use "labour"'
    )
