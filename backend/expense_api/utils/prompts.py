"""Default prompt and output schema for receipt extraction.

Keeping the prompt and the structured-output schema in one place makes
it easier to iterate on their content and keeps the category vocabulary
the model is allowed to use in sync with the schema enum.
"""

from __future__ import annotations

from textwrap import dedent
from typing import Any, Dict, List

# Category labels the model may suggest. These are free text from the
# pipeline's point of view and are resolved to canonical categories by
# ``expense_api.services.category_matcher``.
SUGGESTED_CATEGORIES: List[tuple[str, str]] = [
    ("żywność", "groceries/food"),
    ("transport", "transportation"),
    ("media", "utilities"),
    ("rozrywka", "entertainment"),
    ("zdrowie", "healthcare"),
    ("edukacja", "education"),
    ("odzież", "clothing"),
    ("restauracje", "dining out"),
    ("mieszkanie", "housing"),
    ("ubezpieczenia", "insurance"),
    ("higiena", "personal care"),
    ("prezenty", "gifts"),
    ("podróże", "travel"),
    ("subskrypcje", "subscriptions"),
    ("inne", "other/miscellaneous"),
]

RECEIPT_SCHEMA_NAME = "receipt_extraction"

RECEIPT_EXTRACTION_USER_MESSAGE = "Extract all items, prices, and categories from this Polish receipt."


def get_receipt_extraction_schema() -> Dict[str, Any]:
    """Return the strict JSON schema the model must answer with."""
    names = [name for name, _ in SUGGESTED_CATEGORIES]
    return {
        "type": "object",
        "properties": {
            "items": {
                "type": "array",
                "items": {
                    "type": "object",
                    "properties": {
                        "name": {"type": "string", "description": "Item name from receipt"},
                        "amount": {"type": "number", "description": "Item price in PLN"},
                        "category": {
                            "type": "string",
                            "description": "Category name - must be one of: " + ", ".join(names),
                            "enum": names,
                        },
                    },
                    "required": ["name", "amount", "category"],
                    "additionalProperties": False,
                },
            },
            "total": {"type": "number", "description": "Total amount from receipt in PLN"},
            "date": {
                "type": "string",
                "description": "Receipt date in YYYY-MM-DD format",
                "pattern": r"^\d{4}-\d{2}-\d{2}$",
            },
        },
        "required": ["items", "total", "date"],
        "additionalProperties": False,
    }


def get_receipt_extraction_prompt() -> str:
    """Return the system prompt used for extracting Polish receipts.

    Polish receipts print ``[name] [quantity x unit price] [final price]``
    on one line, so the prompt insists on the rightmost column.
    """
    category_lines = "\n".join(f"- {name} ({hint})" for name, hint in SUGGESTED_CATEGORIES)
    return dedent(
        """
        You are an expert at extracting structured data from Polish receipts.

        CRITICAL: For each item, extract the FINAL TOTAL PRICE (rightmost column), NOT the unit price or price with multiplier.
        Polish receipts typically show: [Item Name] [Quantity×Unit Price] [FINAL PRICE]
        You MUST extract the FINAL PRICE from the rightmost column for each item.

        Example from receipt:
        - "GRAPEFRUIT KG C 2×6.99" with "15.45C" on the right → amount should be 15.45 (NOT 6.99)
        - "SŁONECZNIK TUR 100 2×2.89" with "5.98C" on the right → amount should be 5.98 (NOT 2.89)

        Extract all items with their FINAL prices and suggest appropriate categories.
        Use ONLY these exact Polish category names (case-sensitive):
        {categories}

        Return the total amount and date from the receipt.
        If date is not visible, use today's date.
        """
    ).strip().format(categories=category_lines)


def build_image_user_message(image_b64: str, mime_type: str = "image/jpeg") -> List[Dict[str, Any]]:
    """Build the multimodal user content: instruction text plus the image as a data URL."""
    return [
        {"type": "text", "text": RECEIPT_EXTRACTION_USER_MESSAGE},
        {"type": "image_url", "image_url": {"url": f"data:{mime_type};base64,{image_b64}"}},
    ]
