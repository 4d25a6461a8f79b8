"""Coarse land-use classification from the vendor's free-text property type."""

from enum import Enum
from typing import Any, Mapping, Optional, Sequence, Tuple, Union

from pondfinder.resolver.models import PropertyRecord


class LandUse(str, Enum):
    COMMERCIAL = "commercial"
    RESIDENTIAL = "residential"
    AGRICULTURAL = "agricultural"
    VACANT = "vacant"
    MIXED = "mixed"
    UNKNOWN = "unknown"


# Checked in order; first category with a matching keyword wins.
# "mixed" goes first so "mixed use commercial/residential" is not split.
_KEYWORDS: Sequence[Tuple[LandUse, Tuple[str, ...]]] = (
    (LandUse.MIXED, ("mixed",)),
    (LandUse.COMMERCIAL, (
        "commercial", "business", "office", "retail", "industrial", "warehouse",
    )),
    (LandUse.RESIDENTIAL, (
        "residential", "single", "multi", "condo", "apartment", "house",
        "dwelling", "family",
    )),
    (LandUse.AGRICULTURAL, ("agricultural", "farm", "ranch")),
    (LandUse.VACANT, ("vacant", "land")),
)


def classify_land_use(
    record: Union[PropertyRecord, Mapping[str, Any], None],
) -> LandUse:
    """Map a resolved record (or raw attribute bag) to a LandUse category."""
    if record is None:
        return LandUse.UNKNOWN

    raw: Optional[str]
    if isinstance(record, PropertyRecord):
        raw = record.property_type
    else:
        raw = record.get("property_type") or record.get("property_use_type")

    text = (raw or "").strip().lower()
    if not text or text == "unknown":
        return LandUse.UNKNOWN

    for category, keywords in _KEYWORDS:
        if any(word in text for word in keywords):
            return category
    return LandUse.UNKNOWN
