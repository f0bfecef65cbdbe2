"""Title token normalization for matching listings to catalog products."""

import re
from decimal import Decimal
from typing import Iterable, Optional

DEFAULT_STOP_WORDS = (
    "the", "and", "with", "for", "of", "by", "to", "from", "new", "brand", "inch", "inches",
)

TOKEN_SYNONYMS = {
    "ps5": "playstation5",
    "tv": "television",
}

NON_ALNUM = re.compile(r"[^0-9a-z]+")


def normalize_tokens(text: Optional[str], stop_words: Iterable[str] = DEFAULT_STOP_WORDS) -> set[str]:
    """Lowercase, split on non-alphanumerics, map synonyms, drop stop words."""
    if not text or not text.strip():
        return set()
    stop = {w.lower() for w in stop_words}
    tokens = set()
    for raw in NON_ALNUM.split(text.lower()):
        if not raw:
            continue
        token = TOKEN_SYNONYMS.get(raw, raw)
        if token not in stop:
            tokens.add(token)
    return tokens


def coverage(product_tokens: set[str], listing_tokens: set[str]) -> float:
    """Share of product tokens present in the listing title."""
    if not product_tokens or not listing_tokens:
        return 0.0
    return len(product_tokens & listing_tokens) / len(product_tokens)


def discount_percent(msrp: Optional[Decimal], price: Optional[Decimal]) -> Optional[int]:
    """Whole-percent discount of price against MSRP, or None."""
    if msrp is None or price is None or msrp <= 0:
        return None
    return int(round((1 - float(price) / float(msrp)) * 100))


def price_within_msrp(
    price: Optional[Decimal],
    msrp: Optional[Decimal],
    min_ratio: float,
    max_ratio: float,
) -> bool:
    """True if price sits within [min_ratio, max_ratio] of MSRP."""
    if price is None or msrp is None or msrp <= 0:
        return False
    return msrp * Decimal(str(min_ratio)) <= price <= msrp * Decimal(str(max_ratio))
