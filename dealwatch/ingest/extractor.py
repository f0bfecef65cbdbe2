"""Heuristic price and availability extraction from listing markup.

Extraction is driven only by caller-supplied CSS selectors (a store profile).
Without selectors nothing is extracted: generic guessing on unknown markup
produces wrong prices more often than useful ones.
"""

import logging
import re
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Iterable, Optional

from selectolax.lexbor import LexborHTMLParser, LexborNode

from dealwatch.ingest.base import PriceCandidate

logger = logging.getLogger(__name__)

# Class/id markers for the container that bounds the price region
REGION_MARKERS = ("product", "price", "buy", "main", "summary", "detail")

PROMO_KEYWORDS = ("save", "discount", "off")

# Class markers for superseded ("was") prices
STRUCK_CLASS_MARKERS = (
    "strike",
    "line-through",
    "was-price",
    "old-price",
    "list-price",
)

STOCK_KEYWORDS = ("in stock", "available")
OUT_OF_STOCK_KEYWORDS = ("out of stock", "unavailable")

# Stop collecting after this many candidates once the region is locked
MAX_CANDIDATES = 6

# First monetary number: 1,299.99 / 1,299 / 949.00 / 12.5 / 12
PRICE_PATTERN = re.compile(
    r"(?<![A-Za-z0-9])"
    r"([0-9]{1,3}(?:,[0-9]{3})+(?:\.[0-9]{1,2})?|[0-9]+(?:\.[0-9]{1,2})?)"
)

WHITESPACE_PATTERN = re.compile(r"\s+")


def clean_price_text(raw: str) -> str:
    """
    Collapse whitespace and drop a verbatim repeat of the string.

    Screen-reader markup often renders the same price twice
    ("US $949.00US $949.00"); the duplicated half is removed.
    """
    text = WHITESPACE_PATTERN.sub(" ", raw.strip())
    half = len(text) // 2
    if half > 0 and len(text) % 2 == 0 and text[:half].lower() == text[half:].lower():
        text = text[:half]
    return text


def parse_price(text: Optional[str]) -> Optional[Decimal]:
    """Parse the first monetary amount in text, or None."""
    if not text or not text.strip():
        return None
    match = PRICE_PATTERN.search(text)
    if not match:
        return None
    try:
        return Decimal(match.group(1).replace(",", ""))
    except InvalidOperation:
        return None


def detect_currency(text: str) -> Optional[str]:
    """Detect currency from keywords and symbols, USD first."""
    upper = text.upper()
    if "USD" in upper or "US $" in upper or "$" in upper:
        return "USD"
    if "EUR" in upper or "€" in upper:
        return "EUR"
    if "GBP" in upper or "£" in upper:
        return "GBP"
    return None


def looks_promotional(text: str) -> bool:
    lowered = text.lower()
    return any(keyword in lowered for keyword in PROMO_KEYWORDS)


def _attr(node: LexborNode, name: str) -> str:
    value = node.attributes.get(name)
    return value or ""


def _has_strike_markup(node: LexborNode) -> bool:
    if "line-through" in _attr(node, "style").lower():
        return True
    classes = _attr(node, "class").lower()
    return any(marker in classes for marker in STRUCK_CLASS_MARKERS)


def is_struck_through(node: LexborNode) -> bool:
    """True if the element or its immediate parent is styled as a superseded price."""
    if _has_strike_markup(node):
        return True
    parent = node.parent
    return parent is not None and _has_strike_markup(parent)


def raw_price_text(node: LexborNode) -> Optional[str]:
    """First non-blank of aria-label, content attribute, text content."""
    for value in (_attr(node, "aria-label"), _attr(node, "content"), node.text(deep=True) or ""):
        if value.strip():
            return value
    return None


def find_region_root(node: LexborNode) -> LexborNode:
    """Narrowest ancestor (up to body) whose class/id looks like a product/price container."""
    current = node
    while current.parent is not None and current.parent.tag != "body":
        marker = f"{_attr(current, 'class')} {_attr(current, 'id')}".lower()
        if any(m in marker for m in REGION_MARKERS):
            return current
        current = current.parent
    return node.parent or node


def stock_signals(text: str) -> tuple[Optional[bool], Optional[bool]]:
    """
    Derive (in_stock, sold) from lowercased page text.

    Out-of-stock evidence overrides in-stock evidence. Sold is True or None,
    never False.
    """
    in_stock: Optional[bool] = None
    if any(keyword in text for keyword in STOCK_KEYWORDS):
        in_stock = True
    if any(keyword in text for keyword in OUT_OF_STOCK_KEYWORDS):
        in_stock = False
    sold = True if "sold" in text else None
    return in_stock, sold


class CandidateAccumulator:
    """Candidates and the locked price region for a single extraction pass.

    Created per scrape call and discarded with it.
    """

    def __init__(self):
        self.candidates: list[PriceCandidate] = []
        self.region: Optional[LexborNode] = None

    @property
    def region_locked(self) -> bool:
        return self.region is not None

    def in_region(self, node: LexborNode) -> bool:
        if self.region is None:
            return True
        region_id = self.region.mem_id
        current = node
        while current is not None:
            if current.mem_id == region_id:
                return True
            current = current.parent
        return False

    def add(self, node: LexborNode, candidate: PriceCandidate) -> None:
        self.candidates.append(candidate)
        if self.region is None:
            self.region = find_region_root(node)
            logger.debug(
                f"Price region locked: tag={self.region.tag}, "
                f"id={_attr(self.region, 'id')}, class={_attr(self.region, 'class')}"
            )

    def is_full(self) -> bool:
        return self.region is not None and len(self.candidates) >= MAX_CANDIDATES


def candidate_from_node(node: LexborNode) -> Optional[PriceCandidate]:
    """Build a price candidate from an element, or None if it has no amount."""
    raw = raw_price_text(node)
    if raw is None:
        return None
    amount = parse_price(clean_price_text(raw))
    if amount is None or amount <= 0:
        return None
    return PriceCandidate(
        amount=amount,
        currency=detect_currency(raw),
        struck=is_struck_through(node),
        promotional=looks_promotional(raw),
    )


def collect_candidates(
    document: LexborHTMLParser | LexborNode,
    selectors: Iterable[str],
    accumulator: CandidateAccumulator,
) -> CandidateAccumulator:
    """Run selectors in order, collecting candidates inside the locked region."""
    for selector in selectors:
        try:
            nodes = document.css(selector)
        except Exception as e:
            logger.debug(f"Selector error: {selector[:50]} - {e}")
            continue

        logger.debug(f"Selector '{selector[:50]}' found {len(nodes)} elements")
        for node in nodes:
            if not accumulator.in_region(node):
                continue
            candidate = candidate_from_node(node)
            if candidate is not None:
                accumulator.add(node, candidate)

        if accumulator.is_full():
            break

    return accumulator


def select_price(candidates: list[PriceCandidate]) -> Optional[PriceCandidate]:
    """
    Choose the effective price.

    Lowest clean (not struck, not promotional) candidate; else lowest
    non-struck; else lowest of all.
    """
    if not candidates:
        return None
    tiers = (
        [c for c in candidates if not c.struck and not c.promotional],
        [c for c in candidates if not c.struck],
        candidates,
    )
    for tier in tiers:
        if tier:
            return min(tier, key=lambda c: c.amount)
    return None


@dataclass
class ExtractionResult:
    """Chosen price plus the evidence it was chosen from."""

    price: Optional[Decimal] = None
    currency: Optional[str] = None
    in_stock: Optional[bool] = None
    sold: Optional[bool] = None
    candidates: list[PriceCandidate] = field(default_factory=list)
    text_length: int = 0


def extract_price_signals(
    document: LexborHTMLParser,
    selectors: Optional[list[str]],
    text: Optional[str] = None,
) -> ExtractionResult:
    """
    Extract price, currency and stock/sold signals from a parsed document.

    Args:
        document: Parsed page
        selectors: Store-profile CSS selectors, tried in order. Empty or None
            skips price extraction entirely.
        text: Lowercased page text, if the caller already computed it

    Returns:
        ExtractionResult; currency is None whenever price is None
    """
    if text is None:
        body = document.body
        text = (body.text(separator=" ") or "").lower() if body is not None else ""

    in_stock, sold = stock_signals(text)
    result = ExtractionResult(in_stock=in_stock, sold=sold, text_length=len(text))
    if not selectors:
        return result

    accumulator = collect_candidates(document, selectors, CandidateAccumulator())
    result.candidates = accumulator.candidates
    chosen = select_price(accumulator.candidates)
    if chosen is not None:
        result.price = chosen.amount
        result.currency = chosen.currency or "USD"
        logger.debug(
            f"Selected price {chosen.amount} {result.currency} from "
            f"{len(accumulator.candidates)} candidates"
        )
    return result
