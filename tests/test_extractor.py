"""Tests for price signal extraction."""

from decimal import Decimal

from selectolax.lexbor import LexborHTMLParser

from dealwatch.ingest.base import PriceCandidate
from dealwatch.ingest.extractor import (
    CandidateAccumulator,
    MAX_CANDIDATES,
    clean_price_text,
    collect_candidates,
    detect_currency,
    extract_price_signals,
    parse_price,
    select_price,
    stock_signals,
)
from tests.conftest import page


def test_clean_duplicated_price_text():
    """Screen-reader duplication is collapsed to one copy."""
    cleaned = clean_price_text("US $949.00US $949.00")

    assert cleaned == "US $949.00"
    assert parse_price(cleaned) == Decimal("949.00")
    assert detect_currency("US $949.00US $949.00") == "USD"


def test_clean_collapses_whitespace():
    assert clean_price_text("  $12.50 \n\t each ") == "$12.50 each"


def test_parse_price_thousands_separator():
    assert parse_price("$1,299.99") == Decimal("1299.99")
    assert parse_price("$1,299") == Decimal("1299")
    assert parse_price("Now only 45") == Decimal("45")


def test_parse_price_no_amount():
    assert parse_price("Call for price") is None
    assert parse_price("") is None
    assert parse_price(None) is None


def test_detect_currency_precedence():
    assert detect_currency("€19,99") == "EUR"
    assert detect_currency("£5.00") == "GBP"
    assert detect_currency("19.99") is None


def test_struck_price_not_chosen_over_current_price():
    html = page(
        '<div id="buybox">'
        '<span class="amount strike">$199.99</span>'
        '<span class="amount">$149.99</span>'
        "</div>"
    )

    result = extract_price_signals(LexborHTMLParser(html), [".amount"])

    assert result.price == Decimal("149.99")
    assert result.currency == "USD"
    assert len(result.candidates) == 2


def test_struck_via_parent_style():
    html = page(
        '<div id="buybox">'
        '<span class="amount">$95.00</span>'
        '<del style="text-decoration: line-through"><span class="amount">$80.00</span></del>'
        "</div>"
    )

    result = extract_price_signals(LexborHTMLParser(html), [".amount"])

    # 80.00 is the lower amount but it is the superseded price
    assert result.price == Decimal("95.00")


def test_struck_candidate_is_last_resort():
    """Only the struck price parses; the promo callout has no amount."""
    html = page(
        '<div id="buybox">'
        '<span class="amount strike">$199.99</span>'
        '<span class="amount">Save big today</span>'
        "</div>"
    )

    result = extract_price_signals(LexborHTMLParser(html), [".amount"])

    assert result.price == Decimal("199.99")


def test_promotional_used_when_no_clean_candidate():
    candidates = [
        PriceCandidate(amount=Decimal("20"), currency="USD", promotional=True),
        PriceCandidate(amount=Decimal("10"), currency="USD", struck=True),
    ]

    assert select_price(candidates).amount == Decimal("20")


def test_select_lowest_clean_candidate():
    candidates = [
        PriceCandidate(amount=Decimal("120"), currency="USD"),
        PriceCandidate(amount=Decimal("99"), currency="USD"),
        PriceCandidate(amount=Decimal("5"), currency="USD", promotional=True),
    ]

    assert select_price(candidates).amount == Decimal("99")
    assert select_price([]) is None


def test_aria_label_preferred_over_text():
    html = page('<div id="main"><span class="amount" aria-label="US $949.00US $949.00">949</span></div>')

    result = extract_price_signals(LexborHTMLParser(html), [".amount"])

    assert result.price == Decimal("949.00")
    assert result.currency == "USD"


def test_content_attribute_used():
    html = page('<div id="main"><span class="amount" content="59.90"></span></div>')

    result = extract_price_signals(LexborHTMLParser(html), [".amount"])

    assert result.price == Decimal("59.90")
    # Currency could not be detected but a price was found
    assert result.currency == "USD"


def test_region_lock_ignores_unrelated_prices():
    html = page(
        '<div id="main-offer"><span class="amount">$149.99</span></div>'
        '<div class="related"><span class="amount">$9.99</span></div>'
    )

    result = extract_price_signals(LexborHTMLParser(html), [".amount"])

    assert result.price == Decimal("149.99")
    assert len(result.candidates) == 1


def test_selectors_tried_in_order_and_stop_when_full():
    spans = "".join(f'<span class="amount">${n}.00</span>' for n in range(10, 10 + MAX_CANDIDATES))
    html = page(f'<div id="buybox">{spans}<b class="other">$1.00</b></div>')

    accumulator = collect_candidates(LexborHTMLParser(html), [".amount", ".other"], CandidateAccumulator())

    assert len(accumulator.candidates) == MAX_CANDIDATES
    assert accumulator.region_locked
    assert all(c.amount >= Decimal("10") for c in accumulator.candidates)


def test_invalid_selector_is_skipped():
    html = page('<div id="main"><span class="amount">$5.00</span></div>')

    result = extract_price_signals(LexborHTMLParser(html), ["<<<", ".amount"])

    assert result.price == Decimal("5.00")


def test_stock_out_of_stock_evidence_wins():
    assert stock_signals("in stock at some stores, out of stock online") == (False, None)
    assert stock_signals("in stock") == (True, None)
    assert stock_signals("nothing relevant") == (None, None)


def test_sold_never_false():
    in_stock, sold = stock_signals("this item has sold")
    assert sold is True

    _, sold = stock_signals("add to cart")
    assert sold is None


def test_empty_selectors_skip_price_extraction():
    html = page('<div id="main"><span class="amount">$5.00</span> In stock</div>')

    result = extract_price_signals(LexborHTMLParser(html), [])

    assert result.price is None
    assert result.currency is None
    assert result.candidates == []
    assert result.in_stock is True


def test_no_price_leaves_currency_unset():
    html = page('<div id="main"><span class="amount">Sold out</span></div>')

    result = extract_price_signals(LexborHTMLParser(html), [".amount"])

    assert result.price is None
    assert result.currency is None
    assert result.sold is True


def test_zero_amount_never_becomes_candidate():
    """A currency code glued to the digits can parse as 0; it must not undercut the real price."""
    html = page(
        '<div id="main">'
        '<span class="amount">USD949.00</span>'
        '<span class="amount">$899.00</span>'
        "</div>"
    )

    result = extract_price_signals(LexborHTMLParser(html), [".amount"])

    assert result.price == Decimal("899.00")
    assert all(c.amount > 0 for c in result.candidates)
