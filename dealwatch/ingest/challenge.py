"""Anti-automation challenge page detection.

A page is a challenge when any phrase heuristic matches. Every check is a
phrase match so real product pages are not misclassified; a missed challenge
only degrades to "no price found".
"""

from selectolax.lexbor import LexborHTMLParser

CHALLENGE_TITLE_PHRASES = (
    "security checkpoint",
    "just a moment...",
    "attention required! | cloudflare",
)

# Landmark elements on JS challenge interstitials
CHALLENGE_LANDMARK_SELECTORS = ("#header-text", "#challenge-title")
CHALLENGE_LANDMARK_PHRASES = ("verifying your browser", "checking your browser")

CHALLENGE_BODY_PHRASES = (
    "verifying your browser",
    "enable javascript to continue",
    "vercel security checkpoint",
    "checking your browser before accessing",
)

CHALLENGE_MARKUP_MARKERS = (
    "vercel security checkpoint",
    "verifying your browser",
    "security-checkpoint",
    "_cf_chl_opt",
)


def page_text(parser: LexborHTMLParser) -> str:
    """Lowercased text content of the document body."""
    body = parser.body
    if body is None:
        return ""
    return (body.text(separator=" ") or "").lower()


def is_challenge_page(parser: LexborHTMLParser) -> bool:
    """Return True if the parsed document is an anti-automation challenge page."""
    title_node = parser.css_first("title")
    title = (title_node.text() if title_node else "").lower()
    if any(phrase in title for phrase in CHALLENGE_TITLE_PHRASES):
        return True

    for selector in CHALLENGE_LANDMARK_SELECTORS:
        node = parser.css_first(selector)
        if node is None:
            continue
        text = (node.text() or "").lower()
        if any(phrase in text for phrase in CHALLENGE_LANDMARK_PHRASES):
            return True

    body_text = page_text(parser)
    if any(phrase in body_text for phrase in CHALLENGE_BODY_PHRASES):
        return True

    # Last resort: vendor markers in the serialized markup (scripts, ids)
    html = (parser.html or "").lower()
    return any(marker in html for marker in CHALLENGE_MARKUP_MARKERS)
