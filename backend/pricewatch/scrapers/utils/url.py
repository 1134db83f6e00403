"""URL validation and canonicalisation."""

from urllib.parse import parse_qsl, urlencode, urlparse, urlunparse

# Tracking parameters stripped before a URL is stored or compared
TRACKING_PARAMS = frozenset(
    {
        "utm_source",
        "utm_medium",
        "utm_campaign",
        "utm_content",
        "utm_term",
        "gclid",
        "fbclid",
        "ref",
        "referrer",
        "_ga",
        "mc_cid",
        "mc_eid",
    }
)


def is_valid_url(url: str) -> bool:
    """Return True for absolute http(s) URLs with a host."""
    if not url or not isinstance(url, str):
        return False
    try:
        parsed = urlparse(url.strip())
    except ValueError:
        return False
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


def normalize_url(url: str) -> str:
    """Normalize a URL by removing tracking parameters.

    Other query parameters keep their order. Invalid input is returned
    unchanged.

    Args:
        url: URL to normalize

    Returns:
        Normalized URL
    """
    if not is_valid_url(url):
        return url

    parsed = urlparse(url.strip())
    query_params = [
        (key, value)
        for key, value in parse_qsl(parsed.query, keep_blank_values=True)
        if key not in TRACKING_PARAMS
    ]

    return urlunparse(
        (
            parsed.scheme,
            parsed.netloc,
            parsed.path,
            parsed.params,
            urlencode(query_params, doseq=True),
            parsed.fragment,
        )
    )


def extract_domain(url: str) -> str:
    """Return the lower-cased host without a leading ``www.``, or ``unknown``."""
    if not is_valid_url(url):
        return "unknown"
    hostname = urlparse(url.strip()).hostname or ""
    if not hostname:
        return "unknown"
    return hostname[4:] if hostname.startswith("www.") else hostname
