"""Scraper utilities for URL canonicalisation and request headers."""

from .url import TRACKING_PARAMS, extract_domain, is_valid_url, normalize_url
from .user_agents import USER_AGENTS, build_headers, get_random_user_agent

__all__ = [
    "TRACKING_PARAMS",
    "USER_AGENTS",
    "build_headers",
    "extract_domain",
    "get_random_user_agent",
    "is_valid_url",
    "normalize_url",
]
