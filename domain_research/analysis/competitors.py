"""Competitor validation, domain canonicalization, and cross-pass deduplication."""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable
from typing import Any
from urllib.parse import urlparse

from domain_research.models import CompetitorRef, coerce_text

logger = logging.getLogger(__name__)

# Fields tried, in order, when deriving a competitor's domain
DOMAIN_SOURCE_FIELDS = ("domain", "url", "website", "name")

# First TLD-like suffix (and everything after it) is dropped to derive a display name
_NAME_SUFFIX_RE = re.compile(r"\.(com|io|net|org|co|ai|app|dev|tech|xyz)\b.*$", re.IGNORECASE)

_SCHEME_RE = re.compile(r"^[a-z][a-z0-9+.-]*://", re.IGNORECASE)


def canonicalize_domain(value: Any) -> str | None:
    """Reduce a URL or host to a bare lowercase host without ``www.``.

    "https://WWW.Example.com/path" -> "example.com"
    Returns None when no dotted host can be derived.
    """
    if not isinstance(value, str):
        return None
    text = value.strip().lower()
    if not text:
        return None

    candidate = text if _SCHEME_RE.match(text) else f"https://{text}"
    try:
        host = urlparse(candidate).hostname or ""
    except ValueError:
        host = _strip_manually(text)

    host = host.strip().strip(".")
    if host.startswith("www."):
        host = host[4:]
    if "." not in host or any(ch.isspace() for ch in host):
        return None
    return host


def _strip_manually(text: str) -> str:
    """Fallback when urlparse rejects the input (e.g. malformed port)."""
    host = _SCHEME_RE.sub("", text)
    host = re.split(r"[/?#]", host, maxsplit=1)[0]
    host = host.rsplit("@", 1)[-1]
    host = host.split(":", 1)[0]
    return host


def derive_name(domain: str) -> str:
    """Display name from a domain, e.g. acme.io -> acme, getfoo.co.uk -> getfoo."""
    name = _NAME_SUFFIX_RE.sub("", domain)
    return name or domain


def sanitize_competitor(raw: Any) -> CompetitorRef | None:
    """Validate one raw competitor entry; None if no usable domain."""
    if isinstance(raw, CompetitorRef):
        return raw
    if isinstance(raw, str):
        raw = {"domain": raw}
    if not isinstance(raw, dict):
        return None

    domain = None
    for field in DOMAIN_SOURCE_FIELDS:
        domain = canonicalize_domain(raw.get(field))
        if domain:
            break
    if not domain:
        return None

    name = coerce_text(raw.get("name"))
    name = name.strip() if name else ""
    return CompetitorRef(
        domain=domain,
        name=name or derive_name(domain),
        reason=coerce_text(raw.get("reason")) or None,
        differentiator=coerce_text(raw.get("differentiator")) or None,
    )


def merge_and_dedupe(
    *lists: Iterable[Any] | None,
    exclude: Iterable[str] = (),
) -> list[CompetitorRef]:
    """Sanitize and merge competitor lists; first occurrence per domain wins.

    ``exclude`` holds domains (any form) that must never appear, typically
    the research subject itself.
    """
    seen: set[str] = set()
    for value in exclude:
        key = canonicalize_domain(value)
        if key:
            seen.add(key)

    merged: list[CompetitorRef] = []
    rejected = 0
    for items in lists:
        for raw in items or []:
            ref = sanitize_competitor(raw)
            if ref is None:
                rejected += 1
                continue
            if ref.domain in seen:
                continue
            seen.add(ref.domain)
            merged.append(ref)

    if rejected:
        logger.debug("Dropped %d competitor entries without a usable domain", rejected)
    return merged
