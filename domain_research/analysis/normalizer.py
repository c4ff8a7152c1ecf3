"""Map schema-drifting provider JSON onto the canonical ResearchRecord shape.

Providers are prompted with one schema but routinely return variants of it:
grouped feature lists, pricing wrapped in an object, ICP/funding/support as
nested objects, legacy key names. Downstream consumers depend on the shape,
so the flattening rules here are fixed:

- icp {buyerPersona, companySize, industries[], triggerEvents[]} -> "a — b — c"
- features [{category, items[]}] -> flat list of strings
- pricing {model, tiers[]} -> tiers
- funding {totalRaised, stage, lastRound} -> "a — b — c"
- support {channels[], hours, notes} -> one string; hours seeds activeHours
- fundingTotal / employeeRange / team_size are folded into funding / teamSize
"""

from __future__ import annotations

import logging
from typing import Any

from domain_research.analysis.competitors import canonicalize_domain
from domain_research.models import (
    COMPARISON_FIELDS,
    CONFIDENCE_LEVELS,
    LIST_FIELDS,
    NARRATIVE_FIELDS,
    PRICING_COMPARISONS,
    PROFILE_GROUPS,
    PROVENANCE_FIELDS,
    RECORD_LIST_FIELDS,
    ResearchRecord,
)

logger = logging.getLogger(__name__)

JOIN_SEPARATOR = " — "

# alias -> canonical field; alias is removed after folding
LEGACY_ALIASES: dict[str, str] = {
    "fundingTotal": "funding",
    "employeeRange": "teamSize",
    "team_size": "teamSize",
}


def normalize(raw: dict[str, Any] | None) -> ResearchRecord | None:
    """Return a fully-populated ResearchRecord, or None for missing input."""
    if raw is None:
        return None
    if not isinstance(raw, dict):
        logger.warning("Normalizer received %s instead of an object", type(raw).__name__)
        raw = {}

    d = dict(raw)

    d["icp"] = _flatten_icp(d.get("icp"))
    d["features"] = _flatten_features(d.get("features"))
    d["pricing"] = _unwrap_pricing(d.get("pricing"))
    d["funding"] = _flatten_funding(d.get("funding"))
    _flatten_support(d)
    _fold_aliases(d)

    for field in LIST_FIELDS:
        if field == "features":
            continue
        d[field] = _string_list(d.get(field))

    if not isinstance(d.get("competitors"), list):
        d["competitors"] = []
    else:
        d["competitors"] = [
            {"domain": c} if isinstance(c, str) else c
            for c in d["competitors"]
            if isinstance(c, dict) or (isinstance(c, str) and c.strip())
        ]

    for field, primary_key in RECORD_LIST_FIELDS.items():
        d[field] = _record_list(d.get(field), primary_key)
    d["contact"] = [_contact_entry(c) for c in d["contact"]]
    d["reviews"] = [_review_entry(r) for r in d["reviews"]]

    if not isinstance(d.get("social"), dict):
        d["social"] = {}
    for group, known_keys in PROFILE_GROUPS.items():
        d[group] = _profile_group(d.get(group), known_keys)

    for field in ("name", "domain", *NARRATIVE_FIELDS, *COMPARISON_FIELDS, *PROVENANCE_FIELDS):
        if d.get(field) is None or _is_null_literal(d[field]):
            d[field] = None

    if d["domain"]:
        d["domain"] = canonicalize_domain(d["domain"]) if isinstance(d["domain"], str) else None
    d["confidence"] = _confidence(d["confidence"])
    d["pricingComparison"] = _pricing_comparison(d["pricingComparison"])

    return ResearchRecord.model_validate(d)


# ---------------------------------------------------------------------------
# Flattening rules
# ---------------------------------------------------------------------------

def _is_null_literal(value: Any) -> bool:
    # Models sometimes echo the schema's "null" placeholder as a string
    return isinstance(value, str) and value.strip().lower() in ("null", "none")


def _join(parts: list[Any], sep: str = JOIN_SEPARATOR) -> str:
    return sep.join(str(p).strip() for p in parts if p and str(p).strip())


def _flatten_icp(icp: Any) -> Any:
    if not isinstance(icp, dict):
        return icp
    industries = icp.get("industries")
    triggers = icp.get("triggerEvents")
    parts = [
        icp.get("buyerPersona"),
        icp.get("companySize"),
        ", ".join(str(i) for i in industries if i) if isinstance(industries, list) else industries,
        ", ".join(str(t) for t in triggers if t) if isinstance(triggers, list) else triggers,
    ]
    return _join(parts) or None


def _flatten_features(features: Any) -> list[str]:
    if not isinstance(features, list):
        return []
    flat: list[Any] = []
    for item in features:
        if isinstance(item, dict):
            items = item.get("items")
            if isinstance(items, list):
                flat.extend(items)
            else:
                flat.append(item.get("name") or item.get("category") or str(item))
        else:
            flat.append(item)
    out = []
    for f in flat:
        if isinstance(f, dict):
            f = f.get("name") or f.get("title") or str(f)
        if f and str(f).strip():
            out.append(str(f).strip())
    return out


def _unwrap_pricing(pricing: Any) -> list[Any]:
    if isinstance(pricing, list):
        return pricing
    if isinstance(pricing, dict) and isinstance(pricing.get("tiers"), list):
        return pricing["tiers"]
    return []


def _flatten_funding(funding: Any) -> Any:
    if not isinstance(funding, dict):
        return funding
    return _join([funding.get("totalRaised"), funding.get("stage"), funding.get("lastRound")]) or None


def _flatten_support(d: dict[str, Any]) -> None:
    support = d.get("support")
    if not isinstance(support, dict):
        return
    parts = []
    channels = support.get("channels")
    if isinstance(channels, list) and channels:
        parts.append(f"Channels: {', '.join(str(c) for c in channels if c)}")
    hours = support.get("hours")
    if hours:
        parts.append(f"Hours: {hours}")
        if not d.get("activeHours"):
            d["activeHours"] = hours
    if support.get("notes"):
        parts.append(str(support["notes"]))
    d["support"] = ". ".join(parts) or None


def _fold_aliases(d: dict[str, Any]) -> None:
    for alias, canonical in LEGACY_ALIASES.items():
        if alias not in d:
            continue
        value = d.pop(alias)
        if isinstance(value, dict) and canonical == "funding":
            value = _flatten_funding(value)
        if not d.get(canonical) and value:
            d[canonical] = value


# ---------------------------------------------------------------------------
# Default filling
# ---------------------------------------------------------------------------

def _string_list(value: Any) -> list[Any]:
    if not isinstance(value, list):
        return []
    out = []
    for item in value:
        if isinstance(item, dict):
            item = item.get("name") or item.get("title") or item.get("value")
        if item is None or item == "":
            continue
        out.append(item)
    return out


def _record_list(value: Any, primary_key: str) -> list[dict[str, Any]]:
    if not isinstance(value, list):
        return []
    out = []
    for entry in value:
        if isinstance(entry, dict):
            out.append(dict(entry))
        elif isinstance(entry, str) and entry.strip():
            out.append({primary_key: entry.strip()})
    return out


def _contact_entry(entry: dict[str, Any]) -> dict[str, Any]:
    if not entry.get("type") and entry.get("icon"):
        entry["type"] = entry["icon"]
    return entry


def _review_entry(entry: dict[str, Any]) -> dict[str, Any]:
    if entry.get("summary"):
        return entry
    themes = []
    for key, label in (("positiveThemes", "Praise"), ("negativeThemes", "Complaints")):
        values = entry.get(key)
        if isinstance(values, list) and values:
            themes.append(f"{label}: {', '.join(str(v) for v in values if v)}")
    if themes:
        entry["summary"] = "; ".join(themes)
    return entry


def _profile_group(value: Any, known_keys: tuple[str, ...]) -> dict[str, str | None]:
    source = value if isinstance(value, dict) else {}
    group: dict[str, str | None] = {}
    for key, url in source.items():
        valid = isinstance(url, str) and url.strip() and not _is_null_literal(url)
        group[key] = url.strip() if valid else None
    for key in known_keys:
        group.setdefault(key, None)
    return group


def _confidence(value: Any) -> str | None:
    if not isinstance(value, str):
        return None
    level = value.strip().lower()
    return level if level in CONFIDENCE_LEVELS else None


def _pricing_comparison(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip().lower()
    if not text:
        return None
    for choice in PRICING_COMPARISONS:
        if text.startswith(choice.lower()):
            return choice
    return "Unknown"
