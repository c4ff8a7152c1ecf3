"""Research prompt templates for client, competitor, and enrichment passes."""

from __future__ import annotations

import json
from datetime import date
from typing import Any

from domain_research.models import PROFILE_GROUPS, StructuralContext

ROLES = ("client", "competitor")
INTENSITIES = ("fastest", "lite", "master", "competitor_enriched", "postcall_enrichment")

# ---------------------------------------------------------------------------
# Output schema fragments
# "{domain}" and "{target}" are substituted when the schema is rendered.
# ---------------------------------------------------------------------------

FIELD_SCHEMA: dict[str, Any] = {
    "name": "Official company name",
    "domain": "{domain}",
    "about": "2-4 sentence description: what they do, for whom, and how — or null",
    "niche": "Ultra-specific 5-15 word niche: [technology/approach] + [product type] + [target buyer]",
    "usp": "Unique selling proposition vs. alternatives, or null",
    "icp": "Ideal customer profile: buyer persona, company size, verticals — or null",
    "tone": "Brand voice description or null",
    "industry": "Primary industry vertical or null",
    "productModel": "SaaS | API | Marketplace | Hardware | Services | Other, or null",
    "yearFounded": "YYYY or null",
    "headquarters": "City, Country or null",
    "teamSize": "Employee range, e.g. '11-50', or null",
    "funding": "Total raised and latest round, e.g. '$15M — Series A', or null",
    "features": ["Verified, specific product features"],
    "integrations": ["Verified integrations"],
    "techStack": ["Detected technologies (BuiltWith, job posts, docs)"],
    "compliance": ["SOC 2", "GDPR", "HIPAA", "ISO 27001"],
    "pricing": [{"tier": "Plan name", "price": "$X or Custom", "period": "/month", "features": ["Included features"]}],
    "founders": [{"name": "Full name", "role": "Title", "background": "Prior companies / expertise", "linkedin": "URL or null"}],
    "reviews": [{"platform": "G2 | Capterra | Trustpilot | ProductHunt", "score": "4.8", "count": "150", "summary": "Recurring themes or null"}],
    "caseStudies": [{"company": "Customer", "result": "Quantified outcome", "industry": "Customer industry"}],
    "notableCustomers": ["Named customer logos found publicly"],
    "partnerships": ["Announced partners / channel programs"],
    "segments": ["Customer segments served"],
    "limitations": ["Verified limitations from real user feedback"],
    "commonObjections": ["Objections a buyer would raise in a sales call"],
    "blogTopics": ["5-10 recent blog themes"],
    "contentThemes": ["Recurring content themes across blog, social, video"],
    "contentStrategy": "How they market with content, or null",
    "support": "Support channels and notes, or null",
    "activeHours": "Support / sales hours, e.g. '24/7', or null",
    "contact": [{"label": "Sales Email", "value": "sales@{domain}", "type": "email | phone | url"}],
    "social": {"twitter": "URL or null", "linkedin": "URL or null", "youtube": "URL or null", "facebook": "URL or null"},
    "competitors": [{
        "domain": "competitor.com",
        "name": "Competitor Name",
        "reason": "Both sell [specific product] to [specific buyer persona]",
        "differentiator": "How they differ from {domain}",
    }],
    "strengthVsTarget": "Where {domain} is stronger than {target}, or null",
    "weaknessVsTarget": "Where {domain} is weaker than {target}, or null",
    "pricingComparison": "Cheaper | Similar | More expensive | Unknown (vs {target})",
    "marketPositionVsTarget": "Positioning relative to {target} (tier, segment, focus), or null",
    "confidence": "high | medium | low",
    "confidenceNotes": "What you verified vs. what had gaps",
    "researchDate": "{today}",
    "searchesPerformed": ["Every search query you ran"],
}

FIELD_SCHEMA.update({
    group: {key: "URL or null" for key in keys} for group, keys in PROFILE_GROUPS.items()
})

FASTEST_FIELDS = (
    "name", "domain", "about", "niche", "features", "competitors",
    "confidence", "confidenceNotes",
)

LITE_FIELDS = FASTEST_FIELDS + (
    "usp", "icp", "tone", "industry", "productModel", "yearFounded",
    "headquarters", "teamSize", "funding", "integrations", "pricing",
    "founders", "compliance", "reviews", "limitations", "support",
    "contact", "social", "researchDate",
)

MASTER_FIELDS = LITE_FIELDS + (
    "techStack", "caseStudies", "notableCustomers", "partnerships",
    "segments", "commonObjections", "blogTopics", "contentThemes",
    "contentStrategy", "activeHours", "searchesPerformed",
)

ENRICHED_FIELDS = MASTER_FIELDS + tuple(PROFILE_GROUPS)

COMPARISON_SCHEMA_FIELDS = (
    "strengthVsTarget", "weaknessVsTarget", "pricingComparison", "marketPositionVsTarget",
)

SCHEMA_BY_INTENSITY = {
    "fastest": FASTEST_FIELDS,
    "lite": LITE_FIELDS,
    "master": MASTER_FIELDS,
    "competitor_enriched": ENRICHED_FIELDS,
    "postcall_enrichment": ENRICHED_FIELDS,
}

# ---------------------------------------------------------------------------
# Shared prompt sections
# ---------------------------------------------------------------------------

DATA_INTEGRITY_RULES = """**DATA INTEGRITY RULES:**
1. Use live web search. Do NOT rely on training data alone.
2. NEVER fabricate data. If you cannot verify something, use null for single values and [] for lists.
3. NEVER guess at founders, pricing, metrics, customers, or case studies.
4. Prefer specificity over generality (features, niche, ICP).
5. Set "confidence" honestly: high = pricing, reviews, clear product info and competitors found;
   medium = most info found with some gaps; low = sparse information or limited web presence."""

COMPETITOR_RUBRIC = """**COMPETITOR VALIDATION (apply to every candidate):**
  INCLUDE only if ALL are true:
  - Sells the SAME type of product (not an adjacent product)
  - Targets the SAME buyer persona / industry vertical
  - Competes at the SAME market tier (SMB vs. mid-market vs. enterprise)
  - A real buyer would have BOTH on their shortlist
  - You actually FOUND it via search (not guessed from memory)

  EXCLUDE if ANY are true:
  - It is a broad platform/suite with an overlapping feature (e.g. Salesforce, HubSpot, Zendesk)
  - It belongs to a broader parent category
  - It targets a fundamentally different buyer
  An empty list is better than wrong competitors."""

CLIENT_HEADER = """You are a senior market research analyst. Produce an intelligence profile of the company at https://{domain} using live web search."""

COMPETITOR_HEADER = """You are a competitive intelligence analyst. Research https://{domain} in detail.
This company is being evaluated as a competitor of {target}."""

FASTEST_STEPS = """**RESEARCH STEPS:**
1. Search "{domain}" and read the homepage and product pages.
2. Search "{domain} features" and "{domain} alternatives".
3. Define the company's SPECIFIC niche in 5-15 words."""

LITE_STEPS = """**RESEARCH STEPS (follow each):**
1. Search "{domain}" and visit the website: homepage, about, features, pricing pages.
2. Search "{domain} pricing", "{domain} plans", "how much does {domain} cost".
3. Search "{domain} features", "{domain} integrations", "{domain} API".
4. Search "{domain} reviews G2", "{domain} reviews Capterra", "{domain} Trustpilot".
5. Search "{domain} founders", "{domain} Crunchbase", "{domain} funding".
6. Search "{domain} SOC 2", "{domain} GDPR", "{domain} security".
7. Search "{domain} support", "{domain} contact", "{domain} LinkedIn".
8. Search "{domain} competitors", "{domain} alternatives", "{domain} vs".
9. Define the company's SPECIFIC niche in 5-15 words: [technology/approach] + [product type] + [target buyer]."""

MASTER_EXTRA_STEPS = """10. Search "{domain} case study", "{domain} customers", "{domain} testimonials".
11. Search "{domain} complaints", "{domain} limitations", "{domain} reddit".
12. Search "{domain} tech stack", "BuiltWith {domain}".
13. Search "{domain} blog", "{domain} YouTube", "{domain} podcast" for content themes.
14. Search "{domain} partners", "{domain} partnership".
15. Search "best [niche] software" and "alternatives to {domain} for [ICP]" to complete the competitor set.
16. Record EVERY query you ran in "searchesPerformed" so the output is auditable."""

ENRICHED_EXTRA_STEPS = """17. Locate directory and profile pages: G2, Capterra, Trustpilot, Product Hunt, Crunchbase,
    LinkedIn, GitHub, npm/PyPI, App Store, Google Play, Chrome Web Store, YouTube, podcast feeds.
    Record each URL in the matching profile group; use null where no profile exists."""

COMPETITOR_COMPARISON_STEPS = """**COMPARISON STEPS:**
- Search "{domain} vs {target}" and "{target} vs {domain}".
- Search "{domain} pricing" and compare with {target}'s pricing.
- Identify where {domain} is stronger and weaker than {target}, and how their market positioning differs."""

POSTCALL_INSTRUCTIONS = """**CURRENT DATA SNAPSHOT — fill only missing fields.**
The record below was already researched. Do NOT rewrite populated fields.
Return values ONLY for fields that are null or empty in the snapshot, using the call transcript
and content signals as leads to verify with search. Leave every populated field out or unchanged."""

DISCOVERY_PROMPT = """You are a competitive intelligence analyst. Your ONLY job is to find DIRECT competitors for the company at https://{domain}.

THE COMPANY'S NICHE: {niche}

Today's date is {today}.

**SEARCH PROCESS (follow each step):**
1. Search "{domain} competitors"
2. Search "{domain} alternatives" and "alternatives to {domain}"
3. Search "{domain} vs"
4. Search "best {niche} software"
5. Search "top {niche} companies"
6. Check G2, Capterra and AlternativeTo category pages that list {domain}

{known_block}

{rubric}

Return at least {min_count} direct competitors if that many genuinely exist. If fewer exist, return what you found. Do NOT pad the list.

Return ONLY valid JSON (no markdown, no explanations) with exactly this structure:
{schema}"""


# ---------------------------------------------------------------------------
# Builders
# ---------------------------------------------------------------------------

def build_research_prompt(
    domain: str,
    role: str = "client",
    scraped_context: StructuralContext | dict[str, Any] | None = None,
    comparison_context: dict[str, Any] | str | None = None,
    intensity: str = "lite",
    enrichment_context: dict[str, Any] | None = None,
    today: str | None = None,
) -> str:
    """Build the research prompt for one subject.

    Args:
        domain: Subject domain (already canonical).
        role: "client" or "competitor". Competitor prompts request the
            comparison fields and "X vs target" searches.
        scraped_context: Known facts from the structural scraper, if any.
        comparison_context: The client being compared against (competitor role).
        intensity: Schema variant, one of INTENSITIES.
        enrichment_context: For postcall_enrichment, ``snapshot`` (current
            record dict), ``transcript`` (str), ``blog_signals`` (list or str).
        today: ISO date embedded in the prompt; defaults to the current date.
    """
    if role not in ROLES:
        raise ValueError(f"Unknown role: {role!r}")
    if intensity not in INTENSITIES:
        raise ValueError(f"Unknown intensity: {intensity!r}")

    today = today or date.today().isoformat()
    target = _target_label(comparison_context) if role == "competitor" else ""
    subs = {"domain": domain, "target": target or "the client", "today": today}

    sections = [
        (COMPETITOR_HEADER if role == "competitor" else CLIENT_HEADER).format(**subs),
        f"Today's date is {today}.",
        _steps_for(intensity).format(**subs),
    ]

    if role == "competitor":
        sections.append(COMPETITOR_COMPARISON_STEPS.format(**subs))
        if comparison_context:
            sections.append(_render_comparison(comparison_context))

    known = _render_known_facts(scraped_context)
    if known:
        sections.append(known)

    if intensity == "postcall_enrichment":
        sections.append(_render_enrichment(enrichment_context or {}))

    sections.append(DATA_INTEGRITY_RULES)
    sections.append(COMPETITOR_RUBRIC)

    fields = list(SCHEMA_BY_INTENSITY[intensity])
    if role == "competitor":
        fields = [f for f in fields if f != "competitors"] + list(COMPARISON_SCHEMA_FIELDS)
    sections.append(
        "Return ONLY valid JSON (no markdown, no explanations) with exactly this structure:\n"
        + render_schema(fields, subs)
    )

    return "\n\n".join(sections)


def build_competitor_discovery_prompt(
    domain: str,
    niche: str | None,
    known_domains: list[str] | tuple[str, ...] = (),
    min_count: int = 5,
    today: str | None = None,
) -> str:
    """Competitor-only prompt for the recovery pass after thin discovery."""
    today = today or date.today().isoformat()
    subs = {"domain": domain, "target": domain, "today": today}
    known_block = ""
    if known_domains:
        known_block = (
            "ALREADY IDENTIFIED (do not repeat these; find ADDITIONAL competitors):\n"
            + "\n".join(f"- {d}" for d in known_domains)
        )
    return DISCOVERY_PROMPT.format(
        domain=domain,
        niche=niche or f"the product category of {domain}",
        today=today,
        known_block=known_block,
        rubric=COMPETITOR_RUBRIC,
        min_count=min_count,
        schema=render_schema(["competitors", "searchesPerformed"], subs),
    )


def render_schema(fields: list[str] | tuple[str, ...], subs: dict[str, str]) -> str:
    schema = {field: FIELD_SCHEMA[field] for field in fields}
    text = json.dumps(schema, indent=2, ensure_ascii=False)
    for key, value in subs.items():
        text = text.replace("{" + key + "}", value)
    return text


def _steps_for(intensity: str) -> str:
    if intensity == "fastest":
        return FASTEST_STEPS
    if intensity == "lite":
        return LITE_STEPS
    steps = LITE_STEPS + "\n" + MASTER_EXTRA_STEPS
    if intensity in ("competitor_enriched", "postcall_enrichment"):
        steps += "\n" + ENRICHED_EXTRA_STEPS
    return steps


def _target_label(comparison_context: dict[str, Any] | str | None) -> str:
    if isinstance(comparison_context, dict):
        return str(comparison_context.get("domain") or comparison_context.get("name") or "")
    if isinstance(comparison_context, str):
        return comparison_context.strip().splitlines()[0][:100] if comparison_context.strip() else ""
    return ""


def _render_comparison(context: dict[str, Any] | str) -> str:
    header = "**CLIENT BEING COMPARED AGAINST:**"
    if isinstance(context, str):
        return f"{header}\n{context.strip()}"

    lines = [header]
    for key, label in (
        ("name", "Name"), ("domain", "Domain"), ("niche", "Niche"),
        ("usp", "USP"), ("icp", "ICP"), ("industry", "Industry"), ("about", "About"),
    ):
        if context.get(key):
            lines.append(f"- {label}: {context[key]}")
    features = context.get("features")
    if isinstance(features, list) and features:
        lines.append(f"- Features: {', '.join(str(f) for f in features[:10])}")
    pricing = context.get("pricing")
    if isinstance(pricing, list) and pricing:
        tiers = [
            f"{p.get('tier') or '?'}: {p.get('price') or '?'}{p.get('period') or ''}"
            for p in pricing if isinstance(p, dict)
        ]
        if tiers:
            lines.append(f"- Pricing: {' | '.join(tiers)}")
    return "\n".join(lines)


def _render_known_facts(scraped: StructuralContext | dict[str, Any] | None) -> str:
    if scraped is None:
        return ""
    if isinstance(scraped, dict):
        scraped = StructuralContext.model_validate(scraped)
    if scraped.is_empty():
        return ""

    lines = ["**KNOWN FACTS (scraped directly from the website — treat as verified):**"]
    if scraped.headline:
        lines.append(f"- Headline: {scraped.headline}")
    if scraped.subheadline:
        lines.append(f"- Subheadline: {scraped.subheadline}")
    for label, values in (
        ("Value propositions", scraped.value_props),
        ("Features", scraped.features),
        ("Industries", scraped.industries),
        ("Compliance mentions", scraped.compliance_mentions),
        ("Integrations mentioned", scraped.integrations_mentioned),
        ("Keywords", scraped.keywords),
    ):
        if values:
            lines.append(f"- {label}: {', '.join(values[:15])}")
    if scraped.pricing_model and scraped.pricing_model != "unknown":
        lines.append(f"- Pricing model: {scraped.pricing_model}")
    return "\n".join(lines)


def _render_enrichment(context: dict[str, Any]) -> str:
    parts = [POSTCALL_INSTRUCTIONS]
    snapshot = context.get("snapshot")
    if snapshot:
        parts.append("SNAPSHOT:\n" + json.dumps(snapshot, indent=2, ensure_ascii=False, default=str))
    transcript = context.get("transcript")
    if transcript:
        parts.append(f"CALL TRANSCRIPT:\n{str(transcript).strip()}")
    signals = context.get("blog_signals")
    if isinstance(signals, list):
        signals = "\n".join(f"- {s}" for s in signals if s)
    if signals:
        parts.append(f"CONTENT SIGNALS (blog / site):\n{signals}")
    return "\n\n".join(parts)
