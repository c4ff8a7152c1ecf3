"""Pydantic data models for the domain research orchestrator."""

from __future__ import annotations

import json
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


# ---------------------------------------------------------------------------
# Canonical field sets (camelCase, as emitted in payloads)
# ---------------------------------------------------------------------------

NARRATIVE_FIELDS: tuple[str, ...] = (
    "usp", "icp", "tone", "about", "industry", "niche", "productModel",
    "yearFounded", "headquarters", "teamSize", "funding", "support",
    "activeHours", "contentStrategy",
)

COMPARISON_FIELDS: tuple[str, ...] = (
    "strengthVsTarget", "weaknessVsTarget", "pricingComparison",
    "marketPositionVsTarget",
)

PROVENANCE_FIELDS: tuple[str, ...] = ("confidence", "confidenceNotes", "researchDate")

LIST_FIELDS: tuple[str, ...] = (
    "features", "integrations", "techStack", "compliance", "limitations",
    "commonObjections", "blogTopics", "segments", "contentThemes",
    "partnerships", "notableCustomers", "searchesPerformed",
)

# Structured list field -> key used when a provider returns a bare string entry
RECORD_LIST_FIELDS: dict[str, str] = {
    "pricing": "tier",
    "founders": "name",
    "reviews": "platform",
    "caseStudies": "company",
    "contact": "value",
}

PROFILE_GROUPS: dict[str, tuple[str, ...]] = {
    "contentProfiles": ("blog", "youtube", "podcast", "medium", "substack", "newsletter"),
    "developerProfiles": ("github", "gitlab", "npm", "pypi", "dockerhub", "docs"),
    "reviewProfiles": ("g2", "capterra", "trustpilot", "producthunt", "getapp", "gartner"),
    "businessProfiles": ("crunchbase", "linkedin", "angellist", "pitchbook", "bbb"),
    "appProfiles": ("appStore", "googlePlay", "chromeWebStore", "slackMarketplace", "shopifyAppStore"),
}

CONFIDENCE_LEVELS = ("high", "medium", "low")
PRICING_COMPARISONS = ("Cheaper", "Similar", "More expensive", "Unknown")


def coerce_text(value: Any) -> str | None:
    """Best-effort conversion of a provider value to a display string."""
    if value is None or isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "yes" if value else "no"
    if isinstance(value, (int, float)):
        return str(value)
    if isinstance(value, list):
        parts = [coerce_text(v) for v in value]
        return ", ".join(p for p in parts if p) or None
    return json.dumps(value, ensure_ascii=False)


def coerce_text_list(value: Any) -> list[str]:
    if not isinstance(value, list):
        return []
    items = [coerce_text(v) for v in value]
    return [i for i in items if i]


# ---------------------------------------------------------------------------
# Structured list entries
# ---------------------------------------------------------------------------

class _RecordModel(BaseModel):
    """Base for camelCase payload models that tolerate provider drift."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )


class PricingTier(_RecordModel):
    tier: str | None = None
    price: str | None = None
    period: str | None = None
    features: list[str] = Field(default_factory=list)

    @field_validator("tier", "price", "period", mode="before")
    @classmethod
    def _text(cls, v):
        return coerce_text(v)

    @field_validator("features", mode="before")
    @classmethod
    def _text_list(cls, v):
        return coerce_text_list(v)


class Founder(_RecordModel):
    name: str | None = None
    role: str | None = None
    background: str | None = None
    linkedin: str | None = None

    @field_validator("name", "role", "background", "linkedin", mode="before")
    @classmethod
    def _text(cls, v):
        return coerce_text(v)


class Review(_RecordModel):
    platform: str | None = None
    score: str | None = None
    count: str | None = None
    summary: str | None = None

    @field_validator("platform", "score", "count", "summary", mode="before")
    @classmethod
    def _text(cls, v):
        return coerce_text(v)


class CaseStudy(_RecordModel):
    company: str | None = None
    result: str | None = None
    industry: str | None = None

    @field_validator("company", "result", "industry", mode="before")
    @classmethod
    def _text(cls, v):
        return coerce_text(v)


class ContactEntry(_RecordModel):
    label: str | None = None
    value: str | None = None
    type: str | None = None

    @field_validator("label", "value", "type", mode="before")
    @classmethod
    def _text(cls, v):
        return coerce_text(v)


# ---------------------------------------------------------------------------
# Canonical research record
# ---------------------------------------------------------------------------

class ResearchRecord(_RecordModel):
    """Canonical shape for both client and competitor research output."""

    # Identity
    name: str | None = None
    domain: str | None = None

    # Narrative
    usp: str | None = None
    icp: str | None = None
    tone: str | None = None
    about: str | None = None
    industry: str | None = None
    niche: str | None = None
    product_model: str | None = None
    year_founded: str | None = None
    headquarters: str | None = None
    team_size: str | None = None
    funding: str | None = None
    support: str | None = None
    active_hours: str | None = None
    content_strategy: str | None = None

    # Flat lists
    features: list[str] = Field(default_factory=list)
    integrations: list[str] = Field(default_factory=list)
    tech_stack: list[str] = Field(default_factory=list)
    compliance: list[str] = Field(default_factory=list)
    limitations: list[str] = Field(default_factory=list)
    common_objections: list[str] = Field(default_factory=list)
    blog_topics: list[str] = Field(default_factory=list)
    segments: list[str] = Field(default_factory=list)
    content_themes: list[str] = Field(default_factory=list)
    partnerships: list[str] = Field(default_factory=list)
    notable_customers: list[str] = Field(default_factory=list)
    searches_performed: list[str] = Field(default_factory=list)
    competitors: list[dict[str, Any]] = Field(default_factory=list)

    # Structured lists
    pricing: list[PricingTier] = Field(default_factory=list)
    founders: list[Founder] = Field(default_factory=list)
    reviews: list[Review] = Field(default_factory=list)
    case_studies: list[CaseStudy] = Field(default_factory=list)
    contact: list[ContactEntry] = Field(default_factory=list)

    # Nested profile objects
    social: dict[str, Any] = Field(default_factory=dict)
    content_profiles: dict[str, str | None] = Field(default_factory=dict)
    developer_profiles: dict[str, str | None] = Field(default_factory=dict)
    review_profiles: dict[str, str | None] = Field(default_factory=dict)
    business_profiles: dict[str, str | None] = Field(default_factory=dict)
    app_profiles: dict[str, str | None] = Field(default_factory=dict)

    # Comparison (competitor mode)
    strength_vs_target: str | None = None
    weakness_vs_target: str | None = None
    pricing_comparison: str | None = None
    market_position_vs_target: str | None = None

    # Provenance
    confidence: str | None = None
    confidence_notes: str | None = None
    research_date: str | None = None

    @field_validator(
        "name", "usp", "icp", "tone", "about", "industry", "niche",
        "product_model", "year_founded", "headquarters", "team_size",
        "funding", "support", "active_hours", "content_strategy",
        "strength_vs_target", "weakness_vs_target", "pricing_comparison",
        "market_position_vs_target", "confidence", "confidence_notes",
        "research_date",
        mode="before",
    )
    @classmethod
    def coerce_to_str(cls, v):
        return coerce_text(v)

    @field_validator(
        "features", "integrations", "tech_stack", "compliance", "limitations",
        "common_objections", "blog_topics", "segments", "content_themes",
        "partnerships", "notable_customers", "searches_performed",
        mode="before",
    )
    @classmethod
    def coerce_to_str_list(cls, v):
        return coerce_text_list(v)

    def to_payload(self) -> dict[str, Any]:
        """Return the camelCase dict consumed by persistence and the HTTP layer."""
        return self.model_dump(by_alias=True)


# ---------------------------------------------------------------------------
# Competitors and scrape context
# ---------------------------------------------------------------------------

class CompetitorRef(BaseModel):
    """A validated competitor; ``domain`` is the canonical dedup key."""
    domain: str
    name: str
    reason: str | None = None
    differentiator: str | None = None


class StructuralContext(BaseModel):
    """Known facts supplied by the (external) structural page scraper."""
    headline: str | None = None
    subheadline: str | None = None
    value_props: list[str] = Field(default_factory=list)
    features: list[str] = Field(default_factory=list)
    industries: list[str] = Field(default_factory=list)
    compliance_mentions: list[str] = Field(default_factory=list)
    pricing_model: str = "unknown"
    keywords: list[str] = Field(default_factory=list)
    integrations_mentioned: list[str] = Field(default_factory=list)
    page_results: dict[str, str] = Field(default_factory=dict)

    # Scrapers return partial data; nulls mean "not found", never invalid
    @field_validator("headline", "subheadline", mode="before")
    @classmethod
    def _text(cls, v):
        return coerce_text(v)

    @field_validator(
        "value_props", "features", "industries", "compliance_mentions",
        "keywords", "integrations_mentioned", mode="before",
    )
    @classmethod
    def _text_list(cls, v):
        return coerce_text_list(v)

    @field_validator("pricing_model", mode="before")
    @classmethod
    def _pricing_model(cls, v):
        return coerce_text(v) or "unknown"

    @field_validator("page_results", mode="before")
    @classmethod
    def _page_results(cls, v):
        if not isinstance(v, dict):
            return {}
        return {str(k): coerce_text(s) for k, s in v.items() if coerce_text(s)}

    def is_empty(self) -> bool:
        return not (
            self.headline or self.subheadline or self.value_props or self.features
            or self.industries or self.compliance_mentions or self.keywords
            or self.integrations_mentioned
            or (self.pricing_model and self.pricing_model != "unknown")
        )


# ---------------------------------------------------------------------------
# Orchestrator results
# ---------------------------------------------------------------------------

class ProviderAttempt(BaseModel):
    """Outcome of one provider call inside the fallback chain."""
    provider: str
    context_label: str
    ok: bool
    cause: str | None = None
    error: str | None = None
    elapsed_s: float = 0.0


class DomainResearchResult(BaseModel):
    """Complete result of client research plus competitor discovery."""
    domain: str
    name: str
    data: ResearchRecord
    competitors: list[CompetitorRef] = Field(default_factory=list)
    escalated: bool = False
    recovery_ran: bool = False
    attempts: list[ProviderAttempt] = Field(default_factory=list)
    researched_at: str = Field(default_factory=lambda: datetime.now().isoformat())
    from_cache: bool = False


class CompetitorResearchResult(BaseModel):
    """Result of a single competitor deep dive."""
    domain: str
    client_domain: str
    data: ResearchRecord
    backfilled: bool = False
    coverage_before: int = 0
    coverage_after: int = 0
    attempts: list[ProviderAttempt] = Field(default_factory=list)
    researched_at: str = Field(default_factory=lambda: datetime.now().isoformat())
    from_cache: bool = False


class DataReviewPatch(BaseModel):
    """Fill-missing patches produced from a post-call review."""
    client_data_patch: dict[str, Any] = Field(default_factory=dict)
    competitor_patches_by_domain: dict[str, dict[str, Any]] = Field(default_factory=dict)
