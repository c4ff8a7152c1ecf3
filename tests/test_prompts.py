"""Tests for research prompt construction."""
import json

import pytest

from domain_research.analysis.prompts import (
    INTENSITIES,
    build_competitor_discovery_prompt,
    build_research_prompt,
)
from domain_research.models import StructuralContext

TODAY = "2025-01-15"


def _schema_keys(prompt):
    _, schema = prompt.split("with exactly this structure:\n", 1)
    return set(json.loads(schema))


class TestIntensity:
    def test_fastest_has_at_most_eight_fields(self):
        keys = _schema_keys(build_research_prompt("acme.io", intensity="fastest", today=TODAY))
        assert len(keys) <= 8
        assert {"name", "about", "niche", "features", "competitors", "confidence"} <= keys

    def test_lite_is_default(self):
        prompt = build_research_prompt("acme.io", today=TODAY)
        assert prompt == build_research_prompt("acme.io", intensity="lite", today=TODAY)
        keys = _schema_keys(prompt)
        assert "pricing" in keys
        assert "searchesPerformed" not in keys

    def test_master_adds_audit_trail(self):
        keys = _schema_keys(build_research_prompt("acme.io", intensity="master", today=TODAY))
        assert "searchesPerformed" in keys
        assert "caseStudies" in keys
        assert "reviewProfiles" not in keys

    def test_competitor_enriched_adds_profile_groups(self):
        keys = _schema_keys(build_research_prompt(
            "foo.com", role="competitor", comparison_context={"domain": "acme.io"},
            intensity="competitor_enriched", today=TODAY,
        ))
        assert {"contentProfiles", "developerProfiles", "reviewProfiles", "businessProfiles", "appProfiles"} <= keys

    @pytest.mark.parametrize("intensity", INTENSITIES)
    def test_rules_always_embedded(self, intensity):
        prompt = build_research_prompt("acme.io", intensity=intensity, today=TODAY)
        assert "NEVER fabricate" in prompt
        assert "use null for single values and [] for lists" in prompt
        assert "COMPETITOR VALIDATION" in prompt
        assert "SAME buyer persona" in prompt


class TestRole:
    def test_competitor_role_requests_comparison(self):
        prompt = build_research_prompt(
            "foo.com", role="competitor", comparison_context={"domain": "acme.io", "niche": "AI support desk"},
            today=TODAY,
        )
        assert 'Search "foo.com vs acme.io"' in prompt
        assert "AI support desk" in prompt
        keys = _schema_keys(prompt)
        assert {"strengthVsTarget", "weaknessVsTarget", "pricingComparison", "marketPositionVsTarget"} <= keys
        assert "competitors" not in keys

    def test_client_role_has_no_comparison_fields(self):
        prompt = build_research_prompt("acme.io", today=TODAY)
        assert "strengthVsTarget" not in _schema_keys(prompt)
        assert "COMPARISON STEPS" not in prompt

    def test_comparison_context_as_text(self):
        prompt = build_research_prompt("foo.com", role="competitor", comparison_context="acme.io", today=TODAY)
        assert "foo.com vs acme.io" in prompt

    def test_unknown_role_and_intensity_rejected(self):
        with pytest.raises(ValueError):
            build_research_prompt("acme.io", role="partner")
        with pytest.raises(ValueError):
            build_research_prompt("acme.io", intensity="turbo")


class TestContext:
    def test_scraped_context_rendered_as_known_facts(self):
        scraped = StructuralContext(headline="Ship support faster", features=["AI triage"], pricing_model="subscription")
        prompt = build_research_prompt("acme.io", scraped_context=scraped, today=TODAY)
        assert "KNOWN FACTS" in prompt
        assert "Ship support faster" in prompt
        assert "Pricing model: subscription" in prompt

    def test_empty_scraped_context_omitted(self):
        prompt = build_research_prompt("acme.io", scraped_context={"pricing_model": "unknown"}, today=TODAY)
        assert "KNOWN FACTS" not in prompt

    def test_postcall_enrichment_snapshot(self):
        prompt = build_research_prompt(
            "acme.io",
            intensity="postcall_enrichment",
            enrichment_context={
                "snapshot": {"about": "Existing about", "usp": None},
                "transcript": "Prospect said they use Zendesk today.",
                "blog_signals": ["Post: AI triage benchmarks"],
            },
            today=TODAY,
        )
        assert "CURRENT DATA SNAPSHOT — fill only missing fields" in prompt
        assert '"about": "Existing about"' in prompt
        assert "Prospect said they use Zendesk today." in prompt
        assert "- Post: AI triage benchmarks" in prompt


def test_deterministic_apart_from_date():
    first = build_research_prompt("acme.io", intensity="master", today=TODAY)
    assert first == build_research_prompt("acme.io", intensity="master", today=TODAY)
    assert f"Today's date is {TODAY}." in first
    assert first != build_research_prompt("acme.io", intensity="master", today="2025-01-16")


def test_domain_substituted_into_schema():
    prompt = build_research_prompt("acme.io", today=TODAY)
    assert "{domain}" not in prompt
    assert "sales@acme.io" in prompt


class TestDiscoveryPrompt:
    def test_lists_known_competitors(self):
        prompt = build_competitor_discovery_prompt(
            "acme.io", "AI-powered helpdesk for SMB e-commerce", known_domains=["foo.com"], min_count=5, today=TODAY,
        )
        assert "- foo.com" in prompt
        assert "at least 5 direct competitors" in prompt
        assert "best AI-powered helpdesk for SMB e-commerce software" in prompt
        assert "COMPETITOR VALIDATION" in prompt
        assert _schema_keys(prompt) == {"competitors", "searchesPerformed"}

    def test_missing_niche(self):
        prompt = build_competitor_discovery_prompt("acme.io", None, today=TODAY)
        assert "ALREADY IDENTIFIED" not in prompt
        assert "the product category of acme.io" in prompt
