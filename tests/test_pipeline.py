"""End-to-end orchestrator tests with scripted providers."""
from datetime import date
from unittest.mock import AsyncMock

import pytest

from domain_research.analysis.llm_client import AllProvidersFailed
from domain_research.analysis.providers import ProviderError, ProviderFailure
from domain_research.pipeline import ResearchPipeline

DISCOVERY_MARKER = "Your ONLY job is to find DIRECT competitors"
MASTER_MARKER = "Record EVERY query you ran"
BACKFILL_MARKER = "CURRENT DATA SNAPSHOT"
ENRICHED_MARKER = "Locate directory and profile pages"

LITE_OK = {
    "name": "Acme",
    "confidence": "high",
    "about": "Acme builds AI support desks.",
    "niche": "AI-powered helpdesk for SMB e-commerce",
    "features": ["f1", "f2", "f3", "f4"],
    "competitors": [{"domain": "foo.com", "name": "Foo"}, {"domain": "foo.com", "name": "Foo Inc"}],
}

RECOVERY = {
    "competitors": [
        {"domain": "bar.com", "name": "Bar"},
        {"domain": "https://www.foo.com", "name": "Foo Again"},
        {"url": "baz.io"},
        {"domain": "acme.io", "name": "Acme itself"},
    ],
}


def _stage(prompt):
    if DISCOVERY_MARKER in prompt:
        return "recovery"
    if BACKFILL_MARKER in prompt:
        return "backfill"
    if MASTER_MARKER in prompt and ENRICHED_MARKER not in prompt:
        return "master"
    return "primary"


def _router_handler(responses):
    """Answer by stage; a list value is consumed one item per call."""
    def handler(prompt):
        value = responses[_stage(prompt)]
        if isinstance(value, list):
            return value.pop(0)
        return value
    return handler


def _competitors(n, prefix="c"):
    return [{"domain": f"{prefix}{i}.com", "name": f"C{i}"} for i in range(n)]


class TestResearchDomain:
    @pytest.mark.asyncio
    async def test_acme_scenario(self, config, make_router, fake_provider):
        gemini = fake_provider("gemini", handler=_router_handler({"primary": LITE_OK, "recovery": RECOVERY}))
        pipeline = ResearchPipeline(config, router=make_router(gemini=gemini))

        result = await pipeline.research_domain("https://www.Acme.io/")

        assert [_stage(p) for p in gemini.prompts] == ["primary", "recovery"]
        assert result.escalated is False
        assert result.recovery_ran is True
        assert [c.domain for c in result.competitors] == ["foo.com", "bar.com", "baz.io"]
        assert result.competitors[0].name == "Foo"
        assert result.competitors[2].name == "baz"
        assert result.domain == "acme.io"
        assert result.name == "Acme"
        assert result.data.domain == "acme.io"
        assert [c["domain"] for c in result.data.competitors] == ["foo.com", "bar.com", "baz.io"]
        assert result.data.research_date == date.today().isoformat()

        discovery_prompt = gemini.prompts[1]
        assert "- foo.com" in discovery_prompt
        assert "AI-powered helpdesk for SMB e-commerce" in discovery_prompt

    @pytest.mark.asyncio
    async def test_no_recovery_when_enough_competitors(self, config, make_router, fake_provider):
        lite = {**LITE_OK, "competitors": _competitors(5)}
        gemini = fake_provider("gemini", handler=_router_handler({"primary": lite}))
        result = await ResearchPipeline(config, router=make_router(gemini=gemini)).research_domain("acme.io")

        assert gemini.calls == 1
        assert result.recovery_ran is False
        assert len(result.competitors) == 5

    @pytest.mark.asyncio
    async def test_low_confidence_escalates_to_master(self, config, make_router, fake_provider):
        lite = {**LITE_OK, "confidence": "low", "competitors": [{"domain": "x.com"}]}
        master = {**LITE_OK, "about": "Master about", "competitors": _competitors(5)}
        gemini = fake_provider("gemini", handler=_router_handler({"primary": lite, "master": master}))
        pipeline = ResearchPipeline(config, router=make_router(gemini=gemini))

        result = await pipeline.research_domain("acme.io")

        assert [_stage(p) for p in gemini.prompts] == ["primary", "master"]
        assert result.escalated is True
        assert result.recovery_ran is False
        assert result.data.about == "Master about"
        assert result.data.confidence == "high"
        assert [c.domain for c in result.competitors] == ["c0.com", "c1.com", "c2.com", "c3.com", "c4.com", "x.com"]

    @pytest.mark.asyncio
    async def test_master_failure_keeps_lite_result(self, config, make_router, fake_provider):
        lite = {**LITE_OK, "features": ["only one"]}
        responses = {
            "primary": lite,
            "master": ProviderError("gemini", ProviderFailure.UNPARSABLE_JSON, "garbage"),
            "recovery": RECOVERY,
        }
        gemini = fake_provider("gemini", handler=_router_handler(responses))
        result = await ResearchPipeline(config, router=make_router(gemini=gemini)).research_domain("acme.io")

        assert result.escalated is False
        assert result.data.features == ["only one"]
        assert result.recovery_ran is True

    @pytest.mark.asyncio
    async def test_recovery_failure_keeps_competitors(self, config, make_router, fake_provider):
        responses = {"primary": LITE_OK, "recovery": ProviderError("gemini", ProviderFailure.NO_TEXT_RETURNED, "")}
        gemini = fake_provider("gemini", handler=_router_handler(responses))
        result = await ResearchPipeline(config, router=make_router(gemini=gemini)).research_domain("acme.io")

        assert result.recovery_ran is False
        assert [c.domain for c in result.competitors] == ["foo.com"]

    @pytest.mark.asyncio
    async def test_lite_failure_is_fatal(self, config, make_router, fake_provider):
        router = make_router(
            gemini=fake_provider("gemini", [ProviderError("gemini", ProviderFailure.UPSTREAM_HTTP_ERROR, "500")]),
            openai=fake_provider("openai", [ProviderError("openai", ProviderFailure.UPSTREAM_HTTP_ERROR, "500")]),
        )
        with pytest.raises(AllProvidersFailed):
            await ResearchPipeline(config, router=router).research_domain("acme.io")

    @pytest.mark.asyncio
    async def test_invalid_domain(self, config, make_router, fake_provider):
        pipeline = ResearchPipeline(config, router=make_router(gemini=fake_provider("gemini")))
        with pytest.raises(ValueError):
            await pipeline.research_domain("not a domain")

    @pytest.mark.asyncio
    async def test_timeout_trips_circuit_breaker_for_whole_request(self, config, make_router, fake_provider):
        gemini = fake_provider("gemini", [ProviderError("gemini", ProviderFailure.TIMEOUT, "timed out")])
        lite = {**LITE_OK, "confidence": "low"}
        openai = fake_provider("openai", handler=_router_handler({"primary": lite, "master": LITE_OK, "recovery": RECOVERY}))
        result = await ResearchPipeline(config, router=make_router(gemini=gemini, openai=openai)).research_domain("acme.io")

        assert gemini.calls == 1
        assert [_stage(p) for p in openai.prompts] == ["primary", "master", "recovery"]
        assert (result.attempts[0].provider, result.attempts[0].cause) == ("gemini", "timeout")
        assert all(a.provider == "openai" for a in result.attempts[1:])

    @pytest.mark.asyncio
    async def test_ordinary_failure_does_not_trip_breaker(self, config, make_router, fake_provider):
        gemini = fake_provider("gemini", [
            ProviderError("gemini", ProviderFailure.UPSTREAM_HTTP_ERROR, "connection reset"),
            {**LITE_OK, "competitors": _competitors(5)},
        ])
        openai = fake_provider("openai", [{**LITE_OK, "confidence": "low"}])
        result = await ResearchPipeline(config, router=make_router(gemini=gemini, openai=openai)).research_domain("acme.io")

        assert gemini.calls == 2
        assert result.escalated is True

    @pytest.mark.asyncio
    async def test_breaker_is_scoped_to_one_request(self, config, make_router, fake_provider):
        gemini = fake_provider("gemini", [
            ProviderError("gemini", ProviderFailure.TIMEOUT, "timed out"),
            {**LITE_OK, "competitors": _competitors(5)},
        ])
        openai = fake_provider("openai", [{**LITE_OK, "competitors": _competitors(5)}])
        pipeline = ResearchPipeline(config, router=make_router(gemini=gemini, openai=openai))

        await pipeline.research_domain("acme.io")
        await pipeline.research_domain("acme.io")

        assert gemini.calls == 2

    @pytest.mark.asyncio
    async def test_pass_timeouts(self, config, make_router, fake_provider):
        gemini = fake_provider("gemini", handler=_router_handler({
            "primary": {**LITE_OK, "confidence": "low"}, "master": LITE_OK, "recovery": RECOVERY,
        }))
        await ResearchPipeline(config, router=make_router(gemini=gemini)).research_domain("acme.io")
        assert gemini.timeouts == [config.provider_timeout_s, config.escalation_timeout_s, config.provider_timeout_s]

    @pytest.mark.asyncio
    async def test_name_derived_when_missing(self, config, make_router, fake_provider):
        lite = {k: v for k, v in LITE_OK.items() if k != "name"}
        lite["competitors"] = _competitors(5)
        gemini = fake_provider("gemini", [lite])
        result = await ResearchPipeline(config, router=make_router(gemini=gemini)).research_domain("acme.io")
        assert result.name == "acme"
        assert result.data.name == "acme"

    @pytest.mark.asyncio
    async def test_scrape_context_included_in_prompt(self, config, make_router, fake_provider):
        scrape = AsyncMock(return_value={"headline": "Ship support faster", "features": ["AI triage"]})
        gemini = fake_provider("gemini", [{**LITE_OK, "competitors": _competitors(5)}])
        pipeline = ResearchPipeline(config, router=make_router(gemini=gemini), scrape_context=scrape)

        await pipeline.research_domain("www.acme.io")

        scrape.assert_awaited_once_with("acme.io")
        assert "KNOWN FACTS" in gemini.prompts[0]
        assert "Ship support faster" in gemini.prompts[0]

    @pytest.mark.asyncio
    async def test_scrape_failure_means_no_context(self, config, make_router, fake_provider):
        scrape = AsyncMock(side_effect=RuntimeError("blocked"))
        gemini = fake_provider("gemini", [{**LITE_OK, "competitors": _competitors(5)}])
        pipeline = ResearchPipeline(config, router=make_router(gemini=gemini), scrape_context=scrape)

        result = await pipeline.research_domain("acme.io")

        assert result.name == "Acme"
        assert "KNOWN FACTS" not in gemini.prompts[0]

    @pytest.mark.asyncio
    async def test_partial_scrape_with_nulls_keeps_known_facts(self, config, make_router, fake_provider):
        scrape = AsyncMock(return_value={
            "headline": "Ship support faster",
            "features": ["AI triage", None, ""],
            "value_props": None,
            "pricing_model": None,
        })
        gemini = fake_provider("gemini", [{**LITE_OK, "competitors": _competitors(5)}])
        pipeline = ResearchPipeline(config, router=make_router(gemini=gemini), scrape_context=scrape)

        await pipeline.research_domain("acme.io")

        prompt = gemini.prompts[0]
        assert "Ship support faster" in prompt
        assert "AI triage" in prompt
        assert "- Features: AI triage\n" in prompt
        assert "Value propositions" not in prompt
        assert "Pricing model:" not in prompt


WELL_COVERED = {
    "name": "Foo",
    "about": "Foo about", "usp": "Cheap", "icp": "SMB", "industry": "SaaS",
    "features": ["a", "b", "c"], "integrations": ["Slack"], "pricing": [{"tier": "Pro", "price": "$29"}],
    "compliance": ["GDPR"], "reviews": [{"platform": "G2", "score": "4.5"}],
    "notableCustomers": ["Globex"], "teamSize": "11-50", "support": "Email",
    "pricingComparison": "cheaper", "strengthVsTarget": "Price",
    "competitors": [{"domain": "acme.io"}, {"domain": "zed.com"}],
}

THIN = {"name": "Foo", "about": "Foo about", "features": ["a"], "confidence": "low"}


class TestResearchCompetitor:
    @pytest.mark.asyncio
    async def test_well_covered_record_skips_backfill(self, config, make_router, fake_provider):
        gemini = fake_provider("gemini", handler=_router_handler({"primary": WELL_COVERED}))
        pipeline = ResearchPipeline(config, router=make_router(gemini=gemini))

        result = await pipeline.research_competitor("https://www.foo.com", "acme.io", client_context={"niche": "AI helpdesk"})

        assert gemini.calls == 1
        assert result.backfilled is False
        assert result.domain == "foo.com"
        assert result.client_domain == "acme.io"
        assert result.coverage_before == result.coverage_after == 12
        assert result.data.pricing_comparison == "Cheaper"
        assert [c["domain"] for c in result.data.competitors] == ["zed.com"]

        prompt = gemini.prompts[0]
        assert 'Search "foo.com vs acme.io"' in prompt
        assert "AI helpdesk" in prompt
        assert gemini.timeouts == [config.escalation_timeout_s]

    @pytest.mark.asyncio
    async def test_text_client_context_reaches_prompt(self, config, make_router, fake_provider):
        gemini = fake_provider("gemini", handler=_router_handler({"primary": WELL_COVERED}))
        pipeline = ResearchPipeline(config, router=make_router(gemini=gemini))

        await pipeline.research_competitor("foo.com", "acme.io", client_context="Acme sells AI helpdesks to Shopify stores")

        prompt = gemini.prompts[0]
        assert "- Domain: acme.io" in prompt
        assert "- About: Acme sells AI helpdesks to Shopify stores" in prompt

    @pytest.mark.asyncio
    async def test_under_covered_record_is_backfilled_without_overwrite(self, config, make_router, fake_provider):
        backfill = {
            "about": "Overwritten about",
            "features": ["a", "d", "e"],
            "integrations": ["Slack", "Zoom"],
            "pricing": [{"tier": "Free", "price": "$0"}],
            "compliance": ["SOC 2"],
            "reviews": [{"platform": "Capterra"}],
            "teamSize": "51-200",
            "confidence": "high",
        }
        gemini = fake_provider("gemini", handler=_router_handler({"primary": THIN, "backfill": backfill}))
        pipeline = ResearchPipeline(config, router=make_router(gemini=gemini))

        result = await pipeline.research_competitor(
            "foo.com", "acme.io", transcript="They mentioned Foo's free tier.", blog_signals=["Foo launches API"],
        )

        assert [_stage(p) for p in gemini.prompts] == ["primary", "backfill"]
        assert "They mentioned Foo's free tier." in gemini.prompts[1]
        assert "Foo launches API" in gemini.prompts[1]
        assert result.backfilled is True
        assert result.data.about == "Foo about"
        assert result.data.features == ["a", "d", "e"]
        assert result.data.integrations == ["Slack", "Zoom"]
        assert result.data.confidence == "low"
        assert result.coverage_after > result.coverage_before

    @pytest.mark.asyncio
    async def test_backfill_failure_keeps_record(self, config, make_router, fake_provider):
        responses = {"primary": THIN, "backfill": ProviderError("gemini", ProviderFailure.UNPARSABLE_JSON, "bad")}
        gemini = fake_provider("gemini", handler=_router_handler(responses))
        result = await ResearchPipeline(config, router=make_router(gemini=gemini)).research_competitor("foo.com", "acme.io")

        assert result.backfilled is False
        assert result.data.features == ["a"]
        assert result.coverage_after == result.coverage_before

    @pytest.mark.asyncio
    async def test_primary_failure_is_fatal(self, config, make_router, fake_provider):
        gemini = fake_provider("gemini", [ProviderError("gemini", ProviderFailure.UPSTREAM_HTTP_ERROR, "500")])
        with pytest.raises(AllProvidersFailed):
            await ResearchPipeline(config, router=make_router(gemini=gemini)).research_competitor("foo.com", "acme.io")


class TestAutofillDataReview:
    @pytest.mark.asyncio
    async def test_patches_only_missing_fields(self, config, make_router, fake_provider):
        def handler(prompt):
            if "Research https://foo.com" in prompt:
                return ProviderError("gemini", ProviderFailure.UPSTREAM_HTTP_ERROR, "boom")
            if "Research https://bar.com" in prompt:
                return {"pricing": [{"tier": "Free", "price": "$0"}]}
            return {"about": "New about", "usp": "Fast", "features": ["a", "b"]}

        gemini = fake_provider("gemini", handler=handler)
        pipeline = ResearchPipeline(config, router=make_router(gemini=gemini))

        patch = await pipeline.autofill_data_review(
            client_data={"domain": "acme.io", "name": "Acme", "data": {"about": "Existing", "features": ["a"]}},
            comp_data={"foo.com": {"data": {"about": "Foo about"}}, "bar.com": {"data": {}}},
            competitors=[{"domain": "foo.com", "name": "Foo"}],
            transcript="Call notes",
        )

        assert gemini.calls == 3
        assert all(BACKFILL_MARKER in p for p in gemini.prompts)
        assert patch.client_data_patch == {"usp": "Fast", "features": ["a", "b"]}
        assert list(patch.competitor_patches_by_domain) == ["bar.com"]
        assert patch.competitor_patches_by_domain["bar.com"]["pricing"][0]["tier"] == "Free"

    @pytest.mark.asyncio
    async def test_client_failure_gives_empty_patch(self, config, make_router, fake_provider):
        gemini = fake_provider("gemini", [ProviderError("gemini", ProviderFailure.UPSTREAM_HTTP_ERROR, "boom")])
        pipeline = ResearchPipeline(config, router=make_router(gemini=gemini))

        patch = await pipeline.autofill_data_review({"domain": "acme.io", "data": {}}, None, None)

        assert patch.client_data_patch == {}
        assert patch.competitor_patches_by_domain == {}
