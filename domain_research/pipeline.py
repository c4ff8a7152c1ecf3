"""Research orchestration: lite pass, escalation, recovery and backfill."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field, replace
from datetime import date
from functools import partial
from typing import Any

from domain_research.analysis.competitors import (
    canonicalize_domain,
    derive_name,
    merge_and_dedupe,
)
from domain_research.analysis.escalation import (
    EscalationStep,
    coverage_score,
    is_under_covered,
    needs_competitor_recovery,
    run_escalation_steps,
    should_escalate,
)
from domain_research.analysis.llm_client import AllProvidersFailed, ProviderRouter
from domain_research.analysis.merge import fill_missing_patch, is_empty_value, merge_fill_missing
from domain_research.analysis.normalizer import normalize
from domain_research.analysis.prompts import (
    build_competitor_discovery_prompt,
    build_research_prompt,
)
from domain_research.analysis.providers import ProviderError, ProviderFailure
from domain_research.config import Config
from domain_research.models import (
    CompetitorRef,
    CompetitorResearchResult,
    DataReviewPatch,
    DomainResearchResult,
    ProviderAttempt,
    ResearchRecord,
    StructuralContext,
)

logger = logging.getLogger(__name__)

ScrapeContext = Callable[[str], Awaitable[StructuralContext | dict[str, Any] | None]]


@dataclass
class RequestContext:
    """State scoped to one top-level research call, passed to every stage."""
    label: str
    skip_providers: set[str] = field(default_factory=set)
    attempts: list[ProviderAttempt] = field(default_factory=list)

    def trip_breaker(self, provider: str, error: ProviderError) -> None:
        """Stop using the primary for the rest of this call after a timeout or quota error."""
        if error.cause is ProviderFailure.TIMEOUT or error.is_quota:
            if provider not in self.skip_providers:
                logger.warning(
                    "[%s] Circuit breaker: skipping %s for the rest of this request (%s)",
                    self.label, provider, error.cause.value,
                )
            self.skip_providers.add(provider)


@dataclass
class _DomainState:
    record: ResearchRecord
    competitors: list[CompetitorRef]


@dataclass
class _CompetitorState:
    record: ResearchRecord


class ResearchPipeline:
    """Runs client and competitor research through the provider router."""

    def __init__(
        self,
        config: Config,
        router: ProviderRouter | None = None,
        scrape_context: ScrapeContext | None = None,
    ):
        self.config = config
        self.router = router or ProviderRouter(config)
        self.scrape_context = scrape_context

    # ------------------------------------------------------------------
    # Client research
    # ------------------------------------------------------------------

    async def research_domain(self, domain: str) -> DomainResearchResult:
        """Research a client domain and discover its competitors.

        Raises AllProvidersFailed if the lite pass cannot be completed by any
        provider. Failures in the master escalation or competitor recovery
        passes are logged and the lite result is kept.
        """
        canonical = _require_domain(domain)
        ctx = RequestContext(label=canonical)
        scraped = await self._scrape(canonical)

        # ── Lite pass (fatal on failure) ──
        prompt = build_research_prompt(canonical, role="client", scraped_context=scraped, intensity="lite")
        raw = await self._call(ctx, prompt, "lite", self.config.provider_timeout_s)
        record = normalize(raw)
        state = _DomainState(
            record=record,
            competitors=merge_and_dedupe(record.competitors, exclude=[canonical]),
        )
        logger.info(
            "[%s] Lite pass: confidence=%s, %d features, %d competitors",
            canonical, record.confidence, len(record.features), len(state.competitors),
        )

        # ── Escalation and recovery ──
        steps = [
            EscalationStep(
                name="master",
                trigger=lambda s: should_escalate(s.record),
                action=partial(self._escalate_to_master, ctx, canonical, scraped),
            ),
            EscalationStep(
                name="competitor_recovery",
                trigger=lambda s: needs_competitor_recovery(s.competitors, self.config.min_competitors),
                action=partial(self._recover_competitors, ctx, canonical),
            ),
        ]
        state, ran = await run_escalation_steps(steps, state)

        final = _finalize(state.record, canonical, state.competitors)
        return DomainResearchResult(
            domain=canonical,
            name=final.name,
            data=final,
            competitors=state.competitors,
            escalated="master" in ran,
            recovery_ran="competitor_recovery" in ran,
            attempts=ctx.attempts,
        )

    async def _escalate_to_master(
        self,
        ctx: RequestContext,
        domain: str,
        scraped: StructuralContext | None,
        state: _DomainState,
    ) -> _DomainState:
        prompt = build_research_prompt(domain, role="client", scraped_context=scraped, intensity="master")
        raw = await self._call(ctx, prompt, "master", self.config.escalation_timeout_s)
        master = normalize(raw)
        competitors = merge_and_dedupe(master.competitors, state.competitors, exclude=[domain])
        logger.info(
            "[%s] Master pass replaced lite result: confidence=%s, %d features",
            domain, master.confidence, len(master.features),
        )
        return replace(state, record=master, competitors=competitors)

    async def _recover_competitors(self, ctx: RequestContext, domain: str, state: _DomainState) -> _DomainState:
        prompt = build_competitor_discovery_prompt(
            domain,
            state.record.niche,
            known_domains=[c.domain for c in state.competitors],
            min_count=self.config.min_competitors,
        )
        raw = await self._call(ctx, prompt, "competitor_recovery", self.config.provider_timeout_s)
        found = raw.get("competitors")
        competitors = merge_and_dedupe(
            state.competitors,
            found if isinstance(found, list) else [],
            exclude=[domain],
        )
        logger.info(
            "[%s] Competitor recovery added %d (now %d)",
            domain, len(competitors) - len(state.competitors), len(competitors),
        )
        return replace(state, competitors=competitors)

    # ------------------------------------------------------------------
    # Competitor research
    # ------------------------------------------------------------------

    async def research_competitor(
        self,
        competitor_domain: str,
        client_domain: str,
        client_context: dict[str, Any] | str | None = None,
        transcript: str | None = None,
        blog_signals: list[str] | str | None = None,
    ) -> CompetitorResearchResult:
        """Deep dive on one competitor, compared against the client.

        An under-covered result gets one post-call enrichment pass whose
        output only fills fields that are still empty.
        """
        canonical = _require_domain(competitor_domain)
        client = canonicalize_domain(client_domain) or client_domain.strip()
        comparison = _comparison_context(client_context, client)
        ctx = RequestContext(label=f"competitor:{canonical}")
        scraped = await self._scrape(canonical)

        prompt = build_research_prompt(
            canonical,
            role="competitor",
            scraped_context=scraped,
            comparison_context=comparison,
            intensity="competitor_enriched",
        )
        raw = await self._call(ctx, prompt, "competitor", self.config.escalation_timeout_s)
        record = normalize(raw)
        before = coverage_score(record)
        logger.info(
            "[%s] Coverage %d/%d (missing: %s)",
            ctx.label, before.score, before.total, ", ".join(before.missing) or "none",
        )

        steps = [
            EscalationStep(
                name="coverage_backfill",
                trigger=lambda s: is_under_covered(s.record, self.config.coverage_threshold),
                action=partial(
                    self._backfill, ctx, canonical, comparison,
                    {"transcript": transcript, "blog_signals": blog_signals},
                ),
            ),
        ]
        state, ran = await run_escalation_steps(steps, _CompetitorState(record=record))

        competitors = merge_and_dedupe(state.record.competitors, exclude=[canonical, client])
        final = _finalize(state.record, canonical, competitors)
        after = coverage_score(final)
        return CompetitorResearchResult(
            domain=canonical,
            client_domain=client,
            data=final,
            backfilled="coverage_backfill" in ran,
            coverage_before=before.score,
            coverage_after=after.score,
            attempts=ctx.attempts,
        )

    async def _backfill(
        self,
        ctx: RequestContext,
        domain: str,
        comparison: dict[str, Any],
        signals: dict[str, Any],
        state: _CompetitorState,
    ) -> _CompetitorState:
        current = state.record.to_payload()
        prompt = build_research_prompt(
            domain,
            role="competitor",
            comparison_context=comparison,
            intensity="postcall_enrichment",
            enrichment_context={"snapshot": current, **signals},
        )
        raw = await self._call(ctx, prompt, "coverage_backfill", self.config.escalation_timeout_s)
        merged = merge_fill_missing(current, _populated(normalize(raw).to_payload()))
        record = ResearchRecord.model_validate(merged)
        logger.info("[%s] Backfill coverage now %d/12", ctx.label, coverage_score(record).score)
        return replace(state, record=record)

    # ------------------------------------------------------------------
    # Post-call data review
    # ------------------------------------------------------------------

    async def autofill_data_review(
        self,
        client_data: dict[str, Any],
        comp_data: dict[str, Any] | None,
        competitors: list[Any] | None,
        transcript: str | None = None,
    ) -> DataReviewPatch:
        """Fill gaps in already-reviewed records after a discovery call.

        Runs one post-call enrichment pass for the client and one per
        competitor, sequentially, and returns only the fields each pass
        would fill. A subject whose pass fails gets no patch.
        """
        client_record = _unwrap_data(client_data)
        client = _require_domain(client_data.get("domain") or client_record.get("domain") or "")
        ctx = RequestContext(label=f"autofill:{client}")
        patch = DataReviewPatch()

        prompt = build_research_prompt(
            client,
            role="client",
            intensity="postcall_enrichment",
            enrichment_context={"snapshot": client_record, "transcript": transcript},
        )
        client_patch = await self._autofill_one(ctx, "client", prompt, client_record)
        if client_patch:
            patch.client_data_patch = client_patch

        names = {ref.domain: ref.name for ref in merge_and_dedupe(competitors or [])}
        for key, entry in (comp_data or {}).items():
            domain = canonicalize_domain(key)
            if not domain:
                logger.debug("[%s] Skipping competitor entry %r without a usable domain", ctx.label, key)
                continue
            current = _unwrap_data(entry)
            if names.get(domain) and not current.get("name"):
                current = {**current, "name": names[domain]}
            prompt = build_research_prompt(
                domain,
                role="competitor",
                comparison_context={**client_record, "domain": client},
                intensity="postcall_enrichment",
                enrichment_context={"snapshot": current, "transcript": transcript},
            )
            comp_patch = await self._autofill_one(ctx, domain, prompt, current)
            if comp_patch:
                patch.competitor_patches_by_domain[key] = comp_patch

        logger.info(
            "[%s] Autofill: %d client fields, %d competitor patches",
            ctx.label, len(patch.client_data_patch), len(patch.competitor_patches_by_domain),
        )
        return patch

    async def _autofill_one(
        self,
        ctx: RequestContext,
        stage: str,
        prompt: str,
        current: dict[str, Any],
    ) -> dict[str, Any]:
        try:
            raw = await self._call(ctx, prompt, f"autofill:{stage}", self.config.escalation_timeout_s)
        except (AllProvidersFailed, ProviderError) as e:
            logger.warning("[%s] Autofill for %s failed, no patch: %s", ctx.label, stage, e)
            return {}
        return fill_missing_patch(current, _populated(normalize(raw).to_payload()))

    # ------------------------------------------------------------------
    # Shared helpers
    # ------------------------------------------------------------------

    async def _call(self, ctx: RequestContext, prompt: str, stage: str, timeout_s: float) -> dict[str, Any]:
        return await self.router.call_with_fallback(
            prompt,
            f"{ctx.label}:{stage}",
            timeout_s=timeout_s,
            skip_providers=ctx.skip_providers,
            on_primary_failure=ctx.trip_breaker,
            attempts=ctx.attempts,
        )

    async def _scrape(self, domain: str) -> StructuralContext | None:
        """Known facts from the structural scraper; any failure means no context."""
        if self.scrape_context is None:
            return None
        try:
            result = await self.scrape_context(domain)
            if result is None:
                return None
            context = result if isinstance(result, StructuralContext) else StructuralContext.model_validate(result)
        except Exception as e:
            logger.warning("Structural scrape failed for %s, continuing without context: %s", domain, e)
            return None
        return None if context.is_empty() else context


def _require_domain(value: str) -> str:
    canonical = canonicalize_domain(value)
    if not canonical:
        raise ValueError(f"Not a usable domain: {value!r}")
    return canonical


def _finalize(record: ResearchRecord, domain: str, competitors: list[CompetitorRef]) -> ResearchRecord:
    """Stamp identity, research date and the deduplicated competitor list."""
    payload = record.to_payload()
    payload["domain"] = domain
    payload["name"] = payload.get("name") or derive_name(domain)
    payload["researchDate"] = payload.get("researchDate") or date.today().isoformat()
    payload["competitors"] = [c.model_dump() for c in competitors]
    return ResearchRecord.model_validate(payload)


def _comparison_context(client_context: dict[str, Any] | str | None, client_domain: str) -> dict[str, Any]:
    if isinstance(client_context, dict):
        context = _unwrap_data(client_context)
        return {**context, "domain": context.get("domain") or client_domain}
    if isinstance(client_context, str) and client_context.strip():
        return {"domain": client_domain, "about": client_context.strip()}
    return {"domain": client_domain}


def _unwrap_data(entry: Any) -> dict[str, Any]:
    """Accept either ``{domain, name, data: {...}}`` or a bare record dict."""
    if not isinstance(entry, dict):
        return {}
    data = entry.get("data")
    if isinstance(data, dict):
        return data
    return entry


def _populated(payload: dict[str, Any]) -> dict[str, Any]:
    """Drop empty values (and empty keys inside profile objects) from a patch."""
    out = {}
    for key, value in payload.items():
        if isinstance(value, dict):
            value = {k: v for k, v in value.items() if not is_empty_value(v)}
        if not is_empty_value(value):
            out[key] = value
    return out
