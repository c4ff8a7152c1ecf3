"""CLI entry point for the domain research tool."""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from pathlib import Path

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from domain_research.analysis.competitors import canonicalize_domain
from domain_research.analysis.escalation import COVERAGE_POINTS
from domain_research.analysis.llm_client import AllProvidersFailed
from domain_research.cache.store import ResultCache
from domain_research.config import PROVIDER_NAMES, Config, load_config
from domain_research.models import CompetitorResearchResult, DomainResearchResult
from domain_research.pipeline import ResearchPipeline

console = Console(force_terminal=True)


def _setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=console, show_path=False, show_time=False)],
        force=True,
    )


def _apply_overrides(config: Config, primary: str | None, no_fallback: bool) -> Config:
    if primary:
        config.primary_provider = primary
    if no_fallback:
        config.fallback_enabled = False
    return config


def _write_output(output: str | None, payload: dict) -> None:
    if not output:
        return
    path = Path(output)
    path.write_text(json.dumps(payload, indent=2, ensure_ascii=False), encoding="utf-8")
    console.print(f"\n[bold]Saved: {path}[/bold]")


def _run(coro):
    """Run a pipeline coroutine; all-providers-failed exits with status 1."""
    try:
        return asyncio.run(coro)
    except AllProvidersFailed as e:
        console.print(f"[red]Research failed: {e}[/red]")
        sys.exit(1)


common_options = [
    click.option(
        "--primary",
        type=click.Choice(PROVIDER_NAMES),
        default=None,
        help="Primary provider (default: RESEARCH_PRIMARY_PROVIDER or gemini)",
    ),
    click.option("--no-fallback", is_flag=True, help="Only try the primary provider"),
    click.option("--output", "-o", default=None, help="Write the JSON result to this file"),
    click.option("--force-refresh", is_flag=True, help="Ignore cached results"),
    click.option("--verbose", "-v", is_flag=True, help="Enable verbose debug logging"),
]


def with_common_options(func):
    for option in reversed(common_options):
        func = option(func)
    return func


@click.group()
def main() -> None:
    """Research companies by domain with web-search-grounded AI providers.

    Example: domain-research domain acme.io -o acme.json
    """


@main.command("domain")
@click.argument("domain")
@with_common_options
def domain_command(
    domain: str,
    primary: str | None,
    no_fallback: bool,
    output: str | None,
    force_refresh: bool,
    verbose: bool,
) -> None:
    """Research a client DOMAIN and discover its competitors."""
    _setup_logging(verbose)
    canonical = canonicalize_domain(domain)
    if not canonical:
        console.print(f"[red]Not a usable domain: {domain}[/red]")
        sys.exit(1)

    config = _apply_overrides(load_config(), primary, no_fallback)
    cache = ResultCache(config.cache_db_path)
    try:
        cached = None if force_refresh else cache.get("domain", canonical, config.cache_ttl_days)
        if cached:
            result = DomainResearchResult.model_validate(cached)
            result.from_cache = True
            console.print(f"[dim]{canonical} — loaded from cache (use --force-refresh to re-run)[/dim]")
        else:
            console.print(f"\n[bold green]Researching {canonical}[/bold green] (primary: {config.primary_provider})\n")
            pipeline = ResearchPipeline(config)
            result = _run(pipeline.research_domain(canonical))
            cache.set("domain", canonical, result.model_dump(mode="json", by_alias=True))
    finally:
        cache.close()

    _print_domain_summary(result)
    _write_output(output, result.model_dump(mode="json", by_alias=True))


@main.command("competitor")
@click.argument("domain")
@click.option("--client", "client_domain", required=True, help="Client domain to compare against")
@click.option("--transcript", type=click.Path(exists=True, dir_okay=False), default=None,
              help="Call transcript used as context for a backfill pass")
@with_common_options
def competitor_command(
    domain: str,
    client_domain: str,
    transcript: str | None,
    primary: str | None,
    no_fallback: bool,
    output: str | None,
    force_refresh: bool,
    verbose: bool,
) -> None:
    """Deep-dive a competitor DOMAIN against the --client domain."""
    _setup_logging(verbose)
    canonical = canonicalize_domain(domain)
    client = canonicalize_domain(client_domain)
    if not canonical or not client:
        console.print(f"[red]Not a usable domain: {domain if not canonical else client_domain}[/red]")
        sys.exit(1)

    config = _apply_overrides(load_config(), primary, no_fallback)
    cache = ResultCache(config.cache_db_path)
    try:
        cached = None
        if not force_refresh:
            cached = cache.get("competitor", canonical, config.cache_ttl_days, scope=client)
        if cached:
            result = CompetitorResearchResult.model_validate(cached)
            result.from_cache = True
            console.print(f"[dim]{canonical} vs {client} — loaded from cache (use --force-refresh to re-run)[/dim]")
        else:
            # Reuse the client's cached profile as comparison context when available
            client_cached = cache.get("domain", client, config.cache_ttl_days)
            client_context = (client_cached or {}).get("data")
            transcript_text = Path(transcript).read_text(encoding="utf-8") if transcript else None

            console.print(f"\n[bold green]Researching competitor {canonical}[/bold green] vs {client}\n")
            pipeline = ResearchPipeline(config)
            result = _run(pipeline.research_competitor(
                canonical, client, client_context=client_context, transcript=transcript_text,
            ))
            cache.set("competitor", canonical, result.model_dump(mode="json", by_alias=True), scope=client)
    finally:
        cache.close()

    _print_competitor_summary(result)
    _write_output(output, result.model_dump(mode="json", by_alias=True))


@main.group("cache")
def cache_group() -> None:
    """Inspect or invalidate cached research results."""


@cache_group.command("stats")
def cache_stats_command() -> None:
    """Show cached entry counts per result kind."""
    config = load_config()
    cache = ResultCache(config.cache_db_path)
    try:
        stats = cache.stats()
    finally:
        cache.close()

    table = Table(title=f"Result cache ({config.cache_db_path}, TTL: {config.cache_ttl_days} days)")
    table.add_column("Kind", style="cyan")
    table.add_column("Entries", justify="right")
    table.add_column("Newest")
    for kind, entry in stats.items():
        table.add_row(kind, str(entry["count"]), entry["newest"] or "-")
    console.print(table)


@cache_group.command("clear")
@click.argument("domain")
@click.option("--client", "client_domain", default=None,
              help="Clear the competitor result researched against this client")
def cache_clear_command(domain: str, client_domain: str | None) -> None:
    """Drop the cached result for DOMAIN (a competitor result with --client)."""
    canonical = canonicalize_domain(domain)
    client = canonicalize_domain(client_domain) if client_domain else None
    if not canonical or (client_domain and not client):
        console.print(f"[red]Not a usable domain: {domain if not canonical else client_domain}[/red]")
        sys.exit(1)

    config = load_config()
    cache = ResultCache(config.cache_db_path)
    try:
        if client:
            cache.clear("competitor", canonical, scope=client)
            console.print(f"[dim]Cleared {canonical} vs {client}[/dim]")
        else:
            cache.clear("domain", canonical)
            console.print(f"[dim]Cleared {canonical}[/dim]")
    finally:
        cache.close()


def _print_domain_summary(result: DomainResearchResult) -> None:
    data = result.data
    console.print(f"\n{'=' * 70}")
    console.print(f"[bold]{result.name}[/bold] ({result.domain})")
    if data.niche:
        console.print(f"  Niche: {data.niche}")
    console.print(f"  Confidence: {data.confidence or 'unknown'}")
    console.print(f"  Features: {len(data.features)}  Pricing tiers: {len(data.pricing)}")
    if result.escalated:
        console.print("  [yellow]Escalated to master pass[/yellow]")
    if result.recovery_ran:
        console.print("  [yellow]Competitor recovery pass ran[/yellow]")
    if result.from_cache:
        console.print("  From cache (no credits used)")

    if result.competitors:
        table = Table(title=f"Competitors ({len(result.competitors)})", show_lines=False)
        table.add_column("Domain", style="cyan")
        table.add_column("Name")
        table.add_column("Reason", overflow="fold")
        for c in result.competitors:
            table.add_row(c.domain, c.name, c.reason or "")
        console.print(table)
    else:
        console.print("  [red]No competitors found[/red]")
    _print_attempts(result.attempts)


def _print_competitor_summary(result: CompetitorResearchResult) -> None:
    data = result.data
    console.print(f"\n{'=' * 70}")
    console.print(f"[bold]{data.name}[/bold] ({result.domain}) vs {result.client_domain}")
    console.print(f"  Coverage: {result.coverage_before}/{COVERAGE_POINTS} -> {result.coverage_after}/{COVERAGE_POINTS}")
    if result.backfilled:
        console.print("  [yellow]Backfill pass ran[/yellow]")
    if data.pricing_comparison:
        console.print(f"  Pricing vs client: {data.pricing_comparison}")
    if data.strength_vs_target:
        console.print(f"  [green]Stronger:[/green] {data.strength_vs_target}")
    if data.weakness_vs_target:
        console.print(f"  [red]Weaker:[/red] {data.weakness_vs_target}")
    if result.from_cache:
        console.print("  From cache (no credits used)")
    _print_attempts(result.attempts)


def _print_attempts(attempts) -> None:
    failed = [a for a in attempts if not a.ok and a.cause != "missing_credentials"]
    if failed:
        console.print(f"  [yellow]Provider failures: {len(failed)}[/yellow]")
        for a in failed:
            console.print(f"    [yellow]- {a.context_label} / {a.provider}: {a.cause}[/yellow]")
    console.print()


if __name__ == "__main__":
    main()
