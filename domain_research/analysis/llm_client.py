"""Provider router: configured primary first, then a fixed fallback order.

Attempts are strictly sequential: only one upstream call is in flight for a
given research step. The router keeps no state between calls; anything that
must persist across the stages of one research request (providers to skip,
the attempt log) is passed in by the caller.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Awaitable, Callable, Iterable
from functools import partial
from typing import Any

from domain_research.analysis.providers import (
    ADAPTERS,
    ProviderError,
    ProviderFailure,
)
from domain_research.config import PROVIDER_NAMES, Config
from domain_research.models import ProviderAttempt

logger = logging.getLogger(__name__)

# Preference order for the providers after the configured primary
FALLBACK_ORDER = PROVIDER_NAMES

ProviderCall = Callable[[str, float], Awaitable[dict[str, Any]]]
PrimaryFailureHook = Callable[[str, ProviderError], None]


class AllProvidersFailed(Exception):
    """Every candidate provider was tried (or skipped) without a result."""

    def __init__(self, context_label: str, errors: list[ProviderError]):
        self.context_label = context_label
        self.errors = errors
        detail = "; ".join(str(e) for e in errors) or "no provider available"
        super().__init__(f"All providers failed for {context_label}: {detail}")


def default_adapters(config: Config) -> dict[str, ProviderCall]:
    """Bind each provider adapter to the config so it takes (prompt, timeout)."""
    return {
        name: partial(_bound_call, adapter, config)
        for name, adapter in ADAPTERS.items()
    }


async def _bound_call(adapter, config: Config, prompt: str, timeout_s: float) -> dict[str, Any]:
    return await adapter(prompt, config, timeout_s)


class ProviderRouter:
    """Run a prompt through the primary provider, falling back in order."""

    def __init__(self, config: Config, adapters: dict[str, ProviderCall] | None = None):
        self.config = config
        self.adapters = adapters if adapters is not None else default_adapters(config)

    @property
    def primary(self) -> str:
        return self.config.primary_provider

    def provider_order(self, skip_providers: Iterable[str] = ()) -> list[str]:
        """Primary first, then the remaining providers in preference order."""
        skip = set(skip_providers)
        order = [self.primary]
        if self.config.fallback_enabled:
            order += [p for p in FALLBACK_ORDER if p != self.primary]
            order += [p for p in self.adapters if p not in order]
        return [p for p in order if p in self.adapters and p not in skip]

    async def call_with_fallback(
        self,
        prompt: str,
        context_label: str,
        *,
        timeout_s: float | None = None,
        skip_providers: Iterable[str] = (),
        on_primary_failure: PrimaryFailureHook | None = None,
        attempts: list[ProviderAttempt] | None = None,
    ) -> dict[str, Any]:
        """Return the first provider's parsed JSON, or raise AllProvidersFailed.

        Missing credentials are an expected skip and are logged at debug only.
        A failure on the configured primary is reported to
        ``on_primary_failure`` so the caller can stop using it for the rest
        of its request.
        """
        timeout = timeout_s if timeout_s is not None else self.config.provider_timeout_s
        candidates = self.provider_order(skip_providers)
        errors: list[ProviderError] = []

        if not candidates:
            logger.error("[%s] No providers available (all skipped or unconfigured)", context_label)
            raise AllProvidersFailed(context_label, errors)

        logger.debug("[%s] Provider order: %s (%d char prompt)", context_label, candidates, len(prompt))

        for provider in candidates:
            started = time.monotonic()
            try:
                logger.info("[%s] Trying %s...", context_label, provider)
                result = await self.adapters[provider](prompt, timeout)
            except ProviderError as e:
                elapsed = time.monotonic() - started
                errors.append(e)
                if attempts is not None:
                    attempts.append(ProviderAttempt(
                        provider=provider, context_label=context_label, ok=False,
                        cause=e.cause.value, error=e.message[:300], elapsed_s=round(elapsed, 2),
                    ))
                self._log_failure(context_label, provider, e)
                if provider == self.primary and on_primary_failure is not None:
                    on_primary_failure(provider, e)
                continue

            elapsed = time.monotonic() - started
            if attempts is not None:
                attempts.append(ProviderAttempt(
                    provider=provider, context_label=context_label, ok=True,
                    elapsed_s=round(elapsed, 2),
                ))
            logger.info("[%s] %s succeeded in %.1fs", context_label, provider, elapsed)
            return result

        logger.error("[%s] All %d providers failed", context_label, len(candidates))
        raise AllProvidersFailed(context_label, errors)

    def _log_failure(self, context_label: str, provider: str, error: ProviderError) -> None:
        if error.cause is ProviderFailure.MISSING_CREDENTIALS:
            logger.debug("[%s] %s skipped: %s", context_label, provider, error.message)
        elif error.is_quota:
            logger.warning(
                "[%s] %s reports quota/rate exhaustion — moving to next fallback",
                context_label, provider,
            )
        elif error.cause is ProviderFailure.UNPARSABLE_JSON:
            logger.warning(
                "[%s] %s returned unparsable output: %s | snippet: %r",
                context_label, provider, error.message, (error.snippet or "")[:200],
            )
        else:
            logger.warning("[%s] %s failed (%s): %s", context_label, provider, error.cause.value, error.message)
