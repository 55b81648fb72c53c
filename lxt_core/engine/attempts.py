"""Attempt providers in order, collect errors, return the first success."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Generic, Sequence, TypeVar

from ..errors import ConfigurationError, ProviderError, ProviderTimeoutError

logger = logging.getLogger("lxt_core.attempts")

T = TypeVar("T")


@dataclass(slots=True)
class AttemptStep(Generic[T]):
    name: str
    # None marks a provider without credentials; it is recorded and skipped.
    call: Callable[[], Awaitable[T]] | None
    attempts: int = 1


@dataclass(slots=True)
class AttemptOutcome(Generic[T]):
    value: T | None = None
    provider: str | None = None
    tried: list[str] = field(default_factory=list)
    errors: dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.provider is not None


def _is_retryable(exc: BaseException) -> bool:
    if isinstance(exc, ConfigurationError):
        return False
    if isinstance(exc, ProviderError):
        return exc.retryable
    # Transport failures (aiohttp.ClientError, OSError) are worth another try.
    return True


def _describe(exc: BaseException) -> str:
    message = str(exc).strip()
    return message or exc.__class__.__name__


async def attempt_in_order(
    steps: Sequence[AttemptStep[Any]],
    *,
    timeout: float,
    label: str = "call",
) -> AttemptOutcome[Any]:
    outcome: AttemptOutcome[Any] = AttemptOutcome()

    for step in steps:
        if step.name not in outcome.tried:
            outcome.tried.append(step.name)

        if step.call is None:
            outcome.errors[step.name] = _describe(ConfigurationError(f"{step.name} is not configured"))
            logger.warning("%s skipped provider=%s (not configured)", label, step.name)
            continue

        total = max(1, int(step.attempts))
        for attempt in range(1, total + 1):
            try:
                value = await asyncio.wait_for(step.call(), timeout=timeout)
            except asyncio.CancelledError:
                raise
            except asyncio.TimeoutError:
                exc: BaseException = ProviderTimeoutError(
                    f"{step.name} timed out after {timeout:.0f}s",
                    provider=step.name,
                )
            except Exception as error:
                exc = error
            else:
                outcome.value = value
                outcome.provider = step.name
                if outcome.errors:
                    logger.info("%s recovered via provider=%s after %s", label, step.name, sorted(outcome.errors))
                return outcome

            outcome.errors[step.name] = _describe(exc)
            logger.warning(
                "%s failed provider=%s attempt=%s/%s: %s",
                label,
                step.name,
                attempt,
                total,
                outcome.errors[step.name],
            )
            if not _is_retryable(exc):
                break

    return outcome
