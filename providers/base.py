"""
Bounded calls to external collaborators.

Every adapter (ledger, KYC, sanctions, storage, revocation) routes its I/O
through a ProviderPolicy so the core sees one failure vocabulary:

    ProviderTimeout      call exceeded its budget on every attempt
    ProviderUnavailable  backend refused or dropped the connection on every attempt
    NotFound             backend answered, the record does not exist (not retried)
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable, TypeVar

import requests
import structlog

logger = structlog.get_logger(__name__)

T = TypeVar("T")


class ProviderError(Exception):
    """Base class for collaborator faults."""

    def __init__(self, provider: str, message: str) -> None:
        super().__init__(f"{provider}: {message}")
        self.provider = provider


class ProviderTimeout(ProviderError):
    pass


class ProviderUnavailable(ProviderError):
    pass


class NotFound(ProviderError):
    def __init__(self, provider: str, key: str) -> None:
        super().__init__(provider, f"{key} not found")
        self.key = key


@dataclass(frozen=True)
class ProviderPolicy:
    timeout: float = 5.0
    retries: int = 2
    backoff: float = 0.2

    async def run(self, provider: str, call: Callable[[], Awaitable[T]]) -> T:
        """
        Run call() under the timeout, retrying timeouts and connection errors
        with exponential backoff. call is a factory so each attempt gets a
        fresh awaitable.
        """
        attempt = 0
        while True:
            try:
                return await asyncio.wait_for(call(), self.timeout)
            except asyncio.TimeoutError:
                failure: ProviderError = ProviderTimeout(provider, f"no answer within {self.timeout}s")
            except (ConnectionError, requests.ConnectionError) as exc:
                failure = ProviderUnavailable(provider, str(exc) or "connection failed")

            if attempt >= self.retries:
                logger.warning("provider_failed", provider=provider, attempts=attempt + 1, error=str(failure))
                raise failure
            delay = self.backoff * (2 ** attempt)
            attempt += 1
            logger.info("provider_retry", provider=provider, attempt=attempt, delay=delay, error=str(failure))
            await asyncio.sleep(delay)


async def http_get_json(
    session: requests.Session,
    provider: str,
    url: str,
    timeout: float,
    params: dict | None = None,
) -> dict:
    """
    Blocking requests call moved off the event loop. requests' own timeout
    is surfaced as asyncio.TimeoutError so ProviderPolicy treats both alike.
    """

    def _get() -> requests.Response:
        return session.get(url, params=params, timeout=timeout)

    try:
        resp = await asyncio.to_thread(_get)
    except requests.Timeout as exc:
        raise asyncio.TimeoutError(str(exc)) from exc

    if resp.status_code == 404:
        raise NotFound(provider, url)
    if resp.status_code >= 500:
        raise ConnectionError(f"{provider} answered {resp.status_code}")
    # any other refusal or an unreadable body will not improve on retry
    try:
        resp.raise_for_status()
        return resp.json()
    except requests.HTTPError as exc:
        raise ProviderUnavailable(provider, f"answered {resp.status_code}") from exc
    except ValueError as exc:
        raise ProviderUnavailable(provider, f"unreadable response body: {exc}") from exc
