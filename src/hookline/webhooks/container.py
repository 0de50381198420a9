"""Wiring for the webhook subsystem.

Builds the store, registry, breaker registry and dispatcher as one unit so
each application (or test) owns its own instances.
"""

from dataclasses import dataclass
from typing import Callable, Optional
import time

import httpx

from ..core.circuit_breaker import CircuitBreakerConfig, CircuitBreakerRegistry
from ..core.observability import LoggingObservabilityHook, ObservabilityHook
from ..core.settings import AppSettings
from .dispatcher import WebhookDispatcher
from .registry import WebhookRegistry
from .store import InMemoryWebhookStore, WebhookStore


@dataclass
class WebhookContainer:
    settings: AppSettings
    store: WebhookStore
    registry: WebhookRegistry
    breakers: CircuitBreakerRegistry
    hook: ObservabilityHook
    dispatcher: WebhookDispatcher


def build_container(
    settings: Optional[AppSettings] = None,
    store: Optional[WebhookStore] = None,
    hook: Optional[ObservabilityHook] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    clock: Callable[[], float] = time.monotonic,
) -> WebhookContainer:
    """Compose the webhook subsystem.

    Args:
        settings: Application settings (defaults when omitted).
        store: Persistence backend; in-memory when omitted.
        hook: Observability hook; logging + metrics when omitted.
        transport: Optional httpx transport for outgoing requests.
        clock: Time source for circuit breakers.
    """
    settings = settings or AppSettings()
    store = store or InMemoryWebhookStore()
    hook = hook or LoggingObservabilityHook()

    breaker_settings = settings.circuit_breaker
    breakers = CircuitBreakerRegistry(
        default_config=CircuitBreakerConfig(
            failure_threshold=breaker_settings.failure_threshold,
            failure_window_seconds=breaker_settings.failure_window_seconds,
            reset_timeout_seconds=breaker_settings.reset_timeout_seconds,
        ),
        clock=clock,
    )

    registry = WebhookRegistry(store)
    dispatcher = WebhookDispatcher(
        registry,
        settings=settings.delivery,
        breakers=breakers,
        hook=hook,
        transport=transport,
    )

    return WebhookContainer(
        settings=settings,
        store=store,
        registry=registry,
        breakers=breakers,
        hook=hook,
        dispatcher=dispatcher,
    )
