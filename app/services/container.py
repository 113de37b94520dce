"""
Service wiring

One instance of each service per process. The poller registry in particular
must be shared by the job service (which starts pollers) and the webhook ingest
(which cancels them).
"""

import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional

import httpx
from sqlalchemy.ext.asyncio import async_sessionmaker

from app.core.config import settings
from app.services.generation_store import GenerationStore
from app.services.invite_service import InviteService
from app.services.job_service import JobService
from app.services.kie_service import KieService
from app.services.ledger_service import LedgerService
from app.services.payment_service import PaymentService
from app.services.poller import PollerSupervisor
from app.services.reconciler import CompletionReconciler
from app.services.thumbnail_service import ThumbnailService
from app.services.webhook_ingest import WebhookIngest

logger = logging.getLogger(__name__)


@dataclass
class Services:
    store: GenerationStore
    ledger: LedgerService
    provider: KieService
    reconciler: CompletionReconciler
    poller: PollerSupervisor
    webhooks: WebhookIngest
    jobs: JobService
    payments: PaymentService
    invites: InviteService


def build_services(
    session_factory: async_sessionmaker,
    provider=None,
    thumbnailer=None,
    payment_client: Optional[httpx.AsyncClient] = None,
    interval_seconds: Optional[float] = None,
    max_lifetime_seconds: Optional[float] = None,
    clock: Callable[[], float] = time.monotonic
) -> Services:
    """Build the service graph around a session factory"""
    store = GenerationStore(session_factory)
    ledger = LedgerService(session_factory)
    provider = provider or KieService()
    if thumbnailer is None and settings.THUMBNAILS_ENABLED:
        thumbnailer = ThumbnailService()

    reconciler = CompletionReconciler(session_factory, store, ledger, thumbnailer=thumbnailer)
    poller = PollerSupervisor(
        reconciler,
        store,
        provider,
        interval_seconds=interval_seconds,
        max_lifetime_seconds=max_lifetime_seconds,
        clock=clock,
    )
    services = Services(
        store=store,
        ledger=ledger,
        provider=provider,
        reconciler=reconciler,
        poller=poller,
        webhooks=WebhookIngest(store, reconciler, poller),
        jobs=JobService(session_factory, store, ledger, provider, poller),
        payments=PaymentService(ledger, client=payment_client),
        invites=InviteService(session_factory, ledger),
    )
    logger.info(
        f"Services ready (provider configured: {provider.is_configured()}, "
        f"payments configured: {services.payments.is_configured()})"
    )
    return services


async def close_services(services: Services) -> None:
    """Stop pollers, wait for thumbnail tasks and close HTTP clients"""
    await services.poller.shutdown()
    await services.reconciler.drain()
    await services.provider.aclose()
    await services.payments.aclose()
