import logging
from typing import Optional

from journeyflow import config
from journeyflow.clock import Clock, utcnow
from journeyflow.services.engine import JourneyEngine
from journeyflow.services.notifier import LoggingNotifier, Notifier, SmtpNotifier
from journeyflow.services.reconciler import ReconciliationScheduler
from journeyflow.services.transitions import CrmOnAffirmativeResponse
from journeyflow.stores.base import CrmStore, JournalStore, JourneyStore, UserStateStore

logger = logging.getLogger(__name__)


class JourneyRuntime:
    """
    Owns the stores, notifier, engine and scheduler of one process.

    Created at startup and stopped at shutdown; tests build a fresh one per
    test so nothing leaks between them.
    """

    def __init__(
        self,
        journeys: JourneyStore,
        users: UserStateStore,
        crm: CrmStore,
        journal: Optional[JournalStore] = None,
        notifier: Optional[Notifier] = None,
        clock: Clock = utcnow,
        interval: float = config.RECONCILE_INTERVAL_SECONDS,
        max_concurrency: int = config.RECONCILE_CONCURRENCY,
        user_timeout: float = config.RECONCILE_USER_TIMEOUT_SECONDS,
        auto_enroll: bool = config.AUTO_ENROLL_ON_EVENT,
        crm_policy: Optional[CrmOnAffirmativeResponse] = CrmOnAffirmativeResponse(),
        max_retries: int = config.MAX_TRANSITION_RETRIES,
        backend: str = "memory",
    ):
        self.journeys = journeys
        self.users = users
        self.crm = crm
        self.journal = journal
        self.notifier = notifier or LoggingNotifier(crm)
        self.auto_enroll = auto_enroll
        self.backend = backend
        self.engine = JourneyEngine(
            journeys,
            users,
            self.notifier,
            journal=journal,
            clock=clock,
            crm_policy=crm_policy,
            max_retries=max_retries,
        )
        self.scheduler = ReconciliationScheduler(
            self.engine,
            users,
            interval=interval,
            max_concurrency=max_concurrency,
            clock=clock,
            user_timeout=user_timeout,
        )

    async def start(self, run_scheduler: bool = True):
        logger.info(f"Starting journey runtime ({self.backend} stores)")
        if run_scheduler:
            await self.scheduler.start()

    async def stop(self):
        await self.scheduler.stop()
        logger.info("Journey runtime stopped")


def default_notifier(crm: CrmStore) -> Notifier:
    if config.SMTP_USERNAME and config.SMTP_PASSWORD:
        return SmtpNotifier(
            crm,
            host=config.SMTP_HOST,
            port=config.SMTP_PORT,
            username=config.SMTP_USERNAME,
            password=config.SMTP_PASSWORD,
            timeout=config.SMTP_TIMEOUT_SECONDS,
        )
    return LoggingNotifier(crm)


def build_runtime(backend: Optional[str] = None, **kwargs) -> JourneyRuntime:
    """
    Build a runtime for the configured store backend. The mongo backend
    expects ``init_db`` to have run.
    """
    backend = backend or config.STORE_BACKEND
    if backend == "mongo":
        from journeyflow.stores.mongo import (
            MongoCrmStore,
            MongoJournalStore,
            MongoJourneyStore,
            MongoUserStateStore,
        )
        journeys, users, crm, journal = (
            MongoJourneyStore(), MongoUserStateStore(), MongoCrmStore(), MongoJournalStore()
        )
    elif backend == "memory":
        from journeyflow.stores.memory import (
            InMemoryCrmStore,
            InMemoryJournalStore,
            InMemoryJourneyStore,
            InMemoryUserStateStore,
        )
        journeys, users, crm, journal = (
            InMemoryJourneyStore(), InMemoryUserStateStore(), InMemoryCrmStore(), InMemoryJournalStore()
        )
    else:
        raise ValueError(f"Unknown store backend: {backend}")

    kwargs.setdefault("notifier", default_notifier(crm))
    return JourneyRuntime(journeys, users, crm, journal=journal, backend=backend, **kwargs)
