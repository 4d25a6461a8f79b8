"""Pond Finder background engine - process wiring.

Builds the shared caches, vendor clients, property resolver and job scheduler
from Settings, and tears them down again. Whatever hosts the engine (a web
app, a worker process) enters ``engine_lifespan`` once at startup.
"""

from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import timedelta
from typing import AsyncIterator, Optional

from loguru import logger

from pondfinder.cache.ttl_cache import BoundedTTLCache
from pondfinder import config
from pondfinder.config import Settings
from pondfinder.db.supabase_client import get_supabase
from pondfinder.jobs.in_process_queue import InProcessQueue
from pondfinder.jobs.store import InMemoryJobStore, JobStore, SupabaseJobStore
from pondfinder.jobs.workflows import build_workflows
from pondfinder.logging_config import configure_logging
from pondfinder.resolver.models import PropertyRecord
from pondfinder.resolver.property_resolver import PropertyResolver
from pondfinder.vendors.census import CensusClient
from pondfinder.vendors.smarty import SmartyClient


@dataclass
class Engine:
    settings: Settings
    smarty: SmartyClient
    census: CensusClient
    resolver: PropertyResolver
    scheduler: InProcessQueue

    def reload(self, settings: Settings) -> None:
        """Apply rotated vendor credentials without restarting."""
        self.settings = settings
        self.smarty.configure(settings.smarty_credentials())
        logger.info(
            f"Settings reloaded (Smarty {'configured' if self.smarty.is_configured else 'not configured'})"
        )


def build_job_store(settings: Settings) -> JobStore:
    if settings.job_store_mode == "supabase":
        return SupabaseJobStore(get_supabase(settings), table=settings.supabase_jobs_table)
    if settings.job_store_mode != "memory":
        raise ValueError(f"Unknown job_store_mode: {settings.job_store_mode!r}")
    return InMemoryJobStore()


def build_engine(settings: Settings, store: Optional[JobStore] = None) -> Engine:
    vendor_cache = BoundedTTLCache(
        max_entries=settings.vendor_cache_max_entries,
        ttl_seconds=settings.vendor_cache_ttl_seconds,
    )
    smarty = SmartyClient.from_settings(settings, cache=vendor_cache)
    census = CensusClient.from_settings(settings)
    resolver = PropertyResolver(smarty, max_radius_meters=settings.resolver_max_radius_meters)
    scheduler = InProcessQueue(
        build_workflows(resolver, census, settings),
        store=store or build_job_store(settings),
        concurrency=settings.job_concurrency,
    )
    return Engine(settings, smarty, census, resolver, scheduler)


@asynccontextmanager
async def engine_lifespan(settings: Optional[Settings] = None) -> AsyncIterator[Engine]:
    """Startup and shutdown logic."""
    settings = settings or config.settings
    configure_logging(settings.log_level)

    logger.info("Starting Pond Finder engine")
    logger.info(f"Job store: {settings.job_store_mode}, concurrency: {settings.job_concurrency}")
    engine = build_engine(settings)
    if not engine.smarty.is_configured:
        logger.warning("Smarty credentials not set; property lookups will report not configured")

    await engine.scheduler.start()
    logger.info("Job scheduler started")

    try:
        yield engine
    finally:
        logger.info("Shutting down Pond Finder engine")
        await engine.scheduler.stop()
        purged = await engine.scheduler.purge_expired(timedelta(hours=settings.job_retention_hours))
        if purged:
            logger.info(f"Purged {purged} expired job(s)")
        await engine.smarty.aclose()
        await engine.census.aclose()


async def lookup_property(engine: Engine, latitude: float, longitude: float) -> PropertyRecord:
    """Interactive (non-job) property lookup for a single coordinate."""
    return await engine.resolver.resolve(latitude, longitude)
