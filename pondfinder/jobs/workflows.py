"""Job workflows run by the scheduler.

Each workflow is ``async (ctx, params) -> result dict``. It reports
milestones through ``ctx.update_progress`` and returns None as soon as that
call returns False (the job was cancelled). Raised exceptions are turned into
a failed job by the scheduler.

  region-scan        bbox -> grid of ~0.1° cells for the caller to fetch
  batch-enrichment   coordinates -> owner records + land-use category
  demographic-load   bbox -> census tract income + geometry
  combined-analysis  region-scan cells + demographic-load tracts
"""

import asyncio
from functools import partial
from typing import Any, Awaitable, Callable, Dict, List, Optional

from loguru import logger
from pydantic import BaseModel, Field

from pondfinder.config import Settings
from pondfinder.errors import DemographicsError, VendorNotConfiguredError
from pondfinder.geo.grid import BoundingBox, partition_bbox
from pondfinder.jobs.in_process_queue import JobContext, Workflow
from pondfinder.jobs.models import JobType
from pondfinder.resolver.classification import LandUse, classify_land_use
from pondfinder.resolver.property_resolver import PropertyResolver
from pondfinder.vendors.census import CensusClient


class RegionParams(BoundingBox):
    include_small: bool = False


class BatchPoint(BaseModel):
    id: str
    lat: float = Field(ge=-90, le=90)
    lng: float = Field(ge=-180, le=180)
    name: Optional[str] = None


class BatchEnrichmentParams(BaseModel):
    points: List[BatchPoint] = Field(min_length=1)


def _cells_payload(cells: List[BoundingBox]) -> List[Dict[str, float]]:
    return [cell.model_dump() for cell in cells]


def _bounds(region: RegionParams) -> Dict[str, float]:
    return region.model_dump(include={"south", "west", "north", "east"})


# ---------------------------------------------------------------------------
# Region scan
# ---------------------------------------------------------------------------

async def run_region_scan(
    ctx: JobContext, params: Dict[str, Any], cell_size: float = 0.1
) -> Optional[Dict[str, Any]]:
    """Split the region into scan cells; the caller fetches each cell itself."""
    region = RegionParams.model_validate(params)
    cells = partition_bbox(region, cell_size)

    if not await ctx.update_progress(5, f"Scanning {len(cells)} sub-regions..."):
        return None
    if not await ctx.update_progress(50, f"Prepared {len(cells)} scan cells"):
        return None

    return {
        "cells": _cells_payload(cells),
        "total_cells": len(cells),
        "include_small": region.include_small,
        "bounds": _bounds(region),
        "summary": f"Ready: {len(cells)} sub-regions prepared for scanning",
    }


# ---------------------------------------------------------------------------
# Batch property enrichment
# ---------------------------------------------------------------------------

async def run_batch_enrichment(
    ctx: JobContext,
    params: Dict[str, Any],
    resolver: PropertyResolver,
    item_delay_seconds: float = 0.2,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> Optional[Dict[str, Any]]:
    """Resolve each coordinate in turn, pausing between items for rate limits.

    A failed lookup is recorded against its item and classified unknown; it
    does not fail the job. Missing vendor credentials do.
    """
    batch = BatchEnrichmentParams.model_validate(params)
    total = len(batch.points)
    properties: Dict[str, Dict[str, Any]] = {}

    for processed, point in enumerate(batch.points):
        progress = round(processed / total * 90) + 5
        if not await ctx.update_progress(progress, f"Looking up property {processed + 1} of {total}..."):
            return None

        try:
            record = await resolver.resolve(point.lat, point.lng)
        except VendorNotConfiguredError:
            raise
        except Exception as exc:
            logger.warning(f"Job {ctx.job_id}: lookup for {point.id} failed: {exc}")
            properties[point.id] = {
                "success": False,
                "found": False,
                "data": None,
                "error": str(exc),
                "land_use": LandUse.UNKNOWN.value,
            }
        else:
            properties[point.id] = {
                "success": True,
                "found": record.has_owner or record.has_street,
                "data": record.model_dump(),
                "land_use": classify_land_use(record).value,
            }

        if processed < total - 1 and item_delay_seconds > 0:
            await sleep(item_delay_seconds)

    return {
        "properties": properties,
        "total_processed": total,
        "summary": f"Completed: {total} properties looked up",
    }


# ---------------------------------------------------------------------------
# Demographic load
# ---------------------------------------------------------------------------

async def run_demographic_load(
    ctx: JobContext, params: Dict[str, Any], census: CensusClient
) -> Optional[Dict[str, Any]]:
    region = RegionParams.model_validate(params)

    if not await ctx.update_progress(10, "Loading census demographics..."):
        return None

    tracts = await census.fetch_income_by_bbox_cached(region)

    if not await ctx.update_progress(90, f"Processing {len(tracts)} tracts..."):
        return None

    return {
        "tracts": [t.model_dump() for t in tracts],
        "total_tracts": len(tracts),
        "summary": f"Completed: {len(tracts)} census tracts loaded",
    }


# ---------------------------------------------------------------------------
# Combined analysis
# ---------------------------------------------------------------------------

async def run_combined_analysis(
    ctx: JobContext,
    params: Dict[str, Any],
    census: CensusClient,
    cell_size: float = 0.1,
) -> Optional[Dict[str, Any]]:
    """Scan cells plus demographics. A failed census fetch leaves tracts empty."""
    region = RegionParams.model_validate(params)

    if not await ctx.update_progress(5, "Preparing region scan..."):
        return None
    cells = partition_bbox(region, cell_size)

    if not await ctx.update_progress(30, "Loading census demographics..."):
        return None

    census_error = None
    try:
        tracts = await census.fetch_income_by_bbox_cached(region)
    except (DemographicsError, ValueError) as exc:
        logger.warning(f"Job {ctx.job_id}: census load failed: {exc}")
        census_error = str(exc)
        tracts = []

    if not await ctx.update_progress(70, f"Census: {len(tracts)} tracts. Preparing results..."):
        return None

    return {
        "scan_cells": _cells_payload(cells),
        "census_tracts": [t.model_dump() for t in tracts],
        "census_error": census_error,
        "bounds": _bounds(region),
        "include_small": region.include_small,
        "summary": f"Analysis complete: {len(cells)} scan cells, {len(tracts)} census tracts",
    }


def build_workflows(
    resolver: PropertyResolver,
    census: CensusClient,
    settings: Settings,
) -> Dict[JobType, Workflow]:
    """Bind workflows to their collaborators for the scheduler."""
    return {
        JobType.REGION_SCAN: partial(
            run_region_scan, cell_size=settings.region_cell_size_degrees
        ),
        JobType.BATCH_ENRICHMENT: partial(
            run_batch_enrichment,
            resolver=resolver,
            item_delay_seconds=settings.batch_item_delay_seconds,
        ),
        JobType.DEMOGRAPHIC_LOAD: partial(run_demographic_load, census=census),
        JobType.COMBINED_ANALYSIS: partial(
            run_combined_analysis,
            census=census,
            cell_size=settings.region_cell_size_degrees,
        ),
    }
