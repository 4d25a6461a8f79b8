"""Coordinate -> owner/parcel resolution with a concentric ring search.

The coordinates this service sees are usually the centroid of a water body,
which is not a mailing address. The resolver tries the exact point first and,
when that yields no owner, casts outward in three rings of 8 probes each to
find shore-side parcels.

Rules:
- Rings are evaluated nearest first. All 8 probes of a ring run in parallel
  and the ring is awaited in full before the next one starts.
- Within a ring, the first probe (in bearing order, not completion order)
  with an owner name wins; failing that, the first with a street address.
- A probe whose remote calls fail counts as "no result" for that probe.
  Missing credentials are not absorbed: they surface as
  VendorNotConfiguredError before any call is made.
- If every ring comes up empty, the direct attempt's result is returned,
  even when it is an ownerless partial record. With no direct result at all
  an empty PropertyRecord comes back; resolve never returns None.
"""

import asyncio
from typing import List, Optional

from loguru import logger

from pondfinder.errors import VendorNotConfiguredError, VendorRequestError
from pondfinder.geo.probes import ring_probes, ring_radii
from pondfinder.resolver.models import PropertyRecord
from pondfinder.vendors.smarty import SERVICE, SmartyClient


class PropertyResolver:
    def __init__(self, smarty: SmartyClient, max_radius_meters: float = 500.0):
        self._smarty = smarty
        self._max_radius = max_radius_meters

    @property
    def is_configured(self) -> bool:
        return self._smarty.is_configured

    async def resolve(
        self,
        latitude: float,
        longitude: float,
        max_radius_meters: Optional[float] = None,
    ) -> PropertyRecord:
        """Best-known property record for a coordinate (possibly all-empty)."""
        if not self._smarty.is_configured:
            raise VendorNotConfiguredError(SERVICE)

        radius = max_radius_meters if max_radius_meters is not None else self._max_radius

        direct = await self._probe(latitude, longitude)
        if direct is not None and direct.has_owner:
            logger.debug(f"Resolved ({latitude:.6f}, {longitude:.6f}) directly")
            return direct

        for ring_index, ring_radius in enumerate(ring_radii(radius), start=1):
            probes = ring_probes(latitude, longitude, ring_radius)
            results = await asyncio.gather(*(self._probe(p.lat, p.lng) for p in probes))

            accepted = _accept(results)
            if accepted is not None:
                kind = "owner" if accepted.has_owner else "address-only"
                logger.info(
                    f"Resolved ({latitude:.6f}, {longitude:.6f}) via ring {ring_index} "
                    f"({ring_radius:.0f} m, {kind} match)"
                )
                return accepted

        logger.info(
            f"Ring search exhausted for ({latitude:.6f}, {longitude:.6f}); "
            f"returning {'partial' if direct is not None else 'empty'} direct result"
        )
        return direct if direct is not None else PropertyRecord()

    async def _probe(self, latitude: float, longitude: float) -> Optional[PropertyRecord]:
        """Reverse geocode + enrichment for one point; failures become None."""
        try:
            return await self._smarty.reverse_and_lookup(latitude, longitude)
        except VendorNotConfiguredError:
            raise
        except VendorRequestError as exc:
            logger.debug(f"Probe ({latitude:.6f}, {longitude:.6f}) failed: {exc}")
            return None
        except Exception:
            # Any other failure is "no result" for this probe; the ring still settles
            logger.exception(f"Probe ({latitude:.6f}, {longitude:.6f}) raised unexpectedly")
            return None


def _accept(results: List[Optional[PropertyRecord]]) -> Optional[PropertyRecord]:
    for record in results:
        if record is not None and record.has_owner:
            return record
    for record in results:
        if record is not None and record.has_street:
            return record
    return None
