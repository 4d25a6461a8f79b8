"""US Census Bureau demographics: median household income by census tract.

Tract geometries come from TIGERweb; income comes from the American Community
Survey 5-year estimates (variable B19013_001E). Both are keyed by the tract
GEOID (state + county + tract FIPS).

Census API docs: https://api.census.gov/data.html
The ACS API works without a key, at a lower rate limit.
"""

import asyncio
from typing import Any, Dict, List, Optional, Tuple

import httpx
from loguru import logger
from pydantic import BaseModel

from pondfinder.cache.ttl_cache import BoundedTTLCache, round_bbox_key
from pondfinder.config import Settings
from pondfinder.errors import DemographicsError
from pondfinder.geo.grid import BoundingBox

TIGERWEB_BASE_URL = (
    "https://tigerweb.geo.census.gov/arcgis/rest/services/TIGERweb/tigerWMS_Current/MapServer"
)
# Layer IDs in tigerWMS_Current
COUNTIES_LAYER = 82
TRACTS_LAYER = 8

INCOME_VARIABLE = "B19013_001E"
# ACS "annotation" values meaning the estimate is unavailable
_MISSING_INCOME = {"-666666666", "-999999999", "-888888888", "null", ""}


class CensusTract(BaseModel):
    geoid: str
    state: str
    county: str
    tract: str
    median_income: Optional[int] = None
    name: str
    geometry: Optional[Dict[str, Any]] = None


class CensusClient:
    def __init__(
        self,
        api_key: Optional[str] = None,
        acs_year: str = "2022",
        max_span_degrees: float = 2.0,
        cache: Optional[BoundedTTLCache] = None,
        timeout: Optional[httpx.Timeout] = None,
        client: Optional[httpx.AsyncClient] = None,
        tigerweb_url: str = TIGERWEB_BASE_URL,
    ):
        self._api_key = api_key or None
        self._acs_url = f"https://api.census.gov/data/{acs_year}/acs/acs5"
        self._tigerweb_url = tigerweb_url.rstrip("/")
        self._max_span = max_span_degrees
        self._cache = cache or BoundedTTLCache(max_entries=20, ttl_seconds=30 * 60)
        self._timeout = timeout or httpx.Timeout(30.0, connect=10.0)
        self._client = client

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        cache: Optional[BoundedTTLCache] = None,
        client: Optional[httpx.AsyncClient] = None,
    ) -> "CensusClient":
        if cache is None:
            cache = BoundedTTLCache(
                max_entries=settings.census_cache_max_entries,
                ttl_seconds=settings.census_cache_ttl_seconds,
            )
        return cls(
            api_key=settings.census_api_key,
            acs_year=settings.census_acs_year,
            max_span_degrees=settings.census_max_bbox_span_degrees,
            cache=cache,
            timeout=httpx.Timeout(
                settings.http_timeout_seconds,
                connect=settings.http_connect_timeout_seconds,
            ),
            client=client,
        )

    async def _ensure_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=self._timeout, follow_redirects=True)
        return self._client

    async def aclose(self) -> None:
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def fetch_income_by_bbox_cached(self, bbox: BoundingBox) -> List[CensusTract]:
        """Cached fetch_income_by_bbox, keyed by the bbox rounded to 0.01°."""
        key = round_bbox_key(bbox.south, bbox.west, bbox.north, bbox.east)
        cached = self._cache.get(key)
        if cached is not None:
            logger.debug(f"[Census] Cache hit for {key}")
            return cached

        tracts = await self.fetch_income_by_bbox(bbox)
        self._cache.put(key, tracts)
        return tracts

    async def fetch_income_by_bbox(self, bbox: BoundingBox) -> List[CensusTract]:
        """Tract income + geometry for every tract intersecting ``bbox``."""
        if bbox.lat_span > self._max_span or bbox.lng_span > self._max_span:
            raise ValueError(
                f"Bounding box too large for a demographic query (max {self._max_span}° span)"
            )

        logger.info(
            f"[Census] Fetching income: south={bbox.south} west={bbox.west} "
            f"north={bbox.north} east={bbox.east}"
        )
        counties = await self._counties_in_bbox(bbox)
        if not counties:
            logger.info("[Census] No counties found in bbox")
            return []

        geometries, income = await asyncio.gather(
            self._tract_geometries(bbox),
            self._income_for_counties(counties),
        )

        tracts = []
        for geoid, geometry in geometries.items():
            tract_code = geoid[5:]
            median_income, name = income.get(geoid, (None, f"Tract {tract_code}"))
            tracts.append(
                CensusTract(
                    geoid=geoid,
                    state=geoid[:2],
                    county=geoid[2:5],
                    tract=tract_code,
                    median_income=median_income,
                    name=name,
                    geometry=geometry,
                )
            )
        logger.info(f"[Census] Returning {len(tracts)} tracts with geometries")
        return tracts

    # ------------------------------------------------------------------
    # TIGERweb
    # ------------------------------------------------------------------

    def _envelope_params(self, bbox: BoundingBox) -> Dict[str, str]:
        return {
            "geometry": f"{bbox.west},{bbox.south},{bbox.east},{bbox.north}",
            "geometryType": "esriGeometryEnvelope",
            "inSR": "4326",
            "spatialRel": "esriSpatialRelIntersects",
        }

    async def _get(self, url: str, params: Dict[str, str]) -> httpx.Response:
        client = await self._ensure_client()
        return await client.get(url, params=params)

    async def _counties_in_bbox(self, bbox: BoundingBox) -> List[Tuple[str, str]]:
        params = {
            **self._envelope_params(bbox),
            "outFields": "STATE,COUNTY",
            "returnGeometry": "false",
            "f": "json",
        }
        try:
            resp = await self._get(f"{self._tigerweb_url}/{COUNTIES_LAYER}/query", params)
        except httpx.HTTPError as exc:
            raise DemographicsError(f"TIGERweb county query failed: {exc}") from exc
        if resp.status_code != 200:
            raise DemographicsError(
                f"TIGERweb county query failed: {resp.status_code} - {resp.text[:200]}"
            )
        data = _json_or_error(resp, "TIGERweb county query")
        if data.get("error"):
            raise DemographicsError(
                f"TIGERweb county query error: {_esri_error_message(data['error'])}"
            )

        seen = set()
        counties = []
        for feature in data.get("features") or []:
            attrs = feature.get("attributes") or {}
            state, county = attrs.get("STATE"), attrs.get("COUNTY")
            if state and county and (state, county) not in seen:
                seen.add((state, county))
                counties.append((state, county))
        logger.debug(f"[Census] Unique counties: {len(counties)}")
        return counties

    async def _tract_geometries(self, bbox: BoundingBox) -> Dict[str, Dict[str, Any]]:
        """GEOID -> GeoJSON geometry. Tries GeoJSON, falls back to ESRI JSON."""
        params = {
            **self._envelope_params(bbox),
            "outSR": "4326",
            "outFields": "GEOID,STATE,COUNTY,TRACT",
            "returnGeometry": "true",
            "f": "geojson",
        }
        url = f"{self._tigerweb_url}/{TRACTS_LAYER}/query"
        try:
            resp = await self._get(url, params)
            data = resp.json() if resp.status_code == 200 else None
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning(f"[Census] GeoJSON tract query failed ({exc}), trying ESRI JSON")
            data = None

        if not isinstance(data, dict) or data.get("error") or not isinstance(data.get("features"), list):
            logger.warning("[Census] GeoJSON response invalid, trying ESRI JSON fallback")
            return await self._tract_geometries_esri(url, {**params, "f": "json"})

        geometries = {}
        for feature in data["features"]:
            geoid = (feature.get("properties") or {}).get("GEOID")
            if geoid and feature.get("geometry"):
                geometries[geoid] = feature["geometry"]
        logger.debug(f"[Census] Got {len(geometries)} tract geometries (GeoJSON)")
        return geometries

    async def _tract_geometries_esri(
        self, url: str, params: Dict[str, str]
    ) -> Dict[str, Dict[str, Any]]:
        try:
            resp = await self._get(url, params)
        except httpx.HTTPError as exc:
            raise DemographicsError(f"TIGERweb tract query failed: {exc}") from exc
        if resp.status_code != 200:
            raise DemographicsError(
                f"TIGERweb tract query failed: {resp.status_code} - {resp.text[:200]}"
            )
        data = _json_or_error(resp, "TIGERweb tract query")
        if data.get("error"):
            raise DemographicsError(
                f"TIGERweb tract query error: {_esri_error_message(data['error'])}"
            )

        geometries = {}
        for feature in data.get("features") or []:
            geoid = (feature.get("attributes") or {}).get("GEOID")
            geometry = esri_to_geojson(feature.get("geometry"))
            if geoid and geometry:
                geometries[geoid] = geometry
        logger.debug(f"[Census] Got {len(geometries)} tract geometries (ESRI JSON)")
        return geometries

    # ------------------------------------------------------------------
    # ACS income
    # ------------------------------------------------------------------

    async def _income_for_counties(
        self, counties: List[Tuple[str, str]]
    ) -> Dict[str, Tuple[Optional[int], str]]:
        """GEOID -> (median income, tract name). Failed counties are skipped."""
        income: Dict[str, Tuple[Optional[int], str]] = {}
        for state, county in counties:
            params = {
                "get": f"NAME,{INCOME_VARIABLE}",
                "for": "tract:*",
                "in": f"state:{state} county:{county}",
            }
            if self._api_key:
                params["key"] = self._api_key

            try:
                resp = await self._get(self._acs_url, params)
            except httpx.HTTPError as exc:
                logger.warning(f"[Census] Fetch error for state={state} county={county}: {exc}")
                continue
            if resp.status_code != 200:
                logger.warning(
                    f"[Census] ACS API error for state={state} county={county}: "
                    f"{resp.status_code} - {resp.text[:200]}"
                )
                continue
            try:
                rows = resp.json()
            except ValueError:
                rows = None
            if not isinstance(rows, list):
                logger.warning(f"[Census] Malformed ACS payload for state={state} county={county}")
                continue

            # First row is the header: NAME, B19013_001E, state, county, tract
            for row in rows[1:]:
                if not isinstance(row, list) or len(row) < 5:
                    continue
                name, income_str, st, cty, tract = row[:5]
                income[f"{st}{cty}{tract}"] = (_parse_income(income_str), name)

        logger.debug(f"[Census] Income data for {len(income)} tracts")
        return income


def esri_to_geojson(esri_geometry: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """ESRI ``{"rings": [...]}`` -> GeoJSON Polygon; GeoJSON passes through."""
    if not esri_geometry:
        return None
    if esri_geometry.get("rings"):
        return {"type": "Polygon", "coordinates": esri_geometry["rings"]}
    if esri_geometry.get("type") and esri_geometry.get("coordinates"):
        return esri_geometry
    return None


def _parse_income(value: Any) -> Optional[int]:
    if value is None or str(value) in _MISSING_INCOME:
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _json_or_error(resp: httpx.Response, what: str) -> Dict[str, Any]:
    try:
        data = resp.json()
    except ValueError as exc:
        raise DemographicsError(f"{what} returned malformed JSON") from exc
    if not isinstance(data, dict):
        raise DemographicsError(f"{what} returned unexpected payload")
    return data


def _esri_error_message(error: Any) -> str:
    if isinstance(error, dict):
        return str(error.get("message") or error)
    return str(error)
