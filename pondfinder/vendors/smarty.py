"""Smarty API client: address validation, reverse geocoding, property enrichment.

All three lookups are async httpx calls with explicit timeouts. Credentials
are injected at construction (and can be rotated with ``configure``); with no
credentials every call raises VendorNotConfiguredError instead of going out.

Docs: https://www.smarty.com/docs
"""

from typing import Any, Dict, List, Mapping, Optional
from urllib.parse import quote

import httpx
from loguru import logger
from pydantic import BaseModel

from pondfinder.cache.ttl_cache import BoundedTTLCache
from pondfinder.config import Settings, SmartyCredentials
from pondfinder.errors import VendorNotConfiguredError, VendorRequestError
from pondfinder.resolver.models import PostalAddress, PropertyRecord

SERVICE = "Smarty"

_TRUTHY_FLAGS = {"y", "yes", "1", "true"}


class ReverseGeoCandidate(BaseModel):
    street: str
    city: str = ""
    state: str = ""
    zip_code: str = ""
    distance: Optional[float] = None


class ValidatedAddress(BaseModel):
    delivery_line_1: str
    last_line: str = ""
    delivery_point_barcode: str = ""
    city: str = ""
    state: str = ""
    zip_code: str = ""
    latitude: Optional[float] = None
    longitude: Optional[float] = None

    def to_postal(self) -> PostalAddress:
        return PostalAddress(
            street=self.delivery_line_1,
            city=self.city,
            state=self.state,
            zip_code=self.zip_code,
        )


class SmartyClient:
    """Async Smarty client sharing one httpx connection pool."""

    def __init__(
        self,
        credentials: Optional[SmartyCredentials],
        street_url: str = "https://us-street.api.smarty.com/street-address",
        reverse_geo_url: str = "https://us-reverse-geo.api.smarty.com/lookup",
        property_url: str = "https://us-enrichment.api.smarty.com/lookup",
        cache: Optional[BoundedTTLCache] = None,
        timeout: Optional[httpx.Timeout] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self._credentials = credentials
        self._street_url = street_url
        self._reverse_geo_url = reverse_geo_url
        self._property_url = property_url.rstrip("/")
        self._cache = cache
        self._timeout = timeout or httpx.Timeout(30.0, connect=10.0)
        self._client = client

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        cache: Optional[BoundedTTLCache] = None,
        client: Optional[httpx.AsyncClient] = None,
    ) -> "SmartyClient":
        return cls(
            settings.smarty_credentials(),
            street_url=settings.smarty_street_url,
            reverse_geo_url=settings.smarty_reverse_geo_url,
            property_url=settings.smarty_property_url,
            cache=cache,
            timeout=httpx.Timeout(
                settings.http_timeout_seconds,
                connect=settings.http_connect_timeout_seconds,
            ),
            client=client,
        )

    @property
    def is_configured(self) -> bool:
        return self._credentials is not None

    def configure(self, credentials: Optional[SmartyCredentials]) -> None:
        """Swap credentials at runtime (None disables the client)."""
        self._credentials = credentials

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def _ensure_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=self._timeout, follow_redirects=True)
        return self._client

    async def aclose(self) -> None:
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "SmartyClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    # ------------------------------------------------------------------
    # HTTP helper
    # ------------------------------------------------------------------

    async def _get_json(self, url: str, params: Dict[str, str], what: str) -> Any:
        if self._credentials is None:
            raise VendorNotConfiguredError(SERVICE)

        query = {
            "auth-id": self._credentials.auth_id,
            "auth-token": self._credentials.auth_token,
            **params,
        }
        client = await self._ensure_client()
        try:
            resp = await client.get(url, params=query)
        except httpx.TimeoutException as exc:
            logger.warning(f"[Smarty] {what} timed out")
            raise VendorRequestError(SERVICE, f"{what} timed out") from exc
        except httpx.HTTPError as exc:
            logger.warning(f"[Smarty] {what} HTTP error: {exc}")
            raise VendorRequestError(SERVICE, f"{what} failed: {exc}") from exc

        if resp.status_code != 200:
            logger.warning(f"[Smarty] {what} failed: HTTP {resp.status_code}")
            raise VendorRequestError(
                SERVICE, f"{what} returned HTTP {resp.status_code}", resp.status_code
            )

        try:
            return resp.json()
        except ValueError as exc:
            raise VendorRequestError(SERVICE, f"{what} returned malformed JSON") from exc

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    async def reverse_geocode(self, latitude: float, longitude: float) -> List[ReverseGeoCandidate]:
        """Addresses near a coordinate, closest first. Empty means none."""
        cache_key = ("reverse", round(latitude, 6), round(longitude, 6))
        if self._cache is not None:
            cached = self._cache.get(cache_key)
            if cached is not None:
                return cached

        data = await self._get_json(
            self._reverse_geo_url,
            {"latitude": str(latitude), "longitude": str(longitude)},
            "Reverse geocode",
        )
        candidates = _parse_reverse_geo(data)
        if self._cache is not None:
            self._cache.put(cache_key, candidates)
        return candidates

    async def validate_address(
        self,
        street: str,
        city: str,
        state: str,
        zip_code: Optional[str] = None,
    ) -> Optional[ValidatedAddress]:
        """Standardize a US street address; None when Smarty has no match."""
        params = {"street": street, "city": city, "state": state, "candidates": "1"}
        if zip_code:
            params["zipcode"] = zip_code

        data = await self._get_json(self._street_url, params, "Address validation")
        if not isinstance(data, list):
            raise VendorRequestError(SERVICE, "Address validation returned malformed payload")
        if not data:
            return None
        return _parse_validated(data[0])

    async def enrich(self, validated: ValidatedAddress) -> Dict[str, Any]:
        """Property attribute bag for a standardized address."""
        cache_key = ("enrich", validated.zip_code, validated.delivery_line_1)
        if self._cache is not None:
            cached = self._cache.get(cache_key)
            if cached is not None:
                return cached

        url = (
            f"{self._property_url}/{validated.zip_code}/"
            f"{quote(validated.delivery_line_1, safe='')}/property/principal"
        )
        data = await self._get_json(url, {}, "Property lookup")
        attributes: Dict[str, Any] = {}
        if isinstance(data, list) and data:
            raw = data[0].get("attributes") if isinstance(data[0], Mapping) else None
            if raw is not None and not isinstance(raw, Mapping):
                raise VendorRequestError(SERVICE, "Property lookup returned malformed payload")
            attributes = dict(raw or {})
        if self._cache is not None:
            self._cache.put(cache_key, attributes)
        return attributes

    async def lookup_property_owner(
        self,
        street: str,
        city: str,
        state: str,
        zip_code: str,
    ) -> Optional[PropertyRecord]:
        """Validate, then enrich. Falls back to a partial record if enrichment fails."""
        validated = await self.validate_address(street, city, state, zip_code)
        if validated is None:
            logger.debug(f"[Smarty] Could not validate address {street!r}, {city} {state}")
            return None

        try:
            attributes = await self.enrich(validated)
        except VendorRequestError as exc:
            logger.info(f"[Smarty] Enrichment unavailable for {validated.delivery_line_1!r}: {exc}")
            return build_partial_record(validated)
        return parse_property_record(attributes, validated)

    async def reverse_and_lookup(self, latitude: float, longitude: float) -> Optional[PropertyRecord]:
        """Reverse geocode one point and look up the closest address."""
        candidates = await self.reverse_geocode(latitude, longitude)
        if not candidates:
            return None
        closest = candidates[0]
        return await self.lookup_property_owner(
            closest.street, closest.city, closest.state, closest.zip_code
        )


# ---------------------------------------------------------------------------
# Payload parsing
# ---------------------------------------------------------------------------


def _parse_reverse_geo(data: Any) -> List[ReverseGeoCandidate]:
    if not isinstance(data, Mapping):
        raise VendorRequestError(SERVICE, "Reverse geocode returned malformed payload")

    candidates = []
    for item in data.get("results") or []:
        address = item.get("address") if isinstance(item, Mapping) else None
        if not isinstance(address, Mapping) or not address.get("street"):
            continue
        candidates.append(
            ReverseGeoCandidate(
                street=str(address.get("street", "")),
                city=str(address.get("city", "")),
                state=str(address.get("state_abbreviation", "")),
                zip_code=str(address.get("zipcode", "")),
                distance=_to_float_or_none(item.get("distance")),
            )
        )
    return candidates


def _parse_validated(item: Any) -> ValidatedAddress:
    if not isinstance(item, Mapping) or not item.get("delivery_line_1"):
        raise VendorRequestError(SERVICE, "Address validation returned malformed candidate")

    components = item.get("components") or {}
    metadata = item.get("metadata") or {}
    return ValidatedAddress(
        delivery_line_1=str(item["delivery_line_1"]),
        last_line=str(item.get("last_line", "")),
        delivery_point_barcode=str(item.get("delivery_point_barcode", "")),
        city=str(components.get("city_name") or components.get("default_city_name") or ""),
        state=str(components.get("state_abbreviation", "")),
        zip_code=str(components.get("zipcode", "")),
        latitude=_to_float_or_none(metadata.get("latitude")),
        longitude=_to_float_or_none(metadata.get("longitude")),
    )


def parse_property_record(attributes: Mapping[str, Any], validated: ValidatedAddress) -> PropertyRecord:
    """Build a record from enrichment attributes. Missing or bad fields default."""
    company_name = _to_str(attributes.get("company_name"))
    company_flag = _to_str(attributes.get("company_flag")).lower() in _TRUTHY_FLAGS
    return PropertyRecord(
        owner_name=_to_str(attributes.get("1st_owner_name")),
        first_name=_to_str(attributes.get("1st_owner_name_first")),
        last_name=_to_str(attributes.get("1st_owner_name_last")),
        company_name=company_name,
        is_company=company_flag or bool(company_name),
        mailing_address=PostalAddress(
            street=_to_str(attributes.get("mail_address")),
            city=_to_str(attributes.get("mail_city")),
            state=_to_str(attributes.get("mail_state")),
            zip_code=_to_str(attributes.get("mail_zip_code")),
        ),
        property_address=validated.to_postal(),
        parcel_id=_to_str(attributes.get("parcel_id")),
        property_type=_to_str(attributes.get("property_use_type")) or "unknown",
        lot_size_acres=_to_float(attributes.get("lot_size_acres")),
        market_value=_to_float(attributes.get("assessed_total_value")),
        year_built=_to_int_or_none(attributes.get("year_built")),
        latitude=validated.latitude,
        longitude=validated.longitude,
        lookup_id=validated.delivery_point_barcode,
    )


def build_partial_record(validated: ValidatedAddress) -> PropertyRecord:
    """Address-only record for when enrichment data isn't available."""
    return PropertyRecord(
        property_address=validated.to_postal(),
        latitude=validated.latitude,
        longitude=validated.longitude,
        lookup_id=validated.delivery_point_barcode,
    )


def _to_str(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


def _to_float(value: Any) -> float:
    parsed = _to_float_or_none(value)
    return parsed if parsed is not None else 0.0


def _to_float_or_none(value: Any) -> Optional[float]:
    try:
        parsed = float(value)
    except (TypeError, ValueError):
        return None
    if parsed != parsed:  # NaN
        return None
    return parsed


def _to_int_or_none(value: Any) -> Optional[int]:
    parsed = _to_float_or_none(value)
    if parsed is None or parsed <= 0:
        return None
    return int(parsed)
