"""
Shared test fixtures.

Provides: fake Smarty HTTP backend (httpx.MockTransport), settings without
vendor side effects, job status polling helper.
"""

import asyncio
import json
from typing import Callable, Dict, List, Optional, Tuple

import httpx
import pytest

from pondfinder.config import Settings, SmartyCredentials
from pondfinder.jobs.models import JobStatus
from pondfinder.vendors.smarty import SmartyClient

CREDENTIALS = SmartyCredentials("test-id", "test-token")

REVERSE_URL = "https://reverse.test/lookup"
STREET_URL = "https://street.test/street-address"
PROPERTY_URL = "https://property.test/lookup"


class FakeSmarty:
    """Routes Smarty requests to canned responses.

    ``sites`` maps an area (lat, lng, radius in degrees) to either an HTTP
    status (every call in that area fails with it) or a site description:
    street, city, state, zip, and the enrichment attributes to return.
    """

    def __init__(self):
        self.sites: List[Tuple[float, float, float, object]] = []
        self.requests: List[httpx.Request] = []

    def add_site(self, lat: float, lng: float, site, radius_deg: float = 0.01) -> None:
        self.sites.append((lat, lng, radius_deg, site))

    def _site_at(self, lat: float, lng: float):
        for site_lat, site_lng, radius, site in self.sites:
            if abs(lat - site_lat) <= radius and abs(lng - site_lng) <= radius:
                return site
        return None

    def _site_by_street(self, street: str) -> Optional[Dict]:
        for _, _, _, site in self.sites:
            if isinstance(site, dict) and site["street"] == street:
                return site
        return None

    def count(self, url_prefix: str) -> int:
        return sum(1 for r in self.requests if str(r.url).startswith(url_prefix))

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        url = str(request.url)
        params = request.url.params

        if url.startswith(REVERSE_URL):
            site = self._site_at(float(params["latitude"]), float(params["longitude"]))
            if isinstance(site, int):
                return httpx.Response(site, text="upstream error")
            if site is None:
                return httpx.Response(200, json={"results": []})
            return httpx.Response(200, json={"results": [{
                "address": {
                    "street": site["street"],
                    "city": site["city"],
                    "state_abbreviation": site["state"],
                    "zipcode": site["zip"],
                },
                "distance": 12.5,
            }]})

        if url.startswith(STREET_URL):
            site = self._site_by_street(params["street"])
            if site is None:
                return httpx.Response(200, json=[])
            return httpx.Response(200, json=[{
                "input_index": 0,
                "delivery_line_1": site["street"],
                "last_line": f"{site['city']} {site['state']} {site['zip']}",
                "delivery_point_barcode": f"dpb-{site['zip']}",
                "components": {
                    "city_name": site["city"],
                    "state_abbreviation": site["state"],
                    "zipcode": site["zip"],
                },
                "metadata": {"latitude": site["lat"], "longitude": site["lng"]},
            }])

        if url.startswith(PROPERTY_URL):
            for _, _, _, site in self.sites:
                if isinstance(site, dict) and site["zip"] in request.url.path:
                    attributes = site.get("attributes")
                    if attributes is None:
                        return httpx.Response(404, text="not found")
                    return httpx.Response(200, content=json.dumps([{"attributes": attributes}]))
            return httpx.Response(404, text="not found")

        return httpx.Response(404, text="unknown endpoint")


def make_site(lat, lng, street, zip_code, owner="", property_type="", **extra) -> Dict:
    attributes = {"1st_owner_name": owner, "property_use_type": property_type, **extra}
    return {
        "lat": lat,
        "lng": lng,
        "street": street,
        "city": "Ocala",
        "state": "FL",
        "zip": zip_code,
        "attributes": attributes,
    }


@pytest.fixture
def fake_smarty() -> FakeSmarty:
    return FakeSmarty()


@pytest.fixture
def smarty_factory(fake_smarty) -> Callable[..., SmartyClient]:
    def factory(credentials=CREDENTIALS, cache=None) -> SmartyClient:
        return SmartyClient(
            credentials,
            street_url=STREET_URL,
            reverse_geo_url=REVERSE_URL,
            property_url=PROPERTY_URL,
            cache=cache,
            client=httpx.AsyncClient(transport=httpx.MockTransport(fake_smarty.handler)),
        )
    return factory


@pytest.fixture
def test_settings() -> Settings:
    return Settings(
        _env_file=None,
        smarty_auth_id="test-id",
        smarty_auth_token="test-token",
        batch_item_delay_seconds=0.0,
        job_concurrency=2,
    )


async def wait_for_status(queue, job_id: str, status: JobStatus, timeout: float = 2.0):
    """Poll until the job reaches ``status``; return the record."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while True:
        job = await queue.get_status(job_id)
        if job is not None and job.status == status:
            return job
        if loop.time() > deadline:
            raise AssertionError(
                f"job {job_id} stuck in {job.status if job else None}, expected {status}"
            )
        await asyncio.sleep(0.005)


@pytest.fixture
def wait_status():
    return wait_for_status
