"""Exception types shared by the vendor clients, resolver and scheduler."""

from typing import Optional


class PondfinderError(Exception):
    pass


class VendorNotConfiguredError(PondfinderError):
    """Vendor credentials are absent. Reported immediately, never retried."""

    def __init__(self, service: str):
        self.service = service
        super().__init__(
            f"{service} API is not configured. Set its credentials before running lookups."
        )


class VendorRequestError(PondfinderError):
    """A single remote call failed (non-2xx, network error, bad payload)."""

    def __init__(self, service: str, message: str, status_code: Optional[int] = None):
        self.service = service
        self.status_code = status_code
        super().__init__(f"{service}: {message}")


class DemographicsError(PondfinderError):
    """Demographic data could not be assembled for a bounding box."""
