"""Resolution result data model."""

from typing import Optional

from pydantic import BaseModel, Field


class PostalAddress(BaseModel):
    street: str = ""
    city: str = ""
    state: str = ""
    zip_code: str = ""


class PropertyRecord(BaseModel):
    """Owner/parcel record for one resolved address.

    A partial record has a property address but no owner fields, which is
    what comes back when the vendor can standardize the address but has no
    enrichment data for it.
    """
    owner_name: str = ""
    first_name: str = ""
    last_name: str = ""
    company_name: str = ""
    is_company: bool = False
    mailing_address: PostalAddress = Field(default_factory=PostalAddress)
    property_address: PostalAddress = Field(default_factory=PostalAddress)
    parcel_id: str = ""
    property_type: str = "unknown"
    lot_size_acres: float = 0.0
    market_value: float = 0.0
    year_built: Optional[int] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    lookup_id: str = ""

    @property
    def has_owner(self) -> bool:
        return bool(self.owner_name.strip())

    @property
    def has_street(self) -> bool:
        return bool(self.property_address.street.strip())
