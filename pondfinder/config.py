"""Application configuration via environment variables."""

from typing import NamedTuple, Optional

from pydantic_settings import BaseSettings


class SmartyCredentials(NamedTuple):
    auth_id: str
    auth_token: str


class Settings(BaseSettings):
    # Smarty (address validation, reverse geocoding, property enrichment)
    smarty_auth_id: str = ""
    smarty_auth_token: str = ""
    smarty_street_url: str = "https://us-street.api.smarty.com/street-address"
    smarty_reverse_geo_url: str = "https://us-reverse-geo.api.smarty.com/lookup"
    smarty_property_url: str = "https://us-enrichment.api.smarty.com/lookup"

    # US Census Bureau (key is optional, lower rate limit without one)
    census_api_key: str = ""
    census_acs_year: str = "2022"
    census_max_bbox_span_degrees: float = 2.0

    # Outbound HTTP
    http_timeout_seconds: float = 30.0
    http_connect_timeout_seconds: float = 10.0

    # Result caches
    vendor_cache_ttl_seconds: float = 3600.0
    vendor_cache_max_entries: int = 1024
    census_cache_ttl_seconds: float = 1800.0
    census_cache_max_entries: int = 20

    # Property resolution
    resolver_max_radius_meters: float = 500.0

    # Job processing
    job_concurrency: int = 2
    batch_item_delay_seconds: float = 0.2
    region_cell_size_degrees: float = 0.1
    job_retention_hours: int = 24
    job_store_mode: str = "memory"  # "memory" or "supabase"

    # Supabase (only when job_store_mode=supabase)
    supabase_url: str = ""
    supabase_service_role_key: str = ""
    supabase_jobs_table: str = "jobs"

    log_level: str = "INFO"

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}

    def smarty_credentials(self) -> Optional[SmartyCredentials]:
        """Smarty auth pair, or None when either half is missing."""
        if not self.smarty_auth_id or not self.smarty_auth_token:
            return None
        return SmartyCredentials(self.smarty_auth_id, self.smarty_auth_token)


settings = Settings()


def reload_settings() -> Settings:
    """Re-read the environment, e.g. after rotating vendor credentials.

    Components hold the Settings they were built with; callers push the new
    values into them (see SmartyClient.configure).
    """
    global settings
    settings = Settings()
    return settings
