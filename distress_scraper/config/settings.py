"""Configuration settings for the distressed-property scraper."""

from typing import Optional
from pydantic_settings import BaseSettings
from pydantic import Field


class ScraperSettings(BaseSettings):
    """Scraper configuration."""

    # Request timeouts (seconds)
    request_timeout: float = Field(default=30.0)

    # User agent rotation
    rotate_user_agents: bool = Field(default=True)

    # Anti-detection jitter applied before every outbound call (seconds)
    random_delays: bool = Field(default=True)
    min_delay: float = Field(default=1.0)
    max_delay: float = Field(default=2.0)

    # Slower jitter for HTML sites that block aggressively
    html_min_delay: float = Field(default=3.0)
    html_max_delay: float = Field(default=5.0)

    # Recorder/treasurer sites
    county_min_delay: float = Field(default=3.0)
    county_max_delay: float = Field(default=6.0)
    county_lookback_days: int = Field(default=30)

    model_config = {"extra": "ignore", "env_prefix": "SCRAPER_"}


class ApiSettings(BaseSettings):
    """Credentials and quotas for keyed data providers."""

    rapidapi_key: Optional[str] = Field(default=None)
    rapidapi_zillow_host: str = Field(default="real-estate101.p.rapidapi.com")

    attom_api_key: Optional[str] = Field(default=None)
    attom_base_url: str = Field(default="https://api.gateway.attomdata.com/propertyapi/v1.0.0")
    attom_max_requests: int = Field(default=50)
    attom_window_seconds: float = Field(default=60.0)

    model_config = {"extra": "ignore"}


class GeocoderSettings(BaseSettings):
    """Nominatim geocoder configuration."""

    geocoder_url: str = Field(default="https://nominatim.openstreetmap.org/search")
    geocoder_user_agent: str = Field(default="DistressScraper/1.0 (property research tool)")
    geocoder_min_interval: float = Field(default=1.1)
    geocoder_timeout: float = Field(default=15.0)

    model_config = {"extra": "ignore"}


class ETLSettings(BaseSettings):
    """ETL configuration."""

    # Politeness delay between enriched records (seconds)
    enrich_min_delay: float = Field(default=0.5)
    enrich_max_delay: float = Field(default=1.0)

    # Persistence
    upsert_batch_size: int = Field(default=50)

    model_config = {"extra": "ignore"}


class DatabaseSettings(BaseSettings):
    """Database configuration."""

    database_url: str = Field(default="sqlite:///./data/properties.db")
    database_echo: bool = Field(default=False)

    model_config = {"extra": "ignore"}


class Settings(BaseSettings):
    """Main application settings."""

    # Environment
    environment: str = Field(default="development")

    # Logging
    log_level: str = Field(default="INFO")
    log_file: Optional[str] = Field(default=None)

    # Component settings
    scraper: ScraperSettings = ScraperSettings()
    api: ApiSettings = ApiSettings()
    geocoder: GeocoderSettings = GeocoderSettings()
    etl: ETLSettings = ETLSettings()
    database: DatabaseSettings = DatabaseSettings()

    model_config = {"extra": "ignore", "env_file": ".env", "env_file_encoding": "utf-8"}


# Global settings instance
settings = Settings()
