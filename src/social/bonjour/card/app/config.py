"""
Configuration Module for the Bonjour Card Registry

This module defines the configuration system for the service, using Pydantic for settings
validation and dependency injection through AppKeys.

The configuration follows these principles:
1. Environment-based configuration with sensible defaults
2. Strong validation and typing through Pydantic
3. Dependency injection pattern using aiohttp's app context

The Settings class serves as the central configuration point, loaded from environment variables
with defaults suitable for development environments. All application components access settings
and shared resources through typed AppKeys.

Key configuration areas include:
- Service identification and networking
- Database connection and content storage
- Identity token verification keys
- Handle format and read retry policy
- Monitoring and observability
"""

import os
import asyncio
from typing import Annotated, Final, Optional
import logging
from jwcrypto import jwk
from pydantic import (
    AliasChoices,
    Field,
    field_validator,
)
from pydantic_settings import BaseSettings, NoDecode
from aiohttp import web
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    async_sessionmaker,
    AsyncSession,
)

from social.bonjour.card.app.metrics import MetricsClient
from social.bonjour.card.content.store import ContentStore, DEFAULT_MAX_BLOB_SIZE
from social.bonjour.card.model.handles import HANDLE_MAX_LENGTH
from social.bonjour.card.model.health import HealthGauge
from social.bonjour.card.registry.handles import HandlePolicy, HandleRegistry
from social.bonjour.card.registry.pipeline import PublicationPipeline
from social.bonjour.card.registry.profiles import ProfileStore
from social.bonjour.card.resolve.publication import Resolver


logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """
    Application settings for the Bonjour card registry.

    This class uses Pydantic's BaseSettings to automatically load values from environment
    variables, with defaults for development environments.

    Environment variables are automatically mapped to settings fields, with aliases
    provided where deployments use a different name. For example, the database connection
    string can be set with either DATABASE_URL or PG_DSN.
    """

    debug: bool = False
    """
    Enable debug mode for verbose logging and detailed error responses.
    Set with DEBUG=true environment variable.
    """

    http_port: int = Field(alias="port", default=5100)
    """
    HTTP port for the service to listen on.
    Set with PORT environment variable.
    """

    base_url: str = "https://bonjour.walrus.site"
    """
    Public base URL; cards are served at {base_url}/{handle}.html.
    Set with BASE_URL environment variable.
    """

    sentry_dsn: Optional[str] = None
    """
    Sentry DSN for error reporting. Optional, no error reporting if not set.
    Set with SENTRY_DSN environment variable.
    """

    database_url: str = Field(
        "postgresql+asyncpg://postgres:password@db/bonjour",
        validation_alias=AliasChoices("database_url", "pg_dsn"),
    )
    """
    SQLAlchemy async connection string.
    Set with DATABASE_URL or PG_DSN environment variables.
    Use sqlite+aiosqlite:///path.db for local development.
    """

    json_web_keys: Annotated[jwk.JWKSet, NoDecode] = jwk.JWKSet()
    """
    JSON Web Key Set used to verify identity tokens issued by the wallet auth service.
    Can be set to a JWKSet object or path to a JSON file containing keys.
    Set with JSON_WEB_KEYS environment variable.
    """

    content_backend: str = "database"
    """
    Where avatar blobs are stored: 'database' or 'filesystem'.
    Set with CONTENT_BACKEND environment variable.
    """

    content_path: str = os.path.join(os.getcwd(), "blobs")
    """
    Root directory of the 'filesystem' content backend.
    Set with CONTENT_PATH environment variable.
    """

    max_blob_size: int = DEFAULT_MAX_BLOB_SIZE
    """
    Maximum avatar size in bytes.
    Set with MAX_BLOB_SIZE environment variable.
    Default: 52428800 (50 MiB)
    """

    handle_min_length: int = 1
    handle_max_length: int = Field(
        default=HANDLE_MAX_LENGTH, ge=1, le=HANDLE_MAX_LENGTH
    )
    handle_pattern: str = r"^[A-Za-z0-9_-]+$"
    """
    Handle format. The pattern is matched before the handle is lower-cased.
    HANDLE_MAX_LENGTH cannot exceed the 150 characters the handle column holds.
    Set with HANDLE_MIN_LENGTH, HANDLE_MAX_LENGTH and HANDLE_PATTERN.
    """

    history_page_size: int = 50
    """Number of profile versions fetched per page when iterating a history."""

    read_retry_attempts: int = 3
    """
    Attempts made by read operations before a transient storage error is raised.
    Set with READ_RETRY_ATTEMPTS environment variable.
    """

    read_retry_base_delay: float = 0.05
    """
    Initial backoff in seconds between read attempts, doubled after each failure.
    Set with READ_RETRY_BASE_DELAY environment variable.
    """

    metrics_backend: str = "telegraf"
    """
    Metrics backend: 'telegraf' or 'none'.
    Set with METRICS_BACKEND environment variable.
    """

    statsd_host: str = Field(alias="TELEGRAF_HOST", default="telegraf")
    """
    StatsD/Telegraf host for metrics collection.
    Set with TELEGRAF_HOST environment variable.
    """

    statsd_port: int = Field(alias="TELEGRAF_PORT", default=8125)
    """
    StatsD/Telegraf port for metrics collection.
    Set with TELEGRAF_PORT environment variable.
    """

    templates_path: str = os.path.join(os.getcwd(), "templates")
    """
    Directory holding the Jinja2 templates for public card pages.
    Set with TEMPLATES_PATH environment variable.
    """

    @field_validator("json_web_keys", mode="before")
    @classmethod
    def decode_json_web_keys(cls, v) -> jwk.JWKSet:
        """
        Validate and process the json_web_keys setting.

        This validator accepts either:
        - An existing JWKSet object (for programmatic configuration)
        - A file path to a JSON file containing a JWK Set

        Raises:
            ValueError: If the input is neither a JWKSet nor a valid file path
        """
        if isinstance(v, jwk.JWKSet):
            return v
        elif isinstance(v, str):
            with open(v) as fd:
                data = fd.read()
                return jwk.JWKSet.from_json(data)
        raise ValueError(
            "json_web_keys must be a JWKSet object or a valid JSON file path"
        )

    @field_validator("content_backend", "metrics_backend")
    @classmethod
    def lower_backend(cls, v: str) -> str:
        return v.lower()

    def handle_policy(self) -> HandlePolicy:
        return HandlePolicy(
            min_length=self.handle_min_length,
            max_length=self.handle_max_length,
            pattern=self.handle_pattern,
        )


# Application context keys for dependency injection
SettingsAppKey: Final = web.AppKey("settings", Settings)
"""AppKey for accessing the application settings"""

DatabaseAppKey: Final = web.AppKey("database", AsyncEngine)
"""AppKey for accessing the SQLAlchemy async database engine"""

DatabaseSessionMakerAppKey: Final = web.AppKey(
    "database_session_maker", async_sessionmaker[AsyncSession]
)
"""AppKey for accessing the SQLAlchemy async session factory"""

ContentStoreAppKey: Final = web.AppKey("content_store", ContentStore)
"""AppKey for accessing the avatar content store"""

HandleRegistryAppKey: Final = web.AppKey("handle_registry", HandleRegistry)
"""AppKey for accessing the handle registry"""

ProfileStoreAppKey: Final = web.AppKey("profile_store", ProfileStore)
"""AppKey for accessing the versioned profile store"""

ResolverAppKey: Final = web.AppKey("resolver", Resolver)
"""AppKey for accessing the publication resolver"""

PublicationPipelineAppKey: Final = web.AppKey(
    "publication_pipeline", PublicationPipeline
)
"""AppKey for accessing the publication pipeline"""

HealthGaugeAppKey: Final = web.AppKey("health_gauge", HealthGauge)
"""AppKey for accessing the health monitoring gauge"""

TickHealthTaskAppKey: Final = web.AppKey("tick_health_task", asyncio.Task[None])
"""AppKey for the background task that decays the health gauge"""

MetricsClientAppKey: Final = web.AppKey("metrics_client", MetricsClient)
"""AppKey for accessing the metrics client"""
