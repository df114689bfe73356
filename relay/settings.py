from __future__ import annotations

"""Application-level configuration (env → validated ``Settings``).

Environment keys are matched case-insensitively, so ``BIGQUERY_PROJECT`` and
``bigquery_project`` are the same setting.  Validation happens once when the
app is created; a half-configured destination keeps the process from serving.
"""

# Standard library
import os
from functools import lru_cache
from typing import Dict, List, Mapping, Optional

from pydantic import BaseModel, Field

from relay import APP_ENV
from relay.errors import ConfigurationError
from relay.models import TableNames

__all__ = [
    "KNOWN_DESTINATIONS",
    "REQUIRED_SETTINGS",
    "Settings",
    "load_settings",
    "get_settings",
    "allowed_origins",
]

DEFAULT_DESTINATION = "mixpanel"

KNOWN_DESTINATIONS = ("mixpanel", "bigquery", "snowflake", "redshift", "s3", "gcs", "azure")

# Keys each destination cannot run without (checked in this order)
REQUIRED_SETTINGS: Dict[str, tuple[str, ...]] = {
    "mixpanel": (),
    "bigquery": ("bigquery_project", "bigquery_dataset"),
    "snowflake": (
        "snowflake_account",
        "snowflake_user",
        "snowflake_password",
        "snowflake_database",
        "snowflake_schema",
        "snowflake_warehouse",
        "snowflake_role",
    ),
    "redshift": (
        "redshift_workgroup",
        "redshift_database",
        "redshift_access_key_id",
        "redshift_secret_access_key",
        "redshift_region",
        "redshift_schema_name",
    ),
    "s3": ("s3_bucket", "s3_region", "s3_access_key_id", "s3_secret_access_key"),
    "gcs": ("gcs_project", "gcs_bucket"),
    "azure": ("azure_account", "azure_container"),
}


class Settings(BaseModel):
    """Validated runtime configuration."""

    app_env: str = "production"
    destinations: List[str] = Field(default_factory=lambda: [DEFAULT_DESTINATION])
    table_names: TableNames = Field(default_factory=TableNames)
    queue_max: int = 0
    queue_interval: int = 600
    max_retries: int = 5
    frontend_url: str = ""
    rate_limit: str = "1000/minute"
    mixpanel_region: str = "US"
    mixpanel_token: str = ""
    # Lower-cased, non-empty env values; sinks read their credential blocks here
    params: Dict[str, str] = Field(default_factory=dict)

    @property
    def is_production(self) -> bool:
        return self.app_env.lower() not in {"dev", "development", "test", "local"}

    @property
    def queue_enabled(self) -> bool:
        return self.queue_max > 0

    def get(self, key: str, default: str = "") -> str:
        return self.params.get(key.lower(), default)

    def credentials(self, destination: str) -> Dict[str, str]:
        """Every ``<destination>_*`` setting with the prefix stripped."""
        prefix = f"{destination}_"
        return {k[len(prefix):]: v for k, v in self.params.items() if k.startswith(prefix)}


def _normalise_env(environ: Mapping[str, Optional[str]]) -> Dict[str, str]:
    params: Dict[str, str] = {}
    for key, value in environ.items():
        if value is None or value == "":
            continue
        params[key.lower()] = value
    return params


def _split_names(*values: str) -> List[str]:
    names: List[str] = []
    for value in values:
        for name in value.split(","):
            name = name.strip().lower()
            if name and name not in names:
                names.append(name)
    return names


def _int(params: Mapping[str, str], key: str, default: int) -> int:
    raw = params.get(key)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ConfigurationError(f"{key} must be an integer") from exc


def _validate_destinations(destinations: List[str], params: Mapping[str, str]) -> None:
    errors: List[str] = []
    for name in destinations:
        if name not in REQUIRED_SETTINGS:
            errors.append(f"unknown destination: {name}")
            continue
        for key in REQUIRED_SETTINGS[name]:
            if not params.get(key):
                errors.append(f"{key} is required")

    if "azure" in destinations and not (params.get("azure_key") or params.get("azure_connection_string")):
        errors.append("azure_key or azure_connection_string is required")

    if errors:
        raise ConfigurationError(errors[0])


def load_settings(environ: Optional[Mapping[str, Optional[str]]] = None) -> Settings:
    """Build and validate ``Settings`` from an env mapping (``os.environ`` by default)."""

    params = _normalise_env(os.environ if environ is None else environ)

    destinations = _split_names(
        params.get("destinations", ""),
        params.get("warehouses", ""),
        params.get("lakes", ""),
    ) or [DEFAULT_DESTINATION]
    _validate_destinations(destinations, params)

    frontend_url = params.get("frontend_url", "")
    if frontend_url == "none":
        frontend_url = ""

    return Settings(
        app_env=params.get("app_env", APP_ENV),
        destinations=destinations,
        table_names=TableNames(
            event_table=params.get("events_table_name", "events"),
            user_table=params.get("users_table_name", "users"),
            group_table=params.get("groups_table_name", "groups"),
        ),
        queue_max=max(_int(params, "queue_max", 0), 0),
        queue_interval=_int(params, "queue_interval", 600) or 600,
        max_retries=max(_int(params, "max_retries", 5), 1),
        frontend_url=frontend_url,
        rate_limit=params.get("rate_limit", "1000/minute"),
        mixpanel_region=params.get("mixpanel_region", "US").upper(),
        mixpanel_token=params.get("mixpanel_token", ""),
        params=params,
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return load_settings()


def allowed_origins(settings: Settings) -> list[str]:
    """CORS allow-list: the configured front-end only, or any origin."""
    if settings.frontend_url:
        return [settings.frontend_url]
    return ["*"]
