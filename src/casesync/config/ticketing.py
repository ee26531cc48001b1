"""Ticketing API configuration values."""

from __future__ import annotations

from dataclasses import dataclass

from .env import env_int, optional_env_var, require_env_vars
from .http_resilience import RateLimit, ResilienceConfig, StatusRetryPolicy

DEFAULT_CLOSE_STEP_ID = 41
DEFAULT_REFERENCE_SOURCE = "TrakIT"
TICKETING_TIMEOUT_SECONDS = 30.0
# The API allows roughly ten requests per second.
TICKETING_MIN_INTERVAL_SECONDS = 0.11


@dataclass(frozen=True, slots=True)
class TicketingConfig:
    """Connection details for the external ticketing system."""

    base_url: str
    api_token: str
    org_id: int
    resilience: ResilienceConfig
    close_step_id: int = DEFAULT_CLOSE_STEP_ID
    reference_source: str = DEFAULT_REFERENCE_SOURCE


def get_ticketing_config(*, resilience: ResilienceConfig | None = None) -> TicketingConfig:
    values = require_env_vars(("TICKETING_API_URL", "TICKETING_API_TOKEN", "TICKETING_ORG_ID"))
    base_url = values["TICKETING_API_URL"].rstrip("/")
    token = values["TICKETING_API_TOKEN"]
    org_id = env_int("TICKETING_ORG_ID", default=0)

    return TicketingConfig(
        base_url=base_url,
        api_token=token,
        org_id=org_id,
        close_step_id=env_int("TICKETING_CLOSE_STEP_ID", default=DEFAULT_CLOSE_STEP_ID),
        reference_source=optional_env_var("TICKETING_SOURCE", DEFAULT_REFERENCE_SOURCE)
        or DEFAULT_REFERENCE_SOURCE,
        resilience=resilience
        or ResilienceConfig(
            name="ticketing",
            base_url=base_url,
            timeout_seconds=TICKETING_TIMEOUT_SECONDS,
            ratelimit=RateLimit(max_calls=1, per_seconds=TICKETING_MIN_INTERVAL_SECONDS),
            status_retry=StatusRetryPolicy(max_attempts=3),
            default_headers={
                "Authorization": f"Bearer {token}",
                "Accept": "application/json",
            },
        ),
    )
