"""Entity matching configuration values."""

from __future__ import annotations

from dataclasses import dataclass

from .env import env_flag, env_int, optional_env_var
from .http_resilience import ResilienceConfig, StatusRetryPolicy

OPENAI_BASE_URL = "https://api.openai.com/v1"
DEFAULT_OPENAI_MODEL = "gpt-4o-mini"
DEFAULT_RADIUS_METERS = 100
DEFAULT_LOOKBACK_DAYS = 90
DEFAULT_CANDIDATE_LIMIT = 10


@dataclass(frozen=True, slots=True)
class ClassifierConfig:
    api_key: str
    model: str
    resilience: ResilienceConfig
    temperature: float = 0.1
    max_tokens: int = 300


@dataclass(frozen=True, slots=True)
class MatchingConfig:
    """Heuristic matching is active only when ``classifier`` is present."""

    radius_meters: int = DEFAULT_RADIUS_METERS
    lookback_days: int = DEFAULT_LOOKBACK_DAYS
    candidate_limit: int = DEFAULT_CANDIDATE_LIMIT
    classifier: ClassifierConfig | None = None

    @property
    def heuristic_enabled(self) -> bool:
        return self.classifier is not None


def get_matching_config() -> MatchingConfig:
    api_key = optional_env_var("OPENAI_API_KEY")
    enabled = env_flag("LLM_MATCHING_ENABLED", default=False)

    classifier: ClassifierConfig | None = None
    if enabled and api_key:
        classifier = ClassifierConfig(
            api_key=api_key,
            model=optional_env_var("OPENAI_MODEL", DEFAULT_OPENAI_MODEL) or DEFAULT_OPENAI_MODEL,
            resilience=ResilienceConfig(
                name="openai",
                base_url=OPENAI_BASE_URL,
                timeout_seconds=60.0,
                status_retry=StatusRetryPolicy(max_attempts=4, rate_limit_default_wait=2.0),
                default_headers={"Authorization": f"Bearer {api_key}"},
            ),
        )

    return MatchingConfig(
        radius_meters=env_int("MATCHING_RADIUS_METERS", default=DEFAULT_RADIUS_METERS),
        lookback_days=env_int("MATCHING_LOOKBACK_DAYS", default=DEFAULT_LOOKBACK_DAYS),
        classifier=classifier,
    )
