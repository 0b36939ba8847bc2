"""Process-wide configuration loaded once from the environment."""
from __future__ import annotations

import os
from dataclasses import dataclass
from typing import List, Mapping, Optional

from fipe_etl.errors import ConfigError

DEFAULT_BASE_URL = "https://veiculos.fipe.org.br/api/veiculos"
DEFAULT_CLASSIFIER_MODEL = "claude-3-5-haiku-latest"


@dataclass(frozen=True)
class CrawlerConfig:
    """Settings for the FIPE client, the store and the classifier."""

    database_url: str
    rate_limit_ms: int = 200
    max_retries: int = 3
    request_timeout: float = 30.0
    retry_backoff: float = 1.0
    base_url: str = DEFAULT_BASE_URL
    anthropic_api_key: Optional[str] = None
    classifier_model: str = DEFAULT_CLASSIFIER_MODEL

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> CrawlerConfig:
        """Build configuration from environment variables.

        Parameters
        ----------
        env : mapping, optional
            Source of variables (defaults to ``os.environ``)

        Raises
        ------
        ConfigError
            Listing every missing or invalid variable
        """
        env = os.environ if env is None else env
        problems: List[str] = []

        database_url = (env.get("DATABASE_URL") or "").strip()
        if not database_url:
            problems.append("DATABASE_URL is not set")
        elif not database_url.startswith(("postgres://", "postgresql://")):
            problems.append("DATABASE_URL must be a postgres:// or postgresql:// URL")

        rate_limit_ms = _int_var(env, "RATE_LIMIT_MS", 200, problems)
        max_retries = _int_var(env, "MAX_RETRIES", 3, problems, minimum=1)
        timeout = _int_var(env, "FIPE_TIMEOUT", 30, problems, minimum=1)

        if problems:
            raise ConfigError("Invalid environment variables: " + "; ".join(problems))

        return cls(
            database_url=database_url,
            rate_limit_ms=rate_limit_ms,
            max_retries=max_retries,
            request_timeout=float(timeout),
            base_url=(env.get("FIPE_BASE_URL") or DEFAULT_BASE_URL).rstrip("/"),
            anthropic_api_key=env.get("ANTHROPIC_API_KEY") or None,
            classifier_model=env.get("CLASSIFIER_MODEL") or DEFAULT_CLASSIFIER_MODEL,
        )


def _int_var(
    env: Mapping[str, str],
    name: str,
    default: int,
    problems: List[str],
    minimum: int = 0,
) -> int:
    raw = env.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        problems.append(f"{name} must be an integer (got {raw!r})")
        return default
    if value < minimum:
        problems.append(f"{name} must be >= {minimum} (got {value})")
    return value
