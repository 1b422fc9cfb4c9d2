"""Process configuration for sync, sweep and aggregation runs.

Usage
-----
Load from environment variables:

>>> import os
>>> os.environ["GILLNET_ORG"] = "strands-agents"
>>> config = GillnetConfig.from_env()
>>> config.database_url
'sqlite+aiosqlite:///metrics.db'

"""

from __future__ import annotations

import dataclasses as dc
import os

from gillnet.github.rate import RateGovernorConfig

DEFAULT_ORG = "strands-agents"
DEFAULT_DB_PATH = "metrics.db"
DEFAULT_LOG_LEVEL = "INFO"


class ConfigError(ValueError):
    """Raised when an environment value cannot be used."""

    @classmethod
    def not_an_integer(cls, env_var: str, raw: str) -> ConfigError:
        """Return an error for a value that does not parse as an integer."""
        return cls(f"{env_var} must be an integer, got: {raw!r}")

    @classmethod
    def negative(cls, env_var: str, value: int) -> ConfigError:
        """Return an error for a value below zero."""
        return cls(f"{env_var} must be non-negative, got: {value}")

    @classmethod
    def empty(cls, env_var: str) -> ConfigError:
        """Return an error for a value that is set but blank."""
        return cls(f"{env_var} must not be empty")


def _parse_non_negative_int(env_var: str, default: int) -> int:
    """Read a non-negative integer env var, falling back to a default."""
    raw = os.environ.get(env_var, "")
    if not raw.strip():
        return default
    try:
        value = int(raw)
    except ValueError as exc:
        raise ConfigError.not_an_integer(env_var, raw) from exc
    if value < 0:
        raise ConfigError.negative(env_var, value)
    return value


def _read_str(env_var: str, default: str) -> str:
    raw = os.environ.get(env_var)
    if raw is None:
        return default
    if not raw.strip():
        raise ConfigError.empty(env_var)
    return raw.strip()


@dc.dataclass(frozen=True, slots=True)
class GillnetConfig:
    """Settings shared by every command.

    Attributes
    ----------
    org
        GitHub organisation to mirror.
    db_path
        SQLite file holding the mirror and the daily metrics.
    log_level
        Raw log level; normalised when logging is configured.
    rate
        Rate governor thresholds.
    database_url_override
        Optional SQLAlchemy async URL used instead of ``db_path``.

    """

    org: str = DEFAULT_ORG
    db_path: str = DEFAULT_DB_PATH
    log_level: str = DEFAULT_LOG_LEVEL
    rate: RateGovernorConfig = dc.field(default_factory=RateGovernorConfig)
    database_url_override: str | None = None

    @property
    def database_url(self) -> str:
        """Return the async engine URL for the configured store."""
        if self.database_url_override:
            return self.database_url_override
        return f"sqlite+aiosqlite:///{self.db_path}"

    def with_db_path(self, db_path: str | None) -> GillnetConfig:
        """Return a copy pointing at ``db_path`` when one is given."""
        if db_path is None:
            return self
        return dc.replace(self, db_path=db_path, database_url_override=None)

    @classmethod
    def from_env(cls) -> GillnetConfig:
        """Create configuration from environment variables.

        Reads ``GILLNET_ORG``, ``GILLNET_DB_PATH``, ``GILLNET_DATABASE_URL``,
        ``GILLNET_LOG_LEVEL``, ``GILLNET_RATE_LOW_WATER`` and
        ``GILLNET_RATE_SAFETY_MARGIN_S``. The GitHub token is read separately
        by :meth:`gillnet.github.client.GitHubRestConfig.from_env`.

        Raises
        ------
        ConfigError
            If a value is blank or an integer setting is malformed or negative.

        """
        defaults = RateGovernorConfig()
        rate = RateGovernorConfig(
            low_water_mark=_parse_non_negative_int(
                "GILLNET_RATE_LOW_WATER", defaults.low_water_mark
            ),
            safety_margin_s=_parse_non_negative_int(
                "GILLNET_RATE_SAFETY_MARGIN_S", defaults.safety_margin_s
            ),
        )
        database_url = os.environ.get("GILLNET_DATABASE_URL", "").strip() or None
        return cls(
            org=_read_str("GILLNET_ORG", DEFAULT_ORG),
            db_path=_read_str("GILLNET_DB_PATH", DEFAULT_DB_PATH),
            log_level=os.environ.get("GILLNET_LOG_LEVEL", DEFAULT_LOG_LEVEL),
            rate=rate,
            database_url_override=database_url,
        )
