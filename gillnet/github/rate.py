"""Rate governor that parks the sync run when GitHub quota runs low.

One governor is shared by every fetch step of a run. Callers invoke
:meth:`RateGovernor.check_limits` before each quota-consuming request; when
the core quota drops below the low-water mark the governor sleeps until the
reset time plus a safety margin.
"""

from __future__ import annotations

import asyncio
import dataclasses
import math
import typing as typ

from gillnet.common.time import utcnow
from gillnet.logging import get_logger, log_warning

if typ.TYPE_CHECKING:
    import collections.abc as cabc
    import datetime as dt

    from .client import GitHubRestApi

logger = get_logger(__name__)

type StatusCallback = cabc.Callable[[str], None]
type SleepFn = cabc.Callable[[float], cabc.Awaitable[None]]
type Clock = cabc.Callable[[], dt.datetime]


@dataclasses.dataclass(frozen=True, slots=True)
class RateGovernorConfig:
    """Thresholds for the rate governor."""

    low_water_mark: int = 50
    safety_margin_s: int = 10


def compute_wait_seconds(
    reset_at: dt.datetime, now: dt.datetime, *, safety_margin_s: int
) -> int:
    """Return whole seconds to wait: time to reset (floored at 0) plus margin."""
    until_reset = max(math.ceil((reset_at - now).total_seconds()), 0)
    return until_reset + safety_margin_s


def _log_status(message: str) -> None:
    log_warning(logger, "%s", message)


class RateGovernor:
    """Track remaining API quota and suspend the caller when it is low."""

    def __init__(
        self,
        client: GitHubRestApi,
        *,
        config: RateGovernorConfig | None = None,
        status: StatusCallback | None = None,
        sleep: SleepFn | None = None,
        clock: Clock | None = None,
    ) -> None:
        """Bind the governor to a client; sleep and clock are injectable."""
        self._client = client
        self._config = config or RateGovernorConfig()
        self._status = status or _log_status
        self._sleep = sleep or asyncio.sleep
        self._clock = clock or utcnow
        self._lock = asyncio.Lock()
        self.checks = 0
        self.waits = 0

    async def check_limits(self) -> None:
        """Query quota and sleep until reset when it is under the low-water mark.

        Errors from the quota call propagate; the governor never assumes a
        remaining quota it could not read.
        """
        async with self._lock:
            self.checks += 1
            snapshot = await self._client.rate_limit()
            if snapshot.remaining >= self._config.low_water_mark:
                return
            wait_s = compute_wait_seconds(
                snapshot.reset_at,
                self._clock(),
                safety_margin_s=self._config.safety_margin_s,
            )
            self.waits += 1
            self._status(
                f"Rate limit low (remaining={snapshot.remaining}). "
                f"Sleeping {wait_s}s..."
            )
            await self._sleep(wait_s)
