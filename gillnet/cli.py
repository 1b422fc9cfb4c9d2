"""Command-line entry point for mirror sync, sweep and checkpoint health.

Run ``python -m gillnet.cli sync`` from a daily cron job, followed by an
occasional ``sweep``. Configuration comes from the environment; see
:class:`gillnet.config.GillnetConfig`.
"""

from __future__ import annotations

import argparse
import asyncio
import sys
import typing as typ

import httpx
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from gillnet.config import ConfigError, GillnetConfig
from gillnet.github.client import GitHubRestClient, GitHubRestConfig
from gillnet.github.errors import (
    GitHubAPIError,
    GitHubConfigError,
    GitHubResponseShapeError,
)
from gillnet.github.pagination import PaginatedFetcher
from gillnet.github.rate import RateGovernor
from gillnet.logging import (
    configure_logging,
    get_logger,
    log_exception,
    log_info,
    log_warning,
)
from gillnet.metrics import MetricsAggregator, init_metrics_storage
from gillnet.mirror import CheckpointHealthService, init_mirror_storage
from gillnet.sync import (
    OrganisationSync,
    Sweeper,
    SyncError,
    list_eligible_repositories,
)

if typ.TYPE_CHECKING:
    import collections.abc as cabc

    from sqlalchemy.ext.asyncio import AsyncSession

    from gillnet.github.client import GitHubRestApi
    from gillnet.github.models import RepositoryInfo

logger = get_logger(__name__)

_FAILURES: tuple[type[BaseException], ...] = (
    SyncError,
    GitHubAPIError,
    GitHubResponseShapeError,
    httpx.HTTPError,
    SQLAlchemyError,
)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="gillnet", description=__doc__)
    parser.add_argument(
        "--db-path",
        default=None,
        help="SQLite file for the mirror (overrides GILLNET_DB_PATH)",
    )
    commands = parser.add_subparsers(dest="command", required=True)
    commands.add_parser(
        "sync", help="Mirror activity since each checkpoint, then recompute metrics"
    )
    commands.add_parser(
        "sweep", help="Close or soft-delete issues no longer open on GitHub"
    )
    commands.add_parser(
        "health", help="Report repositories whose checkpoint is stale"
    )
    return parser


def _announce(verb: str) -> cabc.Callable[[RepositoryInfo], None]:
    def announce(info: RepositoryInfo) -> None:
        log_info(logger, "%s %s", verb, info.slug)

    return announce


async def _sync(
    config: GillnetConfig,
    session_factory: async_sessionmaker[AsyncSession],
    client: GitHubRestApi,
    governor: RateGovernor,
) -> int:
    results = await OrganisationSync(
        session_factory, client, governor, org=config.org
    ).sync(on_repository=_announce("Syncing"))
    aggregation = await MetricsAggregator(session_factory).recompute()
    log_info(
        logger,
        "Synced %d repositories; recomputed %d metric rows from %s to %s",
        len(results),
        aggregation.rows_written,
        aggregation.window_start.isoformat(),
        aggregation.window_end.isoformat(),
    )
    return 0


async def _sweep(
    config: GillnetConfig,
    session_factory: async_sessionmaker[AsyncSession],
    client: GitHubRestApi,
    governor: RateGovernor,
) -> int:
    results = await Sweeper(
        session_factory, client, governor, org=config.org
    ).sweep_org(on_repository=_announce("Sweeping"))
    log_info(
        logger,
        "Swept %d repositories: %d closed, %d deleted",
        len(results),
        sum(result.closed for result in results),
        sum(result.deleted for result in results),
    )
    return 0


async def _health(
    config: GillnetConfig,
    session_factory: async_sessionmaker[AsyncSession],
    client: GitHubRestApi,
    governor: RateGovernor,
) -> int:
    repos = await list_eligible_repositories(
        PaginatedFetcher(client, governor), config.org
    )
    stale = await CheckpointHealthService(session_factory).get_stale_repositories(
        config.org, [info.name for info in repos]
    )
    for health in stale:
        log_warning(
            logger,
            "Stale checkpoint for %s/%s (last_sync=%s)",
            config.org,
            health.repo,
            health.last_sync.isoformat() if health.last_sync else "never",
        )
    log_info(logger, "%d of %d repositories stale", len(stale), len(repos))
    return 1 if stale else 0


_COMMANDS = {"sync": _sync, "sweep": _sweep, "health": _health}


async def run_command(
    command: str, config: GillnetConfig, github: GitHubRestConfig
) -> int:
    """Open storage and the GitHub client, run ``command`` and clean up."""
    engine = create_async_engine(config.database_url)
    client: GitHubRestClient | None = None
    try:
        await init_mirror_storage(engine)
        await init_metrics_storage(engine)
        session_factory = async_sessionmaker(engine, expire_on_commit=False)
        client = GitHubRestClient(github)
        governor = RateGovernor(client, config=config.rate)
        return await _COMMANDS[command](config, session_factory, client, governor)
    finally:
        if client is not None:
            await client.aclose()
        await engine.dispose()


def main(argv: list[str] | None = None) -> int:
    """Parse arguments, configure logging and run the selected command.

    Returns
    -------
    int
        Exit code: 0 on success, 1 when configuration or the run fails.

    """
    args = _build_parser().parse_args(argv)
    try:
        config = GillnetConfig.from_env().with_db_path(args.db_path)
        github = GitHubRestConfig.from_env()
    except (ConfigError, GitHubConfigError) as exc:
        print(f"Configuration error: {exc}", file=sys.stderr)
        return 1

    normalized_level, invalid_level = configure_logging(config.log_level)
    if invalid_level:
        log_warning(
            logger,
            "Invalid GILLNET_LOG_LEVEL %r, falling back to %s",
            config.log_level,
            normalized_level,
        )

    try:
        return asyncio.run(run_command(args.command, config, github))
    except _FAILURES as exc:
        log_exception(logger, f"gillnet {args.command} failed: {exc}", exc)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
