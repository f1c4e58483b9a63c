"""Command-line entry point: ``docbench {load,run} STORE [BATCH_SIZE]``."""

from __future__ import annotations

import argparse
import logging
import os
import sys
from pathlib import Path
from typing import Callable, List, Optional, Sequence, TextIO

from .config import ACTIONS, BenchConfig, load_toml, resolve_config
from .driver import ConcurrentDriver, RunResult
from .errors import ConfigError
from .generator import user_ids
from .report import throughput
from .retry import TransactionExecutor
from .stores import DIALECTS, StoreDialect, create_pool
from .workloads import InsertUserDocuments, QueryUserDocuments

EXIT_OK = 0
EXIT_RUN_FAILED = 1
EXIT_CONFIG = 2


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="docbench",
        description="Document ingestion and lookup load generator for serializable SQL stores.",
    )
    parser.add_argument("action", choices=ACTIONS, help="'load' inserts documents, 'run' queries them.")
    parser.add_argument("store", choices=sorted(DIALECTS), help="Store dialect / connection target.")
    parser.add_argument(
        "batch_size",
        nargs="?",
        type=int,
        help="run only: 0 = single-document lookups, 1-n = documents per batch lookup.",
    )
    parser.add_argument("--config", help="Path to TOML config (default: config/docbench.toml).")
    parser.add_argument(
        "--allow-env-overrides",
        action="store_true",
        help="Allow DOCBENCH_* environment variables to override config keys (default: off).",
    )
    parser.add_argument("--url", help="Connection URL (overrides config).")
    parser.add_argument("--users", type=int, help="Number of synthetic users (default: 100).")
    parser.add_argument("--iterations", type=int, help="Queries per user for run (default: 100).")
    parser.add_argument("--seed", type=int, help="Seed for user and document identifiers (default: 0).")
    parser.add_argument("--pool-size", type=int, help="Connection pool capacity (default: 64).")
    parser.add_argument("--workers", type=int, help="Concurrent user tasks (default: pool size).")
    parser.add_argument(
        "--max-attempts",
        type=int,
        help="Give up on a conflicting transaction after N attempts (0 = retry forever).",
    )
    parser.add_argument("--backoff-base", type=float, help="Initial retry backoff in seconds (0 = none).")
    parser.add_argument("--backoff-max", type=float, help="Retry backoff ceiling in seconds.")
    parser.add_argument("--jitter", action="store_true", help="Randomize retry backoff.")
    parser.add_argument(
        "--continue-on-failure",
        action="store_true",
        help="Keep running other users when one fails (default: abort immediately).",
    )
    parser.add_argument("--deadline", type=float, help="Stop waiting for the run after N seconds.")
    parser.add_argument("--log-level", help="DEBUG, INFO, WARNING or ERROR (default: INFO).")
    parser.add_argument("--log-file", help="Also write the log to this file.")
    return parser.parse_args(argv)


def configure_logging(level: str, log_file: Optional[str]) -> Optional[Path]:
    """Set up logging to stdout and, when requested, tee the stream to a log file."""
    handlers: List[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    log_path: Optional[Path] = None
    if log_file:
        log_path = Path(log_file).expanduser()
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_path))
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(message)s",
        handlers=handlers,
        force=True,
    )
    return log_path


def log_config_summary(
    config: BenchConfig, env_overrides: Sequence[str], ignored_env: Sequence[str]
) -> None:
    logging.info(
        "[config] action=%s store=%s users=%d iterations=%d batch_size=%d seed=%d",
        config.action,
        config.store,
        config.users,
        config.iterations,
        config.batch_size,
        config.seed,
    )
    logging.info(
        "[config] pool_size=%d workers=%d max_attempts=%s backoff=%.3fs..%.3fs jitter=%s "
        "continue_on_failure=%s deadline=%s",
        config.pool_size,
        config.workers,
        config.retry.max_attempts or "unbounded",
        config.retry.backoff_base,
        config.retry.backoff_max,
        config.retry.jitter,
        config.continue_on_failure,
        f"{config.deadline:.0f}s" if config.deadline else "none",
    )
    if config.retry.max_attempts is None:
        logging.info("[config] conflicts are retried without limit; a hot workload can livelock")
    if env_overrides:
        logging.info("[config] Environment overrides applied: %s", ", ".join(env_overrides))
    elif ignored_env:
        logging.info(
            "[config] Ignored env overrides: %s (use --allow-env-overrides to enable)",
            ", ".join(ignored_env),
        )


def build_task_factory(config: BenchConfig, dialect: StoreDialect):
    if config.action == "load":
        executor = TransactionExecutor(dialect, config.retry)
        return InsertUserDocuments(dialect, executor, config.seed)
    return QueryUserDocuments(dialect, config.seed, config.batch_size, config.iterations)


def summarize(config: BenchConfig, result: RunResult) -> None:
    totals = result.totals()
    logging.info(
        "[%s] COMPLETE: %d/%d users ok, %d failed, %d skipped, rows_written=%d rows_read=%d "
        "statements=%d attempts=%d in %.2fs",
        config.action,
        result.completed,
        result.scheduled,
        len(result.failures),
        result.skipped,
        totals.rows_written,
        totals.rows_read,
        totals.statements,
        totals.attempts,
        result.elapsed,
    )
    for outcome in result.failures:
        logging.error("[%s][user %s] %s", config.action, outcome.user_id, outcome.error)


def abandon_workers(code: int) -> None:
    """Exit now, without joining worker threads still blocked on the store."""
    logging.shutdown()
    sys.stdout.flush()
    sys.stderr.flush()
    os._exit(code)


def run_benchmark(
    config: BenchConfig,
    pool,
    out: TextIO = sys.stdout,
    on_deadline: Optional[Callable[[int], None]] = None,
) -> int:
    """Drive the configured workload over ``pool`` and print throughput.

    ``on_deadline`` is called with the exit code when the deadline passed
    while tasks were still running.
    """
    dialect = DIALECTS[config.store]
    factory = build_task_factory(config, dialect)
    driver = ConcurrentDriver(
        pool,
        config.workers,
        fail_fast=not config.continue_on_failure,
        deadline=config.deadline,
        progress_interval=config.progress_interval,
        label=config.action,
    )
    result = driver.run(user_ids(config.seed, config.users), factory)
    summarize(config, result)

    if result.deadline_exceeded:
        logging.error("[%s] exiting without waiting for running user tasks", config.action)
        if on_deadline is not None:
            on_deadline(EXIT_RUN_FAILED)
        return EXIT_RUN_FAILED
    if result.failures and not config.continue_on_failure:
        logging.error("[%s] aborted: a user task failed", config.action)
        return EXIT_RUN_FAILED

    report = throughput(
        config.action,
        result.completed,
        factory.transactions_per_task,
        config.batch_size,
        result.elapsed,
    )
    for line in report.lines():
        print(line, file=out)
    return EXIT_OK if result.succeeded else EXIT_RUN_FAILED


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = parse_args(argv)
    try:
        config, env_overrides, ignored_env = resolve_config(args, load_toml(args.config))
    except ConfigError as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        return EXIT_CONFIG
    log_path = configure_logging(config.log_level, config.log_file)
    if log_path:
        logging.info("Logging to %s", log_path)
    log_config_summary(config, env_overrides, ignored_env)

    pool = create_pool(DIALECTS[config.store], config.url, config.pool_size, config.acquire_timeout)
    try:
        # past the deadline the process exits here; running tasks keep their connections
        return run_benchmark(config, pool, on_deadline=abandon_workers)
    finally:
        pool.close()


if __name__ == "__main__":
    sys.exit(main())
