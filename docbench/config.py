"""Resolve run settings from CLI flags, environment and the TOML config."""

from __future__ import annotations

import argparse
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

try:  # Python 3.11+
    import tomllib  # type: ignore
except ModuleNotFoundError:  # pragma: no cover - fallback for 3.10
    import tomli as tomllib  # type: ignore

from .errors import ConfigError
from .retry import RetryPolicy
from .stores import DEFAULT_ACQUIRE_TIMEOUT, DEFAULT_POOL_SIZE, get_dialect

ACTIONS: Tuple[str, ...] = ("load", "run")
DEFAULT_CONFIG_PATH = Path(__file__).resolve().parent.parent / "config" / "docbench.toml"
DEFAULT_USERS = 100
DEFAULT_RUN_ITERATIONS = 100
DEFAULT_SEED = 0
DEFAULT_PROGRESS_INTERVAL = 10


@dataclass(frozen=True)
class BenchConfig:
    action: str
    store: str
    url: str
    batch_size: int
    users: int
    iterations: int
    seed: int
    pool_size: int
    workers: int
    acquire_timeout: float
    continue_on_failure: bool
    deadline: Optional[float]
    progress_interval: int
    retry: RetryPolicy
    log_level: str
    log_file: Optional[str]


def load_toml(path: Optional[str]) -> Dict[str, Any]:
    """Parse the TOML config; a missing default file means built-in defaults."""
    config_path = Path(path).expanduser() if path else DEFAULT_CONFIG_PATH
    if not config_path.exists():
        if path:
            raise ConfigError(f"Config file not found: {config_path}")
        return {}
    try:
        return tomllib.loads(config_path.read_text(encoding="utf-8"))
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(f"Invalid TOML in {config_path}: {exc}") from exc


def _section(raw: Mapping[str, Any], key: str) -> Mapping[str, Any]:
    value = raw.get(key, {})
    if not isinstance(value, dict):
        raise ConfigError(f"Config key {key} must be a table.")
    return value


def resolve_config(
    args: argparse.Namespace,
    raw: Mapping[str, Any],
    environ: Optional[Mapping[str, str]] = None,
) -> Tuple[BenchConfig, List[str], List[str]]:
    """Merge CLI > env (when allowed) > TOML > defaults and validate the result.

    Returns the config plus the environment variables applied and ignored.
    """
    env = os.environ if environ is None else environ
    env_overrides: List[str] = []
    ignored_env: List[str] = []
    env_allowed = bool(getattr(args, "allow_env_overrides", False))

    def pick(
        cli_value: Optional[Any],
        config_value: Optional[Any],
        env_name: Optional[str] = None,
        cast: Optional[Callable[[str], Any]] = None,
    ) -> Optional[Any]:
        if cli_value is not None:
            return cli_value
        if env_name:
            env_val = env.get(env_name)
            if env_val not in (None, ""):
                if env_allowed:
                    env_overrides.append(env_name)
                    try:
                        return cast(env_val) if cast else env_val
                    except ValueError as exc:
                        raise ConfigError(f"Invalid value for {env_name}: {env_val!r}") from exc
                ignored_env.append(env_name)
        return config_value

    if args.action not in ACTIONS:
        raise ConfigError(f"Unknown action {args.action!r} (choose from: {', '.join(ACTIONS)})")
    dialect = get_dialect(args.store)

    stores_cfg = _section(raw, "stores")
    store_cfg = stores_cfg.get(dialect.name, {})
    workload_cfg = _section(raw, "workload")
    retry_cfg = _section(raw, "retry")
    logging_cfg = _section(raw, "logging")

    url = pick(args.url, store_cfg.get("url"), "DOCBENCH_URL") or dialect.default_url

    batch_size = 0
    if args.action == "run":
        if args.batch_size is None:
            raise ConfigError("run requires a batch size: 0 = single lookups, 1-n = batch")
        batch_size = args.batch_size
        if batch_size < 0:
            raise ConfigError(f"batch size must be >= 0 (got {batch_size})")

    users = pick(args.users, workload_cfg.get("users"), "DOCBENCH_USERS", int)
    users = DEFAULT_USERS if users is None else int(users)
    if args.action == "load":
        iterations = 1
    else:
        iterations = pick(args.iterations, workload_cfg.get("iterations"), "DOCBENCH_ITERATIONS", int)
        iterations = DEFAULT_RUN_ITERATIONS if iterations is None else int(iterations)
    seed = pick(args.seed, workload_cfg.get("seed"), "DOCBENCH_SEED", int)
    seed = DEFAULT_SEED if seed is None else int(seed)
    pool_size = pick(args.pool_size, workload_cfg.get("pool_size"), "DOCBENCH_POOL_SIZE", int)
    pool_size = DEFAULT_POOL_SIZE if pool_size is None else int(pool_size)
    workers = pick(args.workers, workload_cfg.get("workers"), "DOCBENCH_WORKERS", int)
    workers = pool_size if workers is None else int(workers)
    acquire_timeout = float(workload_cfg.get("acquire_timeout", DEFAULT_ACQUIRE_TIMEOUT))
    continue_on_failure = bool(args.continue_on_failure) or bool(
        workload_cfg.get("continue_on_failure", False)
    )
    deadline = pick(args.deadline, workload_cfg.get("deadline_seconds"))
    deadline = float(deadline) if deadline else None
    progress_interval = int(workload_cfg.get("progress_interval", DEFAULT_PROGRESS_INTERVAL))

    max_attempts = pick(args.max_attempts, retry_cfg.get("max_attempts"))
    backoff_base = pick(args.backoff_base, retry_cfg.get("backoff_base"))
    backoff_max = pick(args.backoff_max, retry_cfg.get("backoff_max"))
    jitter = bool(args.jitter) or bool(retry_cfg.get("jitter", False))

    if users < 1:
        raise ConfigError(f"users must be >= 1 (got {users})")
    if iterations < 1:
        raise ConfigError(f"iterations must be >= 1 (got {iterations})")
    if pool_size < 1:
        raise ConfigError(f"pool_size must be >= 1 (got {pool_size})")
    if not 1 <= workers <= pool_size:
        raise ConfigError(f"workers must be between 1 and pool_size={pool_size} (got {workers})")
    if acquire_timeout <= 0:
        raise ConfigError(f"acquire_timeout must be > 0 (got {acquire_timeout})")
    if deadline is not None and deadline < 0:
        raise ConfigError(f"deadline must be >= 0 (got {deadline})")
    max_attempts = int(max_attempts) if max_attempts else None
    if max_attempts is not None and max_attempts < 1:
        raise ConfigError(f"max_attempts must be >= 1, or 0 for unbounded (got {max_attempts})")
    retry = RetryPolicy(
        max_attempts=max_attempts,
        backoff_base=float(backoff_base or 0.0),
        backoff_max=float(1.0 if backoff_max is None else backoff_max),
        jitter=jitter,
    )
    if retry.backoff_base < 0 or retry.backoff_max < 0:
        raise ConfigError("backoff_base and backoff_max must be >= 0")

    log_level = str(pick(args.log_level, logging_cfg.get("level")) or "INFO").upper()
    if log_level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
        raise ConfigError(f"Unsupported log level {log_level!r}")
    log_file = pick(args.log_file, logging_cfg.get("file")) or None

    config = BenchConfig(
        action=args.action,
        store=dialect.name,
        url=url,
        batch_size=batch_size,
        users=users,
        iterations=iterations,
        seed=seed,
        pool_size=pool_size,
        workers=workers,
        acquire_timeout=acquire_timeout,
        continue_on_failure=continue_on_failure,
        deadline=deadline,
        progress_interval=max(1, progress_interval),
        retry=retry,
        log_level=log_level,
        log_file=log_file,
    )
    return config, env_overrides, ignored_env
