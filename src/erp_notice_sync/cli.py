from __future__ import annotations

import argparse
import logging
import os
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv

from .config import AppConfig, load_config
from .errors import ConfigurationError
from .logging_config import configure_logging
from .orchestrator import SyncOrchestrator
from .state import StateStore
from .util.debug_bundle import create_debug_bundle


logger = logging.getLogger("erp_notice_sync")


def _build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="erp_notice_sync")
    p.add_argument(
        "--env-file",
        default=".env",
        help="Path to a dotenv file (default: .env). If missing, env vars must already be set.",
    )

    sub = p.add_subparsers(dest="cmd", required=True)

    sync = sub.add_parser("sync", help="Log into the ERP portal and deliver notices newer than --since")
    sync.add_argument("--config", default="config.yaml", help="Path to YAML config (default: config.yaml)")
    sync.add_argument(
        "--since",
        required=True,
        help="Watermark: time of the newest notice already delivered ('DD-MM-YYYY HH:MM' or ISO-8601).",
    )
    sync.add_argument("--headful", action="store_true", help="Run browser headful (debug)")
    sync.add_argument("--slowmo-ms", type=int, default=0, help="Playwright slow motion in milliseconds (debug).")
    sync.add_argument(
        "--no-debug-bundle",
        action="store_true",
        help="Do not write a zip of debug artifacts + log when the run fails.",
    )

    status = sub.add_parser("status", help="Show recent sync runs from the run log")
    status.add_argument("--config", default="config.yaml", help="Path to YAML config (default: config.yaml)")
    status.add_argument("--limit", type=int, default=10, help="Number of runs to show (default: 10)")
    status.add_argument("--run-id", type=int, default=None, help="Show a single run")

    check = sub.add_parser(
        "check-config",
        help="Validate configuration and credentials without launching a browser or touching the network",
    )
    check.add_argument("--config", default="config.yaml", help="Path to YAML config (default: config.yaml)")

    return p


def main(argv: Optional[List[str]] = None) -> int:
    args = _build_parser().parse_args(argv)

    env_path = Path(args.env_file)
    if env_path.exists():
        load_dotenv(env_path)

    # Default logging: can be overridden once config is loaded.
    configure_logging(level=os.getenv("LOG_LEVEL", "INFO"))

    try:
        cfg = load_config(args.config)
    except ConfigurationError as e:
        logger.error("%s", e)
        return 2
    configure_logging(level=cfg.logging.level, file_path=cfg.logging.file_path)

    if args.cmd == "check-config":
        return _check_config(cfg)
    if args.cmd == "status":
        return _status(cfg, limit=args.limit, run_id=args.run_id)
    if args.cmd == "sync":
        return _sync(cfg, args)
    return 2


def _check_config(cfg: AppConfig) -> int:
    problems = list(cfg.missing_endpoints())
    try:
        cfg.credentials.to_credentials()
    except ConfigurationError as e:
        problems.append(str(e))

    if problems:
        for problem in problems:
            logger.error("Config problem: %s", problem)
        return 1
    logger.info(
        "Config OK (login_url=%s listing_url=%s otp=%s delivery=%s)",
        cfg.portal.login_url,
        cfg.portal.listing_url,
        cfg.otp.base_url,
        cfg.delivery.url,
    )
    return 0


def _status(cfg: AppConfig, *, limit: int, run_id: Optional[int]) -> int:
    state = StateStore(cfg.state.db_path)
    try:
        if run_id is not None:
            run = state.get_run(run_id)
            if run is None:
                logger.error("No run with id %s", run_id)
                return 1
            runs = [run]
        else:
            runs = state.recent_runs(limit)
    finally:
        state.close()

    if not runs:
        print("No runs recorded yet.")
        return 0
    for r in runs:
        outcome = "running" if r.ok is None else ("ok" if r.ok else "FAILED")
        line = f"#{r.run_id} {outcome:<7} started={r.started_at} finished={r.finished_at or '-'}"
        if r.delivered is not None:
            line += f" delivered={r.delivered}"
        if r.ok is False:
            line += f" step={r.step} error={r.message}"
        print(line)
    return 0


def _sync(cfg: AppConfig, args: argparse.Namespace) -> int:
    if args.headful or args.slowmo_ms:
        portal = cfg.portal.model_copy(update={"headless": not args.headful, "slow_mo_ms": args.slowmo_ms})
        cfg = cfg.model_copy(update={"portal": portal})

    try:
        credentials = cfg.credentials.to_credentials()
    except ConfigurationError as e:
        logger.error("%s (set ERP_ROLL_NO, ERP_PASSWORD, ERP_SECURITY_ANSWERS)", e)
        return 2

    state = StateStore(cfg.state.db_path)
    try:
        SyncOrchestrator(cfg, state=state).run(credentials, args.since)
        return 0
    except Exception:
        # Already logged with its step by the orchestrator.
        logger.debug("Sync failed.", exc_info=True)
        if not args.no_debug_bundle:
            latest = state.recent_runs(1)
            try:
                bundle = create_debug_bundle(
                    debug_dir=cfg.portal.debug_dir,
                    log_file=cfg.logging.file_path or "data/sync.log",
                    out_dir=str(Path(cfg.portal.debug_dir).parent),
                    run_id=latest[0].run_id if latest else "",
                )
                logger.error("Wrote debug bundle: %s", bundle)
            except OSError:
                logger.debug("Failed to create debug bundle.", exc_info=True)
        return 1
    finally:
        state.close()
