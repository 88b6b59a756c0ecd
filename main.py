"""
DNS-01 Certificate Issuance Agent — CLI entry point.

Usage:
  python main.py --once                         # Issue/renew every domain in the list file
  python main.py --domain vpn.example.com       # Single-domain mode (also registers the domain)
  python main.py --schedule                     # Run daily at SCHEDULE_TIME
  python main.py --once --checkpoint            # Run with MemorySaver checkpointing
  python main.py --install-trustpoint vpn.example.com   # Import a stored cert into the ASA
"""
from __future__ import annotations

import argparse
import logging
import sys

import structlog

# ── Logging setup ─────────────────────────────────────────────────────────────

structlog.configure(
    processors=[
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.dev.ConsoleRenderer(),
    ],
    wrapper_class=structlog.make_filtering_bound_logger(logging.INFO),
    context_class=dict,
    logger_factory=structlog.PrintLoggerFactory(),
)
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-8s %(name)s — %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
log = logging.getLogger(__name__)


# ── Agent runner ──────────────────────────────────────────────────────────────


def run_once(single_fqdn: str | None = None, use_checkpoint: bool = False) -> dict:
    """Execute one issuance run and return the final run state."""
    from agent.graph import build_graph, initial_state
    from config import settings

    if single_fqdn:
        log.info("Starting single-domain run for %s", single_fqdn)
    else:
        log.info("Starting issuance run for the domains in %s", settings.DOMAIN_LIST_FILE)

    graph = build_graph(use_checkpointing=use_checkpoint)
    state = initial_state(
        cert_store_path=settings.CERT_STORE_PATH,
        account_key_path=settings.ACCOUNT_KEY_PATH,
        renewal_threshold_days=settings.RENEWAL_THRESHOLD_DAYS,
        single_fqdn=single_fqdn,
    )

    config: dict = {"max_concurrency": settings.MAX_PARALLEL_DOMAINS}
    if use_checkpoint:
        config["configurable"] = {"thread_id": "main"}

    final_state = graph.invoke(state, config=config)

    results = final_state.get("results", {})
    issued = [f for f, r in results.items() if r["outcome"] == "issued"]
    failed = [f for f, r in results.items() if r["outcome"] == "failed"]
    log.info("Run complete — issued: %s | failed: %s", issued or "none", failed or "none")

    return final_state


def exit_status(final_state: dict) -> int:
    """1 when the run aborted, the commit failed, or any domain failed."""
    if final_state.get("aborted") or final_state.get("commit_error"):
        return 1
    results = final_state.get("results", {})
    return 1 if any(r["outcome"] == "failed" for r in results.values()) else 0


def run_install_trustpoint(cert_id: str) -> int:
    """Import <cert_id>'s stored certificate into the ASA trust point."""
    from appliance.asa import ApplianceImportError, make_importer
    from config import settings

    try:
        result = make_importer().import_certificate(cert_id, settings.PKCS12_PASSPHRASE)
    except ApplianceImportError as exc:
        log.error("Trust point import for %s failed: %s", cert_id, exc)
        return 1

    log.info("Trust point %s now serves %s", result["trustpoint"], result["domain"])
    return 0


def run_scheduled(use_checkpoint: bool = False) -> None:
    """Run the agent on a recurring schedule."""
    import schedule
    import time
    from config import settings

    schedule_time = settings.SCHEDULE_TIME
    log.info("Scheduling daily certificate check at %s", schedule_time)

    def job() -> None:
        log.info("Scheduled run triggered")
        try:
            run_once(use_checkpoint=use_checkpoint)
        except Exception as exc:
            log.exception("Scheduled run failed: %s", exc)

    schedule.every().day.at(schedule_time).do(job)

    log.info("Running initial check immediately...")
    job()

    log.info("Entering schedule loop — press Ctrl+C to stop")
    while True:
        schedule.run_pending()
        time.sleep(60)


# ── CLI ───────────────────────────────────────────────────────────────────────


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        description="DNS-01 Certificate Issuance Agent",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py --once
  python main.py --domain vpn.example.com
  python main.py --schedule
  python main.py --once --checkpoint
  python main.py --install-trustpoint vpn.example.com
        """,
    )
    parser.add_argument(
        "--once",
        action="store_true",
        help="Run one issuance cycle over the domain list and exit",
    )
    parser.add_argument(
        "--domain",
        metavar="FQDN",
        help="Issue a certificate for one domain and add it to the domain list",
    )
    parser.add_argument(
        "--schedule",
        action="store_true",
        help="Run on the configured daily schedule (SCHEDULE_TIME in .env)",
    )
    parser.add_argument(
        "--install-trustpoint",
        metavar="CERT_ID",
        help="Import the stored certificate CERT_ID into the ASA trust point",
    )
    parser.add_argument(
        "--checkpoint",
        action="store_true",
        help="Enable MemorySaver checkpointing for resumable runs",
    )

    args = parser.parse_args(argv)

    if not (args.once or args.domain or args.schedule or args.install_trustpoint):
        parser.print_help()
        return 1

    if args.install_trustpoint:
        return run_install_trustpoint(args.install_trustpoint)
    if args.schedule:
        run_scheduled(use_checkpoint=args.checkpoint)
        return 0
    return exit_status(run_once(single_fqdn=args.domain, use_checkpoint=args.checkpoint))


if __name__ == "__main__":
    sys.exit(main())
