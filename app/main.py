"""Command line entry point for the flight companion core."""

from dotenv import load_dotenv
load_dotenv()

import argparse
import json
import signal
import sys
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple

from app.config.environment import EnvironmentConfig
from app.config.exceptions import ConfigurationError
from app.config.loader import load_config
from app.config.models import AppConfig
from app.domain.models import IncidentType, LinkedRequest, ServiceDomain
from app.emergency import EmergencyOrchestrator
from app.logging import get_logger
from app.logging.config import configure_logging
from app.matching import (
    MatchConfirmationService,
    MatchConflictError,
    MatchingEngine,
    MatchingError,
)
from app.notifications import NotificationDispatcher
from app.persistence import PersistenceError, RecordNotFoundError
from app.persistence.database import close_database, init_database
from app.scheduler import SweepScheduler

logger = get_logger(__name__, component="cli")

LOG_LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]


@dataclass
class Services:
    """Core services wired for one CLI invocation."""

    dispatcher: NotificationDispatcher
    matching: MatchingEngine
    confirmations: MatchConfirmationService
    emergency: EmergencyOrchestrator

    def shutdown(self, wait: bool = True) -> None:
        self.emergency.shutdown(wait=wait)
        self.dispatcher.shutdown(wait=wait)


def load_runtime_config(
    config_path: Optional[Path], log_level_override: Optional[str]
) -> Tuple[AppConfig, EnvironmentConfig]:
    """
    Load configuration and settle the effective log level.

    Log level priority: CLI > LOG_LEVEL environment variable > config file.

    Raises:
        ConfigurationError: If configuration is invalid
    """
    app_config, env_config = load_config(config_path)

    if log_level_override:
        env_config.log_level = log_level_override
    elif not env_config.log_level:
        env_config.log_level = app_config.logging.level

    return app_config, env_config


def build_services(app_config: AppConfig, env_config: EnvironmentConfig) -> Services:
    """Wire the dispatcher, matching and emergency services from configuration."""
    dispatcher = NotificationDispatcher.from_config(app_config, env_config)
    return Services(
        dispatcher=dispatcher,
        matching=MatchingEngine(default_max_results=app_config.matching.max_results),
        confirmations=MatchConfirmationService(dispatcher),
        emergency=EmergencyOrchestrator.from_config(app_config, dispatcher),
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Flight Companion core - matching and emergency escalation"
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Path to configuration file (default: config.yaml if present)",
    )
    parser.add_argument(
        "--log-level",
        default=None,
        choices=LOG_LEVELS,
        help="Log level (overrides config and environment)",
    )

    commands = parser.add_subparsers(dest="command", required=True)

    commands.add_parser("init-db", help="Create the database schema and exit")

    find = commands.add_parser("find-matches", help="List compatible offers for a request")
    find.add_argument("--domain", required=True, choices=[d.value for d in ServiceDomain])
    find.add_argument("--request-id", type=int, required=True)
    find.add_argument("--max-results", type=int, default=None)

    confirm = commands.add_parser("confirm-match", help="Pair a request with an offer")
    confirm.add_argument("--domain", required=True, choices=[d.value for d in ServiceDomain])
    confirm.add_argument("--request-id", type=int, required=True)
    confirm.add_argument("--offer-id", type=int, required=True)

    raise_cmd = commands.add_parser("raise-incident", help="Raise an emergency incident")
    raise_cmd.add_argument("--user-id", type=int, required=True)
    raise_cmd.add_argument("--type", dest="incident_type", required=True, choices=[t.value for t in IncidentType])
    raise_cmd.add_argument("--description", required=True)
    raise_cmd.add_argument("--location", default=None)
    link = raise_cmd.add_mutually_exclusive_group()
    link.add_argument("--companion-request-id", type=int, default=None)
    link.add_argument("--pickup-request-id", type=int, default=None)
    raise_cmd.add_argument(
        "--no-wait",
        action="store_true",
        help="Return as soon as the incident is stored instead of waiting for the fan-out",
    )

    resolve = commands.add_parser("resolve-incident", help="Resolve an active incident")
    resolve.add_argument("--incident-id", type=int, required=True)
    resolve.add_argument("--note", required=True)

    cancel = commands.add_parser("cancel-incident", help="Cancel your own active incident")
    cancel.add_argument("--incident-id", type=int, required=True)
    cancel.add_argument("--user-id", type=int, required=True)

    listing = commands.add_parser("list-incidents", help="List incidents, newest first")
    scope = listing.add_mutually_exclusive_group(required=True)
    scope.add_argument("--user-id", type=int, default=None)
    scope.add_argument("--active", action="store_true")

    commands.add_parser("serve", help="Run the pending fan-out sweep until stopped")

    return parser


def _emit(payload: Any) -> None:
    print(json.dumps(payload, indent=2, default=str))


def _linked_request(args: argparse.Namespace) -> Optional[LinkedRequest]:
    if args.companion_request_id is not None:
        return LinkedRequest(domain=ServiceDomain.COMPANION, request_id=args.companion_request_id)
    if args.pickup_request_id is not None:
        return LinkedRequest(domain=ServiceDomain.PICKUP, request_id=args.pickup_request_id)
    return None


def cmd_init_db(args: argparse.Namespace, services: Services, app_config: AppConfig) -> int:
    # init_database already created the schema
    print("Database ready")
    return 0


def cmd_find_matches(args: argparse.Namespace, services: Services, app_config: AppConfig) -> int:
    candidates = services.matching.find_matches(args.request_id, args.domain, args.max_results)
    _emit(
        [
            {
                "offer_id": c.offer.id,
                "provider_id": c.offer.user_id,
                "price": c.offer.price,
                "compatibility_score": c.compatibility_score,
                "reason": c.reason,
            }
            for c in candidates
        ]
    )
    return 0


def cmd_confirm_match(args: argparse.Namespace, services: Services, app_config: AppConfig) -> int:
    confirmation = services.confirmations.confirm(args.domain, args.request_id, args.offer_id)
    _emit(
        {
            "request_id": confirmation.request.id,
            "offer_id": confirmation.offer.id,
            "service": confirmation.service_summary,
            "requester_notification_id": confirmation.requester_notification.id,
            "provider_notification_id": confirmation.provider_notification.id,
        }
    )
    return 0


def cmd_raise_incident(args: argparse.Namespace, services: Services, app_config: AppConfig) -> int:
    incident = services.emergency.raise_incident(
        args.user_id,
        args.incident_type,
        args.description,
        location=args.location,
        linked_request=_linked_request(args),
    )
    payload: Dict[str, Any] = {"incident": incident.model_dump(mode="json")}

    if not args.no_wait:
        result = services.emergency.wait_for_fan_out(incident.id)
        if result is not None:
            payload["fan_out"] = {
                name: {"status": o.status, "notified": o.notified_user_ids, "error": o.error}
                for name, o in result.branches.items()
            }
    _emit(payload)
    return 0


def cmd_resolve_incident(args: argparse.Namespace, services: Services, app_config: AppConfig) -> int:
    incident = services.emergency.resolve(args.incident_id, args.note)
    _emit(incident.model_dump(mode="json"))
    return 0


def cmd_cancel_incident(args: argparse.Namespace, services: Services, app_config: AppConfig) -> int:
    cancelled = services.emergency.cancel(args.incident_id, args.user_id)
    _emit({"incident_id": args.incident_id, "cancelled": cancelled})
    return 0 if cancelled else 1


def cmd_list_incidents(args: argparse.Namespace, services: Services, app_config: AppConfig) -> int:
    if args.active:
        incidents = services.emergency.list_active()
    else:
        incidents = services.emergency.list_for_user(args.user_id)
    _emit([incident.model_dump(mode="json") for incident in incidents])
    return 0


def cmd_serve(args: argparse.Namespace, services: Services, app_config: AppConfig) -> int:
    start_time = time.time()
    shutdown_event = threading.Event()
    scheduler = SweepScheduler(
        sweep_callable=services.emergency.resume_pending_fan_outs,
        interval_seconds=app_config.emergency.sweep_interval_seconds,
        shutdown_event=shutdown_event,
    )

    def signal_handler(signum, frame):
        logger.info(
            f"Received signal {signum}, shutting down",
            extra={"event": "service.signal_received", "signal": signum},
        )
        scheduler.shutdown(wait=False)

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    scheduler.start()
    logger.info(
        "Sweep scheduler started. Press Ctrl+C to stop",
        extra={"event": "service.daemon_mode.started"},
    )

    try:
        shutdown_event.wait()
    except KeyboardInterrupt:
        logger.info(
            "Keyboard interrupt received, shutting down",
            extra={"event": "service.keyboard_interrupt"},
        )
        scheduler.shutdown(wait=False)

    logger.info(
        "Flight companion core stopped",
        extra={"event": "service.stopping", "uptime_seconds": round(time.time() - start_time, 2)},
    )
    return 0


COMMANDS: Dict[str, Callable[[argparse.Namespace, Services, AppConfig], int]] = {
    "init-db": cmd_init_db,
    "find-matches": cmd_find_matches,
    "confirm-match": cmd_confirm_match,
    "raise-incident": cmd_raise_incident,
    "resolve-incident": cmd_resolve_incident,
    "cancel-incident": cmd_cancel_incident,
    "list-incidents": cmd_list_incidents,
    "serve": cmd_serve,
}


def main(argv: Optional[List[str]] = None) -> int:
    """
    Main entry point.

    Returns:
        Exit code (0 for success, non-zero for failure).
    """
    args = build_parser().parse_args(argv)

    try:
        app_config, env_config = load_runtime_config(args.config, args.log_level)
    except ConfigurationError as e:
        print(f"Configuration Error: {e}", file=sys.stderr)
        return 1

    configure_logging(
        level=env_config.log_level,
        format_type=app_config.logging.format,
        environment=app_config.logging.environment,
    )
    logger.info(
        "Flight companion core starting",
        extra={"event": "service.starting", "command": args.command, "log_level": env_config.log_level},
    )

    services: Optional[Services] = None
    try:
        init_database(env_config.database_url)
        services = build_services(app_config, env_config)
        return COMMANDS[args.command](args, services, app_config)
    except RecordNotFoundError as e:
        print(f"Not found: {e}", file=sys.stderr)
        return 1
    except MatchConflictError as e:
        print(f"Match conflict: {e}", file=sys.stderr)
        return 1
    except (MatchingError, ValueError) as e:
        print(f"Invalid request: {e}", file=sys.stderr)
        return 1
    except PersistenceError as e:
        logger.error(
            f"Persistence failure: {e}",
            exc_info=True,
            extra={"event": "service.persistence.failed", "error_type": type(e).__name__},
        )
        print(f"Database error: {e}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        print("\nShutdown requested by user", file=sys.stderr)
        return 0
    finally:
        if services is not None:
            services.shutdown(wait=True)
        close_database()


if __name__ == "__main__":
    sys.exit(main())
