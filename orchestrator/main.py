"""Command-line entry point for the Salus records layer."""
from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

if __package__ is None or __package__ == "":  # pragma: no cover - runtime safety for script execution
    sys.path.append(str(Path(__file__).resolve().parent.parent))

from agents.appointments import get_appointment, list_recent_appointments
from agents.patients import get_patient_by_user
from agents.records import RecordsError
from connector import ConfigurationError, Connection, connect, load_settings

LOGGER = logging.getLogger("salus")


def _check_config(connection: Connection, args: argparse.Namespace) -> Dict[str, Any]:
    settings = connection.settings
    return {
        "endpoint": settings.endpoint,
        "project_id": settings.project_id,
        "database_id": settings.database_id,
        "patient_collection_id": settings.patient_collection_id,
        "appointment_collection_id": settings.appointment_collection_id,
        "bucket_id": settings.bucket_id,
    }


def _list_appointments(connection: Connection, args: argparse.Namespace) -> Dict[str, Any]:
    return list_recent_appointments(connection).to_dict()


def _get_patient(connection: Connection, args: argparse.Namespace) -> Optional[Dict[str, Any]]:
    return get_patient_by_user(connection, args.identifier)


def _get_appointment(connection: Connection, args: argparse.Namespace) -> Optional[Dict[str, Any]]:
    return get_appointment(connection, args.identifier)


COMMANDS: Dict[str, Callable[[Connection, argparse.Namespace], Any]] = {
    "check-config": _check_config,
    "list-appointments": _list_appointments,
    "get-patient": _get_patient,
    "get-appointment": _get_appointment,
}


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Salus clinic records controller")
    parser.add_argument("command", choices=tuple(COMMANDS), help="Command to execute")
    parser.add_argument(
        "identifier",
        nargs="?",
        help="User id for get-patient, appointment id for get-appointment",
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")
    args = parser.parse_args(argv)
    if args.command in ("get-patient", "get-appointment") and not args.identifier:
        parser.error(f"{args.command} requires an identifier")
    return args


def main(argv: Optional[List[str]] = None, *, connection: Optional[Connection] = None) -> int:
    args = parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    try:
        connection = connection or connect(load_settings())
    except ConfigurationError as exc:
        LOGGER.error("%s", exc)
        return 2

    try:
        result = COMMANDS[args.command](connection, args)
    except RecordsError as exc:
        LOGGER.error("Command %s failed: %s", args.command, exc)
        return 1

    print(json.dumps(result, indent=2, sort_keys=True, default=str))
    return 0


if __name__ == "__main__":
    sys.exit(main())
