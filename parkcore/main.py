# File: parkcore/main.py
"""
Command line entry point for the parking engine

Every subcommand loads the configuration, wires the service and prints the
result DTO as JSON on stdout. Logs go to stderr and the log file.
"""

import argparse
import json
import logging
import os
import sys
from datetime import datetime
from typing import List, Optional

from .application.parking_service import ParkingService, ParkingServiceFactory
from .domain.exceptions import ConfigurationError, DomainError
from .domain.models import BillingMode, SlotCategory, VehicleCategory
from .infrastructure.config import AppSettings, LoggingSettings, load_settings
from .infrastructure.factories import SlotLayoutFactory
from .infrastructure.messaging import EventBus, LoggingEventHandler


def setup_logging(settings: Optional[LoggingSettings] = None) -> logging.Logger:
    """Setup application logging configuration"""
    settings = settings or LoggingSettings()
    handlers: List[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    if settings.log_dir:
        if not os.path.exists(settings.log_dir):
            os.makedirs(settings.log_dir)
        handlers.append(logging.FileHandler(os.path.join(settings.log_dir, settings.log_file)))

    logging.basicConfig(
        level=getattr(logging, settings.level),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=handlers,
        force=True,
    )
    return logging.getLogger("parkcore")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='parkcore',
        description='Slot allocation and session lifecycle engine',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s init-db
  %(prog)s seed-slots --floors 5 --per-floor 15
  %(prog)s entry MH12AB1234 --category CAR
  %(prog)s entry MH12EV0001 --category EV --billing DAY_PASS
  %(prog)s exit MH12AB1234
  %(prog)s override <session-id> B2-10
  %(prog)s alerts
        """
    )
    parser.add_argument('-c', '--config', help='YAML configuration file (default: $PARKCORE_CONFIG)')

    sub = parser.add_subparsers(dest='command', required=True)

    sub.add_parser('init-db', help='Create tables')

    seed = sub.add_parser('seed-slots', help='Create the standard floor layout')
    seed.add_argument('--floors', type=int, default=5)
    seed.add_argument('--per-floor', type=int, default=15)

    entry = sub.add_parser('entry', help='Register a vehicle entry')
    entry.add_argument('license_plate')
    entry.add_argument('--category', required=True, choices=[c.value for c in VehicleCategory])
    entry.add_argument('--billing', default=BillingMode.HOURLY.value, choices=[m.value for m in BillingMode])
    entry.add_argument('--slot', help='Slot number to claim instead of auto-assignment')

    exit_ = sub.add_parser('exit', help='Register a vehicle exit')
    exit_.add_argument('license_plate')

    override = sub.add_parser('override', help='Move an active session to another slot')
    override.add_argument('session_id')
    override.add_argument('slot', help='Target slot number')

    force_end = sub.add_parser('force-end', help='End a session administratively')
    force_end.add_argument('session_id')

    estimate = sub.add_parser('estimate', help='Estimate the cost of a stay')
    estimate.add_argument('entry_time', help='ISO-8601 entry time (UTC if no offset)')
    estimate.add_argument('--billing', default=BillingMode.HOURLY.value, choices=[m.value for m in BillingMode])

    sub.add_parser('alerts', help='List overstay alerts')
    sub.add_parser('detect-overstays', help='Publish overstay events for current alerts')
    sub.add_parser('rates', help='Show the billing configuration')

    slots = sub.add_parser('slots', help='List available slots')
    slots.add_argument('--category', choices=[c.value for c in SlotCategory])
    slots.add_argument('--vehicle', choices=[c.value for c in VehicleCategory],
                       help='Only slots this vehicle category may use')

    maintenance = sub.add_parser('maintenance', help='Put a slot under maintenance or release it')
    maintenance.add_argument('slot', help='Slot number')
    maintenance.add_argument('--release', action='store_true')

    return parser


def _emit(payload) -> None:
    print(json.dumps(payload, indent=2, default=str))


def run_command(args: argparse.Namespace, service: ParkingService, settings: AppSettings) -> int:
    """Execute one parsed subcommand; returns the process exit code"""
    command = args.command

    if command == 'init-db':
        _emit({"success": True, "message": f"Schema ready at {settings.engine.database_url}"})
        return 0

    if command == 'seed-slots':
        layout = SlotLayoutFactory().create_layout(args.floors, args.per_floor)
        result = service.bulk_create_slots([(s.slot_number, s.category) for s in layout])
    elif command == 'entry':
        slot_id = None
        if args.slot:
            slot_id = service.manager.find_slot_by_number(args.slot).id
        result = service.register_entry(
            args.license_plate, VehicleCategory(args.category), BillingMode(args.billing), slot_id
        )
    elif command == 'exit':
        result = service.register_exit(args.license_plate)
    elif command == 'override':
        result = service.override_slot(args.session_id, service.manager.find_slot_by_number(args.slot).id)
    elif command == 'force-end':
        result = service.force_end_session(args.session_id)
    elif command == 'estimate':
        result = service.estimate_cost(datetime.fromisoformat(args.entry_time), BillingMode(args.billing))
    elif command == 'alerts':
        _emit([alert.to_dict() for alert in service.get_overstay_alerts()])
        return 0
    elif command == 'detect-overstays':
        result = service.run_overstay_detection()
    elif command == 'rates':
        result = service.get_billing_config()
    elif command == 'slots':
        result = service.list_available_slots(
            SlotCategory(args.category) if args.category else None,
            VehicleCategory(args.vehicle) if args.vehicle else None,
        )
    elif command == 'maintenance':
        slot_id = service.manager.find_slot_by_number(args.slot).id
        if args.release:
            result = service.release_slot_maintenance(slot_id)
        else:
            result = service.set_slot_maintenance(slot_id)
    else:
        raise ValueError(f"Unknown command: {command}")

    _emit(result.to_dict())
    return 0 if getattr(result, 'success', True) else 1


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    try:
        settings = load_settings(args.config)
    except ConfigurationError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 2

    logger = setup_logging(settings.logging)
    event_bus = EventBus()
    event_bus.subscribe_all(LoggingEventHandler())

    try:
        service = ParkingServiceFactory.create_service(settings, event_bus=event_bus)
        return run_command(args, service, settings)
    except ConfigurationError as e:
        logger.error(f"Configuration error: {e}")
        return 2
    except DomainError as e:
        _emit({"success": False, "error_code": e.code.value, "message": e.message})
        return 1
    except Exception as e:
        logger.error(f"Command {args.command} failed: {e}", exc_info=True)
        return 1


if __name__ == "__main__":
    sys.exit(main())
