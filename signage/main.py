import argparse
import logging
import sys
from typing import List, Optional


def setup_basic_logging():
    """Setup basic stdout logging before config is loaded"""
    root_logger = logging.getLogger()
    if not root_logger.handlers:  # Only add handler if none exists
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - [%(filename)s:%(lineno)d] - %(message)s'
        ))
        root_logger.addHandler(handler)
        root_logger.setLevel(logging.DEBUG)
        logging.debug("Basic logging initialized")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description='Signage display backend')
    parser.add_argument('--config',
                        help='Path to config file (default: ~/.signage/config.yaml)')
    commands = parser.add_subparsers(dest='command', required=True)

    commands.add_parser('serve', help='Run the HTTP API')

    device = commands.add_parser('device', help='Run the device authorization agent')
    device.add_argument('--display-id', help='Display this device shows (overrides device.display_id)')
    device.add_argument('--server-url', help='Backend base URL (overrides device.server_url)')
    device.add_argument('--device-name', help='Name used when the device has to register')
    device.add_argument('--reset', action='store_true',
                        help='Forget the stored device identity before starting (unpair)')

    ingest = commands.add_parser('ingest', help='Load a prayer schedule CSV into the database')
    ingest.add_argument('csv_file', help='CSV with columns label,month,day,fajr,sunrise,dhuhr,asr,maghrib,isha')
    return parser


def run_serve(config_path: Optional[str]) -> int:
    from signage.core.app import SignageApp
    app = SignageApp(config_path=config_path)
    app.run()
    return 0


def run_device(args: argparse.Namespace) -> int:
    from signage.core.app import setup_logging
    from signage.core.config import Config
    from signage.core.errors import LocalStoreError
    from signage.device.agent import DeviceAgent

    config = Config(config_path=args.config)
    setup_logging(config.section("logging"))
    try:
        agent = DeviceAgent(
            config,
            display_id=args.display_id,
            server_url=args.server_url,
            device_name=args.device_name,
        )
        if args.reset:
            agent.identity.reset_identity()
        agent.run()
    except ValueError as e:
        logging.error(str(e))
        return 2
    except LocalStoreError as e:
        logging.error(f"{e.message}; run with --reset to set it aside and register again")
        return 1
    finally:
        config.cleanup()
    return 0


def run_ingest(args: argparse.Namespace) -> int:
    from signage.core.app import setup_logging
    from signage.core.config import Config
    from signage.core.db import init_db, close_db
    from signage.core.errors import SignageError
    from signage.plugins.prayer_schedules.ingest import ingest_schedule

    config = Config(config_path=args.config, watch=False)
    setup_logging(config.section("logging"))
    init_db(config.data)
    schedules_config = config.section("schedules")
    try:
        with open(args.csv_file, encoding='utf-8-sig') as f:
            text = f.read()
        result = ingest_schedule(
            text,
            batch_size=schedules_config.get("batch_size", 100),
            compensate=bool(schedules_config.get("compensate_partial_failure", False)),
        )
    except OSError as e:
        logging.error(f"Cannot read {args.csv_file}: {e}")
        return 1
    except SignageError as e:
        logging.error(f"Ingestion failed: {e.message} {e.details or ''}")
        return 1
    finally:
        close_db()
    logging.info(f"Uploaded '{result.label}': {result.records_inserted} rows, {result.skipped_rows} skipped")
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    setup_basic_logging()
    args = build_parser().parse_args(argv)
    if args.command == 'serve':
        return run_serve(args.config)
    if args.command == 'device':
        return run_device(args)
    return run_ingest(args)


if __name__ == "__main__":
    sys.exit(main())
