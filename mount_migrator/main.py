import argparse
import signal
import sys
from pathlib import Path

from mount_migrator.config import settings
from mount_migrator.domain.plans import DEFAULT_DEVICE, PLAN_BUILDERS, build_plan
from mount_migrator.logging import LoggerFactory, setup_logging
from mount_migrator.migrator import Migrator
from mount_migrator.storage.exceptions import MigrationError


TERMINATING_SIGNALS = (signal.SIGTERM, signal.SIGHUP)


def _terminate(signum, frame):
    # Unwinds through the run's ExitStack so the lock file is released
    raise SystemExit(128 + signum)


def build_parser():
    parser = argparse.ArgumentParser(
        description="Move a directory tree onto a freshly partitioned disk and mount it in place"
    )
    parser.add_argument("target", choices=sorted(PLAN_BUILDERS), help="What to migrate")
    parser.add_argument(
        "--device",
        default=DEFAULT_DEVICE,
        help=f"Block device to erase and use (default: {DEFAULT_DEVICE})",
    )
    parser.add_argument("-d", "--debug", action="store_true", help="Enable verbose debug output")
    parser.add_argument("--trace", action="store_true", help="Log raw command output")
    parser.add_argument("--log-dir", type=Path, help="Directory for log files")
    parser.add_argument("--settings", type=Path, help="Path to settings.json")
    return parser


def main(argv=None):
    args = build_parser().parse_args(argv)

    setup_logging(debug=args.debug, trace=args.trace, log_dir=args.log_dir)
    log = LoggerFactory.for_system()
    if args.settings:
        settings.load_settings(args.settings)

    try:
        plan = build_plan(args.target, args.device)
    except ValueError as error:
        log.error(str(error))
        return 1

    previous_handlers = {signum: signal.signal(signum, _terminate) for signum in TERMINATING_SIGNALS}
    try:
        Migrator(plan).run()
    except MigrationError as error:
        log.error(f"Migration failed: {error}")
        return 1
    except KeyboardInterrupt:
        log.error("Interrupted")
        return 1
    finally:
        for signum, handler in previous_handlers.items():
            signal.signal(signum, handler)
    return 0


def _run_target(target):
    return main([target, *sys.argv[1:]])


def migrate_root():
    return _run_target("root")


def migrate_root_var():
    return _run_target("root-var")


def migrate_home():
    return _run_target("home")


def migrate_var():
    return _run_target("var")


if __name__ == "__main__":
    sys.exit(main())
