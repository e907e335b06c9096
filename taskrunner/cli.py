"""
Command-line interface for the recurring task runner.

Examples:
    task-runner ./backup.sh --minutes 30
    task-runner sync.py --days monday,thursday --times 09:00,17:30 --param Source=/data
    task-runner report.py --hours 1 --run-once --stop-on-error
"""

import argparse
import logging
import sys
from datetime import datetime

from taskrunner import __version__
from taskrunner.config import (
    ConfigurationError,
    LOG_LEVELS,
    build_config,
    load_config_file,
    parse_parameters,
)
from taskrunner.logs import rotate_logs, setup_logging
from taskrunner.service import EXIT_CRITICAL, RunnerService

logger = logging.getLogger("taskrunner.cli")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="task-runner",
        description="Recurring Task Runner - run a command on an interval or calendar schedule",
        epilog=__doc__,
        formatter_class=argparse.RawDescriptionHelpFormatter
    )

    parser.add_argument(
        'target',
        nargs='?',
        help='Path or name of the command to run'
    )
    parser.add_argument(
        '-c', '--config',
        type=str,
        help='Path to a JSON configuration file'
    )
    parser.add_argument(
        '-v', '--verbose',
        action='store_true',
        help='Enable verbose logging (same as --log-level DEBUG)'
    )
    parser.add_argument('--version', action='version', version=f"%(prog)s {__version__}")

    interval = parser.add_argument_group('interval schedule')
    interval.add_argument('--hours', type=int, help='Interval hours (>= 0)')
    interval.add_argument('--minutes', type=int, help='Interval minutes (0-59)')

    calendar = parser.add_argument_group('calendar schedule')
    calendar.add_argument('--days', action='append',
                          help='Weekday names, comma separated or repeated (e.g. monday,friday)')
    calendar.add_argument('--times', action='append',
                          help='24-hour HH:mm times, comma separated or repeated (e.g. 09:00,17:30)')

    behaviour = parser.add_argument_group('behaviour')
    behaviour.add_argument('--run-once', action='store_true', default=None,
                           help='Execute a single cycle and exit')
    behaviour.add_argument('--stop-on-error', action='store_true', default=None,
                           help='Stop the loop when a cycle fails')
    behaviour.add_argument('--param', '-p', action='append', metavar='KEY=VALUE',
                           help='Parameter forwarded to the target as --KEY VALUE (repeatable)')

    output = parser.add_argument_group('logging')
    output.add_argument('--log-file', type=str, help='Log file path')
    output.add_argument('--max-log-files', type=int, help='Number of log files to keep (1-365, default: 30)')
    output.add_argument('--log-level', type=str.upper, choices=LOG_LEVELS,
                        help='Minimum log level (default: INFO)')

    return parser


def main(argv=None) -> int:
    """Main CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    started_at = datetime.now()
    # Console only until the configuration tells us where the file goes
    setup_logging("DEBUG" if args.verbose else "INFO")

    try:
        file_data = load_config_file(args.config)
        if not args.target and not file_data.get('target'):
            parser.error("a target command is required (argument or 'target' in the config file)")

        config = build_config(
            file_data,
            target=args.target,
            hours=args.hours,
            minutes=args.minutes,
            days=args.days,
            times=args.times,
            run_once=args.run_once,
            stop_on_error=args.stop_on_error,
            parameters=parse_parameters(args.param),
            log_file=args.log_file,
            max_log_files=args.max_log_files,
            log_level="DEBUG" if args.verbose else args.log_level,
        )
    except ConfigurationError as e:
        logger.error("Configuration validation failed:")
        for error in e.errors:
            logger.error(f"  - {error}")
        return EXIT_CRITICAL

    log_file = config.logging.file or config.default_log_file(started_at)
    setup_logging(config.logging.level, log_file)
    logger.info(f"Logging to {log_file}")
    log_dir, pattern = config.log_pattern()
    rotate_logs(log_dir, pattern, config.logging.max_files)

    service = RunnerService(config)
    service.install_signal_handlers()
    logger.info("Press Ctrl+C to stop")
    try:
        return service.run()
    finally:
        service.restore_signal_handlers()


if __name__ == '__main__':
    sys.exit(main())
