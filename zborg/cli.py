"""
Command line entry point.

    zborg CONFIG [--date YYYY-MM-DD] [--schedule] [-v]

Exit status is 0 when every filesystem was backed up and 1 on any usage,
configuration, privilege or external tool error.
"""

import argparse
import logging
import os
import sys
from datetime import datetime

from sqlalchemy.exc import SQLAlchemyError

from zborg import __version__, configure_logging
from zborg.backup.executor import run_backups
from zborg.backup.locking import TargetLockedError
from zborg.backup.selector import RunContext
from zborg.config import ConfigError, load_config
from zborg.models import init_database
from zborg.scheduler import init_scheduler, start_scheduler, stop_scheduler
from zborg.utils.shell import ExternalToolError


logger = logging.getLogger('zborg')


class UsageError(Exception):
    """Raised on a bad command line."""
    pass


class NotPrivilegedError(Exception):
    """Raised when not running with the privileges zfs and mount need."""
    pass


class _ArgumentParser(argparse.ArgumentParser):
    def error(self, message):
        raise UsageError(message)


def parse_args(argv=None) -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = _ArgumentParser(
        prog='zborg',
        description="Tiered ZFS snapshot backups to Borg repositories"
    )
    parser.add_argument('config', help="Path to YAML config file")
    parser.add_argument(
        '--date',
        help="Run as if today were this date (YYYY-MM-DD)"
    )
    parser.add_argument(
        '--schedule', action='store_true',
        help="Stay in the foreground and run on the configured cron schedule"
    )
    parser.add_argument('-v', '--verbose', action='store_true', help="Debug logging")
    parser.add_argument('--version', action='version', version=f"%(prog)s {__version__}")

    args = parser.parse_args(argv)
    if args.date and args.schedule:
        raise UsageError("--date cannot be combined with --schedule")
    return args


def build_context(date_text=None) -> RunContext:
    """
    Raises:
        UsageError: If date_text is not YYYY-MM-DD
    """
    if not date_text:
        return RunContext.for_today()
    try:
        return RunContext(today=datetime.strptime(date_text, '%Y-%m-%d').date())
    except ValueError:
        raise UsageError(f"--date must be YYYY-MM-DD, got {date_text!r}")


def check_privileges():
    """
    Raises:
        NotPrivilegedError: If not running as root
    """
    if os.geteuid() != 0:
        raise NotPrivilegedError("zborg must run as root (zfs snapshot and mount need it)")


def main(argv=None) -> int:
    configure_logging()

    try:
        args = parse_args(argv)
        context = build_context(args.date)

        config = load_config(args.config)
        configure_logging(verbose=args.verbose, log_dir=config.log_dir)

        if config.require_root:
            check_privileges()

        session_factory = init_database(config.database_url)

        if args.schedule:
            init_scheduler(config, session_factory)
            try:
                start_scheduler()
            except (KeyboardInterrupt, SystemExit):
                stop_scheduler()
            return 0

        run_backups(config, context=context, session_factory=session_factory)
        return 0

    except UsageError as e:
        print("usage: zborg CONFIG [--date YYYY-MM-DD] [--schedule] [-v]", file=sys.stderr)
        logger.error(f"Usage error: {e}")
    except ConfigError as e:
        logger.error(f"Configuration error: {e}")
    except NotPrivilegedError as e:
        logger.error(str(e))
    except TargetLockedError as e:
        logger.error(str(e))
    except ExternalToolError as e:
        logger.error(f"Backup aborted: {e}")
    except SQLAlchemyError as e:
        logger.error(f"History database error: {e}")
    except Exception:
        logger.exception("Unexpected error")

    return 1


if __name__ == '__main__':
    sys.exit(main())
