"""Command-line entry point for SourceSound Restart.

Usage:
    sourcesound-restart install [--target PATH] [--resident]
    sourcesound-restart uninstall [--purge]
    sourcesound-restart status
    sourcesound-restart reload
    sourcesound-restart run       One watchdog pass (what launchd invokes)
    sourcesound-restart watch     Resident loop (KeepAlive mode)

Exit status is 0 on success and 1 when a lifecycle verb fails.  ``run``
and ``watch`` log their errors and always exit 0 so launchd never sees
a crash loop.
"""

import argparse
import logging
import sys

from sourcesound_restart import __app_name__, __version__
from sourcesound_restart.config import Config
from sourcesound_restart.errors import ServiceError, UnsupportedPlatformError
from sourcesound_restart.logs import setup_logging
from sourcesound_restart.platform_utils import IS_MACOS, get_log_path
from sourcesound_restart.service import ServiceRegistrar, ServiceState, is_versioned_path
from sourcesound_restart.watchdog import Watchdog

logger = logging.getLogger(__name__)


def _make_registrar() -> ServiceRegistrar:
    if not IS_MACOS:
        raise UnsupportedPlatformError("service management requires macOS (launchd)")
    return ServiceRegistrar()


# ---- verbs ------------------------------------------------------------


def _cmd_install(args: argparse.Namespace, config: Config) -> int:
    registrar = _make_registrar()
    if args.target and is_versioned_path(args.target):
        print(f"Note: {args.target} is versioned; registering its opt path instead.")
    changed = registrar.install(args.target, resident=args.resident)
    if not config.path.exists():
        config.save()
    if changed:
        print(f"Installed LaunchAgent: {registrar.plist_path}")
    else:
        print("Already installed; nothing to do.")
    print(f"Logs: {get_log_path()}")
    return 0


def _cmd_uninstall(args: argparse.Namespace, config: Config) -> int:
    registrar = _make_registrar()
    if registrar.uninstall(purge=args.purge):
        print("Background service removed.")
        if args.purge:
            print("Logs and configuration removed.")
    else:
        print("Not installed; nothing to do.")
    return 0


def _cmd_status(args: argparse.Namespace, config: Config) -> int:
    status = _make_registrar().status()
    if status.state is ServiceState.RUNNING and status.job is not None:
        print(f"{__app_name__}: {status.state.value} (pid {status.job.pid})")
    else:
        print(f"{__app_name__}: {status.state.value}")
    if status.state is not ServiceState.NOT_INSTALLED:
        print(f"  plist:  {status.plist_path}")
        print(f"  loaded: {'yes' if status.loaded else 'no'}")
        if status.descriptor is not None:
            mode = "resident" if status.descriptor.resident else (
                f"every {status.descriptor.start_interval}s"
            )
            print(f"  target: {' '.join(status.descriptor.arguments)} ({mode})")
        else:
            print("  target: <unreadable plist>")
        if status.job is not None and status.job.last_exit_status:
            print(f"  last exit status: {status.job.last_exit_status}")
    print(f"  log:    {get_log_path()}")
    return 0


def _cmd_reload(args: argparse.Namespace, config: Config) -> int:
    registrar = _make_registrar()
    registrar.reload()
    print(f"Reloaded LaunchAgent: {registrar.plist_path}")
    return 0


def _cmd_run(args: argparse.Namespace, config: Config) -> int:
    Watchdog.from_config(config).run_pass()
    return 0


def _cmd_watch(args: argparse.Namespace, config: Config) -> int:
    Watchdog.from_config(config).watch()
    return 0


_COMMANDS = {
    "install": _cmd_install,
    "uninstall": _cmd_uninstall,
    "status": _cmd_status,
    "reload": _cmd_reload,
    "run": _cmd_run,
    "watch": _cmd_watch,
}

# Verbs launchd runs on its own; they never report failure.
_PERIODIC = frozenset({"run", "watch"})


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="sourcesound-restart",
        description="Restart SoundSource before its trial-mode noise kicks in.",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    sub = parser.add_subparsers(dest="command", metavar="COMMAND", required=True)

    p = sub.add_parser("install", help="Register the background service with launchd")
    p.add_argument(
        "--target",
        help="Executable launchd should run (default: sourcesound-restart on PATH)",
    )
    p.add_argument(
        "--resident",
        action="store_true",
        help="Keep one long-lived watcher alive instead of a periodic job",
    )

    p = sub.add_parser("uninstall", help="Unregister the background service")
    p.add_argument(
        "--purge", action="store_true", help="Also delete logs and configuration"
    )

    sub.add_parser("status", help="Show whether the service is installed and running")
    sub.add_parser("reload", help="Unload and load the service again")
    sub.add_parser("run", help="Perform a single watchdog pass")
    sub.add_parser("watch", help="Run watchdog passes until interrupted")
    return parser


def main(argv: list[str] | None = None) -> int:
    """Parse *argv*, dispatch the verb and return the exit status."""
    args = build_parser().parse_args(argv)
    try:
        config = Config()
        setup_logging(config)
        logger.debug("%s %s: %s", __app_name__, __version__, args.command)
        return _COMMANDS[args.command](args, config)
    except ServiceError as exc:
        logger.error("%s failed: %s", args.command, exc)
        print(f"ERROR: {exc}", file=sys.stderr)
        return 1
    except Exception:
        if args.command not in _PERIODIC:
            raise
        # run and watch exit 0 whatever happens
        logger.exception("%s aborted.", args.command)
        return 0


if __name__ == "__main__":
    sys.exit(main())
