#!/usr/bin/env python3
"""
vpnrd - tunnel router daemon CLI

Commands:
    up              Start the VPN router (router setup + tunnel + policy)
    down            Stop the VPN router and restore normal state
    run             Run the watchdog loop (keeps the tunnel healthy)
    status          Show current status

Usage:
    sudo vpnrd up
    sudo vpnrd --wan en5 --lan en8 up
    sudo vpnrd run --health-timeout 2s
    vpnrd status --health-url https://ifconfig.me/ip
    vpnrd --debug status

Environment:
    VPNRD_CONFIG      Path to configuration file
    VPNRD_DEBUG       Set to 1 to dump intermediate results as JSON
    VPNRD_VERBOSE     Set to 1 for verbose logging
    VPNRD_LOG_FILE    Also write logs to this file
"""

import argparse
import logging
import signal
import sys

from .. import __version__
from ..config.settings import load_config, parse_duration
from ..constants import Paths
from ..enforcement.command_runner import CommandResult
from ..exceptions import CommandError, ConfigInvalid, PrivilegeError, VpnrdError
from ..logging_config import configure_from_environment
from ..utils.debug import DebugDumper
from ..vpn_router_daemon import VpnRouterDaemon

logger = logging.getLogger(__name__)


def _duration(value: str) -> float:
    try:
        seconds = parse_duration(value)
    except ValueError as e:
        raise argparse.ArgumentTypeError(str(e))
    if seconds <= 0:
        raise argparse.ArgumentTypeError(f"duration must be > 0, got {value!r}")
    return seconds


def print_script_success(tag: str, result: CommandResult):
    """Minimal user-facing output; logs carry the details."""
    stdout = result.stdout.strip()
    stderr = result.stderr.strip()
    print(f"[vpnrd] {tag}: ok")
    if stdout:
        print(stdout if not stderr else f"stdout:\n{stdout}")
    if stderr:
        print(stderr if not stdout else f"stderr:\n{stderr}")


def format_command_failure(tag: str, error: CommandError) -> str:
    """Failure message including the captured output."""
    message = f"[vpnrd] {tag} failed: {error} (exit={error.exit_code})"
    if error.result is not None:
        if error.result.stdout.strip():
            message += "\nstdout:\n" + error.result.stdout.strip()
        if error.result.stderr.strip():
            message += "\nstderr:\n" + error.result.stderr.strip()
    return message


# =============================================================================
# COMMANDS
# =============================================================================

def cmd_up(daemon: VpnRouterDaemon, args) -> int:
    """Start the router."""
    result = daemon.up()
    print_script_success("setup", result.setup)
    print_script_success("pf_apply", result.policy)
    print(f"[vpnrd] router UP; interface={result.interface} wan={result.wan} lan={result.lan}")
    return 0


def cmd_down(daemon: VpnRouterDaemon, args) -> int:
    """Stop the router."""
    result = daemon.down()
    if result is not None:
        print_script_success("down", result)
    print("[vpnrd] router DOWN")
    return 0


def cmd_run(daemon: VpnRouterDaemon, args) -> int:
    """Run the watchdog until SIGTERM / Ctrl-C."""
    controller = daemon.build_controller()

    def handle_term(signum, frame):
        logger.info(f"Received signal {signum}, stopping watchdog")
        controller.request_stop()

    signal.signal(signal.SIGTERM, handle_term)
    try:
        daemon.run_watchdog(controller=controller)
    except KeyboardInterrupt:
        logger.info("Interrupted, stopping watchdog")
    state = controller.state
    print(f"[vpnrd] watchdog stopped; recoveries={state.recoveries_used}/{state.budget} "
          f"succeeded={state.successful_recoveries}")
    return 0


def cmd_status(daemon: VpnRouterDaemon, args) -> int:
    """Show status."""
    snapshot = daemon.status()
    for line in snapshot.format_lines():
        print(line)
    return 0


# =============================================================================
# PARSER
# =============================================================================

def _add_health_flags(parser, suppress: bool):
    default = argparse.SUPPRESS if suppress else None
    parser.add_argument('--health-url', default=default,
                        help='Health check URL (overrides config)')
    parser.add_argument('--health-timeout', type=_duration, default=default,
                        help='Health check timeout, e.g. 2s (overrides config; '
                             'also sets the check interval unless --interval is given)')


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='vpnrd',
        description='Tunnel router daemon: supervises the tunnel and keeps it healthy',
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument('--version', action='store_true', help='Show version and exit')
    parser.add_argument('--config', '-c', default=None,
                        help=f'Path to config file (default: {Paths.default_config_path()})')
    parser.add_argument('--debug', action='store_true',
                        help='Enable debug dumps (or set VPNRD_DEBUG=1)')
    parser.add_argument('--wan', default=None, help='Override WAN interface')
    parser.add_argument('--lan', default=None, help='Override LAN interface')
    _add_health_flags(parser, suppress=False)
    parser.add_argument('--interval', type=_duration, default=None,
                        help='Watchdog check interval, e.g. 10s (overrides config)')
    parser.add_argument('--verbose', '-v', action='store_true', help='Verbose logging')
    parser.add_argument('--trace', action='store_true', help='Trace logging (implies verbose)')
    parser.add_argument('--log-file', default=None, help='Also write logs to this file')
    parser.add_argument('--log-json', action='store_true', help='Log as JSON lines')

    subparsers = parser.add_subparsers(dest='command', help='Commands')

    up_parser = subparsers.add_parser('up', help='Start VPN router (tunnel + pf NAT)')
    up_parser.set_defaults(func=cmd_up)

    down_parser = subparsers.add_parser('down', help='Stop VPN router and restore normal state')
    down_parser.set_defaults(func=cmd_down)

    run_parser = subparsers.add_parser('run', help='Run watchdog daemon (keeps tunnel healthy)')
    _add_health_flags(run_parser, suppress=True)
    run_parser.set_defaults(func=cmd_run)

    status_parser = subparsers.add_parser('status', help='Show current status')
    _add_health_flags(status_parser, suppress=True)
    status_parser.set_defaults(func=cmd_status)

    return parser


def main(argv=None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.version:
        print(f"vpnrd version {__version__}")
        return 0

    if not args.command:
        parser.print_help()
        return 1

    configure_from_environment(
        verbose=args.verbose,
        trace=args.trace,
        log_file=args.log_file,
        json_format=args.log_json,
    )
    debug = DebugDumper.from_environment(args.debug)

    try:
        config = load_config(args.config)
    except ConfigInvalid as e:
        logger.error(f"config load failed: {e}")
        return 1

    daemon = VpnRouterDaemon(
        config,
        debug=debug,
        wan=args.wan,
        lan=args.lan,
        health_url=args.health_url,
        health_timeout=args.health_timeout,
        interval=args.interval,
    )

    try:
        return args.func(daemon, args)
    except PrivilegeError as e:
        print(f"[vpnrd] {e}", file=sys.stderr)
        return 1
    except CommandError as e:
        print(format_command_failure(args.command, e), file=sys.stderr)
        return 1
    except VpnrdError as e:
        logger.error(f"{args.command} failed: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
