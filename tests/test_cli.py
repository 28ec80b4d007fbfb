"""
Tests for the vpnrd command line.
"""

import argparse
import os
import sys
from unittest.mock import MagicMock, patch

import pytest
import yaml

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from conftest import make_script
from vpnrd import __version__
from vpnrd.cli.vpnrdctl import build_parser, format_command_failure, main
from vpnrd.enforcement.command_runner import CommandResult
from vpnrd.exceptions import CommandFailed
from vpnrd.status import StatusSnapshot


@pytest.fixture(autouse=True)
def quiet_logging():
    """Keep main() from replacing the root handlers pytest relies on."""
    with patch('vpnrd.cli.vpnrdctl.configure_from_environment'):
        yield


@pytest.fixture
def config_file(temp_dir):
    """A valid config with working scripts."""
    data = {
        'vpn_router_setup_path': str(make_script(temp_dir / "setup.sh",
                                                 'echo "WAN: en5  LAN: en8"')),
        'vpn_router_pf_apply_path': str(make_script(temp_dir / "pf_apply.sh")),
        'singbox_pid_file': str(temp_dir / "singbox.pid"),
    }
    path = temp_dir / "config.yaml"
    path.write_text(yaml.safe_dump(data))
    return path


# ===========================================================================
# Parser
# ===========================================================================

class TestParser:
    """Tests for argument parsing."""

    def test_global_flags(self):
        args = build_parser().parse_args(
            ['--config', '/tmp/c.yaml', '--wan', 'en5', '--lan', 'en8', '--debug', 'up'])
        assert args.config == '/tmp/c.yaml'
        assert (args.wan, args.lan) == ('en5', 'en8')
        assert args.debug
        assert args.command == 'up'

    def test_health_flags_after_subcommand(self):
        """run and status accept the health flags after the command."""
        args = build_parser().parse_args(['run', '--health-timeout', '2s',
                                          '--health-url', 'https://ifconfig.me/ip'])
        assert args.health_timeout == 2.0
        assert args.health_url == 'https://ifconfig.me/ip'

    def test_health_flags_before_subcommand_kept(self):
        """Flags given before the command are not reset by the subcommand."""
        args = build_parser().parse_args(['--health-timeout', '500ms', 'status'])
        assert args.health_timeout == 0.5

    def test_defaults(self):
        args = build_parser().parse_args(['status'])
        assert args.health_url is None
        assert args.health_timeout is None
        assert args.interval is None

    @pytest.mark.parametrize("value", ["soon", "0s", "-1"])
    def test_bad_duration(self, value):
        with pytest.raises(SystemExit):
            build_parser().parse_args(['--interval', value, 'run'])


# ===========================================================================
# main()
# ===========================================================================

class TestMain:
    """Tests for exit codes and user-facing output."""

    def test_version(self, capsys):
        assert main(['--version']) == 0
        assert __version__ in capsys.readouterr().out

    def test_no_command(self, capsys):
        assert main([]) == 1
        assert "usage" in capsys.readouterr().out.lower()

    def test_config_error(self, temp_dir):
        """An unusable config exits 1 before anything runs."""
        assert main(['-c', str(temp_dir / "missing.yaml"), 'status']) == 1

    def test_up_requires_root(self, config_file, capsys):
        with patch('vpnrd.privilege.is_elevated', return_value=False):
            assert main(['-c', str(config_file), 'up']) == 1
        assert "must run as root" in capsys.readouterr().err

    def test_script_failure_reported(self, config_file, temp_dir, capsys):
        """A failing setup script exits 1 with its output on stderr."""
        make_script(temp_dir / "setup.sh", 'echo "nat: no such interface" >&2; exit 3')
        with patch('vpnrd.privilege.is_elevated', return_value=True):
            assert main(['-c', str(config_file), 'up']) == 1
        err = capsys.readouterr().err
        assert "[vpnrd] up failed" in err
        assert "exit=3" in err
        assert "nat: no such interface" in err

    def test_status_prints_lines(self, config_file, capsys):
        """status prints the snapshot lines."""
        snapshot = StatusSnapshot(time_utc="2026-10-17T00:00:00Z",
                                  config_path=str(config_file))
        with patch('vpnrd.cli.vpnrdctl.VpnRouterDaemon') as daemon_cls:
            daemon_cls.return_value.status.return_value = snapshot
            assert main(['-c', str(config_file), 'status',
                         '--health-url', 'https://probe.test/ip']) == 0

        kwargs = daemon_cls.call_args[1]
        assert kwargs['health_url'] == 'https://probe.test/ip'
        out = capsys.readouterr().out
        assert f"[vpnrd] config: {config_file}" in out
        assert "[vpnrd] tunnel: no owned process recorded" in out

    def test_run_without_interfaces(self, config_file, caplog):
        """run exits 1 before the watchdog starts when WAN/LAN are unknown."""
        with patch('vpnrd.privilege.is_elevated', return_value=True), \
                patch('vpnrd.vpn_router_daemon.RecoveryController') as controller_cls:
            assert main(['-c', str(config_file), 'run']) == 1
        controller_cls.assert_not_called()
        assert any("wan_if/lan_if not set" in r.getMessage() for r in caplog.records)

    def test_down_without_teardown_script(self, config_file, capsys):
        """down stops nothing when nothing is owned and reports DOWN."""
        with patch('vpnrd.privilege.is_elevated', return_value=True):
            assert main(['-c', str(config_file), 'down']) == 0
        assert "[vpnrd] router DOWN" in capsys.readouterr().out


class TestFormatting:
    """Tests for failure message formatting."""

    def test_format_command_failure(self):
        error = CommandFailed("pf_apply.sh: exit status 1", "pf_apply.sh",
                              CommandResult(exit_code=1, stdout="loading",
                                            stderr="syntax error"))
        message = format_command_failure("pf_apply", error)
        assert message.startswith("[vpnrd] pf_apply failed:")
        assert "exit=1" in message
        assert "stdout:\nloading" in message
        assert "stderr:\nsyntax error" in message
