import runpy
from unittest.mock import patch


def test_main_module_execution():
    """Test execution as __main__"""
    with patch("prsync.cli.commands.cli") as mock_cli:
        runpy.run_module("prsync.__main__", run_name="__main__")

        mock_cli.assert_called_once()


def test_console_script_target():
    from prsync.cli.commands import cli

    assert cli.name == "cli"
    assert set(cli.commands) >= {"sync", "plan", "logs", "config"}
