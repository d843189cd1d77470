"""
Unit tests for the command line interface.
"""

from unittest.mock import patch

import pytest
from click.testing import CliRunner

from ruuvi_gateway import __version__
from ruuvi_gateway.cli.commands import cli
from tests.fixtures.sensor_data import SensorDataFixtures


F = SensorDataFixtures


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def env_args(clean_env, tmp_path):
    """Point the CLI at an empty environment file."""
    env_file = tmp_path / "gateway.env"
    env_file.write_text("")
    return ["--env-file", str(env_file)]


class TestDecodeCommand:
    """Test offline payload decoding."""

    def test_format5(self, runner):
        result = runner.invoke(cli, ["decode", F.FORMAT5_VALID.hex()])

        assert result.exit_code == 0
        assert "Ruuvi data format 5" in result.output
        assert F.TAG_MAC in result.output
        assert "24.3" in result.output
        assert "100044" in result.output
        assert "Errors" not in result.output

    def test_format3_with_separators(self, runner):
        payload = ":".join(f"{b:02x}" for b in F.FORMAT3_VALID)

        result = runner.invoke(cli, ["decode", payload, "--mac", F.TAG_MAC.lower()])

        assert result.exit_code == 0
        assert "Ruuvi data format 3" in result.output
        assert "26.3" in result.output

    def test_hex_prefix(self, runner):
        result = runner.invoke(cli, ["decode", "0x" + F.FORMAT5_VALID.hex()])
        assert result.exit_code == 0

    def test_invalid_fields_reported(self, runner):
        result = runner.invoke(cli, ["decode", F.FORMAT5_INVALID.hex()])

        assert result.exit_code == 0
        assert "Errors:" in result.output
        assert "Temperature 0x8000 invalid" in result.output

    def test_strict_fails(self, runner):
        result = runner.invoke(cli, ["decode", F.FORMAT5_INVALID.hex(), "--strict"])

        assert result.exit_code == 1
        assert "conversion failed" in result.output

    def test_short_payload(self, runner):
        result = runner.invoke(cli, ["decode", F.FORMAT5_VALID[:8].hex()])

        assert result.exit_code == 1
        assert "Data format 5 conversion failed" in result.output

    def test_unknown_format(self, runner):
        result = runner.invoke(cli, ["decode", F.BROKEN_FORMAT.hex()])

        assert result.exit_code == 1
        assert "Not a supported Ruuvi payload: UNKNOWN_FORMAT" in result.output

    def test_other_manufacturer(self, runner):
        result = runner.invoke(cli, ["decode", F.FORMAT5_VALID.hex(), "--manufacturer-id", "0x004c"])

        assert result.exit_code == 1
        assert "NOT_RUUVI_TAG" in result.output

    def test_bad_hex(self, runner):
        result = runner.invoke(cli, ["decode", "zz12"])

        assert result.exit_code == 2
        assert "not a hex string" in result.output

    def test_bad_manufacturer_id(self, runner):
        result = runner.invoke(cli, ["decode", F.FORMAT5_VALID.hex(), "--manufacturer-id", "ruuvi"])
        assert result.exit_code == 2


class TestConfigCommand:
    """Test configuration display and validation."""

    def test_valid_configuration(self, runner, env_args):
        result = runner.invoke(cli, env_args + ["config"])

        assert result.exit_code == 0
        assert "hci0" in result.output
        assert "9105" in result.output
        assert "Configuration is valid" in result.output

    def test_invalid_configuration(self, runner, clean_env, tmp_path):
        env_file = tmp_path / "gateway.env"
        env_file.write_text("EXPOSER_PORT=0\n")

        result = runner.invoke(cli, ["--env-file", str(env_file), "config"])

        assert result.exit_code == 1
        assert "EXPOSER_PORT must be between 1 and 65535" in result.output

    def test_unparseable_value(self, runner, clean_env, tmp_path):
        env_file = tmp_path / "gateway.env"
        env_file.write_text("BLE_RETRY_ATTEMPTS=many\n")

        result = runner.invoke(cli, ["--env-file", str(env_file), "config"])

        assert result.exit_code == 1
        assert "must be an integer" in result.output


class TestRunCommand:
    """Test the service entry point."""

    def test_options_override_configuration(self, runner, env_args):
        with patch("ruuvi_gateway.cli.commands.setup_logging") as setup_logging, \
                patch("ruuvi_gateway.cli.commands.RuuviGateway") as gateway_class:
            gateway_class.return_value.run.return_value = 0

            result = runner.invoke(cli, env_args + [
                "run", "--adapter", "hci1", "--port", "9200", "--address", "127.0.0.1",
                "-b", "AA:BB:CC:DD:EE:FF", "--no-sysinfo", "--strict"])

        assert result.exit_code == 0
        setup_logging.assert_called_once()

        config = gateway_class.call_args[0][0]
        assert config.ble_adapter == "hci1"
        assert config.exposer_port == 9200
        assert config.exposer_address == "127.0.0.1"
        assert config.ble_blacklist == ["AA:BB:CC:DD:EE:FF"]
        assert not config.sysinfo_enabled
        assert config.decode_strict

    def test_blacklist_option_extends_configuration(self, runner, clean_env, tmp_path):
        env_file = tmp_path / "gateway.env"
        env_file.write_text("BLE_BLACKLIST=11:22:33:44:55:66\n")

        with patch("ruuvi_gateway.cli.commands.setup_logging"), \
                patch("ruuvi_gateway.cli.commands.RuuviGateway") as gateway_class:
            gateway_class.return_value.run.return_value = 0
            runner.invoke(cli, ["--env-file", str(env_file), "run", "-b", "AA:BB:CC:DD:EE:FF"])

        config = gateway_class.call_args[0][0]
        assert config.ble_blacklist == ["11:22:33:44:55:66", "AA:BB:CC:DD:EE:FF"]

    def test_exit_code_from_gateway(self, runner, env_args):
        with patch("ruuvi_gateway.cli.commands.setup_logging"), \
                patch("ruuvi_gateway.cli.commands.RuuviGateway") as gateway_class:
            gateway_class.return_value.run.return_value = 1

            result = runner.invoke(cli, env_args + ["run"])

        assert result.exit_code == 1

    def test_invalid_blacklist_rejected(self, runner, env_args):
        with patch("ruuvi_gateway.cli.commands.RuuviGateway") as gateway_class:
            result = runner.invoke(cli, env_args + ["run", "-b", "not-a-mac"])

        assert result.exit_code == 1
        assert "invalid MAC address" in result.output
        gateway_class.assert_not_called()


class TestCheckCommand:
    """Test the diagnostics command."""

    def test_all_checks_pass(self, runner, env_args):
        with patch("ruuvi_gateway.cli.commands.BluetoothDiagnostics") as diagnostics:
            diagnostics.return_value.run_checks.return_value = [(True, "Bluetooth service is active")]

            result = runner.invoke(cli, env_args + ["check", "--adapter", "hci1"])

        assert result.exit_code == 0
        diagnostics.assert_called_once_with("hci1")
        assert "Bluetooth service is active" in result.output

    def test_failed_check(self, runner, env_args):
        with patch("ruuvi_gateway.cli.commands.BluetoothDiagnostics") as diagnostics:
            diagnostics.return_value.run_checks.return_value = [
                (True, "Bluetooth service is active"),
                (False, "Bluetooth adapter hci0 not found"),
            ]

            result = runner.invoke(cli, env_args + ["check"])

        assert result.exit_code == 1
        diagnostics.assert_called_once_with("hci0")
        assert "FAIL" in result.output


def test_version(runner):
    result = runner.invoke(cli, ["--version"])

    assert result.exit_code == 0
    assert __version__ in result.output
