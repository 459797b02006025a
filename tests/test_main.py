#!/usr/bin/env python3
"""Unit tests for the CLI entry point.

Tests cover:
    - Argument parsing for each sub-command
    - Device id input from arguments and files
    - Exit codes for configuration and authentication failures
"""
import sys
from argparse import Namespace
from unittest.mock import AsyncMock, patch

import pytest

sys.path.insert(0, str(__file__).rsplit("/tests", 1)[0])
import main
from src.abm.api.exceptions import InvalidCredentialsError, NotFoundError


@pytest.fixture
def abm_env(monkeypatch, tmp_path):
    monkeypatch.setenv("ABM_MANAGER_TYPE", "business")
    monkeypatch.setenv("ABM_CLIENT_ID", "BUSINESSAPI.test")
    monkeypatch.setenv("ABM_CLIENT_ASSERTION", "jwt")
    monkeypatch.setenv("ABM_OUTPUT_DIR", str(tmp_path))
    return monkeypatch


class TestParser:

    def test_export_defaults(self):
        args = main.build_parser().parse_args(["export", "--server", "S1,S2"])

        assert args.command == "export"
        assert args.server == "S1,S2"
        assert args.format == "csv"
        assert not args.coverage
        assert not args.all_servers

    def test_assign_requires_server(self):
        with pytest.raises(SystemExit):
            main.build_parser().parse_args(["assign", "--devices", "SN1"])

    def test_unassign_has_no_server_option(self):
        with pytest.raises(SystemExit):
            main.build_parser().parse_args(["unassign", "--server", "S1"])

    def test_activity(self):
        args = main.build_parser().parse_args(
            ["--manager-type", "school", "activity", "ACT-1", "--download"]
        )

        assert args.manager_type == "school"
        assert args.activity_id == "ACT-1"
        assert args.download

    def test_command_is_required(self):
        with pytest.raises(SystemExit):
            main.build_parser().parse_args([])


class TestReadDeviceIds:

    def test_from_argument_and_file(self, tmp_path):
        devices_file = tmp_path / "serials.txt"
        devices_file.write_text("SN2\nSN3\n\nSN1\n")
        args = Namespace(devices="SN1,SN2", devices_file=str(devices_file))

        assert main.read_device_ids(args) == ["SN1", "SN2", "SN3"]

    def test_nothing_given(self):
        assert main.read_device_ids(Namespace(devices=None, devices_file=None)) == []


class TestRun:

    @pytest.mark.asyncio
    async def test_configuration_error_exit_code(self, monkeypatch):
        for name in ("ABM_MANAGER_TYPE", "ABM_CLIENT_ID", "ABM_CLIENT_ASSERTION", "ABM_CLIENT_ASSERTION_FILE"):
            monkeypatch.delenv(name, raising=False)
        args = main.build_parser().parse_args(["servers"])

        assert await main.run(args) == 2

    @pytest.mark.asyncio
    async def test_dispatches_command(self, abm_env):
        args = main.build_parser().parse_args(["unassign", "--devices", "SN1"])

        with patch.object(main, "cmd_mutate", new=AsyncMock(return_value=0)) as cmd:
            code = await main.run(args)

        assert code == 0
        assert cmd.await_args.args[2] is main.MutationKind.UNASSIGN

    @pytest.mark.asyncio
    async def test_authentication_failure_exit_code(self, abm_env):
        args = main.build_parser().parse_args(["servers"])

        with patch.object(main, "cmd_servers", new=AsyncMock(side_effect=InvalidCredentialsError())):
            assert await main.run(args) == 1

    @pytest.mark.asyncio
    async def test_api_failure_exit_code(self, abm_env):
        args = main.build_parser().parse_args(["activity", "ACT-1"])

        with patch.object(main, "cmd_activity", new=AsyncMock(side_effect=NotFoundError("Activity", "ACT-1"))):
            assert await main.run(args) == 1

    @pytest.mark.asyncio
    async def test_mutation_without_devices(self, abm_env, capsys):
        args = main.build_parser().parse_args(["unassign"])

        assert await main.run(args) == 1
        assert "No device ids given" in capsys.readouterr().out

    @pytest.mark.asyncio
    async def test_missing_devices_file(self, abm_env, tmp_path, capsys):
        args = main.build_parser().parse_args(
            ["unassign", "--devices-file", str(tmp_path / "missing.txt")]
        )

        assert await main.run(args) == 1
        assert "Cannot read device file" in capsys.readouterr().out


class TestExportDetails:

    def test_details_format_is_accepted(self):
        args = main.build_parser().parse_args(["export", "--all-servers", "--format", "details"])

        assert args.format == "details"

    @pytest.mark.asyncio
    async def test_details_are_printed(self, abm_env, capsys):
        from src.abm.sync.domain.entities import DeviceRecord, DeviceReference, EnrichmentResult, WorkingSet

        args = main.build_parser().parse_args(["export", "--all-servers", "--format", "details"])
        record = DeviceRecord(id="DEV1", serial_number="DEV1", model="iPad Air")

        with patch.object(main, "ABMClient") as client_cls, \
                patch.object(main, "fetch_servers", new=AsyncMock(return_value=[main.ManagementServer("S1", "Jamf Pro")])), \
                patch.object(main.CollectDevicesUseCase, "execute", new=AsyncMock(return_value=WorkingSet([DeviceReference("DEV1")]))), \
                patch.object(main.EnrichDevicesUseCase, "execute", new=AsyncMock(return_value=EnrichmentResult([record], 1))):
            client_cls.return_value.__aenter__ = AsyncMock()
            client_cls.return_value.__aexit__ = AsyncMock(return_value=None)
            code = await main.run(args)

        out = capsys.readouterr().out
        assert code == 0
        assert "DEVICE DETAILS" in out
        assert "Serial: DEV1" in out
        assert "  Model:            iPad Air" in out
