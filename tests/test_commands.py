"""Tests for the canned airOS commands."""

from __future__ import annotations

import pytest

from conftest import FakeChannel
from ubntssh.commands import Status, save_config, scan, station_list, status, status_record
from ubntssh.config import SAVE_COMMAND, SCAN_COMMAND, STATION_LIST_COMMAND, STATUS_COMMAND
from ubntssh.errors import ParseOverflowError


def test_station_list_strips_line_breaks(authed_session, channel_queue) -> None:
    channel = FakeChannel([b'[\n{"mac":"00:27:22:11:22:33",\t"signal":-61}\r\n]\n'], eof=True)
    channel_queue.append(channel)

    assert station_list(authed_session) == '[{"mac":"00:27:22:11:22:33","signal":-61}]'
    assert channel.command == STATION_LIST_COMMAND


def test_scan_keeps_spaces(authed_session, channel_queue) -> None:
    channel = FakeChannel([b'[{"essid":"north tower",\n"channel":36}]\n'], eof=True)
    channel_queue.append(channel)

    assert scan(authed_session) == '[{"essid":"north tower","channel":36}]'
    assert channel.command == SCAN_COMMAND


def test_status_is_transcoded(authed_session, channel_queue) -> None:
    channel = FakeChannel([b"deviceName=ap1,wlanOpmode=ap\r\nsignal=-55\r\n"], eof=True)
    channel_queue.append(channel)

    assert status(authed_session) == '[{"deviceName":"ap1","wlanOpmode":"ap","signal":"-55"}]'
    assert channel.command == STATUS_COMMAND


def test_status_record(authed_session, channel_queue) -> None:
    channel_queue.append(FakeChannel([b"essid=Test, value\nmode=ap\n"], eof=True))

    assert status_record(authed_session) == [("essid", "Test--value"), ("mode", "ap")]


def test_status_capacity(authed_session, channel_queue) -> None:
    channel_queue.append(FakeChannel([b"a=1\nb=2\n"], eof=True))

    with pytest.raises(ParseOverflowError):
        status(authed_session, max_chars=8)


class TestSaveConfig:
    def test_zero_exit_status(self, authed_session, channel_queue) -> None:
        channel = FakeChannel(eof=True, exit_status=0)
        channel_queue.append(channel)

        assert save_config(authed_session) is Status.SUCCESS
        assert channel.command == SAVE_COMMAND

    def test_nonzero_exit_status(self, authed_session, channel_queue) -> None:
        channel_queue.append(FakeChannel([b"cfgmtd: write failed\n"], eof=True, exit_status=1))

        assert save_config(authed_session) is Status.ERROR

    def test_missing_exit_status(self, authed_session, channel_queue, capsys) -> None:
        channel_queue.append(FakeChannel(eof=True))

        assert save_config(authed_session, exit_status_wait=0.1) is Status.ERROR
        assert "no exit status" in capsys.readouterr().err

    def test_legacy_output_check(self, authed_session, channel_queue) -> None:
        channel_queue.append(FakeChannel([b"Found /etc/persistent\n"], eof=True, exit_status=1))

        with pytest.warns(DeprecationWarning, match="legacy_output_check"):
            assert save_config(authed_session, legacy_output_check=True) is Status.SUCCESS

    def test_legacy_output_check_without_output(self, authed_session, channel_queue) -> None:
        channel_queue.append(FakeChannel(eof=True, exit_status=0))

        with pytest.warns(DeprecationWarning):
            assert save_config(authed_session, legacy_output_check=True) is Status.ERROR
