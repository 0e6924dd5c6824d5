# tests/core/remote/test_channel.py
"""Tests for remote channels.

LocalChannel runs real bash; ssh and limactl are never invoked here.
"""

import pytest

from runwarden.contracts import ProbeUnreachable, RemoteCommandError, Transport
from runwarden.core.config import RemoteSettings
from runwarden.core.remote import LimaChannel, LocalChannel, SshChannel, make_channel
from runwarden.core.remote import channel as channel_module


class TestLocalChannel:
    def test_returns_stdout(self) -> None:
        assert LocalChannel().run("localhost", "echo hello", timeout_seconds=5) == "hello\n"

    def test_script_is_fed_on_stdin(self) -> None:
        output = LocalChannel().run("localhost", "read -r line <<< 'x y'\necho \"$line\"\n", timeout_seconds=5)
        assert output.strip() == "x y"

    def test_nonzero_exit_is_remote_command_error(self) -> None:
        with pytest.raises(RemoteCommandError) as exc_info:
            LocalChannel().run("localhost", "echo broken >&2\nexit 3\n", timeout_seconds=5)

        assert exc_info.value.returncode == 3
        assert "broken" in exc_info.value.stderr
        assert exc_info.value.host == "localhost"

    def test_timeout_is_unreachable(self) -> None:
        with pytest.raises(ProbeUnreachable, match="timed out"):
            LocalChannel().run("localhost", "exec sleep 5\n", timeout_seconds=0.3)


class TestRunScript:
    def test_missing_binary_is_unreachable(self) -> None:
        with pytest.raises(ProbeUnreachable, match="cannot start"):
            channel_module._run_script(["/nonexistent/runwarden-transport"], "", host="vm", timeout_seconds=1)

    def test_transport_failure_code_is_unreachable(self) -> None:
        with pytest.raises(ProbeUnreachable) as exc_info:
            channel_module._run_script(
                ["bash", "-s"],
                "echo 'Connection refused' >&2\nexit 255\n",
                host="ralph-1",
                timeout_seconds=5,
                unreachable_returncodes=frozenset({255}),
            )

        assert exc_info.value.host == "ralph-1"
        assert "Connection refused" in exc_info.value.detail


class TestSshChannel:
    def test_argv(self) -> None:
        channel = SshChannel(user="ralph", ssh_options=("BatchMode=yes", "LogLevel=ERROR"))

        assert channel.argv("10.0.0.5", 15.0) == [
            "ssh",
            "-o",
            "BatchMode=yes",
            "-o",
            "LogLevel=ERROR",
            "-o",
            "ConnectTimeout=15",
            "ralph@10.0.0.5",
            "bash",
            "-s",
        ]

    def test_connect_timeout_is_at_least_one_second(self) -> None:
        argv = SshChannel().argv("vm", 0.4)

        assert "ConnectTimeout=1" in argv
        assert argv[-3] == "vm"

    def test_resolve_without_virsh_is_identity(self) -> None:
        assert SshChannel().resolve("ralph-1", 5) == "ralph-1"

    def test_resolve_with_virsh(self, monkeypatch: pytest.MonkeyPatch) -> None:
        virsh_output = (
            " Name       MAC address          Protocol     Address\n"
            "-------------------------------------------------------\n"
            " vnet3      52:54:00:ab:cd:ef    ipv4         192.168.122.41/24\n"
        )
        calls: list[list[str]] = []

        def fake_run_script(argv: list[str], script: str, **kwargs: object) -> str:
            calls.append(argv)
            return virsh_output

        monkeypatch.setattr(channel_module, "_run_script", fake_run_script)

        assert SshChannel(resolve_with_virsh=True).resolve("ralph-1", 5) == "192.168.122.41"
        assert calls == [["virsh", "-c", "qemu:///system", "domifaddr", "ralph-1"]]

    def test_resolve_without_address_is_unreachable(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr(channel_module, "_run_script", lambda argv, script, **kwargs: " Name  MAC address  Protocol  Address\n")

        with pytest.raises(ProbeUnreachable, match="no IPv4 address"):
            SshChannel(resolve_with_virsh=True).resolve("ralph-1", 5)

    def test_virsh_failure_is_unreachable(self, monkeypatch: pytest.MonkeyPatch) -> None:
        def failing(argv: list[str], script: str, **kwargs: object) -> str:
            raise RemoteCommandError("ralph-1", 1, "error: failed to get domain 'ralph-1'")

        monkeypatch.setattr(channel_module, "_run_script", failing)

        with pytest.raises(ProbeUnreachable, match="virsh domifaddr failed"):
            SshChannel(resolve_with_virsh=True).resolve("ralph-1", 5)


class TestMakeChannel:
    @pytest.mark.parametrize(
        ("transport", "expected"),
        [
            (Transport.SSH, SshChannel),
            (Transport.LIMA, LimaChannel),
            (Transport.LOCAL, LocalChannel),
        ],
    )
    def test_transport_selects_channel(self, transport: Transport, expected: type) -> None:
        assert isinstance(make_channel(RemoteSettings(transport=transport)), expected)

    def test_ssh_channel_uses_settings(self) -> None:
        channel = make_channel(RemoteSettings(user="builder", ssh_options=("BatchMode=yes",)))

        assert isinstance(channel, SshChannel)
        assert channel.argv("vm", 5)[:3] == ["ssh", "-o", "BatchMode=yes"]
        assert "builder@vm" in channel.argv("vm", 5)
