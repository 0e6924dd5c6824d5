# src/runwarden/core/remote/channel.py
"""Remote channel: run a bash script on a VM and return its stdout.

The channel is best-effort. Anything that means "we could not ask" (transport
binary missing, connection refused, ssh exit 255, timeout) is ProbeUnreachable.
A script that ran and failed is RemoteCommandError; callers that give exit
codes a meaning (the launch guard) inspect its returncode.

Implementations:
- SshChannel: ssh, optionally resolving libvirt domain names with virsh
- LimaChannel: limactl shell (macOS hosts)
- LocalChannel: bash on this machine (single-host setups and tests)
"""

from __future__ import annotations

import re
import subprocess
from typing import Protocol

import structlog

from runwarden.contracts.enums import Transport
from runwarden.contracts.errors import ProbeUnreachable, RemoteCommandError
from runwarden.core.config import RemoteSettings

logger = structlog.get_logger(__name__)

# ssh reserves 255 for its own failures (auth, connect, resolve)
_SSH_FAILURE = 255

_VIRSH_IPV4 = re.compile(r"ipv4\s+(\d{1,3}(?:\.\d{1,3}){3})")


class RemoteChannel(Protocol):
    """Shell access to a target host.

    Implementations:
    - SshChannel
    - LimaChannel
    - LocalChannel
    """

    def run(self, host: str, script: str, *, timeout_seconds: float) -> str:
        """Run script with `bash -s` on host.

        Returns:
            The script's stdout

        Raises:
            ProbeUnreachable: Host could not be reached in time
            RemoteCommandError: Script exited non-zero
        """
        ...


def _run_script(
    argv: list[str],
    script: str,
    *,
    host: str,
    timeout_seconds: float,
    unreachable_returncodes: frozenset[int] = frozenset(),
) -> str:
    try:
        result = subprocess.run(
            argv,
            input=script,
            capture_output=True,
            text=True,
            timeout=timeout_seconds,
            check=False,
        )
    except subprocess.TimeoutExpired as e:
        raise ProbeUnreachable(host, f"timed out after {timeout_seconds:g}s") from e
    except OSError as e:
        raise ProbeUnreachable(host, f"cannot start {argv[0]}: {e}") from e

    if result.returncode in unreachable_returncodes:
        detail = result.stderr.strip() or f"{argv[0]} exited {result.returncode}"
        raise ProbeUnreachable(host, detail)
    if result.returncode != 0:
        raise RemoteCommandError(host, result.returncode, result.stderr)
    return result.stdout


class SshChannel:
    """Run scripts over ssh."""

    def __init__(
        self,
        *,
        user: str | None = None,
        ssh_options: tuple[str, ...] = (),
        resolve_with_virsh: bool = False,
    ) -> None:
        self._user = user
        self._ssh_options = ssh_options
        self._resolve_with_virsh = resolve_with_virsh

    def argv(self, address: str, timeout_seconds: float) -> list[str]:
        """ssh command line for one round trip."""
        argv = ["ssh"]
        for option in self._ssh_options:
            argv.extend(["-o", option])
        # ConnectTimeout only takes whole seconds
        argv.extend(["-o", f"ConnectTimeout={max(1, int(timeout_seconds))}"])
        argv.append(f"{self._user}@{address}" if self._user else address)
        argv.extend(["bash", "-s"])
        return argv

    def resolve(self, host: str, timeout_seconds: float) -> str:
        """Turn a libvirt domain name into its IPv4 address.

        Raises:
            ProbeUnreachable: virsh failed or the domain has no address yet
        """
        if not self._resolve_with_virsh:
            return host
        try:
            output = _run_script(
                ["virsh", "-c", "qemu:///system", "domifaddr", host],
                "",
                host=host,
                timeout_seconds=timeout_seconds,
            )
        except RemoteCommandError as e:
            raise ProbeUnreachable(host, f"virsh domifaddr failed: {e.stderr.strip()}") from e
        match = _VIRSH_IPV4.search(output)
        if match is None:
            raise ProbeUnreachable(host, "no IPv4 address reported by virsh domifaddr")
        return match.group(1)

    def run(self, host: str, script: str, *, timeout_seconds: float) -> str:
        address = self.resolve(host, timeout_seconds)
        return _run_script(
            self.argv(address, timeout_seconds),
            script,
            host=host,
            timeout_seconds=timeout_seconds,
            unreachable_returncodes=frozenset({_SSH_FAILURE}),
        )


class LimaChannel:
    """Run scripts inside a Lima VM."""

    def run(self, host: str, script: str, *, timeout_seconds: float) -> str:
        return _run_script(
            ["limactl", "shell", host, "bash", "-s"],
            script,
            host=host,
            timeout_seconds=timeout_seconds,
            unreachable_returncodes=frozenset({_SSH_FAILURE}),
        )


class LocalChannel:
    """Run scripts with the local bash. The host name is only used in errors."""

    def run(self, host: str, script: str, *, timeout_seconds: float) -> str:
        return _run_script(["bash", "-s"], script, host=host, timeout_seconds=timeout_seconds)


def make_channel(settings: RemoteSettings) -> RemoteChannel:
    """Build the channel selected by remote.transport."""
    match settings.transport:
        case Transport.SSH:
            return SshChannel(
                user=settings.user,
                ssh_options=settings.ssh_options,
                resolve_with_virsh=settings.resolve_with_virsh,
            )
        case Transport.LIMA:
            return LimaChannel()
        case Transport.LOCAL:
            return LocalChannel()
    raise ValueError(f"Unknown transport: {settings.transport!r}")
