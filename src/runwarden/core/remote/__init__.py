"""Remote side: channels to reach a VM, the programs we run there, and the probe."""

from runwarden.core.remote.channel import LimaChannel, LocalChannel, RemoteChannel, SshChannel, make_channel
from runwarden.core.remote.probe import RemoteStateProbe, parse_probe_output

__all__ = [
    "LimaChannel",
    "LocalChannel",
    "RemoteChannel",
    "RemoteStateProbe",
    "SshChannel",
    "make_channel",
    "parse_probe_output",
]
