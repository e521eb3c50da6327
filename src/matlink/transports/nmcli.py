"""Wi-Fi transport backed by NetworkManager's nmcli."""

import logging
from typing import List, Optional

from matlink.models.device import WifiNetwork
from matlink.services.process import CommandError, CommandRunner


def split_terse(line: str) -> List[str]:
    """Split an ``nmcli -t`` line on unescaped colons.

    nmcli escapes literal colons as ``\\:`` and backslashes as ``\\\\``.
    """
    fields: List[str] = []
    current: List[str] = []
    escaped = False
    for char in line:
        if escaped:
            current.append(char)
            escaped = False
        elif char == "\\":
            escaped = True
        elif char == ":":
            fields.append("".join(current))
            current = []
        else:
            current.append(char)
    fields.append("".join(current))
    return fields


class NmcliNetworkTransport:
    """Lists and joins Wi-Fi networks through nmcli."""

    def __init__(self, interface: Optional[str] = None, runner: Optional[CommandRunner] = None):
        self.logger = logging.getLogger("matlink.nmcli")
        self.runner = runner or CommandRunner()
        self._preferred_interface = interface
        self._detected_interface: Optional[str] = None

    async def list_networks(self) -> List[WifiNetwork]:
        interface = await self._get_interface()
        output = await self.runner.run(
            [
                "nmcli", "-t", "-f", "SSID,SIGNAL,SECURITY",
                "device", "wifi", "list", "ifname", interface, "--rescan", "yes",
            ]
        )
        networks = []
        for line in output.splitlines():
            if not line.strip():
                continue
            parts = split_terse(line)
            while len(parts) < 3:
                parts.append("")
            ssid, signal_raw, security = parts[0].strip(), parts[1].strip(), parts[2].strip()
            if not ssid:
                continue
            signal = None
            if signal_raw:
                try:
                    signal = max(0, min(100, int(float(signal_raw))))
                except ValueError:
                    signal = None
            networks.append(
                WifiNetwork(ssid=ssid, signal=signal, secured=security not in ("", "--"))
            )
        return networks

    async def join_secured(self, ssid: str, credential: Optional[str]) -> None:
        """Join ``ssid``; nmcli errors (bad password, no AP) raise CommandError."""
        interface = await self._get_interface()
        args = ["nmcli", "device", "wifi", "connect", ssid]
        if credential:
            args.extend(["password", credential])
        args.extend(["ifname", interface])
        await self.runner.run(args, timeout=45.0)
        self.logger.info(f"nmcli joined {ssid} on {interface}")

    async def leave(self, ssid: str) -> None:
        await self.runner.run(["nmcli", "connection", "down", "id", ssid])

    async def _get_interface(self) -> str:
        if self._preferred_interface:
            return self._preferred_interface
        if self._detected_interface:
            return self._detected_interface

        output = await self.runner.run(["nmcli", "-t", "-f", "DEVICE,TYPE,STATE", "device"])
        for line in output.splitlines():
            parts = split_terse(line)
            if len(parts) >= 2 and parts[1] == "wifi":
                self._detected_interface = parts[0]
                self.logger.debug(f"Detected Wi-Fi interface {parts[0]}")
                return parts[0]
        raise CommandError("No Wi-Fi interface found")
