"""
TCP connectivity and name-resolution checks.

Typical use is validating private endpoints from inside a VNet: each target
must resolve to an address in the expected (private) ranges and accept a
TCP connection on its port.
"""

import csv
import logging
import socket
import time
from dataclasses import dataclass
from pathlib import Path

from azops.exceptions import InputFileError
from azops.util.cidr import IPNetwork, ip_in_any

logger = logging.getLogger(__name__)


@dataclass
class ProbeTarget:
    host: str
    port: int
    label: str = ""

    def __str__(self) -> str:
        host = f"[{self.host}]" if ":" in self.host else self.host
        return f"{host}:{self.port}"


@dataclass
class ProbeResult:
    target: ProbeTarget
    resolved: bool = False
    address: str | None = None
    reachable: bool = False
    latency_ms: float | None = None
    in_expected_network: bool | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.reachable and self.in_expected_network is not False

    def to_dict(self) -> dict:
        return {
            "host": self.target.host,
            "port": self.target.port,
            "label": self.target.label,
            "address": self.address,
            "resolved": self.resolved,
            "reachable": self.reachable,
            "latency_ms": self.latency_ms,
            "in_expected_network": self.in_expected_network,
            "error": self.error,
        }


def parse_target(text: str, default_port: int = 443, label: str = "") -> ProbeTarget:
    """
    Parse ``host:port``, ``[ipv6]:port`` or a bare host.

    Raises:
        ValueError: If the port is not an integer in 1..65535
    """
    text = text.strip()
    if not text:
        raise ValueError("Empty target")

    if text.startswith("["):
        host, _, rest = text[1:].partition("]")
        port_text = rest[1:] if rest.startswith(":") else ""
    elif text.count(":") == 1:
        host, port_text = text.split(":")
    else:
        # Bare hostname, IPv4 address, or unbracketed IPv6 address
        host, port_text = text, ""

    port = _parse_port(port_text, text) if port_text else default_port
    return ProbeTarget(host=host, port=port, label=label)


def _parse_port(value: str, context: str) -> int:
    try:
        port = int(value)
    except ValueError:
        raise ValueError(f"Invalid port in '{context}': {value}") from None
    if not 1 <= port <= 65535:
        raise ValueError(f"Port out of range in '{context}': {port}")
    return port


def load_targets(path: str | Path, default_port: int = 443) -> list[ProbeTarget]:
    """
    Load targets from a file.

    Files whose first line is a ``host,...`` header are read as CSV with
    ``host``, optional ``port`` and optional ``label`` columns. Anything else
    is one target per line; blank lines and ``#`` comments are ignored.
    """
    p = Path(path)
    if not p.is_file():
        raise InputFileError(str(p))

    lines = p.read_text().splitlines()
    first = next((line for line in lines if line.strip() and not line.startswith("#")), "")

    targets = []
    if first.lower().replace(" ", "").startswith("host,"):
        with open(p, newline="") as f:
            for row in csv.DictReader(line for line in f if not line.startswith("#")):
                row = {(k or "").strip().lower(): (v or "").strip() for k, v in row.items()}
                if not row.get("host"):
                    continue
                port = _parse_port(row["port"], row["host"]) if row.get("port") else default_port
                targets.append(ProbeTarget(row["host"], port, row.get("label", "")))
        return targets

    for line in lines:
        line = line.split("#", 1)[0].strip()
        if line:
            targets.append(parse_target(line, default_port))
    return targets


def resolve(host: str, port: int) -> str:
    """Return the first address ``host`` resolves to."""
    infos = socket.getaddrinfo(host, port, type=socket.SOCK_STREAM)
    if not infos:
        raise socket.gaierror(f"No addresses for {host}")
    return infos[0][4][0]


def probe(
    target: ProbeTarget,
    timeout: float = 5.0,
    expected_networks: list[IPNetwork] | None = None,
) -> ProbeResult:
    """
    Resolve and connect to one target. Never raises for network failures.
    """
    result = ProbeResult(target=target)

    try:
        result.address = resolve(target.host, target.port)
        result.resolved = True
    except OSError as e:
        result.error = f"resolution failed: {e}"
        logger.info(f"{target}: {result.error}")
        return result

    if expected_networks:
        result.in_expected_network = ip_in_any(result.address, expected_networks)

    start = time.perf_counter()
    try:
        with socket.create_connection((result.address, target.port), timeout=timeout):
            result.latency_ms = round((time.perf_counter() - start) * 1000, 2)
            result.reachable = True
    except socket.timeout:
        result.error = f"connection timed out after {timeout}s"
    except OSError as e:
        result.error = f"connection failed: {e.strerror or e}"

    if result.in_expected_network is False and result.error is None:
        result.error = f"{result.address} is outside the expected networks"

    logger.debug(f"{target} -> {result.address} reachable={result.reachable}")
    return result


def run_checks(
    targets: list[ProbeTarget],
    timeout: float = 5.0,
    expected_networks: list[IPNetwork] | None = None,
) -> list[ProbeResult]:
    """Probe every target in order."""
    return [probe(target, timeout, expected_networks) for target in targets]
