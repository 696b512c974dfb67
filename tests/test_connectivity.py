"""
Tests for connectivity checks.
"""

import socket
from unittest.mock import patch

import pytest

from azops.connectivity import (
    ProbeResult,
    ProbeTarget,
    load_targets,
    parse_target,
    probe,
    run_checks,
)
from azops.exceptions import InputFileError
from azops.util.cidr import parse_networks


@pytest.fixture
def listener():
    """A local TCP listener accepting connections."""
    server = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    server.bind(("127.0.0.1", 0))
    server.listen(5)
    yield server.getsockname()[1]
    server.close()


@pytest.fixture
def closed_port():
    """A local port with nothing listening on it."""
    s = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    s.bind(("127.0.0.1", 0))
    port = s.getsockname()[1]
    s.close()
    return port


class TestParseTarget:
    """Tests for target string parsing."""

    def test_host_and_port(self):
        assert parse_target("kv.vault.azure.net:443") == ProbeTarget("kv.vault.azure.net", 443)

    def test_bare_host_uses_default_port(self):
        assert parse_target("sql.example.net", default_port=1433).port == 1433

    def test_bracketed_ipv6(self):
        target = parse_target("[fd00::4]:8443")
        assert target.host == "fd00::4"
        assert target.port == 8443
        assert str(target) == "[fd00::4]:8443"

    def test_unbracketed_ipv6_is_host_only(self):
        target = parse_target("fd00::4", default_port=22)
        assert target.host == "fd00::4"
        assert target.port == 22

    @pytest.mark.parametrize("text", ["host:http", "host:0", "host:70000"])
    def test_invalid_port(self, text):
        with pytest.raises(ValueError):
            parse_target(text)

    def test_empty(self):
        with pytest.raises(ValueError, match="Empty target"):
            parse_target("  ")


class TestLoadTargets:
    """Tests for target files."""

    def test_plain_list_with_comments(self, tmp_path):
        path = tmp_path / "targets.txt"
        path.write_text("# endpoints\nweb.internal:80\n\nsql.internal  # default port\n")
        targets = load_targets(path, default_port=1433)
        assert targets == [ProbeTarget("web.internal", 80), ProbeTarget("sql.internal", 1433)]

    def test_csv_with_labels(self, tmp_path):
        path = tmp_path / "targets.csv"
        path.write_text("host,port,label\nkv.vault.azure.net,443,key vault\nsql.internal,,sql\n")
        targets = load_targets(path, default_port=1433)
        assert targets == [
            ProbeTarget("kv.vault.azure.net", 443, "key vault"),
            ProbeTarget("sql.internal", 1433, "sql"),
        ]

    def test_missing_file(self, tmp_path):
        with pytest.raises(InputFileError):
            load_targets(tmp_path / "missing.txt")


class TestProbe:
    """Tests for resolving and connecting."""

    def test_reachable(self, listener):
        result = probe(ProbeTarget("127.0.0.1", listener), timeout=2)
        assert result.resolved
        assert result.reachable
        assert result.ok
        assert result.address == "127.0.0.1"
        assert result.latency_ms is not None

    def test_refused(self, closed_port):
        result = probe(ProbeTarget("127.0.0.1", closed_port), timeout=2)
        assert result.resolved
        assert not result.reachable
        assert not result.ok
        assert result.error.startswith("connection failed")

    def test_resolution_failure(self):
        with patch("socket.getaddrinfo", side_effect=socket.gaierror("Name or service not known")):
            result = probe(ProbeTarget("nope.invalid", 443))
        assert not result.resolved
        assert not result.ok
        assert result.error.startswith("resolution failed")

    def test_timeout(self):
        with patch("socket.create_connection", side_effect=socket.timeout("timed out")):
            result = probe(ProbeTarget("127.0.0.1", 443), timeout=0.5)
        assert result.error == "connection timed out after 0.5s"

    def test_outside_expected_network(self, listener):
        networks = parse_networks(["10.0.0.0/8"])
        result = probe(ProbeTarget("127.0.0.1", listener), timeout=2, expected_networks=networks)
        assert result.reachable
        assert result.in_expected_network is False
        assert not result.ok
        assert "outside the expected networks" in result.error

    def test_inside_expected_network(self, listener):
        networks = parse_networks(["127.0.0.0/8"])
        result = probe(ProbeTarget("127.0.0.1", listener), timeout=2, expected_networks=networks)
        assert result.ok
        assert result.error is None

    def test_run_checks_keeps_order(self, listener, closed_port):
        results = run_checks(
            [ProbeTarget("127.0.0.1", closed_port), ProbeTarget("127.0.0.1", listener)], timeout=2
        )
        assert [r.reachable for r in results] == [False, True]

    def test_to_dict(self):
        result = ProbeResult(ProbeTarget("h", 1, "lbl"), error="x")
        data = result.to_dict()
        assert data["host"] == "h"
        assert data["label"] == "lbl"
        assert data["reachable"] is False
