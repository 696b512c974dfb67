"""
DNS record reconciliation against Azure DNS zones.

Desired records are read from YAML or CSV, compared with the record sets in
a private or public zone, and turned into a plan of create/update/delete
actions. Plans are dry runs until applied.
"""

import csv
import ipaddress
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from azops.exceptions import DnsRecordError, InputFileError

logger = logging.getLogger(__name__)

SUPPORTED_TYPES = ("A", "AAAA", "CNAME", "TXT", "PTR", "MX")
HOSTNAME_TYPES = ("CNAME", "PTR", "MX")
DEFAULT_TTL = 3600
# Longest single string Azure DNS accepts inside one TXT record
TXT_CHUNK_SIZE = 255

ACTION_ORDER = {"delete": 0, "update": 1, "create": 2, "unchanged": 3}


@dataclass
class DesiredRecord:
    name: str
    record_type: str
    ttl: int
    values: list[str]

    @property
    def key(self) -> tuple[str, str]:
        return (self.name, self.record_type)

    def normalized_values(self) -> frozenset[str]:
        return frozenset(normalize_value(self.record_type, v) for v in self.values)


@dataclass
class RecordChange:
    action: str
    name: str
    record_type: str
    desired: DesiredRecord | None = None
    current: DesiredRecord | None = None
    status: str = "planned"
    error: str | None = None

    def describe(self) -> str:
        if self.action == "create" and self.desired:
            return f"ttl={self.desired.ttl} {', '.join(self.desired.values)}"
        if self.action == "delete" and self.current:
            return ", ".join(self.current.values)
        if self.action == "update" and self.desired and self.current:
            parts = []
            if self.desired.ttl != self.current.ttl:
                parts.append(f"ttl {self.current.ttl} -> {self.desired.ttl}")
            if self.desired.normalized_values() != self.current.normalized_values():
                parts.append(
                    f"{', '.join(self.current.values)} -> {', '.join(self.desired.values)}"
                )
            return "; ".join(parts)
        return ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "action": self.action,
            "name": self.name,
            "type": self.record_type,
            "details": self.describe(),
            "status": self.status,
            "error": self.error,
        }


@dataclass
class DnsPlan:
    changes: list[RecordChange] = field(default_factory=list)

    @property
    def pending(self) -> list[RecordChange]:
        return [c for c in self.changes if c.action != "unchanged"]

    @property
    def failed(self) -> list[RecordChange]:
        return [c for c in self.changes if c.status == "failed"]

    def counts(self) -> dict[str, int]:
        counts = {action: 0 for action in ACTION_ORDER}
        for change in self.changes:
            counts[change.action] += 1
        return counts


def normalize_name(name: str, zone_name: str | None = None) -> str:
    """Lower-case a relative record name; empty and the zone FQDN become ``@``."""
    name = (name or "").strip().lower().rstrip(".")
    if zone_name:
        zone = zone_name.lower().rstrip(".")
        if name == zone:
            return "@"
        if name.endswith("." + zone):
            name = name[: -len(zone) - 1]
    return name or "@"


def normalize_value(record_type: str, value: str) -> str:
    value = str(value).strip()
    if record_type in ("A", "AAAA"):
        try:
            return ipaddress.ip_address(value).compressed
        except ValueError:
            return value
    if record_type in HOSTNAME_TYPES:
        return " ".join(value.lower().rstrip(".").split())
    return value


def split_txt(value: str) -> list[str]:
    """Split a TXT value into strings of at most ``TXT_CHUNK_SIZE`` characters."""
    return [value[i : i + TXT_CHUNK_SIZE] for i in range(0, len(value), TXT_CHUNK_SIZE)] or [""]


def _make_record(name: str, record_type: str, ttl: Any, values: list[str]) -> DesiredRecord:
    record_type = str(record_type or "").strip().upper()
    label = f"{name or '@'}/{record_type or '?'}"

    if record_type not in SUPPORTED_TYPES:
        raise DnsRecordError(
            label, f"unsupported type '{record_type}' (supported: {', '.join(SUPPORTED_TYPES)})"
        )

    try:
        ttl_value = int(ttl) if ttl not in (None, "") else DEFAULT_TTL
    except (TypeError, ValueError):
        raise DnsRecordError(label, f"ttl must be an integer, got '{ttl}'") from None
    if ttl_value < 1:
        raise DnsRecordError(label, f"ttl must be positive, got {ttl_value}")

    cleaned = [str(v).strip() for v in values if str(v).strip()]
    if not cleaned:
        raise DnsRecordError(label, "no values")
    if record_type == "CNAME" and len(cleaned) != 1:
        raise DnsRecordError(label, "CNAME records take exactly one value")
    if record_type in ("A", "AAAA"):
        version = 4 if record_type == "A" else 6
        for v in cleaned:
            try:
                if ipaddress.ip_address(v).version != version:
                    raise ValueError
            except ValueError:
                raise DnsRecordError(label, f"'{v}' is not an IPv{version} address") from None
    if record_type == "MX":
        for v in cleaned:
            parts = v.split()
            if len(parts) != 2 or not parts[0].isdigit():
                raise DnsRecordError(label, f"MX value must be '<preference> <exchange>': {v}")

    return DesiredRecord(normalize_name(name), record_type, ttl_value, cleaned)


def load_desired_records(path: str | Path) -> list[DesiredRecord]:
    """
    Load desired records from a YAML or CSV file.

    YAML is a list of mappings (or a mapping with a ``records`` list) with
    ``name``, ``type``, ``ttl`` and ``values``. CSV has ``name,type,ttl,value``
    columns with one value per row; rows sharing a name and type form one
    record set.
    """
    p = Path(path)
    if not p.is_file():
        raise InputFileError(str(p))

    if p.suffix.lower() in (".yaml", ".yml"):
        data = yaml.safe_load(p.read_text()) or []
        if isinstance(data, dict):
            data = data.get("records", [])
        if not isinstance(data, list):
            raise DnsRecordError(str(p), "expected a list of records")

        records = []
        for entry in data:
            if not isinstance(entry, dict):
                raise DnsRecordError(str(p), f"each record must be a mapping, got {entry!r}")
            values = entry.get("values", entry.get("value", []))
            if isinstance(values, str):
                values = [values]
            records.append(
                _make_record(entry.get("name", "@"), entry.get("type"), entry.get("ttl"), values)
            )
        return _reject_duplicates(records)

    grouped: dict[tuple[str, str], dict[str, Any]] = {}
    with open(p, newline="") as f:
        for row in csv.DictReader(f):
            row = {(k or "").strip().lower(): (v or "").strip() for k, v in row.items()}
            key = (normalize_name(row.get("name", "")), row.get("type", "").upper())
            entry = grouped.setdefault(key, {"ttl": row.get("ttl"), "values": []})
            if row.get("ttl") and entry["ttl"] and row["ttl"] != entry["ttl"]:
                raise DnsRecordError(
                    f"{key[0]}/{key[1]}", f"conflicting ttl values {entry['ttl']} and {row['ttl']}"
                )
            entry["ttl"] = entry["ttl"] or row.get("ttl")
            entry["values"].append(row.get("value", ""))

    return [
        _make_record(name, rtype, entry["ttl"], entry["values"])
        for (name, rtype), entry in grouped.items()
    ]


def _reject_duplicates(records: list[DesiredRecord]) -> list[DesiredRecord]:
    seen = set()
    for record in records:
        if record.key in seen:
            raise DnsRecordError(f"{record.name}/{record.record_type}", "defined more than once")
        seen.add(record.key)
    return records


def plan_changes(
    desired: list[DesiredRecord], actual: list[DesiredRecord], prune: bool = False
) -> DnsPlan:
    """
    Compare desired and actual record sets.

    Records only in ``actual`` are deleted when ``prune`` is set and left
    alone otherwise.
    """
    actual_by_key = {r.key: r for r in actual}
    desired_keys = set()
    changes = []

    for record in desired:
        desired_keys.add(record.key)
        current = actual_by_key.get(record.key)
        if current is None:
            action = "create"
        elif (
            current.ttl != record.ttl
            or current.normalized_values() != record.normalized_values()
        ):
            action = "update"
        else:
            action = "unchanged"
        changes.append(RecordChange(action, record.name, record.record_type, record, current))

    if prune:
        for record in actual:
            if record.key not in desired_keys:
                changes.append(
                    RecordChange("delete", record.name, record.record_type, current=record)
                )

    changes.sort(key=lambda c: (ACTION_ORDER[c.action], c.name, c.record_type))
    return DnsPlan(changes)


def apply_plan(plan: DnsPlan, zone: "DnsZone") -> DnsPlan:
    """Apply pending changes in plan order, recording per-change failures."""
    for change in plan.pending:
        try:
            if change.action == "delete":
                zone.delete(change.name, change.record_type)
            else:
                zone.upsert(change.desired)
            change.status = "applied"
            logger.info(f"{change.action} {change.name}/{change.record_type} applied")
        except Exception as e:
            change.status = "failed"
            change.error = str(e)
            logger.error(f"{change.action} {change.name}/{change.record_type} failed: {e}")
    return plan


class DnsZone(ABC):
    """Adapter over one Azure DNS zone."""

    def __init__(self, client, resource_group: str, zone_name: str):
        self.client = client
        self.resource_group = resource_group
        self.zone_name = zone_name

    @property
    @abstractmethod
    def models(self):
        """SDK models module providing RecordSet and the per-type record classes."""

    @abstractmethod
    def _list_record_sets(self) -> list:
        pass

    @abstractmethod
    def _create_or_update(self, name: str, record_type: str, parameters) -> None:
        pass

    @abstractmethod
    def delete(self, name: str, record_type: str) -> None:
        pass

    def list_records(self) -> list[DesiredRecord]:
        """List record sets of supported types. SOA and NS sets are never managed."""
        records = []
        for record_set in self._list_record_sets():
            record = record_set_to_record(record_set)
            if record is not None:
                records.append(record)
        return records

    def upsert(self, record: DesiredRecord) -> None:
        self._create_or_update(record.name, record.record_type, self.build_record_set(record))

    def build_record_set(self, record: DesiredRecord):
        m = self.models
        kwargs: dict[str, Any] = {"ttl": record.ttl}
        if record.record_type == "A":
            kwargs["a_records"] = [m.ARecord(ipv4_address=v) for v in record.values]
        elif record.record_type == "AAAA":
            kwargs["aaaa_records"] = [m.AaaaRecord(ipv6_address=v) for v in record.values]
        elif record.record_type == "CNAME":
            kwargs["cname_record"] = m.CnameRecord(cname=record.values[0])
        elif record.record_type == "TXT":
            kwargs["txt_records"] = [m.TxtRecord(value=split_txt(v)) for v in record.values]
        elif record.record_type == "PTR":
            kwargs["ptr_records"] = [m.PtrRecord(ptrdname=v) for v in record.values]
        elif record.record_type == "MX":
            kwargs["mx_records"] = [
                m.MxRecord(preference=int(v.split()[0]), exchange=v.split()[1])
                for v in record.values
            ]
        return m.RecordSet(**kwargs)


def record_set_to_record(record_set) -> DesiredRecord | None:
    """Convert an SDK RecordSet into a DesiredRecord; unsupported types give None."""
    record_type = (record_set.type or "").split("/")[-1].upper()
    if record_type not in SUPPORTED_TYPES:
        return None

    if record_type == "A":
        values = [r.ipv4_address for r in record_set.a_records or []]
    elif record_type == "AAAA":
        values = [r.ipv6_address for r in record_set.aaaa_records or []]
    elif record_type == "CNAME":
        values = [record_set.cname_record.cname] if record_set.cname_record else []
    elif record_type == "TXT":
        values = ["".join(r.value or []) for r in record_set.txt_records or []]
    elif record_type == "PTR":
        values = [r.ptrdname for r in record_set.ptr_records or []]
    else:
        values = [f"{r.preference} {r.exchange}" for r in record_set.mx_records or []]

    return DesiredRecord(normalize_name(record_set.name), record_type, record_set.ttl, values)


class PrivateZone(DnsZone):
    """Azure Private DNS zone (Microsoft.Network/privateDnsZones)."""

    @property
    def models(self):
        from azure.mgmt.privatedns import models

        return models

    def _list_record_sets(self) -> list:
        return list(
            self.client.record_sets.list(
                resource_group_name=self.resource_group, private_zone_name=self.zone_name
            )
        )

    def _create_or_update(self, name: str, record_type: str, parameters) -> None:
        self.client.record_sets.create_or_update(
            resource_group_name=self.resource_group,
            private_zone_name=self.zone_name,
            record_type=record_type,
            relative_record_set_name=name,
            parameters=parameters,
        )

    def delete(self, name: str, record_type: str) -> None:
        self.client.record_sets.delete(
            resource_group_name=self.resource_group,
            private_zone_name=self.zone_name,
            record_type=record_type,
            relative_record_set_name=name,
        )


class PublicZone(DnsZone):
    """Azure public DNS zone (Microsoft.Network/dnszones)."""

    @property
    def models(self):
        from azure.mgmt.dns import models

        return models

    def _list_record_sets(self) -> list:
        return list(
            self.client.record_sets.list_by_dns_zone(
                resource_group_name=self.resource_group, zone_name=self.zone_name
            )
        )

    def _create_or_update(self, name: str, record_type: str, parameters) -> None:
        self.client.record_sets.create_or_update(
            resource_group_name=self.resource_group,
            zone_name=self.zone_name,
            relative_record_set_name=name,
            record_type=record_type,
            parameters=parameters,
        )

    def delete(self, name: str, record_type: str) -> None:
        self.client.record_sets.delete(
            resource_group_name=self.resource_group,
            zone_name=self.zone_name,
            relative_record_set_name=name,
            record_type=record_type,
        )


def get_zone(kind: str, client, resource_group: str, zone_name: str) -> DnsZone:
    """
    Factory for zone adapters.

    Raises:
        ValueError: If kind is not 'private' or 'public'
    """
    zones = {
        "private": PrivateZone,
        "public": PublicZone,
    }
    kind = kind.lower()
    if kind not in zones:
        raise ValueError(f"Unsupported zone kind: {kind}. Must be one of: {list(zones.keys())}")
    return zones[kind](client, resource_group, zone_name)
