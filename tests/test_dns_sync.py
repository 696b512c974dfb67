"""
Tests for DNS record reconciliation.
"""

from types import SimpleNamespace
from unittest.mock import Mock

import pytest

from azops.dns_sync import (
    DnsZone,
    DesiredRecord,
    PrivateZone,
    PublicZone,
    apply_plan,
    get_zone,
    load_desired_records,
    normalize_name,
    normalize_value,
    plan_changes,
    record_set_to_record,
)
from azops.exceptions import DnsRecordError, InputFileError


def _model(**kwargs):
    return SimpleNamespace(**kwargs)


FAKE_MODELS = SimpleNamespace(
    RecordSet=_model,
    ARecord=_model,
    AaaaRecord=_model,
    CnameRecord=_model,
    TxtRecord=_model,
    PtrRecord=_model,
    MxRecord=_model,
)


class FakeZone(DnsZone):
    """In-memory zone recording the calls a real adapter would make."""

    def __init__(self, record_sets=None, fail_on=None):
        super().__init__(client=None, resource_group="rg", zone_name="corp.internal")
        self.record_sets = record_sets or []
        self.fail_on = fail_on
        self.written = {}
        self.deleted = []

    @property
    def models(self):
        return FAKE_MODELS

    def _list_record_sets(self):
        return self.record_sets

    def _create_or_update(self, name, record_type, parameters):
        if name == self.fail_on:
            raise RuntimeError("Conflict")
        self.written[(name, record_type)] = parameters

    def delete(self, name, record_type):
        self.deleted.append((name, record_type))


def sdk_record_set(name, record_type, ttl, **records):
    fields = {
        "a_records": None,
        "aaaa_records": None,
        "cname_record": None,
        "txt_records": None,
        "ptr_records": None,
        "mx_records": None,
    }
    fields.update(records)
    return SimpleNamespace(
        name=name, type=f"Microsoft.Network/privateDnsZones/{record_type}", ttl=ttl, **fields
    )


class TestNormalization:
    """Tests for name and value normalization."""

    def test_names(self):
        assert normalize_name("") == "@"
        assert normalize_name("Web.") == "web"
        assert normalize_name("corp.internal", "corp.internal") == "@"
        assert normalize_name("web.corp.internal.", "corp.internal") == "web"

    def test_values(self):
        assert normalize_value("AAAA", "fd00:0:0::4") == "fd00::4"
        assert normalize_value("CNAME", "App.Example.COM.") == "app.example.com"
        assert normalize_value("MX", "10  Mail.Example.com.") == "10 mail.example.com"
        assert normalize_value("TXT", "Keep Case") == "Keep Case"


class TestLoadDesiredRecords:
    """Tests for reading desired records."""

    def test_yaml_list(self, tmp_path):
        path = tmp_path / "records.yaml"
        path.write_text(
            "- name: web\n  type: a\n  ttl: 300\n  values: [10.0.0.4, 10.0.0.5]\n"
            "- name: www\n  type: CNAME\n  value: web.corp.internal\n"
        )
        records = load_desired_records(path)
        assert records[0] == DesiredRecord("web", "A", 300, ["10.0.0.4", "10.0.0.5"])
        assert records[1] == DesiredRecord("www", "CNAME", 3600, ["web.corp.internal"])

    def test_yaml_records_key(self, tmp_path):
        path = tmp_path / "records.yml"
        path.write_text("records:\n  - name: '@'\n    type: TXT\n    values: ['v=spf1 -all']\n")
        assert load_desired_records(path)[0].name == "@"

    def test_csv_groups_rows(self, tmp_path):
        path = tmp_path / "records.csv"
        path.write_text(
            "name,type,ttl,value\n"
            "web,A,300,10.0.0.4\n"
            "web,A,,10.0.0.5\n"
            "mail,MX,600,10 mx1.corp.internal\n"
            "mail,MX,600,20 mx2.corp.internal\n"
        )
        records = {r.key: r for r in load_desired_records(path)}
        assert records[("web", "A")].values == ["10.0.0.4", "10.0.0.5"]
        assert records[("web", "A")].ttl == 300
        assert len(records[("mail", "MX")].values) == 2

    def test_csv_txt_value_keeps_semicolons(self, tmp_path):
        path = tmp_path / "records.csv"
        path.write_text(
            "name,type,ttl,value\n"
            '_dmarc,TXT,3600,"v=DMARC1; p=reject; rua=mailto:dmarc@example.com"\n'
        )
        record = load_desired_records(path)[0]
        assert record.values == ["v=DMARC1; p=reject; rua=mailto:dmarc@example.com"]

    def test_yaml_entry_must_be_mapping(self, tmp_path):
        path = tmp_path / "records.yaml"
        path.write_text("- web\n")
        with pytest.raises(DnsRecordError, match="must be a mapping"):
            load_desired_records(path)

    def test_csv_conflicting_ttl(self, tmp_path):
        path = tmp_path / "records.csv"
        path.write_text("name,type,ttl,value\nweb,A,300,10.0.0.4\nweb,A,600,10.0.0.5\n")
        with pytest.raises(DnsRecordError, match="conflicting ttl"):
            load_desired_records(path)

    def test_yaml_duplicate_record(self, tmp_path):
        path = tmp_path / "records.yaml"
        path.write_text(
            "- {name: web, type: A, values: [10.0.0.4]}\n"
            "- {name: WEB, type: A, values: [10.0.0.5]}\n"
        )
        with pytest.raises(DnsRecordError, match="more than once"):
            load_desired_records(path)

    @pytest.mark.parametrize(
        "entry,message",
        [
            ("{name: x, type: SRV, values: [a]}", "unsupported type"),
            ("{name: x, type: A, ttl: soon, values: [10.0.0.1]}", "ttl must be an integer"),
            ("{name: x, type: A, ttl: 0, values: [10.0.0.1]}", "ttl must be positive"),
            ("{name: x, type: A, values: []}", "no values"),
            ("{name: x, type: CNAME, values: [a.example, b.example]}", "exactly one value"),
            ("{name: x, type: A, values: ['fd00::1']}", "not an IPv4 address"),
            ("{name: x, type: AAAA, values: [10.0.0.1]}", "not an IPv6 address"),
            ("{name: x, type: MX, values: [mail.example]}", "MX value"),
        ],
    )
    def test_invalid_records(self, tmp_path, entry, message):
        path = tmp_path / "records.yaml"
        path.write_text(f"- {entry}\n")
        with pytest.raises(DnsRecordError, match=message):
            load_desired_records(path)

    def test_missing_file(self, tmp_path):
        with pytest.raises(InputFileError):
            load_desired_records(tmp_path / "records.yaml")


class TestPlanChanges:
    """Tests for diffing desired and actual records."""

    def test_actions(self):
        desired = [
            DesiredRecord("new", "A", 300, ["10.0.0.9"]),
            DesiredRecord("same", "A", 300, ["10.0.0.1", "10.0.0.2"]),
            DesiredRecord("ttl", "A", 60, ["10.0.0.3"]),
            DesiredRecord("alias", "CNAME", 300, ["Target.Example.com."]),
        ]
        actual = [
            DesiredRecord("same", "A", 300, ["10.0.0.2", "10.0.0.1"]),
            DesiredRecord("ttl", "A", 300, ["10.0.0.3"]),
            DesiredRecord("alias", "CNAME", 300, ["target.example.com"]),
            DesiredRecord("stale", "A", 300, ["10.0.0.8"]),
        ]
        plan = plan_changes(desired, actual)
        actions = {c.name: c.action for c in plan.changes}
        assert actions == {
            "new": "create",
            "same": "unchanged",
            "ttl": "update",
            "alias": "unchanged",
        }
        assert "stale" not in actions

    def test_prune_deletes_first(self):
        desired = [DesiredRecord("new", "A", 300, ["10.0.0.9"])]
        actual = [DesiredRecord("stale", "A", 300, ["10.0.0.8"])]
        plan = plan_changes(desired, actual, prune=True)
        steps = [(c.action, c.name) for c in plan.changes]
        assert steps == [("delete", "stale"), ("create", "new")]
        assert plan.counts() == {"delete": 1, "update": 0, "create": 1, "unchanged": 0}

    def test_update_description(self):
        plan = plan_changes(
            [DesiredRecord("web", "A", 60, ["10.0.0.5"])],
            [DesiredRecord("web", "A", 300, ["10.0.0.4"])],
        )
        assert plan.changes[0].describe() == "ttl 300 -> 60; 10.0.0.4 -> 10.0.0.5"

    def test_same_name_different_type_is_separate(self):
        plan = plan_changes(
            [DesiredRecord("web", "AAAA", 300, ["fd00::4"])],
            [DesiredRecord("web", "A", 300, ["10.0.0.4"])],
        )
        assert [c.action for c in plan.changes] == ["create"]


class TestApplyPlan:
    """Tests for applying plans to a zone."""

    def test_apply_writes_and_deletes(self):
        zone = FakeZone()
        plan = plan_changes(
            [
                DesiredRecord("web", "A", 300, ["10.0.0.4"]),
                DesiredRecord("mail", "MX", 300, ["10 mx.corp.internal"]),
            ],
            [DesiredRecord("old", "TXT", 300, ["x"])],
            prune=True,
        )
        apply_plan(plan, zone)

        assert zone.deleted == [("old", "TXT")]
        web = zone.written[("web", "A")]
        assert web.ttl == 300
        assert web.a_records[0].ipv4_address == "10.0.0.4"
        mx = zone.written[("mail", "MX")].mx_records[0]
        assert (mx.preference, mx.exchange) == (10, "mx.corp.internal")
        assert all(c.status == "applied" for c in plan.changes)

    def test_failures_are_recorded_per_change(self):
        zone = FakeZone(fail_on="bad")
        plan = plan_changes(
            [
                DesiredRecord("bad", "A", 300, ["10.0.0.1"]),
                DesiredRecord("good", "A", 300, ["10.0.0.2"]),
            ],
            [],
        )
        apply_plan(plan, zone)
        assert [c.name for c in plan.failed] == ["bad"]
        assert plan.failed[0].error == "Conflict"
        assert ("good", "A") in zone.written

    def test_unchanged_not_written(self):
        record = DesiredRecord("web", "A", 300, ["10.0.0.4"])
        zone = FakeZone()
        apply_plan(plan_changes([record], [record]), zone)
        assert zone.written == {}


class TestZoneAdapters:
    """Tests for SDK record set conversion and zone adapters."""

    def test_list_records_skips_soa(self):
        zone = FakeZone(
            record_sets=[
                sdk_record_set("@", "SOA", 3600),
                sdk_record_set(
                    "web", "A", 10, a_records=[SimpleNamespace(ipv4_address="10.0.0.4")]
                ),
                sdk_record_set(
                    "@", "TXT", 300, txt_records=[SimpleNamespace(value=["part1", "part2"])]
                ),
            ]
        )
        records = zone.list_records()
        assert DesiredRecord("web", "A", 10, ["10.0.0.4"]) in records
        assert DesiredRecord("@", "TXT", 300, ["part1part2"]) in records
        assert len(records) == 2

    def test_long_txt_value_is_split_and_read_back(self):
        dkim = "v=DKIM1; k=rsa; p=" + "A" * 380
        zone = FakeZone()
        zone.upsert(DesiredRecord("selector1._domainkey", "TXT", 3600, [dkim]))

        record_set = zone.written[("selector1._domainkey", "TXT")]
        chunks = record_set.txt_records[0].value
        assert [len(c) for c in chunks] == [255, len(dkim) - 255]

        stored = sdk_record_set(
            "selector1._domainkey", "TXT", 3600, txt_records=[SimpleNamespace(value=chunks)]
        )
        listed = FakeZone(record_sets=[stored]).list_records()
        assert listed == [DesiredRecord("selector1._domainkey", "TXT", 3600, [dkim])]

    def test_record_set_to_record_cname(self):
        rs = sdk_record_set("www", "CNAME", 300, cname_record=SimpleNamespace(cname="web.corp"))
        assert record_set_to_record(rs).values == ["web.corp"]

    def test_private_zone_calls(self):
        client = Mock()
        client.record_sets.list.return_value = []
        zone = PrivateZone(client, "rg", "corp.internal")
        zone.list_records()
        zone.delete("web", "A")

        client.record_sets.list.assert_called_once_with(
            resource_group_name="rg", private_zone_name="corp.internal"
        )
        client.record_sets.delete.assert_called_once_with(
            resource_group_name="rg",
            private_zone_name="corp.internal",
            record_type="A",
            relative_record_set_name="web",
        )

    def test_public_zone_calls(self):
        client = Mock()
        client.record_sets.list_by_dns_zone.return_value = []
        zone = PublicZone(client, "rg", "example.com")
        zone.list_records()
        client.record_sets.list_by_dns_zone.assert_called_once_with(
            resource_group_name="rg", zone_name="example.com"
        )

    def test_get_zone(self):
        assert isinstance(get_zone("Private", Mock(), "rg", "z"), PrivateZone)
        assert isinstance(get_zone("public", Mock(), "rg", "z"), PublicZone)
        with pytest.raises(ValueError):
            get_zone("split", Mock(), "rg", "z")
