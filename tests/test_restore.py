"""
Tests for restoring archived blobs, including rehydration from the Archive tier.
"""

import hashlib
from types import SimpleNamespace
from unittest.mock import Mock

import pytest

from azops.archive.models import OutcomeStatus
from azops.archive.restore import RestoreWorkflow, is_offline, rehydration_pending, tier_name

CONTAINER = "https://acct.blob.core.windows.net/archive?sv=1&sig=abc"
PAYLOAD = b"7z-archive-bytes"
PAYLOAD_SHA = hashlib.sha256(PAYLOAD).hexdigest()


class FakeClock:
    """Monotonic clock that only advances when the workflow sleeps."""

    def __init__(self):
        self.now = 0.0
        self.sleeps = []

    def __call__(self):
        return self.now

    def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds


def fake_azcopy():
    azcopy = Mock()

    def download(url, local_path):
        local_path.write_bytes(PAYLOAD)
        return local_path

    azcopy.download.side_effect = download
    return azcopy


def fake_seven_zip():
    seven_zip = Mock()

    def extract(archive, destination):
        destination.mkdir(parents=True, exist_ok=True)
        (destination / "restored.txt").write_text("alpha")
        return destination

    seven_zip.extract.side_effect = extract
    return seven_zip


def blob_client_for(name, *props):
    client = Mock()
    client.blob_name = name
    client.get_blob_properties.side_effect = list(props)
    return client


def container_with(*blob_clients):
    by_name = {c.blob_name: c for c in blob_clients}
    container = Mock()
    container.get_blob_client.side_effect = lambda name: by_name[name]
    return container


def make_workflow(tmp_path, container, clock=None, **kwargs):
    clock = clock or FakeClock()
    return RestoreWorkflow(
        CONTAINER,
        container,
        kwargs.pop("seven_zip", None) or fake_seven_zip(),
        kwargs.pop("azcopy", None) or fake_azcopy(),
        destination=tmp_path / "restored",
        staging_dir=tmp_path / "staging",
        poll_interval=kwargs.pop("poll_interval", 300),
        sleep=clock.sleep,
        clock=clock,
        **kwargs,
    )


class TestTierHelpers:
    """Tests for blob tier inspection."""

    def test_tier_name_accepts_enums(self):
        assert tier_name(SimpleNamespace(value="Archive")) == "Archive"
        assert tier_name("Hot") == "Hot"
        assert tier_name(None) is None

    def test_offline_and_pending(self, blob_props):
        archived = blob_props(tier="Archive", archive_status="rehydrate-pending-to-hot")
        assert is_offline(archived)
        assert rehydration_pending(archived)
        assert not is_offline(blob_props(tier="Cool"))
        assert not rehydration_pending(blob_props(tier="Archive"))


class TestRestoreWorkflow:
    """Tests for the rehydrate/download/verify/extract/cleanup workflow."""

    def test_online_blob(self, tmp_path, blob_props):
        client = blob_client_for(
            "2024/data.7z", blob_props(size=len(PAYLOAD), metadata={"sha256": PAYLOAD_SHA})
        )
        azcopy = fake_azcopy()
        workflow = make_workflow(tmp_path, container_with(client), azcopy=azcopy)

        report = workflow.run(["2024/data.7z"])

        outcome = report.outcomes[0]
        assert outcome.status == OutcomeStatus.SUCCEEDED
        assert outcome.completed_steps == ["inspect", "download", "verify", "extract", "cleanup"]
        assert outcome.sha256 == PAYLOAD_SHA
        assert outcome.local_path == str(tmp_path / "restored" / "2024" / "data")
        assert (tmp_path / "restored" / "2024" / "data" / "restored.txt").exists()
        assert not (tmp_path / "staging" / "2024" / "data.7z").exists()
        url = azcopy.download.call_args.args[0]
        assert url == "https://acct.blob.core.windows.net/archive/2024/data.7z?sv=1&sig=abc"
        client.set_standard_blob_tier.assert_not_called()

    def test_archived_blob_waits_for_rehydration(self, tmp_path, blob_props):
        clock = FakeClock()
        client = blob_client_for(
            "data.7z",
            blob_props(tier="Archive"),
            blob_props(tier="Archive", archive_status="rehydrate-pending-to-hot"),
            blob_props(tier="Hot"),
        )
        workflow = make_workflow(
            tmp_path, container_with(client), clock=clock, rehydrate_priority="High"
        )

        report = workflow.run(["data.7z"])

        assert report.outcomes[0].status == OutcomeStatus.SUCCEEDED
        assert "rehydrate" in report.outcomes[0].completed_steps
        client.set_standard_blob_tier.assert_called_once_with("Hot", rehydrate_priority="High")
        assert clock.sleeps == [300]

    def test_pending_rehydration_is_not_restarted(self, tmp_path, blob_props):
        client = blob_client_for(
            "data.7z",
            blob_props(tier="Archive", archive_status="rehydrate-pending-to-cool"),
            blob_props(tier="Cool"),
        )
        report = make_workflow(tmp_path, container_with(client)).run(["data.7z"])

        assert report.outcomes[0].status == OutcomeStatus.SUCCEEDED
        client.set_standard_blob_tier.assert_not_called()

    def test_no_wait_reports_pending(self, tmp_path, blob_props):
        client = blob_client_for("data.7z", blob_props(tier="Archive"))
        azcopy = fake_azcopy()
        workflow = make_workflow(
            tmp_path, container_with(client), azcopy=azcopy, wait=False, target_tier="Cool"
        )

        report = workflow.run(["data.7z"])

        outcome = report.outcomes[0]
        assert outcome.status == OutcomeStatus.PENDING
        assert report.pending == [outcome]
        assert outcome.completed_steps == ["inspect"]
        assert outcome.pending_step == "rehydrate"
        assert "Cool" in outcome.error
        client.set_standard_blob_tier.assert_called_once_with(
            "Cool", rehydrate_priority="Standard"
        )
        azcopy.download.assert_not_called()

    def test_rehydration_timeout(self, tmp_path, blob_props):
        archived = blob_props(tier="Archive", archive_status="rehydrate-pending-to-hot")
        client = blob_client_for("data.7z", *([archived] * 5))
        clock = FakeClock()
        workflow = make_workflow(tmp_path, container_with(client), clock=clock, timeout=600)

        outcome = workflow.run(["data.7z"]).outcomes[0]

        assert outcome.status == OutcomeStatus.FAILED
        assert outcome.failed_step == "rehydrate"
        assert "still rehydrating after 600s" in outcome.error
        assert clock.sleeps == [300, 300]

    def test_checksum_mismatch(self, tmp_path, blob_props):
        client = blob_client_for("data.7z", blob_props(metadata={"sha256": "0" * 64}))
        seven_zip = fake_seven_zip()
        workflow = make_workflow(tmp_path, container_with(client), seven_zip=seven_zip)

        outcome = workflow.run(["data.7z"]).outcomes[0]

        assert outcome.status == OutcomeStatus.FAILED
        assert outcome.failed_step == "verify"
        assert "does not match blob metadata" in outcome.error
        assert not (tmp_path / "staging" / "data.7z").exists()
        seven_zip.extract.assert_not_called()

    def test_without_metadata_only_archive_test_runs(self, tmp_path, blob_props):
        client = blob_client_for("data.7z", blob_props())
        seven_zip = fake_seven_zip()
        workflow = make_workflow(tmp_path, container_with(client), seven_zip=seven_zip)

        assert workflow.run(["data.7z"]).outcomes[0].status == OutcomeStatus.SUCCEEDED
        seven_zip.test.assert_called_once_with(tmp_path / "staging" / "data.7z")

    def test_no_extract_moves_archive(self, tmp_path, blob_props):
        client = blob_client_for("data.7z", blob_props())
        seven_zip = fake_seven_zip()
        workflow = make_workflow(
            tmp_path, container_with(client), seven_zip=seven_zip, extract=False
        )

        outcome = workflow.run(["data.7z"]).outcomes[0]

        assert outcome.local_path == str(tmp_path / "restored" / "data.7z")
        assert (tmp_path / "restored" / "data.7z").read_bytes() == PAYLOAD
        seven_zip.extract.assert_not_called()

    def test_retier_moves_blob_back_to_archive(self, tmp_path, blob_props):
        client = blob_client_for("data.7z", blob_props(tier="Hot"))
        workflow = make_workflow(tmp_path, container_with(client), retier=True)

        workflow.run(["data.7z"])

        client.set_standard_blob_tier.assert_called_once_with("Archive")

    def test_failure_does_not_stop_others(self, tmp_path, blob_props):
        bad = blob_client_for("bad.7z", blob_props(metadata={"sha256": "0" * 64}))
        good = blob_client_for("good.7z", blob_props())
        seen = []
        workflow = make_workflow(tmp_path, container_with(bad, good))

        report = workflow.run(["bad.7z", "good.7z"], on_outcome=seen.append)

        assert [o.status for o in report.outcomes] == [
            OutcomeStatus.FAILED,
            OutcomeStatus.SUCCEEDED,
        ]
        assert [o.blob_name for o in seen] == ["bad.7z", "good.7z"]

    def test_same_file_name_under_different_prefixes(self, tmp_path, blob_props):
        january = blob_client_for("2024/01/data.7z", blob_props())
        february = blob_client_for("2024/02/data.7z", blob_props())
        workflow = make_workflow(tmp_path, container_with(january, february))

        report = workflow.run(["2024/01/data.7z", "2024/02/data.7z"])

        assert [o.local_path for o in report.outcomes] == [
            str(tmp_path / "restored" / "2024" / "01" / "data"),
            str(tmp_path / "restored" / "2024" / "02" / "data"),
        ]
        assert all(o.status == OutcomeStatus.SUCCEEDED for o in report.outcomes)

    def test_blob_name_cannot_leave_destination(self, tmp_path, blob_props):
        client = blob_client_for("../../etc/data.7z", blob_props())
        workflow = make_workflow(tmp_path, container_with(client))

        outcome = workflow.run(["../../etc/data.7z"]).outcomes[0]

        assert outcome.local_path == str(tmp_path / "restored" / "etc" / "data")

    def test_select_blobs(self, tmp_path):
        container = Mock()
        container.list_blobs.return_value = [
            SimpleNamespace(name="2024/a.7z"),
            SimpleNamespace(name="2024/b.7z"),
        ]
        workflow = make_workflow(tmp_path, container)

        selected = workflow.select_blobs(["2024/b.7z", "x.7z", "x.7z"], prefix="2024/")

        assert selected == ["2024/b.7z", "x.7z", "2024/a.7z"]
        container.list_blobs.assert_called_once_with(name_starts_with="2024/")

    def test_select_blobs_without_prefix(self, tmp_path):
        container = Mock()
        assert make_workflow(tmp_path, container).select_blobs(["a.7z"]) == ["a.7z"]
        container.list_blobs.assert_not_called()

    @pytest.mark.parametrize(
        "kwargs,message",
        [
            ({"target_tier": "Archive"}, "Invalid target tier"),
            ({"rehydrate_priority": "Urgent"}, "Invalid rehydrate priority"),
            ({"poll_interval": 0}, "must be greater than 0"),
            ({"timeout": 0}, "must be greater than 0"),
        ],
    )
    def test_invalid_settings(self, tmp_path, kwargs, message):
        with pytest.raises(ValueError, match=message):
            make_workflow(tmp_path, Mock(), **kwargs)
