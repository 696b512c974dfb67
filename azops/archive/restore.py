"""
Restore of archived blobs, with rehydration from the Archive tier.

Blobs in the Archive tier are offline. Restoring one means changing its
tier (which starts an asynchronous rehydration that can take hours),
polling until the blob is online, and only then downloading it. Blobs that
are still rehydrating can be reported as pending so a later run picks them
up again.
"""

import logging
import shutil
import tempfile
import time
from collections.abc import Callable
from pathlib import Path, PurePosixPath

from azops.archive.models import PathOutcome, WorkflowReport
from azops.archive.tools import AzCopy, SevenZip
from azops.clients import blob_url
from azops.exceptions import IntegrityError, RehydrationTimeoutError
from azops.util.files import ensure_dir, remove_path, safe_filename
from azops.util.hashing import sha256_file
from azops.util.retry import RetryStrategy, is_retryable_error, retry_with_backoff

logger = logging.getLogger(__name__)

ARCHIVE_TIER = "Archive"
REHYDRATE_TIERS = ("Hot", "Cool", "Cold")
REHYDRATE_PRIORITIES = ("Standard", "High")


def tier_name(tier) -> str | None:
    """Blob tiers come back as StandardBlobTier enums or plain strings."""
    if tier is None:
        return None
    return getattr(tier, "value", tier)


def is_offline(props) -> bool:
    return tier_name(props.blob_tier) == ARCHIVE_TIER


def rehydration_pending(props) -> bool:
    return (props.archive_status or "").startswith("rehydrate-pending")


def local_relative_path(blob_name: str) -> Path:
    """Blob name as a relative local path; virtual directories become subdirectories."""
    parts = [
        safe_filename(part)
        for part in PurePosixPath(blob_name).parts
        if part not in ("/", ".", "..")
    ]
    return Path(*parts)


class RestoreWorkflow:
    """Rehydrate, download, verify, extract and clean up a list of blobs."""

    def __init__(
        self,
        container_url: str,
        container_client,
        seven_zip: SevenZip,
        azcopy: AzCopy,
        destination: Path,
        staging_dir: Path | None = None,
        target_tier: str = "Hot",
        rehydrate_priority: str = "Standard",
        poll_interval: float = 300,
        timeout: float = 15 * 3600,
        wait: bool = True,
        extract: bool = True,
        retier: bool = False,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        if target_tier not in REHYDRATE_TIERS:
            raise ValueError(
                f"Invalid target tier '{target_tier}'. Must be one of: {REHYDRATE_TIERS}"
            )
        if rehydrate_priority not in REHYDRATE_PRIORITIES:
            raise ValueError(
                f"Invalid rehydrate priority '{rehydrate_priority}'. "
                f"Must be one of: {REHYDRATE_PRIORITIES}"
            )
        if poll_interval <= 0 or timeout <= 0:
            raise ValueError("Poll interval and timeout must be greater than 0")

        self.container_url = container_url
        self.container_client = container_client
        self.seven_zip = seven_zip
        self.azcopy = azcopy
        self.destination = Path(destination)
        self.staging_dir = Path(staging_dir or Path(tempfile.gettempdir()) / "azops")
        self.target_tier = target_tier
        self.rehydrate_priority = rehydrate_priority
        self.poll_interval = poll_interval
        self.timeout = timeout
        self.wait = wait
        self.extract = extract
        self.retier = retier
        self.sleep = sleep
        self.clock = clock

    def select_blobs(self, names: list[str], prefix: str | None = None) -> list[str]:
        """Explicit names first, then every blob under ``prefix``, without duplicates."""
        selected = list(dict.fromkeys(names))
        if prefix:
            for blob in self.container_client.list_blobs(name_starts_with=prefix):
                if blob.name not in selected:
                    selected.append(blob.name)
        return selected

    def run(
        self,
        blob_names: list[str],
        on_outcome: Callable[[PathOutcome], None] | None = None,
    ) -> WorkflowReport:
        report = WorkflowReport(operation="restore")
        ensure_dir(self.staging_dir)
        ensure_dir(self.destination)

        for name in blob_names:
            outcome = self.restore_blob(name)
            report.outcomes.append(outcome)
            if on_outcome is not None:
                on_outcome(outcome)

        logger.info(
            f"Restore run finished: {len(report.succeeded)} succeeded, "
            f"{len(report.pending)} pending, {len(report.failed)} failed"
        )
        return report

    def restore_blob(self, blob_name: str) -> PathOutcome:
        outcome = PathOutcome(source=blob_name, blob_name=blob_name)
        relative = local_relative_path(blob_name)
        staged = self.staging_dir / relative
        blob_client = self.container_client.get_blob_client(blob_name)

        try:
            props = outcome.run_step("inspect", self._properties, blob_client)
            outcome.size = props.size

            if is_offline(props):
                if not self.wait:
                    outcome.start_step("rehydrate", self._start_rehydration, blob_client, props)
                    outcome.defer(
                        f"rehydrating to {self.target_tier} ({self.rehydrate_priority} priority)"
                    )
                    logger.info(f"{blob_name}: rehydration in progress, re-run to restore")
                    return outcome
                props = outcome.run_step("rehydrate", self._rehydrate, blob_client, props)

            outcome.local_path = str(staged)
            outcome.run_step(
                "download", self._download, blob_url(self.container_url, blob_name), staged
            )
            outcome.run_step("verify", self._verify, staged, props, outcome)
            target = outcome.run_step("extract", self._place, staged, relative)
            outcome.local_path = str(target)
            outcome.run_step("cleanup", self._cleanup, staged, blob_client)
            outcome.succeed()
            logger.info(f"Restored {blob_name} -> {target}")

        except Exception as e:
            outcome.fail(e)
            logger.error(f"Restoring {blob_name} failed at step '{outcome.failed_step}': {e}")
            remove_path(staged)

        return outcome

    @retry_with_backoff(**RetryStrategy.apply("MODERATE"), should_retry=is_retryable_error)
    def _properties(self, blob_client):
        return blob_client.get_blob_properties()

    def _start_rehydration(self, blob_client, props) -> None:
        if rehydration_pending(props):
            logger.info(
                f"{blob_client.blob_name}: rehydration already pending ({props.archive_status})"
            )
            return
        logger.info(
            f"{blob_client.blob_name}: starting rehydration to {self.target_tier} "
            f"({self.rehydrate_priority} priority)"
        )
        blob_client.set_standard_blob_tier(
            self.target_tier, rehydrate_priority=self.rehydrate_priority
        )

    def _rehydrate(self, blob_client, props):
        """
        Start rehydration if needed and wait until the blob is online.

        Returns:
            Properties of the online blob

        Raises:
            RehydrationTimeoutError: If the blob is still offline after ``timeout``
        """
        self._start_rehydration(blob_client, props)

        started = self.clock()
        while True:
            props = self._properties(blob_client)
            if not is_offline(props):
                return props
            waited = self.clock() - started
            if waited >= self.timeout:
                raise RehydrationTimeoutError(blob_client.blob_name, waited)
            logger.debug(
                f"{blob_client.blob_name}: {props.archive_status or 'offline'}, "
                f"next check in {self.poll_interval}s"
            )
            self.sleep(min(self.poll_interval, max(self.timeout - waited, 0)))

    def _verify(self, staged: Path, props, outcome: PathOutcome) -> None:
        outcome.sha256 = sha256_file(staged)
        expected = (props.metadata or {}).get("sha256")
        if expected and expected != outcome.sha256:
            raise IntegrityError(
                str(staged), f"sha256 {outcome.sha256} does not match blob metadata {expected}"
            )
        self.seven_zip.test(staged)

    def _download(self, url: str, staged: Path) -> None:
        ensure_dir(staged.parent)
        self.azcopy.download(url, staged)

    def _place(self, staged: Path, relative: Path) -> Path:
        """Extract (or move) into the destination, mirroring the blob's virtual directories."""
        parent = ensure_dir(self.destination / relative.parent)
        if self.extract:
            return self.seven_zip.extract(staged, parent / staged.stem)
        target = parent / staged.name
        shutil.move(str(staged), str(target))
        return target

    def _cleanup(self, staged: Path, blob_client) -> None:
        remove_path(staged)
        if self.retier:
            logger.info(f"{blob_client.blob_name}: moving back to {ARCHIVE_TIER} tier")
            blob_client.set_standard_blob_tier(ARCHIVE_TIER)
