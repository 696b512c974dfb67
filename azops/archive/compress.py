"""
Directory archival to Blob Storage.

For each source path: validate, compress with 7-Zip, test the archive,
upload with AzCopy straight into the requested access tier, confirm the
blob through the Blob API, then clean up. A failure stops that source only;
the remaining sources are still processed.
"""

import logging
import socket
import tempfile
from collections.abc import Callable
from datetime import datetime, timezone
from pathlib import Path

from azops.archive.models import PathOutcome, WorkflowReport
from azops.archive.tools import AzCopy, SevenZip
from azops.clients import blob_url
from azops.exceptions import InputFileError, IntegrityError, UploadVerificationError
from azops.util.files import ensure_dir, remove_path, safe_filename
from azops.util.hashing import sha256_file
from azops.util.retry import RetryStrategy, is_retryable_error, retry_with_backoff

logger = logging.getLogger(__name__)

ARCHIVE_SUFFIX = ".7z"
ACCESS_TIERS = ("Hot", "Cool", "Cold", "Archive")


class ArchiveWorkflow:
    """Compress, verify, upload and clean up a list of source paths."""

    def __init__(
        self,
        container_url: str,
        container_client,
        seven_zip: SevenZip,
        azcopy: AzCopy,
        staging_dir: Path | None = None,
        blob_prefix: str = "",
        tier: str = "Archive",
        compression_level: int = 5,
        remove_source: bool = False,
        keep_on_failure: bool = False,
    ):
        if tier not in ACCESS_TIERS:
            raise ValueError(f"Invalid access tier '{tier}'. Must be one of: {ACCESS_TIERS}")
        if not 0 <= compression_level <= 9:
            raise ValueError(f"Compression level must be 0-9, got {compression_level}")

        self.container_url = container_url
        self.container_client = container_client
        self.seven_zip = seven_zip
        self.azcopy = azcopy
        self.staging_dir = Path(staging_dir or Path(tempfile.gettempdir()) / "azops")
        self.blob_prefix = blob_prefix.strip("/")
        self.tier = tier
        self.compression_level = compression_level
        self.remove_source = remove_source
        self.keep_on_failure = keep_on_failure
        self._used_names: set[str] = set()

    def run(
        self,
        sources: list[Path],
        on_outcome: Callable[[PathOutcome], None] | None = None,
    ) -> WorkflowReport:
        report = WorkflowReport(operation="archive")
        ensure_dir(self.staging_dir)

        for source in sources:
            outcome = self.archive_path(Path(source))
            report.outcomes.append(outcome)
            if on_outcome is not None:
                on_outcome(outcome)

        logger.info(
            f"Archive run finished: {len(report.succeeded)} succeeded, {len(report.failed)} failed"
        )
        return report

    def archive_path(self, source: Path) -> PathOutcome:
        outcome = PathOutcome(source=str(source))
        archive: Path | None = None

        try:
            source = outcome.run_step("validate", self._validate, source)

            archive = self.staging_dir / self._archive_name(source)
            outcome.local_path = str(archive)
            outcome.blob_name = (
                f"{self.blob_prefix}/{archive.name}" if self.blob_prefix else archive.name
            )

            outcome.run_step(
                "compress", self.seven_zip.compress, source, archive, self.compression_level
            )
            outcome.run_step("verify", self._verify, archive, outcome)
            outcome.run_step("upload", self._upload, archive, source, outcome)
            outcome.run_step("confirm", self._confirm, outcome)
            outcome.run_step("cleanup", self._cleanup, archive, source)
            outcome.succeed()
            logger.info(f"Archived {source} -> {outcome.blob_name}")

        except Exception as e:
            outcome.fail(e)
            logger.error(f"Archiving {source} failed at step '{outcome.failed_step}': {e}")
            if archive is not None and not self.keep_on_failure:
                remove_path(archive)

        return outcome

    def _validate(self, source: Path) -> Path:
        if not source.exists():
            raise InputFileError(str(source), "Source path not found")
        return source.resolve()

    def _archive_name(self, source: Path) -> str:
        """``<source-name>_<UTC timestamp>.7z``, unique within this run."""
        stamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%SZ")
        base = f"{safe_filename(source.name or 'root')}_{stamp}"
        name = f"{base}{ARCHIVE_SUFFIX}"
        counter = 2
        while name in self._used_names:
            name = f"{base}-{counter}{ARCHIVE_SUFFIX}"
            counter += 1
        self._used_names.add(name)
        return name

    def _verify(self, archive: Path, outcome: PathOutcome) -> None:
        self.seven_zip.test(archive)
        outcome.sha256 = sha256_file(archive)
        outcome.size = archive.stat().st_size

    def _upload(self, archive: Path, source: Path, outcome: PathOutcome) -> None:
        metadata = {
            "sha256": outcome.sha256,
            "source_name": safe_filename(source.name or "root"),
            "source_host": safe_filename(socket.gethostname()),
        }
        self.azcopy.upload(
            archive,
            blob_url(self.container_url, outcome.blob_name),
            tier=self.tier,
            metadata=metadata,
        )

    @retry_with_backoff(**RetryStrategy.apply("MODERATE"), should_retry=is_retryable_error)
    def _blob_properties(self, blob_name: str):
        return self.container_client.get_blob_client(blob_name).get_blob_properties()

    def _confirm(self, outcome: PathOutcome) -> None:
        props = self._blob_properties(outcome.blob_name)
        if props.size != outcome.size:
            raise UploadVerificationError(outcome.blob_name, outcome.size, props.size)

        remote_hash = (props.metadata or {}).get("sha256")
        if remote_hash and remote_hash != outcome.sha256:
            raise IntegrityError(outcome.blob_name, "sha256 metadata does not match local archive")

    def _cleanup(self, archive: Path, source: Path) -> None:
        remove_path(archive)
        if self.remove_source:
            logger.info(f"Removing archived source {source}")
            remove_path(source)
