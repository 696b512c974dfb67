"""
Wrappers around the external executables used by archive and restore.

- 7-Zip (``7z``): compress, integrity test, extract
- AzCopy (``azcopy``): transfers between local disk and Blob Storage
"""

import logging
import os
import shutil
import subprocess
from pathlib import Path

from azops.clients import has_sas_token
from azops.exceptions import ExternalToolError, IntegrityError, ToolNotFoundError
from azops.util.redact import redact_sensitive
from azops.util.retry import RetryStrategy, is_retryable_error, retry_with_backoff

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 6 * 3600


def is_tool_available(executable: str) -> bool:
    return shutil.which(executable) is not None


def run_tool(
    cmd: list[str],
    tool: str,
    timeout: float = DEFAULT_TIMEOUT,
    env: dict[str, str] | None = None,
) -> subprocess.CompletedProcess:
    """
    Run an external tool and raise on a non-zero exit code.

    Raises:
        ToolNotFoundError: If the executable is not on PATH
        ExternalToolError: On timeout, launch failure or non-zero exit
    """
    if not is_tool_available(cmd[0]):
        raise ToolNotFoundError(tool)

    logger.debug(f"Running: {redact_sensitive(' '.join(cmd))}")

    try:
        result = subprocess.run(
            cmd,
            capture_output=True,
            text=True,
            timeout=timeout,
            env=env,
        )
    except subprocess.TimeoutExpired:
        raise ExternalToolError(tool, f"timed out after {timeout}s") from None
    except OSError as e:
        raise ExternalToolError(tool, str(e)) from e

    if result.returncode != 0:
        raise ExternalToolError(
            tool, redact_sensitive(_tail(result.stderr or result.stdout)), result.returncode
        )
    return result


def _tail(output: str, lines: int = 5) -> str:
    text = "\n".join(line for line in (output or "").strip().splitlines()[-lines:])
    return text or "no output"


class SevenZip:
    """7-Zip command line wrapper."""

    def __init__(self, executable: str = "7z", timeout: float = DEFAULT_TIMEOUT):
        self.executable = executable
        self.timeout = timeout

    def compress(self, source: Path, archive: Path, level: int = 5) -> Path:
        """Create a 7z archive containing ``source`` (file or directory)."""
        run_tool(
            [self.executable, "a", "-t7z", f"-mx={level}", "-y", str(archive), str(source)],
            "7z",
            self.timeout,
        )
        if not archive.exists():
            raise ExternalToolError("7z", f"archive was not created: {archive}")
        return archive

    def test(self, archive: Path) -> None:
        """
        Test archive integrity.

        Raises:
            IntegrityError: If 7z reports the archive as damaged
        """
        try:
            run_tool([self.executable, "t", str(archive)], "7z", self.timeout)
        except ToolNotFoundError:
            raise
        except ExternalToolError as e:
            raise IntegrityError(str(archive), e.message) from e

    def extract(self, archive: Path, destination: Path) -> Path:
        """Extract an archive into ``destination`` (overwriting existing files)."""
        destination.mkdir(parents=True, exist_ok=True)
        run_tool(
            [self.executable, "x", str(archive), f"-o{destination}", "-y"],
            "7z",
            self.timeout,
        )
        return destination


class AzCopy:
    """AzCopy command line wrapper."""

    def __init__(
        self,
        executable: str = "azcopy",
        timeout: float = DEFAULT_TIMEOUT,
        retry: dict | None = None,
    ):
        self.executable = executable
        self.timeout = timeout
        self.retry = retry if retry is not None else RetryStrategy.apply("TRANSFER")

    def _env(self, url: str) -> dict[str, str]:
        env = dict(os.environ)
        # Without a SAS token azcopy needs an Entra ID login; reuse the Azure CLI session
        if not has_sas_token(url) and "AZCOPY_AUTO_LOGIN_TYPE" not in env:
            env["AZCOPY_AUTO_LOGIN_TYPE"] = "AZCLI"
        return env

    def copy(self, source: str, destination: str, *options: str) -> subprocess.CompletedProcess:
        """
        ``azcopy copy <source> <destination> [options]`` with retry on transient failures.
        """
        remote = destination if "://" in destination else source
        cmd = [self.executable, "copy", source, destination, *options]

        @retry_with_backoff(**self.retry, should_retry=is_retryable_error)
        def _copy():
            return run_tool(cmd, "azcopy", self.timeout, env=self._env(remote))

        return _copy()

    def upload(
        self,
        local_path: Path,
        blob_url: str,
        tier: str | None = None,
        metadata: dict[str, str] | None = None,
    ) -> None:
        options = ["--overwrite=false", "--put-md5"]
        if tier:
            options.append(f"--block-blob-tier={tier}")
        if metadata:
            options.append("--metadata=" + ";".join(f"{k}={v}" for k, v in metadata.items()))
        self.copy(str(local_path), blob_url, *options)

    def download(self, blob_url: str, local_path: Path) -> Path:
        local_path.parent.mkdir(parents=True, exist_ok=True)
        self.copy(blob_url, str(local_path), "--overwrite=true", "--check-md5=FailIfDifferent")
        return local_path
