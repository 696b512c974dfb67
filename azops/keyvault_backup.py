"""
Key Vault backup and restore.

Backups are the opaque, vault-encrypted blobs returned by the Key Vault
backup operations. They can only be restored into a vault in the same
subscription and geography.
"""

import json
import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from urllib.parse import urlparse

from azops.exceptions import InputFileError
from azops.util.files import ensure_dir, safe_filename, write_bytes, write_text
from azops.util.hashing import sha256_bytes

logger = logging.getLogger(__name__)

KINDS = ("secret", "key", "certificate")
BACKUP_SUFFIX = ".backup"

# SDK method names per item kind
LIST_METHODS = {
    "secret": "list_properties_of_secrets",
    "key": "list_properties_of_keys",
    "certificate": "list_properties_of_certificates",
}
BACKUP_METHODS = {
    "secret": "backup_secret",
    "key": "backup_key",
    "certificate": "backup_certificate",
}
RESTORE_METHODS = {
    "secret": "restore_secret_backup",
    "key": "restore_key_backup",
    "certificate": "restore_certificate_backup",
}


@dataclass
class VaultItemResult:
    kind: str
    name: str
    status: str
    path: str | None = None
    sha256: str | None = None
    size: int | None = None
    error: str | None = None


@dataclass
class VaultBackupReport:
    vault_url: str
    started_at: str
    output_dir: str
    items: list[VaultItemResult] = field(default_factory=list)

    @property
    def failed(self) -> list[VaultItemResult]:
        return [i for i in self.items if i.status == "failed"]

    def counts(self) -> dict[str, int]:
        counts: dict[str, int] = {}
        for item in self.items:
            counts[item.status] = counts.get(item.status, 0) + 1
        return counts

    def to_dict(self) -> dict:
        return {
            "vault_url": self.vault_url,
            "started_at": self.started_at,
            "output_dir": self.output_dir,
            "counts": self.counts(),
            "items": [asdict(i) for i in self.items],
        }


def vault_name_from_url(vault_url: str) -> str:
    host = urlparse(vault_url).hostname or vault_url
    return host.split(".")[0]


class KeyVaultBackup:
    """Backs up every secret, key and certificate of one vault to local files."""

    def __init__(self, vault_url: str, clients: dict):
        """
        Args:
            vault_url: https://<name>.vault.azure.net
            clients: SDK clients keyed by kind ('secret', 'key', 'certificate')
        """
        self.vault_url = vault_url
        self.vault_name = vault_name_from_url(vault_url)
        self.clients = clients

    def run(
        self,
        output_dir: Path,
        kinds: tuple[str, ...] = KINDS,
        include_disabled: bool = False,
    ) -> VaultBackupReport:
        vault_dir = ensure_dir(Path(output_dir) / self.vault_name)
        report = VaultBackupReport(
            vault_url=self.vault_url,
            started_at=datetime.now(timezone.utc).isoformat(),
            output_dir=str(vault_dir),
        )

        for kind in kinds:
            client = self.clients[kind]
            try:
                properties = list(getattr(client, LIST_METHODS[kind])())
            except Exception as e:
                logger.error(f"Listing {kind}s in {self.vault_name} failed: {e}")
                report.items.append(VaultItemResult(kind, "*", "failed", error=str(e)))
                continue

            logger.info(f"Found {len(properties)} {kind}(s) in {self.vault_name}")
            for props in properties:
                report.items.append(
                    self._backup_item(kind, client, props, vault_dir, include_disabled)
                )

        write_text(vault_dir / "manifest.json", json.dumps(report.to_dict(), indent=2))
        return report

    def _backup_item(self, kind, client, props, vault_dir: Path, include_disabled: bool):
        name = props.name

        if getattr(props, "managed", False):
            # Secrets and keys backing a certificate are covered by the certificate backup
            return VaultItemResult(kind, name, "skipped", error="managed by a certificate")

        if props.enabled is False and not include_disabled:
            return VaultItemResult(kind, name, "skipped", error="disabled")

        path = vault_dir / kind / f"{safe_filename(name)}.{kind}{BACKUP_SUFFIX}"
        try:
            blob = getattr(client, BACKUP_METHODS[kind])(name)
            write_bytes(path, blob)
        except Exception as e:
            logger.error(f"Backup of {kind} '{name}' failed: {e}")
            return VaultItemResult(kind, name, "failed", error=str(e))

        return VaultItemResult(
            kind, name, "backed_up", path=str(path), sha256=sha256_bytes(blob), size=len(blob)
        )


def kind_from_path(path: Path) -> str:
    """Return the item kind encoded in a backup file name (``<name>.<kind>.backup``)."""
    if path.suffix != BACKUP_SUFFIX:
        raise ValueError(f"Not a backup file: {path.name}")
    kind = Path(path.stem).suffix.lstrip(".")
    if kind not in KINDS:
        raise ValueError(f"Cannot tell item kind from file name: {path.name}")
    return kind


def restore_backup(path: str | Path, clients: dict) -> str:
    """
    Restore one backup file into the vault the clients point at.

    Returns:
        Name of the restored item
    """
    p = Path(path)
    if not p.is_file():
        raise InputFileError(str(p))
    kind = kind_from_path(p)
    restored = getattr(clients[kind], RESTORE_METHODS[kind])(p.read_bytes())
    name = restored.name
    logger.info(f"Restored {kind} '{name}' from {p.name}")
    return name
