"""
Custom exceptions for azops with helpful error messages.
"""


class AzOpsError(Exception):
    """Base exception for azops errors."""

    def __init__(self, message: str, suggestion: str = None):
        self.message = message
        self.suggestion = suggestion
        super().__init__(self.message)

    def __str__(self):
        if self.suggestion:
            return f"{self.message}\n\nSuggestion: {self.suggestion}"
        return self.message


class ConfigurationError(AzOpsError):
    """Configuration file errors."""

    pass


class InvalidConfigError(ConfigurationError):
    """Configuration file is invalid."""

    def __init__(self, error_details: str):
        message = f"Invalid configuration file: {error_details}"

        suggestion = (
            "Fix the azops.yaml file.\n"
            "You can regenerate the default configuration:\n"
            "  mv azops.yaml azops.yaml.backup\n"
            "  azops init .\n\n"
            "Then merge your settings back from the backup."
        )
        super().__init__(message, suggestion)


class MissingSettingError(ConfigurationError):
    """A required setting was not supplied on the command line or in config."""

    def __init__(self, setting: str, option: str, env_var: str = None):
        message = f"Missing required setting: {setting}"

        hints = [f"Pass it on the command line:\n  {option} <value>"]
        if env_var:
            hints.append(f"Or export it:\n  export {env_var}=<value>")
        hints.append(f"Or set '{setting}' in azops.yaml")
        super().__init__(message, "\n\n".join(hints))


class InputFileError(AzOpsError):
    """Input file missing or unreadable."""

    def __init__(self, file_path: str, reason: str = "File not found"):
        message = f"{reason}: {file_path}"
        suggestion = (
            "Check that the file path is correct and the file exists:\n" f"  ls -l {file_path}"
        )
        super().__init__(message, suggestion)


class ExternalToolError(AzOpsError):
    """An external executable (7z, azcopy) failed or is missing."""

    def __init__(self, tool: str, details: str, returncode: int | None = None):
        self.tool = tool
        self.returncode = returncode

        message = f"{tool} failed: {details}"
        if returncode is not None:
            message = f"{tool} exited with code {returncode}: {details}"

        suggestion = (
            f"Check that {tool} is installed and on PATH, or set its location in azops.yaml:\n"
            "  archive:\n"
            "    seven_zip_path: /usr/bin/7z\n"
            "    azcopy_path: /usr/local/bin/azcopy"
        )
        super().__init__(message, suggestion)


class ToolNotFoundError(ExternalToolError):
    """External executable is not installed."""

    def __init__(self, tool: str):
        super().__init__(tool, "executable not found")


class IntegrityError(AzOpsError):
    """Archive integrity or checksum verification failed."""

    def __init__(self, path: str, details: str):
        message = f"Integrity check failed for {path}: {details}"
        suggestion = (
            "The archive is damaged or incomplete.\n"
            "Re-run the archive step for this source, or re-download the blob."
        )
        super().__init__(message, suggestion)


class BlobError(AzOpsError):
    """Blob storage operation failed."""

    pass


class UploadVerificationError(BlobError):
    """Uploaded blob does not match the local archive."""

    def __init__(self, blob_name: str, local_size: int, remote_size: int | None):
        message = (
            f"Uploaded blob {blob_name} has size {remote_size}, expected {local_size} bytes"
        )
        suggestion = "Re-run the archive for this source; the local archive was kept."
        super().__init__(message, suggestion)


class RehydrationTimeoutError(BlobError):
    """Blob did not leave the Archive tier in time."""

    def __init__(self, blob_name: str, waited_seconds: float):
        message = f"Blob {blob_name} still rehydrating after {waited_seconds:.0f}s"
        suggestion = (
            "Rehydration from the Archive tier can take up to 15 hours (1 hour with High\n"
            "priority). Re-run the restore later; it resumes from the pending state:\n"
            "  azops archive restore <blob> --no-wait"
        )
        super().__init__(message, suggestion)


class DnsRecordError(AzOpsError):
    """Invalid desired DNS record definition."""

    def __init__(self, record: str, details: str):
        message = f"Invalid DNS record {record}: {details}"
        suggestion = (
            "Each record needs name, type, ttl and values, e.g.:\n"
            "  - name: web\n"
            "    type: A\n"
            "    ttl: 300\n"
            "    values: [10.0.0.4]"
        )
        super().__init__(message, suggestion)


class RouteValidationError(AzOpsError):
    """Route definitions failed validation."""

    def __init__(self, errors: list[str]):
        self.errors = errors
        error_list = "\n  - ".join(errors)
        message = f"Route validation failed with {len(errors)} error(s):\n  - {error_list}"
        suggestion = (
            "Fix the route definitions.\n"
            "Common issues:\n"
            "  - Address prefix has host bits set (use the network address)\n"
            "  - VirtualAppliance next hop without --next-hop-ip\n"
            "  - Duplicate prefixes or route names"
        )
        super().__init__(message, suggestion)


class CsvFormatError(AzOpsError):
    """CSV input cannot be used."""

    def __init__(self, file_path: str, details: str):
        message = f"Cannot load {file_path}: {details}"
        suggestion = (
            "Check the header row matches the target columns, or map columns explicitly:\n"
            "  azops sql load data.csv --table t --map csv_column=db_column"
        )
        super().__init__(message, suggestion)


class TableNotFoundError(AzOpsError):
    """Target database table does not exist."""

    def __init__(self, table: str):
        message = f"Table not found: {table}"
        suggestion = (
            "Create the table first, or let azops create it with text columns:\n"
            "  azops sql load data.csv --table " + table + " --create-table"
        )
        super().__init__(message, suggestion)


class RetryableError(AzOpsError):
    """Error that should be retried."""

    def __init__(self, original_error: Exception, attempt: int, max_attempts: int):
        self.original_error = original_error
        self.attempt = attempt
        self.max_attempts = max_attempts

        message = f"Operation failed (attempt {attempt}/{max_attempts}): " f"{str(original_error)}"
        super().__init__(message)


def format_error_for_cli(error: Exception) -> str:
    """
    Format an exception for CLI display with helpful information.

    Args:
        error: The exception to format

    Returns:
        Formatted error message string
    """
    if isinstance(error, AzOpsError):
        output = f"[red]Error:[/red] {error.message}"
        if error.suggestion:
            output += f"\n\n[yellow]{error.suggestion}[/yellow]"
        return output
    else:
        return f"[red]Error:[/red] {str(error)}"
