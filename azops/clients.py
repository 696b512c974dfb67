"""
Azure SDK client factories.

SDK packages are imported lazily so a tool only loads the libraries it uses.
Authentication is delegated entirely to ``DefaultAzureCredential``.
"""

from urllib.parse import urlparse

from azops.exceptions import MissingSettingError

_credential = None


def get_credential():
    """Return a process-wide DefaultAzureCredential."""
    global _credential
    if _credential is None:
        from azure.identity import DefaultAzureCredential

        _credential = DefaultAzureCredential()
    return _credential


def require_subscription(subscription_id: str | None) -> str:
    if not subscription_id:
        raise MissingSettingError(
            "azure.subscription_id", "--subscription", env_var="AZURE_SUBSCRIPTION_ID"
        )
    return subscription_id


def network_client(subscription_id: str | None):
    from azure.mgmt.network import NetworkManagementClient

    return NetworkManagementClient(get_credential(), require_subscription(subscription_id))


def private_dns_client(subscription_id: str | None):
    from azure.mgmt.privatedns import PrivateDnsManagementClient

    return PrivateDnsManagementClient(get_credential(), require_subscription(subscription_id))


def public_dns_client(subscription_id: str | None):
    from azure.mgmt.dns import DnsManagementClient

    return DnsManagementClient(get_credential(), require_subscription(subscription_id))


def keyvault_clients(vault_url: str) -> dict:
    """Return secret, key and certificate clients for one vault, keyed by item kind."""
    from azure.keyvault.certificates import CertificateClient
    from azure.keyvault.keys import KeyClient
    from azure.keyvault.secrets import SecretClient

    credential = get_credential()
    return {
        "secret": SecretClient(vault_url=vault_url, credential=credential),
        "key": KeyClient(vault_url=vault_url, credential=credential),
        "certificate": CertificateClient(vault_url=vault_url, credential=credential),
    }


def container_client(container_url: str):
    """
    Build a ContainerClient from a container URL.

    URLs carrying a SAS token authenticate with it; otherwise Entra ID
    credentials are used.
    """
    from azure.storage.blob import ContainerClient

    if has_sas_token(container_url):
        return ContainerClient.from_container_url(container_url)
    return ContainerClient.from_container_url(container_url, credential=get_credential())


def vault_url_for(vault: str) -> str:
    """Accept either a vault name or its full URL."""
    if vault.startswith("https://"):
        return vault.rstrip("/")
    return f"https://{vault}.vault.azure.net"


def has_sas_token(url: str) -> bool:
    return "sig=" in (urlparse(url).query or "")


def blob_url(container_url: str, blob_name: str) -> str:
    """
    Join a blob name onto a container URL, keeping any SAS query string.

    Example:
        >>> blob_url("https://a.blob.core.windows.net/c?sv=1&sig=x", "p/f.7z")
        'https://a.blob.core.windows.net/c/p/f.7z?sv=1&sig=x'
    """
    base, sep, query = container_url.partition("?")
    return f"{base.rstrip('/')}/{blob_name.lstrip('/')}{sep}{query}"
