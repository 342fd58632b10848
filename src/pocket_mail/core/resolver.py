"""IMAP server resolution from an email address's domain."""

from types import MappingProxyType
from typing import Mapping, Optional

from pocket_mail.core.models import ServerAddress
from pocket_mail.utils.errors import ResolutionError

IMAPS_PORT = 993

# Known email provider IMAP hosts
KNOWN_PROVIDERS: Mapping[str, str] = MappingProxyType(
    {
        "gmail.com": "imap.gmail.com",
        "googlemail.com": "imap.gmail.com",
        "yahoo.com": "imap.mail.yahoo.com",
        "outlook.com": "imap-mail.outlook.com",
        "hotmail.com": "imap-mail.outlook.com",
        "live.com": "imap-mail.outlook.com",
        "mail.ru": "imap.mail.ru",
        "yandex.ru": "imap.yandex.ru",
        "aol.com": "imap.aol.com",
        "fastmail.com": "imap.fastmail.com",
    }
)


def extract_domain(email: str) -> str:
    """Return the lowercased domain of ``email``.

    Raises:
        ResolutionError: If there is no non-empty ``@domain`` suffix
    """
    address = (email or "").strip()
    local, sep, domain = address.rpartition("@")
    domain = domain.strip().lower()

    if not sep or not local or not domain:
        raise ResolutionError(
            f"Cannot determine a domain from address: {address!r}",
            details={"address": address},
        )

    return domain


def resolve_server(
    email: str, extra_providers: Optional[Mapping[str, str]] = None
) -> ServerAddress:
    """Resolve the IMAP server for an email address.

    Exact domain matches come from ``extra_providers`` first, then the
    built-in table; anything else falls back to ``imap.<domain>``. The port
    is always the IMAPS port. No network lookup happens here.

    Args:
        email: Email address (e.g., user@gmail.com)
        extra_providers: Optional domain -> host overrides

    Returns:
        ServerAddress for the domain

    Raises:
        ResolutionError: If the address has no ``@domain`` suffix
    """
    domain = extract_domain(email)

    host = None
    if extra_providers:
        host = extra_providers.get(domain)
    if host is None:
        host = KNOWN_PROVIDERS.get(domain, f"imap.{domain}")

    return ServerAddress(host=host, port=IMAPS_PORT)
