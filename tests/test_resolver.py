"""
Tests for IMAP server resolution
"""
import pytest

from pocket_mail.core.models import ServerAddress
from pocket_mail.core.resolver import KNOWN_PROVIDERS, extract_domain, resolve_server
from pocket_mail.utils.errors import ResolutionError, ValidationError


class TestResolveServer:
    """Tests for resolve_server"""

    @pytest.mark.parametrize(
        "email, host",
        [
            ("alice@gmail.com", "imap.gmail.com"),
            ("bob@yahoo.com", "imap.mail.yahoo.com"),
            ("carol@outlook.com", "imap-mail.outlook.com"),
            ("dave@hotmail.com", "imap-mail.outlook.com"),
            ("erin@mail.ru", "imap.mail.ru"),
            ("frank@yandex.ru", "imap.yandex.ru"),
        ],
    )
    def test_known_providers(self, email, host):
        """Test domains from the built-in table"""
        assert resolve_server(email) == ServerAddress(host, 993)

    def test_unknown_domain_falls_back_to_imap_prefix(self):
        """Test that unknown domains resolve to imap.<domain>"""
        assert resolve_server("user@example.org") == ServerAddress("imap.example.org", 993)

    def test_domain_is_case_insensitive(self):
        """Test that the domain is lowercased before lookup"""
        assert resolve_server("Alice@GMail.COM").host == "imap.gmail.com"

    def test_resolution_is_deterministic(self):
        """Test that repeated calls give the same answer"""
        assert resolve_server("x@corp.example") == resolve_server("x@corp.example")

    def test_extra_providers_take_precedence(self):
        """Test that configured overrides win over the table"""
        server = resolve_server("me@gmail.com", {"gmail.com": "imap.proxy.local"})
        assert server.host == "imap.proxy.local"
        assert server.port == 993

    def test_extra_providers_do_not_hide_table(self):
        """Test that unrelated overrides leave the table in place"""
        server = resolve_server("me@yahoo.com", {"corp.example": "mail.corp.example"})
        assert server.host == "imap.mail.yahoo.com"

    def test_port_is_always_imaps(self):
        """Test that every resolution uses port 993"""
        for domain in KNOWN_PROVIDERS:
            assert resolve_server(f"user@{domain}").port == 993

    @pytest.mark.parametrize("email", ["", "no-at-sign", "user@", "@example.com", "   "])
    def test_malformed_addresses(self, email):
        """Test that addresses without a usable domain are rejected"""
        with pytest.raises(ResolutionError):
            resolve_server(email)

    def test_resolution_error_is_validation_error(self):
        """Test that resolution failures are validation failures"""
        with pytest.raises(ValidationError):
            resolve_server("nobody")


class TestExtractDomain:
    """Tests for extract_domain"""

    def test_splits_on_last_at(self):
        """Test that the last @ separates the domain"""
        assert extract_domain('"odd@local"@example.com') == "example.com"

    def test_strips_whitespace(self):
        """Test that surrounding whitespace is ignored"""
        assert extract_domain("  user@Example.com ") == "example.com"
