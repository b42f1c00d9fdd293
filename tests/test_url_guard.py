import socket
import unittest
from unittest.mock import patch

from kbcrawler.security.url_guard import (
    UrlGuard,
    UrlNotAllowedError,
    is_public_ip,
    resolves_to_private_network,
    validate_url,
)


class UrlValidationTests(unittest.TestCase):
    def test_private_and_loopback_ips_blocked(self):
        self.assertFalse(is_public_ip("127.0.0.1"))
        self.assertFalse(is_public_ip("10.0.0.5"))
        self.assertFalse(is_public_ip("192.168.1.10"))
        self.assertFalse(is_public_ip("169.254.169.254"))
        self.assertFalse(is_public_ip("::1"))

    def test_public_ip_allowed(self):
        self.assertTrue(is_public_ip("1.1.1.1"))

    def test_non_http_schemes_rejected(self):
        for url in ("ftp://example.com/file", "file:///etc/passwd", "javascript:alert(1)", "example.com"):
            with self.assertRaises(UrlNotAllowedError):
                validate_url(url)

    def test_internal_hosts_rejected(self):
        for url in (
            "http://localhost:3000/knowledge",
            "http://printer.local/",
            "https://db.internal/admin",
            "http://10.1.2.3/",
            "http://[::1]/",
            "http://169.254.169.254/latest/meta-data",
        ):
            with self.assertRaises(UrlNotAllowedError):
                validate_url(url)

    def test_missing_host_rejected(self):
        with self.assertRaises(UrlNotAllowedError):
            validate_url("https:///path-only")

    def test_fragment_dropped_and_whitespace_stripped(self):
        self.assertEqual(validate_url("  https://example.com/docs#install  "), "https://example.com/docs")

    def test_rejection_is_a_value_error(self):
        self.assertTrue(issubclass(UrlNotAllowedError, ValueError))

    def test_unresolvable_host_is_not_private(self):
        with patch("kbcrawler.security.url_guard.socket.getaddrinfo", side_effect=socket.gaierror("no such host")):
            self.assertFalse(resolves_to_private_network("does-not-exist.example"))


class UrlGuardTests(unittest.IsolatedAsyncioTestCase):
    async def test_guard_without_dns_only_validates(self):
        guard = UrlGuard(resolve_dns=False)
        self.assertEqual(await guard.check("https://bitcoin.org/en/"), "https://bitcoin.org/en/")
        with self.assertRaises(UrlNotAllowedError):
            await guard.check("http://localhost/")

    async def test_guard_rejects_host_resolving_to_private_network(self):
        guard = UrlGuard(resolve_dns=True)
        with patch("kbcrawler.security.url_guard.resolves_to_private_network", return_value=True) as resolver:
            with self.assertRaises(UrlNotAllowedError) as ctx:
                await guard.check("https://intranet.example.com/")
            with self.assertRaises(UrlNotAllowedError):
                await guard.check("https://intranet.example.com/other")
        self.assertIn("private network", str(ctx.exception))
        self.assertEqual(resolver.call_count, 1)

    async def test_guard_allows_public_resolution(self):
        guard = UrlGuard(resolve_dns=True)
        with patch("kbcrawler.security.url_guard.resolves_to_private_network", return_value=False):
            self.assertEqual(await guard.check("https://example.com/a"), "https://example.com/a")


if __name__ == "__main__":
    unittest.main()
