import sys
import tempfile
import unittest
from pathlib import Path

ROOT_DIR = Path(__file__).resolve().parents[1]
SRC_DIR = ROOT_DIR / "src"
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from fakes import CA_PEM, TARGET_URL, FakeSpeaker, write_authority
from speakermigrate.migration import selftest
from speakermigrate.migration.errors import SelfTestError

HTTP_URL = "http://custom-test-api.bose.fake:8000/health"
HTTPS_URL = "https://custom-test-api.bose.fake:8443/health"


class SelfTestCase(unittest.TestCase):
    def setUp(self) -> None:
        tmp = tempfile.TemporaryDirectory()
        self.addCleanup(tmp.cleanup)
        self.authority = write_authority(Path(tmp.name))
        self.speaker = FakeSpeaker.stock()


class HostsRedirectionTests(SelfTestCase):
    def test_urls(self) -> None:
        self.assertEqual(HTTP_URL, selftest.http_test_url(TARGET_URL))
        self.assertEqual("http://custom-test-api.bose.fake/health", selftest.http_test_url("http://10.0.0.2"))
        self.assertEqual(HTTPS_URL, selftest.https_test_url("8443"))
        self.assertEqual("https://custom-test-api.bose.fake/health", selftest.https_test_url("443"))

    def test_success_cleans_up(self) -> None:
        self.speaker.curl_results[HTTP_URL] = (True, "http ok")
        self.speaker.curl_results[HTTPS_URL] = (True, "https ok")

        transcript = selftest.test_hosts_redirection(self.speaker, self.authority, TARGET_URL, "8443")

        self.assertEqual("http ok\n---\nhttps ok", transcript)
        self.assertIn((selftest.TEST_CA_PATH, CA_PEM), self.speaker.uploads)
        self.assertIn("192.168.1.20\tcustom-test-api.bose.fake", self.speaker.uploads[0][1])
        self.assertNotIn(selftest.TEST_CA_PATH, self.speaker.files)
        self.assertEqual("127.0.0.1 localhost\n", self.speaker.files["/etc/hosts"])
        self.assertTrue(any("--cacert" in call and HTTPS_URL in call for call in self.speaker.calls))

    def test_hosts_file_left_byte_identical(self) -> None:
        hosts = "# static entries\n127.0.0.1 localhost\n\n::1 localhost\n"
        self.speaker.files["/etc/hosts"] = hosts

        selftest.test_hosts_redirection(self.speaker, self.authority, TARGET_URL, "8443")

        self.assertEqual(hosts, self.speaker.files["/etc/hosts"])

    def test_http_failure_skips_https(self) -> None:
        self.speaker.curl_results[HTTP_URL] = (False, "Connection refused")

        with self.assertRaises(SelfTestError) as ctx:
            selftest.test_hosts_redirection(self.speaker, self.authority, TARGET_URL, "8443")

        self.assertEqual("Connection refused", ctx.exception.log)
        self.assertNotIn(selftest.TEST_CA_PATH, self.speaker.uploaded_paths())
        self.assertEqual("127.0.0.1 localhost\n", self.speaker.files["/etc/hosts"])

    def test_https_failure_still_cleans_up(self) -> None:
        self.speaker.curl_results[HTTPS_URL] = (False, "SSL certificate problem")

        with self.assertRaises(SelfTestError) as ctx:
            selftest.test_hosts_redirection(self.speaker, self.authority, TARGET_URL, "8443")

        self.assertIn("---\nSSL certificate problem", ctx.exception.log)
        self.assertNotIn(selftest.TEST_CA_PATH, self.speaker.files)
        self.assertEqual("127.0.0.1 localhost\n", self.speaker.files["/etc/hosts"])


class ConnectionTests(SelfTestCase):
    def test_plain(self) -> None:
        self.assertEqual('{"status":"ok"}', selftest.test_connection(self.speaker, None, TARGET_URL))
        self.assertEqual([], self.speaker.uploads)

    def test_explicit_ca(self) -> None:
        selftest.test_connection(self.speaker, self.authority, "https://192.168.1.20:8443/health", True)

        self.assertEqual([selftest.TEST_CA_PATH], self.speaker.uploaded_paths())
        self.assertNotIn(selftest.TEST_CA_PATH, self.speaker.files)

    def test_explicit_ca_without_authority(self) -> None:
        with self.assertRaises(SelfTestError):
            selftest.test_connection(self.speaker, None, TARGET_URL, True)

    def test_failure(self) -> None:
        self.speaker.curl_results[TARGET_URL] = (False, "Could not resolve host")

        with self.assertRaises(SelfTestError) as ctx:
            selftest.test_connection(self.speaker, None, TARGET_URL)
        self.assertEqual("Could not resolve host", ctx.exception.log)


class DNSRedirectionTests(SelfTestCase):
    def test_parse_od_address(self) -> None:
        self.assertEqual("192.168.1.20", selftest.parse_od_address(" 192 168   1  20\n"))
        self.assertIsNone(selftest.parse_od_address(""))
        self.assertIsNone(selftest.parse_od_address("od: invalid"))

    def test_raw_query_success(self) -> None:
        self.speaker.pipe_result = (True, " 192 168   1  20\n")

        message = selftest.test_dns_redirection(self.speaker, TARGET_URL, "5353")

        self.assertTrue(message.startswith("Success: Raw DNS query for aftertouch.test returned 192.168.1.20"))
        self.assertIn("192.168.1.20:5353", message)
        self.assertTrue(any("nc -w 5 192.168.1.20 5353" in call for call in self.speaker.calls))

    def test_raw_query_wrong_address(self) -> None:
        self.speaker.pipe_result = (True, " 10 0 0 9\n")

        with self.assertRaises(SelfTestError):
            selftest.test_dns_redirection(self.speaker, TARGET_URL)
        self.assertFalse(any(call.startswith("nslookup") for call in self.speaker.calls))

    def test_nslookup_fallback(self) -> None:
        self.speaker.nslookup_result = (True, "Name: aftertouch.test\nAddress 1: 192.168.1.20\n")

        output = selftest.test_dns_redirection(self.speaker, TARGET_URL)

        self.assertIn("192.168.1.20", output)
        self.assertIn("nslookup aftertouch.test 192.168.1.20", self.speaker.calls)

    def test_both_fail(self) -> None:
        with self.assertRaises(SelfTestError) as ctx:
            selftest.test_dns_redirection(self.speaker, TARGET_URL, "5353")

        self.assertIn("nslookup Output:", ctx.exception.log)
        self.assertIn("nslookup aftertouch.test 192.168.1.20:5353", self.speaker.calls)


if __name__ == "__main__":
    unittest.main()
