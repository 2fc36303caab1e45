import logging
import os
import sys
import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

ROOT_DIR = Path(__file__).resolve().parents[1]
SRC_DIR = ROOT_DIR / "src"
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from speakermigrate.core.config import DevicesConfigError, load_devices, load_service_settings
from speakermigrate.core.logging import SecretScrubberFilter
from speakermigrate.core.models import DNSSettings, MigrationMethod
from speakermigrate.core.secrets import SecretNotFoundError, SecretsConfigError, get_password, load_secrets
from speakermigrate.core.storage import DeviceStore, load_local_config


class ConfigTestCase(unittest.TestCase):
    def setUp(self) -> None:
        tmp = tempfile.TemporaryDirectory()
        self.addCleanup(tmp.cleanup)
        self.directory = Path(tmp.name)

    def write(self, name: str, text: str) -> Path:
        path = self.directory / name
        path.write_text(text, encoding="utf-8")
        return path


class LoadDevicesTests(ConfigTestCase):
    def test_valid_inventory(self) -> None:
        path = self.write(
            "devices.yml",
            """devices:
  - name: living-room
    host: 192.168.1.31
    model: SoundTouch 20
    account_id: 3230304
  - name: kitchen
    host: 192.168.1.32
    ssh_port: 2222
    secret_ref: kitchen-root
""",
        )

        devices = load_devices(path)

        self.assertEqual(["living-room", "kitchen"], [device.name for device in devices])
        self.assertEqual("3230304", devices[0].account_id)
        self.assertEqual(22, devices[0].ssh_port)
        self.assertEqual(2222, devices[1].ssh_port)
        self.assertEqual("kitchen-root", devices[1].secret_ref)

    def test_invalid_entries_are_skipped(self) -> None:
        path = self.write(
            "devices.yml",
            """devices:
  - name: no-host
  - name: with-password
    host: 192.168.1.33
    password: hunter2
  - name: ok
    host: 192.168.1.34
  - name: ok
    host: 192.168.1.35
  - name: bad-port
    host: 192.168.1.36
    ssh_port: 70000
""",
        )

        with self.assertLogs("speakermigrate.core.config", level="ERROR"):
            devices = load_devices(path, logging.getLogger("speakermigrate.core.config"))

        self.assertEqual([("ok", "192.168.1.34")], [(device.name, device.host) for device in devices])

    def test_structure_errors(self) -> None:
        with self.assertRaises(DevicesConfigError):
            load_devices(self.write("devices.yml", "- just a list\n"))
        with self.assertRaises(DevicesConfigError):
            load_devices(self.write("devices.yml", "devices: {}\n"))
        with self.assertRaises(FileNotFoundError):
            load_devices(self.directory / "missing.yml")


class ServiceSettingsTests(ConfigTestCase):
    def test_defaults(self) -> None:
        settings = load_service_settings(None, environ={})

        self.assertEqual("http://localhost:8000", settings.server_url)
        self.assertEqual("8443", settings.https_port)
        self.assertEqual("certs", settings.certs_dir.name)
        self.assertEqual(10.0, settings.ssh_timeout)

    def test_local_config_and_environment(self) -> None:
        local = {
            "server": {"url": "http://192.168.1.20:8000/", "https_port": 9443},
            "data": {"directory": str(self.directory / "data")},
            "ssh": {"timeout": "4", "username": "root", "port": 2222},
        }

        settings = load_service_settings(local, environ={"HTTPS_PORT": "443"})

        self.assertEqual("http://192.168.1.20:8000", settings.server_url)
        self.assertEqual("443", settings.https_port)
        self.assertEqual(self.directory / "data" / "certs", settings.certs_dir)
        self.assertEqual(4.0, settings.ssh_timeout)
        self.assertEqual(2222, settings.ssh_port)

    def test_load_local_config(self) -> None:
        path = self.write("local.yml", "server:\n  url: http://10.0.0.2:8000\n")

        self.assertEqual({"server": {"url": "http://10.0.0.2:8000"}}, dict(load_local_config(path)))
        self.assertIsNone(load_local_config(self.directory / "missing.yml"))
        self.assertIsNone(load_local_config(self.write("broken.yml", "server: [unclosed\n")))


class SecretsTests(ConfigTestCase):
    def test_environment_overrides_file(self) -> None:
        path = self.write("secrets.yml", "secrets:\n  kitchen-root:\n    password: from-file\n")
        secrets = load_secrets(path)

        self.assertEqual("from-file", get_password("kitchen-root", secrets))
        with patch.dict(os.environ, {"SPEAKERMIGRATE_SECRET_KITCHEN_ROOT": "from-env"}):
            self.assertEqual("from-env", get_password("kitchen-root", secrets))

    def test_missing_ref_and_default_password(self) -> None:
        secrets = load_secrets(self.directory / "missing.yml")

        self.assertTrue(secrets.missing_source)
        self.assertEqual("", get_password(None, secrets))
        with self.assertRaises(SecretNotFoundError):
            get_password("unknown", secrets)

    def test_malformed_file(self) -> None:
        with self.assertRaises(SecretsConfigError):
            load_secrets(self.write("secrets.yml", "secrets:\n  kitchen-root: hunter2\n"))


class DeviceStoreTests(ConfigTestCase):
    def test_dns_settings_round_trip_keeps_other_sections(self) -> None:
        local = self.write("local.yml", "server:\n  url: http://10.0.0.2:8000\n")
        store = DeviceStore(self.directory / "data", local_config_path=local)

        self.assertEqual(DNSSettings(), store.get_dns_settings())
        store.set_dns_settings(DNSSettings(enabled=True, bind_addr="0.0.0.0:53"))

        self.assertEqual(DNSSettings(enabled=True, bind_addr="0.0.0.0:53"), store.get_dns_settings())
        self.assertEqual("53", store.get_dns_settings().port)
        self.assertEqual("http://10.0.0.2:8000", load_local_config(local)["server"]["url"])

    def test_backup_dir_layout(self) -> None:
        store = DeviceStore(self.directory / "data")

        self.assertEqual(
            self.directory / "data" / "accounts" / "default" / "devices" / "SER1",
            store.device_backup_dir("", "SER1"),
        )


class MiscTests(unittest.TestCase):
    def test_method_parse(self) -> None:
        self.assertIs(MigrationMethod.XML, MigrationMethod.parse(None))
        self.assertIs(MigrationMethod.RESOLV, MigrationMethod.parse("RESOLV"))
        with self.assertRaises(ValueError):
            MigrationMethod.parse("dhcp")

    def test_secret_scrubber(self) -> None:
        record = logging.LogRecord("speakermigrate", logging.INFO, __file__, 1, "login password=%s", ("hunter2",), None)

        SecretScrubberFilter().filter(record)

        self.assertEqual("login password=***", record.getMessage())


if __name__ == "__main__":
    unittest.main()
