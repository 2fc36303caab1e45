import sys
import unittest
from pathlib import Path

ROOT_DIR = Path(__file__).resolve().parents[1]
SRC_DIR = ROOT_DIR / "src"
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from fakes import UDHCPC_DEFAULT
from speakermigrate.migration import patching


class RewriteHostsTests(unittest.TestCase):
    def test_appends_every_vendor_domain(self) -> None:
        result = patching.rewrite_hosts("127.0.0.1 localhost", "10.0.0.2")

        lines = result.split("\n")
        self.assertEqual("127.0.0.1 localhost", lines[0])
        self.assertEqual(len(patching.VENDOR_DOMAINS) + 2, len(lines))
        self.assertTrue(result.endswith("\n"))
        self.assertIn("10.0.0.2\tbose-prod.apigee.net", lines)

    def test_existing_entries_are_updated_in_place(self) -> None:
        current = "# managed\n10.0.0.9 stats.bose.com\n\n127.0.0.1 localhost\n"

        result = patching.rewrite_hosts(current, "10.0.0.2")

        lines = result.split("\n")
        self.assertEqual(["# managed", "10.0.0.2\tstats.bose.com", "", "127.0.0.1 localhost"], lines[:4])
        self.assertEqual(1, result.count("stats.bose.com"))

    def test_rewrite_is_stable(self) -> None:
        once = patching.rewrite_hosts("127.0.0.1 localhost\n", "10.0.0.2")

        self.assertEqual(once, patching.rewrite_hosts(once, "10.0.0.2"))

    def test_planned_hosts(self) -> None:
        planned = patching.planned_hosts("10.0.0.2")

        self.assertEqual("10.0.0.2\tstreaming.bose.com", planned.split("\n")[0])
        self.assertFalse(planned.endswith("\n"))


class TestEntryTests(unittest.TestCase):
    def test_add_replaces_stale_entry(self) -> None:
        current = "127.0.0.1 localhost\n10.0.0.9\tcustom-test-api.bose.fake\n"

        result = patching.add_hosts_entry(current, "custom-test-api.bose.fake", "10.0.0.2\tcustom-test-api.bose.fake")

        self.assertEqual("127.0.0.1 localhost\n10.0.0.2\tcustom-test-api.bose.fake\n", result)

    def test_remove_entry(self) -> None:
        current = "127.0.0.1 localhost\n10.0.0.2\tcustom-test-api.bose.fake\n"

        self.assertEqual("127.0.0.1 localhost\n", patching.remove_hosts_entries(current, "custom-test-api.bose.fake"))

    def test_add_then_remove_keeps_blank_lines_and_comments(self) -> None:
        current = "# static entries\n127.0.0.1 localhost\n\n::1 localhost\n"
        domain = "custom-test-api.bose.fake"

        added = patching.add_hosts_entry(current, domain, f"10.0.0.2\t{domain}")

        self.assertEqual(current + f"10.0.0.2\t{domain}\n", added)
        self.assertEqual(current, patching.remove_hosts_entries(added, domain))


class DhcpScriptTests(unittest.TestCase):
    def test_hook_line_follows_anchor(self) -> None:
        hook = patching.DHCP_HOOKS[0]

        patched, changed = patching.patch_dhcp_script(UDHCPC_DEFAULT, hook)

        self.assertTrue(changed)
        lines = patched.split("\n")
        anchor_index = next(i for i, line in enumerate(lines) if hook.anchor in line)
        self.assertEqual(hook.line, lines[anchor_index + 1])

    def test_patched_script_is_left_alone(self) -> None:
        hook = patching.DHCP_HOOKS[0]
        patched, _ = patching.patch_dhcp_script(UDHCPC_DEFAULT, hook)

        self.assertEqual((patched, False), patching.patch_dhcp_script(patched, hook))

    def test_script_without_anchor_is_unchanged(self) -> None:
        self.assertEqual(("#!/bin/sh\nexit 0\n", False), patching.patch_dhcp_script("#!/bin/sh\nexit 0\n", patching.DHCP_HOOKS[1]))


class BootScriptTests(unittest.TestCase):
    def test_patch_missing_script(self) -> None:
        patched, changed = patching.patch_boot_script("")

        self.assertTrue(changed)
        self.assertTrue(patched.startswith("#!/bin/sh\n"))
        self.assertIn(patching.HOOK_COMMENT, patched)
        for hook in patching.DHCP_HOOKS:
            self.assertIn(hook.path, patched)

    def test_stored_error_is_discarded(self) -> None:
        patched, _ = patching.patch_boot_script("cat: can't open '/mnt/nv/rc.local': No such file or directory")

        self.assertNotIn("can't open", patched)

    def test_patch_is_idempotent(self) -> None:
        patched, _ = patching.patch_boot_script("#!/bin/sh\nntpd -p pool.ntp.org\n")

        self.assertEqual((patched, False), patching.patch_boot_script(patched))

    def test_strip_restores_original(self) -> None:
        original = "#!/bin/sh\nntpd -p pool.ntp.org\n"
        patched, _ = patching.patch_boot_script(original)

        stripped, changed = patching.strip_boot_hook(patched)

        self.assertTrue(changed)
        self.assertEqual(original, stripped)

    def test_strip_keeps_lines_after_block(self) -> None:
        patched, _ = patching.patch_boot_script("#!/bin/sh\n")
        patched += "echo done\n"

        stripped, _ = patching.strip_boot_hook(patched)

        self.assertEqual("#!/bin/sh\necho done\n", stripped)

    def test_strip_without_hook(self) -> None:
        self.assertEqual(("#!/bin/sh\n", False), patching.strip_boot_hook("#!/bin/sh\n"))

    def test_block_uses_literal_resolv_conf_variable(self) -> None:
        block = patching.boot_hook_block()

        self.assertIn(">> $RESOLV_CONF", block)
        self.assertIn("sed -i '", block)


if __name__ == "__main__":
    unittest.main()
