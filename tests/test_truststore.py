import sys
import tempfile
import unittest
from pathlib import Path

ROOT_DIR = Path(__file__).resolve().parents[1]
SRC_DIR = ROOT_DIR / "src"
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from fakes import CA_PEM, STOCK_BUNDLE, FakeSpeaker, write_authority
from speakermigrate.migration.errors import RemoteOperationError
from speakermigrate.migration.oplog import OperationLog
from speakermigrate.migration.truststore import (
    CA_BUNDLE_PATH,
    CA_LABEL,
    TrustStoreEditor,
    append_ca_block,
    first_body_line,
    strip_ca_block,
)


class BundleTextTests(unittest.TestCase):
    def test_first_body_line(self) -> None:
        self.assertTrue(first_body_line(CA_PEM).startswith("MIIBszCCAVmg"))
        self.assertEqual("", first_body_line("-----BEGIN CERTIFICATE-----\n-----END CERTIFICATE-----\n"))

    def test_append_then_strip_restores_bundle(self) -> None:
        bundle = append_ca_block(STOCK_BUNDLE, CA_PEM)

        self.assertEqual(2, bundle.count(CA_LABEL))
        self.assertEqual(STOCK_BUNDLE, strip_ca_block(bundle))

    def test_append_replaces_existing_block(self) -> None:
        stale = append_ca_block(STOCK_BUNDLE, CA_PEM.replace("MIIB", "OLD0"))

        bundle = append_ca_block(stale, CA_PEM)

        self.assertEqual(2, bundle.count(CA_LABEL))
        self.assertNotIn("OLD0", bundle)
        self.assertEqual(bundle, append_ca_block(bundle, CA_PEM))

    def test_strip_adds_missing_newline(self) -> None:
        self.assertEqual("abc\n", strip_ca_block("abc"))


class TrustStoreEditorTests(unittest.TestCase):
    def setUp(self) -> None:
        tmp = tempfile.TemporaryDirectory()
        self.addCleanup(tmp.cleanup)
        self.authority = write_authority(Path(tmp.name))

    def test_inject_backs_up_once(self) -> None:
        speaker = FakeSpeaker.stock()
        editor = TrustStoreEditor(speaker, self.authority)

        editor.inject(OperationLog("speaker"))
        editor.inject(OperationLog("speaker"))

        self.assertEqual(STOCK_BUNDLE, speaker.files[CA_BUNDLE_PATH + ".original"])
        self.assertEqual(1, speaker.files[CA_BUNDLE_PATH].count(CA_PEM))
        self.assertTrue(editor.is_trusted())

    def test_body_match_counts_as_trusted(self) -> None:
        speaker = FakeSpeaker.stock(files={CA_BUNDLE_PATH: STOCK_BUNDLE + CA_PEM})

        self.assertTrue(TrustStoreEditor(speaker, self.authority).is_trusted())

    def test_without_authority(self) -> None:
        editor = TrustStoreEditor(FakeSpeaker.stock(), None)

        self.assertFalse(editor.is_trusted())
        with self.assertRaises(RemoteOperationError):
            editor.inject(OperationLog("speaker"))

    def test_unreadable_bundle_is_hard_failure(self) -> None:
        speaker = FakeSpeaker.stock()
        del speaker.files[CA_BUNDLE_PATH]

        with self.assertRaises(RemoteOperationError):
            TrustStoreEditor(speaker, self.authority).inject(OperationLog("speaker"))
        self.assertEqual([], speaker.uploads)

    def test_remove_only_uploads_when_labelled(self) -> None:
        speaker = FakeSpeaker.stock()
        editor = TrustStoreEditor(speaker, self.authority)

        editor.remove(OperationLog("speaker"))
        self.assertEqual([], speaker.uploads)

        editor.inject(OperationLog("speaker"))
        editor.remove(OperationLog("speaker"))
        self.assertEqual(STOCK_BUNDLE, speaker.files[CA_BUNDLE_PATH])


if __name__ == "__main__":
    unittest.main()
