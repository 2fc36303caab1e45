import sys
import unittest
from pathlib import Path

ROOT_DIR = Path(__file__).resolve().parents[1]
SRC_DIR = ROOT_DIR / "src"
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from speakermigrate.speaker import commands


class RenderTests(unittest.TestCase):
    def test_plain_arguments_are_left_alone(self) -> None:
        self.assertEqual("cp /etc/hosts /etc/hosts.original", commands.copy("/etc/hosts", "/etc/hosts.original").render())

    def test_arguments_with_spaces_are_quoted(self) -> None:
        self.assertEqual(
            "grep -F '# AfterTouch' /etc/pki/tls/certs/ca-bundle.crt",
            commands.grep_fixed("# AfterTouch", "/etc/pki/tls/certs/ca-bundle.crt").render(),
        )

    def test_shell_metacharacters_cannot_escape(self) -> None:
        rendered = commands.cat("/tmp/x; reboot").render()
        self.assertEqual("cat '/tmp/x; reboot'", rendered)

    def test_nested_chains_are_grouped(self) -> None:
        command = commands.privileged(commands.touch("/etc/remote_services"))
        self.assertEqual("(rw || mount -o remount,rw /) && touch /etc/remote_services", commands.render(command))

    def test_pipe(self) -> None:
        command = commands.pipe(commands.cmd("echo", "-ne", r"\x00"), commands.cmd("od", "-An", "-tu1"))
        self.assertEqual(r"echo -ne '\x00' | od -An -tu1", command.render())

    def test_curl_with_ca(self) -> None:
        command = commands.curl("https://example.test:8443/health", cacert="/tmp/ca.crt")
        self.assertEqual("curl", command.program)
        self.assertEqual(("--cacert", "/tmp/ca.crt"), command.args[-3:-1])
        self.assertEqual("https://example.test:8443/health", command.args[-1])

    def test_remove_verbose(self) -> None:
        self.assertEqual(("rm", "-v", "/tmp/remote_services"), commands.remove("/tmp/remote_services", verbose=True).argv)


if __name__ == "__main__":
    unittest.main()
