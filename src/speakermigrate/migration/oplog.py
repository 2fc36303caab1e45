"""Human-readable operation transcript mirrored to the application log."""

from __future__ import annotations

import logging


class OperationLog:
    """Accumulate transcript lines for one manager operation.

    Each line is also emitted on ``logger`` with the device context so the
    transcript and the log file tell the same story.
    """

    def __init__(self, device: str, logger: logging.Logger | None = None) -> None:
        self.device = device
        self.logger = logger or logging.getLogger("speakermigrate.migration")
        self._lines: list[str] = []

    def add(self, message: str) -> None:
        self._lines.append(message)
        self.logger.info("%s", message, extra={"device": self.device})

    def warn(self, message: str) -> None:
        line = message if message.startswith("Warning:") else f"Warning: {message}"
        self._lines.append(line)
        self.logger.warning("%s", message, extra={"device": self.device})

    def command(self, label: str, output: str) -> None:
        """Record a command together with its (possibly empty) output."""

        self._lines.append(f"{label}: {output.rstrip()}" if output.strip() else f"{label}:")
        self.logger.debug("%s output=%r", label, output, extra={"device": self.device})

    def extend(self, text: str) -> None:
        if text:
            self._lines.append(text.rstrip("\n"))

    @property
    def text(self) -> str:
        return "\n".join(self._lines) + "\n" if self._lines else ""

    def __str__(self) -> str:
        return self.text
