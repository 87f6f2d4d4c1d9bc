"""
Boot-time activation through the host's boot script.
"""
import logging
import os
from pathlib import Path

COMMENT_LINE = "# Start WezTerm Server"


class BootScript:
    """Idempotent ensure-present / ensure-absent for one start line in a boot script."""

    def __init__(self, path: str, command: str):
        self.path = Path(path)
        self.command = command
        self.logger = logging.getLogger(__name__)

    def _lines(self):
        try:
            return self.path.read_text().splitlines()
        except FileNotFoundError:
            return []

    def is_enabled(self) -> bool:
        return any(line.strip() == self.command for line in self._lines())

    def ensure_present(self) -> bool:
        """Add the start line unless it is already there; returns True if the file changed."""
        if self.is_enabled():
            self.logger.info("Service is already enabled at boot")
            return False

        if not self.path.exists():
            self.logger.info(f"Creating boot script at {self.path}")
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.write_text("#!/bin/bash\n")
            os.chmod(self.path, 0o755)

        content = self.path.read_text()
        if content and not content.endswith("\n"):
            content += "\n"
        content += f"\n{COMMENT_LINE}\n{self.command}\n"
        self._write(content)
        self.logger.info("Service enabled at boot")
        return True

    def ensure_absent(self) -> bool:
        """Remove every start line and its comment; returns True if the file changed."""
        lines = self._lines()
        if not any(line.strip() == self.command for line in lines):
            self.logger.info("Service is not enabled at boot")
            return False

        kept = [line for line in lines if line.strip() not in (self.command, COMMENT_LINE)]
        # Drop the blank separator left behind at the end of the file
        while kept and not kept[-1].strip():
            kept.pop()
        self._write("\n".join(kept) + "\n")
        self.logger.info("Service disabled at boot")
        return True

    def _write(self, content: str) -> None:
        tmp_path = self.path.with_name(f".{self.path.name}.tmp")
        tmp_path.write_text(content)
        mode = self.path.stat().st_mode & 0o777 if self.path.exists() else 0o755
        os.chmod(tmp_path, mode)
        os.replace(tmp_path, self.path)
