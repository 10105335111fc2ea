"""Local state file access."""

import logging
import os
import stat
import tempfile
from pathlib import Path

logger = logging.getLogger(__name__)


def _default_mode() -> int:
    umask = os.umask(0)
    os.umask(umask)
    return 0o666 & ~umask


class LocalStateStore:
    """Reads and writes the single local state file.

    No caching: every call goes to disk, so reads always see whatever the
    worker process last wrote.
    """

    def __init__(self, path: str | Path):
        self.path = Path(path)

    def exists(self) -> bool:
        return self.path.is_file()

    def read(self) -> bytes:
        """Return the file contents.

        Raises:
            FileNotFoundError: If the state file does not exist.
        """
        return self.path.read_bytes()

    def write(self, data: bytes) -> None:
        """Replace the file contents.

        Written to a sibling temp file first and moved into place, so a
        concurrent reader sees either the old or the new content. The
        replaced file keeps its permission bits; a new file gets the
        umask default.

        Raises:
            OSError: If the file cannot be written.
        """
        self.path.parent.mkdir(parents=True, exist_ok=True)
        try:
            mode = stat.S_IMODE(self.path.stat().st_mode)
        except FileNotFoundError:
            mode = _default_mode()

        fd, tmp_name = tempfile.mkstemp(
            prefix=f".{self.path.name}.", suffix=".tmp", dir=self.path.parent
        )
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(data)
            # mkstemp creates the file 0600
            os.chmod(tmp_name, mode)
            os.replace(tmp_name, self.path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
        logger.debug(f"Wrote {len(data)} bytes to {self.path}")
