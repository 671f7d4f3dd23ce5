"""Local file storage for the published digest."""

import os
import tempfile
from pathlib import Path

from feedcircle.errors import PersistenceError
from feedcircle.models import Digest
from feedcircle.utils.logging import get_logger

logger = get_logger(__name__)


class DigestStorage:
    """Writes and reads the JSON digest snapshot."""

    def write_digest(self, path: str | Path, digest: Digest) -> None:
        """Replace the snapshot at ``path`` with ``digest``.

        The document is written to a temporary file next to the target and
        renamed over it, so readers never see a partial file.

        Raises:
            PersistenceError: If the file cannot be written.
        """
        target = Path(path)
        payload = digest.to_json().encode("utf-8")
        tmp_name: str | None = None
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            with tempfile.NamedTemporaryFile(
                mode="wb",
                dir=target.parent,
                prefix=f".{target.name}.",
                suffix=".tmp",
                delete=False,
            ) as f:
                tmp_name = f.name
                f.write(payload)
            os.replace(tmp_name, target)
        except OSError as e:
            if tmp_name is not None and os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise PersistenceError(f"cannot write digest to {target}: {e}") from e

        logger.info(
            "Digest written",
            path=str(target),
            articles=digest.meta.article_count,
            size=len(payload),
        )

    def read_digest(self, path: str | Path) -> bytes:
        """Return the raw snapshot bytes.

        Raises:
            PersistenceError: If the file cannot be read.
        """
        try:
            return Path(path).read_bytes()
        except OSError as e:
            raise PersistenceError(f"cannot read digest from {path}: {e}") from e
