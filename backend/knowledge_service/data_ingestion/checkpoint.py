"""
Checkpoint - Durable progress marker for the batch loader.

On disk: ``{"lastIndex": <int>, "fingerprint": "<sha256>"}``. ``lastIndex``
counts valid documents already committed to both stores. The fingerprint
ties the checkpoint to the valid-only sequence it was computed over; a
different fingerprint means ids would shift, so the loader starts fresh.
"""

import hashlib
import json
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Optional
from loguru import logger

from ..core.errors import FatalError
from ..core.models import CanonicalDocument, MIN_TEXT_LENGTH


# Changes whenever the validity rule changes.
FILTER_SIGNATURE = f"trim(english_text or arabic_text) > {MIN_TEXT_LENGTH}"


@dataclass
class Checkpoint:
    last_index: int = 0
    fingerprint: Optional[str] = None


def corpus_fingerprint(valid_documents: Iterable[CanonicalDocument]) -> str:
    """Hash of the filter rule and the ordered valid-only sequence."""
    digest = hashlib.sha256(FILTER_SIGNATURE.encode("utf-8"))
    for doc in valid_documents:
        digest.update(b"\x1e")
        digest.update(json.dumps(doc.to_dict(), sort_keys=True, ensure_ascii=False).encode("utf-8"))
    return digest.hexdigest()


class CheckpointStore:
    """Read, write and remove the checkpoint file."""

    def __init__(self, path: Path | str):
        self.path = Path(path)

    def load(self) -> Optional[Checkpoint]:
        """
        Read the checkpoint, or None if there is none.

        Raises:
            FatalError: If the file exists but can't be read or parsed
        """
        if not self.path.exists():
            return None

        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
            last_index = int(data.get("lastIndex") or 0)
        except (OSError, ValueError, TypeError, AttributeError) as e:
            raise FatalError(
                f"Unreadable checkpoint {self.path}: {e}. Delete it to force a fresh load."
            ) from e

        if last_index < 0:
            raise FatalError(f"Checkpoint {self.path} has negative lastIndex {last_index}")

        return Checkpoint(last_index=last_index, fingerprint=data.get("fingerprint"))

    def save(self, checkpoint: Checkpoint):
        """Write the checkpoint atomically (temp file + replace)."""
        payload = {"lastIndex": checkpoint.last_index}
        if checkpoint.fingerprint:
            payload["fingerprint"] = checkpoint.fingerprint

        tmp_path = self.path.with_name(self.path.name + ".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(tmp_path, "w", encoding="utf-8") as f:
                json.dump(payload, f)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, self.path)
        except OSError as e:
            raise FatalError(f"Failed to write checkpoint {self.path}: {e}") from e

        logger.debug(f"Checkpoint saved: lastIndex={checkpoint.last_index}")

    def clear(self):
        """Remove the checkpoint after a completed load."""
        try:
            self.path.unlink(missing_ok=True)
        except OSError as e:
            raise FatalError(f"Failed to remove checkpoint {self.path}: {e}") from e
        logger.debug(f"Checkpoint cleared: {self.path}")
