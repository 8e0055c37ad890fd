import logging
import os
import tempfile
import threading
from pathlib import Path
from typing import Union

from utilities import CorruptDocument, StorageUnavailable, strict_dumps, strict_loads

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


class DocumentStore:
    '''
    Persists the single settings document as indented JSON.

    Writes go to a temporary file in the same directory which then replaces
    the target, so a concurrent reader sees either the old or the new
    document, never a partial one. Methods block; async callers run them in
    a worker thread.
    '''

    def __init__(self, settings_path: PathLike, default_path: PathLike):
        self.settings_path = Path(settings_path)
        self.default_path = Path(default_path)
        # serializes file access between worker threads
        self._io_lock = threading.Lock()

    def load(self) -> dict:
        ''' Read the persisted document, seeding it from the bundled default on first run.'''
        with self._io_lock:
            if not self.settings_path.exists():
                try:
                    seed = self.default_path.read_text(encoding="utf-8")
                except OSError as e:
                    raise StorageUnavailable(f"cannot read default settings {self.default_path}: {e}") from e
                self._replace_file(seed)
                logger.info("Seeded %s from %s", self.settings_path, self.default_path)
            return self._read_locked()

    def read(self) -> dict:
        with self._io_lock:
            return self._read_locked()

    def write(self, doc: dict) -> None:
        payload = strict_dumps(doc, indent=2, ensure_ascii=False)
        with self._io_lock:
            self._replace_file(payload)

    # -------------- internals --------------
    def _read_locked(self) -> dict:
        try:
            raw = self.settings_path.read_text(encoding="utf-8")
        except OSError as e:
            raise StorageUnavailable(f"cannot read settings {self.settings_path}: {e}") from e
        try:
            return strict_loads(raw)
        except ValueError as e:
            raise CorruptDocument(f"settings {self.settings_path} do not parse: {e}") from e

    def _replace_file(self, text: str) -> None:
        tmp_name = None
        try:
            self.settings_path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                dir=self.settings_path.parent, prefix=f".{self.settings_path.name}.", suffix=".tmp"
            )
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                fh.write(text)
                fh.flush()
                os.fsync(fh.fileno())
            os.replace(tmp_name, self.settings_path)
            tmp_name = None
        except OSError as e:
            raise StorageUnavailable(f"cannot write settings {self.settings_path}: {e}") from e
        finally:
            if tmp_name is not None:
                try:
                    os.unlink(tmp_name)
                except OSError:
                    pass
