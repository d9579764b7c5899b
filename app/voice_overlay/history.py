"""Mongita store for closed sessions.

Screenshots are kept as files next to the database; the record only holds
their path.
"""

import logging
import threading
from pathlib import Path
from typing import List, Optional

from mongita import MongitaClientDisk

from .config import CONFIG_DIR
from .models import Screenshot, SessionRecord

logger = logging.getLogger(__name__)

MONGO_DIR = CONFIG_DIR / "mongita"
SCREENSHOTS_DIR = CONFIG_DIR / "screenshots"

_EXTENSIONS = {"image/png": ".png", "image/jpeg": ".jpg", "image/webp": ".webp"}


class HistoryStore:
    """Session history backed by Mongita.

    Thread-safe: all operations are protected by a lock.
    """

    def __init__(self, db_dir: Optional[Path] = None, screenshots_dir: Optional[Path] = None):
        self.db_dir = Path(db_dir or MONGO_DIR)
        self.screenshots_dir = Path(screenshots_dir or SCREENSHOTS_DIR)
        self.db_dir.mkdir(parents=True, exist_ok=True)
        self.screenshots_dir.mkdir(parents=True, exist_ok=True)

        self._client: Optional[MongitaClientDisk] = None
        self._db = None
        self._lock = threading.RLock()

        with self._lock:
            self._get_db().sessions.create_index("timestamp")

    def _get_db(self):
        """Get database connection, creating if needed."""
        if self._client is None:
            self._client = MongitaClientDisk(str(self.db_dir))
            self._db = self._client.voice_overlay
        return self._db

    def _write_screenshot(self, record_id: str, screenshot: Screenshot) -> Optional[str]:
        path = self.screenshots_dir / f"{record_id}{_EXTENSIONS.get(screenshot.media_type, '.png')}"
        try:
            path.write_bytes(screenshot.image_bytes)
        except OSError as e:
            logger.warning(f"Could not save screenshot for {record_id}: {e}")
            return None
        return str(path)

    def save(self, record: SessionRecord, screenshot: Optional[Screenshot] = None) -> str:
        """Save a session record and return its id."""
        with self._lock:
            if screenshot is not None and record.screenshot_path is None:
                record.screenshot_path = self._write_screenshot(record.id, screenshot)
            self._get_db().sessions.insert_one(record.to_dict())
            logger.info(f"Session {record.id} saved ({record.rounds} rounds)")
            return record.id

    def get_all(self, limit: int = 50) -> List[SessionRecord]:
        """Most recent sessions first."""
        with self._lock:
            cursor = self._get_db().sessions.find({}).sort([("timestamp", -1)]).limit(limit)
            return [SessionRecord.from_doc(doc) for doc in cursor]

    def get(self, record_id: str) -> Optional[SessionRecord]:
        with self._lock:
            doc = self._get_db().sessions.find_one({"id": record_id})
            return SessionRecord.from_doc(doc) if doc else None

    def delete(self, record_id: str) -> bool:
        """Delete a session and its screenshot. Returns True if deleted."""
        with self._lock:
            sessions = self._get_db().sessions
            doc = sessions.find_one({"id": record_id})
            if doc is None:
                return False
            if doc.get("screenshot_path"):
                Path(doc["screenshot_path"]).unlink(missing_ok=True)
            return sessions.delete_one({"id": record_id}).deleted_count > 0

    def clear(self) -> int:
        """Delete every session. Returns the number removed."""
        with self._lock:
            for path in self.screenshots_dir.iterdir():
                if path.is_file():
                    path.unlink()
            return self._get_db().sessions.delete_many({}).deleted_count

    def count(self) -> int:
        with self._lock:
            return self._get_db().sessions.count_documents({})

    def close(self):
        # Mongita doesn't require explicit close
        self._client = None
        self._db = None
