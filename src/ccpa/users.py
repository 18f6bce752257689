"""Per-user data directories and session persistence."""

from __future__ import annotations

import json
import shutil
from pathlib import Path

from loguru import logger

SESSION_FILE = "session.json"
UPLOADS_DIR = "uploads"
DOWNLOADS_DIR = "downloads"


class UserStore:
    """File-backed store rooted at ``data_dir/<user_id>``."""

    def __init__(self, data_dir: Path) -> None:
        self.data_dir = data_dir

    def user_dir(self, user_id: int) -> Path:
        return (self.data_dir / str(user_id)).resolve()

    def uploads_path(self, user_id: int) -> Path:
        return self.user_dir(user_id) / UPLOADS_DIR

    def downloads_path(self, user_id: int) -> Path:
        return self.user_dir(user_id) / DOWNLOADS_DIR

    def ensure(self, user_id: int) -> Path:
        user_dir = self.user_dir(user_id)
        self.uploads_path(user_id).mkdir(parents=True, exist_ok=True)
        self.downloads_path(user_id).mkdir(parents=True, exist_ok=True)
        return user_dir

    def get_session_id(self, user_id: int) -> str | None:
        path = self.user_dir(user_id) / SESSION_FILE
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return None
        except (OSError, ValueError) as exc:
            logger.warning("user.session.unreadable user_id={} error={}", user_id, exc)
            return None
        if not isinstance(data, dict):
            return None
        session_id = data.get("currentSessionId")
        return session_id if isinstance(session_id, str) and session_id else None

    def save_session_id(self, user_id: int, session_id: str) -> None:
        path = self.user_dir(user_id) / SESSION_FILE
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps({"currentSessionId": session_id}, indent=2), encoding="utf-8")

    def clear(self, user_id: int) -> None:
        """Forget the session and every staged file of one user."""
        user_dir = self.user_dir(user_id)
        if user_dir.exists():
            shutil.rmtree(user_dir)

    def pending_downloads(self, user_id: int) -> list[Path]:
        downloads = self.downloads_path(user_id)
        if not downloads.is_dir():
            return []
        return sorted(path for path in downloads.iterdir() if path.is_file())
