"""Session management for conversation and command history."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any

from loguru import logger

from deepshell.utils.helpers import ensure_dir, new_session_id, safe_filename, truncate_lines

SESSIONS_DIRNAME = ".deepshell/sessions"
DESCRIPTION_MAX_CHARS = 100


@dataclass
class Session:
    """
    A conversation session.

    `messages` is the model-facing conversation; `history` is the ordered log
    of executed steps (`{command, success, output, timestamp}`).
    """

    session_id: str = field(default_factory=new_session_id)
    messages: list[dict[str, Any]] = field(default_factory=list)
    history: list[dict[str, Any]] = field(default_factory=list)
    created_at: datetime = field(default_factory=datetime.now)
    updated_at: datetime = field(default_factory=datetime.now)
    initial_prompt: str = ""
    description: str = ""
    metadata: dict[str, Any] = field(default_factory=dict)

    def add_message(self, role: str, content: str, **kwargs: Any) -> None:
        """Add a message to the session."""
        msg = {
            "role": role,
            "content": content,
            "timestamp": datetime.now().isoformat(),
            **kwargs,
        }
        self.messages.append(msg)
        self.updated_at = datetime.now()

    def add_history_entry(self, command: str, success: bool, output: str, **kwargs: Any) -> None:
        """Record one executed step."""
        self.history.append(
            {
                "command": command,
                "success": bool(success),
                "output": output,
                "timestamp": datetime.now().isoformat(),
                **kwargs,
            }
        )
        self.updated_at = datetime.now()

    def get_history(self, max_messages: int = 500) -> list[dict[str, Any]]:
        """Get recent messages in LLM format."""
        return [
            {"role": m["role"], "content": m.get("content", "")}
            for m in self.messages[-max_messages:]
        ]

    def clear(self) -> None:
        """Clear all messages and start a fresh session id."""
        self.session_id = new_session_id()
        self.messages = []
        self.history = []
        self.initial_prompt = ""
        self.description = ""
        self.metadata = {}
        self.created_at = datetime.now()
        self.updated_at = datetime.now()


class SessionManager:
    """
    Persists one agent's current session and its archives.

    Layout under `<working_dir>/.deepshell/sessions/`:
    - `current[_<namespace>].jsonl`: metadata line, then message/history lines
    - `archives[/<namespace>]/<session_id>.jsonl`: same format, one per archive

    Namespaced managers (sub-agents) never share files with the root.
    """

    def __init__(self, working_dir: Path | str, namespace: str | None = None):
        self.working_dir = Path(working_dir)
        self.namespace = safe_filename(namespace) if namespace else None
        self.sessions_dir = ensure_dir(self.working_dir / SESSIONS_DIRNAME)
        suffix = f"_{self.namespace}" if self.namespace else ""
        self.session_path = self.sessions_dir / f"current{suffix}.jsonl"
        archives_root = self.sessions_dir / "archives"
        self.archives_dir = archives_root / self.namespace if self.namespace else archives_root
        self.current = Session()

    # Current session

    def load_current(self) -> bool:
        """Load the current session from disk. Returns False if starting fresh."""
        session = self._read(self.session_path)
        if session is None:
            self.current = Session()
            return False
        self.current = session
        logger.info(
            f"Loaded session {session.session_id} ({len(session.messages)} messages, {len(session.history)} steps)"
        )
        return True

    def save(self) -> None:
        """Save the current session to disk."""
        try:
            self._write(self.session_path, self.current)
        except OSError as e:
            logger.warning(f"Failed to save session {self.current.session_id}: {e}")

    def add_message(self, role: str, content: str) -> None:
        self.current.add_message(role, content)

    def add_history_entry(self, command: str, success: bool, output: str) -> None:
        self.current.add_history_entry(command, success, output)

    @property
    def messages(self) -> list[dict[str, Any]]:
        return self.current.messages

    def set_messages(self, messages: list[dict[str, Any]]) -> None:
        self.current.messages = list(messages)
        self.current.updated_at = datetime.now()

    def set_initial_prompt(self, prompt: str) -> None:
        self.current.initial_prompt = prompt
        self.save()

    def clear_current(self) -> None:
        self.current.clear()
        self.save()
        logger.info("Current session cleared")

    def cleanup_artifacts(self) -> None:
        """Remove the namespaced current-session file (sub-agent teardown)."""
        if not self.namespace:
            return
        try:
            self.session_path.unlink(missing_ok=True)
        except OSError as e:
            logger.warning(f"Failed to remove session file {self.session_path}: {e}")

    # Archives

    def archive_current(self) -> str | None:
        """Write the current session to the archive directory. Returns its id."""
        session = self.current
        if not session.messages:
            logger.info("No conversation to archive")
            return None

        description = session.initial_prompt or session.description or "No description"
        if len(description) > DESCRIPTION_MAX_CHARS:
            description = description[: DESCRIPTION_MAX_CHARS - 3] + "..."
        session.description = description

        path = ensure_dir(self.archives_dir) / f"{safe_filename(session.session_id)}.jsonl"
        try:
            self._write(path, session, archived_at=datetime.now().isoformat())
        except OSError as e:
            logger.error(f"Failed to archive session {session.session_id}: {e}")
            return None

        logger.info(f"Session archived: {session.session_id} ({description})")
        return session.session_id

    def archive_and_clear(self) -> str | None:
        archived = self.archive_current() if self.current.messages else None
        self.clear_current()
        return archived

    def list_archives(self) -> list[dict[str, Any]]:
        """List archived sessions, newest first."""
        if not self.archives_dir.exists():
            return []

        archives = []
        for path in self.archives_dir.glob("*.jsonl"):
            try:
                with open(path, encoding="utf-8") as f:
                    first_line = f.readline().strip()
                data = json.loads(first_line) if first_line else {}
            except (OSError, json.JSONDecodeError) as e:
                logger.warning(f"Corrupted archive {path.name}: {e}")
                continue
            if data.get("_type") != "metadata":
                continue
            archives.append(
                {
                    "session_id": data.get("session_id") or path.stem,
                    "description": data.get("description", ""),
                    "timestamp": data.get("archived_at") or data.get("updated_at"),
                    "message_count": int(data.get("message_count", 0) or 0),
                    "command_count": int(data.get("command_count", 0) or 0),
                    "path": str(path),
                }
            )

        return sorted(archives, key=lambda x: str(x.get("timestamp") or ""), reverse=True)

    def load_archive(self, session_id: str) -> Session | None:
        path = self.archives_dir / f"{safe_filename(session_id)}.jsonl"
        if not path.exists():
            logger.warning(f"Archive not found: {session_id}")
            return None
        return self._read(path)

    def switch_to_archive(self, session_id: str) -> bool:
        """Archive the current session (if any) and make `session_id` current."""
        archived = self.load_archive(session_id)
        if archived is None:
            return False
        if self.current.messages and self.current.session_id != archived.session_id:
            self.archive_current()
        self.current = archived
        self.save()
        logger.info(f"Switched to archived session {session_id}")
        return True

    def clear_all(self) -> int:
        """Clear the current session and delete every archive. Returns the delete count."""
        self.clear_current()
        if not self.archives_dir.exists():
            return 0

        deleted = 0
        for path in self.archives_dir.glob("*.jsonl"):
            try:
                path.unlink()
                deleted += 1
            except OSError as e:
                logger.warning(f"Failed to delete archive {path.name}: {e}")
        logger.info(f"Deleted {deleted} archived sessions")
        return deleted

    def status(self) -> dict[str, Any]:
        session = self.current
        last_user = next(
            (m.get("content", "") for m in reversed(session.messages) if m.get("role") == "user"),
            None,
        )
        return {
            "session_id": session.session_id,
            "initial_prompt": session.initial_prompt,
            "message_count": len(session.messages),
            "command_count": len(session.history),
            "last_action": truncate_lines(last_user, 1) if last_user else None,
        }

    # Storage

    def _write(self, path: Path, session: Session, **extra: Any) -> None:
        with open(path, "w", encoding="utf-8") as f:
            metadata_line = {
                "_type": "metadata",
                "session_id": session.session_id,
                "created_at": session.created_at.isoformat(),
                "updated_at": session.updated_at.isoformat(),
                "initial_prompt": session.initial_prompt,
                "description": session.description,
                "message_count": len(session.messages),
                "command_count": len(session.history),
                "metadata": session.metadata,
                **extra,
            }
            f.write(json.dumps(metadata_line, ensure_ascii=False) + "\n")
            for msg in session.messages:
                f.write(json.dumps({"_type": "message", **msg}, ensure_ascii=False) + "\n")
            for entry in session.history:
                f.write(json.dumps({"_type": "history", **entry}, ensure_ascii=False) + "\n")

    def _read(self, path: Path) -> Session | None:
        if not path.exists():
            return None

        try:
            messages = []
            history = []
            meta: dict[str, Any] = {}

            with open(path, encoding="utf-8") as f:
                for line in f:
                    line = line.strip()
                    if not line:
                        continue

                    data = json.loads(line)
                    kind = data.pop("_type", "message")
                    if kind == "metadata":
                        meta = data
                    elif kind == "history":
                        history.append(data)
                    else:
                        messages.append(data)

            return Session(
                session_id=meta.get("session_id") or new_session_id(),
                messages=messages,
                history=history,
                created_at=_parse_time(meta.get("created_at")),
                updated_at=_parse_time(meta.get("updated_at")),
                initial_prompt=meta.get("initial_prompt", ""),
                description=meta.get("description", ""),
                metadata=meta.get("metadata", {}) or {},
            )
        except (OSError, ValueError) as e:
            logger.warning(f"Failed to load session from {path}: {e}")
            return None


def _parse_time(value: str | None) -> datetime:
    if value:
        try:
            return datetime.fromisoformat(value)
        except ValueError:
            pass
    return datetime.now()
