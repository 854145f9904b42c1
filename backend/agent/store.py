"""
Thread Store: persisted conversation history keyed by thread id (SQLite).
History is capped and deduplicated on every append.
"""
import asyncio
import sqlite3
import threading
from typing import Iterable, List

from agent.context_builder import HISTORY_CAP, append_messages
from agent.schemas import Message

_SCHEMA = """
CREATE TABLE IF NOT EXISTS thread_messages (
    thread_id TEXT NOT NULL,
    seq INTEGER NOT NULL,
    payload TEXT NOT NULL,
    PRIMARY KEY (thread_id, seq)
)
"""


class ThreadStore:
    def __init__(self, db_path: str = "threads.db", history_cap: int = HISTORY_CAP):
        self.history_cap = history_cap
        self._conn = sqlite3.connect(db_path, check_same_thread=False)
        self._lock = threading.Lock()
        with self._lock:
            self._conn.execute(_SCHEMA)
            self._conn.commit()

    def _load(self, thread_id: str) -> List[Message]:
        rows = self._conn.execute(
            "SELECT payload FROM thread_messages WHERE thread_id = ? ORDER BY seq",
            (thread_id,),
        ).fetchall()
        return [Message.model_validate_json(payload) for (payload,) in rows]

    def load_sync(self, thread_id: str) -> List[Message]:
        with self._lock:
            return self._load(thread_id)

    def append_sync(self, thread_id: str, messages: Iterable[Message]) -> List[Message]:
        with self._lock:
            merged = append_messages(self._load(thread_id), messages, self.history_cap)
            with self._conn:
                self._conn.execute("DELETE FROM thread_messages WHERE thread_id = ?", (thread_id,))
                self._conn.executemany(
                    "INSERT INTO thread_messages (thread_id, seq, payload) VALUES (?, ?, ?)",
                    [(thread_id, seq, msg.model_dump_json()) for seq, msg in enumerate(merged)],
                )
            return merged

    async def load(self, thread_id: str) -> List[Message]:
        return await asyncio.to_thread(self.load_sync, thread_id)

    async def append(self, thread_id: str, messages: Iterable[Message]) -> List[Message]:
        return await asyncio.to_thread(self.append_sync, thread_id, list(messages))

    def close(self):
        with self._lock:
            self._conn.close()
