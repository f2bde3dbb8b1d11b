import sqlite3
import threading
from typing import Optional, Dict, List, Tuple

class StorageDB:
    def __init__(self, db_path: str):
        self.conn = sqlite3.connect(db_path, check_same_thread=False)
        self.cursor = self.conn.cursor()
        self._lock = threading.Lock()
        self._init_db()

    def _init_db(self):
        with self._lock:
            # State table: Key-Value store for treasury, roles and token accounts
            self.cursor.execute('''
                CREATE TABLE IF NOT EXISTS state (
                    key TEXT PRIMARY KEY,
                    value TEXT
                )
            ''')
            # Journal of executed operations (append-only)
            self.cursor.execute('''
                CREATE TABLE IF NOT EXISTS journal (
                    seq INTEGER PRIMARY KEY,
                    op_type TEXT,
                    data TEXT
                )
            ''')
            self.conn.commit()

    # --- State Methods ---
    def get_state(self, key: str) -> Optional[str]:
        with self._lock:
            self.cursor.execute('SELECT value FROM state WHERE key = ?', (key,))
            row = self.cursor.fetchone()
            return row[0] if row else None

    def set_state(self, key: str, value: str):
        with self._lock:
            self.cursor.execute('INSERT OR REPLACE INTO state (key, value) VALUES (?, ?)', (key, value))
            self.conn.commit()

    def delete_state(self, key: str):
        with self._lock:
            self.cursor.execute('DELETE FROM state WHERE key = ?', (key,))
            self.conn.commit()

    def get_state_by_prefix(self, prefix: str) -> Dict[str, str]:
        with self._lock:
            self.cursor.execute('SELECT key, value FROM state WHERE key LIKE ?', (f"{prefix}%",))
            return {row[0]: row[1] for row in self.cursor.fetchall()}

    def write_batch(self,
                    states: Dict[str, str],
                    deletes: List[str] = (),
                    journal: List[Tuple[int, str, str]] = ()):
        """Applies state writes, deletes and journal rows in a single commit."""
        with self._lock:
            for key in deletes:
                self.cursor.execute('DELETE FROM state WHERE key = ?', (key,))
            for key, value in states.items():
                self.cursor.execute('INSERT OR REPLACE INTO state (key, value) VALUES (?, ?)', (key, value))
            for seq, op_type, data in journal:
                self.cursor.execute('INSERT OR REPLACE INTO journal (seq, op_type, data) VALUES (?, ?, ?)', (seq, op_type, data))
            self.conn.commit()

    # --- Journal Methods ---
    def get_journal(self, from_seq: int = 0) -> List[Tuple[int, str, str]]:
        """Returns (seq, op_type, data) rows with seq >= from_seq, oldest first."""
        with self._lock:
            self.cursor.execute('SELECT seq, op_type, data FROM journal WHERE seq >= ? ORDER BY seq', (from_seq,))
            return self.cursor.fetchall()

    def close(self):
        with self._lock:
            self.conn.close()
