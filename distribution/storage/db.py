import sqlite3
import threading
from typing import Optional, Dict, List, Tuple

# (claim_key, receiver, pool, record_json)
ClaimRow = Tuple[str, str, int, str]

class StorageDB:
    def __init__(self, db_path: str):
        self.conn = sqlite3.connect(db_path, check_same_thread=False)
        self.cursor = self.conn.cursor()
        self._lock = threading.Lock()
        self._init_db()

    def _init_db(self):
        with self._lock:
            # State table: Key-Value store for ledger, token and gate state
            self.cursor.execute('''
                CREATE TABLE IF NOT EXISTS state (
                    key TEXT PRIMARY KEY,
                    value TEXT
                )
            ''')
            # Claims table: one row per honored voucher (removed only when its payout fails)
            self.cursor.execute('''
                CREATE TABLE IF NOT EXISTS claims (
                    claim_key TEXT PRIMARY KEY,
                    receiver TEXT NOT NULL,
                    pool INTEGER NOT NULL,
                    data TEXT NOT NULL
                )
            ''')
            # Index by receiver for claim history lookups
            self.cursor.execute('''
                CREATE INDEX IF NOT EXISTS idx_claims_receiver ON claims (receiver)
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

    # --- Claim Methods ---
    def get_claim(self, claim_key: str) -> Optional[str]:
        with self._lock:
            self.cursor.execute('SELECT data FROM claims WHERE claim_key = ?', (claim_key,))
            row = self.cursor.fetchone()
            return row[0] if row else None

    def has_claim(self, claim_key: str) -> bool:
        with self._lock:
            self.cursor.execute('SELECT 1 FROM claims WHERE claim_key = ?', (claim_key,))
            return self.cursor.fetchone() is not None

    def get_claims_by_receiver(self, receiver: str) -> List[str]:
        with self._lock:
            self.cursor.execute('SELECT data FROM claims WHERE receiver = ? ORDER BY rowid', (receiver,))
            return [row[0] for row in self.cursor.fetchall()]

    def count_claims(self) -> int:
        with self._lock:
            self.cursor.execute('SELECT COUNT(*) FROM claims')
            return self.cursor.fetchone()[0]

    # --- Batch ---
    def apply_batch(self, state: Dict[str, str], claims: Optional[List[ClaimRow]] = None,
                    removed_claims: Optional[List[str]] = None):
        """
        Writes state entries, new claim rows and claim removals in a single transaction.

        A duplicate claim_key aborts the whole batch (sqlite3.IntegrityError)
        and nothing is written.
        """
        with self._lock:
            try:
                for key, value in state.items():
                    self.cursor.execute('INSERT OR REPLACE INTO state (key, value) VALUES (?, ?)', (key, value))
                for claim_key, receiver, pool, data in claims or []:
                    self.cursor.execute(
                        'INSERT INTO claims (claim_key, receiver, pool, data) VALUES (?, ?, ?, ?)',
                        (claim_key, receiver, pool, data)
                    )
                for claim_key in removed_claims or []:
                    self.cursor.execute('DELETE FROM claims WHERE claim_key = ?', (claim_key,))
                self.conn.commit()
            except sqlite3.Error:
                self.conn.rollback()
                raise

    def close(self):
        with self._lock:
            self.conn.close()
