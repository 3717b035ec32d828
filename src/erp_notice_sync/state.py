from __future__ import annotations

import logging
import shutil
import sqlite3
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from .models import RunRecord


logger = logging.getLogger(__name__)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class StateStore:
    """
    Run log for sync runs: when each run started/finished, whether it succeeded, and where it stopped.

    This is the status side-channel for fire-and-forget runs. Notices and watermarks are not stored here.
    """

    def __init__(self, db_path: str) -> None:
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._backup_path = self.db_path.with_name(self.db_path.name + ".bak")
        # Background runs record from their own threads.
        self._lock = threading.Lock()

        # Self-heal on corrupted DB: restore from backup when possible.
        self._conn = self._open_or_restore()
        self._conn.execute("PRAGMA journal_mode=WAL;")
        self._ensure_schema()

        self._maybe_backup(if_missing=True)

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    def _connect(self) -> sqlite3.Connection:
        return sqlite3.connect(self.db_path, check_same_thread=False)

    def _open_or_restore(self) -> sqlite3.Connection:
        """
        Open the run log. If it looks corrupted, move it aside and restore from the last-known-good backup.
        """
        if self.db_path.exists():
            try:
                conn = self._connect()
                if self._connection_is_healthy(conn):
                    return conn
                conn.close()
                raise sqlite3.DatabaseError("SQLite quick_check failed")
            except sqlite3.Error as e:
                logger.warning("State DB appears corrupted/unreadable; attempting restore from backup. (%s)", e)
                self._quarantine_db_files()

                if self._backup_path.exists():
                    try:
                        shutil.copy2(self._backup_path, self.db_path)
                        conn = self._connect()
                        if self._connection_is_healthy(conn):
                            logger.warning("Restored state DB from backup: %s", self._backup_path)
                            return conn
                        conn.close()
                    except (OSError, sqlite3.Error):
                        logger.warning("Failed to restore state DB from backup; creating a fresh DB.", exc_info=True)
                else:
                    logger.warning("No state DB backup found; creating a fresh DB.")

        return self._connect()

    def _connection_is_healthy(self, conn: sqlite3.Connection) -> bool:
        try:
            _ = conn.execute("PRAGMA schema_version;").fetchone()
            row = conn.execute("PRAGMA quick_check;").fetchone()
            return bool(row and row[0] == "ok")
        except sqlite3.Error:
            return False

    def _quarantine_db_files(self) -> None:
        stamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%SZ")
        for p in (self.db_path, Path(str(self.db_path) + "-wal"), Path(str(self.db_path) + "-shm")):
            try:
                if p.exists():
                    p.replace(p.with_name(p.name + f".corrupt-{stamp}"))
            except OSError:
                logger.debug("Failed to quarantine path=%s", p, exc_info=True)

    def _maybe_backup(self, *, if_missing: bool) -> None:
        if if_missing and self._backup_path.exists():
            return
        try:
            self.backup()
        except (OSError, sqlite3.Error):
            logger.debug("Failed to write state DB backup.", exc_info=True)

    def backup(self) -> None:
        """
        Write/refresh a last-known-good backup of the run log at `<db_path>.bak`.
        """
        out = self._backup_path
        tmp = out.with_name(out.name + ".tmp")
        if tmp.exists():
            tmp.unlink()

        dst = sqlite3.connect(tmp)
        try:
            with self._lock:
                self._conn.backup(dst)
            dst.commit()
        finally:
            dst.close()

        tmp.replace(out)

    def _ensure_schema(self) -> None:
        with self._lock:
            self._conn.execute(
                """
                CREATE TABLE IF NOT EXISTS runs (
                  id INTEGER PRIMARY KEY AUTOINCREMENT,
                  started_at TEXT NOT NULL,
                  finished_at TEXT,
                  ok INTEGER,
                  step TEXT,
                  message TEXT,
                  delivered INTEGER
                );
                """
            )
            self._conn.commit()

    def record_run_start(self) -> int:
        with self._lock:
            cur = self._conn.execute("INSERT INTO runs(started_at) VALUES (?);", (_now(),))
            self._conn.commit()
        return int(cur.lastrowid)

    def record_run_finish(
        self,
        run_id: int,
        *,
        ok: bool,
        step: Optional[str] = None,
        message: Optional[str] = None,
        delivered: Optional[int] = None,
    ) -> None:
        with self._lock:
            self._conn.execute(
                "UPDATE runs SET finished_at = ?, ok = ?, step = ?, message = ?, delivered = ? WHERE id = ?;",
                (_now(), 1 if ok else 0, step, message, delivered, run_id),
            )
            self._conn.commit()

        # Only snapshot after a successful run.
        if ok:
            self._maybe_backup(if_missing=False)

    def get_run(self, run_id: int) -> Optional[RunRecord]:
        with self._lock:
            row = self._conn.execute(
                "SELECT id, started_at, finished_at, ok, step, message, delivered FROM runs WHERE id = ?;",
                (run_id,),
            ).fetchone()
        return _to_record(row) if row else None

    def recent_runs(self, limit: int = 10) -> list[RunRecord]:
        with self._lock:
            rows = self._conn.execute(
                "SELECT id, started_at, finished_at, ok, step, message, delivered FROM runs ORDER BY id DESC LIMIT ?;",
                (int(limit),),
            ).fetchall()
        return [_to_record(r) for r in rows]


def _to_record(row: tuple) -> RunRecord:
    run_id, started_at, finished_at, ok, step, message, delivered = row
    return RunRecord(
        run_id=run_id,
        started_at=started_at,
        finished_at=finished_at,
        ok=None if ok is None else bool(ok),
        step=step,
        message=message,
        delivered=delivered,
    )
