"""
SQLite Validation Queue Adapter.

Durable at-least-once queue for validation jobs, shared by the API
process (producer) and the worker process (consumer).

Key behaviors:
- Claim by pushing the message's visibility deadline forward; the
  conditional UPDATE makes a claim atomic across workers
- Un-acked messages reappear after the visibility timeout
- Nack returns a message immediately, or dead-letters it after
  max_attempts
- A message delivered max_attempts times without an ack is
  dead-lettered instead of being delivered again
"""

from __future__ import annotations

import json
import logging
import sqlite3
from datetime import UTC, datetime, timedelta
from uuid import uuid4

from src.adapters.sqlite.repos import dict_factory, to_db_time
from src.components.newsletter.models import QueueUnavailableError, ValidationJob
from src.components.newsletter.ports import QueueMessage

logger = logging.getLogger(__name__)


class SQLiteValidationQueue:
    def __init__(
        self,
        db_path: str,
        visibility_timeout_seconds: int = 30,
        max_attempts: int = 5,
        timeout: float = 5.0,
    ):
        self.db_path = db_path
        self.visibility_timeout = timedelta(seconds=visibility_timeout_seconds)
        self.max_attempts = max_attempts
        self.timeout = timeout

    def _get_conn(self) -> sqlite3.Connection:
        try:
            conn = sqlite3.connect(self.db_path, timeout=self.timeout)
        except sqlite3.Error as e:
            raise QueueUnavailableError(str(e)) from e
        conn.row_factory = dict_factory
        return conn

    def enqueue(self, job: ValidationJob) -> None:
        conn = self._get_conn()
        try:
            conn.execute(
                """
                INSERT INTO validation_jobs (id, body, status, attempts, enqueued_at)
                VALUES (?, ?, 'ready', 0, ?)
                """,
                (uuid4().hex, json.dumps(job.to_message()), to_db_time(datetime.now(UTC))),
            )
            conn.commit()
        except sqlite3.OperationalError as e:
            conn.rollback()
            raise QueueUnavailableError(str(e)) from e
        finally:
            conn.close()

    def receive(self, max_messages: int, now: datetime) -> list[QueueMessage]:
        now_s = to_db_time(now)
        deadline_s = to_db_time(now + self.visibility_timeout)
        conn = self._get_conn()
        try:
            candidates = conn.execute(
                """
                SELECT id, attempts FROM validation_jobs
                WHERE status = 'ready'
                  AND (invisible_until IS NULL OR invisible_until <= ?)
                ORDER BY enqueued_at ASC
                LIMIT ?
                """,
                (now_s, max_messages),
            ).fetchall()

            messages: list[QueueMessage] = []
            for candidate in candidates:
                if candidate["attempts"] >= self.max_attempts:
                    # Delivered max_attempts times without an ack
                    cursor = conn.execute(
                        """
                        UPDATE validation_jobs
                        SET status = 'dead', last_error = COALESCE(last_error, 'receive limit reached')
                        WHERE id = ? AND status = 'ready'
                        """,
                        (candidate["id"],),
                    )
                    if cursor.rowcount == 1:
                        logger.warning(
                            "Validation job %s dead-lettered after %d deliveries without ack",
                            candidate["id"],
                            candidate["attempts"],
                        )
                    continue
                cursor = conn.execute(
                    """
                    UPDATE validation_jobs
                    SET invisible_until = ?, attempts = attempts + 1
                    WHERE id = ? AND status = 'ready'
                      AND (invisible_until IS NULL OR invisible_until <= ?)
                    """,
                    (deadline_s, candidate["id"], now_s),
                )
                if cursor.rowcount != 1:
                    continue  # Claimed by another worker
                row = conn.execute(
                    "SELECT id, body, attempts FROM validation_jobs WHERE id = ?",
                    (candidate["id"],),
                ).fetchone()
                messages.append(
                    QueueMessage(message_id=row["id"], body=row["body"], attempts=row["attempts"])
                )
            conn.commit()
            return messages
        except sqlite3.OperationalError as e:
            conn.rollback()
            raise QueueUnavailableError(str(e)) from e
        finally:
            conn.close()

    def ack(self, message_id: str) -> None:
        conn = self._get_conn()
        try:
            conn.execute("DELETE FROM validation_jobs WHERE id = ?", (message_id,))
            conn.commit()
        except sqlite3.OperationalError as e:
            conn.rollback()
            raise QueueUnavailableError(str(e)) from e
        finally:
            conn.close()

    def nack(self, message_id: str, error: str) -> None:
        conn = self._get_conn()
        try:
            row = conn.execute(
                "SELECT attempts FROM validation_jobs WHERE id = ?", (message_id,)
            ).fetchone()
            if row is None:
                return
            if row["attempts"] >= self.max_attempts:
                conn.execute(
                    "UPDATE validation_jobs SET status = 'dead', last_error = ? WHERE id = ?",
                    (error, message_id),
                )
                logger.warning(
                    "Validation job %s dead-lettered after %d attempts: %s",
                    message_id,
                    row["attempts"],
                    error,
                )
            else:
                conn.execute(
                    """
                    UPDATE validation_jobs
                    SET invisible_until = NULL, last_error = ?
                    WHERE id = ?
                    """,
                    (error, message_id),
                )
            conn.commit()
        except sqlite3.OperationalError as e:
            conn.rollback()
            raise QueueUnavailableError(str(e)) from e
        finally:
            conn.close()

    def count(self, status: str = "ready") -> int:
        conn = self._get_conn()
        try:
            row = conn.execute(
                "SELECT COUNT(*) AS n FROM validation_jobs WHERE status = ?", (status,)
            ).fetchone()
            return int(row["n"])
        finally:
            conn.close()
