import sqlite3
from datetime import UTC, datetime
from typing import Any

from src.components.newsletter.models import (
    StoreUnavailableError,
    SubscriberRecord,
    SubscriberStatus,
)


# Helper to convert sqlite rows to dicts
def dict_factory(cursor: sqlite3.Cursor, row: Any) -> dict[str, Any]:
    d = {}
    for idx, col in enumerate(cursor.description):
        d[col[0]] = row[idx]
    return d


def to_db_time(value: datetime | None) -> str | None:
    """Serialize as fixed-width UTC ISO-8601 so string order matches time order."""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(UTC).isoformat(timespec="microseconds")


def from_db_time(value: str | None) -> datetime | None:
    if value is None:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


class SQLiteSubscriberStore:
    """
    SQLite-backed subscriber store.

    The unique index on ``email`` backs ``put_if_absent_by_email``;
    ``put`` is a full-record upsert keyed on ``id``.
    """

    def __init__(self, db_path: str, timeout: float = 5.0):
        self.db_path = db_path
        self.timeout = timeout

    def _get_conn(self) -> sqlite3.Connection:
        try:
            conn = sqlite3.connect(self.db_path, timeout=self.timeout)
        except sqlite3.Error as e:
            raise StoreUnavailableError(str(e)) from e
        conn.row_factory = dict_factory
        return conn

    def _row_to_record(self, row: dict[str, Any]) -> SubscriberRecord:
        created_at = from_db_time(row["created_at"])
        updated_at = from_db_time(row["updated_at"])
        if created_at is None or updated_at is None:
            raise StoreUnavailableError(f"subscriber row {row['id']} is missing timestamps")
        return SubscriberRecord(
            id=row["id"],
            email=row["email"],
            status=SubscriberStatus(row["status"]),
            created_at=created_at,
            updated_at=updated_at,
            validation_token=row["validation_token"],
            token_expires_at=from_db_time(row["token_expires_at"]),
        )

    def _params(self, record: SubscriberRecord) -> tuple[Any, ...]:
        return (
            record.id,
            record.email,
            record.status.value,
            record.validation_token,
            to_db_time(record.token_expires_at),
            to_db_time(record.created_at),
            to_db_time(record.updated_at),
        )

    def _fetch_one(self, sql: str, params: tuple[Any, ...]) -> SubscriberRecord | None:
        conn = self._get_conn()
        try:
            row = conn.execute(sql, params).fetchone()
            return self._row_to_record(row) if row else None
        except sqlite3.OperationalError as e:
            raise StoreUnavailableError(str(e)) from e
        finally:
            conn.close()

    def get_by_email(self, email: str) -> SubscriberRecord | None:
        return self._fetch_one(
            "SELECT * FROM newsletter_subscribers WHERE email = ?", (email,)
        )

    def get_by_id(self, record_id: str) -> SubscriberRecord | None:
        return self._fetch_one(
            "SELECT * FROM newsletter_subscribers WHERE id = ?", (record_id,)
        )

    def put(self, record: SubscriberRecord) -> None:
        conn = self._get_conn()
        try:
            conn.execute(
                """
                INSERT INTO newsletter_subscribers (
                    id, email, status, validation_token,
                    token_expires_at, created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    status=excluded.status,
                    validation_token=excluded.validation_token,
                    token_expires_at=excluded.token_expires_at,
                    updated_at=excluded.updated_at
                """,
                self._params(record),
            )
            conn.commit()
        except sqlite3.OperationalError as e:
            conn.rollback()
            raise StoreUnavailableError(str(e)) from e
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def put_if_absent_by_email(self, record: SubscriberRecord) -> SubscriberRecord:
        conn = self._get_conn()
        try:
            cursor = conn.execute(
                """
                INSERT INTO newsletter_subscribers (
                    id, email, status, validation_token,
                    token_expires_at, created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(email) DO NOTHING
                """,
                self._params(record),
            )
            conn.commit()
            if cursor.rowcount == 1:
                return record

            row = conn.execute(
                "SELECT * FROM newsletter_subscribers WHERE email = ?", (record.email,)
            ).fetchone()
            return self._row_to_record(row)
        except sqlite3.OperationalError as e:
            conn.rollback()
            raise StoreUnavailableError(str(e)) from e
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def count_by_status(self, status: SubscriberStatus) -> int:
        conn = self._get_conn()
        try:
            row = conn.execute(
                "SELECT COUNT(*) AS n FROM newsletter_subscribers WHERE status = ?",
                (status.value,),
            ).fetchone()
            return int(row["n"])
        except sqlite3.OperationalError as e:
            raise StoreUnavailableError(str(e)) from e
        finally:
            conn.close()
