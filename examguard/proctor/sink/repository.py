"""
Submission Repository - Persistence for assessment submission records

Stores per-submission counters plus append-only violation logs:
- assessment_submissions (fullscreen/tab-switch counters, termination flag)
- face_violations
- object_violations

Uses raw SQL so the same statements run against SQLite and PostgreSQL.
"""

import json
import uuid
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import create_engine, text

from ..errors import ProctoringError

logger = logging.getLogger(__name__)


SCHEMA = [
    """
    CREATE TABLE IF NOT EXISTS assessment_submissions (
        id VARCHAR(36) PRIMARY KEY,
        assessment_id VARCHAR(128) NOT NULL,
        user_id VARCHAR(128) NOT NULL,
        fullscreen_violations INTEGER NOT NULL DEFAULT 0,
        tab_switch_violations INTEGER NOT NULL DEFAULT 0,
        is_terminated BOOLEAN NOT NULL DEFAULT FALSE,
        created_at VARCHAR(32) NOT NULL,
        completed_at VARCHAR(32)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS face_violations (
        id VARCHAR(36) PRIMARY KEY,
        submission_id VARCHAR(36) NOT NULL REFERENCES assessment_submissions(id),
        seq INTEGER NOT NULL,
        recorded_at VARCHAR(32) NOT NULL,
        violation_type VARCHAR(64) NOT NULL,
        detail TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS object_violations (
        id VARCHAR(36) PRIMARY KEY,
        submission_id VARCHAR(36) NOT NULL REFERENCES assessment_submissions(id),
        seq INTEGER NOT NULL,
        recorded_at VARCHAR(32) NOT NULL,
        devices_detected TEXT NOT NULL,
        violation_count INTEGER NOT NULL
    )
    """,
]


class SubmissionRepository:
    """
    Repository for submission records.

    Writes are applied as atomic increments and appends so that concurrent
    writers never lose each other's updates.
    """

    def __init__(self, db_url: str):
        self.db_url = db_url
        self._engine = None

    @property
    def engine(self):
        """Lazy load engine"""
        if self._engine is None:
            self._engine = create_engine(self.db_url)
        return self._engine

    def init_schema(self) -> None:
        with self.engine.begin() as conn:
            for statement in SCHEMA:
                conn.execute(text(statement))
        logger.info("[DB] Submission schema ready")

    def dispose(self) -> None:
        if self._engine is not None:
            self._engine.dispose()
            self._engine = None

    # ========================================================================
    # Submissions
    # ========================================================================

    def ensure_submission(self, assessment_id: str, user_id: str) -> str:
        """
        Find the open submission for (assessment, user) or create one.

        Returns:
            Submission ID
        """
        with self.engine.begin() as conn:
            row = conn.execute(text("""
                SELECT id FROM assessment_submissions
                WHERE assessment_id = :assessment_id
                  AND user_id = :user_id
                  AND completed_at IS NULL
                ORDER BY created_at DESC
                LIMIT 1
            """), {"assessment_id": assessment_id, "user_id": user_id}).fetchone()

            if row:
                logger.info(f"[DB] Reusing submission {row[0]}")
                return row[0]

            submission_id = str(uuid.uuid4())
            conn.execute(text("""
                INSERT INTO assessment_submissions (id, assessment_id, user_id, created_at)
                VALUES (:id, :assessment_id, :user_id, :created_at)
            """), {
                "id": submission_id,
                "assessment_id": assessment_id,
                "user_id": user_id,
                "created_at": datetime.utcnow().isoformat()
            })

        logger.info(f"[DB] Created submission {submission_id}")
        return submission_id

    def _next_seq(self, conn, table: str, submission_id: str) -> int:
        value = conn.execute(
            text(f"SELECT COALESCE(MAX(seq), 0) FROM {table} WHERE submission_id = :id"),
            {"id": submission_id}
        ).scalar()
        return int(value or 0) + 1

    def apply_batch(self, submission_id: str, batch) -> None:
        """
        Apply a pending batch in a single transaction.

        Args:
            submission_id: Target submission
            batch: PendingBatch with counter deltas and log entries

        Raises:
            ProctoringError: if the submission does not exist
            sqlalchemy.exc.SQLAlchemyError: on database failure
        """
        with self.engine.begin() as conn:
            result = conn.execute(text("""
                UPDATE assessment_submissions
                SET fullscreen_violations = fullscreen_violations + :fullscreen,
                    tab_switch_violations = tab_switch_violations + :tab_switch
                WHERE id = :id
            """), {
                "id": submission_id,
                "fullscreen": batch.fullscreen_delta,
                "tab_switch": batch.tab_switch_delta
            })
            if result.rowcount == 0:
                raise ProctoringError(f"Submission {submission_id} not found")

            if batch.terminated:
                conn.execute(text("""
                    UPDATE assessment_submissions
                    SET is_terminated = :terminated, completed_at = :completed_at
                    WHERE id = :id
                """), {
                    "id": submission_id,
                    "terminated": True,
                    "completed_at": datetime.utcnow().isoformat()
                })

            if batch.face_violations:
                seq = self._next_seq(conn, "face_violations", submission_id)
                conn.execute(text("""
                    INSERT INTO face_violations (id, submission_id, seq, recorded_at, violation_type, detail)
                    VALUES (:id, :submission_id, :seq, :recorded_at, :violation_type, :detail)
                """), [
                    {
                        "id": str(uuid.uuid4()),
                        "submission_id": submission_id,
                        "seq": seq + i,
                        "recorded_at": entry["timestamp"],
                        "violation_type": entry["type"],
                        "detail": entry.get("detail", "")
                    }
                    for i, entry in enumerate(batch.face_violations)
                ])

            if batch.object_violations:
                seq = self._next_seq(conn, "object_violations", submission_id)
                conn.execute(text("""
                    INSERT INTO object_violations (id, submission_id, seq, recorded_at, devices_detected, violation_count)
                    VALUES (:id, :submission_id, :seq, :recorded_at, :devices_detected, :violation_count)
                """), [
                    {
                        "id": str(uuid.uuid4()),
                        "submission_id": submission_id,
                        "seq": seq + i,
                        "recorded_at": entry["timestamp"],
                        "devices_detected": json.dumps(entry["devices_detected"]),
                        "violation_count": entry["violation_count"]
                    }
                    for i, entry in enumerate(batch.object_violations)
                ])

        logger.debug(
            f"[DB] Applied batch to {submission_id}: "
            f"face={len(batch.face_violations)} object={len(batch.object_violations)} "
            f"fullscreen=+{batch.fullscreen_delta} tab=+{batch.tab_switch_delta}"
        )

    def get_record(self, submission_id: str) -> Optional[Dict[str, Any]]:
        """
        Load a submission in its persisted shape.

        Returns:
            Dict with counters, violation logs and termination flag, or None
        """
        with self.engine.connect() as conn:
            row = conn.execute(text("""
                SELECT id, assessment_id, user_id, fullscreen_violations,
                       tab_switch_violations, is_terminated, created_at, completed_at
                FROM assessment_submissions
                WHERE id = :id
            """), {"id": submission_id}).fetchone()

            if not row:
                return None

            face_rows = conn.execute(text("""
                SELECT recorded_at, violation_type, detail
                FROM face_violations
                WHERE submission_id = :id
                ORDER BY seq
            """), {"id": submission_id}).fetchall()

            object_rows = conn.execute(text("""
                SELECT recorded_at, devices_detected, violation_count
                FROM object_violations
                WHERE submission_id = :id
                ORDER BY seq
            """), {"id": submission_id}).fetchall()

        face_violations: List[Dict[str, Any]] = [
            {"timestamp": r[0], "type": r[1], "detail": r[2]} for r in face_rows
        ]
        object_violations: List[Dict[str, Any]] = [
            {"timestamp": r[0], "devices_detected": json.loads(r[1]), "violation_count": r[2]}
            for r in object_rows
        ]

        return {
            "id": row[0],
            "assessment_id": row[1],
            "user_id": row[2],
            "fullscreen_violations": row[3],
            "tab_switch_violations": row[4],
            "is_terminated": bool(row[5]),
            "created_at": row[6],
            "completed_at": row[7],
            "face_violations": face_violations,
            "object_violations": object_violations,
        }
