"""
SQLite-backed knowledge base for mat-curator.

Holds the persisted videos (unique on external ID), the rotation registry
(one row per target), the post-processing queue and the instructor
credibility registry. Inserts into ``videos`` use ``ON CONFLICT DO NOTHING``,
which is the only concurrency-safety mechanism between overlapping runs.
"""

import json
import logging
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timedelta
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Any

from .models import PersistedVideo, RotationRecord, utc_now
from .error_handling import KnowledgeBaseError

logger = logging.getLogger(__name__)

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS videos (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    external_id TEXT NOT NULL UNIQUE,
    video_url TEXT NOT NULL,
    title TEXT NOT NULL,
    technique_name TEXT NOT NULL,
    instructor_name TEXT,
    channel_name TEXT,
    duration_seconds INTEGER NOT NULL DEFAULT 0,
    view_count INTEGER NOT NULL DEFAULT 0,
    like_count INTEGER NOT NULL DEFAULT 0,
    thumbnail_url TEXT,
    published_at TEXT,
    technique_type TEXT,
    position_category TEXT,
    gi_or_nogi TEXT,
    tags_json TEXT NOT NULL DEFAULT '[]',
    quality_score REAL NOT NULL,
    status TEXT NOT NULL DEFAULT 'active',
    source_type TEXT NOT NULL,
    created_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_videos_instructor ON videos(instructor_name);
CREATE INDEX IF NOT EXISTS idx_videos_created_at ON videos(created_at);

CREATE TABLE IF NOT EXISTS curation_rotation (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    target_name TEXT NOT NULL UNIQUE,
    last_curated_at TEXT NOT NULL,
    videos_before INTEGER NOT NULL DEFAULT 0,
    videos_after INTEGER NOT NULL DEFAULT 0,
    videos_added INTEGER NOT NULL DEFAULT 0,
    rotation_cycle INTEGER NOT NULL DEFAULT 1,
    created_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_rotation_cycle ON curation_rotation(rotation_cycle);

CREATE TABLE IF NOT EXISTS post_processing_queue (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    video_id INTEGER NOT NULL UNIQUE REFERENCES videos(id),
    has_transcript INTEGER NOT NULL DEFAULT 0,
    processed INTEGER NOT NULL DEFAULT 0,
    error_message TEXT,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS instructor_credibility (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL UNIQUE,
    credibility_score REAL NOT NULL DEFAULT 50,
    created_at TEXT NOT NULL
);
"""

# Instructor names that are placeholders rather than real people
_REAL_INSTRUCTOR_FILTER = """
    instructor_name IS NOT NULL
    AND TRIM(instructor_name) != ''
    AND instructor_name NOT LIKE '%Unknown%'
    AND instructor_name NOT LIKE '%Not Identified%'
"""


def _to_iso(value: datetime) -> str:
    return value.isoformat()


def _from_iso(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


class KnowledgeBase:
    """Persisted knowledge base, rotation registry and credibility registry."""

    def __init__(self, db_path: Path):
        """
        Args:
            db_path: Path to the SQLite database file
        """
        self.db_path = Path(db_path)

    @contextmanager
    def connection(self) -> Iterator[sqlite3.Connection]:
        """Context manager yielding a connection that commits on success."""
        try:
            conn = sqlite3.connect(str(self.db_path), timeout=30)
        except sqlite3.Error as e:
            raise KnowledgeBaseError(f"Knowledge base unreachable at {self.db_path}: {e}") from e
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def initialize(self) -> None:
        """Create tables and indexes if they do not exist."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        with self.connection() as conn:
            conn.executescript(SCHEMA_SQL)
        logger.info(f"Knowledge base initialized at {self.db_path}")

    # ------------------------------------------------------------------
    # Videos
    # ------------------------------------------------------------------

    def is_known(self, external_id: str) -> bool:
        """True if a video with this external ID is already persisted."""
        with self.connection() as conn:
            row = conn.execute(
                "SELECT 1 FROM videos WHERE external_id = ? LIMIT 1",
                (external_id,),
            ).fetchone()
        return row is not None

    def count_videos_for(self, instructor_name: str) -> int:
        """Number of persisted videos attributed to ``instructor_name``."""
        with self.connection() as conn:
            row = conn.execute(
                "SELECT COUNT(*) AS count FROM videos WHERE TRIM(instructor_name) = ?",
                (instructor_name.strip(),),
            ).fetchone()
        return int(row["count"]) if row is not None else 0

    def video_counts_by_instructor(self) -> Dict[str, int]:
        """Video counts for every real (non-placeholder) instructor name."""
        with self.connection() as conn:
            rows = conn.execute(
                f"""
                SELECT TRIM(instructor_name) AS name, COUNT(*) AS count
                FROM videos
                WHERE {_REAL_INSTRUCTOR_FILTER}
                GROUP BY TRIM(instructor_name)
                """
            ).fetchall()
        return {row["name"]: int(row["count"]) for row in rows}

    def insert_video(self, video: PersistedVideo) -> Optional[int]:
        """
        Insert a video keyed by external ID.

        Returns:
            The new row ID, or None when the external ID already exists
        """
        with self.connection() as conn:
            cursor = conn.execute(
                """
                INSERT INTO videos (
                    external_id, video_url, title, technique_name, instructor_name,
                    channel_name, duration_seconds, view_count, like_count, thumbnail_url,
                    published_at, technique_type, position_category, gi_or_nogi, tags_json,
                    quality_score, status, source_type, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(external_id) DO NOTHING
                """,
                (
                    video.external_id,
                    video.video_url,
                    video.title,
                    video.technique_name,
                    video.instructor_name,
                    video.channel_name,
                    video.duration_seconds,
                    video.view_count,
                    video.like_count,
                    video.thumbnail_url,
                    video.published_at,
                    video.technique_type,
                    video.position_category,
                    video.gi_or_nogi,
                    json.dumps(video.tags),
                    video.quality_score,
                    video.status,
                    video.source_type,
                    _to_iso(video.created_at),
                ),
            )
            if cursor.rowcount != 1:
                return None
            return cursor.lastrowid

    def get_video(self, external_id: str) -> Optional[Dict[str, Any]]:
        """Fetch one persisted video as a dictionary."""
        with self.connection() as conn:
            row = conn.execute("SELECT * FROM videos WHERE external_id = ?", (external_id,)).fetchone()
        if row is None:
            return None
        data = dict(row)
        data["tags"] = json.loads(data.pop("tags_json") or "[]")
        return data

    def count_videos(self) -> int:
        with self.connection() as conn:
            row = conn.execute("SELECT COUNT(*) AS count FROM videos").fetchone()
        return int(row["count"])

    # ------------------------------------------------------------------
    # Post-processing queue
    # ------------------------------------------------------------------

    def enqueue_post_processing(self, video_id: int) -> bool:
        """Create the pending post-processing marker for a video. Idempotent."""
        with self.connection() as conn:
            cursor = conn.execute(
                """
                INSERT INTO post_processing_queue (video_id, has_transcript, processed, created_at)
                VALUES (?, 0, 0, ?)
                ON CONFLICT(video_id) DO NOTHING
                """,
                (video_id, _to_iso(utc_now())),
            )
            return cursor.rowcount == 1

    def pending_post_processing(self) -> List[int]:
        """Video row IDs still waiting for downstream processing."""
        with self.connection() as conn:
            rows = conn.execute(
                "SELECT video_id FROM post_processing_queue WHERE processed = 0 ORDER BY id"
            ).fetchall()
        return [int(row["video_id"]) for row in rows]

    # ------------------------------------------------------------------
    # Rotation registry
    # ------------------------------------------------------------------

    def upsert_rotation(self, record: RotationRecord) -> None:
        """Insert or replace the rotation record for one target."""
        with self.connection() as conn:
            conn.execute(
                """
                INSERT INTO curation_rotation (
                    target_name, last_curated_at, videos_before, videos_after,
                    videos_added, rotation_cycle, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(target_name) DO UPDATE SET
                    last_curated_at = excluded.last_curated_at,
                    videos_before = excluded.videos_before,
                    videos_after = excluded.videos_after,
                    videos_added = excluded.videos_added,
                    rotation_cycle = MAX(curation_rotation.rotation_cycle, excluded.rotation_cycle)
                """,
                (
                    record.target_name,
                    _to_iso(record.last_curated_at),
                    record.videos_before,
                    record.videos_after,
                    record.videos_added,
                    record.rotation_cycle,
                    _to_iso(utc_now()),
                ),
            )

    def get_rotation_records(self) -> Dict[str, RotationRecord]:
        """All rotation records keyed by target name."""
        with self.connection() as conn:
            rows = conn.execute("SELECT * FROM curation_rotation").fetchall()
        return {
            row["target_name"]: RotationRecord(
                target_name=row["target_name"],
                last_curated_at=_from_iso(row["last_curated_at"]),
                videos_before=row["videos_before"],
                videos_after=row["videos_after"],
                videos_added=row["videos_added"],
                rotation_cycle=row["rotation_cycle"],
            )
            for row in rows
        }

    def max_rotation_cycle(self) -> Optional[int]:
        """Highest cycle number recorded, or None when the registry is empty."""
        with self.connection() as conn:
            row = conn.execute("SELECT MAX(rotation_cycle) AS cycle FROM curation_rotation").fetchone()
        return int(row["cycle"]) if row is not None and row["cycle"] is not None else None

    # ------------------------------------------------------------------
    # Credibility registry
    # ------------------------------------------------------------------

    def register_instructor(self, name: str, credibility_score: float) -> None:
        """Add or update an instructor in the credibility registry."""
        with self.connection() as conn:
            conn.execute(
                """
                INSERT INTO instructor_credibility (name, credibility_score, created_at)
                VALUES (?, ?, ?)
                ON CONFLICT(name) DO UPDATE SET credibility_score = excluded.credibility_score
                """,
                (name.strip(), float(credibility_score), _to_iso(utc_now())),
            )

    def credibility_registry(self) -> Dict[str, float]:
        """Registered instructors and their credibility scores."""
        with self.connection() as conn:
            rows = conn.execute(
                "SELECT name, credibility_score FROM instructor_credibility ORDER BY name"
            ).fetchall()
        return {row["name"]: float(row["credibility_score"]) for row in rows}

    # ------------------------------------------------------------------
    # Reporting
    # ------------------------------------------------------------------

    def curation_status(self) -> Dict[str, Any]:
        """Totals used by the ``status`` command."""
        cutoff = _to_iso(utc_now() - timedelta(hours=24))
        with self.connection() as conn:
            total = conn.execute("SELECT COUNT(*) AS count FROM videos").fetchone()["count"]
            instructors = conn.execute(
                f"SELECT COUNT(DISTINCT TRIM(instructor_name)) AS count FROM videos WHERE {_REAL_INSTRUCTOR_FILTER}"
            ).fetchone()["count"]
            last = conn.execute(
                "SELECT MAX(last_curated_at) AS last FROM curation_rotation"
            ).fetchone()["last"]
            recent = conn.execute(
                "SELECT COUNT(*) AS count FROM videos WHERE created_at > ?",
                (cutoff,),
            ).fetchone()["count"]
            pending = conn.execute(
                "SELECT COUNT(*) AS count FROM post_processing_queue WHERE processed = 0"
            ).fetchone()["count"]

        return {
            'total_videos': int(total),
            'instructors_with_videos': int(instructors),
            'last_curation': _from_iso(last),
            'recently_added': int(recent),
            'pending_post_processing': int(pending),
        }
