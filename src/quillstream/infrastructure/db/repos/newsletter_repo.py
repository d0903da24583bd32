from __future__ import annotations

from pathlib import Path

from quillstream.domain.models.newsletter import Newsletter, NewsletterEmbedding
from quillstream.infrastructure.db.sqlite import get_connection


class NewsletterRepo:
    def __init__(self, db_path: Path) -> None:
        self.db_path = db_path

    def insert(self, newsletter: Newsletter) -> None:
        with get_connection(self.db_path) as conn:
            conn.execute(
                """
                INSERT INTO newsletters (
                    id,
                    owner_id,
                    subject,
                    sender_name,
                    sender_email,
                    received_at,
                    body,
                    indexed,
                    indexed_at,
                    chunk_count,
                    created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    newsletter.id,
                    newsletter.owner_id,
                    newsletter.subject,
                    newsletter.sender_name,
                    newsletter.sender_email,
                    newsletter.received_at,
                    newsletter.body,
                    1 if newsletter.indexed else 0,
                    newsletter.indexed_at,
                    newsletter.chunk_count,
                    newsletter.created_at,
                ),
            )
            conn.commit()

    def get_by_id(self, newsletter_id: str) -> Newsletter | None:
        with get_connection(self.db_path) as conn:
            row = conn.execute("SELECT * FROM newsletters WHERE id = ?", (newsletter_id,)).fetchone()
        return self._to_newsletter(row) if row else None

    def list_for_owner(self, owner_id: str) -> list[Newsletter]:
        with get_connection(self.db_path) as conn:
            rows = conn.execute(
                "SELECT * FROM newsletters WHERE owner_id = ? ORDER BY created_at DESC, id DESC",
                (owner_id,),
            ).fetchall()
        return [self._to_newsletter(row) for row in rows]

    def list_unindexed(self, owner_id: str, *, limit: int = 100) -> list[Newsletter]:
        with get_connection(self.db_path) as conn:
            rows = conn.execute(
                """
                SELECT *
                FROM newsletters
                WHERE owner_id = ? AND indexed = 0
                ORDER BY created_at DESC, id DESC
                LIMIT ?
                """,
                (owner_id, max(1, int(limit))),
            ).fetchall()
        return [self._to_newsletter(row) for row in rows]

    def mark_indexed(
        self,
        newsletter_id: str,
        *,
        chunk_count: int,
        indexed_at: str,
        embeddings: list[NewsletterEmbedding],
    ) -> None:
        with get_connection(self.db_path) as conn:
            conn.execute(
                "UPDATE newsletters SET indexed = 1, indexed_at = ?, chunk_count = ? WHERE id = ?",
                (indexed_at, chunk_count, newsletter_id),
            )
            conn.executemany(
                """
                INSERT INTO newsletter_embeddings (
                    id,
                    newsletter_id,
                    point_id,
                    chunk_index,
                    owner_id,
                    created_at
                ) VALUES (?, ?, ?, ?, ?, ?)
                """,
                [
                    (
                        record.id,
                        record.newsletter_id,
                        record.point_id,
                        record.chunk_index,
                        record.owner_id,
                        record.created_at,
                    )
                    for record in embeddings
                ],
            )
            conn.commit()

    def clear_index(self, newsletter_id: str) -> int:
        with get_connection(self.db_path) as conn:
            deleted = conn.execute(
                "DELETE FROM newsletter_embeddings WHERE newsletter_id = ?",
                (newsletter_id,),
            ).rowcount
            conn.execute(
                "UPDATE newsletters SET indexed = 0, indexed_at = NULL, chunk_count = NULL WHERE id = ?",
                (newsletter_id,),
            )
            conn.commit()
        return int(deleted or 0)

    def list_embeddings(self, newsletter_id: str) -> list[NewsletterEmbedding]:
        with get_connection(self.db_path) as conn:
            rows = conn.execute(
                "SELECT * FROM newsletter_embeddings WHERE newsletter_id = ? ORDER BY chunk_index ASC",
                (newsletter_id,),
            ).fetchall()
        return [
            NewsletterEmbedding(
                id=row["id"],
                newsletter_id=row["newsletter_id"],
                point_id=row["point_id"],
                chunk_index=int(row["chunk_index"]),
                owner_id=row["owner_id"],
                created_at=row["created_at"],
            )
            for row in rows
        ]

    def stats(self, owner_id: str) -> tuple[int, int, int]:
        with get_connection(self.db_path) as conn:
            counts = conn.execute(
                """
                SELECT
                    COUNT(*) AS total,
                    SUM(CASE WHEN indexed = 1 THEN 1 ELSE 0 END) AS indexed
                FROM newsletters
                WHERE owner_id = ?
                """,
                (owner_id,),
            ).fetchone()
            chunks = conn.execute(
                "SELECT COUNT(*) AS c FROM newsletter_embeddings WHERE owner_id = ?",
                (owner_id,),
            ).fetchone()
        return int(counts["total"] or 0), int(counts["indexed"] or 0), int(chunks["c"] or 0)

    @staticmethod
    def _to_newsletter(row) -> Newsletter:
        return Newsletter(
            id=row["id"],
            owner_id=row["owner_id"],
            subject=row["subject"] or "",
            sender_name=row["sender_name"] or "",
            sender_email=row["sender_email"] or "",
            received_at=row["received_at"],
            body=row["body"] or "",
            created_at=row["created_at"],
            indexed=bool(row["indexed"]),
            indexed_at=row["indexed_at"],
            chunk_count=row["chunk_count"],
        )
