"""SQLite database operations for the local store."""
import sqlite3
import json
from pathlib import Path
from typing import Optional, List, Dict, Any
from contextlib import contextmanager

from utils.logger import setup_logger
import config

logger = setup_logger(__name__)


class Database:
    """Manages SQLite database operations.

    Every method opens its own connection so calls are safe from worker
    threads. Higher-level caching and retries live in ``LocalStore``.
    """

    def __init__(self, db_path: Path = config.DB_PATH):
        """Initialize database connection.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._initialize_schema()

    def _initialize_schema(self):
        """Create tables if they don't exist."""
        schema_path = Path(__file__).parent / "schema.sql"
        with open(schema_path, 'r') as f:
            schema_sql = f.read()

        with self._get_connection() as conn:
            conn.executescript(schema_sql)
            conn.commit()

        logger.debug(f"Database initialized at {self.db_path}")

    @contextmanager
    def _get_connection(self):
        """Context manager for database connections."""
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
        finally:
            conn.close()

    # ==================== Chunks ====================

    def upsert_chunks(self, chunks: List[Dict[str, Any]]) -> None:
        """Bulk insert or replace text chunks.

        Args:
            chunks: List of chunk dictionaries (``TextChunk.to_dict()``)
        """
        rows = [
            {**chunk, 'embedding': json.dumps(chunk['embedding']) if chunk.get('embedding') is not None else None}
            for chunk in chunks
        ]
        with self._get_connection() as conn:
            conn.executemany(
                """
                INSERT OR REPLACE INTO chunks (id, book_id, section_index, chapter_title, text, page_number, embedding)
                VALUES (:id, :book_id, :section_index, :chapter_title, :text, :page_number, :embedding)
                """,
                rows
            )
            conn.commit()

        logger.debug(f"Stored {len(rows)} chunks")

    def get_chunks(self, book_id: str, include_embeddings: bool = True) -> List[Dict[str, Any]]:
        """Retrieve all chunks for a book in reading order.

        Args:
            book_id: Book identity hash
            include_embeddings: Decode stored embeddings (skip to save memory)

        Returns:
            List of chunk dictionaries
        """
        columns = "id, book_id, section_index, chapter_title, text, page_number"
        if include_embeddings:
            columns += ", embedding"
        with self._get_connection() as conn:
            rows = conn.execute(
                f"SELECT {columns} FROM chunks WHERE book_id = ? ORDER BY section_index, rowid",
                (book_id,)
            ).fetchall()

        chunks = []
        for row in rows:
            chunk = dict(row)
            if include_embeddings:
                chunk['embedding'] = json.loads(chunk['embedding']) if chunk['embedding'] else None
            chunks.append(chunk)
        return chunks

    def delete_chunks(self, book_id: str) -> None:
        with self._get_connection() as conn:
            conn.execute("DELETE FROM chunks WHERE book_id = ?", (book_id,))
            conn.commit()

    # ==================== Single-record blobs ====================

    def put_record(self, table: str, book_id: str, payload: Dict[str, Any]) -> None:
        """Atomically write a per-book JSON record.

        Args:
            table: One of ``book_meta``, ``keyword_indices``, ``entity_index``
            book_id: Book identity hash
            payload: JSON-serializable record
        """
        column = self._json_column(table)
        with self._get_connection() as conn:
            conn.execute(
                f"INSERT OR REPLACE INTO {table} (book_id, {column}) VALUES (?, ?)",
                (book_id, json.dumps(payload, ensure_ascii=False))
            )
            conn.commit()

    def get_record(self, table: str, book_id: str) -> Optional[Dict[str, Any]]:
        """Read a per-book JSON record, or None if absent."""
        column = self._json_column(table)
        with self._get_connection() as conn:
            row = conn.execute(
                f"SELECT {column} FROM {table} WHERE book_id = ?",
                (book_id,)
            ).fetchone()

        if not row:
            return None
        try:
            return json.loads(row[column])
        except json.JSONDecodeError as e:
            logger.error(f"Failed to decode {table} record for book {book_id}: {e}")
            raise

    def delete_record(self, table: str, book_id: str) -> None:
        self._json_column(table)
        with self._get_connection() as conn:
            conn.execute(f"DELETE FROM {table} WHERE book_id = ?", (book_id,))
            conn.commit()

    @staticmethod
    def _json_column(table: str) -> str:
        columns = {
            'book_meta': 'meta_json',
            'keyword_indices': 'index_json',
            'entity_index': 'index_json',
        }
        if table not in columns:
            raise ValueError(f"Unknown record table: {table}")
        return columns[table]

    # ==================== Entities ====================

    def replace_entities(self, book_id: str, entities: List[Dict[str, Any]]) -> None:
        """Replace a book's entity set in one transaction.

        Entities absorbed by a merge disappear from the set, so the old rows
        are deleted rather than upserted over.

        Args:
            book_id: Book identity hash
            entities: Entity dictionaries (``BookEntity.model_dump()``)
        """
        with self._get_connection() as conn:
            conn.execute("DELETE FROM entities WHERE book_id = ?", (book_id,))
            conn.executemany(
                "INSERT INTO entities (id, book_id, entity_json) VALUES (?, ?, ?)",
                [(e['id'], book_id, json.dumps(e, ensure_ascii=False)) for e in entities]
            )
            conn.commit()

        logger.debug(f"Stored {len(entities)} entities for book {book_id}")

    def get_entities(self, book_id: str) -> List[Dict[str, Any]]:
        with self._get_connection() as conn:
            rows = conn.execute(
                "SELECT entity_json FROM entities WHERE book_id = ? ORDER BY rowid",
                (book_id,)
            ).fetchall()
        return [json.loads(row['entity_json']) for row in rows]

    def clear_entity_data(self, book_id: str) -> None:
        """Delete entities and the entity index for a book as one unit."""
        with self._get_connection() as conn:
            conn.execute("DELETE FROM entities WHERE book_id = ?", (book_id,))
            conn.execute("DELETE FROM entity_index WHERE book_id = ?", (book_id,))
            conn.commit()

    # ==================== Whole book ====================

    def clear_book(self, book_id: str) -> None:
        """Delete everything stored for a book."""
        with self._get_connection() as conn:
            for table in ('chunks', 'book_meta', 'keyword_indices', 'entities', 'entity_index'):
                conn.execute(f"DELETE FROM {table} WHERE book_id = ?", (book_id,))
            conn.commit()

        logger.info(f"Cleared stored data for book {book_id}")

    def get_all_meta(self) -> List[Dict[str, Any]]:
        """Get index metadata for every indexed book."""
        with self._get_connection() as conn:
            rows = conn.execute("SELECT meta_json FROM book_meta").fetchall()
        return [json.loads(row['meta_json']) for row in rows]
