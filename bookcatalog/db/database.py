import logging
from contextlib import contextmanager
from typing import Iterator, List, Optional, Union

import psycopg
from psycopg import sql
from psycopg.rows import dict_row
from psycopg_pool import ConnectionPool

from bookcatalog.config import Settings
from bookcatalog.errors import BookNotFoundError, DuplicateBookError, StorageError, ValidationError
from bookcatalog.models import NewBook, RatingSummary
from bookcatalog.validation import (
    coerce_int,
    normalize_author_name,
    normalize_text,
    parse_isbn,
)

logger = logging.getLogger(__name__)

# Attributes the metadata rewrite path may touch, mapped to their column.
UPDATABLE_ATTRIBUTES = {
    "title": "title",
    "original_title": "original_title",
    "publication_year": "publication_year",
    "image_url": "image_url",
    "image_small_url": "image_small_url",
}


def create_pool(settings: Optional[Settings] = None) -> ConnectionPool:
    settings = settings or Settings.from_env()
    return ConnectionPool(
        settings.dsn,
        min_size=settings.pool_min_size,
        max_size=settings.pool_max_size,
        timeout=settings.pool_timeout,
        kwargs={"row_factory": dict_row, "autocommit": True},
        open=True,
    )


@contextmanager
def storage_errors(action: str) -> Iterator[None]:
    """Surface driver and pool failures as StorageError."""
    try:
        yield
    except psycopg.Error as exc:
        logger.error("Server failed to %s due to %s", action, exc)
        raise StorageError(f"Server failed to {action}", detail=str(exc)) from exc


class PostgresRepository:
    """Catalog write path: insertion, deletion and metadata rewrites."""

    def __init__(self, pool: ConnectionPool):
        self.pool = pool

    def add_book(self, book: NewBook) -> int:
        isbn = parse_isbn(book.isbn13)
        title = normalize_text(book.title)
        if not title:
            raise ValidationError("Required information for new book is missing", detail="title")
        names = self._author_names(book.authors)
        if not names:
            raise ValidationError("Required information for new book is missing", detail="authors")
        buckets = [coerce_int(b, "rating count") for b in book.buckets]
        if len(buckets) != 5 or any(b is None or b < 0 for b in buckets):
            raise ValidationError("Rating counts must be five non-negative integers.")
        summary = RatingSummary.from_buckets(buckets)
        year = coerce_int(book.publication_year, "publication year")

        values = (
            int(isbn),
            year,
            normalize_text(book.original_title),
            title,
            summary.average,
            summary.count,
            *summary.buckets,
            book.image_url,
            book.image_small_url,
        )
        try:
            with storage_errors("add book"):
                with self.pool.connection() as conn:
                    with conn.transaction():
                        row = conn.execute(
                            """
                            INSERT INTO books (
                                isbn13, publication_year, original_title, title,
                                rating_avg, rating_count,
                                rating_1_star, rating_2_star, rating_3_star, rating_4_star, rating_5_star,
                                image_url, image_small_url
                            ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
                            RETURNING id
                            """,
                            values,
                        ).fetchone()
                        book_id = row["id"]
                        for name in names:
                            author = conn.execute(
                                """
                                INSERT INTO authors (name) VALUES (%s)
                                ON CONFLICT ((lower(name))) DO UPDATE SET name = authors.name
                                RETURNING id
                                """,
                                (name,),
                            ).fetchone()
                            conn.execute(
                                "INSERT INTO book_author (book, author) VALUES (%s, %s) ON CONFLICT DO NOTHING",
                                (book_id, author["id"]),
                            )
        except StorageError as exc:
            if isinstance(exc.__cause__, psycopg.errors.UniqueViolation):
                raise DuplicateBookError(isbn) from exc.__cause__
            raise
        logger.info("Added book id=%s isbn=%s authors=%s", book_id, isbn, names)
        return book_id

    def delete_book(self, isbn13: Union[int, str]) -> int:
        isbn = parse_isbn(isbn13)
        with storage_errors("delete book"):
            with self.pool.connection() as conn:
                cur = conn.execute("DELETE FROM books WHERE isbn13 = %s", (int(isbn),))
                deleted = cur.rowcount
        if deleted == 0:
            raise BookNotFoundError(isbn)
        logger.info("Deleted %s book(s) with isbn=%s", deleted, isbn)
        return deleted

    def delete_range(self, min_id: Union[int, str], max_id: Union[int, str]) -> int:
        low = coerce_int(min_id, "minimum id")
        high = coerce_int(max_id, "maximum id")
        if low is None or high is None:
            raise ValidationError("Missing parameter(s) - min_id and max_id required.")
        if low > high:
            raise ValidationError(f"Minimum id {low} must be less than or equal to maximum id {high}.")
        with storage_errors("delete books"):
            with self.pool.connection() as conn:
                cur = conn.execute("DELETE FROM books WHERE id BETWEEN %s AND %s", (low, high))
                deleted = cur.rowcount
        if deleted == 0:
            raise BookNotFoundError(f"{low}..{high}", detail=f"No books with ids between {low} and {high}")
        logger.info("Deleted %s book(s) with ids in [%s, %s]", deleted, low, high)
        return deleted

    def update_attribute(self, isbn13: Union[int, str], attribute: str, value) -> None:
        isbn = parse_isbn(isbn13)
        column = UPDATABLE_ATTRIBUTES.get(str(attribute or "").strip())
        if column is None:
            raise ValidationError(
                f"Unknown attribute '{attribute}'.",
                detail=f"updatable attributes: {', '.join(sorted(UPDATABLE_ATTRIBUTES))}",
            )
        if column == "publication_year":
            value = coerce_int(value, "publication year")
        else:
            value = normalize_text(value)
        if value is None:
            raise ValidationError("Missing parameter(s)", detail="newValue")

        query = sql.SQL("UPDATE books SET {column} = %s WHERE isbn13 = %s").format(column=sql.SQL(column))
        with storage_errors("update book"):
            with self.pool.connection() as conn:
                cur = conn.execute(query, (value, int(isbn)))
                updated = cur.rowcount
        if updated == 0:
            raise BookNotFoundError(isbn)
        logger.info("Updated %s of isbn=%s", column, isbn)

    def count_books(self) -> int:
        with storage_errors("count books"):
            with self.pool.connection() as conn:
                row = conn.execute("SELECT COUNT(id) AS count FROM books").fetchone()
        return int(row["count"])

    @staticmethod
    def _author_names(authors: List[str]) -> List[str]:
        names: List[str] = []
        seen = set()
        for raw in authors or []:
            name = normalize_author_name(raw)
            if name and name.lower() not in seen:
                seen.add(name.lower())
                names.append(name)
        return names
