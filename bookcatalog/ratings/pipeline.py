"""
Rating update pipeline.

One bucket counter changes and the cached ``rating_count`` / ``rating_avg``
are recomputed from the five buckets, all inside a single transaction.
Leaving the ``conn.transaction()`` block with an exception rolls every step
back, so a rejected update is never partially visible. Concurrent updates
of the same book serialize on the row lock taken by the first UPDATE.
"""

import logging
from typing import Union

from psycopg import sql
from psycopg_pool import ConnectionPool

from bookcatalog.db.database import storage_errors
from bookcatalog.errors import BookNotFoundError, NegativeRatingError, ValidationError
from bookcatalog.models import BUCKET_COLUMNS, STARS, ChangeMode, RatingSummary
from bookcatalog.validation import coerce_int, parse_isbn

logger = logging.getLogger(__name__)

CHANGE_EXPRESSIONS = {
    ChangeMode.INCREASE: "{column} + {value}",
    ChangeMode.DECREASE: "{column} - {value}",
    ChangeMode.SET: "{value}",
}

MODE_ALIASES = {
    "increase": ChangeMode.INCREASE,
    "increaseby": ChangeMode.INCREASE,
    "decrease": ChangeMode.DECREASE,
    "decreaseby": ChangeMode.DECREASE,
    "set": ChangeMode.SET,
    "setto": ChangeMode.SET,
}

RETURNING_BUCKETS = ", ".join(BUCKET_COLUMNS[star] for star in STARS)


def parse_bucket(bucket: Union[int, str]) -> int:
    text = str(bucket).strip().lower() if bucket is not None else ""
    for star, column in BUCKET_COLUMNS.items():
        if text in (str(star), column):
            return star
    raise ValidationError("Invalid rating type.", detail=f"expected 1-5, got '{bucket}'")


def parse_mode(mode: Union[ChangeMode, str]) -> ChangeMode:
    if isinstance(mode, ChangeMode):
        return mode
    try:
        return MODE_ALIASES[str(mode).strip().lower()]
    except KeyError:
        raise ValidationError("Invalid rating change type.", detail=f"got '{mode}'") from None


def build_change_statement(bucket: int, mode: ChangeMode) -> sql.Composed:
    column = BUCKET_COLUMNS[bucket]
    expression = sql.SQL(CHANGE_EXPRESSIONS[mode]).format(
        column=sql.SQL(column), value=sql.Placeholder("value")
    )
    return sql.SQL(
        "UPDATE books SET {column} = {expression} WHERE isbn13 = {isbn} RETURNING " + RETURNING_BUCKETS
    ).format(column=sql.SQL(column), expression=expression, isbn=sql.Placeholder("isbn"))


RECOMPUTE_STATEMENT = "UPDATE books SET rating_count = %(count)s, rating_avg = %(average)s WHERE isbn13 = %(isbn)s"


class RatingUpdatePipeline:
    def __init__(self, pool: ConnectionPool):
        self.pool = pool

    def update(self, isbn13, bucket, mode, value) -> None:
        isbn = parse_isbn(isbn13)
        star = parse_bucket(bucket)
        change = parse_mode(mode)
        amount = coerce_int(value, "rating value")
        if amount is None:
            raise ValidationError("Invalid value to set or change rating by.")

        statement = build_change_statement(star, change)
        with storage_errors("update ratings"):
            with self.pool.connection() as conn:
                with conn.transaction():
                    rows = conn.execute(statement, {"value": amount, "isbn": int(isbn)}).fetchall()
                    if len(rows) != 1:
                        logger.warning("Rating update matched %s rows for isbn=%s", len(rows), isbn)
                        raise BookNotFoundError(isbn)
                    buckets = [rows[0][BUCKET_COLUMNS[s]] for s in STARS]
                    for s, count in zip(STARS, buckets):
                        if count < 0:
                            raise NegativeRatingError(isbn, s, count)
                    summary = RatingSummary.from_buckets(buckets)
                    conn.execute(
                        RECOMPUTE_STATEMENT,
                        {"count": summary.count, "average": summary.average, "isbn": int(isbn)},
                    )
        logger.info(
            "Updated rating_%s_star of isbn=%s (%s %s): count=%s average=%s",
            star,
            isbn,
            change.value,
            amount,
            summary.count,
            summary.average,
        )
