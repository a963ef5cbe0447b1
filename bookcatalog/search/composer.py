import logging
import math
from dataclasses import dataclass
from typing import Optional, Tuple, Union

from psycopg import sql
from psycopg_pool import ConnectionPool

from bookcatalog.db.database import storage_errors
from bookcatalog.errors import BookNotFoundError, StorageError, ValidationError
from bookcatalog.models import OrderBy, SearchPage, SearchRow, SortDirection
from bookcatalog.search.predicates import (
    QueryBuilder,
    by_author,
    by_isbn,
    by_rating,
    by_title,
)
from bookcatalog.validation import (
    clamp,
    coerce_int,
    coerce_number,
    normalize_keyword,
    normalize_text,
    parse_isbn,
)

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 15
DEFAULT_PAGE = 1
MIN_RATING = 1
MAX_RATING = 5

SELECT_BOOKS = """
    SELECT b.id, b.isbn13, a.authors, b.publication_year, b.original_title, b.title,
           b.rating_avg, b.rating_count,
           b.rating_1_star, b.rating_2_star, b.rating_3_star, b.rating_4_star, b.rating_5_star,
           b.image_url, b.image_small_url
"""

# Aggregated, comma-joined author names per book.
AUTHORS_JOIN = """
    LEFT JOIN LATERAL (
        SELECT string_agg(au.name, ', ' ORDER BY au.name) AS authors
        FROM book_author ba
        INNER JOIN authors au ON au.id = ba.author
        WHERE ba.book = b.id
    ) a ON TRUE
"""

ORDER_COLUMNS = {
    OrderBy.TITLE: ("b.title",),
    OrderBy.AUTHOR: ("a.authors",),
    OrderBy.YEAR: ("b.publication_year", "b.title"),
}

SORT_KEYWORDS = {SortDirection.ASC: "ASC", SortDirection.DESC: "DESC"}


@dataclass
class SearchRequest:
    keyword: Optional[str] = None
    isbn: Union[int, str, None] = None
    title: Optional[str] = None
    author: Optional[str] = None
    min_rating: Union[float, str, None] = None
    max_rating: Union[float, str, None] = None
    order_by: Optional[str] = None
    sort: Optional[str] = None
    page_size: Union[int, str, None] = None
    page: Union[int, str, None] = None


@dataclass(frozen=True)
class RankSearch:
    keyword: str


@dataclass
class FilterSearch:
    builder: QueryBuilder
    order_by: OrderBy = OrderBy.TITLE
    sort: SortDirection = SortDirection.ASC
    page_size: int = DEFAULT_PAGE_SIZE
    page: int = DEFAULT_PAGE


def parse_paging(page_size, page) -> Tuple[int, int]:
    """Defaults for missing, zero or negative values; non-numeric input is rejected."""
    size = coerce_int(page_size, "page size")
    if size is None or size <= 0:
        size = DEFAULT_PAGE_SIZE
    number = coerce_int(page, "page number")
    if number is None or number < 1:
        number = DEFAULT_PAGE
    return size, number


def clamp_page(page: int, page_size: int, row_count: int) -> Tuple[int, int]:
    """Clamp page into [1, ceil(rows / size)] and return (page, offset)."""
    max_page = max(1, math.ceil(row_count / page_size))
    page = int(clamp(page, 1, max_page))
    return page, (page - 1) * page_size


def rating_range(min_rating, max_rating) -> Optional[Tuple[float, float]]:
    low = coerce_number(min_rating, "minimum rating")
    high = coerce_number(max_rating, "maximum rating")
    if low is None and high is None:
        return None
    low = clamp(MIN_RATING if low is None else low, MIN_RATING, MAX_RATING)
    high = clamp(MAX_RATING if high is None else high, MIN_RATING, MAX_RATING)
    if low > high:
        raise ValidationError(f"Minimum rating {low} must be less than or equal to maximum rating {high}.")
    return low, high


def order_clause(order_by: OrderBy, sort: SortDirection) -> sql.Composable:
    direction = SORT_KEYWORDS[sort]
    terms = [f"{column} {direction}" for column in ORDER_COLUMNS[order_by]]
    terms.append("b.id ASC")
    return sql.SQL(", ".join(terms))


class QueryComposer:
    """Builds and runs catalog searches against the pool."""

    def __init__(self, pool: ConnectionPool):
        self.pool = pool

    def plan(self, request: SearchRequest) -> Union[RankSearch, FilterSearch]:
        keyword = normalize_keyword(request.keyword)
        if keyword is not None:
            return RankSearch(keyword)

        builder = QueryBuilder()
        if request.isbn is not None and str(request.isbn).strip():
            builder.add(by_isbn(parse_isbn(request.isbn)))
        title = normalize_text(request.title)
        if title:
            builder.add(by_title(title))
        author = normalize_text(request.author)
        if author:
            builder.add(by_author(author))
        bounds = rating_range(request.min_rating, request.max_rating)
        if bounds:
            builder.add(by_rating(*bounds))
        if not len(builder):
            raise ValidationError("Missing search criteria.", detail="supply a keyword or at least one filter")

        page_size, page = parse_paging(request.page_size, request.page)
        return FilterSearch(
            builder=builder,
            order_by=OrderBy.parse(request.order_by),
            sort=SortDirection.parse(request.sort),
            page_size=page_size,
            page=page,
        )

    def search(self, request: SearchRequest) -> SearchPage:
        plan = self.plan(request)
        if isinstance(plan, RankSearch):
            logger.debug("Rank search keyword=%r", plan.keyword)
            return self._rank(plan)
        logger.debug("Filter search filters=%s order=%s sort=%s", plan.builder.names, plan.order_by.value, plan.sort.value)
        return self._filter(plan)

    def list_all(self, order_by=None, sort=None, page_size=None, page=None) -> SearchPage:
        size, number = parse_paging(page_size, page)
        plan = FilterSearch(
            builder=QueryBuilder(),
            order_by=OrderBy.parse(order_by),
            sort=SortDirection.parse(sort),
            page_size=size,
            page=number,
        )
        return self._filter(plan, require_rows=True)

    def get_book(self, isbn13) -> SearchRow:
        isbn = parse_isbn(isbn13)
        where, params = QueryBuilder().add(by_isbn(isbn)).render()
        query = sql.SQL(SELECT_BOOKS + "FROM books b" + AUTHORS_JOIN + "WHERE {where} LIMIT 1").format(where=where)
        with storage_errors("retrieve book"):
            with self.pool.connection() as conn:
                row = conn.execute(query, params).fetchone()
        if not row:
            raise BookNotFoundError(isbn)
        return SearchRow.from_row(row)

    def _rank(self, plan: RankSearch) -> SearchPage:
        query = sql.SQL(
            SELECT_BOOKS
            + ", ts_rank(b.kw_vec, q.query) AS rank"
            + " FROM books b CROSS JOIN websearch_to_tsquery('english', {keyword}) AS q(query)"
            + AUTHORS_JOIN
            + "WHERE b.kw_vec @@ q.query ORDER BY rank DESC, b.id ASC"
        ).format(keyword=sql.Placeholder("keyword"))
        with storage_errors("search books"):
            with self.pool.connection() as conn:
                rows = conn.execute(query, {"keyword": plan.keyword}).fetchall()
        books = [SearchRow.from_row(row) for row in rows]
        return SearchPage(books=books, total=len(books))

    def _filter(self, plan: FilterSearch, require_rows: bool = False) -> SearchPage:
        if len(plan.builder):
            where, params = plan.builder.render()
        else:
            where, params = sql.SQL("TRUE"), {}
        count_query = sql.SQL("SELECT COUNT(*) AS count FROM books b" + AUTHORS_JOIN + "WHERE {where}").format(
            where=where
        )
        page_query = sql.SQL(
            SELECT_BOOKS + "FROM books b" + AUTHORS_JOIN + "WHERE {where} ORDER BY {order} LIMIT {limit} OFFSET {offset}"
        ).format(
            where=where,
            order=order_clause(plan.order_by, plan.sort),
            limit=sql.Placeholder("limit"),
            offset=sql.Placeholder("offset"),
        )
        with storage_errors("search books"):
            with self.pool.connection() as conn:
                total = int(conn.execute(count_query, params or None).fetchone()["count"])
                if total == 0 and require_rows:
                    logger.error("Listing all books returned no rows")
                    raise StorageError("Server failed to retrieve books", detail="catalog returned no rows")
                page, offset = clamp_page(plan.page, plan.page_size, total)
                rows = conn.execute(page_query, {**params, "limit": plan.page_size, "offset": offset}).fetchall()
        return SearchPage(
            books=[SearchRow.from_row(row) for row in rows],
            total=total,
            page=page,
            page_size=plan.page_size,
        )
