"""
Composable search filters.

A predicate is a SQL template with one ``{}`` slot per bound value. The
``QueryBuilder`` collects predicates in order and names the placeholders only
when rendering, from each value's position in the final parameter list.
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Tuple

from psycopg import sql

TITLE_SIMILARITY_THRESHOLD = 0.3


@dataclass(frozen=True)
class Predicate:
    name: str
    template: str
    values: Tuple[Any, ...]


def escape_like(text: str) -> str:
    return text.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def by_isbn(isbn13: str) -> Predicate:
    return Predicate("isbn", "b.isbn13 = {}", (int(isbn13),))


def by_title(fragment: str) -> Predicate:
    escaped = escape_like(fragment)
    capitalized = escaped[:1].upper() + escaped[1:]
    return Predicate(
        "title",
        "(b.title LIKE {} OR b.title LIKE {} OR similarity(b.title, {}) > "
        + str(TITLE_SIMILARITY_THRESHOLD)
        + ")",
        (f"%{escaped}%", f"%{capitalized}%", fragment),
    )


def by_author(fragment: str) -> Predicate:
    return Predicate("author", "coalesce(a.authors, '') ILIKE {}", (f"%{escape_like(fragment)}%",))


def by_rating(min_rating: float, max_rating: float) -> Predicate:
    return Predicate("rating", "b.rating_avg BETWEEN {} AND {}", (min_rating, max_rating))


class QueryBuilder:
    def __init__(self) -> None:
        self._predicates: List[Predicate] = []

    def add(self, predicate: Predicate) -> "QueryBuilder":
        self._predicates.append(predicate)
        return self

    def __len__(self) -> int:
        return len(self._predicates)

    @property
    def names(self) -> List[str]:
        return [p.name for p in self._predicates]

    def render(self) -> Tuple[sql.Composable, Dict[str, Any]]:
        """Return the AND-joined WHERE body and its named parameters."""
        params: Dict[str, Any] = {}
        parts = []
        for predicate in self._predicates:
            slots = []
            for value in predicate.values:
                key = f"p{len(params)}"
                params[key] = value
                slots.append(sql.Placeholder(key))
            parts.append(sql.SQL(predicate.template).format(*slots))
        return sql.SQL(" AND ").join(parts), params
