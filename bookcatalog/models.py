"""
Catalog records shared by the search, rating and write paths.
"""

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import List, Mapping, Optional, Sequence, Tuple

STARS = (1, 2, 3, 4, 5)

# Fixed column names; the only identifiers ever placed into statement text.
BUCKET_COLUMNS = {star: f"rating_{star}_star" for star in STARS}


class OrderBy(str, Enum):
    TITLE = "title"
    AUTHOR = "author"
    YEAR = "year"

    @classmethod
    def parse(cls, value: Optional[str]) -> "OrderBy":
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            return cls.TITLE


class SortDirection(str, Enum):
    ASC = "asc"
    DESC = "desc"

    @classmethod
    def parse(cls, value: Optional[str]) -> "SortDirection":
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            return cls.ASC


class ChangeMode(str, Enum):
    INCREASE = "increase"
    DECREASE = "decrease"
    SET = "set"


@dataclass(frozen=True)
class RatingSummary:
    """Bucket counters plus the cached aggregates derived from them."""

    buckets: Tuple[int, int, int, int, int]
    count: int
    average: float

    @classmethod
    def from_buckets(cls, buckets: Sequence[int]) -> "RatingSummary":
        buckets = tuple(int(b) for b in buckets)
        if len(buckets) != len(STARS):
            raise ValueError(f"expected {len(STARS)} rating buckets, got {len(buckets)}")
        total = sum(buckets)
        if total == 0:
            return cls(buckets=buckets, count=0, average=0.0)
        weighted = sum(star * count for star, count in zip(STARS, buckets))
        average = (Decimal(weighted) / Decimal(total)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
        return cls(buckets=buckets, count=total, average=float(average))

    def to_dict(self) -> dict:
        data = {"average": self.average, "count": self.count}
        for star, value in zip(STARS, self.buckets):
            data[f"rating_{star}"] = value
        return data


@dataclass(frozen=True)
class Icons:
    large: Optional[str] = None
    small: Optional[str] = None


@dataclass(frozen=True)
class SearchRow:
    """Read-only projection of a book joined with its author names."""

    isbn13: str
    authors: str
    publication: Optional[int]
    original_title: Optional[str]
    title: str
    ratings: RatingSummary
    icons: Icons

    @classmethod
    def from_row(cls, row: Mapping) -> "SearchRow":
        buckets = tuple(row[BUCKET_COLUMNS[star]] or 0 for star in STARS)
        ratings = RatingSummary(
            buckets=buckets,
            count=int(row["rating_count"] or 0),
            average=float(row["rating_avg"] or 0),
        )
        return cls(
            isbn13=str(row["isbn13"]),
            authors=row.get("authors") or "",
            publication=row.get("publication_year"),
            original_title=row.get("original_title"),
            title=row["title"],
            ratings=ratings,
            icons=Icons(large=row.get("image_url"), small=row.get("image_small_url")),
        )

    def to_dict(self) -> dict:
        return {
            "isbn13": self.isbn13,
            "authors": self.authors,
            "publication": self.publication,
            "original_title": self.original_title,
            "title": self.title,
            "ratings": self.ratings.to_dict(),
            "icons": {"large": self.icons.large, "small": self.icons.small},
        }


@dataclass
class SearchPage:
    books: List[SearchRow]
    total: int
    page: Optional[int] = None
    page_size: Optional[int] = None

    def to_dict(self) -> dict:
        return {
            "entries": [book.to_dict() for book in self.books],
            "total": self.total,
            "page": self.page,
            "page_size": self.page_size,
        }


@dataclass
class NewBook:
    isbn13: str
    title: str
    authors: List[str]
    publication_year: Optional[int] = None
    original_title: Optional[str] = None
    buckets: Tuple[int, int, int, int, int] = (0, 0, 0, 0, 0)
    image_url: Optional[str] = None
    image_small_url: Optional[str] = None
