import argparse
import logging
import sys

from bookcatalog.config import Settings, configure_logging
from bookcatalog.db.database import create_pool
from bookcatalog.db.migrations import MigrationEngine
from bookcatalog.errors import CatalogError, MigrationError
from bookcatalog.ratings.pipeline import RatingUpdatePipeline
from bookcatalog.search.composer import QueryComposer, SearchRequest

logger = logging.getLogger(__name__)


def run_migrations(settings: Settings) -> int:
    pool = create_pool(settings)
    try:
        applied = MigrationEngine(pool).migrate()
    finally:
        pool.close()
    if applied:
        print(f"Applied migrations: {', '.join(str(v) for v in applied)}")
    else:
        print("Database schema up to date")
    return 0


def show_status(settings: Settings) -> int:
    pool = create_pool(settings)
    try:
        current, latest = MigrationEngine(pool).status()
    finally:
        pool.close()
    print(f"Installed schema version: {current} (latest known: {latest})")
    return 0 if current == latest else 1


def search(settings: Settings, request: SearchRequest) -> int:
    pool = create_pool(settings)
    try:
        page = QueryComposer(pool).search(request)
    finally:
        pool.close()
    for book in page.books:
        print(f"[{book.ratings.average:.2f}] {book.title} by {book.authors or 'Unknown'} (isbn={book.isbn13})")
    if page.page is not None:
        print(f"Page {page.page} of {page.total} matching books")
    else:
        print(f"{page.total} matching books")
    return 0


def rate(settings: Settings, isbn: str, bucket: str, mode: str, value: str) -> int:
    pool = create_pool(settings)
    try:
        RatingUpdatePipeline(pool).update(isbn, bucket, mode, value)
    finally:
        pool.close()
    print(f"Updated {bucket}-star ratings of {isbn}")
    return 0


def run_api(host: str = "0.0.0.0", port: int = 8000, reload: bool = False):
    import uvicorn

    uvicorn.run("bookcatalog.api.main:app", host=host, port=port, reload=reload)
    return 0


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Book catalog CLI")
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("migrate", help="Upgrade the database schema to the latest version")
    subparsers.add_parser("status", help="Show installed and latest schema versions")

    search_parser = subparsers.add_parser("search", help="Search the catalog")
    search_parser.add_argument("--keyword", "-q", help="Keyword rank search (ignores other filters)")
    search_parser.add_argument("--isbn")
    search_parser.add_argument("--title")
    search_parser.add_argument("--author")
    search_parser.add_argument("--min", dest="min_rating")
    search_parser.add_argument("--max", dest="max_rating")
    search_parser.add_argument("--order-by", choices=["title", "author", "year"], default="title")
    search_parser.add_argument("--sort", choices=["asc", "desc"], default="asc")
    search_parser.add_argument("--page-size", default=None)
    search_parser.add_argument("--page", default=None)

    rate_parser = subparsers.add_parser("rate", help="Change one rating bucket of a book")
    rate_parser.add_argument("isbn")
    rate_parser.add_argument("bucket", help="Star bucket, 1-5")
    rate_parser.add_argument("mode", choices=["increase", "decrease", "set"])
    rate_parser.add_argument("value")

    api_parser = subparsers.add_parser("api", help="Run the REST API")
    api_parser.add_argument("--host", default="0.0.0.0")
    api_parser.add_argument("--port", type=int, default=8000)
    api_parser.add_argument("--reload", action="store_true")

    args = parser.parse_args(argv)
    settings = Settings.from_env()
    configure_logging(settings.log_level)

    try:
        if args.command == "migrate":
            return run_migrations(settings)
        if args.command == "status":
            return show_status(settings)
        if args.command == "search":
            request = SearchRequest(
                keyword=args.keyword,
                isbn=args.isbn,
                title=args.title,
                author=args.author,
                min_rating=args.min_rating,
                max_rating=args.max_rating,
                order_by=args.order_by,
                sort=args.sort,
                page_size=args.page_size,
                page=args.page,
            )
            return search(settings, request)
        if args.command == "rate":
            return rate(settings, args.isbn, args.bucket, args.mode, args.value)
        if args.command == "api":
            return run_api(args.host, args.port, args.reload)
    except MigrationError as exc:
        logger.critical("Migration failed: %s (%s)", exc.message, exc.detail)
        return 2
    except CatalogError as exc:
        logger.error("%s: %s", exc.message, exc.detail or "")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
