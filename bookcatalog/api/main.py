import logging
from contextlib import asynccontextmanager
from typing import List, Optional, Union

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from psycopg_pool import ConnectionPool

from bookcatalog.config import Settings
from bookcatalog.db.database import PostgresRepository, create_pool
from bookcatalog.db.migrations import MigrationEngine
from bookcatalog.errors import CatalogError, MigrationError
from bookcatalog.models import NewBook
from bookcatalog.ratings.pipeline import RatingUpdatePipeline
from bookcatalog.search.composer import QueryComposer, SearchRequest

logger = logging.getLogger(__name__)

pool: ConnectionPool | None = None
composer: QueryComposer | None = None
ratings: RatingUpdatePipeline | None = None
repository: PostgresRepository | None = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    global pool, composer, ratings, repository
    settings = Settings.from_env()
    pool = create_pool(settings)
    if settings.run_migrations:
        try:
            MigrationEngine(pool).migrate()
        except MigrationError as exc:
            logger.critical("Refusing to start: %s (%s)", exc.message, exc.detail)
            pool.close()
            raise
    composer = QueryComposer(pool)
    ratings = RatingUpdatePipeline(pool)
    repository = PostgresRepository(pool)
    yield
    pool.close()


app = FastAPI(title="Book Catalog API", version="1.0.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(CatalogError)
async def catalog_error_handler(request: Request, exc: CatalogError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s - %s", request.method, request.url.path, exc.code, exc.detail)
    else:
        logger.warning("%s %s rejected: %s - %s", request.method, request.url.path, exc.code, exc.message)
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.message, "code": exc.code, "detail": exc.detail},
    )


class AddBookRequest(BaseModel):
    isbn13: str
    title: str
    authors: List[str] = Field(default_factory=list)
    publication_year: Optional[int] = None
    original_title: Optional[str] = None
    rating_1_star: int = 0
    rating_2_star: int = 0
    rating_3_star: int = 0
    rating_4_star: int = 0
    rating_5_star: int = 0
    image_url: Optional[str] = None
    image_small_url: Optional[str] = None


class RatingUpdateRequest(BaseModel):
    isbn13: str
    bucket: Union[int, str]
    mode: str
    value: Union[int, str]


class AttributeUpdateRequest(BaseModel):
    attribute: str
    new_value: Union[int, str]


def _services():
    if composer is None or ratings is None or repository is None:
        raise HTTPException(status_code=500, detail="Database not initialized")
    return composer, ratings, repository


@app.get("/")
def root():
    return {"message": "Book Catalog API"}


@app.get("/books")
def search_books(
    q: Optional[str] = None,
    isbn: Optional[str] = None,
    title: Optional[str] = None,
    author: Optional[str] = None,
    min: Optional[str] = None,
    max: Optional[str] = None,
    orderby: Optional[str] = None,
    sort: Optional[str] = None,
    offset: Optional[str] = None,
    page: Optional[str] = None,
):
    search, _, _ = _services()
    request = SearchRequest(
        keyword=q,
        isbn=isbn,
        title=title,
        author=author,
        min_rating=min,
        max_rating=max,
        order_by=orderby,
        sort=sort,
        page_size=offset,
        page=page,
    )
    return search.search(request).to_dict()


@app.get("/books/all")
def list_books(
    orderby: Optional[str] = None,
    sort: Optional[str] = None,
    offset: Optional[str] = None,
    page: Optional[str] = None,
):
    search, _, _ = _services()
    return search.list_all(order_by=orderby, sort=sort, page_size=offset, page=page).to_dict()


@app.get("/books/{isbn}")
def get_book(isbn: str):
    search, _, _ = _services()
    return search.get_book(isbn).to_dict()


@app.post("/books", status_code=201)
def add_book(body: AddBookRequest):
    _, _, repo = _services()
    book_id = repo.add_book(
        NewBook(
            isbn13=body.isbn13,
            title=body.title,
            authors=body.authors,
            publication_year=body.publication_year,
            original_title=body.original_title,
            buckets=(
                body.rating_1_star,
                body.rating_2_star,
                body.rating_3_star,
                body.rating_4_star,
                body.rating_5_star,
            ),
            image_url=body.image_url,
            image_small_url=body.image_small_url,
        )
    )
    return {"message": "Success new book was added to the database", "id": book_id}


@app.put("/books/ratings")
def update_ratings(body: RatingUpdateRequest):
    _, pipeline, _ = _services()
    pipeline.update(body.isbn13, body.bucket, body.mode, body.value)
    return {"message": "Ratings updated successfully."}


@app.put("/books/{isbn}")
def update_book(isbn: str, body: AttributeUpdateRequest):
    _, _, repo = _services()
    repo.update_attribute(isbn, body.attribute, body.new_value)
    return {"message": "Book updated successfully."}


@app.delete("/books/range/{min_id}/{max_id}")
def delete_range(min_id: str, max_id: str):
    _, _, repo = _services()
    deleted = repo.delete_range(min_id, max_id)
    return {"message": "Range of books deleted!", "deleted": deleted}


@app.delete("/books/{isbn}")
def delete_book(isbn: str):
    _, _, repo = _services()
    deleted = repo.delete_book(isbn)
    return {"message": "Success book was deleted!", "deleted": deleted}


@app.get("/health")
def health():
    return {"status": "healthy"}
