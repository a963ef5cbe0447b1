import psycopg
import pytest

from bookcatalog.db.database import PostgresRepository
from bookcatalog.errors import BookNotFoundError, DuplicateBookError, StorageError, ValidationError
from bookcatalog.models import NewBook
from tests.fakes import FakeCursor


def hunger_games(**overrides):
    fields = dict(
        isbn13="9780439023480",
        title="The Hunger Games",
        authors=["Suzanne  Collins", "suzanne collins", "Jane Doe"],
        publication_year=2008,
        original_title="The Hunger Games",
        buckets=(10, 20, 30, 40, 50),
        image_url="https://images.example.com/m/1.jpg",
        image_small_url="https://images.example.com/s/1.jpg",
    )
    fields.update(overrides)
    return NewBook(**fields)


class TestAddBook:
    def test_inserts_book_and_links_deduplicated_authors(self, fake_pool):
        fake_pool.script([{"id": 42}], [{"id": 7}], [], [{"id": 8}], [])

        book_id = PostgresRepository(fake_pool).add_book(hunger_games())

        assert book_id == 42
        assert fake_pool.events == ["BEGIN", "COMMIT"]
        insert_sql, insert_params = fake_pool.statements[0]
        assert insert_sql.startswith("INSERT INTO books")
        assert insert_params[0] == 9780439023480
        # rating_avg and rating_count are derived from the buckets
        assert insert_params[4:11] == (3.67, 150, 10, 20, 30, 40, 50)
        author_inserts = [p for text, p in fake_pool.statements if text.startswith("INSERT INTO authors")]
        assert author_inserts == [("Suzanne Collins",), ("Jane Doe",)]
        links = [p for text, p in fake_pool.statements if text.startswith("INSERT INTO book_author")]
        assert links == [(42, 7), (42, 8)]

    def test_duplicate_isbn(self, fake_pool):
        fake_pool.script(psycopg.errors.UniqueViolation("duplicate key value violates unique constraint"))

        with pytest.raises(DuplicateBookError) as excinfo:
            PostgresRepository(fake_pool).add_book(hunger_games())

        assert excinfo.value.status_code == 409
        assert fake_pool.events == ["BEGIN", "ROLLBACK"]

    def test_failure_while_linking_authors_rolls_back(self, fake_pool):
        fake_pool.script([{"id": 42}], psycopg.OperationalError("server closed the connection"))

        with pytest.raises(StorageError):
            PostgresRepository(fake_pool).add_book(hunger_games())
        assert fake_pool.events == ["BEGIN", "ROLLBACK"]

    @pytest.mark.parametrize(
        "overrides",
        [
            {"authors": []},
            {"authors": ["  "]},
            {"title": " "},
            {"isbn13": "12345"},
            {"buckets": (1, 2, -3, 4, 5)},
            {"buckets": (1, 2, 3)},
            {"publication_year": "last year"},
        ],
    )
    def test_invalid_books_never_reach_store(self, fake_pool, overrides):
        with pytest.raises(ValidationError):
            PostgresRepository(fake_pool).add_book(hunger_games(**overrides))
        assert fake_pool.statements == []


class TestDelete:
    def test_delete_by_isbn(self, fake_pool):
        fake_pool.script(FakeCursor([], rowcount=1))

        assert PostgresRepository(fake_pool).delete_book("9780439023480") == 1
        assert fake_pool.statements == [("DELETE FROM books WHERE isbn13 = %s", (9780439023480,))]

    def test_delete_missing_book(self, fake_pool):
        fake_pool.script(FakeCursor([], rowcount=0))

        with pytest.raises(BookNotFoundError):
            PostgresRepository(fake_pool).delete_book("9780439023480")

    def test_delete_range(self, fake_pool):
        fake_pool.script(FakeCursor([], rowcount=5))

        assert PostgresRepository(fake_pool).delete_range("10", "14") == 5
        assert fake_pool.statements[0][1] == (10, 14)

    @pytest.mark.parametrize("low, high", [("9", "3"), ("a", "3"), (None, "3")])
    def test_invalid_range(self, fake_pool, low, high):
        with pytest.raises(ValidationError):
            PostgresRepository(fake_pool).delete_range(low, high)
        assert fake_pool.statements == []


class TestUpdateAttribute:
    def test_rewrites_whitelisted_column(self, fake_pool):
        fake_pool.script(FakeCursor([], rowcount=1))

        PostgresRepository(fake_pool).update_attribute("9780439023480", "publication_year", "2009")

        assert fake_pool.statements == [
            ("UPDATE books SET publication_year = %s WHERE isbn13 = %s", (2009, 9780439023480))
        ]

    @pytest.mark.parametrize("attribute", ["isbn13", "rating_avg", "title; DROP TABLE books", ""])
    def test_unknown_attribute(self, fake_pool, attribute):
        with pytest.raises(ValidationError):
            PostgresRepository(fake_pool).update_attribute("9780439023480", attribute, "x")
        assert fake_pool.statements == []

    def test_missing_book(self, fake_pool):
        fake_pool.script(FakeCursor([], rowcount=0))

        with pytest.raises(BookNotFoundError):
            PostgresRepository(fake_pool).update_attribute("9780439023480", "title", "Mockingjay")


def test_count_books(fake_pool):
    fake_pool.script([{"count": 10000}])

    assert PostgresRepository(fake_pool).count_books() == 10000
