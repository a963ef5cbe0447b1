from bookcatalog.search.predicates import (
    QueryBuilder,
    by_author,
    by_isbn,
    by_rating,
    by_title,
    escape_like,
)
from tests.fakes import render


def test_placeholders_follow_final_parameter_order():
    builder = QueryBuilder()
    builder.add(by_isbn("9780439023480")).add(by_title("hunger")).add(by_rating(3.0, 4.5))

    where, params = builder.render()
    text = render(where)

    assert list(params) == ["p0", "p1", "p2", "p3", "p4", "p5"]
    assert params["p0"] == 9780439023480
    assert params["p4"] == 3.0 and params["p5"] == 4.5
    assert text.startswith("b.isbn13 = %(p0)s AND (b.title LIKE %(p1)s")
    assert text.endswith("b.rating_avg BETWEEN %(p4)s AND %(p5)s")


def test_rendering_twice_gives_identical_output():
    builder = QueryBuilder().add(by_author("rowling")).add(by_title("stone"))

    first = builder.render()
    second = builder.render()

    assert render(first[0]) == render(second[0])
    assert first[1] == second[1]


def test_title_matches_exact_capitalized_and_fuzzy():
    predicate = by_title("hunger games")

    assert predicate.values == ("%hunger games%", "%Hunger games%", "hunger games")
    assert "similarity(b.title, {}) > 0.3" in predicate.template


def test_user_text_never_lands_in_statement_text():
    hostile = "x'; DROP TABLE books; --"
    where, params = QueryBuilder().add(by_title(hostile)).add(by_author(hostile)).render()

    assert "DROP TABLE" not in render(where)
    assert params["p2"] == hostile


def test_like_wildcards_are_escaped():
    assert escape_like("100%_done\\") == "100\\%\\_done\\\\"
    assert by_author("50%").values == ("%50\\%%",)


def test_builder_reports_active_filters():
    builder = QueryBuilder()
    assert len(builder) == 0

    builder.add(by_author("tolkien"))

    assert len(builder) == 1
    assert builder.names == ["author"]
