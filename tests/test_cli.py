import psycopg

from bookcatalog import cli
from tests.fakes import BookStorePool, FakePool, book_row


def use_pool(monkeypatch, pool):
    monkeypatch.setattr(cli, "create_pool", lambda settings: pool)
    return pool


def test_search_prints_matches(monkeypatch, capsys, clean_env):
    pool = use_pool(monkeypatch, FakePool([{"count": 1}], [book_row()]))

    assert cli.main(["search", "--title", "hunger"]) == 0

    out = capsys.readouterr().out
    assert "[4.34] The Hunger Games by Suzanne Collins (isbn=9780439023480)" in out
    assert pool.closed


def test_search_rejection_exits_nonzero(monkeypatch, clean_env):
    pool = use_pool(monkeypatch, FakePool())

    assert cli.main(["search", "--order-by", "year"]) == 1
    assert pool.statements == []
    assert pool.closed


def test_rate(monkeypatch, capsys, clean_env):
    store = BookStorePool()
    store.add("9780439023480", (1, 1, 1, 1, 1))
    use_pool(monkeypatch, store)

    assert cli.main(["rate", "9780439023480", "5", "increase", "4"]) == 0
    assert store.buckets("9780439023480") == (1, 1, 1, 1, 5)


def test_status_behind_latest(monkeypatch, capsys, clean_env):
    use_pool(monkeypatch, FakePool([{"version": 2}]))

    assert cli.main(["status"]) == 1
    assert "Installed schema version: 2" in capsys.readouterr().out


def test_migration_failure_exits_with_two(monkeypatch, clean_env):
    use_pool(monkeypatch, FakePool(psycopg.OperationalError("could not connect")))

    assert cli.main(["migrate"]) == 2
