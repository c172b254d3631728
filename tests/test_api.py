"""
Integration tests for the HTTP API (/api/v2/fizzbuzz, /api/v2/fizzbuzz/stats, /api/v2/ready).

Every scenario runs once per statistics store flavour.
"""

import logging
from urllib.parse import urlencode

import pytest
from fastapi.testclient import TestClient

from fizzbuzz_api.app.core.access_log import ACCESS_LOGGER, client_host
from fizzbuzz_api.app.core.config import Settings
from fizzbuzz_api.app.core.errors import DeadlineExceeded, StorageError
from fizzbuzz_api.app.main import create_app
from fizzbuzz_api.app.services.fizzbuzz_service import FizzBuzzConfig

BASE_CONF = FizzBuzzConfig(limit=13, int1=3, int2=4, str1="fizz", str2="buzz")


@pytest.fixture
def client(data_source):
    app = create_app(Settings(database_url=data_source, http_logging=True))
    with TestClient(app) as test_client:
        yield test_client


def get_fizzbuzz(client, config: FizzBuzzConfig):
    response = client.get("/api/v2/fizzbuzz?" + urlencode(config.to_dict()))
    assert response.status_code == 200, response.text
    return response.json()


def assert_stats(client, count: int, config=None):
    response = client.get("/api/v2/fizzbuzz/stats")
    assert response.status_code == 200
    expected = {"count": count}
    if config is not None:
        expected["config"] = config.to_dict()
    assert response.json() == {"most_frequent": expected}


def assert_client_error(response):
    assert 400 <= response.status_code <= 499
    body = response.json()
    assert isinstance(body.get("error"), str)
    assert body["error"] != ""


class TestReady:
    def test_ready(self, client):
        response = client.get("/api/v2/ready")
        assert response.status_code == 200
        assert response.content == b""


class TestBadRequests:
    @pytest.mark.parametrize("path", ["fizzbuzz", "fizzbuzz/stats"])
    @pytest.mark.parametrize("method", ["POST", "PUT", "PATCH", "DELETE", "OPTIONS", "TRACE"])
    def test_only_get_is_allowed(self, client, method, path):
        response = client.request(method, "/api/v2/" + path)
        assert response.status_code == 405
        assert_client_error(response)

    def test_stats_takes_no_parameters(self, client):
        response = client.get("/api/v2/fizzbuzz/stats?unexpected_query")
        assert response.status_code == 400
        assert response.json() == {"error": "this endpoint takes no parameters"}

    @pytest.mark.parametrize(
        "query",
        [
            "?unknown",
            "?limit=a",
            "?int1=a",
            "?int2=a",
            "?int1=0",
            "?int2=0",
            "?int1=-1",
            "?int2=-1",
            "?limit=",
            "?int1=",
            "?int2=",
            "?;",
            "?limit=1.5",
            "?limit=0x10",
            "?limit=9223372036854775808",
            "?int1=-9223372036854775809",
        ],
    )
    def test_invalid_queries_are_rejected_and_not_counted(self, client, query):
        response = client.get("/api/v2/fizzbuzz" + query)
        assert response.status_code == 400
        assert_client_error(response)
        assert_stats(client, 0)

    def test_error_messages(self, client):
        assert client.get("/api/v2/fizzbuzz?limit=a").json() == {"error": 'parsing limit "a": invalid syntax'}
        assert client.get("/api/v2/fizzbuzz?limit=99999999999999999999").json() == {
            "error": 'parsing limit "99999999999999999999": value out of range'
        }
        assert client.get("/api/v2/fizzbuzz?foo=1").json() == {"error": 'unexpected query parameter "foo"'}
        assert "int2" in client.get("/api/v2/fizzbuzz?int2=0").json()["error"]

    def test_unknown_path(self, client):
        response = client.get("/api/v2/nothing")
        assert response.status_code == 404
        assert_client_error(response)


class TestFizzBuzz:
    def test_defaults(self, client):
        response = client.get("/api/v2/fizzbuzz")
        assert response.status_code == 200
        assert response.headers["content-type"] == "application/json; charset=utf-8"
        assert response.content == b'["1","fizz","buzz","fizz","5","fizzbuzz","7","fizz","buzz","fizz"]\n'
        assert_stats(client, 1, FizzBuzzConfig(limit=10, int1=2, int2=3, str1="fizz", str2="buzz"))

    def test_partial_parameters_use_defaults(self, client):
        response = client.get("/api/v2/fizzbuzz?limit=3&str2=b")
        assert response.json() == ["1", "fizz", "b"]

    def test_explicit_sign_is_accepted(self, client):
        assert client.get("/api/v2/fizzbuzz?limit=%2B2&int1=%2B1").json() == ["fizz", "fizz"]

    def test_first_repeated_parameter_wins(self, client):
        response = client.get("/api/v2/fizzbuzz?limit=2&limit=5&str1=a&str1=b")
        assert response.json() == ["1", "a"]

    def test_large_response_streams_whole_document(self, client):
        response = client.get("/api/v2/fizzbuzz?limit=100000")
        assert response.status_code == 200
        body = response.json()
        assert len(body) == 100000
        assert body[-1] == "fizz"

    @pytest.mark.parametrize(
        "config, expected",
        [
            (FizzBuzzConfig(-1, 1, 1, "", ""), []),
            (FizzBuzzConfig(-1, 1, 1, "a", ""), []),
            (FizzBuzzConfig(-1, 1, 1, "a", "a"), []),
            (FizzBuzzConfig(0, 1, 1, "", ""), []),
            (FizzBuzzConfig(0, 1, 1, "", "a"), []),
            (FizzBuzzConfig(1, 1, 1, "", ""), [""]),
            (FizzBuzzConfig(1, 1, 1, "", "a"), ["a"]),
            (FizzBuzzConfig(1, 1, 1, "a", ""), ["a"]),
            (FizzBuzzConfig(1, 1, 1, "a", "b"), ["ab"]),
            (FizzBuzzConfig(1, 2, 2, "", ""), ["1"]),
            (FizzBuzzConfig(1, 2, 3, "", ""), ["1"]),
            (FizzBuzzConfig(1, 1, 1, '"', ""), ['"']),
            (FizzBuzzConfig(1, 1, 1, "👌🏻", ""), ["👌🏻"]),
            (FizzBuzzConfig(2, 1, 2, "a", "b"), ["a", "ab"]),
            (FizzBuzzConfig(2, 2, 3, "a", "b"), ["1", "a"]),
            (FizzBuzzConfig(2, 3, 1, "a", "b"), ["b", "b"]),
            (FizzBuzzConfig(2, 3, 3, "a", "b"), ["1", "2"]),
            (FizzBuzzConfig(3, 3, 3, "a", "b"), ["1", "2", "ab"]),
            (FizzBuzzConfig(3, 3, 4, "a", "b"), ["1", "2", "a"]),
            (FizzBuzzConfig(4, 3, 4, "a", "b"), ["1", "2", "a", "b"]),
            (FizzBuzzConfig(6, 2, 3, "a", "b"), ["1", "a", "b", "a", "5", "ab"]),
            (
                BASE_CONF,
                ["1", "2", "fizz", "buzz", "5", "fizz", "7", "buzz", "fizz", "10", "11", "fizzbuzz", "13"],
            ),
        ],
    )
    def test_sequences(self, client, config, expected):
        assert get_fizzbuzz(client, config) == expected


class TestStats:
    def test_empty(self, client):
        response = client.get("/api/v2/fizzbuzz/stats")
        assert response.json() == {"most_frequent": {"count": 0}}

    def test_most_frequent_and_tie_break(self, client):
        get_fizzbuzz(client, BASE_CONF)
        assert_stats(client, 1, BASE_CONF)

        # Configs requested as often but "bigger" do not change the answer.
        config = BASE_CONF
        for field in ("limit", "int1", "int2"):
            config = FizzBuzzConfig(**{**config.to_dict(), field: getattr(config, field) + 1})
            get_fizzbuzz(client, config)
            assert_stats(client, 1, BASE_CONF)

        # "Smaller" ones do.
        config = BASE_CONF
        for field, value in (
            ("limit", BASE_CONF.limit - 1),
            ("int1", BASE_CONF.int1 - 1),
            ("int2", BASE_CONF.int2 - 1),
            ("str1", "a"),
            ("str2", "a"),
        ):
            config = FizzBuzzConfig(**{**config.to_dict(), field: value})
            get_fizzbuzz(client, config)
            assert_stats(client, 1, config)

        # Requesting the same config again increments its counter.
        for _ in range(5):
            get_fizzbuzz(client, BASE_CONF)
        assert_stats(client, 6, BASE_CONF)

    def test_stats_requests_are_not_counted(self, client):
        for _ in range(3):
            client.get("/api/v2/fizzbuzz/stats")
        assert_stats(client, 0)


class TestPersistence:
    def test_counts_survive_restart(self, tmp_path):
        app_settings = Settings(database_url=str(tmp_path / "data.db"), http_logging=False)
        with TestClient(create_app(app_settings)) as client:
            get_fizzbuzz(client, BASE_CONF)
            get_fizzbuzz(client, BASE_CONF)
        with TestClient(create_app(app_settings)) as client:
            assert_stats(client, 2, BASE_CONF)

    def test_off_does_not_persist(self):
        app_settings = Settings(database_url="off", http_logging=False)
        with TestClient(create_app(app_settings)) as client:
            get_fizzbuzz(client, BASE_CONF)
        with TestClient(create_app(app_settings)) as client:
            assert_stats(client, 0)


class FailingStats:
    """A store whose every call raises ``error``."""

    def __init__(self, error: Exception):
        self.error = error

    def increment(self, config, deadline=None):
        raise self.error

    def most_frequent(self, deadline=None):
        raise self.error

    def close(self):
        pass


class TestStoreFailures:
    def make_client(self, error):
        app = create_app(Settings(database_url="off", http_logging=False), stats=FailingStats(error))
        return TestClient(app)

    def test_storage_error_is_a_500(self, caplog):
        with self.make_client(StorageError("disk I/O error")) as client:
            for path in ("/api/v2/fizzbuzz", "/api/v2/fizzbuzz/stats"):
                response = client.get(path)
                assert response.status_code == 500
                assert response.json() == {"error": "statistics storage error"}
        assert "disk I/O error" in caplog.text

    def test_deadline_is_a_503(self):
        with self.make_client(DeadlineExceeded("increment")) as client:
            response = client.get("/api/v2/fizzbuzz")
            assert response.status_code == 503
            assert response.json() == {"error": "increment: deadline exceeded"}

    def test_invalid_input_is_rejected_before_the_store(self):
        with self.make_client(StorageError("unreachable")) as client:
            response = client.get("/api/v2/fizzbuzz?int1=0")
            assert response.status_code == 400

    def test_provided_store_is_not_closed(self):
        store = FailingStats(StorageError("x"))
        store.closed = False

        def close():
            store.closed = True

        store.close = close
        with TestClient(create_app(Settings(database_url="off", http_logging=False), stats=store)):
            pass
        assert store.closed is False


class TestAccessLog:
    def test_one_line_per_request(self, client, caplog):
        caplog.set_level(logging.INFO, logger=ACCESS_LOGGER)
        client.get("/api/v2/fizzbuzz?limit=3", headers={"X-Forwarded-For": "10.1.2.3, 192.168.0.1"})
        records = [r for r in caplog.records if r.name == ACCESS_LOGGER]
        assert len(records) == 1
        message = records[0].getMessage()
        assert message.startswith("10.1.2.3 ")
        assert message.endswith("s GET /api/v2/fizzbuzz?limit=3")

    def test_disabled(self, tmp_path, caplog):
        caplog.set_level(logging.INFO, logger=ACCESS_LOGGER)
        app = create_app(Settings(database_url="off", http_logging=False))
        with TestClient(app) as client:
            client.get("/api/v2/fizzbuzz")
        assert [r for r in caplog.records if r.name == ACCESS_LOGGER] == []
        assert logging.getLogger(ACCESS_LOGGER).level == logging.WARNING


class TestClientHost:
    @pytest.mark.parametrize(
        "headers, expected",
        [
            ([], "172.17.0.1"),
            ([(b"x-forwarded-for", b"10.0.0.1")], "10.0.0.1"),
            ([(b"x-forwarded-for", b" 2001:db8::1 , 10.0.0.2")], "2001:db8::1"),
            ([(b"x-forwarded-for", b"not-an-ip")], "172.17.0.1"),
        ],
    )
    def test_client_host(self, headers, expected):
        scope = {"type": "http", "headers": headers, "client": ("172.17.0.1", 51234)}
        assert client_host(scope) == expected

    def test_no_client(self):
        assert client_host({"type": "http", "headers": []}) == "-"
