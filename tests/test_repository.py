"""
Tests for the cache repository: table naming, payload encoding, TTL expiry
and cleanup, against a real SQLite database.
"""

import json

import pytest
from sqlalchemy import inspect, select, update

from apicache.cache.repository import MAX_TABLE_NAME_LENGTH
from apicache.exceptions import DecompressionError, MalformedDataError, ValidationError


def sample_metadata(**overrides):
    metadata = {
        "endpoint": "/users",
        "version": "v1",
        "base_url": "https://demo.example.com",
        "full_url": "https://demo.example.com/users?page=1",
        "method": "GET",
        "request_headers": {"Accept": "application/json"},
        "request_body": None,
        "response_headers": {"Content-Type": "application/json"},
        "response_body": '{"users": [{"id": 1, "name": "Ada"}]}',
        "response_status_code": 200,
        "response_time": 0.25,
    }
    metadata.update(overrides)
    return metadata


# =============================================================================
# TABLE NAMES
# =============================================================================

class TestTableNames:
    """Table identity derived from client name and compression mode."""

    def test_plain_table(self, repository):
        assert repository.get_table_name("demo") == "api_cache_demo_responses"

    def test_compressed_table(self, repository):
        assert repository.get_table_name("demo_compressed") == (
            "api_cache_demo_compressed_responses_compressed"
        )

    def test_explicit_mode(self, repository):
        assert repository.get_table_name("demo", compressed=True) == (
            "api_cache_demo_responses_compressed"
        )

    def test_special_characters_sanitized(self, repository):
        assert repository.get_table_name("my-client.v2") == "api_cache_my_client_v2_responses"

    def test_underscores_collapsed(self, repository):
        assert repository.get_table_name("a--b") == "api_cache_a_b_responses"

    def test_long_name_fits(self, repository):
        name = repository.get_table_name("x" * 200, compressed=True)
        assert len(name) <= MAX_TABLE_NAME_LENGTH
        assert name.endswith("_responses_compressed")

    def test_deterministic(self, repository):
        assert repository.get_table_name("client-a") == repository.get_table_name("client-a")

    def test_long_name_differs_by_mode(self, repository):
        client = "a-very-long-client-name-that-exceeds-limits"
        assert repository.get_table_name(client, compressed=True) != repository.get_table_name(client, compressed=False)

    def test_invalid_name(self, repository):
        with pytest.raises(ValidationError):
            repository.get_table_name("___")

    def test_tables_created(self, repository, engine):
        names = inspect(engine).get_table_names()
        assert "api_cache_demo_responses" in names
        assert "api_cache_demo_compressed_responses_compressed" in names
        assert repository.table_exists("demo")


# =============================================================================
# PAYLOAD ENCODING
# =============================================================================

class TestPayloadEncoding:
    """prepare_*/retrieve_* are inverses in both storage modes."""

    @pytest.mark.parametrize("compressed", [False, True])
    @pytest.mark.parametrize("headers", [None, {}, {"Content-Type": "application/json", "X-Count": 3}])
    def test_headers_round_trip(self, repository, compressed, headers):
        stored = repository.prepare_headers(headers, compressed=compressed)
        assert repository.retrieve_headers(stored, compressed=compressed) == headers

    @pytest.mark.parametrize("compressed", [False, True])
    @pytest.mark.parametrize("body", [None, "", '{"a":1}', "räksmörgås " * 500])
    def test_body_round_trip(self, repository, compressed, body):
        stored = repository.prepare_body(body, compressed=compressed)
        assert repository.retrieve_body(stored, compressed=compressed) == body

    def test_compressed_body_is_bytes(self, repository):
        assert isinstance(repository.prepare_body("x", compressed=True), bytes)

    def test_invalid_header_json(self, repository):
        with pytest.raises(MalformedDataError):
            repository.retrieve_headers("not json", compressed=False)


# =============================================================================
# STORE / GET
# =============================================================================

class TestStoreAndGet:
    """Round trips in both storage modes."""

    @pytest.mark.parametrize("client", ["demo", "demo_compressed"])
    def test_round_trip(self, repository, client):
        repository.store(client, "k1", sample_metadata())
        entry = repository.get(client, "k1")

        assert entry is not None
        assert entry.key == "k1"
        assert entry.client == client
        assert entry.endpoint == "/users"
        assert entry.version == "v1"
        assert entry.response_body == '{"users": [{"id": 1, "name": "Ada"}]}'
        assert entry.request_headers == {"Accept": "application/json"}
        assert entry.response_headers == {"Content-Type": "application/json"}
        assert entry.request_body is None
        assert entry.response_status_code == 200
        assert entry.expires_at is None

    def test_compressed_table_holds_bytes(self, repository, engine):
        repository.store("demo_compressed", "k1", sample_metadata())
        table = repository.get_table("demo_compressed")
        with engine.connect() as conn:
            stored = conn.execute(select(table.c.response_body)).scalar()
        assert isinstance(stored, bytes)
        assert stored[:1] in (b"\x01", b"\x02")

    def test_response_size_defaults_to_utf8_length(self, repository):
        repository.store("demo", "k1", sample_metadata(response_body='{"name": "Åsa"}'))
        assert repository.get("demo", "k1").response_size == len('{"name": "Åsa"}'.encode("utf-8"))

    def test_summary_truncated(self, repository):
        repository.store("demo", "k1", sample_metadata(request_params_summary="x" * 300))
        assert len(repository.get("demo", "k1").request_params_summary) == 255

    def test_missing_endpoint(self, repository):
        with pytest.raises(ValidationError, match="endpoint"):
            repository.store("demo", "k1", sample_metadata(endpoint=None))

    def test_missing_response_body(self, repository):
        with pytest.raises(ValidationError, match="response_body"):
            repository.store("demo", "k1", sample_metadata(response_body=None))

    def test_unknown_key(self, repository):
        assert repository.get("demo", "missing") is None

    def test_empty_body_allowed(self, repository):
        repository.store("demo", "k1", sample_metadata(response_body=""))
        assert repository.get("demo", "k1").response_body == ""

    def test_corrupt_compressed_body(self, repository, engine):
        repository.store("demo_compressed", "k1", sample_metadata())
        table = repository.get_table("demo_compressed")
        with engine.begin() as conn:
            conn.execute(update(table).values(response_body=b"\x01garbage"))
        with pytest.raises(DecompressionError):
            repository.get("demo_compressed", "k1")

    def test_headers_not_a_map(self, repository, engine):
        repository.store("demo", "k1", sample_metadata())
        table = repository.get_table("demo")
        with engine.begin() as conn:
            conn.execute(update(table).values(response_headers=json.dumps(["a", "b"])))
        with pytest.raises(MalformedDataError):
            repository.get("demo", "k1")


# =============================================================================
# EXPIRY AND CLEANUP
# =============================================================================

class TestExpiry:
    """TTL handling with an injected clock."""

    def test_entry_expires(self, repository, clock):
        repository.store("demo", "k1", sample_metadata(), ttl=60)
        assert repository.get("demo", "k1") is not None

        clock.advance(59)
        assert repository.get("demo", "k1") is not None

        clock.advance(1)
        assert repository.get("demo", "k1") is None

    def test_zero_ttl_never_expires(self, repository, clock):
        repository.store("demo", "k1", sample_metadata(), ttl=0)
        clock.advance(10 ** 8)
        assert repository.get("demo", "k1") is not None

    def test_counts(self, repository, clock):
        repository.store("demo", "short", sample_metadata(), ttl=10)
        repository.store("demo", "long", sample_metadata(), ttl=1000)
        repository.store("demo", "forever", sample_metadata())
        clock.advance(100)

        assert repository.count_total_responses("demo") == 3
        assert repository.count_active_responses("demo") == 2
        assert repository.count_expired_responses("demo") == 1

    def test_delete_expired(self, repository, clock):
        repository.store("demo", "short", sample_metadata(), ttl=10)
        repository.store("demo", "forever", sample_metadata())
        clock.advance(100)

        assert repository.delete_expired("demo") == 1
        assert repository.count_total_responses("demo") == 1
        assert repository.delete_expired("demo") == 0

    def test_cleanup_all_clients(self, repository, clock):
        repository.store("demo", "a", sample_metadata(), ttl=10)
        repository.store("demo_compressed", "b", sample_metadata(), ttl=10)
        repository.store("demo_compressed", "c", sample_metadata(), ttl=10)
        clock.advance(100)

        assert repository.cleanup() == {"demo": 1, "demo_compressed": 2, "dataforseo": 0}

    def test_cleanup_skips_missing_tables(self, repository):
        assert repository.cleanup("not_created") == {}

    def test_clear_table(self, repository):
        repository.store("demo", "a", sample_metadata())
        repository.store("demo", "b", sample_metadata())
        assert repository.clear_table("demo") == 2
        assert repository.count_total_responses("demo") == 0


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
