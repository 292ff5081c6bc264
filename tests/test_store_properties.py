"""
Property-based tests for the key-value stores.

Covers the HMAC-protected JSON file store (round trip, tamper detection,
unreadable files) and the copy semantics of the in-memory store.
"""

import asyncio
import json
import tempfile
from pathlib import Path

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from page_risk.exceptions import StoreUnavailableError, TamperingError
from page_risk.store import InMemoryStore, JsonFileStore, KeyValueStore


json_values = st.recursive(
    st.one_of(
        st.none(),
        st.booleans(),
        st.integers(min_value=-10**6, max_value=10**6),
        st.text(alphabet=st.characters(blacklist_categories=("Cs",)), max_size=20),
    ),
    lambda children: st.one_of(
        st.lists(children, max_size=4),
        st.dictionaries(st.text(min_size=1, max_size=8), children, max_size=4),
    ),
    max_leaves=10,
)

store_items = st.dictionaries(
    st.sampled_from(["settings", "threatHistory", "evidenceList", "analysisHistory"]),
    json_values,
    min_size=1,
)

secrets = st.text(alphabet="abcdefghijklmnopqrstuvwxyz0123456789", min_size=8, max_size=32)


class TestFileStoreRoundTripProperty:
    """Values written are read back unchanged."""

    @given(items=store_items, secret=secrets)
    @settings(max_examples=50)
    def test_round_trip(self, items: dict, secret: str) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            store = JsonFileStore(Path(tmpdir) / "state.json", secret)

            async def scenario():
                await store.set(items)
                return await store.get(list(items) + ["missing"])

            loaded = asyncio.run(scenario())

        assert loaded == items
        assert "missing" not in loaded

    def test_set_merges_keys(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            store = JsonFileStore(Path(tmpdir) / "nested" / "state.json", "secret-key")

            async def scenario():
                await store.set({"a": 1})
                await store.set({"b": 2})
                return await store.get(["a", "b"])

            assert asyncio.run(scenario()) == {"a": 1, "b": 2}

    def test_missing_file_reads_empty(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            store = JsonFileStore(Path(tmpdir) / "absent.json", "secret-key")
            assert asyncio.run(store.get(["settings"])) == {}

    def test_empty_secret_rejected(self) -> None:
        with pytest.raises(ValueError):
            JsonFileStore(Path("state.json"), "")

    def test_satisfies_protocol(self) -> None:
        assert isinstance(JsonFileStore(Path("state.json"), "secret-key"), KeyValueStore)
        assert isinstance(InMemoryStore(), KeyValueStore)


class TestTamperDetectionProperty:
    """Any modification of the file outside the store is detected."""

    @given(items=store_items, secret=secrets)
    @settings(max_examples=50)
    def test_modified_data_rejected(self, items: dict, secret: str) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "state.json"
            store = JsonFileStore(path, secret)
            asyncio.run(store.set(items))

            raw = json.loads(path.read_text(encoding="utf-8"))
            raw["data"]["injected"] = True
            path.write_text(json.dumps(raw), encoding="utf-8")

            with pytest.raises(TamperingError):
                asyncio.run(store.get(["settings"]))

    @given(secret=secrets, other=secrets)
    @settings(max_examples=30)
    def test_wrong_secret_rejected(self, secret: str, other: str) -> None:
        if secret == other:
            other = other + "x"
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "state.json"
            asyncio.run(JsonFileStore(path, secret).set({"settings": {"privacyMode": True}}))

            with pytest.raises(TamperingError):
                asyncio.run(JsonFileStore(path, other).get(["settings"]))

    def test_tampering_is_a_store_failure(self) -> None:
        assert issubclass(TamperingError, StoreUnavailableError)

    def test_corrupt_file_unavailable(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "state.json"
            path.write_text("{truncated", encoding="utf-8")

            with pytest.raises(StoreUnavailableError) as exc_info:
                asyncio.run(JsonFileStore(path, "secret-key").get(["settings"]))
            assert exc_info.value.code == "parse_error"

    def test_hmac_is_deterministic(self) -> None:
        store = JsonFileStore(Path("state.json"), "secret-key")
        body = {"version": 1, "data": {"b": 1, "a": 2}, "last_updated": "x"}

        assert store.compute_hmac(body) == store.compute_hmac(dict(reversed(list(body.items()))))


class TestInMemoryStoreProperty:
    """Stored values are isolated from caller mutation."""

    @given(items=store_items)
    @settings(max_examples=50)
    def test_values_are_copied(self, items: dict) -> None:
        store = InMemoryStore()

        async def scenario():
            await store.set(items)
            first = await store.get(list(items))
            for value in first.values():
                if isinstance(value, list):
                    value.append("mutated")
                elif isinstance(value, dict):
                    value["mutated"] = True
            return await store.get(list(items))

        assert asyncio.run(scenario()) == items
