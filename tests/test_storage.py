"""
Payload store tests.
"""

import hashlib
import pytest
from datetime import timedelta

from reddog.core.schema import ApprovalMetadata, ApprovedPayload


def _approved(clock, provider="john-deere", request_id="req-001", data_type="yield"):
    return ApprovedPayload(
        approval_id="approval-1",
        request_id=request_id,
        provider=provider,
        data_type=data_type,
        payload={"records": [{"bushels": 180}]},
        metadata=ApprovalMetadata(record_count=1, byte_size=28, source_metadata={"season": "2025"}),
        approved_by="alice",
        approved_at=clock.now,
    )


class TestLocalPayloadStore:

    def test_write_layout(self, payload_store, clock):
        stored = payload_store.write(_approved(clock))

        assert stored.location.startswith("john-deere/yield/req-001_")
        assert stored.location.endswith(".json")
        path = payload_store.base_dir / stored.location
        assert path.is_file()
        assert stored.size_bytes == path.stat().st_size
        assert stored.checksum == hashlib.sha256(path.read_bytes()).hexdigest()

    def test_document_wraps_payload(self, payload_store, clock):
        stored = payload_store.write(_approved(clock))
        document = payload_store.read(stored.location)

        assert document["data"] == {"records": [{"bushels": 180}]}
        assert document["approved_by"] == "alice"
        assert document["metadata"]["source_metadata"] == {"season": "2025"}

    def test_rejects_paths_outside_base(self, payload_store, clock):
        with pytest.raises(ValueError, match="outside base directory"):
            payload_store.write(_approved(clock, provider="../../etc"))

    def test_read_missing(self, payload_store):
        with pytest.raises(FileNotFoundError):
            payload_store.read("nope/nothing.json")

    def test_location_stamp_is_utc_store_time(self, payload_store, clock):
        stored = payload_store.write(_approved(clock, request_id="req_with_underscores"))

        assert stored.location == "john-deere/yield/req_with_underscores_20260301T090000000000Z.json"
        [ref] = payload_store.list()
        assert ref.request_id == "req_with_underscores"
        assert ref.stored_at == clock.now


class TestListing:

    @pytest.fixture
    def stored(self, payload_store, clock):
        locations = []
        for provider, data_type, request_id in [
            ("john-deere", "yield", "req-001"),
            ("john-deere", "boundaries", "req-002"),
            ("climate-fieldview", "yield", "req-003"),
        ]:
            locations.append(payload_store.write(_approved(clock, provider, request_id, data_type)).location)
            clock.advance(hours=1)
        return locations

    def test_newest_first(self, payload_store, stored):
        refs = payload_store.list()
        assert [ref.location for ref in refs] == list(reversed(stored))
        assert all(ref.size_bytes > 0 for ref in refs)

    def test_filters(self, payload_store, stored):
        assert [r.request_id for r in payload_store.list(provider="john-deere")] == ["req-002", "req-001"]
        assert [r.request_id for r in payload_store.list(data_type="yield")] == ["req-003", "req-001"]
        assert [r.location for r in payload_store.list(request_id="req-002")] == [stored[1]]
        assert payload_store.list(provider="john-deere", data_type="yield")[0].location == stored[0]
        assert payload_store.list(provider="nobody") == []

    def test_time_window(self, payload_store, stored, clock):
        start = clock.now - timedelta(hours=3)

        since = payload_store.list(since=start + timedelta(hours=1))
        assert [r.request_id for r in since] == ["req-003", "req-002"]

        until = payload_store.list(until=start + timedelta(hours=1))
        assert [r.request_id for r in until] == ["req-002", "req-001"]

    def test_ignores_foreign_files(self, payload_store, stored):
        (payload_store.base_dir / "john-deere" / "yield" / "notes.json").write_text("{}")
        assert len(payload_store.list()) == 3

    def test_rejects_unsafe_filters(self, payload_store):
        with pytest.raises(ValueError, match="provider"):
            payload_store.list(provider="../..")
        with pytest.raises(ValueError, match="data_type"):
            payload_store.list(data_type="*")

    def test_naive_bounds_are_utc(self, payload_store, stored, clock):
        naive = (clock.now - timedelta(hours=1)).replace(tzinfo=None)
        assert [r.request_id for r in payload_store.list(since=naive)] == ["req-003"]
