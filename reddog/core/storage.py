"""
Payload store for approved provider datasets.

The approval registry never writes payloads; the caller that approved a
request hands the result to a PayloadStore.
"""

import hashlib
import json
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Callable, List, Optional, Union
from datetime import datetime, timezone

from .schema import ApprovedPayload, StoredPayload, StoredPayloadRef, utcnow, validate_path_segment
from ..util.logging import logger

STAMP_FORMAT = "%Y%m%dT%H%M%S%fZ"


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Naive filter bounds are taken as UTC."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


class PayloadStore(ABC):
    """Abstract destination for approved payloads."""

    @abstractmethod
    def write(self, approved: ApprovedPayload) -> StoredPayload:
        """
        Persist an approved payload.

        Returns:
            StoredPayload with the location, size and sha256 checksum
        """
        ...

    @abstractmethod
    def list(self, provider: Optional[str] = None, data_type: Optional[str] = None,
             request_id: Optional[str] = None, since: Optional[datetime] = None,
             until: Optional[datetime] = None) -> List[StoredPayloadRef]:
        """Stored datasets matching every given filter, newest first."""
        ...


class LocalPayloadStore(PayloadStore):
    """
    Filesystem payload store.

    Files land at <provider>/<data_type>/<request_id>_<stamp>.json under the
    base directory, wrapped with the approval metadata. The stamp is the UTC
    store time, so listings need no index beyond the directory tree.
    """

    def __init__(self, base_dir: Union[str, Path], clock: Callable[[], datetime] = utcnow):
        self.base_dir = Path(base_dir).resolve()
        self.base_dir.mkdir(parents=True, exist_ok=True)
        self._clock = clock

    def _resolve_path(self, relative: str) -> Path:
        full_path = self.base_dir / Path(relative).as_posix().lstrip("/")
        try:
            full_path.resolve().relative_to(self.base_dir)
        except ValueError:
            raise ValueError(f"Invalid path: {relative} (outside base directory)")
        return full_path

    def write(self, approved: ApprovedPayload) -> StoredPayload:
        now = self._clock()
        stamp = now.astimezone(timezone.utc).strftime(STAMP_FORMAT)
        location = f"{approved.provider}/{approved.data_type}/{approved.request_id}_{stamp}.json"
        full_path = self._resolve_path(location)
        full_path.parent.mkdir(parents=True, exist_ok=True)

        document = {
            "approval_id": approved.approval_id,
            "request_id": approved.request_id,
            "provider": approved.provider,
            "data_type": approved.data_type,
            "approved_by": approved.approved_by,
            "approved_at": approved.approved_at.isoformat(),
            "stored_at": now.isoformat(),
            "metadata": {
                "record_count": approved.metadata.record_count,
                "byte_size": approved.metadata.byte_size,
                "source_metadata": approved.metadata.source_metadata,
            },
            "data": approved.payload,
        }
        content = json.dumps(document, indent=2, default=str).encode("utf-8")
        full_path.write_bytes(content)

        logger.log_operation("storage.write", "success", {"location": location, "size_bytes": len(content)})
        return StoredPayload(
            location=location,
            size_bytes=len(content),
            checksum=hashlib.sha256(content).hexdigest(),
        )

    def read(self, location: str) -> dict:
        full_path = self._resolve_path(location)
        if not full_path.is_file():
            raise FileNotFoundError(f"Payload not found: {location}")
        return json.loads(full_path.read_text(encoding="utf-8"))

    def list(self, provider: Optional[str] = None, data_type: Optional[str] = None,
             request_id: Optional[str] = None, since: Optional[datetime] = None,
             until: Optional[datetime] = None) -> List[StoredPayloadRef]:
        for name, value in (("provider", provider), ("data_type", data_type)):
            if value is not None:
                validate_path_segment(name, value)
        since, until = _as_utc(since), _as_utc(until)

        found = []
        for path in self.base_dir.glob(f"{provider or '*'}/{data_type or '*'}/*.json"):
            ref = self._parse_location(path)
            if ref is None:
                continue
            if request_id is not None and ref.request_id != request_id:
                continue
            if since is not None and ref.stored_at < since:
                continue
            if until is not None and ref.stored_at > until:
                continue
            found.append(ref)
        return sorted(found, key=lambda ref: ref.stored_at, reverse=True)

    def _parse_location(self, path: Path) -> Optional[StoredPayloadRef]:
        """None for files this store did not write."""
        request_id, _, stamp = path.stem.rpartition("_")
        if not request_id:
            return None
        try:
            stored_at = datetime.strptime(stamp, STAMP_FORMAT).replace(tzinfo=timezone.utc)
        except ValueError:
            return None

        relative = path.relative_to(self.base_dir)
        return StoredPayloadRef(
            location=relative.as_posix(),
            provider=relative.parts[0],
            data_type=relative.parts[1],
            request_id=request_id,
            stored_at=stored_at,
            size_bytes=path.stat().st_size,
        )
