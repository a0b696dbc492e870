from collections.abc import AsyncGenerator
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from hashlib import md5

from davstore.storage import (
    BackendRange,
    BodyConsumedError,
    ByteWindow,
    FixedLengthStream,
    HttpMetadata,
    ObjectStore,
    ObjectStoreError,
    OffsetWithLength,
    OffsetWithOptionalLength,
    OptionalOffsetWithLength,
    StoredObject,
)


@dataclass
class Object:
    body: bytes
    etag: str
    uploaded: datetime
    http_metadata: HttpMetadata
    custom_metadata: dict[str, str]


@dataclass
class MemoryBody:
    data: bytes
    start: int
    stop: int
    chunk_size: int
    consumed: bool = False

    def stream(self) -> AsyncGenerator[bytes, None]:
        if self.consumed:
            raise BodyConsumedError("body stream has already been opened")
        self.consumed = True
        return self._chunks()

    async def _chunks(self) -> AsyncGenerator[bytes, None]:
        view = memoryview(self.data)
        for pos in range(self.start, self.stop, self.chunk_size):
            yield bytes(view[pos : min(pos + self.chunk_size, self.stop)])

    async def aclose(self) -> None:
        self.consumed = True


def resolve_range(range: BackendRange | None, total: int) -> tuple[int, int]:
    """Return the [start, stop) slice of an object of `total` bytes."""
    match range:
        case None:
            return 0, total
        case OffsetWithLength(offset=offset, length=length):
            if length < 0:
                raise ObjectStoreError(f"invalid range: negative length {length}")
            start = min(offset, total)
            return start, min(start + length, total)
        case OffsetWithOptionalLength(offset=offset, length=None):
            return min(offset, total), total
        case OffsetWithOptionalLength(offset=offset, length=length):
            return resolve_range(OffsetWithLength(offset, length), total)
        case OptionalOffsetWithLength(offset=None, length=length):
            if length < 0:
                raise ObjectStoreError(f"invalid range: negative suffix {length}")
            return max(total - length, 0), total
        case OptionalOffsetWithLength(offset=offset, length=length):
            return resolve_range(OffsetWithLength(offset, length), total)
    raise ObjectStoreError(f"unsupported range {range!r}")


@dataclass
class InMemoryBackend(ObjectStore):
    storage: dict[str, Object] = field(default_factory=dict)
    chunk_size: int = 64 * 1024

    def _describe(self, key: str, obj: Object) -> StoredObject:
        return StoredObject(
            key=key,
            size=len(obj.body),
            etag=obj.etag,
            uploaded=obj.uploaded,
            http_metadata=obj.http_metadata,
            custom_metadata=dict(obj.custom_metadata),
        )

    async def get(self, key: str, range: BackendRange | None = None) -> StoredObject | None:
        obj = self.storage.get(key)
        if obj is None:
            return None
        start, stop = resolve_range(range, len(obj.body))
        return replace(
            self._describe(key, obj),
            window=ByteWindow(start, stop - start) if range is not None else None,
            body=MemoryBody(obj.body, start, stop, self.chunk_size),
        )

    async def head(self, key: str) -> StoredObject | None:
        obj = self.storage.get(key)
        if obj is None:
            return None
        return self._describe(key, obj)

    async def list(self, prefix: str) -> list[StoredObject]:
        return [
            self._describe(key, self.storage[key])
            for key in sorted(self.storage)
            if key.startswith(prefix)
        ]

    async def put(
        self,
        key: str,
        body: FixedLengthStream,
        http_metadata: HttpMetadata | None = None,
        custom_metadata: dict[str, str] | None = None,
    ) -> StoredObject:
        chunks = [chunk async for chunk in body]
        data = b"".join(chunks)
        obj = Object(
            body=data,
            etag=md5(data).hexdigest(),
            uploaded=datetime.now(timezone.utc),
            http_metadata=http_metadata or HttpMetadata(),
            custom_metadata=dict(custom_metadata or {}),
        )
        self.storage[key] = obj
        return self._describe(key, obj)

    async def delete(self, key: str) -> None:
        self.storage.pop(key, None)
