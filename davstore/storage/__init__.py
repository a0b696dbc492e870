from __future__ import annotations

from collections.abc import AsyncGenerator, AsyncIterator
from dataclasses import dataclass, field
from datetime import datetime
from typing import Protocol, Union


class ObjectStoreError(Exception):
    """Raised by backends for any transport or protocol failure."""


class BodyConsumedError(ObjectStoreError):
    pass


@dataclass(frozen=True)
class OffsetWithLength:
    offset: int
    length: int


@dataclass(frozen=True)
class OffsetWithOptionalLength:
    offset: int
    length: int | None = None


@dataclass(frozen=True)
class OptionalOffsetWithLength:
    # without an offset the backend serves the last `length` bytes
    length: int
    offset: int | None = None


BackendRange = Union[OffsetWithLength, OffsetWithOptionalLength, OptionalOffsetWithLength]


@dataclass(frozen=True)
class ByteWindow:
    offset: int
    length: int


@dataclass(frozen=True)
class HttpMetadata:
    content_type: str | None = None
    content_language: str | None = None
    content_disposition: str | None = None
    content_encoding: str | None = None
    cache_control: str | None = None
    cache_expiry: datetime | None = None


class ObjectBody(Protocol):
    def stream(self) -> AsyncGenerator[bytes, None]: ...

    async def aclose(self) -> None:
        """Release the underlying content, whether or not it was read."""
        ...


@dataclass
class FixedLengthStream:
    """An upload body whose total length is declared before it is read."""

    stream: AsyncIterator[bytes]
    length: int

    async def __aiter__(self) -> AsyncIterator[bytes]:
        seen = 0
        async for chunk in self.stream:
            seen += len(chunk)
            if seen > self.length:
                raise ObjectStoreError(
                    f"stream yielded more than the declared {self.length} bytes"
                )
            yield chunk
        if seen != self.length:
            raise ObjectStoreError(
                f"stream yielded {seen} bytes, expected {self.length}"
            )


@dataclass
class StoredObject:
    key: str
    size: int
    etag: str
    uploaded: datetime
    http_metadata: HttpMetadata = field(default_factory=HttpMetadata)
    custom_metadata: dict[str, str] = field(default_factory=dict)
    window: ByteWindow | None = None
    body: ObjectBody | None = None


class ObjectStore(Protocol):
    async def get(self, key: str, range: BackendRange | None = None) -> StoredObject | None: ...

    async def head(self, key: str) -> StoredObject | None: ...

    async def list(self, prefix: str) -> list[StoredObject]: ...

    async def put(
        self,
        key: str,
        body: FixedLengthStream,
        http_metadata: HttpMetadata | None = None,
        custom_metadata: dict[str, str] | None = None,
    ) -> StoredObject: ...

    async def delete(self, key: str) -> None: ...
