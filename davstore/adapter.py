from __future__ import annotations

import logging
from collections.abc import AsyncGenerator, AsyncIterator, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from types import TracebackType

from davstore.errors import BackendError, BodyUnavailable, NotFound
from davstore.storage import (
    FixedLengthStream,
    HttpMetadata,
    ObjectBody,
    ObjectStore,
    ObjectStoreError,
    StoredObject,
)
from davstore.values import Range, ResourceProperties, ResponseHeaders, to_backend_range

logger = logging.getLogger(__name__)


@contextmanager
def backend_errors(operation: str, key: str) -> Iterator[None]:
    try:
        yield
    except ObjectStoreError as exc:
        logger.warning("%s %r failed: %s", operation, key, exc)
        raise BackendError(str(exc)) from exc


class ByteStream:
    """Lazy, single pass download body.

    Chunks are pulled from the backend only as the caller iterates.
    Closing the stream, or exhausting it, releases the backend body even
    if nothing was read.
    """

    def __init__(
        self, key: str, source: AsyncGenerator[bytes, None], body: ObjectBody
    ) -> None:
        self.key = key
        self._source = source
        self._body = body
        self._closed = False

    def __aiter__(self) -> ByteStream:
        return self

    async def __anext__(self) -> bytes:
        if self._closed:
            raise StopAsyncIteration
        try:
            return await self._source.__anext__()
        except StopAsyncIteration:
            await self.aclose()
            raise
        except ObjectStoreError as exc:
            await self.aclose()
            raise BackendError(str(exc)) from exc

    async def aclose(self) -> None:
        if self._closed:
            return
        self._closed = True
        await release(self._source, self._body)

    async def __aenter__(self) -> ByteStream:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.aclose()


async def open_body(obj: StoredObject) -> tuple[AsyncGenerator[bytes, None], ObjectBody]:
    body = obj.body
    if body is None:
        raise BodyUnavailable(obj.key)
    try:
        return body.stream(), body
    except ObjectStoreError as exc:
        await body.aclose()
        raise BodyUnavailable(obj.key, str(exc)) from exc


async def release(source: AsyncGenerator[bytes, None], body: ObjectBody) -> None:
    # a generator closed before its first step never runs its cleanup
    try:
        await source.aclose()
    finally:
        await body.aclose()


@dataclass(frozen=True)
class StorageAdapter:
    """Maps file-style operations onto an object store.

    Every operation is a single attempt: backend failures surface as
    `BackendError`, a missing object as `NotFound`, and an object whose
    content cannot be streamed as `BodyUnavailable`.
    """

    store: ObjectStore

    async def get(
        self, path: str
    ) -> tuple[str, ResourceProperties, ResponseHeaders, dict[str, str]]:
        with backend_errors("get", path):
            obj = await self.store.head(path)
        if obj is None:
            raise NotFound(path)
        return (
            obj.key,
            ResourceProperties.from_object(obj),
            ResponseHeaders.from_object(obj),
            dict(obj.custom_metadata),
        )

    async def list(self, prefix: str) -> list[tuple[str, ResourceProperties]]:
        with backend_errors("list", prefix):
            objects = await self.store.list(prefix)
        result: list[tuple[str, ResourceProperties]] = []
        for obj in objects:
            logger.debug("Access %s", obj.key)
            result.append((obj.key, ResourceProperties.from_object(obj)))
        return result

    async def patch_metadata(self, path: str, metadata: dict[str, str]) -> dict[str, str]:
        """Replace the custom metadata of `path`, keeping its content.

        The object is re-uploaded from its own body stream with the size
        declared up front, so the content never sits in memory as a whole.
        The new map replaces the old one; keys are not merged.
        """
        with backend_errors("patch_metadata", path):
            obj = await self.store.get(path)
        if obj is None:
            raise NotFound(path)
        stream, body = await open_body(obj)
        try:
            with backend_errors("patch_metadata", path):
                written = await self.store.put(
                    path,
                    FixedLengthStream(stream, obj.size),
                    http_metadata=obj.http_metadata,
                    custom_metadata=dict(metadata),
                )
        finally:
            await release(stream, body)
        return dict(written.custom_metadata)

    async def download(
        self, path: str, range: Range
    ) -> tuple[ResourceProperties, ResponseHeaders, ByteStream]:
        with backend_errors("download", path):
            obj = await self.store.get(path, range=to_backend_range(range))
        if obj is None:
            raise NotFound(path)
        source, body = await open_body(obj)
        stream = ByteStream(path, source, body)
        return ResourceProperties.from_object(obj), ResponseHeaders.from_object(obj), stream

    async def delete(self, path: str) -> None:
        with backend_errors("delete", path):
            await self.store.delete(path)

    async def put(
        self,
        path: str,
        stream: AsyncIterator[bytes],
        content_length: int,
        content_type: str | None = None,
    ) -> ResourceProperties:
        http_metadata = HttpMetadata(content_type=content_type) if content_type else None
        with backend_errors("put", path):
            obj = await self.store.put(
                path, FixedLengthStream(stream, content_length), http_metadata=http_metadata
            )
        return ResourceProperties.from_object(obj)
