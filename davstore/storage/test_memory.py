from collections.abc import AsyncIterator

import pytest

from davstore.storage import (
    BodyConsumedError,
    ByteWindow,
    FixedLengthStream,
    HttpMetadata,
    ObjectStoreError,
    OffsetWithLength,
    OffsetWithOptionalLength,
    OptionalOffsetWithLength,
)
from davstore.storage.memory import InMemoryBackend, resolve_range


async def body(data: bytes) -> AsyncIterator[bytes]:
    yield data


@pytest.mark.parametrize(
    "range, expected",
    [
        (None, (0, 11)),
        (OffsetWithLength(offset=6, length=5), (6, 11)),
        (OffsetWithLength(offset=6, length=50), (6, 11)),
        (OffsetWithLength(offset=20, length=5), (11, 11)),
        (OffsetWithOptionalLength(offset=2), (2, 11)),
        (OffsetWithOptionalLength(offset=2, length=3), (2, 5)),
        (OptionalOffsetWithLength(length=3), (8, 11)),
        (OptionalOffsetWithLength(length=30), (0, 11)),
        (OptionalOffsetWithLength(offset=1, length=3), (1, 4)),
    ],
)
def test_resolve_range(range: object, expected: tuple[int, int]) -> None:
    assert resolve_range(range, 11) == expected  # type: ignore[arg-type]


@pytest.mark.parametrize(
    "range",
    [OffsetWithLength(offset=5, length=-1), OptionalOffsetWithLength(length=-2)],
)
def test_resolve_negative_range(range: object) -> None:
    with pytest.raises(ObjectStoreError):
        resolve_range(range, 11)  # type: ignore[arg-type]


@pytest.mark.anyio
async def test_put_and_get() -> None:
    store = InMemoryBackend(chunk_size=2)
    written = await store.put(
        "k",
        FixedLengthStream(body(b"abcdef"), 6),
        http_metadata=HttpMetadata(content_type="text/plain"),
        custom_metadata={"a": "1"},
    )
    assert written.size == 6
    assert written.custom_metadata == {"a": "1"}
    assert written.etag == "e80b5017098950fc58aad83c8c14978e"

    obj = await store.get("k", OffsetWithLength(offset=1, length=4))
    assert obj is not None and obj.body is not None
    assert obj.window == ByteWindow(offset=1, length=4)
    assert obj.http_metadata.content_type == "text/plain"
    assert [chunk async for chunk in obj.body.stream()] == [b"bc", b"de"]


@pytest.mark.anyio
async def test_body_opens_once() -> None:
    store = InMemoryBackend()
    await store.put("k", FixedLengthStream(body(b"abc"), 3))
    obj = await store.get("k")
    assert obj is not None and obj.body is not None
    obj.body.stream()
    with pytest.raises(BodyConsumedError):
        obj.body.stream()


@pytest.mark.anyio
async def test_head_has_no_body() -> None:
    store = InMemoryBackend()
    await store.put("k", FixedLengthStream(body(b"abc"), 3))
    obj = await store.head("k")
    assert obj is not None
    assert obj.body is None
    assert obj.window is None
    assert await store.head("missing") is None
    assert await store.get("missing") is None


@pytest.mark.anyio
async def test_put_rejects_length_mismatch() -> None:
    store = InMemoryBackend()
    with pytest.raises(ObjectStoreError, match="expected 4"):
        await store.put("k", FixedLengthStream(body(b"abc"), 4))
    with pytest.raises(ObjectStoreError, match="more than the declared 2"):
        await store.put("k", FixedLengthStream(body(b"abc"), 2))
    assert store.storage == {}


@pytest.mark.anyio
async def test_list_and_delete() -> None:
    store = InMemoryBackend()
    for key in ["b/2", "a/1", "b/1"]:
        await store.put(key, FixedLengthStream(body(b"x"), 1))
    assert [obj.key for obj in await store.list("b/")] == ["b/1", "b/2"]
    await store.delete("b/1")
    await store.delete("b/1")
    assert [obj.key for obj in await store.list("")] == ["a/1", "b/2"]
