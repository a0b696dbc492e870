from __future__ import annotations

from collections.abc import AsyncGenerator, AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any

import boto3
from anyio import to_thread
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError
from httpx import AsyncClient, HTTPError, Response

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
from davstore.values import http_date

META_PREFIX = "x-amz-meta-"


def range_header(range: BackendRange | None) -> str | None:
    match range:
        case None:
            return None
        case OffsetWithLength(offset=offset, length=length):
            return f"bytes={offset}-{offset + length - 1}"
        case OffsetWithOptionalLength(offset=offset, length=None):
            return f"bytes={offset}-"
        case OffsetWithOptionalLength(offset=offset, length=length):
            return f"bytes={offset}-{offset + length - 1}"
        case OptionalOffsetWithLength(offset=None, length=length):
            return f"bytes=-{length}"
        case OptionalOffsetWithLength(offset=offset, length=length):
            return f"bytes={offset}-{offset + length - 1}"
    raise ObjectStoreError(f"unsupported range {range!r}")


def _parse_date(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        return parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None


def describe_response(key: str, response: Response, body: S3Body | None = None) -> StoredObject:
    headers = response.headers
    window = None
    content_range = headers.get("Content-Range")
    if content_range:
        # bytes <first>-<last>/<total>
        span, _, total = content_range.removeprefix("bytes ").partition("/")
        first, _, last = span.partition("-")
        size = int(total)
        window = ByteWindow(int(first), int(last) - int(first) + 1)
    else:
        size = int(headers.get("Content-Length", "0"))
    return StoredObject(
        key=key,
        size=size,
        etag=headers.get("ETag", "").strip('"'),
        uploaded=_parse_date(headers.get("Last-Modified")) or datetime.now(timezone.utc),
        http_metadata=HttpMetadata(
            content_type=headers.get("Content-Type"),
            content_language=headers.get("Content-Language"),
            content_disposition=headers.get("Content-Disposition"),
            content_encoding=headers.get("Content-Encoding"),
            cache_control=headers.get("Cache-Control"),
            cache_expiry=_parse_date(headers.get("Expires")),
        ),
        custom_metadata={
            name[len(META_PREFIX) :]: value
            for name, value in headers.items()
            if name.lower().startswith(META_PREFIX)
        },
        window=window,
        body=body,
    )


def http_metadata_headers(meta: HttpMetadata) -> dict[str, str]:
    headers = {
        "Content-Type": meta.content_type,
        "Content-Language": meta.content_language,
        "Content-Disposition": meta.content_disposition,
        "Content-Encoding": meta.content_encoding,
        "Cache-Control": meta.cache_control,
    }
    result = {name: value for name, value in headers.items() if value}
    if meta.cache_expiry is not None:
        result["Expires"] = http_date(meta.cache_expiry)
    return result


async def _raise_for_status(response: Response, key: str) -> None:
    if response.is_success:
        return
    await response.aread()
    raise ObjectStoreError(
        f"{response.request.method} {key} failed with {response.status_code}: {response.text}"
    )


@dataclass
class S3Body:
    response: Response
    consumed: bool = False

    def stream(self) -> AsyncGenerator[bytes, None]:
        if self.consumed:
            raise BodyConsumedError("body stream has already been opened")
        self.consumed = True
        return self._chunks()

    async def _chunks(self) -> AsyncGenerator[bytes, None]:
        try:
            async for chunk in self.response.aiter_bytes():
                yield chunk
        except HTTPError as exc:
            raise ObjectStoreError(str(exc)) from exc
        finally:
            await self.response.aclose()

    async def aclose(self) -> None:
        await self.response.aclose()


@dataclass
class S3Storage(ObjectStore):
    client: AsyncClient
    s3: Any
    bucket: str
    url_expiry: int = 300

    @classmethod
    @asynccontextmanager
    async def connect(
        cls,
        bucket: str,
        access_key_id: str,
        access_key_secret: str,
        region: str,
        endpoint: str | None = None,
    ) -> AsyncIterator[S3Storage]:
        # used for request signing and listing only, content goes through httpx
        s3 = boto3.client(
            "s3",
            region_name=region,
            endpoint_url=endpoint,
            aws_access_key_id=access_key_id,
            aws_secret_access_key=access_key_secret,
            config=BotoConfig(signature_version="s3v4", s3={"addressing_style": "path"}),
        )
        async with AsyncClient() as client:
            yield cls(client, s3, bucket)

    def _signed_url(self, operation: str, key: str, **params: Any) -> str:
        try:
            return self.s3.generate_presigned_url(
                operation,
                Params={"Bucket": self.bucket, "Key": key, **params},
                ExpiresIn=self.url_expiry,
            )
        except (BotoCoreError, ClientError) as exc:
            raise ObjectStoreError(str(exc)) from exc

    async def _send(self, method: str, url: str, key: str, **kwargs: Any) -> Response:
        request = self.client.build_request(method, url, **kwargs)
        try:
            return await self.client.send(request, stream=True)
        except HTTPError as exc:
            raise ObjectStoreError(f"{method} {key} failed: {exc}") from exc

    async def get(self, key: str, range: BackendRange | None = None) -> StoredObject | None:
        headers: dict[str, str] = {}
        header = range_header(range)
        if header is not None:
            headers["Range"] = header
        response = await self._send("GET", self._signed_url("get_object", key), key, headers=headers)
        if response.status_code == 404:
            await response.aclose()
            return None
        await _raise_for_status(response, key)
        return describe_response(key, response, body=S3Body(response))

    async def head(self, key: str) -> StoredObject | None:
        response = await self._send("HEAD", self._signed_url("head_object", key), key)
        if response.status_code == 404:
            await response.aclose()
            return None
        await _raise_for_status(response, key)
        await response.aclose()
        return describe_response(key, response)

    async def list(self, prefix: str) -> list[StoredObject]:
        def list_all() -> list[dict[str, Any]]:
            paginator = self.s3.get_paginator("list_objects_v2")
            return [
                obj
                for page in paginator.paginate(Bucket=self.bucket, Prefix=prefix)
                for obj in page.get("Contents", [])
            ]

        try:
            contents = await to_thread.run_sync(list_all)
        except (BotoCoreError, ClientError) as exc:
            raise ObjectStoreError(str(exc)) from exc
        return [
            StoredObject(
                key=obj["Key"],
                size=int(obj["Size"]),
                etag=str(obj.get("ETag", "")).strip('"'),
                uploaded=obj["LastModified"],
            )
            for obj in contents
        ]

    async def put(
        self,
        key: str,
        body: FixedLengthStream,
        http_metadata: HttpMetadata | None = None,
        custom_metadata: dict[str, str] | None = None,
    ) -> StoredObject:
        http_metadata = http_metadata or HttpMetadata()
        custom_metadata = dict(custom_metadata or {})
        url = self._signed_url("put_object", key, Metadata=custom_metadata)
        headers = {
            "Content-Length": str(body.length),
            **http_metadata_headers(http_metadata),
            **{f"{META_PREFIX}{name}": value for name, value in custom_metadata.items()},
        }
        response = await self._send("PUT", url, key, content=body, headers=headers)
        await _raise_for_status(response, key)
        await response.aclose()
        return StoredObject(
            key=key,
            size=body.length,
            etag=response.headers.get("ETag", "").strip('"'),
            uploaded=_parse_date(response.headers.get("Date")) or datetime.now(timezone.utc),
            http_metadata=http_metadata,
            custom_metadata=custom_metadata,
        )

    async def delete(self, key: str) -> None:
        response = await self._send("DELETE", self._signed_url("delete_object", key), key)
        if response.status_code != 404:
            await _raise_for_status(response, key)
        await response.aclose()
