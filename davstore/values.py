from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from email.utils import format_datetime

from davstore.storage import (
    BackendRange,
    OffsetWithLength,
    OffsetWithOptionalLength,
    OptionalOffsetWithLength,
    StoredObject,
)


def http_date(value: datetime) -> str:
    return format_datetime(value.astimezone(timezone.utc), usegmt=True)


@dataclass(frozen=True)
class Range:
    """Inclusive byte offsets requested by the client; either end may be open."""

    start: int | None = None
    end: int | None = None

    def __bool__(self) -> bool:
        return self.start is not None or self.end is not None


def to_backend_range(range: Range) -> BackendRange | None:
    """Translate a client range into the backend's range addressing.

    No bounds or ordering checks are made here; an inverted range is
    handed to the backend as is.
    """
    match (range.start, range.end):
        case (int() as start, int() as end):
            return OffsetWithLength(offset=start, length=end - start + 1)
        case (int() as start, None):
            return OffsetWithOptionalLength(offset=start)
        case (None, int() as end):
            return OptionalOffsetWithLength(length=end)
        case (None, None):
            return None
    raise TypeError(f"invalid range {range!r}")


@dataclass(frozen=True)
class ResourceProperties:
    key: str
    size: int
    content_type: str | None
    content_language: str | None
    last_modified: datetime
    etag: str
    custom_metadata: dict[str, str] = field(default_factory=dict)

    @property
    def display_name(self) -> str:
        return self.key.rstrip("/").rsplit("/", 1)[-1]

    @classmethod
    def from_object(cls, obj: StoredObject) -> ResourceProperties:
        return cls(
            key=obj.key,
            size=obj.size,
            content_type=obj.http_metadata.content_type,
            content_language=obj.http_metadata.content_language,
            last_modified=obj.uploaded,
            etag=obj.etag,
            custom_metadata=dict(obj.custom_metadata),
        )


@dataclass(frozen=True)
class ResponseHeaders:
    content_length: int
    etag: str
    last_modified: datetime
    content_type: str | None = None
    content_language: str | None = None
    content_disposition: str | None = None
    content_encoding: str | None = None
    cache_control: str | None = None
    cache_expiry: datetime | None = None
    content_range: str | None = None

    @classmethod
    def from_object(cls, obj: StoredObject) -> ResponseHeaders:
        meta = obj.http_metadata
        content_length = obj.size
        content_range = None
        if obj.window is not None and obj.window.length > 0:
            content_length = obj.window.length
            last = obj.window.offset + obj.window.length - 1
            content_range = f"bytes {obj.window.offset}-{last}/{obj.size}"
        elif obj.window is not None:
            content_length = 0
        return cls(
            content_length=content_length,
            etag=obj.etag,
            last_modified=obj.uploaded,
            content_type=meta.content_type,
            content_language=meta.content_language,
            content_disposition=meta.content_disposition,
            content_encoding=meta.content_encoding,
            cache_control=meta.cache_control,
            cache_expiry=meta.cache_expiry,
            content_range=content_range,
        )

    def as_dict(self) -> dict[str, str]:
        headers = {
            "Content-Length": str(self.content_length),
            "ETag": f'"{self.etag}"',
            "Last-Modified": http_date(self.last_modified),
        }
        optional = {
            "Content-Type": self.content_type,
            "Content-Language": self.content_language,
            "Content-Disposition": self.content_disposition,
            "Content-Encoding": self.content_encoding,
            "Cache-Control": self.cache_control,
            "Content-Range": self.content_range,
        }
        headers.update({name: value for name, value in optional.items() if value})
        if self.cache_expiry is not None:
            headers["Expires"] = http_date(self.cache_expiry)
        return headers
