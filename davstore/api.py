from dataclasses import dataclass
from typing import Annotated
from urllib.parse import quote
from xml.etree import ElementTree as ET

from fastapi import APIRouter, Depends, HTTPException, Header, Request, Response
from fastapi.responses import StreamingResponse
from starlette.background import BackgroundTask

from davstore.adapter import StorageAdapter
from davstore.depends import Injected
from davstore.errors import StorageAdapterError
from davstore.values import Range, ResourceProperties, http_date

DAV_NS = "DAV:"
META_NS = "urn:davstore:metadata"

ET.register_namespace("D", DAV_NS)
ET.register_namespace("m", META_NS)

router = APIRouter()
dav = APIRouter()


@dataclass
class Config:
    prefix: str = "/dav"


@router.get("/health")
async def health() -> Response:
    return Response(status_code=200)


async def adapter_error_handler(request: Request, exc: StorageAdapterError) -> Response:
    return Response(status_code=exc.status_code, content=str(exc))


def range_from_header(range: Annotated[str | None, Header()] = None) -> Range:
    if range is None:
        return Range()
    if not range.startswith("bytes=") or "," in range:
        raise HTTPException(status_code=400, detail="Invalid range header")
    start, sep, end = range[6:].strip().partition("-")
    if not sep or not (start or end):
        raise HTTPException(status_code=400, detail="Invalid range header")
    try:
        return Range(start=int(start) if start else None, end=int(end) if end else None)
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid range header") from None


def _href(config: Config, key: str) -> str:
    return f"{config.prefix}/{quote(key)}"


def _multistatus() -> ET.Element:
    return ET.Element(f"{{{DAV_NS}}}multistatus")


def _add_response(root: ET.Element, href: str) -> ET.Element:
    """Append a <response> with a single 200 propstat and return its <prop>."""
    response = ET.SubElement(root, f"{{{DAV_NS}}}response")
    ET.SubElement(response, f"{{{DAV_NS}}}href").text = href
    propstat = ET.SubElement(response, f"{{{DAV_NS}}}propstat")
    prop = ET.SubElement(propstat, f"{{{DAV_NS}}}prop")
    ET.SubElement(propstat, f"{{{DAV_NS}}}status").text = "HTTP/1.1 200 OK"
    return prop


def _add_metadata(prop: ET.Element, metadata: dict[str, str]) -> None:
    for name, value in metadata.items():
        ET.SubElement(prop, f"{{{META_NS}}}{name}").text = value


def render_properties(config: Config, entries: list[tuple[str, ResourceProperties]]) -> bytes:
    root = _multistatus()
    for key, properties in entries:
        prop = _add_response(root, _href(config, key))
        ET.SubElement(prop, f"{{{DAV_NS}}}displayname").text = properties.display_name
        ET.SubElement(prop, f"{{{DAV_NS}}}resourcetype")
        ET.SubElement(prop, f"{{{DAV_NS}}}getcontentlength").text = str(properties.size)
        if properties.content_type:
            ET.SubElement(prop, f"{{{DAV_NS}}}getcontenttype").text = properties.content_type
        if properties.content_language:
            ET.SubElement(prop, f"{{{DAV_NS}}}getcontentlanguage").text = properties.content_language
        ET.SubElement(prop, f"{{{DAV_NS}}}getetag").text = f'"{properties.etag}"'
        ET.SubElement(prop, f"{{{DAV_NS}}}getlastmodified").text = http_date(properties.last_modified)
        _add_metadata(prop, properties.custom_metadata)
    return ET.tostring(root, encoding="utf-8", xml_declaration=True)


def parse_proppatch(body: bytes) -> dict[str, str]:
    """Collect the <set> properties of a PROPPATCH body.

    The result becomes the object's whole metadata map, so properties
    named in <remove> are dropped simply by not being collected.
    """
    try:
        root = ET.fromstring(body)
    except ET.ParseError as exc:
        raise HTTPException(status_code=400, detail="Malformed PROPPATCH body") from exc
    if root.tag != f"{{{DAV_NS}}}propertyupdate":
        raise HTTPException(status_code=400, detail="Expected a propertyupdate element")
    metadata: dict[str, str] = {}
    for prop in root.iterfind(f"{{{DAV_NS}}}set/{{{DAV_NS}}}prop"):
        for element in prop:
            metadata[element.tag.rpartition("}")[2]] = element.text or ""
    return metadata


@dav.get("/{path:path}")
async def download_object(
    path: str,
    adapter: Injected[StorageAdapter],
    range: Annotated[Range, Depends(range_from_header)],
) -> Response:
    properties, headers, stream = await adapter.download(path, range)
    if range and headers.content_length == 0:
        await stream.aclose()
        return Response(
            status_code=416, headers={"Content-Range": f"bytes */{properties.size}"}
        )
    return StreamingResponse(
        stream,
        status_code=206 if range else 200,
        headers={**headers.as_dict(), "Accept-Ranges": "bytes"},
        background=BackgroundTask(stream.aclose),
    )


@dav.head("/{path:path}")
async def head_object(path: str, adapter: Injected[StorageAdapter]) -> Response:
    _, _, headers, _ = await adapter.get(path)
    return Response(headers={**headers.as_dict(), "Accept-Ranges": "bytes"})


@dav.put("/{path:path}")
async def upload_object(
    path: str,
    request: Request,
    adapter: Injected[StorageAdapter],
    content_length: Annotated[int | None, Header()] = None,
) -> Response:
    if content_length is None:
        raise HTTPException(status_code=411, detail="Content-Length required")
    properties = await adapter.put(
        path,
        request.stream(),
        content_length,
        content_type=request.headers.get("Content-Type"),
    )
    return Response(status_code=201, headers={"ETag": f'"{properties.etag}"'})


@dav.delete("/{path:path}")
async def delete_object(path: str, adapter: Injected[StorageAdapter]) -> Response:
    await adapter.delete(path)
    return Response(status_code=204)


@dav.api_route("/{path:path}", methods=["PROPFIND"])
async def propfind(
    path: str,
    adapter: Injected[StorageAdapter],
    config: Injected[Config],
) -> Response:
    entries = await adapter.list(path)
    return Response(
        status_code=207,
        content=render_properties(config, entries),
        media_type="application/xml; charset=utf-8",
    )


@dav.api_route("/{path:path}", methods=["PROPPATCH"])
async def proppatch(
    path: str,
    request: Request,
    adapter: Injected[StorageAdapter],
    config: Injected[Config],
) -> Response:
    metadata = await adapter.patch_metadata(path, parse_proppatch(await request.body()))
    root = _multistatus()
    _add_metadata(_add_response(root, _href(config, path)), metadata)
    return Response(
        status_code=207,
        content=ET.tostring(root, encoding="utf-8", xml_declaration=True),
        media_type="application/xml; charset=utf-8",
    )
