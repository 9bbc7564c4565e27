from __future__ import annotations

import asyncio
import io
from datetime import datetime, timezone
from typing import Any, BinaryIO, Optional

from fastapi import FastAPI, HTTPException, Request, UploadFile, File, Query
from fastapi.responses import Response
from minio.error import S3Error
from packaging.version import Version, InvalidVersion

from .db import (
    init_db,
    fetch_image,
    fetch_images,
    insert_image,
    upload_image_to_minio,
    open_image_stream,
    download_image_from_minio,
    image_exists_in_minio,
)
from .hash_compute import SourceReadError, bounded_digest, compute_report
from .layout import LayoutError
from .logs import ensure_logging, service_logger
from .schemas import DigestReport, ImageEntry, VerifyResult

app = FastAPI(title="Image Digest Server (meaningful-byte SHA-256 for padded images)", version="1.0.0")


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@app.on_event("startup")
async def _startup():
    ensure_logging()
    init_db()
    service_logger().info("Image digest server ready")


async def _body_stream(request: Request, file: Optional[UploadFile]) -> tuple[BinaryIO, int, str]:
    """Accept multipart or raw body; returns a seekable stream at offset 0, its size and a filename."""
    if file is not None:
        stream = file.file
        stream.seek(0, io.SEEK_END)
        size = stream.tell()
        stream.seek(0)
        return stream, size, file.filename or "image.img"

    content = await request.body()
    return io.BytesIO(content), len(content), request.headers.get("X-Filename", "image.img")


async def _report(stream: BinaryIO, size: int, kind: Optional[str]) -> DigestReport:
    if size == 0:
        raise HTTPException(400, "Empty upload")
    try:
        _, report = await asyncio.to_thread(compute_report, stream, size, kind=kind)
    except LayoutError as e:
        raise HTTPException(400, f"Unrecognised image: {e}")
    except SourceReadError as e:
        raise HTTPException(400, f"Failed to read upload: {e}")
    return report


# -------------------------
# Stateless digest
# -------------------------
@app.post("/digest", response_model=DigestReport)
async def digest_image(
    request: Request,
    kind: Optional[str] = Query(None, description="Image format; detected from magic if omitted"),
    file: Optional[UploadFile] = File(default=None),
) -> DigestReport:
    stream, size, _ = await _body_stream(request, file)
    return await _report(stream, size, kind)


# -------------------------
# Image registry
# -------------------------
@app.post("/images")
async def upload_image(
    request: Request,
    version: str = Query(..., description="Semantic version like 1.2.3"),
    kind: Optional[str] = Query(None, description="Image format; detected from magic if omitted"),
    file: Optional[UploadFile] = File(default=None),
) -> dict[str, Any]:
    try:
        Version(version)
    except InvalidVersion:
        raise HTTPException(400, f"Invalid version: {version}")

    stream, size, orig_name = await _body_stream(request, file)
    report = await _report(stream, size, kind)

    # Deduplicate by meaningful-byte digest; padding differences do not create new entries
    existing = fetch_image(report.sha256)
    if existing is not None and image_exists_in_minio(report.sha256):
        d = dict(existing)
        d["dedup"] = True
        return d

    stream.seek(0)
    object_name = await asyncio.to_thread(upload_image_to_minio, report.sha256, stream, size)
    service_logger().info("Stored %s image %s as %s (%s)", report.kind, orig_name, object_name, report.sha256)

    if existing is not None:
        return {**dict(existing), "dedup": True, "restored": True}

    insert_image(report, version=version, filename=object_name, created_at=now_iso())
    return {"version": version, **report.model_dump()}


@app.get("/images", response_model=list[ImageEntry])
def list_images() -> list[dict[str, Any]]:
    return [dict(r) for r in fetch_images()]


def _get_image(sha256_hex: str) -> dict[str, Any]:
    entry = fetch_image(sha256_hex)
    if entry is None:
        raise HTTPException(404, "not found")
    return dict(entry)


@app.get("/images/{sha256_hex}", response_model=ImageEntry)
def get_image(sha256_hex: str) -> dict[str, Any]:
    return _get_image(sha256_hex)


@app.get("/images/{sha256_hex}/download")
def download_image(sha256_hex: str):
    entry = _get_image(sha256_hex)
    try:
        content = download_image_from_minio(entry["sha256"])
        return Response(content=content, media_type="application/octet-stream")
    except S3Error:
        raise HTTPException(500, "file missing in storage")


def _verify_stored(entry: dict[str, Any]) -> VerifyResult:
    with open_image_stream(entry["sha256"]) as stream:
        result = bounded_digest(stream, entry["bytes_used"], entry["block_size"])
    if result.short:
        service_logger().warning("Stored image %s truncated: %d of %d bytes", entry["sha256"], result.consumed, result.requested)
    return VerifyResult(
        sha256=entry["sha256"],
        recomputed=result.hexdigest,
        match=result.hexdigest == entry["sha256"],
        bytes_used=entry["bytes_used"],
        consumed=result.consumed,
    )


@app.post("/images/{sha256_hex}/verify", response_model=VerifyResult)
async def verify_image(sha256_hex: str) -> VerifyResult:
    """Stream the stored object back through the bounded digest and compare."""
    entry = _get_image(sha256_hex)
    try:
        verdict = await asyncio.to_thread(_verify_stored, entry)
    except S3Error:
        raise HTTPException(500, "file missing in storage")
    except SourceReadError as e:
        service_logger().exception("Storage read failed while verifying %s", entry["sha256"])
        raise HTTPException(502, f"storage read failed: {e}")

    if not verdict.match:
        service_logger().warning("Digest mismatch for %s: recomputed %s", entry["sha256"], verdict.recomputed)
    return verdict
