from __future__ import annotations

import os
from contextlib import contextmanager
from typing import Any, BinaryIO, Iterator, Optional

import psycopg
from psycopg.rows import dict_row
from minio import Minio
from minio.error import S3Error

from .schemas import DigestReport

# ---------------------------
# PostgreSQL Config
# ---------------------------
PG_HOST = os.getenv("PG_HOST", "localhost")
PG_PORT = os.getenv("PG_PORT", "5432")
PG_USER = os.getenv("PG_USER", "img")
PG_PASSWORD = os.getenv("PG_PASSWORD", "imgpass")
PG_DB = os.getenv("PG_DB", "images")

# ---------------------------
# MinIO Config
# ---------------------------
MINIO_ENDPOINT = os.getenv("MINIO_ENDPOINT", "localhost:9000")
MINIO_ACCESS_KEY = os.getenv("MINIO_ACCESS_KEY", "minio")
MINIO_SECRET_KEY = os.getenv("MINIO_SECRET_KEY", "minio123456")
MINIO_SECURE = os.getenv("MINIO_SECURE", "false").lower() in ("true", "1", "yes")
MINIO_BUCKET = os.getenv("MINIO_BUCKET", "images")
IMAGE_MINIO_PREFIX = os.getenv("IMAGE_MINIO_PREFIX", "images/").lstrip("/")


def _get_conninfo() -> str:
    return f"host={PG_HOST} port={PG_PORT} user={PG_USER} password={PG_PASSWORD} dbname={PG_DB}"


def _connect() -> psycopg.Connection:
    return psycopg.connect(_get_conninfo(), row_factory=dict_row)


def _get_minio() -> Minio:
    return Minio(
        MINIO_ENDPOINT,
        access_key=MINIO_ACCESS_KEY,
        secret_key=MINIO_SECRET_KEY,
        secure=MINIO_SECURE,
    )


def _object_name(sha256: str) -> str:
    return f"{IMAGE_MINIO_PREFIX}{sha256}.img"


def init_db() -> None:
    """Initialize PostgreSQL tables and MinIO bucket."""
    with _connect() as conn:
        with conn.cursor() as cur:
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS image (
                    sha256 TEXT PRIMARY KEY,
                    version TEXT NOT NULL,
                    kind TEXT NOT NULL,
                    filename TEXT NOT NULL,
                    size_bytes BIGINT NOT NULL,
                    bytes_used BIGINT NOT NULL,
                    block_size INTEGER NOT NULL,
                    created_at TEXT NOT NULL
                );
                """
            )
        conn.commit()

    client = _get_minio()
    if not client.bucket_exists(MINIO_BUCKET):
        client.make_bucket(MINIO_BUCKET)


IMAGE_COLUMNS = "sha256, version, kind, size_bytes, bytes_used, block_size, created_at"


def fetch_image(sha256: str) -> Optional[dict[str, Any]]:
    with _connect() as conn:
        with conn.cursor() as cur:
            cur.execute(f"SELECT {IMAGE_COLUMNS} FROM image WHERE sha256=%s", (sha256.lower(),))
            return cur.fetchone()


def fetch_images() -> list[dict[str, Any]]:
    """All registered images, newest first."""
    with _connect() as conn:
        with conn.cursor() as cur:
            cur.execute(f"SELECT {IMAGE_COLUMNS} FROM image ORDER BY created_at DESC")
            return cur.fetchall()


def insert_image(report: DigestReport, *, version: str, filename: str, created_at: str) -> None:
    """Record a stored image under its meaningful-byte digest. A concurrent duplicate is a no-op."""
    with _connect() as conn:
        with conn.cursor() as cur:
            cur.execute(
                "INSERT INTO image(sha256, version, kind, filename, size_bytes, bytes_used, block_size, created_at) "
                "VALUES(%s,%s,%s,%s,%s,%s,%s,%s) ON CONFLICT(sha256) DO NOTHING",
                (
                    report.sha256,
                    version,
                    report.kind,
                    filename,
                    report.size_bytes,
                    report.bytes_used,
                    report.block_size,
                    created_at,
                ),
            )
        conn.commit()


# ---------------------------
# MinIO Storage Functions
# ---------------------------
def upload_image_to_minio(sha256: str, stream: BinaryIO, length: int) -> str:
    """
    Stream image content to MinIO from the reader's current position.
    Returns the object name.
    """
    client = _get_minio()
    object_name = _object_name(sha256)

    client.put_object(
        MINIO_BUCKET,
        object_name,
        stream,
        length=length,
        content_type="application/octet-stream",
    )

    return object_name


@contextmanager
def open_image_stream(sha256: str) -> Iterator[BinaryIO]:
    """
    Yield the MinIO response for a stored image as a forward-only reader.
    Raises S3Error if not found. The connection is released on every exit path.
    """
    client = _get_minio()
    response = client.get_object(MINIO_BUCKET, _object_name(sha256))
    try:
        yield response
    finally:
        response.close()
        response.release_conn()


def download_image_from_minio(sha256: str) -> bytes:
    with open_image_stream(sha256) as stream:
        return stream.read()


def image_exists_in_minio(sha256: str) -> bool:
    """Check if an image exists in MinIO."""
    client = _get_minio()
    try:
        client.stat_object(MINIO_BUCKET, _object_name(sha256))
        return True
    except S3Error:
        return False
