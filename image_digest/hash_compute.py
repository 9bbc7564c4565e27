from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass
from typing import BinaryIO, Optional

from .layout import ImageLayout, padding_bytes, read_layout
from .schemas import DigestReport

logger = logging.getLogger(__name__)


class SourceReadError(RuntimeError):
    """The byte source failed while the digest was being computed."""


class DigestInvariantError(RuntimeError):
    pass


@dataclass(frozen=True)
class DigestResult:
    digest: bytes
    consumed: int
    requested: int

    @property
    def hexdigest(self) -> str:
        return hexlower(self.digest)

    @property
    def short(self) -> bool:
        return self.consumed < self.requested


def hexlower(digest: bytes) -> str:
    return digest.hex()


def _read_chunk(reader: BinaryIO, buffer: bytearray, view: memoryview) -> Optional[int]:
    """Bytes placed in `buffer`; 0 at EOF, None when a non-blocking source has nothing yet."""
    readinto = getattr(reader, "readinto", None)
    if readinto is not None:
        return readinto(view)

    data = reader.read(len(buffer))
    if data is None:
        return None
    if not data:
        return 0
    buffer[: len(data)] = data
    return len(data)


def bounded_digest(reader: BinaryIO, max_bytes: int, block_size: int) -> DigestResult:
    """
    SHA-256 over the first `max_bytes` bytes of `reader`, read `block_size` bytes at a time.

    Reading stops at EOF or right after the chunk that crosses `max_bytes`; bytes
    past the boundary are never fed to the hash. The reader is consumed but need
    not be seekable.
    """
    if max_bytes < 0:
        raise ValueError(f"max_bytes must be >= 0 (got {max_bytes})")
    if block_size < 1:
        raise ValueError(f"block_size must be >= 1 (got {block_size})")

    context = hashlib.sha256()
    buffer = bytearray(block_size)
    view = memoryview(buffer)
    total = 0
    consumed = 0

    while True:
        try:
            count = _read_chunk(reader, buffer, view)
        except Exception as e:
            raise SourceReadError(f"read failed after {total} bytes: {e}") from e

        if count is None:
            raise SourceReadError(f"source returned no data after {total} bytes (non-blocking reader?)")

        if count == 0:
            logger.debug("source exhausted at %d bytes (max=%d)", total, max_bytes)
            break

        total += count
        if total > max_bytes:
            keep = count - (total - max_bytes)
            if not 0 <= keep <= count:
                raise DigestInvariantError(
                    f"boundary chunk keep={keep} outside [0, {count}] (total={total}, max={max_bytes})"
                )
            context.update(view[:keep])
            consumed += keep
            logger.debug("boundary reached at %d bytes, dropped %d padding bytes from last chunk", max_bytes, count - keep)
            break

        context.update(view[:count])
        consumed += count

    return DigestResult(digest=context.digest(), consumed=consumed, requested=max_bytes)


def sha256_digest(reader: BinaryIO, max_bytes: int, block_size: int) -> bytes:
    """Finalized SHA-256 over the meaningful prefix of `reader`."""
    return bounded_digest(reader, max_bytes, block_size).digest


def compute_report(
    stream: BinaryIO,
    size_bytes: int,
    *,
    kind: Optional[str] = None,
    block_size: Optional[int] = None,
) -> tuple[ImageLayout, DigestReport]:
    """
    Probe the image header, rewind, and hash the meaningful region.
    `stream` must be seekable and positioned at the start of the image.
    """
    start = stream.tell()
    layout = read_layout(stream, kind)
    stream.seek(start)

    chunk = block_size or layout.block_size
    result = bounded_digest(stream, layout.bytes_used, chunk)
    if result.short:
        logger.warning(
            "%s image shorter than its header claims: hashed %d of %d bytes",
            layout.kind,
            result.consumed,
            layout.bytes_used,
        )

    report = DigestReport(
        kind=layout.kind,
        sha256=result.hexdigest,
        bytes_used=layout.bytes_used,
        padding_bytes=padding_bytes(size_bytes, layout),
        block_size=chunk,
        size_bytes=size_bytes,
        consumed=result.consumed,
    )
    return layout, report
