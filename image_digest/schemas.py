from __future__ import annotations

from pydantic import BaseModel, Field


class DigestReport(BaseModel):
    kind: str
    sha256: str
    bytes_used: int
    padding_bytes: int
    block_size: int
    size_bytes: int
    # meaningful bytes actually hashed; below bytes_used when the image is truncated
    consumed: int


class ImageEntry(BaseModel):
    sha256: str
    version: str
    kind: str
    size_bytes: int
    bytes_used: int
    block_size: int
    created_at: str


class VerifyResult(BaseModel):
    sha256: str
    recomputed: str
    match: bool
    bytes_used: int
    consumed: int = Field(..., ge=0)
