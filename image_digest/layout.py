from __future__ import annotations

import os
import struct
from dataclasses import dataclass
from typing import BinaryIO, Callable, Optional

SQUASHFS_MAGIC = 0x73717368  # "hsqs"
MCUBOOT_MAGIC = 0x96F3B83D

# Large enough for the squashfs 4.0 superblock (96 bytes) and the MCUboot header (32).
HEADER_PROBE_SIZE = 96

# Chunk size for formats whose header does not carry one.
DIGEST_BLOCK_SIZE = int(os.getenv("DIGEST_BLOCK_SIZE", "4096"))

_SQUASHFS_SB = struct.Struct("<IIIIIHHHHHHQQ")
_MCUBOOT_HDR = struct.Struct("<IIHHI")


class LayoutError(ValueError):
    pass


@dataclass(frozen=True)
class ImageLayout:
    kind: str
    bytes_used: int
    block_size: int


def probe_squashfs(header: bytes) -> ImageLayout:
    """Meaningful size and block size from a squashfs 4.0 superblock."""
    if len(header) < _SQUASHFS_SB.size:
        raise LayoutError("data too short for squashfs superblock")

    (
        magic,
        _inodes,
        _mkfs_time,
        block_size,
        _fragments,
        _compression,
        block_log,
        _flags,
        _no_ids,
        major,
        _minor,
        _root_inode,
        bytes_used,
    ) = _SQUASHFS_SB.unpack_from(header, 0)

    if magic != SQUASHFS_MAGIC:
        raise LayoutError(f"bad squashfs magic: {hex(magic)}")
    if major != 4:
        raise LayoutError(f"unsupported squashfs version {major}")
    if block_size == 0 or block_size != 1 << block_log:
        raise LayoutError(f"inconsistent squashfs block size {block_size} (block_log={block_log})")

    return ImageLayout(kind="squashfs", bytes_used=bytes_used, block_size=block_size)


def probe_mcuboot(header: bytes) -> ImageLayout:
    """
    MCUboot image: the hashed region is header + body + protected TLVs.
    Anything after that (unprotected TLVs, flash padding) is not meaningful.
    """
    if len(header) < 32:
        raise LayoutError("data too short for MCUboot header")

    magic, _load, hdr_sz, prot_sz, img_sz = _MCUBOOT_HDR.unpack_from(header, 0)
    if magic != MCUBOOT_MAGIC:
        raise LayoutError(f"bad MCUboot magic: {hex(magic)}")

    return ImageLayout(kind="mcuboot", bytes_used=hdr_sz + img_sz + prot_sz, block_size=DIGEST_BLOCK_SIZE)


PROBES: dict[str, Callable[[bytes], ImageLayout]] = {
    "squashfs": probe_squashfs,
    "mcuboot": probe_mcuboot,
}


def probe_layout(header: bytes, kind: Optional[str] = None) -> ImageLayout:
    if kind is not None:
        probe = PROBES.get(kind.strip().lower())
        if probe is None:
            raise LayoutError(f"unknown image kind {kind!r} (expected one of {', '.join(sorted(PROBES))})")
        return probe(header)

    if len(header) < 4:
        raise LayoutError("data too short to identify image")

    (magic,) = struct.unpack_from("<I", header, 0)
    if magic == SQUASHFS_MAGIC:
        return probe_squashfs(header)
    if magic == MCUBOOT_MAGIC:
        return probe_mcuboot(header)
    raise LayoutError(f"unrecognised image magic: {hex(magic)}")


def read_layout(reader: BinaryIO, kind: Optional[str] = None) -> ImageLayout:
    """Probe the header at the reader's current position. Advances the reader."""
    return probe_layout(reader.read(HEADER_PROBE_SIZE), kind)


def padding_bytes(total_size: int, layout: ImageLayout) -> int:
    return max(total_size - layout.bytes_used, 0)
