import struct

import pytest

from image_digest.layout import MCUBOOT_MAGIC, SQUASHFS_MAGIC


def squashfs_superblock(bytes_used: int, block_log: int = 12, major: int = 4) -> bytes:
    sb = struct.pack(
        "<IIIIIHHHHHHQQ",
        SQUASHFS_MAGIC,
        1,  # inodes
        0,  # mkfs_time
        1 << block_log,
        0,  # fragments
        1,  # compression (gzip)
        block_log,
        0,  # flags
        1,  # no_ids
        major,
        0,  # minor
        0,  # root inode ref
        bytes_used,
    )
    # remaining table offsets are irrelevant for the digest
    return sb + b"\xff" * (96 - len(sb))


def squashfs_image(bytes_used: int, padded_to: int, block_log: int = 12) -> bytes:
    head = squashfs_superblock(bytes_used, block_log)
    body = bytes((i * 7 + 3) % 256 for i in range(bytes_used - len(head)))
    return (head + body).ljust(padded_to, b"\x00")


def mcuboot_image(img_sz: int, hdr_sz: int = 32, prot_sz: int = 0, trailer: int = 64) -> bytes:
    hdr = struct.pack("<IIHHI", MCUBOOT_MAGIC, 0, hdr_sz, prot_sz, img_sz).ljust(hdr_sz, b"\x00")
    body = bytes(i % 251 for i in range(img_sz + prot_sz))
    return hdr + body + b"\xee" * trailer


@pytest.fixture
def pattern_1000() -> bytes:
    return bytes(i % 256 for i in range(1000))


@pytest.fixture
def padded_squashfs() -> bytes:
    return squashfs_image(bytes_used=10_000, padded_to=12_288)
