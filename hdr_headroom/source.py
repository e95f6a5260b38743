# SPDX-License-Identifier: MPL-2.0
# Copyright (c) 2025-2026 Aryan Ameri
#
# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at https://mozilla.org/MPL/2.0/.
"""
16-bit PNG input/output for HDR sources and SDR previews.

PQ HDR PNGs declare their encoding either with a cICP chunk (ITU-T H.273
code points) or with an embedded ICC profile. load_png() maps either to the
profile identifier expected by validate().
"""

from __future__ import annotations

import io
from dataclasses import dataclass
from pathlib import Path
from typing import Final

import numpy as np
import png
from numpy.typing import NDArray

from .config import BT2100_PQ, DISPLAY_P3_PQ
from .errors import CannotDecodeSource
from .pixels import PixelBuffer
from .transfer import srgb_encode

__all__: Final[list[str]] = [
    "DecodedSource",
    "load_png",
    "write_pq_png",
    "write_preview_png",
    "profile_from_cicp",
]

# H.273 colour primaries / transfer characteristics
CICP_PRIMARIES_BT2020: Final[int] = 9
CICP_PRIMARIES_P3_D65: Final[int] = 12
CICP_TRANSFER_PQ: Final[int] = 16

_PROFILE_TO_CICP: Final[dict[str, tuple[int, int]]] = {
    DISPLAY_P3_PQ: (CICP_PRIMARIES_P3_D65, CICP_TRANSFER_PQ),
    BT2100_PQ: (CICP_PRIMARIES_BT2020, CICP_TRANSFER_PQ),
}


@dataclass(frozen=True, slots=True)
class DecodedSource:
    """A decoded PNG and the color profile it declares."""

    path: Path
    buffer: PixelBuffer
    profile: str | None


def profile_from_cicp(payload: bytes) -> str | None:
    """Map a 4-byte cICP payload to a profile identifier."""
    if len(payload) != 4:
        return None
    primaries, transfer = payload[0], payload[1]
    for profile, code_points in _PROFILE_TO_CICP.items():
        if (primaries, transfer) == code_points:
            return profile
    return f"cicp:{primaries}/{transfer}/{payload[2]}/{payload[3]}"


def _profile_from_iccp(payload: bytes) -> str | None:
    """Use the ICC profile name stored in an iCCP chunk."""
    name, sep, _ = payload.partition(b"\x00")
    if not sep:
        return None
    decoded = name.decode("latin-1").strip()
    if "PQ" in decoded and "P3" in decoded:
        return DISPLAY_P3_PQ
    if "PQ" in decoded and "2100" in decoded:
        return BT2100_PQ
    return decoded or None


def _declared_profile(chunks: list[tuple[bytes, bytes]]) -> str | None:
    iccp: str | None = None
    for chunk_type, payload in chunks:
        # cICP takes precedence over iCCP
        if chunk_type == b"cICP":
            return profile_from_cicp(payload)
        if chunk_type == b"iCCP":
            iccp = _profile_from_iccp(payload)
    return iccp


def load_png(path: Path) -> DecodedSource:
    """Decode a 16-bit RGB/RGBA PNG into a big-endian PixelBuffer.

    Raises:
        CannotDecodeSource: file unreadable, not 16-bit, or not RGB(A).
    """
    try:
        raw = Path(path).read_bytes()
        chunks = list(png.Reader(bytes=raw).chunks())
        width, height, rows, info = png.Reader(bytes=raw).read()
        if info["bitdepth"] != 16:
            raise CannotDecodeSource(f"{path}: expected 16-bit PNG, got {info['bitdepth']}-bit")
        if info["greyscale"]:
            raise CannotDecodeSource(f"{path}: greyscale PNGs are not supported")
        planes = int(info["planes"])
        codes = np.vstack([np.asarray(row, dtype=np.uint16) for row in rows])
    except png.Error as e:
        raise CannotDecodeSource(f"{path}: {e}") from e
    except OSError as e:
        raise CannotDecodeSource(f"{path}: {e}") from e

    buffer = PixelBuffer.from_codes(codes.reshape(height, width, planes), big_endian=True)
    return DecodedSource(path=Path(path), buffer=buffer, profile=_declared_profile(chunks))


def _insert_chunk(encoded: bytes, chunk_type: bytes, payload: bytes) -> bytes:
    """Insert an ancillary chunk directly after IHDR."""
    chunks = list(png.Reader(bytes=encoded).chunks())
    out = io.BytesIO()
    png.write_chunks(out, [chunks[0], (chunk_type, payload), *chunks[1:]])
    return out.getvalue()


def write_pq_png(path: Path, codes: NDArray[np.uint16], profile: str | None = DISPLAY_P3_PQ) -> None:
    """Write 16-bit PQ codes as PNG, declaring the profile through cICP.

    Raises:
        ValueError: profile has no cICP code points
    """
    if profile is not None and profile not in _PROFILE_TO_CICP:
        msg = f"No cICP code points for profile: {profile}"
        raise ValueError(msg)
    height, width, planes = codes.shape
    writer = png.Writer(
        width=width, height=height, bitdepth=16, greyscale=False, alpha=planes == 4
    )
    # pypng expects rows as (H, W*C)
    rows = np.asarray(codes, dtype=np.uint16).reshape(height, width * planes)
    encoded = io.BytesIO()
    writer.write(encoded, rows)
    data = encoded.getvalue()
    if profile is not None:
        primaries, transfer = _PROFILE_TO_CICP[profile]
        data = _insert_chunk(data, b"cICP", bytes([primaries, transfer, 0, 1]))
    Path(path).write_bytes(data)


def write_preview_png(path: Path, sdr_linear: NDArray[np.float32]) -> None:
    """Write a linear SDR raster as an 8-bit sRGB PNG."""
    height, width = sdr_linear.shape[:2]
    encoded = np.round(srgb_encode(sdr_linear[:, :, :3]) * 255.0).astype(np.uint8)
    writer = png.Writer(width=width, height=height, bitdepth=8, greyscale=False)
    with open(path, "wb") as f:
        writer.write(f, encoded.reshape(height, width * 3))

