"""Append-only mu-law WAV writer with back-patched RIFF sizes."""

from __future__ import annotations

import logging
import struct
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO, Final

from calls.errors import SinkClosedError
from telephony.g711 import SAMPLE_RATE

LOGGER = logging.getLogger(__name__)

HEADER_SIZE: Final[int] = 44
WAVE_FORMAT_MULAW: Final[int] = 7

_HEADER = struct.Struct("<4sI4s4sIHHIIHH4sI")
_UINT32 = struct.Struct("<I")
_RIFF_SIZE_OFFSET: Final[int] = 4
_DATA_SIZE_OFFSET: Final[int] = 40


@dataclass(frozen=True, slots=True)
class WavHeader:
    riff_size: int
    format_code: int
    channels: int
    sample_rate: int
    byte_rate: int
    block_align: int
    bits_per_sample: int
    data_size: int


def build_wav_header() -> bytes:
    """44-byte header for 8 kHz mono 8-bit mu-law with zeroed length fields."""

    return _HEADER.pack(
        b"RIFF",
        0,
        b"WAVE",
        b"fmt ",
        16,
        WAVE_FORMAT_MULAW,
        1,
        SAMPLE_RATE,
        SAMPLE_RATE,
        1,
        8,
        b"data",
        0,
    )


def read_header(path: Path) -> WavHeader:
    """Parse the header of a file written by :class:`AudioCaptureSink`.

    Raises:
        ValueError: if the file is shorter than a header or not RIFF/WAVE.
    """

    with path.open("rb") as handle:
        raw = handle.read(HEADER_SIZE)
    if len(raw) < HEADER_SIZE:
        raise ValueError(f"WAV header too short: {path}")

    (
        riff,
        riff_size,
        wave,
        _fmt,
        _fmt_size,
        format_code,
        channels,
        sample_rate,
        byte_rate,
        block_align,
        bits_per_sample,
        _data,
        data_size,
    ) = _HEADER.unpack(raw)
    if riff != b"RIFF" or wave != b"WAVE":
        raise ValueError(f"Not a RIFF/WAVE file: {path}")

    return WavHeader(
        riff_size=riff_size,
        format_code=format_code,
        channels=channels,
        sample_rate=sample_rate,
        byte_rate=byte_rate,
        block_align=block_align,
        bits_per_sample=bits_per_sample,
        data_size=data_size,
    )


class AudioCaptureSink:
    """Writes raw mu-law frames to disk in arrival order.

    The payload is never decoded or validated. ``finalize`` closes the handle and
    patches the RIFF and data sizes from the actual file size, so it can be
    repeated with identical results.
    """

    def __init__(self, path: Path) -> None:
        self.path = path
        self._handle: BinaryIO | None = None

    @property
    def is_open(self) -> bool:
        return self._handle is not None

    @property
    def payload_size(self) -> int:
        if self._handle is not None:
            return self._handle.tell() - HEADER_SIZE
        return max(0, self.path.stat().st_size - HEADER_SIZE)

    def open(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        handle = self.path.open("wb")
        handle.write(build_wav_header())
        self._handle = handle

    def append(self, data: bytes) -> None:
        if self._handle is None:
            raise SinkClosedError(f"Audio sink is not open: {self.path}")
        self._handle.write(data)

    def finalize(self) -> None:
        if self._handle is not None:
            handle, self._handle = self._handle, None
            handle.close()

        file_size = self.path.stat().st_size
        with self.path.open("r+b") as handle:
            handle.seek(_RIFF_SIZE_OFFSET)
            handle.write(_UINT32.pack(file_size - 8))
            handle.seek(_DATA_SIZE_OFFSET)
            handle.write(_UINT32.pack(file_size - HEADER_SIZE))

        LOGGER.debug("Finalized %s (%d payload bytes)", self.path, file_size - HEADER_SIZE)
