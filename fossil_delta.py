#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
fossil-delta: Pure Python Binary Delta Codec
============================================

Computes a compact encoding of the edits that turn a source buffer into a
target buffer, and replays that encoding against the source to rebuild the
target. Only the difference between two versions of a blob needs to be
stored or transmitted.

Quick Start:
-----------
    >>> from fossil_delta import create_delta, apply_delta
    >>>
    >>> delta = create_delta(old_data, new_data)
    >>> assert apply_delta(old_data, delta) == new_data
    >>>
    >>> # Inspect what the delta does
    >>> from fossil_delta import summarize_delta
    >>> print(summarize_delta(delta))

Algorithm:
---------
    1. Rolling Hash: O(1) window sliding over 16-byte windows (Adler variant)
    2. Source Index: chained hash table over non-overlapping 16-byte blocks
    3. Matcher: bidirectional greedy extension with an encoding-cost test
    4. Replay: bounds-checked interpreter for INSERT / COPY commands

Wire Format:
-----------
    INSERT:  [':'] [varint length] [length raw bytes]
    COPY:    ['@'] [varint length] [varint source offset]

    The stream ends at end of input. There is no header, no terminator and
    no checksum; integrity checks are layered on top (see content_digest()).

CLI Usage:
---------
    $ fossil-delta create old.bin new.bin -o update.delta
    $ fossil-delta apply old.bin update.delta -o rebuilt.bin
    $ fossil-delta info update.delta --json
    $ fossil-delta benchmark --size 512

References:
----------
    [1] Fossil SCM delta format - https://fossil-scm.org/home/doc/tip/www/delta_format.wiki
    [2] SQLite4 varint - https://sqlite.org/src4/doc/trunk/www/varint.wiki
"""

from __future__ import annotations

__version__ = "1.0.0"
__license__ = "GPL-3.0-or-later"

# Public API exports
__all__ = [
    # Main API
    'create_delta',
    'apply_delta',
    'DeltaEngine',

    # Core components
    'RollingHash',
    'SourceIndex',
    'Matcher',
    'Match',

    # Wire format
    'DeltaWriter',
    'DeltaReader',
    'Insert',
    'Copy',
    'iter_commands',
    'parse_delta',
    'encode_commands',
    'summarize_delta',
    'DeltaSummary',
    'varint_size',
    'encode_varint',
    'decode_varint',

    # Statistics and verification
    'DeltaStats',
    'content_digest',

    # Exceptions
    'DeltaError',
    'ValidationError',
    'ResourceLimitError',
    'DataIntegrityError',
    'FormatError',
    'FileIOError',
    'BoundsError',

    # Configuration
    'Config',
    'Colors',
    'configure_logging',

    # Containers
    'CompressionType',
    'CompressionRegistry',

    # Validation and utilities
    'validate_data',
    'check_memory_limit',
    'format_size',
    'format_time',

    # Constants
    'HASH_SIZE',
    'SEARCH_LIMIT',
    'CMD_COPY',
    'CMD_INSERT',

    # CLI
    'create_parser',
    'main',
]

import argparse
import json
import logging
import os
import random
import sys
import time
import zlib
from dataclasses import dataclass
from enum import Enum
from typing import (
    Any, ClassVar, Dict, Iterable, Iterator, List, Optional, Tuple, Union, cast
)

import xxhash
import lz4.frame  # type: ignore[import]
import zstandard  # type: ignore[import]

# Normalize untyped third-party imports to `Any` for strict type-checkers.
_lz4_frame: Any = cast(Any, lz4.frame)
_zstandard: Any = cast(Any, zstandard)

BytesLike = Union[bytes, bytearray, memoryview]


# ============================================================================
# FORMAT CONSTANTS
# ============================================================================

HASH_SIZE = 16              # Window and block size in bytes (must be a power of two)
SEARCH_LIMIT = 250          # Max chain entries examined per matcher probe

CMD_COPY = 0x40             # '@'  copy <length> bytes from source at <offset>
CMD_INSERT = 0x3A           # ':'  insert <length> literal bytes from the delta

# One tag byte for the insert preceding a copy, one for the copy itself,
# and one slack byte so a copy only wins when it saves space.
COMMAND_TAG_OVERHEAD = 3

MAX_VARINT = (1 << 64) - 1

# (largest value, encoded size) breakpoints of the varint encoding.
VARINT_LIMITS: Tuple[Tuple[int, int], ...] = (
    (240, 1),
    (2287, 2),
    (67823, 3),
    (16777215, 4),
    (4294967295, 5),
    (1099511627775, 6),
    (281474976710655, 7),
    (72057594037927935, 8),
)

MAX_FILE_SIZE_IN_MEMORY = 1024 * 1024 * 256  # 256MB default max in memory


# ============================================================================
# GLOBAL CONFIGURATION
# ============================================================================

class Config:
    """
    Global configuration for fossil-delta behavior.

    The algorithm constants (HASH_SIZE, SEARCH_LIMIT) are part of the format
    and not configurable here; these settings only affect
    diagnostics, the CLI and resource limits.

    Attributes:
        VERBOSE_LOGGING (bool): Log at INFO level instead of WARNING
        USE_COLORS (bool): Enable colored terminal output (auto-detected)
        COLLECT_STATS (bool): Collect matcher statistics on every engine call
        MAX_FILE_SIZE (int): Largest file the CLI will load into memory
        DIGEST_SEED (int): Seed used by content_digest()
        DEFAULT_COMPRESSION (str): Container compression used by the CLI

    Example:
        >>> Config.COLLECT_STATS = True
        >>> Config.reset_defaults()
    """
    VERBOSE_LOGGING: ClassVar[bool] = False
    USE_COLORS: ClassVar[bool] = True
    COLLECT_STATS: ClassVar[bool] = False
    MAX_FILE_SIZE: ClassVar[int] = MAX_FILE_SIZE_IN_MEMORY
    DIGEST_SEED: ClassVar[int] = 0
    DEFAULT_COMPRESSION: ClassVar[str] = "none"

    @classmethod
    def reset_defaults(cls) -> None:
        """Reset all configuration to default values."""
        defaults: Dict[str, object] = {
            "VERBOSE_LOGGING": False,
            "USE_COLORS": True,
            "COLLECT_STATS": False,
            "MAX_FILE_SIZE": MAX_FILE_SIZE_IN_MEMORY,
            "DIGEST_SEED": 0,
            "DEFAULT_COMPRESSION": "none",
        }
        for name, value in defaults.items():
            setattr(cls, name, value)


# ============================================================================
# LOGGING CONFIGURATION
# ============================================================================

logger = logging.getLogger('fossil-delta')


def configure_logging(verbose: bool = False) -> None:
    """
    Install a basic logging handler for CLI use.

    Library callers are expected to configure logging themselves; the CLI
    calls this once from main().
    """
    level = logging.INFO if (verbose or Config.VERBOSE_LOGGING) else logging.WARNING
    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(levelname)s - %(message)s'
    )
    logger.setLevel(level)


# ============================================================================
# TERMINAL OUTPUT
# ============================================================================

class Colors:
    """
    ANSI color helpers for CLI output.

    Automatically disabled on non-TTY terminals (pipes, redirects) or when
    Config.USE_COLORS = False.

    Example:
        >>> print(Colors.success("Delta written"))
        [OK] Delta written
    """
    _RESET = '\033[0m'
    _BOLD = '\033[1m'
    _RED = '\033[91m'
    _GREEN = '\033[92m'
    _YELLOW = '\033[93m'
    _BLUE = '\033[94m'

    @classmethod
    def _is_enabled(cls) -> bool:
        if not Config.USE_COLORS:
            return False
        return hasattr(sys.stdout, 'isatty') and sys.stdout.isatty()

    @classmethod
    def success(cls, text: str) -> str:
        """Format text as success (green with checkmark)."""
        if cls._is_enabled():
            return f"{cls._GREEN}✓{cls._RESET} {text}"
        return f"[OK] {text}"

    @classmethod
    def error(cls, text: str) -> str:
        """Format text as error (red with X)."""
        if cls._is_enabled():
            return f"{cls._RED}✗{cls._RESET} {text}"
        return f"[ERROR] {text}"

    @classmethod
    def warning(cls, text: str) -> str:
        """Format text as warning (yellow with !)."""
        if cls._is_enabled():
            return f"{cls._YELLOW}⚠{cls._RESET} {text}"
        return f"[WARN] {text}"

    @classmethod
    def bold(cls, text: str) -> str:
        if cls._is_enabled():
            return f"{cls._BOLD}{text}{cls._RESET}"
        return text


# ============================================================================
# UTILITY FUNCTIONS - Formatting and helpers
# ============================================================================

def format_size(size: int) -> str:
    """
    Format byte size in human-readable format.

    Example:
        >>> format_size(1234567890)
        '1.15 GB'
    """
    value = float(size)
    for unit in ('B', 'KB', 'MB', 'GB', 'TB'):
        if abs(value) < 1024.0:
            return f"{value:.2f} {unit}" if unit != 'B' else f"{size} {unit}"
        value = value / 1024.0
    return f"{value:.2f} PB"


def format_time(seconds: float) -> str:
    """
    Format time duration in human-readable format.

    Example:
        >>> format_time(0.00123)
        '1.23ms'
    """
    if seconds < 0.001:
        return f"{seconds * 1000000:.0f}µs"
    elif seconds < 1.0:
        return f"{seconds * 1000:.2f}ms"
    elif seconds < 60:
        return f"{seconds:.2f}s"
    else:
        minutes = int(seconds // 60)
        secs = seconds % 60
        return f"{minutes}m {secs:.1f}s"


# ============================================================================
# CUSTOM EXCEPTIONS - Hierarchical exception system
# ============================================================================

class DeltaError(Exception):
    """
    Base exception for all fossil-delta errors.

    Attributes:
        message: Human-readable error description
        code: Numeric error code, used as the CLI exit status
    """
    def __init__(self, message: str, code: int = 1) -> None:
        super().__init__(message)
        self.message = message
        self.code = code

    def __str__(self) -> str:
        return self.message


class ValidationError(DeltaError):
    """
    Raised when input validation fails.

    This indicates a programming error or invalid user input, such as a
    non-bytes buffer or a varint value outside the encodable range.
    """
    def __init__(self, message: str) -> None:
        super().__init__(message, code=2)


class ResourceLimitError(DeltaError):
    """Raised when an output limit or the in-memory file size limit is exceeded."""
    def __init__(self, message: str) -> None:
        super().__init__(message, code=3)


class DataIntegrityError(DeltaError):
    """
    Raised when the reconstructed output does not match the expected digest.

    The delta decoded cleanly but was produced against a different source,
    or the expected digest belongs to another target.
    """
    def __init__(self, message: str) -> None:
        super().__init__(message, code=4)


class FormatError(DeltaError):
    """
    Raised when a delta stream is malformed.

    Covers unknown command tags, truncated commands or varints, and insert
    lengths that run past the end of the delta.

    Attributes:
        position: Offset in the delta where the problem was detected, if known
    """
    def __init__(self, message: str, position: Optional[int] = None) -> None:
        super().__init__(message, code=5)
        self.position = position


class FileIOError(DeltaError):
    """Raised for file I/O errors in the CLI layer."""
    def __init__(self, message: str) -> None:
        super().__init__(message, code=6)


class BoundsError(DeltaError):
    """
    Raised when a copy command reaches outside the source buffer.

    This usually means the delta is being applied to a different source than
    the one it was created against.
    """
    def __init__(self, offset: int, count: int, source_size: int) -> None:
        super().__init__(
            f"copy extends past end of source: offset={offset} count={count} "
            f"source_size={source_size}",
            code=7,
        )
        self.offset = offset
        self.count = count
        self.source_size = source_size


# ============================================================================
# INPUT VALIDATION
# ============================================================================

def validate_data(data: Any, name: str = "data") -> None:
    """
    Validate that data is a bytes-like buffer.

    Args:
        data: The object to check
        name: Argument name for the error message

    Raises:
        ValidationError: If data is not bytes, bytearray or memoryview
    """
    if not isinstance(data, (bytes, bytearray, memoryview)):
        raise ValidationError(
            f"{name} must be bytes, bytearray or memoryview, got {type(data).__name__}"
        )


def check_memory_limit(size: int, operation: str = "operation") -> None:
    """
    Check that an operation won't exceed the configured memory limit.

    Raises:
        ValidationError: If size is negative
        ResourceLimitError: If size exceeds Config.MAX_FILE_SIZE
    """
    if size < 0:
        raise ValidationError(f"{operation}: size cannot be negative ({size})")
    if size > Config.MAX_FILE_SIZE:
        raise ResourceLimitError(
            f"{operation} requires {format_size(size)} in memory, "
            f"maximum is {format_size(Config.MAX_FILE_SIZE)}"
        )


def _as_bytes(data: BytesLike) -> bytes:
    return data if isinstance(data, bytes) else bytes(data)


# ============================================================================
# VARINT CODEC - SQLite4-style variable-length unsigned integers
#
# The encoded size of a value is fixed by VARINT_LIMITS:
#   A0 <= 240         value = A0
#   241 <= A0 <= 248  value = 240 + 256*(A0-241) + A1
#   A0 == 249         value = 2288 + 256*A1 + A2
#   250 <= A0 <= 255  value = next (A0-247) bytes, big-endian
# ============================================================================

def varint_size(value: int) -> int:
    """
    Return the number of bytes encode_varint() uses for value.

    Example:
        >>> varint_size(240), varint_size(241), varint_size(67824)
        (1, 2, 4)
    """
    for limit, size in VARINT_LIMITS:
        if value <= limit:
            return size
    return 9


def encode_varint(value: int) -> bytes:
    """
    Encode an unsigned integer.

    Raises:
        ValidationError: If value is negative or does not fit in 64 bits
    """
    if value < 0 or value > MAX_VARINT:
        raise ValidationError(f"varint value out of range: {value}")
    if value <= 240:
        return bytes((value,))
    if value <= 2287:
        v = value - 240
        return bytes((v // 256 + 241, v % 256))
    if value <= 67823:
        v = value - 2288
        return bytes((249, v >> 8, v & 0xFF))
    size = varint_size(value)
    return bytes((250 + size - 4,)) + value.to_bytes(size - 1, 'big')


def decode_varint(buf: BytesLike, pos: int = 0) -> Tuple[int, int]:
    """
    Decode an unsigned integer starting at buf[pos].

    Returns:
        Tuple of (value, bytes consumed)

    Raises:
        FormatError: If the encoding runs past the end of buf
    """
    if pos >= len(buf):
        raise FormatError("truncated varint", position=pos)
    a0 = buf[pos]
    if a0 <= 240:
        return a0, 1
    if a0 <= 248:
        size = 2
    elif a0 == 249:
        size = 3
    else:
        size = a0 - 246
    if pos + size > len(buf):
        raise FormatError(
            f"truncated varint: need {size} bytes, {len(buf) - pos} available",
            position=pos,
        )
    if a0 <= 248:
        return 240 + 256 * (a0 - 241) + buf[pos + 1], size
    if a0 == 249:
        return 2288 + 256 * buf[pos + 1] + buf[pos + 2], size
    return int.from_bytes(buf[pos + 1:pos + size], 'big'), size


# ============================================================================
# BYTE WRITER / READER
# ============================================================================

class DeltaWriter:
    """Append-only output buffer for delta commands."""

    def __init__(self) -> None:
        self._buf = bytearray()

    def write_byte(self, value: int) -> None:
        self._buf.append(value)

    def write_varint(self, value: int) -> None:
        self._buf += encode_varint(value)

    def write_bytes(self, data: BytesLike, offset: int = 0, count: Optional[int] = None) -> None:
        """Append data[offset:offset+count] (the rest of data when count is None)."""
        end = len(data) if count is None else offset + count
        self._buf += data[offset:end]

    def write_insert(self, data: BytesLike, offset: int, count: int) -> None:
        """Write an INSERT command carrying data[offset:offset+count]."""
        self.write_byte(CMD_INSERT)
        self.write_varint(count)
        self.write_bytes(data, offset, count)

    def write_copy(self, count: int, offset: int) -> None:
        """Write a COPY command for source[offset:offset+count]."""
        self.write_byte(CMD_COPY)
        self.write_varint(count)
        self.write_varint(offset)

    def getvalue(self) -> bytes:
        return bytes(self._buf)

    def __len__(self) -> int:
        return len(self._buf)


class DeltaReader:
    """
    Sequential read cursor over a delta stream.

    Every read is bounds-checked; running off the end raises FormatError
    with the cursor position, so a truncated trailing command is always
    reported instead of silently yielding short data.
    """

    def __init__(self, data: BytesLike) -> None:
        self.data = data
        self.pos = 0

    def have_bytes(self) -> bool:
        return self.pos < len(self.data)

    @property
    def remaining(self) -> int:
        return len(self.data) - self.pos

    def read_byte(self) -> int:
        if self.pos >= len(self.data):
            raise FormatError("unexpected end of delta", position=self.pos)
        value = self.data[self.pos]
        self.pos += 1
        return value

    def read_varint(self) -> int:
        value, consumed = decode_varint(self.data, self.pos)
        self.pos += consumed
        return value

    def read_bytes(self, count: int) -> bytes:
        if count > self.remaining:
            raise FormatError(
                f"need {count} bytes, only {self.remaining} left in delta",
                position=self.pos,
            )
        data = bytes(self.data[self.pos:self.pos + count])
        self.pos += count
        return data


# ============================================================================
# COMMAND MODEL - Decoded view of the wire format
# ============================================================================

@dataclass(frozen=True)
class Insert:
    """Append literal bytes carried in the delta to the output."""
    data: bytes

    @property
    def length(self) -> int:
        return len(self.data)

    def __repr__(self) -> str:
        if len(self.data) <= 20:
            return f"Insert({self.data!r})"
        return f"Insert(len={len(self.data)})"


@dataclass(frozen=True)
class Copy:
    """Append source[offset:offset+length] to the output."""
    length: int
    offset: int

    def __repr__(self) -> str:
        return f"Copy(len={self.length}, off={self.offset})"


Command = Union[Insert, Copy]


def iter_commands(delta: BytesLike) -> Iterator[Command]:
    """
    Decode a delta into commands without consulting the source.

    Raises:
        FormatError: On an unknown tag or a truncated command
    """
    validate_data(delta, "delta")
    reader = DeltaReader(_as_bytes(delta))
    while reader.have_bytes():
        tag = reader.read_byte()
        if tag == CMD_COPY:
            count = reader.read_varint()
            offset = reader.read_varint()
            yield Copy(count, offset)
        elif tag == CMD_INSERT:
            count = reader.read_varint()
            if count > reader.remaining:
                raise FormatError("insert count exceeds size of delta", position=reader.pos)
            yield Insert(reader.read_bytes(count))
        else:
            raise FormatError(f"unknown delta operator: 0x{tag:02X}", position=reader.pos - 1)


def parse_delta(delta: BytesLike) -> List[Command]:
    """Return all commands of a delta as a list."""
    return list(iter_commands(delta))


def encode_commands(commands: Iterable[Command]) -> bytes:
    """
    Serialize commands to the wire format.

    Example:
        >>> encode_commands([Insert(b"XY"), Copy(16, 0)])
        b':\\x02XY@\\x10\\x00'
    """
    writer = DeltaWriter()
    for cmd in commands:
        if isinstance(cmd, Insert):
            writer.write_insert(cmd.data, 0, len(cmd.data))
        elif isinstance(cmd, Copy):
            writer.write_copy(cmd.length, cmd.offset)
        else:
            raise ValidationError(f"not a delta command: {cmd!r}")
    return writer.getvalue()


@dataclass
class DeltaSummary:
    """
    Aggregate view of a delta, as reported by `fossil-delta info`.

    Attributes:
        delta_size: Encoded size of the delta in bytes
        num_inserts: Number of INSERT commands
        num_copies: Number of COPY commands
        literal_bytes: Bytes carried literally in the delta
        copied_bytes: Bytes taken from the source
        max_source_extent: Smallest source size the copies fit into
    """
    delta_size: int = 0
    num_inserts: int = 0
    num_copies: int = 0
    literal_bytes: int = 0
    copied_bytes: int = 0
    max_source_extent: int = 0

    @property
    def output_size(self) -> int:
        return self.literal_bytes + self.copied_bytes

    @property
    def compression_ratio(self) -> float:
        """Delta size relative to the output it reconstructs."""
        return self.delta_size / self.output_size if self.output_size else 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            'delta_size': self.delta_size,
            'output_size': self.output_size,
            'num_inserts': self.num_inserts,
            'num_copies': self.num_copies,
            'literal_bytes': self.literal_bytes,
            'copied_bytes': self.copied_bytes,
            'max_source_extent': self.max_source_extent,
            'compression_ratio': self.compression_ratio,
        }

    def __repr__(self) -> str:
        return (
            f"DeltaSummary(delta={format_size(self.delta_size)}, "
            f"output={format_size(self.output_size)}, inserts={self.num_inserts}, "
            f"copies={self.num_copies}, ratio={self.compression_ratio:.1%})"
        )


def summarize_delta(delta: BytesLike) -> DeltaSummary:
    """Decode a delta and tally its commands."""
    validate_data(delta, "delta")
    delta = _as_bytes(delta)
    summary = DeltaSummary(delta_size=len(delta))
    for cmd in iter_commands(delta):
        if isinstance(cmd, Copy):
            summary.num_copies += 1
            summary.copied_bytes += cmd.length
            summary.max_source_extent = max(summary.max_source_extent, cmd.offset + cmd.length)
        else:
            summary.num_inserts += 1
            summary.literal_bytes += cmd.length
    return summary


# ============================================================================
# STATISTICS AND VERIFICATION
# ============================================================================

@dataclass
class DeltaStats:
    """
    Statistics from a create operation.

    Attributes:
        hash_hits: Probes whose hash bucket was non-empty
        probes: Chain entries examined across all probes
        rejected: Candidates dropped by the cost test or the strictly-longer rule
        matches: COPY commands emitted
        literal_data: Bytes emitted as INSERT payload
        matched_data: Bytes covered by COPY commands
        index_blocks: Source blocks in the hash index
        total_time_ms: Wall time of the operation in milliseconds
    """
    hash_hits: int = 0
    probes: int = 0
    rejected: int = 0
    matches: int = 0
    literal_data: int = 0
    matched_data: int = 0
    index_blocks: int = 0
    total_time_ms: float = 0.0

    @property
    def efficiency(self) -> float:
        """Fraction of the target reproduced from the source."""
        total = self.literal_data + self.matched_data
        return self.matched_data / total if total > 0 else 0.0

    def __repr__(self) -> str:
        return (
            f"DeltaStats(matches={self.matches}, hash_hits={self.hash_hits}, "
            f"probes={self.probes}, rejected={self.rejected}, "
            f"efficiency={self.efficiency:.1%})"
        )


def content_digest(data: BytesLike, seed: Optional[int] = None) -> str:
    """
    Return the XXH64 hex digest of data.

    Used to verify that a reconstruction matches the target the delta was
    created for; the delta format itself carries no checksum.
    """
    if seed is None:
        seed = Config.DIGEST_SEED
    return xxhash.xxh64(_as_bytes(data), seed=seed).hexdigest()


# ============================================================================
# ROLLING HASH
#
# Two 16-bit running sums over a HASH_SIZE window:
#   a = z[0] + z[1] + ... + z[15]
#   b = 16*z[0] + 15*z[1] + ... + 1*z[15]
# Sliding the window by one byte (old leaves, c enters):
#   a' = a - old + c
#   b' = b - 16*old + a'
# ============================================================================

class RollingHash:
    """
    Incrementally-updatable fingerprint over a HASH_SIZE byte window.

    init() hashes a window from scratch in O(HASH_SIZE); advance() slides it
    forward by one byte in O(1). Any non-adjacent jump needs a fresh init().

    Example:
        >>> h = RollingHash()
        >>> h.init(data, 0)
        >>> h.advance(data[HASH_SIZE])
        >>> h.value() == RollingHash.of(data, 1)
        True
    """

    __slots__ = ('a', 'b', 'i', 'z')

    def __init__(self) -> None:
        self.a = 0
        self.b = 0
        self.i = 0
        self.z = [0] * HASH_SIZE

    def init(self, buf: BytesLike, offset: int) -> None:
        """Hash buf[offset:offset+HASH_SIZE]; the caller guarantees a full window."""
        window = buf[offset:offset + HASH_SIZE]
        a = b = window[0]
        for c in window[1:]:
            a += c
            b += a
        self.z = list(window)
        self.a = a & 0xFFFF
        self.b = b & 0xFFFF
        self.i = 0

    def advance(self, c: int) -> None:
        """Drop the oldest byte of the window and append c."""
        old = self.z[self.i]
        self.z[self.i] = c
        self.i = (self.i + 1) & (HASH_SIZE - 1)
        self.a = (self.a - old + c) & 0xFFFF
        self.b = (self.b - HASH_SIZE * old + self.a) & 0xFFFF

    def value(self) -> int:
        return self.a | (self.b << 16)

    @classmethod
    def of(cls, buf: BytesLike, offset: int = 0) -> int:
        """One-shot hash of the window at offset."""
        h = cls()
        h.init(buf, offset)
        return h.value()


# ============================================================================
# SOURCE INDEX - Chained hash table over source blocks
# ============================================================================

class SourceIndex:
    """
    Hash table over the non-overlapping HASH_SIZE blocks of a source buffer.

    The table is two parallel integer arrays of nblocks entries:

        landmark[bucket]  most recently indexed block in bucket (-1 = none)
        collide[block]    previous block sharing that bucket   (-1 = none)

    Only block-aligned offsets are indexed; the matcher recovers unaligned
    matches by extending backwards from a block boundary. Chains are walked
    newest block first.

    Attributes:
        source: The indexed buffer
        nhash: Number of blocks, also the number of buckets

    Raises:
        ValidationError: If the source holds no full block
    """

    def __init__(self, source: BytesLike, rolling: Optional[RollingHash] = None) -> None:
        self.source = source
        self.nhash = len(source) // HASH_SIZE
        if self.nhash == 0:
            raise ValidationError(
                f"source too small to index ({len(source)} bytes, need {HASH_SIZE})"
            )
        self.landmark = [-1] * self.nhash
        self.collide = [-1] * self.nhash
        self._build(rolling if rolling is not None else RollingHash())

    def _build(self, rolling: RollingHash) -> None:
        landmark = self.landmark
        collide = self.collide
        nhash = self.nhash
        for block in range(nhash):
            rolling.init(self.source, block * HASH_SIZE)
            bucket = rolling.value() % nhash
            collide[block] = landmark[bucket]
            landmark[bucket] = block
        logger.debug(f"Indexed {nhash} source blocks of {HASH_SIZE} bytes")

    def chain(self, hash_value: int) -> Iterator[int]:
        """Yield the block indices in the bucket of hash_value, newest first."""
        block = self.landmark[hash_value % self.nhash]
        while block >= 0:
            yield block
            block = self.collide[block]

    def __len__(self) -> int:
        return self.nhash


# ============================================================================
# MATCHER - Greedy bidirectional match extension
# ============================================================================

@dataclass(frozen=True)
class Match:
    """
    Result of one matcher probe.

    Attributes:
        length: Number of matched bytes
        offset: Start of the match in the source
        literal_size: Target bytes between the scan base and the match start
    """
    length: int
    offset: int
    literal_size: int


class Matcher:
    """
    Finds the best source match for the target window at base+i.

    For each candidate block in the window's hash chain (at most
    SEARCH_LIMIT of them) the match is extended forwards from the block
    start and backwards towards base. A candidate is kept only if encoding
    it as INSERT(prefix) + COPY costs no more than the bytes it covers, and
    only if it is strictly longer than the best one so far, so ties go to
    the first candidate in chain order.
    """

    def __init__(
        self,
        source: BytesLike,
        target: BytesLike,
        index: SourceIndex,
        stats: Optional[DeltaStats] = None
    ) -> None:
        self.source = source
        self.target = target
        self.index = index
        self.stats = stats

    def search(self, hash_value: int, base: int, i: int) -> Optional[Match]:
        """
        Probe the index with the hash of target[base+i:base+i+HASH_SIZE].

        Args:
            hash_value: RollingHash value of the current window
            base: Start of the not-yet-encoded part of the target
            i: Window offset from base

        Returns:
            The best acceptable Match, or None
        """
        source = self.source
        target = self.target
        stats = self.stats
        src_len = len(source)
        tgt_len = len(target)
        anchor = base + i

        best: Optional[Match] = None
        for probe, block in enumerate(self.index.chain(hash_value)):
            if probe == SEARCH_LIMIT:
                break
            if stats is not None and probe == 0:
                stats.hash_hits += 1
            src = block * HASH_SIZE

            # Forward from src / anchor as far as both buffers agree.
            x, y = src, anchor
            while x < src_len and y < tgt_len and source[x] == target[y]:
                x += 1
                y += 1
            forward = x - src

            # Backward from src-1 / anchor-1, never past base.
            k = 1
            while k < src and k <= i and source[src - k] == target[anchor - k]:
                k += 1
            backward = k - 1

            length = forward + backward
            offset = src - backward
            literal_size = i - backward
            cost = (varint_size(literal_size) + varint_size(length)
                    + varint_size(offset) + COMMAND_TAG_OVERHEAD)
            if length >= cost and (best is None or length > best.length):
                best = Match(length, offset, literal_size)
            elif stats is not None:
                stats.rejected += 1
            if stats is not None:
                stats.probes += 1

        return best


# ============================================================================
# DELTA ENGINE - Create and Apply
# ============================================================================

class DeltaEngine:
    """
    Creates deltas and applies them.

    Both operations are pure functions of their inputs; the engine only
    carries the statistics switch and the statistics of the last call.
    Each call builds its own RollingHash and SourceIndex, so one engine
    can be reused, but a single instance should not serve concurrent
    calls if last_stats matters.

    Attributes:
        collect_stats: Record DeltaStats for every create() call
        last_stats: Statistics from the last create() (if collected)

    Example:
        >>> engine = DeltaEngine(collect_stats=True)
        >>> delta = engine.create(old, new)
        >>> assert engine.apply(old, delta) == new
        >>> print(engine.last_stats)
    """

    def __init__(self, collect_stats: bool = False) -> None:
        self.collect_stats = collect_stats
        self.last_stats: Optional[DeltaStats] = None

    def create(self, source: BytesLike, target: BytesLike) -> bytes:
        """
        Compute the delta that turns source into target.

        Never fails for byte buffers, including empty ones.

        Raises:
            ValidationError: If source or target is not bytes-like
        """
        validate_data(source, "source")
        validate_data(target, "target")
        source = _as_bytes(source)
        target = _as_bytes(target)

        start_time = time.perf_counter()
        stats = DeltaStats() if (self.collect_stats or Config.COLLECT_STATS) else None
        writer = DeltaWriter()
        tgt_len = len(target)

        # With no full source block there is nothing to match against:
        # the whole target becomes one literal.
        if len(source) <= HASH_SIZE:
            writer.write_insert(target, 0, tgt_len)
            if stats is not None:
                stats.literal_data = tgt_len
            return self._finish(writer, stats, start_time)

        index = SourceIndex(source)
        rolling = RollingHash()
        matcher = Matcher(source, target, index, stats)
        if stats is not None:
            stats.index_blocks = len(index)

        base = 0
        while base + HASH_SIZE < tgt_len:
            rolling.init(target, base)
            i = 0
            while True:
                match = matcher.search(rolling.value(), base, i)
                if match is not None:
                    if match.literal_size > 0:
                        writer.write_insert(target, base, match.literal_size)
                        base += match.literal_size
                        if stats is not None:
                            stats.literal_data += match.literal_size
                    base += match.length
                    writer.write_copy(match.length, match.offset)
                    if stats is not None:
                        stats.matches += 1
                        stats.matched_data += match.length
                    break

                # No window left to slide: the rest is literal.
                if base + i + HASH_SIZE >= tgt_len:
                    writer.write_insert(target, base, tgt_len - base)
                    if stats is not None:
                        stats.literal_data += tgt_len - base
                    base = tgt_len
                    break

                rolling.advance(target[base + i + HASH_SIZE])
                i += 1

        # The scan stops once base + HASH_SIZE >= tgt_len, so at most
        # HASH_SIZE trailing bytes are still pending here.
        if base < tgt_len:
            writer.write_insert(target, base, tgt_len - base)
            if stats is not None:
                stats.literal_data += tgt_len - base

        return self._finish(writer, stats, start_time)

    def _finish(self, writer: DeltaWriter, stats: Optional[DeltaStats], start_time: float) -> bytes:
        delta = writer.getvalue()
        if stats is not None:
            stats.total_time_ms = (time.perf_counter() - start_time) * 1000
            self.last_stats = stats
            logger.info(
                f"delta: {len(delta)} bytes, matches={stats.matches} "
                f"matched={stats.matched_data} literal={stats.literal_data} "
                f"probes={stats.probes} rejected={stats.rejected}"
            )
        return delta

    def apply(
        self,
        source: BytesLike,
        delta: BytesLike,
        limit: Optional[int] = None,
        expected_digest: Optional[str] = None
    ) -> bytes:
        """
        Replay a delta against source and return the reconstructed target.

        Args:
            source: The buffer the delta was created against
            delta: Encoded command stream
            limit: Optional maximum output size in bytes
            expected_digest: Optional content_digest() of the expected output

        Returns:
            Reconstructed target bytes

        Raises:
            FormatError: Unknown tag, truncated command, or oversized insert
            BoundsError: A copy reaches past the end of source
            ResourceLimitError: Output would exceed limit
            DataIntegrityError: Output does not match expected_digest

        No partial output is returned on failure.
        """
        validate_data(source, "source")
        validate_data(delta, "delta")
        if limit is not None and limit < 0:
            raise ValidationError(f"limit cannot be negative ({limit})")
        source = _as_bytes(source)
        delta = _as_bytes(delta)

        reader = DeltaReader(delta)
        out = bytearray()
        total = 0
        while reader.have_bytes():
            tag = reader.read_byte()
            if tag == CMD_COPY:
                total = _apply_copy(source, reader, out, total, limit)
            elif tag == CMD_INSERT:
                total = _apply_insert(reader, out, total, limit)
            else:
                raise FormatError(
                    f"unknown delta operator: 0x{tag:02X}", position=reader.pos - 1
                )

        result = bytes(out)
        if expected_digest is not None:
            actual = content_digest(result)
            if actual != expected_digest.lower():
                raise DataIntegrityError(
                    f"digest mismatch: expected {expected_digest}, got {actual}"
                )
        logger.debug(f"applied delta: {len(delta)} bytes -> {total} bytes")
        return result


def _check_total(total: int, count: int, limit: Optional[int]) -> int:
    total += count
    if limit is not None and total > limit:
        raise ResourceLimitError(f"delta output exceeds limit ({total} > {limit} bytes)")
    return total


def _apply_copy(
    source: BytesLike,
    reader: DeltaReader,
    out: bytearray,
    total: int,
    limit: Optional[int]
) -> int:
    count = reader.read_varint()
    offset = reader.read_varint()
    if offset + count > len(source):
        raise BoundsError(offset, count, len(source))
    total = _check_total(total, count, limit)
    out += source[offset:offset + count]
    return total


def _apply_insert(
    reader: DeltaReader,
    out: bytearray,
    total: int,
    limit: Optional[int]
) -> int:
    position = reader.pos
    count = reader.read_varint()
    if count > reader.remaining:
        raise FormatError(
            f"insert count exceeds size of delta ({count} > {reader.remaining})",
            position=position,
        )
    total = _check_total(total, count, limit)
    out += reader.read_bytes(count)
    return total


def create_delta(source: BytesLike, target: BytesLike) -> bytes:
    """
    Compute the delta that turns source into target.

    Example:
        >>> delta = create_delta(b"ABCDEFGH" * 4, b"XYABCDEFGHABCDEFGHZZ")
        >>> apply_delta(b"ABCDEFGH" * 4, delta)
        b'XYABCDEFGHABCDEFGHZZ'
    """
    return DeltaEngine().create(source, target)


def apply_delta(
    source: BytesLike,
    delta: BytesLike,
    limit: Optional[int] = None,
    expected_digest: Optional[str] = None
) -> bytes:
    """Replay delta against source. See DeltaEngine.apply()."""
    return DeltaEngine().apply(source, delta, limit=limit, expected_digest=expected_digest)


# ============================================================================
# CONTAINER COMPRESSION - Optional outer wrapping for delta files
# ============================================================================

class CompressionType(Enum):
    """
    Compression applied to a delta file on disk.

    The delta format has no entropy coding of its own; literal runs in
    particular often compress well, so the CLI can wrap the whole stream.
    """
    NONE = "none"
    ZLIB = "zlib"
    LZ4 = "lz4"
    ZSTD = "zstd"


class CompressionRegistry:
    """Unified interface over zlib, lz4 and zstandard."""

    _zstd_compressors: Dict[int, Any] = {}

    @classmethod
    def compress(cls, data: bytes, comp_type: CompressionType, level: Optional[int] = None) -> bytes:
        """
        Compress data using the specified algorithm.

        Raises:
            ValidationError: If the compression type is not supported
        """
        if level is None:
            level = cls.get_compression_level(comp_type)
        if comp_type == CompressionType.NONE:
            return data
        elif comp_type == CompressionType.ZLIB:
            return zlib.compress(data, level)
        elif comp_type == CompressionType.LZ4:
            return cast(bytes, _lz4_frame.compress(data, compression_level=level))
        elif comp_type == CompressionType.ZSTD:
            return cast(bytes, cls._get_zstd_compressor(level).compress(data))
        else:
            raise ValidationError(f"Unsupported compression type: {comp_type}")

    @classmethod
    def decompress(cls, data: bytes, comp_type: CompressionType) -> bytes:
        """
        Decompress data using the specified algorithm.

        Raises:
            FormatError: If data is not a valid stream of that type
        """
        try:
            if comp_type == CompressionType.NONE:
                return data
            elif comp_type == CompressionType.ZLIB:
                return zlib.decompress(data)
            elif comp_type == CompressionType.LZ4:
                return cast(bytes, _lz4_frame.decompress(data))
            elif comp_type == CompressionType.ZSTD:
                dctx = _zstandard.ZstdDecompressor()
                return cast(bytes, dctx.decompress(data))
        except (zlib.error, RuntimeError, _zstandard.ZstdError) as e:
            raise FormatError(f"cannot decompress {comp_type.value} container: {e}") from e
        raise ValidationError(f"Unsupported compression type: {comp_type}")

    @classmethod
    def _get_zstd_compressor(cls, level: int) -> Any:
        """Get or create a ZstdCompressor for the given level."""
        if level not in cls._zstd_compressors:
            cls._zstd_compressors[level] = _zstandard.ZstdCompressor(level=level)
        return cls._zstd_compressors[level]

    @classmethod
    def get_compression_level(cls, comp_type: CompressionType) -> int:
        """Get default compression level for algorithm."""
        levels = {
            CompressionType.NONE: 0,
            CompressionType.ZLIB: 6,
            CompressionType.LZ4: 1,   # lz4 uses 0-16, 1 is fast
            CompressionType.ZSTD: 3,  # zstd uses 1-22, 3 is balanced
        }
        return levels.get(comp_type, 6)


# ============================================================================
# COMMAND LINE INTERFACE
# ============================================================================

def _read_file(path: str, what: str) -> bytes:
    try:
        size = os.path.getsize(path)
        check_memory_limit(size, f"loading {what}")
        with open(path, 'rb') as f:
            return f.read()
    except FileNotFoundError as e:
        raise FileIOError(f"{what} not found: {path}") from e
    except IsADirectoryError as e:
        raise FileIOError(f"{what} is a directory: {path}") from e
    except PermissionError:
        raise
    except OSError as e:
        raise FileIOError(f"cannot read {what} {path}: {e}") from e


def _write_file(path: str, data: bytes) -> None:
    try:
        with open(path, 'wb') as f:
            f.write(data)
    except PermissionError:
        raise
    except OSError as e:
        raise FileIOError(f"cannot write {path}: {e}") from e


def _run_command(args: Any, func: Any) -> int:
    """Run a CLI command, mapping errors to exit codes."""
    try:
        return cast(int, func(args))
    except DeltaError as e:
        print(Colors.error(f"{type(e).__name__}: {e}"), file=sys.stderr)
        return e.code
    except PermissionError as e:
        print(Colors.error(f"Permission denied: {e}"), file=sys.stderr)
        return 5
    except KeyboardInterrupt:
        print(Colors.warning("\nOperation cancelled by user"), file=sys.stderr)
        return 130


def cli_create(args: Any) -> int:
    """Create a delta file from SOURCE to TARGET."""
    start_time = time.time()
    if not args.quiet:
        print("Creating delta:")
        print(f"  Source: {args.source}")
        print(f"  Target: {args.target}")

    source = _read_file(args.source, "source file")
    target = _read_file(args.target, "target file")

    engine = DeltaEngine(collect_stats=True)
    delta = engine.create(source, target)
    comp_type = CompressionType(args.compress)
    payload = CompressionRegistry.compress(delta, comp_type)
    _write_file(args.output, payload)

    elapsed = time.time() - start_time
    if args.digest:
        print(content_digest(target))
    if not args.quiet:
        stats = engine.last_stats
        print(f"\n{Colors.success(f'Delta saved to: {args.output}')}")
        print(f"  Source size:    {len(source):,} bytes")
        print(f"  Target size:    {len(target):,} bytes")
        print(f"  Delta size:     {len(delta):,} bytes")
        if comp_type != CompressionType.NONE:
            print(f"  On disk ({comp_type.value}): {len(payload):,} bytes")
        if stats is not None:
            print(f"  Matched bytes:  {stats.matched_data:,} ({stats.efficiency:.1%})")
            print(f"  Literal bytes:  {stats.literal_data:,}")
            print(f"  Copies:         {stats.matches:,}")
        print(f"  Time:           {format_time(elapsed)}")
    return 0


def cli_apply(args: Any) -> int:
    """Apply a delta file to SOURCE and write the result."""
    start_time = time.time()
    if not args.quiet:
        print("Applying delta:")
        print(f"  Source: {args.source}")
        print(f"  Delta:  {args.delta}")

    source = _read_file(args.source, "source file")
    payload = _read_file(args.delta, "delta file")
    delta = CompressionRegistry.decompress(payload, CompressionType(args.compress))

    result = apply_delta(source, delta, limit=args.limit, expected_digest=args.verify)
    _write_file(args.output, result)

    elapsed = time.time() - start_time
    if not args.quiet:
        print(f"\n{Colors.success(f'File reconstructed: {args.output}')}")
        print(f"  Size: {len(result):,} bytes")
        if args.verify:
            print(f"  Digest verified: {args.verify}")
        print(f"  Time: {format_time(elapsed)}")
    return 0


def cli_info(args: Any) -> int:
    """Describe the commands in a delta file."""
    payload = _read_file(args.delta, "delta file")
    delta = CompressionRegistry.decompress(payload, CompressionType(args.compress))
    summary = summarize_delta(delta)

    if args.json:
        print(json.dumps(summary.to_dict(), indent=2))
        return 0

    print(Colors.bold(f"Delta: {args.delta}"))
    print(f"  Delta size:        {summary.delta_size:,} bytes")
    print(f"  Output size:       {summary.output_size:,} bytes")
    print(f"  Insert commands:   {summary.num_inserts:,} ({summary.literal_bytes:,} bytes)")
    print(f"  Copy commands:     {summary.num_copies:,} ({summary.copied_bytes:,} bytes)")
    print(f"  Min source size:   {summary.max_source_extent:,} bytes")
    print(f"  Ratio:             {summary.compression_ratio:.1%}")
    if args.commands:
        for cmd in iter_commands(delta):
            print(f"    {cmd!r}")
    return 0


def _make_modified(original: bytes, pattern: str, change_pct: float, rng: random.Random) -> bytes:
    size = len(original)
    change_size = max(1, int(size * (change_pct / 100.0)))

    def _rand_bytes(n: int) -> bytes:
        return bytes(rng.randint(0, 255) for _ in range(n))

    if pattern == 'flip-middle':
        change_start = max(0, (size - change_size) // 2)
        modified = bytearray(original)
        for i in range(change_start, min(size, change_start + change_size)):
            modified[i] = (modified[i] + 1) % 256
        return bytes(modified)
    elif pattern == 'append':
        return original + _rand_bytes(change_size)
    elif pattern == 'prepend':
        return _rand_bytes(change_size) + original
    elif pattern == 'insert-middle':
        insert_at = size // 2
        return original[:insert_at] + _rand_bytes(change_size) + original[insert_at:]
    raise ValidationError(f"Unknown benchmark pattern: {pattern}")


def cli_benchmark(args: Any) -> int:
    """Benchmark create and apply on generated data."""
    size_bytes = args.size * 1024
    rng = random.Random(args.seed)

    if not args.quiet:
        print(Colors.bold(f"\n{'=' * 60}"))
        print(Colors.bold("  fossil-delta Benchmark".center(60)))
        print(Colors.bold(f"{'=' * 60}\n"))
        print(f"Test data size: {format_size(size_bytes)}")
        print(f"Pattern:        {args.pattern} ({args.change_pct}%)")
        print()

    original = bytes(rng.randint(0, 255) for _ in range(size_bytes))
    modified = _make_modified(original, args.pattern, args.change_pct, rng)

    engine = DeltaEngine(collect_stats=True)
    start = time.perf_counter()
    delta = engine.create(original, modified)
    create_time = time.perf_counter() - start

    start = time.perf_counter()
    reconstructed = engine.apply(original, delta)
    apply_time = time.perf_counter() - start

    correct = reconstructed == modified
    if not args.quiet:
        stats = engine.last_stats
        print(f"  Create: {format_time(create_time)} "
              f"({len(modified) / max(create_time, 1e-9) / 1024 / 1024:.2f} MB/s)")
        print(f"  Apply:  {format_time(apply_time)} "
              f"({len(modified) / max(apply_time, 1e-9) / 1024 / 1024:.2f} MB/s)")
        print(f"  Delta:  {len(delta):,} bytes for {len(modified):,} byte target")
        if stats is not None:
            print(f"  {stats!r}")
        if correct:
            print(Colors.success("Verification: PASSED"))
        else:
            print(Colors.error("Verification: FAILED"))

    return 0 if correct else 1


def create_parser() -> argparse.ArgumentParser:
    """Build the argument parser for the fossil-delta command."""
    parser = argparse.ArgumentParser(
        prog='fossil-delta',
        description='Create and apply compact binary deltas.',
    )
    parser.add_argument('--version', action='version', version=f'%(prog)s {__version__}')
    parser.add_argument('-q', '--quiet', action='store_true', help='suppress progress output')
    parser.add_argument('-v', '--verbose', action='store_true', help='enable INFO logging')
    parser.add_argument('--no-color', action='store_true', help='disable colored output')

    compress_choices = [t.value for t in CompressionType]
    sub = parser.add_subparsers(dest='command', required=True)

    p_create = sub.add_parser('create', help='create a delta from SOURCE to TARGET')
    p_create.add_argument('source')
    p_create.add_argument('target')
    p_create.add_argument('-o', '--output', required=True, help='delta file to write')
    p_create.add_argument('--compress', choices=compress_choices,
                          default=Config.DEFAULT_COMPRESSION, help='container compression')
    p_create.add_argument('--digest', action='store_true',
                          help='print the XXH64 digest of TARGET (for apply --verify)')
    p_create.set_defaults(func=cli_create)

    p_apply = sub.add_parser('apply', help='apply DELTA to SOURCE')
    p_apply.add_argument('source')
    p_apply.add_argument('delta')
    p_apply.add_argument('-o', '--output', required=True, help='reconstructed file to write')
    p_apply.add_argument('--compress', choices=compress_choices,
                         default=Config.DEFAULT_COMPRESSION, help='container compression')
    p_apply.add_argument('--limit', type=int, default=None, help='maximum output size in bytes')
    p_apply.add_argument('--verify', metavar='HEX', default=None,
                         help='expected XXH64 digest of the output')
    p_apply.set_defaults(func=cli_apply)

    p_info = sub.add_parser('info', help='describe a delta file')
    p_info.add_argument('delta')
    p_info.add_argument('--compress', choices=compress_choices,
                        default=Config.DEFAULT_COMPRESSION, help='container compression')
    p_info.add_argument('--json', action='store_true', help='print the summary as JSON')
    p_info.add_argument('--commands', action='store_true', help='list every command')
    p_info.set_defaults(func=cli_info)

    p_bench = sub.add_parser('benchmark', help='benchmark on generated data')
    p_bench.add_argument('--size', type=int, default=256, help='data size in KB')
    p_bench.add_argument('--pattern', default='flip-middle',
                         choices=['flip-middle', 'append', 'prepend', 'insert-middle'])
    p_bench.add_argument('--change-pct', type=float, default=10.0)
    p_bench.add_argument('--seed', type=int, default=None)
    p_bench.set_defaults(func=cli_benchmark)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """
    Main CLI entry point.

    Returns:
        Exit code (0 for success, the error's code otherwise)
    """
    parser = create_parser()
    args = parser.parse_args(argv)
    use_colors = Config.USE_COLORS
    if args.no_color:
        Config.USE_COLORS = False
    configure_logging(args.verbose)
    try:
        return _run_command(args, args.func)
    finally:
        Config.USE_COLORS = use_colors


if __name__ == "__main__":
    sys.exit(main())
