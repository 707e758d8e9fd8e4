import logging
import struct
from collections import Counter
from dataclasses import dataclass, field
from typing import Iterator, Optional

import numpy as np

logger = logging.getLogger(__name__)

QOI_OP_INDEX = 0x00
QOI_OP_DIFF = 0x40
QOI_OP_LUMA = 0x80
QOI_OP_RUN = 0xC0
QOI_OP_RGB = 0xFE
QOI_OP_RGBA = 0xFF
QOI_MASK_2 = 0xC0

QOI_MAGIC = b"qoif"
QOI_HEADER_FMT = ">4sIIBB"
QOI_HEADER_SIZE = struct.calcsize(QOI_HEADER_FMT)
QOI_END_MARKER = b"\x00" * 7 + b"\x01"
QOI_PIXELS_MAX = 400000000
QOI_MAX_RUN = 62
HASH_SIZE = 64

QOI_SRGB = 0
QOI_LINEAR = 1

qoi_ops = ['QOI_OP_RUN', 'QOI_OP_INDEX', 'QOI_OP_DIFF',
           'QOI_OP_LUMA', 'QOI_OP_RGB', 'QOI_OP_RGBA']

empty_pixel = [0, 0, 0, 255]
null_pixel = [0, 0, 0, 0]


class QOIError(ValueError):
    pass


class FormatError(QOIError):
    """Header too short, bad magic or unusable dimensions."""


class TruncatedStreamError(QOIError):
    """Opcode stream ended before every pixel was produced."""


class InvalidInputError(QOIError):
    """Raster handed to the encoder is missing or empty."""


@dataclass
class Pixel:
    px_bytes: list = field(default_factory=lambda: empty_pixel.copy())

    def set(self, value):
        self.px_bytes = list(value)

    @property
    def alpha(self) -> int:
        return self.px_bytes[3]

    @property
    def hash(self) -> int:
        return pixel_hash(self.px_bytes)


def pixel_hash(px) -> int:
    """Color cache slot of an (r, g, b, a) sequence."""
    return (px[0] * 3 + px[1] * 5 + px[2] * 7 + px[3] * 11) % HASH_SIZE


@dataclass
class Header:
    width: int
    height: int
    channels: int = 4
    colorspace: int = QOI_SRGB

    @property
    def pixel_count(self) -> int:
        return self.width * self.height


@dataclass(eq=False)
class Raster:
    """Row-major pixel buffer of shape (height, width, 3|4).

    ``channels`` is the channel tag written to / read from the header. A
    decoded raster carries as many channels as its header names, so a
    3-channel stream decodes to RGB pixels. The encoder also accepts RGBA
    pixels tagged as 3-channel and ignores their alpha.
    """
    pixels: np.ndarray
    channels: Optional[int] = None
    colorspace: int = QOI_SRGB

    def __post_init__(self):
        self.pixels = np.ascontiguousarray(self.pixels, dtype=np.uint8)
        if self.channels is None and self.pixels.ndim == 3:
            self.channels = self.pixels.shape[2]

    @property
    def width(self) -> int:
        return self.pixels.shape[1]

    @property
    def height(self) -> int:
        return self.pixels.shape[0]

    def __eq__(self, other):
        if not isinstance(other, Raster):
            return NotImplemented
        return (self.channels == other.channels
                and self.colorspace == other.colorspace
                and np.array_equal(self.pixels, other.pixels))


# byte cursors
# ---------------

class ByteWriter:
    def __init__(self):
        self.buffer = bytearray()

    def write(self, value: int):
        self.buffer.append(value)

    def write_bytes(self, values):
        self.buffer.extend(values)

    def output(self) -> bytes:
        return bytes(self.buffer)


class ByteReader:
    def __init__(self, data, pos=0):
        self.data = data
        self.pos = pos

    def read(self) -> int:
        if self.pos >= len(self.data):
            raise TruncatedStreamError(f"unexpected end of stream at byte {self.pos}")
        value = self.data[self.pos]
        self.pos += 1
        return value

    def read_bytes(self, n: int) -> bytes:
        if self.pos + n > len(self.data):
            raise TruncatedStreamError(f"unexpected end of stream at byte {self.pos}")
        values = self.data[self.pos:self.pos + n]
        self.pos += n
        return values


# header codec
# ---------------

def write_header(writer, header):
    writer.write_bytes(struct.pack(QOI_HEADER_FMT, QOI_MAGIC, header.width,
                                   header.height, header.channels,
                                   header.colorspace))


def read_header(data) -> Header:
    if len(data) < QOI_HEADER_SIZE:
        raise FormatError(f"header too short: {len(data)} < {QOI_HEADER_SIZE} bytes")
    magic, width, height, channels, colorspace = struct.unpack(
        QOI_HEADER_FMT, bytes(data[:QOI_HEADER_SIZE]))
    if magic != QOI_MAGIC:
        raise FormatError(f"bad magic {magic!r}")
    return Header(width, height, channels, colorspace)


def write_end(writer):
    writer.write_bytes(QOI_END_MARKER)


# pixel stream
# ---------------

def encode(raster) -> bytes:
    if raster is None:
        raise InvalidInputError("no raster to encode")
    if raster.pixels.ndim != 3:
        raise InvalidInputError(f"expected (height, width, channels) pixels, got shape {raster.pixels.shape}")
    width, height = raster.width, raster.height
    if width == 0 or height == 0:
        raise InvalidInputError(f"empty raster {width}x{height}")
    channels = raster.channels
    if channels not in (3, 4) or raster.pixels.shape[2] < channels:
        raise InvalidInputError(f"unsupported channel count {channels}")

    total_size = width * height
    pixel_data = raster.pixels.reshape(-1, raster.pixels.shape[2]).tolist()
    hash_array = [null_pixel.copy() for _ in range(HASH_SIZE)]

    writer = ByteWriter()
    write_header(writer, Header(width, height, channels, raster.colorspace))

    run = 0
    prev_px_value = empty_pixel.copy()
    for i, px in enumerate(pixel_data):
        # 3-channel sources carry the last seen alpha forward
        alpha = px[3] if channels == 4 else prev_px_value[3]
        px_value = [px[0], px[1], px[2], alpha]

        if px_value == prev_px_value:
            run += 1
            if run == QOI_MAX_RUN or (i + 1) >= total_size:
                writer.write(QOI_OP_RUN | (run - 1))
                run = 0
            continue

        if run:
            writer.write(QOI_OP_RUN | (run - 1))
            run = 0

        index_pos = pixel_hash(px_value)
        if hash_array[index_pos] == px_value:
            writer.write(QOI_OP_INDEX | index_pos)
            prev_px_value = px_value
            continue
        hash_array[index_pos] = px_value

        if px_value[3] != prev_px_value[3]:
            writer.write(QOI_OP_RGBA)
            writer.write_bytes(px_value)
            prev_px_value = px_value
            continue

        vr = (384 + px_value[0] - prev_px_value[0]) % 256 - 128
        vg = (384 + px_value[1] - prev_px_value[1]) % 256 - 128
        vb = (384 + px_value[2] - prev_px_value[2]) % 256 - 128

        vg_r = (384 + vr - vg) % 256 - 128
        vg_b = (384 + vb - vg) % 256 - 128

        if all(-3 < x < 2 for x in (vr, vg, vb)):
            writer.write(QOI_OP_DIFF | (vr + 2) << 4 | (vg + 2) << 2 | (vb + 2))
        elif all(-9 < x < 8 for x in (vg_r, vg_b)) and -33 < vg < 32:
            writer.write(QOI_OP_LUMA | (vg + 32))
            writer.write((vg_r + 8) << 4 | (vg_b + 8))
        else:
            writer.write(QOI_OP_RGB)
            writer.write_bytes(px_value[:3])
        prev_px_value = px_value

    write_end(writer)
    data = writer.output()
    logger.debug("encoded %dx%d (%d channels) into %d bytes",
                 width, height, channels, len(data))
    return data


def decode(data) -> Raster:
    header = read_header(data)
    total_size = header.pixel_count
    if total_size > QOI_PIXELS_MAX:
        raise FormatError(f"image of {header.width}x{header.height} exceeds {QOI_PIXELS_MAX} pixels")

    out = bytearray(total_size * 4)
    out_size = len(out)
    hash_array = [null_pixel.copy() for _ in range(HASH_SIZE)]
    px = Pixel()
    reader = ByteReader(data, QOI_HEADER_SIZE)
    stream_end = len(data) - len(QOI_END_MARKER)

    write_pos = 0
    while reader.pos < stream_end and write_pos < out_size:
        b1 = reader.read()

        if b1 == QOI_OP_RGB:
            r, g, b = reader.read_bytes(3)
            px.set([r, g, b, px.alpha])
            hash_array[px.hash] = px.px_bytes.copy()
        elif b1 == QOI_OP_RGBA:
            px.set(reader.read_bytes(4))
            hash_array[px.hash] = px.px_bytes.copy()
        elif (b1 & QOI_MASK_2) == QOI_OP_RUN:
            run = min((b1 & 0x3F) + 1, (out_size - write_pos) // 4)
            out[write_pos:write_pos + run * 4] = bytes(px.px_bytes) * run
            write_pos += run * 4
            continue
        elif (b1 & QOI_MASK_2) == QOI_OP_INDEX:
            px.set(hash_array[b1 & 0x3F])
        elif (b1 & QOI_MASK_2) == QOI_OP_DIFF:
            r, g, b, a = px.px_bytes
            px.set([(r + ((b1 >> 4) & 0x03) - 2) % 256,
                    (g + ((b1 >> 2) & 0x03) - 2) % 256,
                    (b + (b1 & 0x03) - 2) % 256,
                    a])
            hash_array[px.hash] = px.px_bytes.copy()
        else:
            b2 = reader.read()
            vg = (b1 & 0x3F) - 32
            r, g, b, a = px.px_bytes
            px.set([(r + vg - 8 + ((b2 >> 4) & 0x0F)) % 256,
                    (g + vg) % 256,
                    (b + vg - 8 + (b2 & 0x0F)) % 256,
                    a])
            hash_array[px.hash] = px.px_bytes.copy()

        out[write_pos:write_pos + 4] = bytes(px.px_bytes)
        write_pos += 4

    if write_pos < out_size:
        raise TruncatedStreamError(
            f"stream ended after {write_pos // 4} of {total_size} pixels")

    logger.debug("decoded %d bytes into %dx%d", len(data), header.width, header.height)
    pixels = np.frombuffer(out, dtype=np.uint8).reshape(header.height, header.width, 4)
    if header.channels == 3:
        pixels = pixels[:, :, :3].copy()
    return Raster(pixels, header.channels, header.colorspace)


# opcode scanning
# ---------------

def iter_ops(data) -> Iterator[str]:
    """Yield the name of every opcode in an encoded stream, in order."""
    read_header(data)
    reader = ByteReader(data, QOI_HEADER_SIZE)
    stream_end = len(data) - len(QOI_END_MARKER)
    while reader.pos < stream_end:
        b1 = reader.read()
        if b1 == QOI_OP_RGB:
            reader.read_bytes(3)
            yield 'QOI_OP_RGB'
        elif b1 == QOI_OP_RGBA:
            reader.read_bytes(4)
            yield 'QOI_OP_RGBA'
        elif (b1 & QOI_MASK_2) == QOI_OP_RUN:
            yield 'QOI_OP_RUN'
        elif (b1 & QOI_MASK_2) == QOI_OP_INDEX:
            yield 'QOI_OP_INDEX'
        elif (b1 & QOI_MASK_2) == QOI_OP_DIFF:
            yield 'QOI_OP_DIFF'
        else:
            reader.read()
            yield 'QOI_OP_LUMA'


def op_counts(data) -> dict:
    counts = Counter(iter_ops(data))
    return {op: counts[op] for op in qoi_ops}
