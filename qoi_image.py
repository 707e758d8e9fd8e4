#!/usr/bin/env python3

import os
import sys
import time
import logging
import optparse
from dataclasses import dataclass
from typing import Optional

import numpy as np
from PIL import Image

import qoi

logger = logging.getLogger(__name__)

QOI_EXTENSION = '.qoi'
OPEN_ERROR_MESSAGE = 'unable to open file'


@dataclass
class OpenResult:
    raster: Optional[qoi.Raster] = None
    error_message: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.raster is not None


def from_image(img, colorspace=qoi.QOI_SRGB):
    """Copy a PIL image into a raster, keeping alpha only where the image has it."""
    if img.mode not in ('RGB', 'RGBA'):
        has_alpha = 'A' in img.getbands() or 'transparency' in img.info
        img = img.convert('RGBA' if has_alpha else 'RGB')
    return qoi.Raster(np.array(img), colorspace=colorspace)


def to_image(raster):
    if raster.channels == 3:
        return Image.fromarray(np.ascontiguousarray(raster.pixels[:, :, :3]))
    return Image.fromarray(raster.pixels)


def read_qoi(path):
    with open(path, 'rb') as f:
        return qoi.decode(f.read())


def write_qoi(path, raster):
    data = qoi.encode(raster)
    with open(path, 'wb') as f:
        f.write(data)
    return len(data)


def is_qoi(path):
    return os.path.splitext(path)[1].lower() == QOI_EXTENSION


def open_file(path):
    try:
        if is_qoi(path):
            raster = read_qoi(path)
        else:
            with Image.open(path) as img:
                raster = from_image(img)
    except (OSError, qoi.QOIError) as e:
        logger.warning('failed to open %s: %s', path, e)
        return OpenResult(error_message=f'{OPEN_ERROR_MESSAGE}: {os.path.basename(path)}')
    return OpenResult(raster=raster)


def convert(src, dst):
    """Convert between .qoi and any format PIL can write, chosen by extension."""
    result = open_file(src)
    if not result.ok:
        raise qoi.FormatError(result.error_message)
    if is_qoi(dst):
        return write_qoi(dst, result.raster)
    to_image(result.raster).save(dst)
    return os.path.getsize(dst)


def main(argv=None):
    parser = optparse.OptionParser(usage='usage: %prog [options] input output')
    parser.add_option('-t', '--timing', dest='timing',
                      default=False, action='store_true',
                      help='report encode and decode time of the image (%default)')
    (options, args) = parser.parse_args(argv)

    if len(args) != 2:
        parser.print_usage()
        return 1

    src, dst = args
    start = time.perf_counter()
    try:
        size = convert(src, dst)
    except (OSError, ValueError) as e:
        print(f'error: {e}', file=sys.stderr)
        return 1
    elapsed = time.perf_counter() - start

    print(f'{dst}: {size} bytes')
    if options.timing:
        raster = open_file(dst if is_qoi(dst) else src).raster
        start = time.perf_counter()
        data = qoi.encode(raster)
        encode_ms = (time.perf_counter() - start) * 1000
        start = time.perf_counter()
        qoi.decode(data)
        decode_ms = (time.perf_counter() - start) * 1000
        print(f'convert {elapsed * 1000:.2f} ms, qoi encode {encode_ms:.2f} ms, '
              f'qoi decode {decode_ms:.2f} ms')
    return 0


if __name__ == '__main__':
    sys.exit(main())
