#!/usr/bin/env python3

import io
import os
import sys
import json
import time
import optparse
from dataclasses import dataclass, field, asdict

import tabulate

import qoi
import qoi_image

report_header = ['image', 'pixels', 'qoi bytes', 'png bytes',
                 'bytes/pixel', 'encode ms', 'decode ms']


@dataclass
class ImageRecord:
    name: str
    width: int
    height: int
    channels: int
    qoi_size: int
    png_size: int
    encode_ms: float
    decode_ms: float
    ops: dict = field(default_factory=dict)

    @property
    def pixels(self) -> int:
        return self.width * self.height

    @property
    def bytes_per_pixel(self) -> float:
        return self.qoi_size / self.pixels

    def row(self):
        return [self.name, self.pixels, self.qoi_size, self.png_size,
                self.bytes_per_pixel, self.encode_ms, self.decode_ms]


def png_size(raster):
    buf = io.BytesIO()
    qoi_image.to_image(raster).save(buf, format='PNG')
    return buf.tell()


def image_paths(paths):
    """Expand directories into the files they hold, in name order."""
    found = []
    for path in paths:
        if os.path.isdir(path):
            found += [os.path.join(path, name) for name in sorted(os.listdir(path))
                      if os.path.isfile(os.path.join(path, name))]
        else:
            found.append(path)
    return found


def measure(path, repeat=1):
    result = qoi_image.open_file(path)
    if not result.ok:
        raise qoi.FormatError(result.error_message)
    raster = result.raster

    encode_s = decode_s = 0.0
    for _ in range(repeat):
        start = time.perf_counter()
        data = qoi.encode(raster)
        encode_s += time.perf_counter() - start

        start = time.perf_counter()
        decoded = qoi.decode(data)
        decode_s += time.perf_counter() - start

    if decoded != raster:
        raise qoi.QOIError(f'{os.path.basename(path)} changed after a round trip')

    return ImageRecord(name=os.path.basename(path),
                       width=raster.width, height=raster.height,
                       channels=raster.channels,
                       qoi_size=len(data), png_size=png_size(raster),
                       encode_ms=encode_s * 1000 / repeat,
                       decode_ms=decode_s * 1000 / repeat,
                       ops=qoi.op_counts(data))


def total_row(records):
    pixels = sum(r.pixels for r in records)
    qoi_size = sum(r.qoi_size for r in records)
    return ['total', pixels, qoi_size, sum(r.png_size for r in records),
            qoi_size / pixels,
            sum(r.encode_ms for r in records), sum(r.decode_ms for r in records)]


def op_mix_rows(records):
    rows = []
    for r in records:
        total = sum(r.ops.values()) or 1
        rows.append([r.name] + [r.ops[op] / total for op in qoi.qoi_ops])
    return rows


def main(argv=None):
    parser = optparse.OptionParser(usage='usage: %prog [options] image|directory...')
    parser.add_option('-r', '--repeat', dest='repeat',
                      default=1, type=int,
                      help='encode/decode passes averaged per image (%default)')
    parser.add_option('-q', '--ops', dest='ops',
                      default=False, action='store_true',
                      help='also print the opcode mix of each image (%default)')
    parser.add_option('-j', '--json', dest='json_path',
                      default=None,
                      help='write the per-image records to this file')
    (options, args) = parser.parse_args(argv)

    if not args:
        parser.print_usage()
        return 1

    records = []
    for path in image_paths(args):
        try:
            records.append(measure(path, max(1, options.repeat)))
        except qoi.QOIError as e:
            print(f'skipping {path}: {e}')

    if not records:
        print('no readable images')
        return 1

    print(tabulate.tabulate([r.row() for r in records] + [total_row(records)],
                            headers=report_header, floatfmt='.2f', tablefmt='plain'))

    if options.ops:
        print()
        print(tabulate.tabulate(op_mix_rows(records), headers=['image'] + qoi.qoi_ops,
                                floatfmt='.2f', tablefmt='plain'))

    if options.json_path:
        with open(options.json_path, 'w') as f:
            json.dump([asdict(r) for r in records], f, indent=4)
    return 0


if __name__ == '__main__':
    sys.exit(main())
