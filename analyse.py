import sys
import optparse

import matplotlib.pyplot as plt
import numpy as np
import tabulate

import qoi
import qoi_image

HASH_SIZE = qoi.HASH_SIZE


def pixel_hash_distribution(raster, hash_function=qoi.pixel_hash, show=True):
    """Count how many pixels of the raster land in each color cache slot."""
    pixel_grid = raster.pixels
    if raster.channels == 3:
        alpha = np.full(pixel_grid.shape[:2] + (1,), 255, dtype=np.uint8)
        pixel_grid = np.concatenate([pixel_grid[:, :, :3], alpha], axis=2)

    dist = []
    rows = len(pixel_grid)
    cols = len(pixel_grid[0])

    for r in range(rows):
        for c in range(cols):
            dist.append(hash_function([int(v) for v in pixel_grid[r][c]]))

    if show:
        plt.hist(dist, color='blue', edgecolor='black', bins=HASH_SIZE)
        plt.show()
    return np.bincount(dist, minlength=HASH_SIZE)


def op_frequency(data):
    freq = qoi.op_counts(data)
    total = sum(freq.values())
    if total == 0:
        return {op: 0.0 for op in freq}
    return {op: count / total for op, count in freq.items()}


def main(argv=None):
    parser = optparse.OptionParser(usage='usage: %prog [options] image')
    parser.add_option('-p', '--plot', dest='plot',
                      default=False, action='store_true',
                      help='plot the color cache hash distribution (%default)')
    (options, args) = parser.parse_args(argv)

    if len(args) != 1:
        parser.print_usage()
        return 1

    result = qoi_image.open_file(args[0])
    if not result.ok:
        print(result.error_message)
        return 1

    data = qoi.encode(result.raster)
    freq = op_frequency(data)
    print(tabulate.tabulate([[args[0]] + [freq[op] for op in qoi.qoi_ops]],
                            headers=['image'] + qoi.qoi_ops,
                            floatfmt='.2f', tablefmt='plain'))

    slots = pixel_hash_distribution(result.raster, show=options.plot)
    print(f"cache slots used: {np.count_nonzero(slots)}/{HASH_SIZE}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
