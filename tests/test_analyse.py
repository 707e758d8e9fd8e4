"""Tests for the hash distribution and opcode frequency analysis."""
import numpy as np
from PIL import Image

import analyse
import qoi


class TestHashDistribution:
    def test_counts_every_pixel(self):
        rng = np.random.default_rng(5)
        raster = qoi.Raster(rng.integers(0, 256, (9, 7, 4), dtype=np.uint8))
        slots = analyse.pixel_hash_distribution(raster, show=False)

        assert len(slots) == analyse.HASH_SIZE
        assert slots.sum() == 63

    def test_single_colour_hits_one_slot(self):
        raster = qoi.Raster(np.full((4, 4, 3), 10, dtype=np.uint8))
        slots = analyse.pixel_hash_distribution(raster, show=False)

        slot = qoi.pixel_hash([10, 10, 10, 255])
        assert slots[slot] == 16
        assert np.count_nonzero(slots) == 1

    def test_plot(self):
        raster = qoi.Raster(np.zeros((2, 2, 4), dtype=np.uint8))
        analyse.pixel_hash_distribution(raster, show=True)


class TestOpFrequency:
    def test_frequencies_sum_to_one(self):
        rng = np.random.default_rng(6)
        data = qoi.encode(qoi.Raster(rng.integers(0, 4, (8, 8, 4), dtype=np.uint8) * 80))
        freq = analyse.op_frequency(data)

        assert list(freq) == qoi.qoi_ops
        assert abs(sum(freq.values()) - 1.0) < 1e-9

    def test_only_runs(self):
        pixels = np.zeros((3, 3, 4), dtype=np.uint8)
        pixels[:, :, 3] = 255
        freq = analyse.op_frequency(qoi.encode(qoi.Raster(pixels)))
        assert freq['QOI_OP_RUN'] == 1.0

    def test_main(self, tmp_path, capsys):
        path = tmp_path / 'image.png'
        Image.new('RGB', (5, 5), (1, 2, 3)).save(path)

        assert analyse.main([str(path)]) == 0
        assert 'cache slots used: 1/64' in capsys.readouterr().out

    def test_main_unreadable(self, tmp_path, capsys):
        assert analyse.main([str(tmp_path / 'missing.qoi')]) == 1
        assert 'unable to open file' in capsys.readouterr().out
