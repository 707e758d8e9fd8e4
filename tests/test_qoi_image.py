"""Tests for the PIL bridge, file helpers and qoiconvert."""
import numpy as np
import pytest
from PIL import Image

import qoi
import qoi_image


def sample_pixels(channels=4):
    rng = np.random.default_rng(11)
    return rng.integers(0, 256, (6, 8, channels), dtype=np.uint8)


class TestImageBridge:
    def test_rgba_image(self):
        pixels = sample_pixels(4)
        raster = qoi_image.from_image(Image.fromarray(pixels))
        assert raster.channels == 4
        assert (raster.pixels == pixels).all()

    def test_rgb_image(self):
        raster = qoi_image.from_image(Image.fromarray(sample_pixels(3)))
        assert raster.channels == 3

    def test_greyscale_becomes_rgb(self):
        raster = qoi_image.from_image(Image.new('L', (3, 2), 77))
        assert raster.channels == 3
        assert (raster.pixels == 77).all()

    def test_greyscale_alpha_becomes_rgba(self):
        raster = qoi_image.from_image(Image.new('LA', (3, 2), (77, 5)))
        assert raster.channels == 4
        assert raster.pixels[0, 0].tolist() == [77, 77, 77, 5]

    def test_to_image_modes(self):
        decoded = qoi.decode(qoi.encode(qoi.Raster(sample_pixels(3))))
        assert qoi_image.to_image(decoded).mode == 'RGB'
        assert qoi_image.to_image(qoi.Raster(sample_pixels(4))).mode == 'RGBA'


class TestFiles:
    def test_write_and_read_qoi(self, tmp_path):
        raster = qoi.Raster(sample_pixels(4), colorspace=qoi.QOI_LINEAR)
        path = tmp_path / 'image.qoi'
        size = qoi_image.write_qoi(path, raster)

        assert size == path.stat().st_size
        assert qoi_image.read_qoi(path) == raster

    def test_open_png(self, tmp_path):
        path = tmp_path / 'image.png'
        Image.fromarray(sample_pixels(4)).save(path)
        result = qoi_image.open_file(str(path))

        assert result.ok
        assert result.error_message is None
        assert (result.raster.pixels == sample_pixels(4)).all()

    def test_open_corrupt_qoi(self, tmp_path):
        path = tmp_path / 'broken.qoi'
        path.write_bytes(b'qoix' + bytes(20))
        result = qoi_image.open_file(str(path))

        assert not result.ok
        assert result.error_message == 'unable to open file: broken.qoi'

    def test_open_missing_file(self, tmp_path):
        result = qoi_image.open_file(str(tmp_path / 'missing.png'))
        assert result.error_message == 'unable to open file: missing.png'


class TestConvert:
    def test_png_to_qoi_and_back(self, tmp_path):
        png_in = tmp_path / 'in.png'
        qoi_path = tmp_path / 'mid.qoi'
        png_out = tmp_path / 'out.png'
        Image.fromarray(sample_pixels(3)).save(png_in)

        qoi_image.convert(str(png_in), str(qoi_path))
        qoi_image.convert(str(qoi_path), str(png_out))

        with Image.open(png_out) as img:
            assert img.mode == 'RGB'
            assert (np.array(img) == sample_pixels(3)).all()

    def test_convert_bad_input(self, tmp_path):
        path = tmp_path / 'short.qoi'
        path.write_bytes(b'qoif')
        with pytest.raises(qoi.FormatError):
            qoi_image.convert(str(path), str(tmp_path / 'out.png'))

    def test_main(self, tmp_path, capsys):
        png_in = tmp_path / 'in.png'
        Image.fromarray(sample_pixels(4)).save(png_in)
        out = tmp_path / 'out.qoi'

        assert qoi_image.main(['-t', str(png_in), str(out)]) == 0
        captured = capsys.readouterr().out
        assert f'{out}: {out.stat().st_size} bytes' in captured
        assert 'qoi encode' in captured

    def test_main_usage(self):
        assert qoi_image.main([]) == 1

    def test_main_error(self, tmp_path, capsys):
        assert qoi_image.main([str(tmp_path / 'nope.qoi'), str(tmp_path / 'x.png')]) == 1
        assert 'unable to open file: nope.qoi' in capsys.readouterr().err
