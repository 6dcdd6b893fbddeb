import cv2
import numpy as np
import pytest

from drawvsai.config import SketchConfig
from drawvsai.sketch_processor import SketchProcessor


def blank(width=640, height=480):
    return np.zeros((height, width, 4), dtype=np.uint8)


@pytest.fixture
def processor():
    return SketchProcessor(SketchConfig())


def test_empty_canvas(processor):
    result = processor.preprocess(blank())

    assert result.is_empty
    assert result.ink_ratio == 0.0
    assert result.tensor.shape == (1, 28, 28, 1)
    assert result.tensor.dtype == np.float32
    assert not result.tensor.any()


def test_faint_pixels_are_not_ink(processor):
    raster = blank()
    raster[:, :, 3] = 5
    assert processor.preprocess(raster).is_empty


def test_single_pixel_is_centered(processor):
    raster = blank()
    raster[240, 320] = (0, 0, 0, 255)

    result = processor.preprocess(raster)

    assert result.crop == (319, 239, 3)
    assert result.ink_ratio > 0

    img = result.tensor[0, :, :, 0]
    assert img[13, 13] > 0
    assert img[14, 14] > 0
    assert img[0, 0] == 0 and img[27, 27] == 0

    ys, xs = np.mgrid[0:28, 0:28]
    total = img.sum()
    assert (img * xs).sum() / total == pytest.approx(13.5, abs=0.1)
    assert (img * ys).sum() / total == pytest.approx(13.5, abs=0.1)


def test_drawing_values_in_range(processor):
    raster = blank()
    cv2.circle(raster, (320, 240), 80, (0, 0, 0, 255), 10)

    result = processor.preprocess(raster)

    assert 0.05 < result.ink_ratio < 0.9
    assert result.tensor.min() >= 0.0
    assert result.tensor.max() == pytest.approx(1.0)


def test_crop_is_padded_square(processor):
    raster = blank()
    cv2.rectangle(raster, (100, 100), (199, 149), (0, 0, 0, 255), -1)

    x, y, size = processor.preprocess(raster).crop

    # 100px wide box plus 10% padding on each side
    assert size == 120
    assert x == 90
    assert y == 65


def test_crop_clamped_to_canvas(processor):
    raster = blank()
    raster[0:4, 0:4] = (0, 0, 0, 255)

    x, y, size = processor.preprocess(raster).crop

    assert (x, y) == (0, 0)
    assert size >= 4


def test_crop_never_exceeds_canvas(processor):
    raster = blank(100, 80)
    raster[:, :] = (0, 0, 0, 255)

    x, y, size = processor.preprocess(raster).crop

    assert size == 80
    assert 0 <= x <= 20 and y == 0


def test_dilation_thickens_strokes():
    raster = blank()
    cv2.line(raster, (100, 240), (540, 240), (0, 0, 0, 255), 6)

    plain = SketchProcessor(SketchConfig()).preprocess(raster)
    dilated = SketchProcessor(SketchConfig(dilate_iterations=1)).preprocess(raster)

    assert dilated.ink_ratio > plain.ink_ratio


def test_rejects_non_rgba(processor):
    with pytest.raises(ValueError):
        processor.preprocess(np.zeros((480, 640, 3), dtype=np.uint8))


def test_model_view_image(processor):
    raster = blank()
    cv2.circle(raster, (320, 240), 50, (0, 0, 0, 255), 8)

    image = processor.to_image(processor.preprocess(raster), scale=5)

    assert image.size == (140, 140)
    assert image.mode == 'L'
