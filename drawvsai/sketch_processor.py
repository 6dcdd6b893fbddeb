"""
Sketch Processor Module - Canvas to Model Input
===============================================
Crops the drawing to its ink, rescales it to the classifier's input size
and converts it to a single-channel intensity tensor (ink high, paper 0).
"""

import math
from dataclasses import dataclass
from typing import Optional, Tuple

import cv2
import numpy as np
from PIL import Image

from .config import SketchConfig


@dataclass
class SketchInput:
    """
    Preprocessed sketch ready for inference.

    Attributes:
        tensor: (1, S, S, 1) float32 intensities in [0, 1]
        ink_ratio: Fraction of output pixels that carry ink
        crop: Square crop (x, y, size) taken from the canvas, None if empty
    """
    tensor: np.ndarray
    ink_ratio: float
    crop: Optional[Tuple[int, int, int]] = None

    @property
    def is_empty(self) -> bool:
        return self.crop is None


class SketchProcessor:
    """
    Converts an RGBA drawing raster into classifier input.

    Steps: find the ink bounding box, take a padded square around it,
    composite it on white and resample, then invert, denoise and boost
    contrast.
    """

    def __init__(self, config: SketchConfig = SketchConfig()):
        self.config = config

    def _empty(self) -> SketchInput:
        size = self.config.input_size
        return SketchInput(
            tensor=np.zeros((1, size, size, 1), dtype=np.float32),
            ink_ratio=0.0,
            crop=None
        )

    def ink_bbox(self, raster: np.ndarray) -> Optional[Tuple[int, int, int, int]]:
        """
        Bounding box of ink pixels as (x, y, w, h), or None if there is no ink.
        """
        ink = raster[:, :, 3] > self.config.ink_alpha_threshold
        coords = cv2.findNonZero(ink.astype(np.uint8))
        if coords is None:
            return None
        return cv2.boundingRect(coords)

    def square_crop(
        self,
        bbox: Tuple[int, int, int, int],
        canvas_size: Tuple[int, int]
    ) -> Tuple[int, int, int]:
        """
        Padded square around the ink box, clamped inside the canvas.

        Args:
            bbox: Ink box (x, y, w, h)
            canvas_size: (width, height)

        Returns:
            (x, y, size) of the crop
        """
        x, y, w, h = bbox
        canvas_w, canvas_h = canvas_size

        size = max(w, h)
        pad = math.ceil(size * (self.config.padding - 1.0) / 2)
        crop = min(size + 2 * pad, canvas_w, canvas_h)

        cx = x + w / 2
        cy = y + h / 2
        crop_x = int(math.floor(cx - crop / 2 + 0.5))
        crop_y = int(math.floor(cy - crop / 2 + 0.5))

        crop_x = max(0, min(canvas_w - crop, crop_x))
        crop_y = max(0, min(canvas_h - crop, crop_y))
        return crop_x, crop_y, crop

    def preprocess(self, raster: np.ndarray) -> SketchInput:
        """
        Preprocess an RGBA raster (H, W, 4) uint8.

        Returns:
            SketchInput; a zero tensor with ink_ratio 0 if there is no ink
        """
        if raster.ndim != 3 or raster.shape[2] != 4:
            raise ValueError(f"Expected an RGBA raster, got shape {raster.shape}")

        bbox = self.ink_bbox(raster)
        if bbox is None:
            return self._empty()

        canvas_h, canvas_w = raster.shape[:2]
        crop_x, crop_y, crop = self.square_crop(bbox, (canvas_w, canvas_h))
        region = raster[crop_y:crop_y + crop, crop_x:crop_x + crop]

        gray = self._composite_on_white(region)

        size = self.config.input_size
        interpolation = cv2.INTER_AREA if crop > size else cv2.INTER_LINEAR
        small = cv2.resize(gray, (size, size), interpolation=interpolation)

        # Ink -> 1.0, paper -> 0.0
        intensity = 1.0 - small.astype(np.float32) / 255.0

        if self.config.dilate_iterations > 0:
            kernel = np.ones((3, 3), np.uint8)
            intensity = cv2.dilate(intensity, kernel, iterations=self.config.dilate_iterations)

        intensity[intensity < self.config.noise_threshold] = 0.0
        intensity = np.clip(intensity * self.config.contrast_gain, 0.0, 1.0)

        ink_ratio = float(np.count_nonzero(intensity)) / intensity.size

        return SketchInput(
            tensor=intensity.reshape(1, size, size, 1).astype(np.float32),
            ink_ratio=ink_ratio,
            crop=(crop_x, crop_y, crop)
        )

    @staticmethod
    def _composite_on_white(region: np.ndarray) -> np.ndarray:
        """Flatten RGBA onto a white background and return grayscale uint8."""
        rgb = region[:, :, :3].astype(np.float32)
        alpha = region[:, :, 3:4].astype(np.float32) / 255.0
        flat = rgb * alpha + 255.0 * (1.0 - alpha)
        gray = flat.mean(axis=2)
        return np.clip(gray + 0.5, 0, 255).astype(np.uint8)

    def to_image(self, sketch: SketchInput, scale: int = 5) -> Image.Image:
        """
        Render what the model sees (ink white on black) as a PIL image.

        Args:
            sketch: Preprocessed sketch
            scale: Upscaling factor for display
        """
        size = self.config.input_size
        pixels = (sketch.tensor.reshape(size, size) * 255).astype(np.uint8)
        image = Image.fromarray(pixels)
        if scale > 1:
            image = image.resize((size * scale, size * scale), Image.Resampling.NEAREST)
        return image


if __name__ == "__main__":
    # Preview the model view of a simple drawing
    canvas = np.zeros((480, 640, 4), dtype=np.uint8)
    cv2.circle(canvas, (320, 240), 80, (0, 0, 0, 255), 10)
    cv2.line(canvas, (320, 160), (320, 60), (0, 0, 0, 255), 10)

    processor = SketchProcessor()
    result = processor.preprocess(canvas)
    print(f"crop={result.crop} ink_ratio={result.ink_ratio:.3f}")
    processor.to_image(result).show()
