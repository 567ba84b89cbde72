"""
WebP conversion capability.

The queue treats this as opaque: ``convert`` never raises, it reports
success or failure through a ConversionResult.
"""

from __future__ import annotations

import logging
import os
import time
import uuid
from dataclasses import dataclass
from pathlib import Path

from PIL import Image, ImageOps, features

from .disk_storage import remove_file
from .models import Job

logger = logging.getLogger(__name__)


@dataclass
class ConversionResult:
    """Result of a single conversion."""
    success: bool
    error: str | None = None
    time_ms: int = 0
    width: int | None = None
    height: int | None = None


def calculate_dimensions(
    orig_width: int,
    orig_height: int,
    target_width: int | None,
    target_height: int | None,
    fit: str,
) -> tuple[int, int]:
    """
    Scaled size for a target box.

    contain/inside fit within the box, cover/outside cover it. With only one
    target dimension the other follows the source aspect ratio.
    """
    if not target_width and not target_height:
        return orig_width, orig_height

    if not target_width:
        target_width = max(1, round(orig_width * (target_height / orig_height)))
    if not target_height:
        target_height = max(1, round(orig_height * (target_width / orig_width)))

    ratio = orig_width / orig_height
    target_ratio = target_width / target_height

    if fit in (Job.FIT_CONTAIN, Job.FIT_INSIDE):
        if ratio > target_ratio:
            return target_width, max(1, round(target_width / ratio))
        return max(1, round(target_height * ratio)), target_height

    if fit in (Job.FIT_COVER, Job.FIT_OUTSIDE):
        if ratio > target_ratio:
            return max(1, round(target_height * ratio)), target_height
        return target_width, max(1, round(target_width / ratio))

    return target_width, target_height


def _webp_mode(img: Image.Image) -> Image.Image:
    if img.mode in ("RGB", "RGBA"):
        return img
    if img.mode in ("P", "LA", "PA") or "transparency" in img.info:
        return img.convert("RGBA")
    return img.convert("RGB")


class ImageConverter:
    """Pillow-backed WebP encoder."""

    def __init__(self, method: int = 4):
        self.method = method

    @staticmethod
    def capabilities() -> dict:
        return {
            "method": "pillow",
            "webp": bool(features.check("webp")),
            "avif": bool(features.check("avif")),
        }

    def convert(
        self,
        input_path: str,
        output_path: str,
        quality: int = 85,
        width: int | None = None,
        height: int | None = None,
        fit: str = Job.FIT_CONTAIN,
        strip_metadata: bool = True,
    ) -> ConversionResult:
        start = time.monotonic()

        def elapsed() -> int:
            return int(round((time.monotonic() - start) * 1000))

        if not os.path.exists(input_path):
            return ConversionResult(success=False, error="Input file not found", time_ms=elapsed())

        # Each attempt encodes into its own file; output_path only ever holds a complete image.
        part = f"{output_path}.{uuid.uuid4().hex[:8]}.part"

        try:
            with Image.open(input_path) as src:
                icc_profile = src.info.get("icc_profile")
                img = ImageOps.exif_transpose(src)

                if width or height:
                    img = self._resize(img, width, height, fit)

                img = _webp_mode(img)

                save_kwargs = {"quality": int(quality), "method": self.method}
                if not strip_metadata:
                    if icc_profile:
                        save_kwargs["icc_profile"] = icc_profile
                    exif = img.info.get("exif")
                    if exif:
                        save_kwargs["exif"] = exif

                Path(output_path).parent.mkdir(parents=True, exist_ok=True)
                img.save(part, "WEBP", **save_kwargs)
                out_w, out_h = img.size
            os.replace(part, output_path)
        except Exception as e:
            logger.error("Conversion error for %s: %s", input_path, e)
            remove_file(part)
            return ConversionResult(success=False, error=f"{type(e).__name__}: {e}", time_ms=elapsed())

        return ConversionResult(success=True, time_ms=elapsed(), width=out_w, height=out_h)

    def _resize(self, img: Image.Image, width: int | None, height: int | None, fit: str) -> Image.Image:
        orig_w, orig_h = img.size
        new_w, new_h = calculate_dimensions(orig_w, orig_h, width, height, fit)

        if fit == Job.FIT_INSIDE and (new_w > orig_w or new_h > orig_h):
            return img

        if fit == Job.FIT_COVER:
            box = (width or new_w, height or new_h)
            return ImageOps.fit(img, box, method=Image.Resampling.LANCZOS)

        return img.resize((new_w, new_h), Image.Resampling.LANCZOS)
