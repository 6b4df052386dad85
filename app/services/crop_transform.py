"""
Crop Transform Calculator - map a target aspect ratio and anchor to a crop rectangle.
"""

from typing import Optional

from app.services.models import CropRect


# Supported target aspect ratios as (width, height)
ASPECT_RATIOS: dict[str, tuple[int, int]] = {
    "9:16": (9, 16),
    "16:9": (16, 9),
    "1:1": (1, 1),
    "4:5": (4, 5),
    "21:9": (21, 9),
    "3:4": (3, 4),
    "2:3": (2, 3),
    "16:10": (16, 10),
}


def compute_crop_rect(
    aspect_ratio: Optional[str],
    anchor: Optional[str],
    source_width: int = 1280,
    source_height: int = 720,
) -> Optional[CropRect]:
    """
    Compute the crop rectangle for a target aspect ratio.

    Crops height when the target is wider than the source (anchors top,
    bottom, center) and width otherwise (anchors left, right, center).
    Unknown anchors fall back to center. Unknown ratios return None, which
    means the frame passes through uncropped.
    """
    if not aspect_ratio or aspect_ratio not in ASPECT_RATIOS:
        return None

    ratio_w, ratio_h = ASPECT_RATIOS[aspect_ratio]

    # Integer cross-multiplication keeps the floors exact
    if ratio_w * source_height > ratio_h * source_width:
        width = source_width
        height = source_width * ratio_h // ratio_w
        x = 0
        if anchor == "top":
            y = 0
        elif anchor == "bottom":
            y = source_height - height
        else:
            y = (source_height - height) // 2
    else:
        height = source_height
        width = source_height * ratio_w // ratio_h
        y = 0
        if anchor == "left":
            x = 0
        elif anchor == "right":
            x = source_width - width
        else:
            x = (source_width - width) // 2

    return CropRect(width=width, height=height, x=x, y=y)
