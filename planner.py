"""Filter planning: decide whether a source needs cropping/scaling for a vertical frame."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from fractions import Fraction
from typing import Optional

TARGET_ASPECT = Fraction(9, 16)
MAX_DIMENSION = 1280
ASPECT_TOLERANCE = 0.01


class FilterKind(str, Enum):
    COPY = "copy"
    SCALE_CROP = "scale_crop"
    SCALE_ONLY = "scale_only"


@dataclass(frozen=True)
class FilterDirective:
    kind: FilterKind
    target_height: Optional[int] = None
    target_aspect: Fraction = TARGET_ASPECT

    @classmethod
    def copy(cls) -> FilterDirective:
        return cls(FilterKind.COPY)

    @classmethod
    def scale_crop(cls, target_height: int, target_aspect: Fraction = TARGET_ASPECT) -> FilterDirective:
        return cls(FilterKind.SCALE_CROP, target_height, target_aspect)

    @classmethod
    def scale_only(cls, target_height: int) -> FilterDirective:
        return cls(FilterKind.SCALE_ONLY, target_height)

    @property
    def needs_encode(self) -> bool:
        return self.kind is not FilterKind.COPY

    def to_filter(self) -> Optional[str]:
        """Render the ffmpeg ``-vf`` expression, or None for stream copy."""
        if self.kind is FilterKind.COPY:
            return None
        scale = f"scale=-2:{self.target_height}"
        if self.kind is FilterKind.SCALE_ONLY:
            return scale
        aspect = f"{self.target_aspect.numerator}/{self.target_aspect.denominator}"
        # Centre crop on the scaled frame; output height is unchanged.
        return f"{scale},crop=ih*({aspect}):ih:(iw-ow)/2:0"


def plan_filter(
    width: int,
    height: int,
    target_aspect: Fraction = TARGET_ASPECT,
    max_dim: int = MAX_DIMENSION,
) -> FilterDirective:
    """Choose the cheapest directive that yields a vertical frame within ``max_dim``.

    Sources wider than the target (beyond a small tolerance) are scaled to
    ``max_dim`` high and centre-cropped. Tall sources over the ceiling are
    only scaled down. Everything else is stream-copied.
    """
    current_aspect = width / height
    if current_aspect > float(target_aspect) + ASPECT_TOLERANCE:
        return FilterDirective.scale_crop(max_dim, target_aspect)
    if height > max_dim:
        return FilterDirective.scale_only(max_dim)
    return FilterDirective.copy()
