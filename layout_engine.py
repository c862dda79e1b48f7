"""
Justified gallery layout engine.

Packs an ordered list of frames into rows that fill a fixed container width.
Each row is grown at a common working height until it reaches the container
width, then the whole row is rescaled so it spans the container exactly.
Spacing between frames is taken out of the frame widths: every frame except
the first in a row loses ``spacing`` pixels, and the presentation layer adds
the same amount back as a leading margin (see ``placement.place_layout``).
"""

import logging
import math
from dataclasses import dataclass
from typing import Any, List, Sequence

logger = logging.getLogger(__name__)


class LayoutError(ValueError):
    """Base class for layout failures"""


class InvalidFrame(LayoutError):
    """A frame has geometry that makes its aspect ratio undefined"""

    def __init__(self, index: int, width: Any, height: Any):
        self.index = index
        self.width = width
        self.height = height
        super().__init__(
            f"Invalid frame at index {index}: width and height must be positive numbers (got {width}x{height})"
        )


class InvalidParameters(LayoutError):
    """Container width, max row height or spacing are out of range"""


@dataclass(frozen=True)
class Frame:
    """Input rectangle. payload is carried through untouched."""
    width: float
    height: float
    payload: Any = None


@dataclass(frozen=True)
class ScaledFrame:
    width: int
    height: int
    payload: Any = None


Row = List[ScaledFrame]
Layout = List[Row]


def round_half_up(value: float) -> int:
    # Only ever called with non-negative values, so this is half away from zero
    return int(math.floor(value + 0.5))


def _is_positive_number(value: Any) -> bool:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return math.isfinite(value) and value > 0


def validate_parameters(container_width: float, max_row_height: float, spacing: float) -> None:
    if not _is_positive_number(container_width):
        raise InvalidParameters(f"container_width must be a positive number (got {container_width!r})")
    if not _is_positive_number(max_row_height):
        raise InvalidParameters(f"max_row_height must be a positive number (got {max_row_height!r})")
    validate_spacing(spacing)


def validate_spacing(spacing: float, name: str = "spacing") -> None:
    # Spacing is taken out of integer frame widths, so it must be whole pixels
    if isinstance(spacing, bool) or not isinstance(spacing, (int, float)) or not math.isfinite(spacing):
        raise InvalidParameters(f"{name} must be a whole number of pixels (got {spacing!r})")
    if spacing < 0 or spacing != int(spacing):
        raise InvalidParameters(f"{name} must be a non-negative whole number of pixels (got {spacing!r})")


def validate_frame(frame: Frame, index: int) -> None:
    if not (_is_positive_number(frame.width) and _is_positive_number(frame.height)):
        raise InvalidFrame(index, frame.width, frame.height)


def scale_to_height(frame: Frame, target_height: int) -> ScaledFrame:
    """Scale a frame to target_height keeping its aspect ratio."""
    width = round_half_up(target_height * frame.width / frame.height)
    return ScaledFrame(width=width, height=target_height, payload=frame.payload)


def justify_row(row: Sequence[ScaledFrame], row_size: int, container_width: float, spacing: int) -> Row:
    """Rescale a row so that it spans container_width.

    row_size is the sum of the frame widths before correction, without
    spacing, and at least container_width so the row only ever shrinks.
    The first frame keeps its full width; every other frame gives up
    ``spacing`` pixels which the renderer puts back as a left margin.
    """
    scale = container_width / row_size
    justified: Row = []
    for index, frame in enumerate(row):
        space_to_subtract = spacing if index > 0 else 0
        justified.append(ScaledFrame(
            width=max(0, round_half_up(frame.width * scale) - int(space_to_subtract)),
            height=round_half_up(frame.height * scale),
            payload=frame.payload,
        ))
    return justified


def layout_width(row: Sequence[ScaledFrame], spacing: int) -> int:
    """Rendered width of a row, including the margins between frames."""
    if not row:
        return 0
    return sum(frame.width for frame in row) + int(spacing) * (len(row) - 1)


def compute_layout(
    frames: Sequence[Frame],
    container_width: float,
    max_row_height: float,
    spacing: int = 0,
) -> Layout:
    """Lay out frames into justified rows.

    Every row but the last spans ``container_width`` (within rounding) once
    the presentation margins are added back. The last row is left at its
    working height so a couple of leftover frames are not blown up to fill
    the whole width; justifying it would always scale it up past
    ``max_row_height``.

    Raises InvalidParameters for out-of-range parameters (including
    fractional spacing) and InvalidFrame for a frame with non-positive
    width or height.
    """
    validate_parameters(container_width, max_row_height, spacing)

    # Rows never start taller than the limit, even for fractional limits
    working_height = max(1, int(math.floor(max_row_height)))
    layout: Layout = []
    row: Row = []
    row_size = 0

    for index, frame in enumerate(frames):
        validate_frame(frame, index)

        target_height = row[0].height if row else working_height
        scaled = scale_to_height(frame, target_height)
        row.append(scaled)
        row_size += scaled.width

        if row_size >= container_width:
            layout.append(justify_row(row, row_size, container_width, spacing))
            row = []
            row_size = 0

    if row:
        layout.append(row)

    logger.debug(f"Computed layout: {len(frames)} frames in {len(layout)} rows (container={container_width}, max_row_height={max_row_height}, spacing={spacing})")
    return layout


def flatten(layout: Layout) -> List[ScaledFrame]:
    return [frame for row in layout for frame in row]


def frames_from_dicts(items: Sequence[dict]) -> List[Frame]:
    """Build frames from plain mappings with width/height/payload keys."""
    return [Frame(width=item.get("width"), height=item.get("height"), payload=item.get("payload")) for item in items]
