"""
Absolute positioning of a computed layout.

This is the presentation half of the spacing convention: the engine takes
``spacing`` out of every frame but the first in a row, and here each of those
frames gets it back as a leading margin.
"""

from dataclasses import dataclass, field
from typing import Any, List

from layout_engine import Layout, validate_spacing


@dataclass(frozen=True)
class Placement:
    x: int
    y: int
    width: int
    height: int
    row: int
    column: int
    payload: Any = None


@dataclass
class PlacedLayout:
    """Positioned frames plus the size of the box that holds them"""
    width: int
    height: int
    placements: List[Placement] = field(default_factory=list)

    @property
    def row_count(self) -> int:
        return len({p.row for p in self.placements})


def place_layout(layout: Layout, container_width: float, spacing: int = 0, row_gap: int = 0) -> PlacedLayout:
    """Position every frame of ``layout`` row by row, left to right."""
    validate_spacing(spacing)
    validate_spacing(row_gap, "row_gap")

    margin = int(spacing)
    gap = int(row_gap)
    placements: List[Placement] = []
    y = 0

    for row_index, row in enumerate(layout):
        if row_index > 0:
            y += gap
        x = 0
        for column, frame in enumerate(row):
            if column > 0:
                x += margin
            placements.append(Placement(
                x=x,
                y=y,
                width=frame.width,
                height=frame.height,
                row=row_index,
                column=column,
                payload=frame.payload,
            ))
            x += frame.width
        # Heights inside a justified row can differ by a pixel of rounding
        y += max((frame.height for frame in row), default=0)

    return PlacedLayout(width=int(container_width), height=y, placements=placements)
