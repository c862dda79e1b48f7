"""
Preview rendering for placed gallery layouts.

Draws each placement as a placeholder card: a tile in a colour derived from
the payload and, optionally, a footer band with a title and subtitle. Image
assets are never fetched; this is a visual check of the geometry.
"""

import hashlib
import json
import logging
import re
from enum import Enum
from typing import Any, Optional, Tuple

from PIL import Image, ImageDraw, ImageFont
from pydantic import BaseModel, Field, validator

from placement import PlacedLayout, Placement

logger = logging.getLogger(__name__)

DEFAULT_MAX_CANVAS_PIXELS = 250_000_000
FOOTER_PADDING = 6


class OutputFormat(str, Enum):
    PNG = "png"
    JPEG = "jpeg"
    WEBP = "webp"


class PreviewConfig(BaseModel):
    background_color: str = Field(default="#FFFFFF")
    footer_height: int = Field(default=48, ge=0, le=200)
    show_footer: bool = True
    output_format: OutputFormat = OutputFormat.PNG

    @validator('background_color')
    def validate_color(cls, v):
        """Validate hex color format - supports #RRGGBB and #RRGGBBAA (with alpha)"""
        if not re.match(r'^#[0-9A-Fa-f]{6}([0-9A-Fa-f]{2})?$', v):
            raise ValueError('Invalid hex color format - must be #RRGGBB or #RRGGBBAA (with alpha)')
        return v


def payload_color(payload: Any) -> Tuple[int, int, int]:
    """Stable placeholder colour for a payload, kept in a mid-tone range."""
    key = json.dumps(payload, sort_keys=True, default=str).encode()
    digest = hashlib.md5(key).digest()  # nosec - colour bucketing only
    return tuple(64 + b % 128 for b in digest[:3])


def payload_captions(payload: Any) -> Tuple[Optional[str], Optional[str]]:
    if isinstance(payload, str):
        return payload, None
    if isinstance(payload, dict):
        title = payload.get('title') or payload.get('caption')
        subtitle = payload.get('subtitle')
        return (str(title) if title is not None else None,
                str(subtitle) if subtitle is not None else None)
    return None, None


class GalleryRenderer:
    """Renders a placed layout into a raster preview"""

    def __init__(self, config: PreviewConfig, max_canvas_pixels: int = DEFAULT_MAX_CANVAS_PIXELS):
        self.config = config
        self.max_canvas_pixels = max_canvas_pixels
        self.font = ImageFont.load_default()

    @property
    def footer_height(self) -> int:
        return self.config.footer_height if self.config.show_footer else 0

    def canvas_size(self, placed: PlacedLayout) -> Tuple[int, int]:
        # An unjustified last row can overhang the container once margins are added
        width = max([placed.width] + [p.x + p.width for p in placed.placements])
        height = placed.height + placed.row_count * self.footer_height
        return max(1, width), max(1, height)

    def render(self, placed: PlacedLayout, output_path: str) -> str:
        """Draw the layout and save it to output_path"""
        width, height = self.canvas_size(placed)
        if width * height > self.max_canvas_pixels:
            raise ValueError(
                f"Canvas too large: {width*height} pixels exceeds limit {self.max_canvas_pixels}"
            )

        r, g, b, a = self._parse_color_rgba(self.config.background_color)
        if a < 255:
            canvas = Image.new('RGBA', (width, height), (r, g, b, a))
        else:
            canvas = Image.new('RGB', (width, height), (r, g, b))
        draw = ImageDraw.Draw(canvas)

        for placement in placed.placements:
            if placement.width <= 0 or placement.height <= 0:
                continue
            self._draw_card(draw, placement)

        self._save(canvas, output_path)
        logger.info(f"Rendered preview {width}x{height} with {len(placed.placements)} frames to {output_path}")
        return output_path

    def _card_top(self, placement: Placement) -> int:
        return placement.y + placement.row * self.footer_height

    def _draw_card(self, draw: ImageDraw.ImageDraw, placement: Placement) -> None:
        top = self._card_top(placement)
        left = placement.x
        right = left + placement.width - 1
        bottom = top + placement.height - 1
        draw.rectangle([left, top, right, bottom], fill=payload_color(placement.payload))

        if not self.footer_height:
            return
        footer_top = bottom + 1
        draw.rectangle([left, footer_top, right, footer_top + self.footer_height - 1], fill=(245, 245, 245))

        title, subtitle = payload_captions(placement.payload)
        text_width = placement.width - 2 * FOOTER_PADDING
        if text_width <= 0:
            return
        line_y = footer_top + FOOTER_PADDING
        for text, color in ((title, (34, 34, 34)), (subtitle, (120, 120, 120))):
            if not text:
                continue
            if line_y + 10 > footer_top + self.footer_height:
                break
            draw.text((left + FOOTER_PADDING, line_y), self._ellipsize(draw, text, text_width), fill=color, font=self.font)
            line_y += 16

    def _ellipsize(self, draw: ImageDraw.ImageDraw, text: str, max_width: int) -> str:
        if draw.textlength(text, font=self.font) <= max_width:
            return text
        while text and draw.textlength(text + '...', font=self.font) > max_width:
            text = text[:-1]
        return text + '...' if text else ''

    def _parse_color_rgba(self, color_str: str) -> Tuple[int, int, int, int]:
        color_str = color_str.lstrip('#')
        r, g, b = (int(color_str[i:i + 2], 16) for i in (0, 2, 4))
        a = int(color_str[6:8], 16) if len(color_str) == 8 else 255
        return r, g, b, a

    def _save(self, canvas: Image.Image, output_path: str) -> None:
        fmt = self.config.output_format
        if fmt == OutputFormat.JPEG:
            # JPEG does not support alpha
            if canvas.mode == 'RGBA':
                canvas = canvas.convert('RGB')
            canvas.save(output_path, 'JPEG', quality=92)
        elif fmt == OutputFormat.WEBP:
            canvas.save(output_path, 'WEBP', quality=90)
        else:
            canvas.save(output_path, 'PNG')
