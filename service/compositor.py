"""Composite the current word onto live video frames."""

from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import Tuple

from PIL import Image, ImageDraw, ImageFont

from domain.prompter import (
    FONT_LOAD_CODE,
    INVALID_CONFIG_CODE,
    FocusSplit,
    PrompterValidationError,
    split_focus,
)

LOGGER = logging.getLogger("focus_prompter.compositor")

BAND_HEIGHT_RATIO = 1.5
BAND_RGBA = (0, 0, 0, 153)
TEXT_RGB = (255, 255, 255)
FOCUS_RGB = (255, 62, 62)
TEXT_ONLY_BACKGROUND_RGB = (0, 0, 0)
PLACEHOLDER_TEXT = "READY"
PLACEHOLDER_RGB = (51, 51, 51)
MIN_DRAW_FONT_SIZE = 1

Size = Tuple[int, int]
FontType = ImageFont.FreeTypeFont | ImageFont.ImageFont


@dataclass(frozen=True)
class CompositionFrame:
    """Everything the compositor needs for one draw."""

    source_frame: Image.Image
    current_token: str | None
    is_pacing_running: bool
    surface_size: Size
    reference_viewport_width: float
    font_size_px: int
    show_orp: bool = True


@dataclass(frozen=True)
class OverlayLayout:
    """Horizontal placement of the three parts of a word."""

    start_x: float
    focus_x: float
    after_x: float
    width_before: float
    width_focus: float

    @property
    def focus_center_x(self) -> float:
        return self.focus_x + self.width_focus / 2.0


def compute_draw_font_size(
    font_size_px: int, surface_width: int, reference_viewport_width: float
) -> float:
    """Scale the configured font size from the operator viewport to the surface."""
    if reference_viewport_width <= 0:
        raise PrompterValidationError(
            INVALID_CONFIG_CODE, "reference viewport width must be positive"
        )
    return font_size_px * (surface_width / reference_viewport_width)


def measure_text_width(
    draw_context: ImageDraw.ImageDraw, text_value: str, font: FontType
) -> float:
    """Measure the advance width of text."""
    if not text_value:
        return 0.0
    return float(draw_context.textlength(text_value, font=font))


def compute_overlay_layout(
    split: FocusSplit,
    surface_width: int,
    draw_context: ImageDraw.ImageDraw,
    font: FontType,
) -> OverlayLayout:
    """Place a word so that its focus character is centred on the surface."""
    width_before = measure_text_width(draw_context, split.before, font)
    width_focus = measure_text_width(draw_context, split.focus, font)
    start_x = surface_width / 2.0 - width_before - width_focus / 2.0
    return OverlayLayout(
        start_x=start_x,
        focus_x=start_x + width_before,
        after_x=start_x + width_before + width_focus,
        width_before=width_before,
        width_focus=width_focus,
    )


def load_overlay_font(
    font_path: str | None,
    font_size: int,
    cache: dict[Tuple[str | None, int], FontType],
) -> FontType:
    """Load a font at a size, falling back to Pillow's bundled font."""
    cache_key = (font_path, font_size)
    cached_font = cache.get(cache_key)
    if cached_font is not None:
        return cached_font
    try:
        if font_path is None:
            font = ImageFont.load_default(size=font_size)
        else:
            font = ImageFont.truetype(font_path, size=font_size)
    except OSError as exc:
        raise PrompterValidationError(
            FONT_LOAD_CODE, f"failed to load font {font_path} at size {font_size}"
        ) from exc
    cache[cache_key] = font
    return font


class FrameCompositor:
    """Draws live frames with the current word overlaid.

    The compositor owns its render surface; ``composite`` redraws it in place
    and returns it, so the recorder always captures the composited output.
    """

    def __init__(self, font_path: str | None = None) -> None:
        self._font_path = font_path
        self._font_cache: dict[Tuple[str | None, int], FontType] = {}
        self._surface: Image.Image | None = None

    @property
    def surface(self) -> Image.Image | None:
        return self._surface

    def resize_surface(self, surface_size: Size) -> Image.Image:
        """Size the render surface, reusing it when the size is unchanged."""
        width, height = surface_size
        if width <= 0 or height <= 0:
            raise PrompterValidationError(
                INVALID_CONFIG_CODE, f"invalid surface size: {width}x{height}"
            )
        if self._surface is None or self._surface.size != (width, height):
            self._surface = Image.new(
                "RGB", (width, height), TEXT_ONLY_BACKGROUND_RGB
            )
            LOGGER.debug("render surface sized to %dx%d", width, height)
        return self._surface

    def font_for_size(self, font_size: float) -> FontType:
        size_px = max(MIN_DRAW_FONT_SIZE, int(round(font_size)))
        return load_overlay_font(self._font_path, size_px, self._font_cache)

    def composite(self, frame: CompositionFrame) -> Image.Image:
        """Draw one frame and return the render surface."""
        surface = self.resize_surface(frame.surface_size)
        source = frame.source_frame
        if source.mode != "RGB":
            source = source.convert("RGB")
        if source.size != surface.size:
            source = source.resize(surface.size, Image.Resampling.BILINEAR)
        surface.paste(source, (0, 0))

        if frame.current_token and frame.is_pacing_running:
            draw_font_size = compute_draw_font_size(
                frame.font_size_px, surface.width, frame.reference_viewport_width
            )
            self._draw_band(surface, draw_font_size)
            self.draw_word(
                surface, frame.current_token, draw_font_size, frame.show_orp
            )
        return surface

    def render_text_only(
        self,
        token: str | None,
        surface_size: Size,
        font_size_px: int,
        show_orp: bool = True,
    ) -> Image.Image:
        """Render the word alone on a black surface for the operator display."""
        image = Image.new("RGB", surface_size, TEXT_ONLY_BACKGROUND_RGB)
        if token:
            self.draw_word(image, token, font_size_px, show_orp)
        else:
            draw = ImageDraw.Draw(image)
            font = self.font_for_size(font_size_px)
            draw.text(
                (image.width / 2.0, image.height / 2.0),
                PLACEHOLDER_TEXT,
                font=font,
                fill=PLACEHOLDER_RGB,
                anchor="mm",
            )
        return image

    def draw_word(
        self,
        image: Image.Image,
        token: str,
        font_size: float,
        show_orp: bool = True,
    ) -> OverlayLayout:
        """Draw a word with its focus character on the horizontal centre."""
        font = self.font_for_size(font_size)
        draw = ImageDraw.Draw(image)
        split = split_focus(token)
        layout = compute_overlay_layout(split, image.width, draw, font)
        center_y = image.height / 2.0
        focus_rgb = FOCUS_RGB if show_orp else TEXT_RGB
        segments = (
            (layout.start_x, split.before, TEXT_RGB),
            (layout.focus_x, split.focus, focus_rgb),
            (layout.after_x, split.after, TEXT_RGB),
        )
        for x_value, text_value, fill_rgb in segments:
            if not text_value:
                continue
            draw.text(
                (x_value, center_y), text_value, font=font, fill=fill_rgb, anchor="lm"
            )
        return layout

    def _draw_band(self, surface: Image.Image, draw_font_size: float) -> None:
        band_height = draw_font_size * BAND_HEIGHT_RATIO
        center_y = surface.height / 2.0
        top = max(0, int(round(center_y - band_height / 2.0)))
        bottom = min(surface.height, int(round(center_y + band_height / 2.0)))
        if bottom <= top:
            return
        band = Image.new("RGBA", (surface.width, bottom - top), BAND_RGBA)
        region = surface.crop((0, top, surface.width, bottom)).convert("RGBA")
        region.alpha_composite(band)
        surface.paste(region.convert("RGB"), (0, top))
