# src/attachments/page_layout.py — v1
"""Page geometry for placing raster attachments onto PDF pages."""

from __future__ import annotations

from dataclasses import dataclass

from permitpreview.config.settings import Settings


@dataclass(frozen=True)
class PageLayout:
    """Fixed page size and margin, in PDF points (1/72 in).

    The default is 8.5 x 13 in with a quarter-inch margin so printers do
    not clip the image edge.
    """

    width: float = 8.5 * 72
    height: float = 13 * 72
    margin: float = 18.0
    allow_upscale: bool = False

    @classmethod
    def from_settings(cls, settings: Settings) -> PageLayout:
        return cls(
            width=settings.page_width_pt,
            height=settings.page_height_pt,
            margin=settings.page_margin_pt,
            allow_upscale=settings.page_allow_upscale,
        )

    @property
    def printable_width(self) -> float:
        return self.width - 2 * self.margin

    @property
    def printable_height(self) -> float:
        return self.height - 2 * self.margin

    def fit_image(self, image_width: float, image_height: float) -> tuple[float, float, float, float]:
        """Largest aspect-preserving rectangle for an image, centered on the page.

        Images smaller than the printable area keep their size unless
        allow_upscale is set.

        Returns:
            (x0, y0, x1, y1) in page coordinates.
        """
        if image_width <= 0 or image_height <= 0:
            raise ValueError(f"Invalid image size {image_width}x{image_height}")
        scale = min(self.printable_width / image_width, self.printable_height / image_height)
        if not self.allow_upscale:
            scale = min(scale, 1.0)
        draw_w = image_width * scale
        draw_h = image_height * scale
        x0 = (self.width - draw_w) / 2
        y0 = (self.height - draw_h) / 2
        return (x0, y0, x0 + draw_w, y0 + draw_h)
