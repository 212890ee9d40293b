"""
Page layout rendering: canvas description + background -> HTML document.

Everything in this module is pure. Identical inputs always produce
byte-identical markup, which is what lets the export pipeline (and its tests)
treat a page's markup as a value.
"""

from __future__ import annotations

import html
import json
import re
from typing import Iterable, List, Optional, Tuple, Union

from .models import Album, BackgroundStyle, CanvasElement, Page, PageCanvas

DEFAULT_CANVAS_SIZE: Tuple[float, float] = (800, 600)
DEFAULT_BACKGROUND = BackgroundStyle(type="solid", color="#FFFFFF")

DEFAULT_FONT_SIZE = 16
DEFAULT_LINE_HEIGHT = 1.2
DEFAULT_FONT_FAMILY = "Arial"
DEFAULT_TEXT_COLOR = "#000000"

_CSS_UNSAFE = re.compile(r"[<>{}]")


def _num(value: Union[int, float]) -> str:
    value = float(value)
    return str(int(value)) if value.is_integer() else repr(value)


def _css(value: object) -> str:
    return _CSS_UNSAFE.sub("", str(value))


def _css_url(url: str) -> str:
    return _css(url).replace('"', "%22").replace("\n", "")


def _opacity(element: CanvasElement) -> str:
    return _num(1 if element.opacity is None else element.opacity)


def parse_canvas(content: Union[str, dict, None]) -> PageCanvas:
    """
    Parse a page's stored content into a canvas description.

    Raises:
        ValueError: If the content is not valid JSON or does not describe a canvas
    """
    if content is None or content == "":
        return PageCanvas()
    if isinstance(content, str):
        content = json.loads(content)
    return PageCanvas.model_validate(content)


def canvas_size(canvas: PageCanvas) -> Tuple[float, float]:
    if canvas.canvas_size is None:
        return DEFAULT_CANVAS_SIZE
    return canvas.canvas_size.width, canvas.canvas_size.height


def resolve_background(album: Album, page: Page) -> BackgroundStyle:
    """
    Pick the background for one page.

    The page's own background wins only when the album opts into per-page
    backgrounds and the page defines one; otherwise the album background is
    used, and failing that opaque white.
    """
    if album.use_page_backgrounds and page.background is not None:
        return page.background
    if album.background is not None:
        return album.background
    return DEFAULT_BACKGROUND


def background_css(background: Optional[BackgroundStyle]) -> str:
    bg = background or DEFAULT_BACKGROUND
    if bg.type == "solid":
        return f"background-color: {_css(bg.color or '#FFFFFF')};"
    if bg.type == "gradient":
        stops = ", ".join(f"{_css(stop.color)} {_num(stop.position)}%" for stop in bg.stops)
        if bg.gradient_type == "linear":
            direction = bg.direction if bg.direction is not None else "to bottom"
            if isinstance(direction, (int, float)):
                direction = f"{_num(direction)}deg"
            return f"background: linear-gradient({_css(direction)}, {stops});"
        return f"background: radial-gradient(circle, {stops});"
    if bg.type == "image":
        repeat = "repeat" if bg.repeat else "no-repeat"
        return (
            f'background-image: url("{_css_url(bg.url or "")}"); '
            f"background-size: {_css(bg.size or 'cover')}; "
            f"background-position: {_css(bg.position or 'center')}; "
            f"background-repeat: {repeat};"
        )
    return "background-color: #FFFFFF;"


def sort_elements(elements: Iterable[CanvasElement]) -> List[CanvasElement]:
    """Order elements back to front; ``sorted`` is stable so ties keep input order."""
    return sorted(elements, key=lambda element: element.z_index)


def _box_style(element: CanvasElement) -> str:
    t = element.transform
    return (
        f"position:absolute;left:{_num(t.x)}px;top:{_num(t.y)}px;"
        f"width:{_num(t.width)}px;height:{_num(t.height)}px;"
        f"transform:rotate({_num(t.rotation)}deg) scale({_num(t.scale_x)}, {_num(t.scale_y)});"
        f"transform-origin:center center;z-index:{_num(element.z_index)};"
    )


def _text_html(element: CanvasElement) -> str:
    style = (
        _box_style(element)
        + f"font-size:{_num(element.font_size or DEFAULT_FONT_SIZE)}px;"
        + f"font-family:{_css(element.font_family or DEFAULT_FONT_FAMILY)},sans-serif;"
        + f"font-weight:{_css(element.font_weight or 'normal')};"
        + f"font-style:{_css(element.font_style or 'normal')};"
        + f"color:{_css(element.color or DEFAULT_TEXT_COLOR)};"
        + f"text-align:{_css(element.text_align or 'left')};"
        + f"line-height:{_num(element.line_height or DEFAULT_LINE_HEIGHT)};"
        + "white-space:pre-wrap;word-break:break-word;overflow-wrap:anywhere;"
        + f"opacity:{_opacity(element)};"
    )
    content = html.escape(element.content or "", quote=False)
    return f'<div class="element element-text" style="{html.escape(style)}">{content}</div>'


def _image_html(element: CanvasElement) -> str:
    border = ""
    if element.border is not None:
        b = element.border
        border = f"border:{_num(b.width)}px solid {_css(b.color)};border-radius:{_num(b.radius)}px;"
    style = _box_style(element) + border + f"overflow:hidden;opacity:{_opacity(element)};"
    img_style = "width:100%;height:100%;object-fit:cover;display:block;"
    src = html.escape(element.src or "")
    return f'<div class="element element-image" style="{html.escape(style)}"><img src="{src}" style="{img_style}" /></div>'


def _shape_html(element: CanvasElement) -> str:
    radius = "border-radius:50%;" if element.shape_type == "circle" else ""
    style = (
        _box_style(element)
        + f"background-color:{_css(element.fill or 'transparent')};"
        + f"border:{_num(1 if element.stroke_width is None else element.stroke_width)}px solid {_css(element.stroke or '#000000')};"
        + radius
        + f"opacity:{_opacity(element)};"
    )
    return f'<div class="element element-shape" style="{html.escape(style)}"></div>'


_ELEMENT_RENDERERS = {
    "text": _text_html,
    "image": _image_html,
    "shape": _shape_html,
}


def element_html(element: CanvasElement) -> str:
    renderer = _ELEMENT_RENDERERS.get(element.type)
    if renderer is None or not element.visible:
        return ""
    return renderer(element)


def render_page(canvas: PageCanvas, background: Optional[BackgroundStyle]) -> str:
    """
    Render one page to a standalone HTML document sized to its canvas.

    Args:
        canvas: Parsed canvas description of the page
        background: Resolved background (see ``resolve_background``); None means white

    Returns:
        The HTML document as a string
    """
    width, height = canvas_size(canvas)
    w, h = _num(width), _num(height)
    elements = "\n".join(filter(None, (element_html(e) for e in sort_elements(canvas.elements))))

    return f"""<!DOCTYPE html>
<html>
<head>
<meta charset="UTF-8">
<meta name="viewport" content="width={w}, initial-scale=1.0">
<title>PhotoBook Page</title>
<style>
@page {{ size: {w}px {h}px; margin: 0; }}
* {{ margin: 0; padding: 0; box-sizing: border-box; }}
html, body {{ width: {w}px; height: {h}px; }}
body {{ {background_css(background)} position: relative; overflow: hidden; -webkit-print-color-adjust: exact; print-color-adjust: exact; }}
.canvas-container {{ width: 100%; height: 100%; position: relative; }}
</style>
</head>
<body>
<div class="canvas-container">
{elements}
</div>
</body>
</html>
"""
