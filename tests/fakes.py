"""
Test doubles shared by the export tests.
"""

import io
import json

from pypdf import PdfWriter

from photobook_export.renderer import PX_TO_PT, PageRenderError, RendererUnavailableError

OWNER = "user-1"
OTHER_OWNER = "user-2"


def make_pdf(width_px: float = 800, height_px: float = 600, pages: int = 1) -> bytes:
    """Build a blank PDF whose pages measure ``width_px`` x ``height_px`` CSS pixels."""
    writer = PdfWriter()
    for _ in range(pages):
        writer.add_blank_page(width=width_px * PX_TO_PT, height=height_px * PX_TO_PT)
    buffer = io.BytesIO()
    writer.write(buffer)
    return buffer.getvalue()


def page_content(width=800, height=600, elements=None) -> str:
    return json.dumps({"canvasSize": {"width": width, "height": height}, "elements": elements or []})


class FakeRenderer:
    """
    Stand-in for ``PdfRenderer`` that produces blank PDFs of the requested size.

    Passing an instance as the renderer factory hands the same instance to
    every task, which lets tests inspect the calls afterwards.

    Args:
        fail_on: 1-based render call numbers that raise ``PageRenderError``
        unavailable_on: 1-based render call numbers that raise ``RendererUnavailableError``
    """

    def __init__(self, fail_on=(), unavailable_on=()):
        self.fail_on = set(fail_on)
        self.unavailable_on = set(unavailable_on)
        self.calls = []
        self.outputs = []
        self.entered = 0
        self.exited = 0
        self.on_render = None

    def __call__(self):
        return self

    def __enter__(self):
        self.entered += 1
        return self

    def __exit__(self, exc_type, exc, tb):
        self.exited += 1

    def render_page(self, markup, width, height):
        self.calls.append((markup, width, height))
        number = len(self.calls)
        if self.on_render is not None:
            self.on_render(number)
        if number in self.unavailable_on:
            raise RendererUnavailableError("browser crashed")
        if number in self.fail_on:
            raise PageRenderError(f"page {number} did not settle")
        document = make_pdf(width, height)
        self.outputs.append(document)
        return document
