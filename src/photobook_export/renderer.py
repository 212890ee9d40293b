"""
Headless Chromium adapter that turns page markup into single-page PDFs.

One ``PdfRenderer`` owns one browser process for the lifetime of an export
task. Each page gets its own browser context, which is always closed before
the next one is opened, and a fixed settle interval (``renderer.settle_interval_ms``)
separates consecutive contexts.
"""

from __future__ import annotations

import contextlib
import logging
import math
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Callable, Iterator, List, Optional

from omegaconf import DictConfig, OmegaConf
from playwright.sync_api import TimeoutError as PlaywrightTimeoutError
from playwright.sync_api import sync_playwright

logger = logging.getLogger(__name__)

# CSS pixels are 1/96 inch, PDF points 1/72 inch.
PX_TO_PT = 72 / 96

_FONTS_READY = "(window.document.fonts && window.document.fonts.status === 'loaded') || !window.document.fonts"


class PageRenderError(RuntimeError):
    """Raised when a single page cannot be rendered; the browser is still usable."""


class RendererUnavailableError(RuntimeError):
    """Raised when the browser itself failed; no further pages can be rendered."""


@dataclass
class RenderOptions:
    headless: bool = True
    launch_args: List[str] = field(default_factory=list)
    load_timeout_ms: int = 30000
    page_timeout_ms: int = 60000
    wait_until: str = "domcontentloaded"
    post_load_delay_ms: int = 5000
    settle_interval_ms: int = 3000
    device_scale_factor: float = 1

    @classmethod
    def from_config(cls, config: DictConfig) -> "RenderOptions":
        values = OmegaConf.to_container(config, resolve=True)
        return cls(**values)  # type: ignore[arg-type]


class PdfRenderer:
    """
    Context-managed Chromium instance rendering one page at a time.

    Usage:
        with PdfRenderer(options) as renderer:
            pdf_bytes = renderer.render_page(markup, 800, 600)

    Args:
        options: Timeouts, launch flags and settle interval
        playwright_factory: Callable returning an object with ``start()``;
            defaults to Playwright's ``sync_playwright``
        sleep: Blocking sleep used for the settle interval
        clock: Monotonic clock used for the page lifetime budget
    """

    def __init__(
        self,
        options: Optional[RenderOptions] = None,
        *,
        playwright_factory: Callable[[], Any] = sync_playwright,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.options = options or RenderOptions()
        self._playwright_factory = playwright_factory
        self._sleep = sleep
        self._clock = clock
        self._play = None
        self._browser = None
        self._context_released = False

    def __enter__(self) -> "PdfRenderer":
        try:
            self._play = self._playwright_factory().start()
            self._browser = self._play.chromium.launch(
                headless=self.options.headless,
                args=list(self.options.launch_args),
            )
        except Exception as exc:
            self._shutdown()
            raise RendererUnavailableError(f"Unable to start chromium renderer: {exc}") from exc
        logger.info("Chromium renderer started")
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self._shutdown()
        logger.info("Chromium renderer stopped")

    def _shutdown(self) -> None:
        if self._browser is not None:
            with contextlib.suppress(Exception):
                self._browser.close()
            self._browser = None
        if self._play is not None:
            with contextlib.suppress(Exception):
                self._play.stop()
            self._play = None

    @property
    def is_connected(self) -> bool:
        if self._browser is None:
            return False
        try:
            return bool(self._browser.is_connected())
        except Exception:
            return False

    def _classify(self, exc: BaseException, message: str) -> RuntimeError:
        if not self.is_connected:
            return RendererUnavailableError(f"Browser is no longer available: {exc}")
        return PageRenderError(f"{message}: {exc}")

    def _settle(self) -> None:
        if self._context_released and self.options.settle_interval_ms > 0:
            self._sleep(self.options.settle_interval_ms / 1000)

    @contextmanager
    def page_context(self, width: float, height: float) -> Iterator[Any]:
        """
        Open an isolated browser context + page sized to the canvas.

        The context is closed on every exit path. The settle interval is
        applied before opening a context whenever a previous one was released.
        """
        if not self.is_connected:
            raise RendererUnavailableError("Renderer has not been started or has disconnected.")

        self._settle()
        viewport = {"width": max(1, int(math.ceil(width))), "height": max(1, int(math.ceil(height)))}
        try:
            context = self._browser.new_context(
                viewport=viewport,
                device_scale_factor=self.options.device_scale_factor,
            )
        except Exception as exc:
            raise self._classify(exc, "Unable to allocate a browser context") from exc

        try:
            page = context.new_page()
            page.set_default_timeout(self.options.page_timeout_ms)
            page.set_default_navigation_timeout(self.options.page_timeout_ms)
            yield page
        finally:
            try:
                context.close()
            except Exception as exc:
                logger.warning("Failed to close browser context: %s", exc)
            self._context_released = True

    def render_page(self, markup: str, width: float, height: float) -> bytes:
        """
        Render one HTML document to a one-page PDF of exactly ``width`` x ``height`` px.

        Raises:
            PageRenderError: The page failed (load timeout, bad content, ...)
            RendererUnavailableError: The browser process is gone
        """
        try:
            with self.page_context(width, height) as page:
                started = self._clock()
                page.set_content(
                    markup,
                    wait_until=self.options.wait_until,
                    timeout=self.options.load_timeout_ms,
                )
                try:
                    page.wait_for_function(_FONTS_READY, timeout=self.options.load_timeout_ms)
                except PlaywrightTimeoutError:
                    logger.debug("Timed out waiting for fonts; rendering with fallbacks")
                if self.options.post_load_delay_ms > 0:
                    page.wait_for_timeout(self.options.post_load_delay_ms)

                remaining_ms = self.options.page_timeout_ms - (self._clock() - started) * 1000
                if remaining_ms <= 0:
                    raise PageRenderError(f"Page exceeded its {self.options.page_timeout_ms} ms lifetime")
                # rasterising may only use what is left of the lifetime
                page.set_default_timeout(remaining_ms)

                return page.pdf(
                    width=f"{float(width):g}px",
                    height=f"{float(height):g}px",
                    print_background=True,
                    prefer_css_page_size=True,
                    margin={"top": "0px", "right": "0px", "bottom": "0px", "left": "0px"},
                )
        except (PageRenderError, RendererUnavailableError):
            raise
        except Exception as exc:
            raise self._classify(exc, "Page rendering failed") from exc
