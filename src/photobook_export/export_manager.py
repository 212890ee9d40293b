"""
Export task orchestration for album PDF exports.

This module owns the lifecycle of an export task:
- Validating the request and writing the pending task record
- Submitting the export to a bounded worker pool
- Rendering pages one at a time through a single browser instance
- Recording progress after every page
- Merging the page PDFs and writing the final artifact
- Mapping every failure in the background phase to a failed task

State machine:
    pending -> processing -> completed | failed

Both terminal states are final; retrying means creating a new task.
"""

from __future__ import annotations

import logging
import math
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime
from threading import Lock
from typing import Any, Callable, ContextManager, Dict, List, Optional, Protocol, Tuple
from uuid import uuid4

from omegaconf import DictConfig

from .database import AlbumDatabase, TaskDatabase
from .layout import canvas_size, parse_canvas, render_page, resolve_background
from .merger import merge_pdfs
from .models import Album, ExportProgress, ExportStatus, ExportTaskSummary
from .renderer import PdfRenderer, RendererUnavailableError, RenderOptions
from .storage import ArtifactStore, build_artifact_store
from .utils import sanitize_label

logger = logging.getLogger(__name__)

DUPLICATE_POLICIES = ("allow", "reject")
INTERRUPTED_REASON = "Export interrupted by service restart"


class AlbumNotFoundError(LookupError):
    """The album does not exist or belongs to another user."""


class EmptyAlbumError(ValueError):
    """The album has no pages to export."""


class TaskNotFoundError(LookupError):
    """The task does not exist or belongs to another user."""


class ArtifactNotReadyError(RuntimeError):
    """The task has not completed, so there is nothing to download."""


class DuplicateExportError(RuntimeError):
    """An export for the same album is already pending or processing."""

    def __init__(self, task_id: str) -> None:
        super().__init__(f"An export for this album is already in progress (task {task_id})")
        self.task_id = task_id


class ExportFailedError(RuntimeError):
    """Raised inside the background phase when no page could be rendered."""


class PageRenderer(Protocol):
    def render_page(self, markup: str, width: float, height: float) -> bytes: ...


RendererFactory = Callable[[], ContextManager[PageRenderer]]


@dataclass
class ExportTaskRecord:
    """
    In-memory view of one export task row.

    Attributes:
        id: Unique task identifier (hex UUID)
        owner_id: User that requested the export
        album_id: Album being exported
        status: Current state machine position
        progress: Percentage, 100 once completed
        created_at: Creation timestamp (UTC)
        updated_at: Last mutation timestamp (UTC)
        artifact_path: Location of the merged PDF, completed tasks only
        artifact_size: Size of the merged PDF in bytes
        failure_reason: First fatal cause, failed tasks only
    """

    id: str
    owner_id: str
    album_id: str
    status: ExportStatus
    progress: int
    created_at: datetime
    updated_at: datetime
    artifact_path: Optional[str] = None
    artifact_size: Optional[int] = None
    failure_reason: Optional[str] = None

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "ExportTaskRecord":
        return cls(**row)

    def to_progress(self) -> ExportProgress:
        return ExportProgress(
            task_id=self.id,
            status=self.status,
            progress=self.progress,
            created_at=self.created_at,
            updated_at=self.updated_at,
            failure_reason=self.failure_reason,
        )

    def to_summary(self, album_title: Optional[str] = None) -> ExportTaskSummary:
        return ExportTaskSummary(
            **self.to_progress().model_dump(),
            album_id=self.album_id,
            album_title=album_title,
            artifact_size=self.artifact_size,
        )


class ExportManager:
    """
    Central coordinator for album export tasks.

    Request-side methods (``create_task``, ``get_task``, ``list_tasks``,
    ``read_artifact``) are synchronous and cheap. The export itself runs on a
    ``ThreadPoolExecutor``; each running export owns its own renderer, so
    distinct tasks share nothing but the database. Pages within one task are
    always rendered sequentially.

    Args:
        tasks: Durable task store
        albums: Read-only album lookup
        artifacts: Write-once artifact storage
        renderer_factory: Returns a context manager yielding a page renderer;
            called once per task
        max_workers: Upper bound on concurrently running exports
        duplicate_policy: ``allow`` a second export of an album while one is
            in flight, or ``reject`` it
        initial_progress: Progress recorded when processing starts
        render_progress_span: Progress share spread across the pages
        merge_progress: Progress recorded once pages are merged
    """

    def __init__(
        self,
        tasks: TaskDatabase,
        albums: AlbumDatabase,
        artifacts: ArtifactStore,
        renderer_factory: RendererFactory,
        *,
        max_workers: int = 2,
        duplicate_policy: str = "allow",
        initial_progress: int = 5,
        render_progress_span: int = 85,
        merge_progress: int = 95,
    ) -> None:
        if duplicate_policy not in DUPLICATE_POLICIES:
            raise ValueError(f"duplicate_policy must be one of {DUPLICATE_POLICIES}, got {duplicate_policy!r}")
        self.tasks = tasks
        self.albums = albums
        self.artifacts = artifacts
        self.renderer_factory = renderer_factory
        self.duplicate_policy = duplicate_policy
        self.initial_progress = initial_progress
        self.render_progress_span = render_progress_span
        self.merge_progress = merge_progress
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="export")
        self._futures: Dict[str, Future] = {}
        self._lock = Lock()

    @classmethod
    def from_settings(cls, settings: DictConfig, renderer_factory: Optional[RendererFactory] = None) -> "ExportManager":
        """
        Wire up the manager from the merged application configuration.

        Tasks left unfinished by a previous process are failed before the
        manager accepts new work.
        """
        if renderer_factory is None:
            options = RenderOptions.from_config(settings.renderer)

            def renderer_factory() -> PdfRenderer:
                return PdfRenderer(options)

        manager = cls(
            TaskDatabase(settings.storage.database_path),
            AlbumDatabase(settings.storage.database_path),
            build_artifact_store(settings.storage),
            renderer_factory,
            max_workers=settings.exports.max_workers,
            duplicate_policy=settings.exports.duplicate_policy,
            initial_progress=settings.exports.initial_progress,
            render_progress_span=settings.exports.render_progress_span,
            merge_progress=settings.exports.merge_progress,
        )
        manager.recover_interrupted()
        return manager

    def recover_interrupted(self) -> int:
        """Fail tasks that were pending or processing when the service last stopped."""
        count = self.tasks.fail_unfinished(INTERRUPTED_REASON)
        if count:
            logger.warning("Marked %d interrupted export task(s) as failed", count)
        return count

    # Request side ---------------------------------------------------------

    def create_task(self, owner_id: str, album_id: Optional[str]) -> ExportTaskRecord:
        """
        Validate the request, write a pending task and submit it.

        Nothing is written when validation fails.

        Raises:
            ValueError: ``album_id`` is missing
            AlbumNotFoundError: Album missing or not owned by ``owner_id``
            EmptyAlbumError: Album has no pages
            DuplicateExportError: Policy is ``reject`` and an export is in flight
        """
        if album_id is None or str(album_id).strip() == "":
            raise ValueError("Album id is required")
        album_id = str(album_id)

        album = self.albums.get_album(album_id, owner_id)
        if album is None:
            raise AlbumNotFoundError("Album not found or not accessible")
        if not album.pages:
            raise EmptyAlbumError("Album has no pages")

        with self._lock:
            if self.duplicate_policy == "reject":
                active = self.tasks.find_active_task(owner_id, album_id)
                if active is not None:
                    raise DuplicateExportError(active["id"])
            task_id = uuid4().hex
            row = self.tasks.create_task(task_id, owner_id, album_id)
            self._futures[task_id] = self._executor.submit(self._run_export, task_id)

        logger.info("Export task %s created for album %s (%d pages)", task_id, album_id, len(album.pages))
        return ExportTaskRecord.from_row(row)

    def get_task(self, owner_id: str, task_id: str) -> ExportTaskRecord:
        row = self.tasks.get_task(task_id, owner_id=owner_id)
        if row is None:
            raise TaskNotFoundError("Task not found or not accessible")
        return ExportTaskRecord.from_row(row)

    def get_progress(self, owner_id: str, task_id: str) -> ExportProgress:
        return self.get_task(owner_id, task_id).to_progress()

    def list_tasks(self, owner_id: str) -> List[ExportTaskSummary]:
        records = [ExportTaskRecord.from_row(row) for row in self.tasks.list_tasks(owner_id)]
        titles = self.albums.get_titles(record.album_id for record in records)
        return [record.to_summary(titles.get(record.album_id)) for record in records]

    def read_artifact(self, owner_id: str, task_id: str) -> Tuple[bytes, str]:
        """
        Load a completed task's PDF.

        Returns:
            Tuple of (pdf bytes, download filename)

        Raises:
            TaskNotFoundError: Task missing or not owned
            ArtifactNotReadyError: Task is not completed
            FileNotFoundError: Task completed but the artifact is gone from storage
        """
        record = self.get_task(owner_id, task_id)
        if record.status != ExportStatus.COMPLETED:
            raise ArtifactNotReadyError("Export has not completed yet")
        if not record.artifact_path or not self.artifacts.exists(record.artifact_path):
            raise FileNotFoundError("Exported PDF file not found")

        title = self.albums.get_titles([record.album_id]).get(record.album_id, "")
        filename = f"{sanitize_label(title, fallback=f'album-{record.album_id}')}.pdf"
        return self.artifacts.read(record.artifact_path), filename

    def wait(self, task_id: str, timeout: Optional[float] = None) -> None:
        """Block until a task submitted by this manager has finished."""
        with self._lock:
            future = self._futures.get(task_id)
        if future is not None:
            future.result(timeout=timeout)

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)

    # Background side ------------------------------------------------------

    def _page_progress(self, done: int, total: int) -> int:
        return math.floor(self.initial_progress + done / total * self.render_progress_span)

    def _run_export(self, task_id: str) -> None:
        """
        Execute one export (runs in a worker thread).

        Any exception is caught here and recorded on the task, so a task can
        never be left in ``processing`` by a fault in the pipeline.
        """
        try:
            self._process(task_id)
        except Exception as exc:
            logger.exception("Export task %s failed", task_id)
            try:
                self.tasks.mark_failed(task_id, str(exc) or exc.__class__.__name__)
            except Exception:
                logger.exception("Could not record failure for export task %s", task_id)
        finally:
            with self._lock:
                self._futures.pop(task_id, None)

    def _process(self, task_id: str) -> None:
        row = self.tasks.get_task(task_id)
        if row is None:
            raise TaskNotFoundError(f"Task {task_id} disappeared before processing")
        album = self.albums.get_album(row["album_id"], row["owner_id"])
        if album is None:
            raise AlbumNotFoundError("Album no longer exists")

        self.tasks.mark_processing(task_id, self.initial_progress)
        logger.info("Export task %s started: %d pages", task_id, len(album.pages))

        documents, first_error = self._render_pages(task_id, album)
        if not documents:
            reason = "PDF generation failed: no page could be rendered"
            if first_error is not None:
                reason = f"{reason} ({first_error})"
            raise ExportFailedError(reason)

        merged = merge_pdfs(documents)
        self.tasks.update_progress(task_id, self.merge_progress)

        artifact_path = self.artifacts.write(task_id, merged)
        self.tasks.mark_completed(task_id, artifact_path, len(merged))
        logger.info(
            "Export task %s completed: %d of %d pages, %d bytes",
            task_id,
            len(documents),
            len(album.pages),
            len(merged),
        )

    def _render_pages(self, task_id: str, album: Album) -> Tuple[List[bytes], Optional[Exception]]:
        """
        Render every page of ``album`` in order with one renderer instance.

        A page that fails is logged and left out; a renderer-level failure
        aborts the remaining pages.

        Returns:
            Tuple of (rendered page PDFs in album order, first page error)
        """
        total = len(album.pages)
        documents: List[bytes] = []
        first_error: Optional[Exception] = None

        with self.renderer_factory() as renderer:
            for index, page in enumerate(album.pages, start=1):
                try:
                    canvas = parse_canvas(page.content)
                    width, height = canvas_size(canvas)
                    markup = render_page(canvas, resolve_background(album, page))
                    documents.append(renderer.render_page(markup, width, height))
                    logger.info("Export task %s: page %d/%d rendered (%s)", task_id, index, total, page.id)
                except RendererUnavailableError:
                    logger.error("Export task %s: renderer unavailable at page %d/%d", task_id, index, total)
                    raise
                except Exception as exc:
                    logger.warning("Export task %s: skipping page %s: %s", task_id, page.id, exc)
                    if first_error is None:
                        first_error = exc
                self.tasks.update_progress(task_id, self._page_progress(index, total))

        return documents, first_error
