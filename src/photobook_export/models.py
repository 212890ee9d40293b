from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


class ExportStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (ExportStatus.COMPLETED, ExportStatus.FAILED)


# Canvas description -------------------------------------------------------


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class Transform(_CamelModel):
    x: float = 0
    y: float = 0
    width: float = 0
    height: float = 0
    rotation: float = 0
    scale_x: float = Field(1, alias="scaleX")
    scale_y: float = Field(1, alias="scaleY")


class Border(_CamelModel):
    width: float = 0
    color: str = "#000000"
    radius: float = 0


class CanvasElement(_CamelModel):
    id: str = ""
    type: str
    transform: Transform = Field(default_factory=Transform)
    z_index: float = Field(0, alias="zIndex")
    visible: bool = True
    locked: bool = False
    opacity: Optional[float] = None
    # text
    content: Optional[str] = None
    font_size: Optional[float] = Field(None, alias="fontSize")
    font_family: Optional[str] = Field(None, alias="fontFamily")
    font_weight: Optional[str] = Field(None, alias="fontWeight")
    font_style: Optional[str] = Field(None, alias="fontStyle")
    color: Optional[str] = None
    text_align: Optional[str] = Field(None, alias="textAlign")
    line_height: Optional[float] = Field(None, alias="lineHeight")
    # image
    src: Optional[str] = None
    border: Optional[Border] = None
    # shape
    shape_type: Optional[str] = Field(None, alias="shapeType")
    fill: Optional[str] = None
    stroke: Optional[str] = None
    stroke_width: Optional[float] = Field(None, alias="strokeWidth")


class CanvasSize(_CamelModel):
    width: float = 800
    height: float = 600


class PageCanvas(_CamelModel):
    canvas_size: Optional[CanvasSize] = Field(None, alias="canvasSize")
    elements: List[CanvasElement] = Field(default_factory=list)
    version: Optional[int] = None


# Background styles --------------------------------------------------------


class GradientStop(_CamelModel):
    color: str
    position: float


class BackgroundStyle(_CamelModel):
    type: Optional[str] = None
    color: Optional[str] = None
    gradient_type: Optional[Literal["linear", "radial"]] = Field(None, alias="gradientType")
    direction: Optional[Union[str, int, float]] = None
    stops: List[GradientStop] = Field(default_factory=list)
    url: Optional[str] = None
    size: Optional[str] = None
    position: Optional[str] = None
    repeat: Optional[bool] = None
    opacity: Optional[float] = None


# Album / page (read-only to the export pipeline) --------------------------


class Page(BaseModel):
    id: str
    content: Optional[str] = None
    background: Optional[BackgroundStyle] = None
    position: Optional[int] = None


class Album(BaseModel):
    id: str
    owner_id: str
    title: str
    background: Optional[BackgroundStyle] = None
    use_page_backgrounds: bool = False
    pages: List[Page] = Field(default_factory=list)


# API payloads -------------------------------------------------------------


class CreateExportRequest(_CamelModel):
    album_id: Optional[Union[str, int]] = Field(None, alias="albumId")


class CreateExportResponse(_CamelModel):
    task_id: str = Field(alias="taskId")
    message: str


class ExportProgress(_CamelModel):
    task_id: str = Field(alias="taskId")
    status: ExportStatus
    progress: int
    created_at: datetime = Field(alias="createdAt")
    updated_at: datetime = Field(alias="updatedAt")
    failure_reason: Optional[str] = Field(None, alias="failureReason")


class ExportTaskSummary(ExportProgress):
    album_id: str = Field(alias="albumId")
    album_title: Optional[str] = Field(None, alias="albumTitle")
    artifact_size: Optional[int] = Field(None, alias="artifactSize")
