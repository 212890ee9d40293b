from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Dict, List, Optional

from fastapi import APIRouter, Depends, FastAPI, Header, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response

from .configuration import configure_logging, load_settings
from .export_manager import (
    AlbumNotFoundError,
    ArtifactNotReadyError,
    DuplicateExportError,
    EmptyAlbumError,
    ExportManager,
    TaskNotFoundError,
)
from .models import CreateExportRequest, CreateExportResponse, ExportProgress, ExportTaskSummary
from .storage import PDF_CONTENT_TYPE
from .utils import content_disposition

settings = load_settings()
configure_logging(settings)

export_manager = ExportManager.from_settings(settings)


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    export_manager.shutdown(wait=False)


app = FastAPI(title="PhotoBook Export API", version="0.1.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=list(settings.server.cors_origins),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def get_export_manager() -> ExportManager:
    return export_manager


def get_owner_id(x_user_id: Optional[str] = Header(default=None)) -> str:
    """The gateway in front of this service authenticates and forwards the user id."""
    if not x_user_id:
        raise HTTPException(status_code=401, detail="Missing user identity")
    return x_user_id


@app.get("/healthz")
def healthcheck() -> Dict[str, str]:
    return {"status": "ok"}


router = APIRouter(prefix="/api/pdf")


@router.post("/tasks", response_model=CreateExportResponse)
def create_export_task(
    payload: CreateExportRequest,
    owner_id: str = Depends(get_owner_id),
    manager: ExportManager = Depends(get_export_manager),
) -> CreateExportResponse:
    try:
        record = manager.create_task(owner_id, payload.album_id)
    except AlbumNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except EmptyAlbumError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except DuplicateExportError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    return CreateExportResponse(task_id=record.id, message="PDF export task created and queued for processing")


@router.get("/tasks", response_model=List[ExportTaskSummary])
def list_export_tasks(
    owner_id: str = Depends(get_owner_id),
    manager: ExportManager = Depends(get_export_manager),
) -> List[ExportTaskSummary]:
    return manager.list_tasks(owner_id)


@router.get("/tasks/{task_id}/progress", response_model=ExportProgress)
def export_task_progress(
    task_id: str,
    owner_id: str = Depends(get_owner_id),
    manager: ExportManager = Depends(get_export_manager),
) -> ExportProgress:
    try:
        return manager.get_progress(owner_id, task_id)
    except TaskNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc


@router.get("/tasks/{task_id}/download")
def download_export(
    task_id: str,
    owner_id: str = Depends(get_owner_id),
    manager: ExportManager = Depends(get_export_manager),
) -> Response:
    try:
        data, filename = manager.read_artifact(owner_id, task_id)
    except TaskNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ArtifactNotReadyError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except FileNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc) or "Exported PDF file not found") from exc

    return Response(
        content=data,
        media_type=PDF_CONTENT_TYPE,
        headers={"Content-Disposition": content_disposition(filename)},
    )


@router.get("/album/{album_id}")
def legacy_album_export(album_id: str) -> JSONResponse:
    return JSONResponse(
        status_code=410,
        content={
            "detail": "Synchronous album export has been retired; create a task with POST /api/pdf/tasks",
            "deprecated": True,
        },
    )


app.include_router(router)
