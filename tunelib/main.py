from __future__ import annotations

import os
import re
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from loguru import logger
from starlette.exceptions import HTTPException as StarletteHTTPException

from .auth import check_credentials, create_token, require_user
from .catalog import LibrarySynchronizer, TagReader
from .config import AppConfig, load_config
from .metadata import read_tags
from .models import ImportRequest, LoginRequest
from .store import JsonTrackStore, StoreError, TrackStore
from .streaming import audio_response
from .utils import resolve_target_directory


class State:
    def __init__(self, cfg: AppConfig, store: TrackStore, tag_reader: TagReader = read_tags) -> None:
        self.cfg = cfg
        self.store = store
        self.synchronizer = LibrarySynchronizer(
            store,
            allowed_extensions=cfg.audio_extensions,
            tag_reader=tag_reader,
            library_root=cfg.library_dir,
        )


TRACK_ID_RE = re.compile(r"[A-Za-z0-9_-]+")

router = APIRouter()


def get_state(request: Request) -> State:
    return request.app.state.library


@router.post("/login")
def login(body: LoginRequest, request: Request) -> Dict[str, Any]:
    cfg: AppConfig = request.app.state.config
    if not check_credentials(cfg, body.username, body.password):
        raise HTTPException(status_code=401, detail="invalid credentials")
    return {"token": create_token(cfg, body.username)}


@router.get("/")
def root() -> Dict[str, Any]:
    return {"status": "ok"}


@router.post("/import")
def import_library(
    body: Optional[ImportRequest] = None,
    st: State = Depends(get_state),
    user: Dict[str, Any] = Depends(require_user),
) -> Dict[str, Any]:
    requested = body.directory if body is not None else ""
    target = resolve_target_directory(requested, st.cfg.library_dir)
    if not os.path.exists(target):
        raise HTTPException(status_code=400, detail=f"Library directory not found: {target}")
    if not os.path.isdir(target):
        raise HTTPException(status_code=400, detail=f"Path is not a directory: {target}")

    logger.info(f"Import of {target} requested by {user.get('username', '?')}")
    try:
        summary = st.synchronizer.synchronize(target, requested=requested or None)
    except OSError as e:
        logger.exception(f"Unable to access directory: {target}")
        raise HTTPException(status_code=400, detail=f"Unable to access directory: {target}") from e
    return {"ok": True, "summary": summary.as_dict()}


@router.get("/tracks")
def list_tracks(st: State = Depends(get_state)) -> List[Dict[str, Any]]:
    tracks = sorted(st.store.find_all(), key=lambda t: t.title)
    return [t.public_dict() for t in tracks]


@router.get("/track/{track_id}")
def stream_track(track_id: str, request: Request, st: State = Depends(get_state)) -> Response:
    if not TRACK_ID_RE.fullmatch(track_id or ""):
        raise HTTPException(status_code=400, detail="Invalid track id")

    t = st.store.get(track_id)
    if t is None:
        raise HTTPException(status_code=404, detail="Track not found")
    if not os.path.isfile(t.path):
        raise HTTPException(status_code=404, detail="File not found on server")

    return audio_response(t.path, request.headers.get("range"))


async def _http_error(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"error": exc.detail}, headers=exc.headers)


async def _store_error(request: Request, exc: StoreError) -> JSONResponse:
    logger.error(f"Catalog store unavailable: {exc}")
    return JSONResponse(status_code=503, content={"error": "Catalog store is unavailable"})


async def _unhandled_error(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    return JSONResponse(status_code=500, content={"error": str(exc) or "Internal Server Error"})


def create_app(
    cfg: Optional[AppConfig] = None,
    store: Optional[TrackStore] = None,
    tag_reader: TagReader = read_tags,
) -> FastAPI:
    cfg = cfg or load_config()
    if store is None:
        store = JsonTrackStore(cfg.catalog_path)

    app = FastAPI(title="tunelib", version="0.1.0")
    app.state.config = cfg
    app.state.library = State(cfg, store, tag_reader)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=cfg.allowed_origins,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["Origin", "X-Requested-With", "Content-Type", "Accept", "Authorization", "Range"],
        expose_headers=["Content-Range", "Accept-Ranges", "Content-Length"],
    )
    app.add_exception_handler(StarletteHTTPException, _http_error)
    app.add_exception_handler(StoreError, _store_error)
    app.add_exception_handler(Exception, _unhandled_error)
    app.include_router(router)

    logger.info(f"Library root: {cfg.library_dir}, catalog: {cfg.catalog_path}")
    return app


app = create_app()
