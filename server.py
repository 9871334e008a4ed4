from __future__ import annotations

import asyncio
import os
import time
import uuid
from contextlib import asynccontextmanager
from logging import getLogger
from pathlib import Path
from typing import Callable, Optional

from fastapi import FastAPI, File, HTTPException, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, JSONResponse, Response
from pydantic import BaseModel

from zipplay_backend.config import UPLOAD_FIELD, Settings
from zipplay_backend.errors import NotFound, PublishError, UploadTooLarge
from zipplay_backend.publisher import IncomingFile, PublicationGateway
from zipplay_backend.registry import UploadRegistry, UploadState
from zipplay_backend.security import normalize_entry_path, normalize_upload_id, safe_join
from zipplay_backend.sweeper import RetentionSweeper

logger = getLogger(__name__)

SPOOL_CHUNK_BYTES = 1024 * 1024


class UploadResponse(BaseModel):
    id: str
    playUrl: str
    message: str = "Upload successful. Use the playUrl to open the game."


class RecentUpload(BaseModel):
    id: str
    mtime: float
    url: str


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse({"error": message}, status_code=status_code)


async def _spool_upload(file: UploadFile, dest: Path, limit: int) -> None:
    # Copy the request body to disk in chunks, enforcing the size ceiling as we go.
    written = 0
    with dest.open("wb") as out_fp:
        while True:
            chunk = await file.read(SPOOL_CHUNK_BYTES)
            if not chunk:
                break
            written += len(chunk)
            if written > limit:
                raise UploadTooLarge()
            await asyncio.to_thread(out_fp.write, chunk)


def create_app(
    settings: Optional[Settings] = None,
    clock: Callable[[], float] = time.time,
    run_sweeper: bool = True,
) -> FastAPI:
    settings = settings or Settings.from_env()
    settings.ensure_dirs()

    registry = UploadRegistry()
    gateway = PublicationGateway(settings, registry, clock=clock)
    sweeper = RetentionSweeper(settings, registry, clock=clock)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Rebuild state from disk, run a cleanup pass, then start the periodic sweep.
        try:
            restored = await asyncio.to_thread(
                registry.rebuild_from_disk, settings.upload_root, settings.entry_filename
            )
            if restored:
                logger.info("Restored %d uploads from %s", restored, settings.upload_root)
            await asyncio.to_thread(sweeper.sweep_once)
        except Exception:
            logger.exception("Startup cleanup failed")

        task = asyncio.create_task(sweeper.run_forever()) if run_sweeper else None
        app.state._cleanup_task = task
        try:
            yield
        finally:
            if task is not None:
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass

    app = FastAPI(title="ZipPlay", lifespan=lifespan)
    app.state.settings = settings
    app.state.registry = registry
    app.state.gateway = gateway
    app.state.sweeper = sweeper

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/health")
    async def health() -> JSONResponse:
        return JSONResponse({"status": "healthy"})

    @app.post("/upload")
    async def upload(gamezip: Optional[UploadFile] = File(None, alias=UPLOAD_FIELD)) -> JSONResponse:
        """Publish a ZIP containing an index.html and return its play URL."""
        if gamezip is None or not gamezip.filename:
            return _error(400, "No file uploaded")

        spool = settings.tmp_root / f"{int(time.time() * 1000)}-{uuid.uuid4().hex}.zip"
        try:
            await _spool_upload(gamezip, spool, settings.max_upload_bytes)
            incoming = IncomingFile(path=spool, filename=gamezip.filename, content_type=gamezip.content_type)
            result = await asyncio.to_thread(gateway.publish, incoming)
        except PublishError as exc:
            return _error(exc.status_code, exc.message)
        except Exception:
            logger.exception("Upload error")
            return _error(500, "Upload failed")
        finally:
            await gamezip.close()
            try:
                spool.unlink()
            except FileNotFoundError:
                pass
            except OSError:
                logger.warning("Could not remove spool file %s", spool.name, exc_info=True)

        body = UploadResponse(id=result.upload_id, playUrl=result.public_url)
        return JSONResponse(body.model_dump())

    @app.get("/recent")
    async def recent() -> JSONResponse:
        items = [
            RecentUpload(
                id=u.upload_id,
                mtime=u.created_at * 1000.0,
                url=u.public_url(settings.public_prefix),
            ).model_dump()
            for u in registry.list_recent(settings.recent_limit)
        ]
        return JSONResponse(items)

    @app.get(settings.public_prefix + "/{upload_id}/{rel_path:path}")
    async def play(upload_id: str, rel_path: str) -> Response:
        """Serve extracted upload content.

        Security:
        - upload_id must be a strict UUID of a published upload
        - rel_path goes through the same sanitizer as archive entries
        - safe_join ensures it cannot escape the upload directory
        - only regular files: no directory listing, no default document
        """
        try:
            uid = normalize_upload_id(upload_id)
            found = registry.get(uid)
            rel = normalize_entry_path(rel_path)
            path = safe_join(found.root, rel)
        except (ValueError, NotFound):
            raise HTTPException(status_code=404, detail="Not found")
        if found.state is not UploadState.PUBLISHED or not path.is_file():
            raise HTTPException(status_code=404, detail="Not found")
        return FileResponse(path, headers={"X-Content-Type-Options": "nosniff"})

    return app


app = create_app()


if __name__ == "__main__":
    # Convenience: python server.py
    import uvicorn

    port = int(os.environ.get("PORT", "3000"))
    uvicorn.run("server:app", host="0.0.0.0", port=port, reload=False, log_level=app.state.settings.log_level)
