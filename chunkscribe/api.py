"""FastAPI surface: health check and subtitle generation."""

import asyncio
import logging
import os
import shutil
import uuid
from typing import Callable, Optional, Union

from fastapi import FastAPI, File, Form, HTTPException, Request, UploadFile
from fastapi.responses import PlainTextResponse

from chunkscribe import __version__
from chunkscribe.config import create_use_case, get_config
from chunkscribe.mappers import run_result_to_response, segments_to_srt
from chunkscribe.models import SubtitleResponse
from chunkscribe.use_cases.concurrency import CancelToken
from chunkscribe.use_cases.generate_subtitles import GenerateSubtitlesRequest

logger = logging.getLogger(__name__)

RESPONSE_FORMATS = ("json", "srt")
DISCONNECT_POLL_SECONDS = 1.0


def _parse_sample_minutes(raw: Optional[str]) -> Union[str, float, None]:
    if raw is None:
        return None
    raw = raw.strip().lower()
    if raw in ("", "all"):
        return "all"
    try:
        minutes = float(raw)
    except ValueError:
        raise HTTPException(status_code=400, detail=f"glossary_sample_minutes must be 'all' or a number, got {raw!r}")
    if minutes <= 0:
        raise HTTPException(status_code=400, detail="glossary_sample_minutes must be positive")
    return minutes


async def _cancel_on_disconnect(request: Request, cancel: CancelToken) -> None:
    while not cancel.cancelled:
        if await request.is_disconnected():
            cancel.cancel("client disconnected")
            return
        await asyncio.sleep(DISCONNECT_POLL_SECONDS)


def create_app(use_case_factory: Optional[Callable] = None) -> FastAPI:
    app = FastAPI(title="chunkscribe", version=__version__)
    app.state.use_case_factory = use_case_factory or (lambda: create_use_case(get_config()))

    @app.get("/health")
    async def health():
        return {"status": "ok", "version": __version__, **get_config().as_dict()}

    @app.post("/v1/subtitles", response_model=None)
    async def generate_subtitles(
        request: Request,
        file: UploadFile = File(...),
        target_language: Optional[str] = Form(None),
        genre: Optional[str] = Form(None),
        source_language: Optional[str] = Form(None),
        enable_glossary: Optional[bool] = Form(None),
        glossary_sample_minutes: Optional[str] = Form(None),
        enable_diarization: Optional[bool] = Form(None),
        response_format: str = Form("json"),
    ) -> Union[SubtitleResponse, PlainTextResponse]:
        if response_format not in RESPONSE_FORMATS:
            raise HTTPException(
                status_code=400,
                detail=f"Unsupported response_format {response_format!r}. Valid options: {', '.join(RESPONSE_FORMATS)}",
            )
        sample_minutes = _parse_sample_minutes(glossary_sample_minutes)

        cfg = get_config()
        suffix = os.path.splitext(file.filename or "")[1] or ".bin"
        upload_path = os.path.join(cfg.temp_dir, f"{uuid.uuid4().hex}{suffix}")
        with open(upload_path, "wb") as out:
            shutil.copyfileobj(file.file, out)

        cancel = CancelToken()
        watcher = asyncio.create_task(_cancel_on_disconnect(request, cancel))
        try:
            req = GenerateSubtitlesRequest.from_config(
                cfg,
                upload_path,
                target_language=target_language,
                genre=genre,
                source_language=source_language,
                enable_glossary=enable_glossary,
                glossary_sample_minutes=sample_minutes,
                enable_diarization=enable_diarization,
            )
            use_case = request.app.state.use_case_factory()
            result = await use_case.execute(req, cancel=cancel)
        except HTTPException:
            raise
        except Exception as e:
            logger.exception(f"Subtitle generation failed for {file.filename}")
            raise HTTPException(status_code=500, detail=f"Subtitle generation failed: {e}")
        finally:
            watcher.cancel()
            try:
                if os.path.exists(upload_path):
                    os.unlink(upload_path)
            except Exception as e:
                logger.warning(f"Cleanup error: {e}")

        if response_format == "srt":
            return PlainTextResponse(segments_to_srt(result.subtitles, bilingual=True), media_type="application/x-subrip")
        return run_result_to_response(result)

    return app
