"""Chunk ingest, merge and object endpoints."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import List

from fastapi import APIRouter, Depends, File, Form, Response, UploadFile

from ..deps.auth import get_api_key
from ..errors import InvalidRequest, MissingUpload, NoChunksToMerge, PayloadTooLarge, UnsupportedMediaType
from ..metrics import CHUNK_UPLOAD_COUNTER
from ..schemas import ChunkUploadResponse, DeleteResponse, MergeResponse
from ..services.merge_engine import MergeEngine
from ..services.storage_service import StorageService
from ..settings import APISettings, get_settings

LOGGER = logging.getLogger("voicenotes.api")

router = APIRouter(tags=["audio"])


def get_storage(settings: APISettings = Depends(get_settings)) -> StorageService:
    return StorageService.from_settings(settings)


def get_merge_engine(
    settings: APISettings = Depends(get_settings),
    storage: StorageService = Depends(get_storage),
) -> MergeEngine:
    return MergeEngine.from_settings(settings, storage)


@router.post("/chunk", response_model=ChunkUploadResponse, response_model_by_alias=True)
async def upload_chunk(
    file: UploadFile | None = File(None),
    duration: int | None = Form(None),
    timestamp: str | None = Form(None),
    sequence: int | None = Form(None),
    _: str | None = Depends(get_api_key),
    settings: APISettings = Depends(get_settings),
    storage: StorageService = Depends(get_storage),
):
    try:
        captured_at = _parse_timestamp(timestamp)
        data = await _read_audio(file, settings)
        key = storage.put(data, file.filename, content_type=file.content_type)
    except Exception:
        CHUNK_UPLOAD_COUNTER.labels(status="error").inc()
        raise
    CHUNK_UPLOAD_COUNTER.labels(status="success").inc()
    LOGGER.info("Chunk %s stored (seq=%s, duration=%sms)", key, sequence, duration)
    return ChunkUploadResponse(
        storage_key=key,
        size=len(data),
        duration_ms=duration,
        captured_at=captured_at,
        sequence=sequence,
    )


@router.post("/merge", response_model=MergeResponse, response_model_by_alias=True)
async def merge_chunks(
    keys: List[str] | None = Form(None),
    files: List[UploadFile] | None = File(None),
    _: str | None = Depends(get_api_key),
    settings: APISettings = Depends(get_settings),
    storage: StorageService = Depends(get_storage),
    engine: MergeEngine = Depends(get_merge_engine),
):
    ordered_keys = [key.strip() for key in keys or [] if key and key.strip()]
    uploads = [upload for upload in files or [] if upload.filename]
    if ordered_keys and uploads:
        raise InvalidRequest("Send either keys or files, not both")
    if not ordered_keys and not uploads:
        raise NoChunksToMerge()

    staged: list[str] = []
    if uploads:
        try:
            for upload in uploads:
                data = await _read_audio(upload, settings)
                staged.append(storage.put(data, upload.filename, content_type=upload.content_type))
        except Exception:
            for key in staged:
                storage.discard(key)
            raise
        ordered_keys = staged

    try:
        result = await engine.merge(ordered_keys)
    except Exception:
        # staged uploads were never visible to the caller, so they cannot be retried by key
        for key in staged:
            storage.discard(key)
        raise
    return MergeResponse(merged_key=result.key, size=result.size, source_keys=result.source_keys)


@router.get("/object/{key}")
async def fetch_object(
    key: str,
    _: str | None = Depends(get_api_key),
    storage: StorageService = Depends(get_storage),
) -> Response:
    data = storage.get(key)
    return Response(content=data, media_type=storage.content_type(key))


@router.delete("/object/{key}", response_model=DeleteResponse)
async def delete_object(
    key: str,
    _: str | None = Depends(get_api_key),
    storage: StorageService = Depends(get_storage),
):
    storage.delete(key)
    return DeleteResponse(deleted=key)


async def _read_audio(upload: UploadFile | None, settings: APISettings) -> bytes:
    if upload is None or not upload.filename:
        raise MissingUpload("No audio file provided")
    content_type = (upload.content_type or "").lower()
    if not content_type.startswith("audio/"):
        raise UnsupportedMediaType(f"File must be an audio file, got '{upload.content_type}'")
    data = await upload.read()
    if not data:
        raise MissingUpload("Uploaded audio file is empty")
    if len(data) > settings.max_upload_bytes:
        raise PayloadTooLarge(f"Upload exceeds {settings.max_upload_mb:g} MB")
    return data


def _parse_timestamp(raw: str | None) -> datetime | None:
    if raw is None or not raw.strip():
        return None
    value = raw.strip()
    try:
        if value.lstrip("-").isdigit():
            return datetime.fromtimestamp(int(value) / 1000.0, tz=timezone.utc)
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except (ValueError, OverflowError, OSError) as exc:
        raise InvalidRequest(f"Invalid timestamp '{raw}'") from exc
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed
