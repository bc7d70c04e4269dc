from __future__ import annotations

import logging
from typing import Literal

from fastapi import APIRouter, File, HTTPException, Query, UploadFile

from media_pipeline.media.classifier import SizeLimitExceeded, UnsupportedType
from media_pipeline.storage import StorageError

from services.intake.application.dto import ReceiveChunkCommand
from services.intake.application.receive_chunk import (
    ReceiveChunkUseCase,
    UploadOwnershipError,
)
from services.intake.domain.upload import UploadTarget

logger = logging.getLogger(__name__)


def create_router(receive_chunk_use_case: ReceiveChunkUseCase) -> APIRouter:
    router = APIRouter()
    uploads_router = APIRouter(prefix="/v1/uploads", tags=["uploads"])

    @uploads_router.post("/{resource}/{entity_id}/{field_name}")
    def upload_endpoint(
        resource: str,
        entity_id: str,
        field_name: str,
        file: UploadFile = File(...),
        client_id: str | None = Query(None, alias="clientId"),
        upload_id: str | None = Query(None, alias="uploadId"),
        chunk_index: int | None = Query(None, alias="chunkIndex"),
        total_chunks: int | None = Query(None, alias="totalChunks"),
        original_name: str | None = Query(None, alias="originalName"),
        title: str | None = Query(None),
        intent: Literal["attach", "replace"] = Query("attach"),
    ):
        command = ReceiveChunkCommand(
            target=UploadTarget(
                resource=resource,
                owner_entity_id=entity_id,
                field_name=field_name,
                is_edit=intent == "replace",
                title=title,
            ),
            data=file.file.read(),
            original_name=original_name or file.filename or "upload.bin",
            content_type=file.content_type,
            client_id=client_id,
            upload_id=upload_id,
            chunk_index=chunk_index,
            total_chunks=total_chunks,
        )
        try:
            result = receive_chunk_use_case.execute(command)
        except UnsupportedType as exc:
            raise HTTPException(status_code=415, detail=str(exc)) from exc
        except SizeLimitExceeded as exc:
            raise HTTPException(status_code=413, detail=str(exc)) from exc
        except UploadOwnershipError as exc:
            raise HTTPException(status_code=409, detail=str(exc)) from exc
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        except StorageError as exc:
            logger.error("Storage failure while receiving upload: %s", exc)
            raise HTTPException(status_code=502, detail="Storage unavailable") from exc
        return result.to_dict()

    router.include_router(uploads_router)
    return router
