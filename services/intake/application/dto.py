from dataclasses import dataclass

from services.intake.domain.upload import UploadTarget


@dataclass(frozen=True)
class ReceiveChunkCommand:
    target: UploadTarget
    data: bytes
    original_name: str
    content_type: str | None
    client_id: str | None = None
    upload_id: str | None = None
    chunk_index: int | None = None
    total_chunks: int | None = None

    @property
    def is_direct(self) -> bool:
        return self.chunk_index is None and self.upload_id is None
