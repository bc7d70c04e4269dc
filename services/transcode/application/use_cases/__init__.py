"""Use cases for the transcode worker."""

from .process_media import ProcessMediaUseCase

__all__ = [
    "ProcessMediaUseCase",
]
