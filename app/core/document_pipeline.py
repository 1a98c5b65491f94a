"""Trigger for the document processing pipeline (chunking + embedding).

Ingestion itself lives outside this service. A resolved knowledge gap only
needs to hand the new document over; submission is fire-and-forget and a
failure leaves the document in ``processing`` for the pipeline to pick up.
"""

from __future__ import annotations

from typing import Protocol

import httpx

from app.core.config import get_settings
from app.core.logging import get_logger

logger = get_logger(__name__)


class DocumentPipeline(Protocol):
    def submit(self, document_id: str, school_id: str) -> None: ...


class HttpDocumentPipeline:
    """POSTs the document id to the processing endpoint."""

    def __init__(self, url: str, secret: str = "", timeout: float = 15):
        self.url = url
        self.timeout = timeout
        self._headers = {"Content-Type": "application/json"}
        if secret:
            self._headers["x-process-secret"] = secret

    def submit(self, document_id: str, school_id: str) -> None:
        with httpx.Client(timeout=self.timeout) as client:
            resp = client.post(
                self.url,
                headers=self._headers,
                json={"documentId": str(document_id), "schoolId": str(school_id)},
            )
            resp.raise_for_status()
        logger.info(f"Submitted document {document_id} for processing", extra={"school_id": school_id})


class NullDocumentPipeline:
    """Used when no processing endpoint is configured."""

    def submit(self, document_id: str, school_id: str) -> None:
        logger.info(
            f"No PROCESS_DOCUMENT_URL configured, document {document_id} left in processing",
            extra={"school_id": school_id},
        )


def get_document_pipeline() -> DocumentPipeline:
    settings = get_settings()
    if settings.PROCESS_DOCUMENT_URL:
        return HttpDocumentPipeline(settings.PROCESS_DOCUMENT_URL, settings.PROCESS_DOCUMENT_SECRET)
    return NullDocumentPipeline()
