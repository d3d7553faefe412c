"""
Statement analysis API.

Uploads are extracted, redacted, classified, and the detailed result is parked
in the report cache. The response carries only aggregates plus the report id;
subscription names and per-charge rows are released by /api/unlock-report.
"""
from fastapi import APIRouter, Depends, File, Form, UploadFile, status
from typing import List, Optional
import asyncio
import logging

from models import ClassificationErrorCode
from routes.dependencies import api_error, get_statement_classifier, get_unlock_service
from services.statement_classifier import StatementClassifier
from services.unlock_service import UnlockService
from utils.redaction import redact
from utils.statement_text import MAX_UPLOAD_BYTES, UnsupportedStatementType, extract_statement_text

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["analyze"])

CLASSIFICATION_ERROR_STATUS = {
    ClassificationErrorCode.TOO_SHORT: status.HTTP_422_UNPROCESSABLE_ENTITY,
    ClassificationErrorCode.NOT_A_STATEMENT: status.HTTP_422_UNPROCESSABLE_ENTITY,
    ClassificationErrorCode.MALFORMED_RESPONSE: status.HTTP_502_BAD_GATEWAY,
    ClassificationErrorCode.SERVICE_UNAVAILABLE: status.HTTP_503_SERVICE_UNAVAILABLE,
}


async def _read_uploads(files: List[UploadFile]) -> str:
    loop = asyncio.get_running_loop()
    parts = []
    for upload in files:
        data = await upload.read()
        if len(data) > MAX_UPLOAD_BYTES:
            raise api_error(
                status.HTTP_400_BAD_REQUEST,
                "FILE_TOO_LARGE",
                f"{upload.filename} exceeds {MAX_UPLOAD_BYTES // (1024 * 1024)} MB",
            )
        try:
            # pdfplumber is synchronous and CPU-bound; keep it off the event loop
            extracted = await loop.run_in_executor(
                None, extract_statement_text, data, upload.filename, upload.content_type
            )
        except UnsupportedStatementType:
            raise api_error(
                status.HTTP_400_BAD_REQUEST,
                "UNSUPPORTED_FILE_TYPE",
                "Only PDF, CSV and text statements are supported",
            )
        parts.append(extracted)
    return "\n\n".join(parts)


@router.post("/analyze")
async def analyze_statement(
    files: Optional[List[UploadFile]] = File(None),
    text: Optional[str] = Form(None),
    classifier: StatementClassifier = Depends(get_statement_classifier),
    unlock_service: UnlockService = Depends(get_unlock_service),
):
    """
    Analyze an uploaded statement (multipart "files") or pasted "text".

    Returns reportId, currencyCode, currencySymbol, totalAnnualWaste and
    subscriptionCount. Never returns subscription details.
    """
    if files:
        logger.info(f"Analyze request with {len(files)} file(s)")
        raw_text = await _read_uploads(files)
    elif text and text.strip():
        raw_text = text
    else:
        raise api_error(status.HTTP_400_BAD_REQUEST, "NO_INPUT", "No files uploaded")

    redacted = redact(raw_text)
    outcome = await classifier.classify(redacted)
    if not outcome.ok:
        raise api_error(
            CLASSIFICATION_ERROR_STATUS[outcome.error_code],
            outcome.error_code.value,
            outcome.message or "Analysis failed",
        )

    summary = unlock_service.create_report(outcome.result)
    return summary.model_dump(by_alias=True)
