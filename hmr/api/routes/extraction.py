"""Referral PDF extraction endpoint."""

from __future__ import annotations

from dataclasses import asdict

from fastapi import APIRouter, Depends, File, UploadFile

from hmr.api.dependencies import Services, get_services
from hmr.api.schemas import ExtractionResponse
from hmr.common.exceptions import ExtractionFailure
from hmr.extraction.normalizer import normalize
from hmr.extraction.types import NormalizationResult

router = APIRouter(tags=["extraction"])


def extract_and_normalize(services: Services, content: bytes, filename: str | None) -> NormalizationResult:
    raw = services.extractor.extract(content, filename=filename)
    return normalize(raw)


def _check_size(services: Services, content: bytes) -> None:
    limit = services.template_settings.max_upload_bytes
    if len(content) > limit:
        raise ExtractionFailure(f"Upload exceeds {limit} bytes", media_type=None)


@router.post("/extractions", response_model=ExtractionResponse)
async def extract_referral(
    file: UploadFile = File(...),
    services: Services = Depends(get_services),
) -> ExtractionResponse:
    content = await file.read()
    _check_size(services, content)
    result = await services.jobs.run_inline(extract_and_normalize, services, content, file.filename)
    threshold = services.review_settings.confidence_threshold
    return ExtractionResponse(
        record=result.record,
        raw_text=result.raw_text,
        flagged_medications=result.flagged_medications(threshold),
        flagged_fields=result.record.flagged_fields(threshold),
        notes=[asdict(note) for note in result.notes],
    )
