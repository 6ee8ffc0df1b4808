"""
Pytest configuration and fixtures for the HMR pipeline tests.

Provides:
- A complete, valid canonical record and raw extractor payloads
- In-test builders for custom templates (fillable PDF form, merge-field DOCX)
  and for referral letter PDFs
- A FastAPI TestClient wired with in-memory services
"""

from __future__ import annotations

import io
import os
from typing import Callable, Generator

import pytest

os.environ.setdefault("HMR_SKIP_DOTENV", "1")

from docx import Document  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from pypdf import PdfReader, PdfWriter  # noqa: E402
from pypdf.generic import (  # noqa: E402
    ArrayObject,
    BooleanObject,
    DictionaryObject,
    FloatObject,
    NameObject,
    NumberObject,
    TextStringObject,
)

from config.settings import RenderSettings, ReviewSettings, TemplateSettings  # noqa: E402
from hmr_schemas.clinical import (  # noqa: E402
    MEDICATION_ADHERENCE_OPTIONS,
    MEDICATION_UNDERSTANDING_OPTIONS,
    CanonicalRecord,
    ComplianceStatus,
    InterviewResponse,
    MedicationEntry,
    PatientInfo,
    PriorityLevel,
    Recommendation,
)
from hmr.api.dependencies import build_services  # noqa: E402
from hmr.api.fastapi_app import create_app  # noqa: E402
from hmr.reporting.layout import layout  # noqa: E402
from hmr.reporting.pdf_writer import write_pdf  # noqa: E402
from hmr.workflow.draft_store import InMemoryDraftStore  # noqa: E402


# =============================================================================
# RECORD FIXTURES
# =============================================================================

@pytest.fixture
def complete_record() -> CanonicalRecord:
    """A record with no validation issues at all."""
    return CanonicalRecord(
        patient=PatientInfo(
            name="Jane Citizen",
            dob="1945-04-03",
            gender="Female",
            medicare_number="2123456781",
            address="12 Smith Street, Adelaide SA 5000",
            referring_doctor="Dr John Smith",
            practice_name="Hills Medical Centre",
            known_allergies="Penicillin (rash)",
        ),
        medications=[
            MedicationEntry(
                name="Metformin",
                strength="500mg",
                form="Tablet",
                dosage="1 tablet",
                frequency="twice daily",
            ),
            MedicationEntry(
                name="Warfarin",
                strength="5mg",
                dosage="1 tablet",
                frequency="nocte",
                compliance_status=ComplianceStatus.POOR,
                compliance_notes="Doses missed on weekends",
            ),
        ],
        interview=InterviewResponse(
            interview_date="2024-03-01",
            pharmacist_name="Alex Chen",
            medication_understanding=MEDICATION_UNDERSTANDING_OPTIONS[0],
            medication_adherence=MEDICATION_ADHERENCE_OPTIONS[0],
            smoking_status="Non-smoker",
        ),
        recommendations=[
            Recommendation(
                category="Anticoagulation",
                issue_identified="INR not monitored recently",
                suggested_action="Arrange INR test",
                priority_level=PriorityLevel.HIGH,
                patient_counselling="Explained signs of bleeding",
            )
        ],
    )


@pytest.fixture
def raw_extraction() -> dict:
    """Extractor payload in the camelCase shape the OCR service returns."""
    return {
        "rawText": "RE: Jane Citizen ...",
        "fields": {
            "patientName": "Jane Citizen",
            "dob": "1945-04-03",
            "gender": "Female",
            "doctorName": "Dr John Smith",
            "medications": [
                {"name": "Metformin", "strength": "500mg", "frequency": "twice daily", "confidence": 0.95},
                {"name": "Wafarin", "strength": "5mg", "confidence": 0.4},
            ],
        },
        "fieldConfidence": {"patientName": 0.9, "dob": 0.5},
    }


# =============================================================================
# DOCUMENT BUILDERS
# =============================================================================

def _form_pdf(field_names: list[str]) -> bytes:
    writer = PdfWriter()
    page = writer.add_blank_page(width=612, height=792)

    helv = writer._add_object(
        DictionaryObject(
            {
                NameObject("/Type"): NameObject("/Font"),
                NameObject("/Subtype"): NameObject("/Type1"),
                NameObject("/BaseFont"): NameObject("/Helvetica"),
                NameObject("/Encoding"): NameObject("/WinAnsiEncoding"),
            }
        )
    )
    fields = ArrayObject()
    for idx, name in enumerate(field_names):
        top = 740 - idx * 40
        widget = DictionaryObject(
            {
                NameObject("/Type"): NameObject("/Annot"),
                NameObject("/Subtype"): NameObject("/Widget"),
                NameObject("/FT"): NameObject("/Tx"),
                NameObject("/T"): TextStringObject(name),
                NameObject("/V"): TextStringObject(""),
                NameObject("/F"): NumberObject(4),
                NameObject("/DA"): TextStringObject("/Helv 10 Tf 0 g"),
                NameObject("/Rect"): ArrayObject(
                    [FloatObject(72), FloatObject(top - 20), FloatObject(400), FloatObject(top)]
                ),
            }
        )
        fields.append(writer._add_object(widget))
    page[NameObject("/Annots")] = ArrayObject(list(fields))
    writer._root_object[NameObject("/AcroForm")] = DictionaryObject(
        {
            NameObject("/Fields"): fields,
            NameObject("/NeedAppearances"): BooleanObject(True),
            NameObject("/DR"): DictionaryObject(
                {NameObject("/Font"): DictionaryObject({NameObject("/Helv"): helv})}
            ),
        }
    )
    buffer = io.BytesIO()
    writer.write(buffer)
    return buffer.getvalue()


def _docx(paragraphs: list[str]) -> bytes:
    document = Document()
    for text in paragraphs:
        document.add_paragraph(text)
    buffer = io.BytesIO()
    document.save(buffer)
    return buffer.getvalue()


@pytest.fixture
def make_form_pdf() -> Callable[[list[str]], bytes]:
    """Build a fillable PDF with one text field per name."""
    return _form_pdf


@pytest.fixture
def make_docx() -> Callable[[list[str]], bytes]:
    """Build a DOCX with one paragraph per string."""
    return _docx


@pytest.fixture
def referral_template_docx() -> bytes:
    return _docx(
        [
            "Patient: {patientName}",
            "Referring GP: {{doctorName}}",
            "Current medications: [drugList]",
        ]
    )


REFERRAL_LINES = [
    "RE: Mrs Jane Citizen",
    "DOB: 03/04/1945",
    "Medicare No: 2123 45678 1",
    "12 Smith Street, Adelaide SA 5000",
    "Current Medications:",
    "Metformin 500mg tablet twice daily",
    "Paracetamol 500mg tablets",
    "take 2 when required",
    "Yours sincerely",
    "Dr John Smith",
]


@pytest.fixture
def referral_text() -> str:
    return "\n".join(REFERRAL_LINES)


@pytest.fixture
def referral_pdf() -> bytes:
    """A text-layer referral letter, one line of text per input line."""
    return write_pdf(layout("\n".join(REFERRAL_LINES)))


def pdf_content(data: bytes) -> bytes:
    """Decoded page content streams, concatenated."""
    reader = PdfReader(io.BytesIO(data))
    return b"".join(page.get_contents().get_data() for page in reader.pages)


@pytest.fixture
def read_pdf_content() -> Callable[[bytes], bytes]:
    return pdf_content


# =============================================================================
# API FIXTURES
# =============================================================================

@pytest.fixture
def services():
    return build_services(
        review_settings=ReviewSettings(),
        render_settings=RenderSettings(),
        template_settings=TemplateSettings(),
        drafts=InMemoryDraftStore(),
    )


@pytest.fixture
def client(services) -> Generator[TestClient, None, None]:
    with TestClient(create_app(services=services)) as test_client:
        yield test_client
