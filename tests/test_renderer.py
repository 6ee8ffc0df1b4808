"""Tests for hmr/reporting - fixed report rendering, custom template fill and the PDF layout."""

import datetime as dt
import io

import pytest
from docx import Document
from pypdf import PdfReader

from config.settings import RenderSettings, ReviewSettings
from hmr_schemas.clinical import CanonicalRecord, FieldOrigin, MedicationEntry
from hmr.common.exceptions import RenderFailure
from hmr.reporting.layout import LayoutStyle, layout, wrap
from hmr.reporting.pdf_writer import write_pdf
from hmr.reporting.renderer import (
    PROGRESS_STEPS,
    DocumentRenderer,
    RenderOptions,
    fill_values,
)
from hmr.templating.context import build_render_context, summarize
from hmr.templating.documents import MergeFieldDocx
from hmr.templating.mapper import TemplateFieldMapper
from hmr.templating.store import InMemoryTemplateStore
from observability.metrics import RecordingMetricsClient, set_metrics_client


@pytest.fixture
def renderer():
    return DocumentRenderer(RenderSettings(), ReviewSettings())


class TestLayout:
    def test_wrap_breaks_and_br(self):
        lines = wrap("alpha beta gamma<br>delta", width=60, size=10)
        assert lines[-1] == "delta"
        assert len(lines) >= 2

    def test_pagebreak_starts_new_page(self):
        pages = layout("First page\n@pagebreak\nSecond page")
        assert len(pages) == 2
        assert pages[1].lines[0].text == "Second page"

    def test_long_content_overflows(self):
        pages = layout("\n".join(f"Line {i}" for i in range(200)))
        assert len(pages) > 1

    def test_indented_at_sign_is_prose(self):
        pages = layout(" @title not a directive")
        assert pages[0].lines[0].text == "@title not a directive"

    def test_unknown_directive(self):
        with pytest.raises(ValueError):
            layout("@bogus text")

    def test_only_newline_splits_markup(self):
        pages = layout("@tr left\u2028@bogus | right\r")
        assert len(pages) == 1

    def test_table_row_cells(self):
        pages = layout("@columns 50,50\n@tr left | right")
        texts = [line.text for line in pages[0].lines]
        assert texts == ["left", "right"]

    def test_letter_size(self):
        pdf = write_pdf(layout("Hello", LayoutStyle(page_format="Letter")), page_format="Letter")
        page = PdfReader(io.BytesIO(pdf)).pages[0]
        assert float(page.mediabox.width) == pytest.approx(612)


class TestFixedReport:
    def test_final_report(self, renderer, complete_record, read_pdf_content):
        document = renderer.render(complete_record, generated_on=dt.date(2024, 3, 2))
        assert document.media_type == "application/pdf"
        assert document.filename == "HMR_Report_Jane_Citizen.pdf"
        assert document.content.startswith(b"%PDF")
        assert document.summary.watermark == "Final"

        content = read_pdf_content(document.content)
        assert b"(Home Medication Review) Tj" in content
        assert b"(Jane Citizen) Tj" in content
        assert b"(02/03/2024) Tj" in content
        assert b"(Final report) Tj" in content
        assert b"(DRAFT) Tj" not in content
        # Non-compliant medications are marked.
        assert b"(Warfarin 5mg *) Tj" in content
        assert b"(Appendix 1: Medication List) Tj" not in content

    def test_issues_make_a_draft(self, renderer, complete_record, read_pdf_content):
        meds = [MedicationEntry(name="Wafarin", confidence=0.4, origin=FieldOrigin.EXTRACTED)]
        record = complete_record.model_copy(update={"medications": meds})
        document = renderer.render(record)
        assert document.summary.watermark == "Draft"
        content = read_pdf_content(document.content)
        assert content.count(b"(DRAFT) Tj") == document.summary.pages

    @pytest.mark.parametrize("separator", ["\r", "\u2028", "\x0c", "\x85", "\r\n"])
    def test_line_separators_in_values(self, renderer, complete_record, read_pdf_content, separator):
        patient = complete_record.patient.model_copy(update={"name": f"Jane{separator}@bogus row"})
        record = complete_record.model_copy(update={"patient": patient})
        document = renderer.render(record)
        content = read_pdf_content(document.content)
        assert b"(@bogus row) Tj" in content
        assert document.filename == "HMR_Report_Jane_bogus_row.pdf"

    def test_explicit_watermark_wins(self, renderer, complete_record):
        document = renderer.render(complete_record, options=RenderOptions(watermark="draft"))
        assert document.summary.watermark == "Draft"

    def test_appendices(self, renderer, complete_record, read_pdf_content):
        document = renderer.render(complete_record, options=RenderOptions(include_appendices=True))
        content = read_pdf_content(document.content)
        assert b"(Appendix 1: Medication List) Tj" in content
        assert b"(Appendix 2: Counselling Summary) Tj" in content

    def test_empty_record_renders_placeholders(self, renderer, read_pdf_content):
        document = renderer.render(CanonicalRecord())
        content = read_pdf_content(document.content)
        assert b"([Patient Name]) Tj" in content
        assert document.filename == "HMR_Report_patient.pdf"
        assert document.summary.watermark == "Draft"

    def test_preparer_chain(self, renderer, complete_record, read_pdf_content):
        record = complete_record.model_copy(
            update={"interview": complete_record.interview.model_copy(update={"pharmacist_name": ""})}
        )
        content = read_pdf_content(renderer.render(record).content)
        assert b"(Consultant Pharmacist) Tj" in content
        content = read_pdf_content(renderer.render(record, profile="Sam Lee").content)
        assert b"(Sam Lee) Tj" in content

    def test_progress_reported_in_order(self, renderer, complete_record):
        seen = []
        renderer.render(complete_record, progress=seen.append)
        assert seen == list(PROGRESS_STEPS)

    def test_letter_format(self, renderer, complete_record):
        document = renderer.render(complete_record, options=RenderOptions(page_format="letter"))
        page = PdfReader(io.BytesIO(document.content)).pages[0]
        assert float(page.mediabox.height) == pytest.approx(792)

    @pytest.mark.parametrize(
        "options",
        [RenderOptions(watermark="Sample"), RenderOptions(page_format="A5")],
    )
    def test_bad_options(self, renderer, complete_record, options):
        with pytest.raises(RenderFailure):
            renderer.render(complete_record, options=options)

    def test_unknown_target(self, renderer, complete_record):
        with pytest.raises(RenderFailure):
            renderer.render(complete_record, "letterhead")


class TestCustomTemplate:
    def test_partial_mapping_fills_what_it_can(self, renderer, complete_record, referral_template_docx):
        template = MergeFieldDocx(referral_template_docx, "letter.docx")
        mapping = {"patientName": "patient.name", "doctorName": "patient.referring_doctor"}
        document = renderer.render(complete_record, template, mapping)

        assert document.filename == "letter-filled.docx"
        text = [p.text for p in Document(io.BytesIO(document.content)).paragraphs]
        assert text == ["Patient: Jane Citizen", "Referring GP: Dr John Smith", "Current medications: "]
        summary = document.summary
        assert summary.filled == ["patientName", "doctorName"]
        assert summary.unmapped == ["drugList"]
        assert summary.ok

    def test_computed_values(self, renderer, complete_record, make_docx):
        template = MergeFieldDocx(make_docx(["{count}", "{date}"]))
        mapping = {"count": "summary.medications_count", "date": "report.generated_date"}
        document = renderer.render(complete_record, template, mapping, generated_on=dt.date(2024, 3, 2))
        text = [p.text for p in Document(io.BytesIO(document.content)).paragraphs]
        assert text == ["2", "02/03/2024"]

    def test_bad_path_fails_soft(self, renderer, complete_record, referral_template_docx):
        template = MergeFieldDocx(referral_template_docx)
        document = renderer.render(complete_record, template, {"patientName": "patient.nickname"})
        assert [f.field_name for f in document.summary.errors] == ["patientName"]
        text = [p.text for p in Document(io.BytesIO(document.content)).paragraphs]
        assert text[0] == "Patient: "

    @pytest.mark.parametrize("error", [IndexError("list index out of range"), AttributeError("no paragraphs")])
    def test_fill_errors_become_render_failures(self, renderer, complete_record, referral_template_docx, error):
        class BrokenDocx(MergeFieldDocx):
            def fill(self, values):
                raise error

        template = BrokenDocx(referral_template_docx, "letter.docx")
        with pytest.raises(RenderFailure) as excinfo:
            renderer.render(complete_record, template, {"patientName": "patient.name"})
        assert excinfo.value.__cause__ is error

    def test_stored_descriptor_uses_its_mapping(self, complete_record, referral_template_docx):
        mapper = TemplateFieldMapper(InMemoryTemplateStore())
        renderer = DocumentRenderer(template_loader=mapper.load_document)
        descriptor = mapper.register("owner", "letter.docx", referral_template_docx)
        descriptor = mapper.apply_suggestions(descriptor.id)

        document = renderer.render(complete_record, descriptor)
        assert document.summary.template_id == descriptor.id
        assert document.summary.unmapped == []
        text = [p.text for p in Document(io.BytesIO(document.content)).paragraphs]
        assert "Current medications: Metformin 500mg - 1 tablet twice daily" in text[2]

    def test_form_pdf(self, renderer, complete_record, make_form_pdf):
        from hmr.templating.documents import FormFillablePdf

        template = FormFillablePdf(make_form_pdf(["patientName", "dob"]), "form.pdf")
        document = renderer.render(complete_record, template, {"patientName": "patient.name", "dob": "patient.dob"})
        fields = PdfReader(io.BytesIO(document.content)).get_fields()
        assert fields["patientName"].get("/V") == "Jane Citizen"
        assert fields["dob"].get("/V") == "1945-04-03"


class TestFillValues:
    def test_statuses(self, complete_record):
        context = build_render_context(complete_record, preparer="Alex Chen", watermark="Final")
        values, resolutions = fill_values(
            ["a", "b", "c", "d"],
            {"a": "patient.name", "b": "patient.email", "d": "medications[7].name"},
            context,
        )
        assert values == {"a": "Jane Citizen", "b": "", "c": "", "d": ""}
        assert [r.status for r in resolutions] == ["filled", "empty", "unmapped", "empty"]

    def test_summary_values(self, complete_record):
        summary = summarize(complete_record)
        assert summary.medications_count == "2"
        assert summary.compliance_summary == "1 compliant, 1 non-compliant"
        assert summary.high_priority_count == "1"
        assert summary.recommendations_summary.startswith("1. INR not monitored recently")


class TestRenderMetrics:
    @pytest.fixture
    def metrics(self):
        client = RecordingMetricsClient()
        set_metrics_client(client)
        yield client
        set_metrics_client(None)

    def test_success_records_timing(self, renderer, complete_record, metrics):
        renderer.render(complete_record)
        assert metrics.names("timing") == ["render.document"]
        assert metrics.names("counter") == []

    def test_failure_counted(self, renderer, complete_record, metrics):
        with pytest.raises(RenderFailure):
            renderer.render(complete_record, "letterhead")
        assert metrics.names("counter") == ["render.failure"]
        failure = metrics.samples[-1]
        assert ("kind", "fixed") in failure.tags
