"""Tests for the FastAPI application - extraction, review wizard, templates, generation and jobs."""

import io
import json

import pytest
from docx import Document

DOCX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"


def _upload_template(client, content, session="session-a", name="letter.docx"):
    return client.post(
        "/api/templates",
        files={"file": (name, content, DOCX_MEDIA_TYPE)},
        headers={"X-Session-Id": session},
    )


def _summary(response):
    return json.loads(response.headers["X-Generation-Summary"])


class TestHealth:
    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "ok"}


# =============================================================================
# EXTRACTION
# =============================================================================

class TestExtraction:
    def test_referral_pdf(self, client, referral_pdf):
        response = client.post(
            "/api/extractions",
            files={"file": ("referral.pdf", referral_pdf, "application/pdf")},
        )
        assert response.status_code == 200
        body = response.json()
        assert "Jane Citizen" in body["raw_text"]
        assert "record" in body
        assert isinstance(body["flagged_medications"], list)

    def test_not_a_pdf(self, client):
        response = client.post(
            "/api/extractions",
            files={"file": ("notes.txt", b"hello world", "text/plain")},
        )
        assert response.status_code == 415
        assert response.json()["error"] == "ExtractionFailure"

    def test_corrupt_pdf(self, client):
        response = client.post(
            "/api/extractions",
            files={"file": ("broken.pdf", b"%PDF-1.4\nthis is not a pdf body", "application/pdf")},
        )
        assert response.status_code == 422
        assert response.json()["retryable"] is True


# =============================================================================
# REVIEW WIZARD
# =============================================================================

class TestReviews:
    def test_fresh_review(self, client):
        body = client.get("/api/reviews/s1").json()
        assert body["step"] == "upload"
        assert body["revision"] == 0

    def test_upload_without_file_starts_empty(self, client):
        response = client.post("/api/reviews/s1/upload")
        assert response.status_code == 200
        body = response.json()
        assert body["record"]["patient"]["name"] == ""
        assert body["watermark"] == "Draft"

    def test_next_blocked_reports_issues(self, client):
        client.post("/api/reviews/s1/upload")
        assert client.post("/api/reviews/s1/next").json()["step"] == "patient_info"
        response = client.post("/api/reviews/s1/next")
        assert response.status_code == 409
        body = response.json()
        assert body["error"] == "StepBlockedError"
        assert [issue["field_path"] for issue in body["issues"]] == ["patient.name", "patient.dob"]

    def test_edits_unblock_step(self, client):
        client.post("/api/reviews/s1/upload")
        client.post("/api/reviews/s1/next")
        response = client.post(
            "/api/reviews/s1/edits",
            json={
                "edits": [
                    {"op": "set", "path": "patient.name", "value": "Jane Citizen"},
                    {"op": "set", "path": "patient.dob", "value": "03/04/1945"},
                ]
            },
        )
        assert response.status_code == 200
        assert response.json()["blocking_on_step"] == 0
        assert client.post("/api/reviews/s1/next").json()["step"] == "medications_review"

    def test_malformed_edit(self, client):
        response = client.post("/api/reviews/s1/edits", json={"edits": [{"op": "rename"}]})
        assert response.status_code == 400
        assert response.json()["error"] == "HTTPException"

    def test_bad_path(self, client):
        response = client.post(
            "/api/reviews/s1/edits",
            json={"edits": [{"op": "set", "path": "patient.nickname", "value": "Janey"}]},
        )
        assert response.status_code == 400
        assert response.json()["path"] == "patient.nickname"

    def test_fix_now(self, client):
        response = client.post("/api/reviews/s1/fix", json={"field_path": "interview.quit_date"})
        assert response.json()["step"] == "interview"
        assert response.json()["focus_path"] == "interview.quit_date"

    def test_jump_requires_final_review(self, client):
        response = client.post("/api/reviews/s1/jump", json={"step": "interview"})
        assert response.status_code == 409

    def test_new_review_needs_confirmation(self, client):
        client.post("/api/reviews/s1/upload")
        assert client.post("/api/reviews/s1/new").status_code == 409
        response = client.post("/api/reviews/s1/new", json={"confirm": True})
        assert response.status_code == 200
        assert response.json()["step"] == "upload"


# =============================================================================
# TEMPLATES
# =============================================================================

class TestTemplates:
    def test_upload_discovers_fields(self, client, referral_template_docx):
        response = _upload_template(client, referral_template_docx)
        assert response.status_code == 201
        body = response.json()
        assert body["kind"] == "merge_field"
        assert body["discovered_fields"] == ["patientName", "doctorName", "drugList"]
        assert body["suggestions"]["drugList"] == "summary.medications_list"
        assert body["complete"] is False

    def test_session_required(self, client, referral_template_docx):
        response = client.post(
            "/api/templates",
            files={"file": ("letter.docx", referral_template_docx, DOCX_MEDIA_TYPE)},
        )
        assert response.status_code == 401

    def test_unsupported_upload(self, client):
        response = client.post(
            "/api/templates",
            files={"file": ("notes.txt", b"plain text", "text/plain")},
            headers={"X-Session-Id": "session-a"},
        )
        assert response.status_code == 415

    def test_other_session_gets_404(self, client, referral_template_docx):
        template_id = _upload_template(client, referral_template_docx).json()["id"]
        response = client.get(f"/api/templates/{template_id}", headers={"X-Session-Id": "session-b"})
        assert response.status_code == 404

    def test_map_and_unmap(self, client, referral_template_docx):
        template_id = _upload_template(client, referral_template_docx).json()["id"]
        headers = {"X-Session-Id": "session-a"}
        response = client.put(
            f"/api/templates/{template_id}/mapping/patientName",
            json={"data_path": "patient.name"},
            headers=headers,
        )
        assert response.status_code == 200
        assert response.json()["mapping"] == {"patientName": "patient.name"}

        response = client.delete(f"/api/templates/{template_id}/mapping/patientName", headers=headers)
        assert response.json()["mapping"] == {}

    def test_map_bad_path(self, client, referral_template_docx):
        template_id = _upload_template(client, referral_template_docx).json()["id"]
        response = client.put(
            f"/api/templates/{template_id}/mapping/patientName",
            json={"data_path": "patient.nickname"},
            headers={"X-Session-Id": "session-a"},
        )
        assert response.status_code == 400
        assert response.json()["error"] == "PathError"

    def test_map_unknown_field(self, client, referral_template_docx):
        template_id = _upload_template(client, referral_template_docx).json()["id"]
        response = client.put(
            f"/api/templates/{template_id}/mapping/favouriteColour",
            json={"data_path": "patient.name"},
            headers={"X-Session-Id": "session-a"},
        )
        assert response.status_code == 400
        assert response.json()["error"] == "TemplateMappingError"

    def test_apply_suggestions(self, client, referral_template_docx):
        template_id = _upload_template(client, referral_template_docx).json()["id"]
        response = client.post(f"/api/templates/{template_id}/suggestions", headers={"X-Session-Id": "session-a"})
        assert response.json()["complete"] is True

    def test_list_and_delete(self, client, referral_template_docx):
        template_id = _upload_template(client, referral_template_docx).json()["id"]
        headers = {"X-Session-Id": "session-a"}
        assert [t["id"] for t in client.get("/api/templates", headers=headers).json()] == [template_id]
        assert client.delete(f"/api/templates/{template_id}", headers=headers).status_code == 204
        assert client.get("/api/templates", headers=headers).json() == []

    def test_catalogue(self, client):
        paths = {entry["path"] for entry in client.get("/api/templates/catalogue").json()["paths"]}
        assert "patient.name" in paths
        assert "summary.medications_count" in paths


# =============================================================================
# GENERATION
# =============================================================================

class TestGeneration:
    def test_fixed_report(self, client, complete_record):
        response = client.post("/api/generate", json={"record": complete_record.model_dump(mode="json")})
        assert response.status_code == 200
        assert response.headers["content-type"] == "application/pdf"
        assert response.content.startswith(b"%PDF")
        assert 'filename="HMR_Report_Jane_Citizen.pdf"' in response.headers["content-disposition"]
        assert _summary(response)["watermark"] == "Final"

    def test_watermark_option(self, client, complete_record):
        response = client.post(
            "/api/generate",
            json={"record": complete_record.model_dump(mode="json"), "options": {"watermark": "Draft"}},
        )
        assert _summary(response)["watermark"] == "Draft"

    def test_bad_page_format(self, client, complete_record):
        response = client.post(
            "/api/generate",
            json={"record": complete_record.model_dump(mode="json"), "options": {"page_format": "A5"}},
        )
        assert response.status_code == 500
        assert response.json()["error"] == "RenderFailure"

    def test_custom_template(self, client, complete_record, referral_template_docx):
        template_id = _upload_template(client, referral_template_docx).json()["id"]
        headers = {"X-Session-Id": "session-a"}
        client.put(
            f"/api/templates/{template_id}/mapping/patientName",
            json={"data_path": "patient.name"},
            headers=headers,
        )
        response = client.post(
            "/api/generate",
            json={"record": complete_record.model_dump(mode="json"), "template_id": template_id},
            headers=headers,
        )
        assert response.status_code == 200
        summary = _summary(response)
        assert summary["template_id"] == template_id
        assert summary["unmapped"] == ["doctorName", "drugList"]
        text = [p.text for p in Document(io.BytesIO(response.content)).paragraphs]
        assert text[0] == "Patient: Jane Citizen"

    def test_custom_template_needs_session(self, client, complete_record):
        response = client.post(
            "/api/generate",
            json={"record": complete_record.model_dump(mode="json"), "template_id": "abc"},
        )
        assert response.status_code == 401


# =============================================================================
# BACKGROUND JOBS
# =============================================================================

class TestBackgroundGeneration:
    def test_job_result_and_staleness(self, client):
        client.post("/api/reviews/s1/upload")
        response = client.post("/api/reviews/s1/generate")
        assert response.status_code == 202
        job_id = response.json()["id"]

        status = client.get(f"/api/jobs/{job_id}", params={"wait": 10}).json()
        assert status["status"] == "succeeded"
        assert status["progress"][-1] == "Finalizing PDF"

        document = client.get(f"/api/jobs/{job_id}/document")
        assert document.status_code == 200
        assert document.content.startswith(b"%PDF")

        # A newer record revision makes the finished result stale.
        client.post(
            "/api/reviews/s1/edits",
            json={"edits": [{"op": "set", "path": "patient.name", "value": "Jane Citizen"}]},
        )
        stale = client.get(f"/api/jobs/{job_id}/document")
        assert stale.status_code == 409
        assert stale.json()["error"] == "StaleResultError"

    def test_unknown_job(self, client):
        assert client.get("/api/jobs/missing").status_code == 404

    @pytest.mark.parametrize("method", ["get", "delete"])
    def test_other_session_cannot_see_job(self, client, method):
        client.post("/api/reviews/s1/upload")
        job_id = client.post("/api/reviews/s1/generate").json()["id"]
        response = getattr(client, method)(f"/api/jobs/{job_id}", headers={"X-Session-Id": "s2"})
        assert response.status_code == 404
