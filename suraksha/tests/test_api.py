"""Tests for the FastAPI endpoints."""

import cv2

from suraksha.models.analysis import AnalysisResult
from suraksha.services.chat_service import HISTORY_TOOL_NAME
from suraksha.services.history_service import AnalysisResultStore
from suraksha.utils.errors import StoreError

from conftest import assistant_message, tool_call


def qr_png(text):
    symbol = cv2.QRCodeEncoder.create().encode(text)
    symbol = cv2.resize(symbol, None, fx=8, fy=8, interpolation=cv2.INTER_NEAREST)
    symbol = cv2.copyMakeBorder(symbol, 40, 40, 40, 40, cv2.BORDER_CONSTANT, value=255)
    return cv2.imencode(".png", symbol)[1].tobytes()


class TestHealthEndpoint:
    """Tests for /health and /status."""

    def test_health_returns_ok(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "ok"}

    def test_status_reports_prompt_versions(self, client):
        data = client.get("/status").json()
        assert data["prompt_versions"]["content"] == "content-v3"
        assert "qrcode" in data["supported_types"]
        assert "counters" in data["metrics"]


class TestAnalyzeText:
    def test_text_success(self, client, fake_openai, scam_verdict, sample_scam_text):
        fake_openai.queue(scam_verdict)

        response = client.post("/analyze", data={"type": "text", "text": sample_scam_text})

        assert response.status_code == 200
        data = response.json()
        assert data["prompt"] == {"type": "text", "content": sample_scam_text}
        assert data["result"]["kind"] == "content"
        assert data["result"]["informationStatus"] == "SCAM"
        assert data["result"]["possibilityScore"] == {"true": 8.0, "falseOrScam": 92.0}
        assert data["id"]
        assert response.headers["X-Session-Id"]
        assert response.headers["X-Request-Id"]

    def test_session_id_is_echoed(self, client, fake_openai, scam_verdict, sample_scam_text):
        fake_openai.queue(scam_verdict)
        response = client.post(
            "/analyze",
            data={"type": "text", "text": sample_scam_text},
            headers={"X-Session-Id": "session-123"},
        )
        assert response.headers["X-Session-Id"] == "session-123"

    def test_short_text_never_reaches_the_model(self, client, fake_openai):
        response = client.post("/analyze", data={"type": "text", "text": "too short"})

        assert response.status_code == 400
        body = response.json()
        assert body["field"] == "text"
        assert body["type"] == "validation_error"
        assert fake_openai.calls == []

    def test_missing_text(self, client, fake_openai):
        response = client.post("/analyze", data={"type": "text"})
        assert response.status_code == 400
        assert "characters" in response.json()["detail"]
        assert fake_openai.calls == []

    def test_invalid_type(self, client):
        response = client.post("/analyze", data={"type": "audio", "text": "hello"})
        assert response.status_code == 400
        assert response.json()["field"] == "type"

    def test_invalid_source_hint(self, client, sample_scam_text):
        response = client.post(
            "/analyze",
            data={"type": "text", "text": sample_scam_text, "source_hint": "fax"},
        )
        assert response.status_code == 400
        assert response.json()["field"] == "source_hint"

    def test_qrcode_hint_does_not_lift_the_minimum(self, client, fake_openai, scam_verdict):
        fake_openai.queue(scam_verdict)

        response = client.post("/analyze", data={"type": "text", "text": "hi", "source_hint": "qrcode"})

        assert response.status_code == 400
        assert response.json()["field"] == "source_hint"
        assert fake_openai.calls == []

    def test_video_hint_is_refused_for_text(self, client, fake_openai, scam_verdict, sample_scam_text):
        scam_verdict["detailedAnalysis"]["videoAnalysis"] = ["Unnatural facial movement"]
        fake_openai.queue(scam_verdict)

        response = client.post(
            "/analyze",
            data={"type": "text", "text": sample_scam_text, "source_hint": "video"},
        )

        assert response.status_code == 400
        assert response.json()["field"] == "source_hint"
        assert fake_openai.calls == []

    def test_video_findings_are_dropped_for_text(self, client, fake_openai, scam_verdict, sample_scam_text):
        scam_verdict["detailedAnalysis"]["videoAnalysis"] = ["Unnatural facial movement"]
        fake_openai.queue(scam_verdict)

        response = client.post("/analyze", data={"type": "text", "text": sample_scam_text})

        assert response.status_code == 200
        assert response.json()["result"]["detailedAnalysis"].get("videoAnalysis") is None

    def test_uploaded_file_is_a_stray_payload(self, client, fake_openai, sample_scam_text, png_bytes):
        response = client.post(
            "/analyze",
            data={"type": "text", "text": sample_scam_text},
            files={"file": ("screenshot.png", png_bytes(), "image/png")},
        )

        assert response.status_code == 400
        assert response.json()["field"] == "file"
        assert fake_openai.calls == []

    def test_contract_error_is_generic_and_not_recorded(self, client, fake_openai, scam_verdict, sample_scam_text):
        scam_verdict["informationStatus"] = "UNSURE"
        fake_openai.queue(scam_verdict)
        headers = {"X-Session-Id": "s-contract"}

        response = client.post("/analyze", data={"type": "text", "text": sample_scam_text}, headers=headers)

        assert response.status_code == 502
        assert response.json() == {"detail": "Analysis failed. Please try again.", "type": "analysis_failed"}
        assert client.get("/history", headers=headers).json() == []

    def test_concurrent_submission_for_same_session(self, client, in_flight_registry, fake_openai, sample_scam_text):
        in_flight_registry.try_acquire("busy")

        response = client.post(
            "/analyze",
            data={"type": "text", "text": sample_scam_text},
            headers={"X-Session-Id": "busy"},
        )

        assert response.status_code == 409
        assert fake_openai.calls == []


class TestAnalyzeUrl:
    def test_url_success_is_persisted_for_user(self, client, fake_openai, unsafe_url_verdict, sample_phishing_url):
        fake_openai.queue(unsafe_url_verdict)

        response = client.post(
            "/analyze",
            data={"type": "url", "url": sample_phishing_url},
            headers={"X-User-Id": "u1"},
        )

        assert response.status_code == 200
        assert response.json()["result"]["safetyStatus"] == "Unsafe"

        records = client.get("/users/u1/history", headers={"X-User-Id": "u1"}).json()
        assert len(records) == 1
        assert records[0]["informationStatus"] == "SCAM"
        assert records[0]["finalVerdict"] == "This URL is considered Unsafe."
        assert records[0]["content"] == sample_phishing_url
        assert records[0]["analysisTimestamp"]["seconds"] > 0

    def test_relative_url_is_rejected(self, client, fake_openai):
        response = client.post("/analyze", data={"type": "url", "url": "example.com/login"})
        assert response.status_code == 400
        assert response.json()["field"] == "url"
        assert fake_openai.calls == []

    def test_store_failure_still_returns_verdict(
        self, client, fake_openai, monkeypatch, unsafe_url_verdict, sample_phishing_url
    ):
        def broken_add(self, user_id, item):
            raise StoreError("write timed out")

        monkeypatch.setattr(AnalysisResultStore, "add", broken_add)
        fake_openai.queue(unsafe_url_verdict)

        response = client.post(
            "/analyze",
            data={"type": "url", "url": sample_phishing_url},
            headers={"X-User-Id": "u1", "X-Session-Id": "s-store"},
        )

        assert response.status_code == 200
        assert response.json()["result"]["safetyStatus"] == "Unsafe"
        assert len(client.get("/history", headers={"X-Session-Id": "s-store"}).json()) == 1


class TestAnalyzeMedia:
    def test_image_is_sent_inline(self, client, fake_openai, scam_verdict, png_bytes):
        fake_openai.queue(scam_verdict)

        response = client.post(
            "/analyze",
            data={"type": "image"},
            files={"file": ("screenshot.png", png_bytes(), "image/png")},
        )

        assert response.status_code == 200
        assert response.json()["prompt"] == {"type": "image", "content": "Image: screenshot.png"}
        parts = fake_openai.calls[0]["messages"][1]["content"]
        assert parts[1]["image_url"]["url"].startswith("data:image/png;base64,")

    def test_missing_image(self, client, fake_openai):
        response = client.post("/analyze", data={"type": "image"})
        assert response.status_code == 400
        assert response.json()["field"] == "file"

    def test_unreadable_image(self, client, fake_openai):
        response = client.post(
            "/analyze",
            data={"type": "image"},
            files={"file": ("photo.png", b"this is not a png", "image/png")},
        )
        assert response.status_code == 422
        assert response.json()["type"] == "media_error"
        assert fake_openai.calls == []

    def test_video_hint_is_refused_for_images(self, client, fake_openai, png_bytes):
        response = client.post(
            "/analyze",
            data={"type": "image", "source_hint": "video"},
            files={"file": ("screenshot.png", png_bytes(), "image/png")},
        )
        assert response.status_code == 400
        assert response.json()["field"] == "source_hint"
        assert fake_openai.calls == []

    def test_video_with_stray_text_is_rejected_before_decoding(self, client, fake_openai, patched_video):
        response = client.post(
            "/analyze",
            data={"type": "video", "text": "left over caption from the text tab"},
            files={"file": ("clip.mp4", b"\x00\x00\x00\x18ftypmp42", "video/mp4")},
        )

        assert response.status_code == 400
        assert response.json()["field"] == "text"
        assert patched_video == []
        assert fake_openai.calls == []

    def test_video_becomes_sprite_sheet(self, client, fake_openai, scam_verdict, patched_video):
        scam_verdict["informationStatus"] = "FAKE"
        scam_verdict["detailedAnalysis"]["videoAnalysis"] = ["Unnatural facial movement"]
        fake_openai.queue(scam_verdict)

        response = client.post(
            "/analyze",
            data={"type": "video"},
            files={"file": ("clip.mp4", b"\x00\x00\x00\x18ftypmp42", "video/mp4")},
        )

        assert response.status_code == 200
        data = response.json()
        assert data["prompt"] == {"type": "video", "content": "Video: clip.mp4"}
        assert data["result"]["detailedAnalysis"]["videoAnalysis"] == ["Unnatural facial movement"]
        parts = fake_openai.calls[0]["messages"][1]["content"]
        assert "Source: video" in parts[0]["text"]
        assert parts[1]["image_url"]["url"].startswith("data:image/jpeg;base64,")


class TestAnalyzeQrCode:
    def test_url_qr_is_analyzed_as_url(self, client, fake_openai, unsafe_url_verdict):
        fake_openai.queue(unsafe_url_verdict)

        response = client.post(
            "/analyze",
            data={"type": "qrcode"},
            files={"file": ("qr.png", qr_png("https://example.com/pay"), "image/png")},
        )

        assert response.status_code == 200
        data = response.json()
        assert data["prompt"] == {"type": "url", "content": "https://example.com/pay"}
        assert data["result"]["kind"] == "url"
        assert fake_openai.calls[0]["messages"][1]["content"] == "URL to Analyze: https://example.com/pay"

    def test_short_text_qr_is_allowed(self, client, fake_openai, scam_verdict):
        fake_openai.queue(scam_verdict)

        response = client.post(
            "/analyze",
            data={"type": "qrcode"},
            files={"file": ("qr.png", qr_png("hello world"), "image/png")},
        )

        assert response.status_code == 200
        assert response.json()["prompt"] == {"type": "text", "content": "hello world"}
        assert "Source: qrcode" in fake_openai.calls[0]["messages"][1]["content"][0]["text"]

    def test_no_symbol_halts_before_model(self, client, fake_openai, png_bytes):
        response = client.post(
            "/analyze",
            data={"type": "qrcode"},
            files={"file": ("blank.png", png_bytes(size=(200, 200), color=(255, 255, 255)), "image/png")},
        )

        assert response.status_code == 422
        assert response.json()["type"] == "qr_decode_failed"
        assert fake_openai.calls == []

    def test_stray_url_is_rejected(self, client, fake_openai):
        response = client.post(
            "/analyze",
            data={"type": "qrcode", "url": "https://example.com/other"},
            files={"file": ("qr.png", qr_png("https://example.com/pay"), "image/png")},
        )
        assert response.status_code == 400
        assert response.json()["field"] == "url"
        assert fake_openai.calls == []

    def test_missing_qr_image(self, client):
        response = client.post("/analyze", data={"type": "qrcode"})
        assert response.status_code == 400
        assert response.json()["field"] == "file"


class TestSessionHistory:
    def test_most_recent_first_and_stable(self, client, fake_openai, scam_verdict):
        headers = {"X-Session-Id": "s-order"}
        texts = [f"Message number {i}: you have won a lottery, send fees now" for i in range(3)]
        for text in texts:
            fake_openai.queue(scam_verdict)
            assert client.post("/analyze", data={"type": "text", "text": text}, headers=headers).status_code == 200

        first = client.get("/history", headers=headers).json()
        second = client.get("/history", headers=headers).json()

        assert [item["prompt"]["content"] for item in first] == list(reversed(texts))
        assert first == second

    def test_sessions_are_isolated(self, client, fake_openai, scam_verdict, sample_scam_text):
        fake_openai.queue(scam_verdict)
        client.post("/analyze", data={"type": "text", "text": sample_scam_text}, headers={"X-Session-Id": "a"})

        assert len(client.get("/history", headers={"X-Session-Id": "a"}).json()) == 1
        assert client.get("/history", headers={"X-Session-Id": "b"}).json() == []

    def test_clear(self, client, fake_openai, scam_verdict, sample_scam_text):
        headers = {"X-Session-Id": "s-clear"}
        for _ in range(2):
            fake_openai.queue(scam_verdict)
            client.post("/analyze", data={"type": "text", "text": sample_scam_text}, headers=headers)

        assert client.delete("/history", headers=headers).status_code == 200
        assert client.get("/history", headers=headers).json() == []

    def test_clear_empty_history(self, client):
        headers = {"X-Session-Id": "s-empty"}
        assert client.delete("/history", headers=headers).status_code == 200
        assert client.get("/history", headers=headers).json() == []


class TestUserEndpoints:
    def test_history_count(self, client, fake_openai, scam_verdict, sample_scam_text):
        for _ in range(4):
            fake_openai.queue(scam_verdict)
            client.post("/analyze", data={"type": "text", "text": sample_scam_text}, headers={"X-User-Id": "u9"})

        headers = {"X-User-Id": "u9"}
        assert len(client.get("/users/u9/history?count=3", headers=headers).json()) == 3
        assert len(client.get("/users/u9/history", headers=headers).json()) == 4

    def test_user_routes_are_registered(self, client):
        assert client.get("/users/nobody/history", headers={"X-User-Id": "nobody"}).json() == []
        assert client.get("/users/nobody/dashboard", headers={"X-User-Id": "nobody"}).json()["totalAnalyzed"] == 0

    def test_history_requires_a_signed_in_user(self, client):
        assert client.get("/users/u1/history").status_code == 401
        assert client.get("/users/u1/dashboard").status_code == 401

    def test_other_users_history_is_forbidden(self, client):
        response = client.get("/users/u1/history", headers={"X-User-Id": "u2"})
        assert response.status_code == 403

    def test_dashboard(self, client, session_factory):
        db = session_factory()
        for status in ("SCAM", "FAKE", "REAL"):
            db.add(
                AnalysisResult(
                    user_id="u5",
                    history_item_id=status,
                    content_type="text",
                    content="c",
                    information_status=status,
                    probability_true=70,
                    probability_false_scam=30,
                    information_type="t",
                    simple_explanation="e",
                    warning_or_safety_advice="a",
                    final_verdict="v",
                )
            )
        db.commit()
        db.close()

        data = client.get("/users/u5/dashboard", headers={"X-User-Id": "u5"}).json()

        assert data == {
            "totalAnalyzed": 3,
            "threatsThisWeek": 2,
            "accuracyConfidence": round((30 + 30 + 70) / 3),
            "threatLevel": "Low",
        }


class TestChatEndpoint:
    def test_anonymous_chat(self, client, fake_openai):
        fake_openai.queue({"answer": "You can scan URLs from the Analyzer page."})

        response = client.post("/chat", json={"prompt": "how do I check a link?"})

        assert response.status_code == 200
        assert response.json() == {"answer": "You can scan URLs from the Analyzer page.", "history": None}
        assert "tools" not in fake_openai.calls[0]

    def test_empty_prompt_is_rejected(self, client):
        assert client.post("/chat", json={"prompt": ""}).status_code == 422

    def test_body_user_id_cannot_override_the_signed_in_user(self, client, fake_openai):
        response = client.post(
            "/chat",
            json={"prompt": "show my history", "userId": "bob"},
            headers={"X-User-Id": "alice"},
        )

        assert response.status_code == 403
        assert fake_openai.calls == []

    def test_body_user_id_without_sign_in_is_forbidden(self, client, fake_openai):
        response = client.post("/chat", json={"prompt": "show my history", "userId": "bob"})
        assert response.status_code == 403
        assert fake_openai.calls == []

    def test_history_tool_runs_for_the_signed_in_user(self, client, fake_openai, scam_verdict, sample_scam_text):
        bob_text = "Bob: your parcel is held at customs, pay the release fee today."
        for user, text in (("alice", sample_scam_text), ("bob", bob_text)):
            fake_openai.queue(scam_verdict)
            client.post("/analyze", data={"type": "text", "text": text}, headers={"X-User-Id": user})
        fake_openai.queue(
            assistant_message(tool_calls=[tool_call(HISTORY_TOOL_NAME, {"userId": "bob", "count": 5})]),
            {"answer": "Here are your recent results."},
        )

        response = client.post(
            "/chat",
            json={"prompt": "show my history", "userId": "alice"},
            headers={"X-User-Id": "alice"},
        )

        assert response.status_code == 200
        history = response.json()["history"]
        assert [record["content"] for record in history] == [sample_scam_text]
