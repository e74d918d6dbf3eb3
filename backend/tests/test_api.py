"""
ThesisMaster Backend - HTTP API Tests
======================================

What:  End-to-end requests through the FastAPI app (middleware, dependencies,
       exception handlers) against a per-test SQLite database.

What we test:
    ✅ Identity headers: 401 without a user, 403 on writer routes
    ✅ Chapter CRUD and pricing quote
    ✅ Payment lifecycle and processing through the gateway
    ✅ Writer accept → complete → earnings
    ✅ Admin payment actions, chapter assignment and platform stats
    ✅ Dashboard and health
    ✅ Error body shape and request id propagation
"""

from unittest.mock import AsyncMock, MagicMock, patch
from uuid import uuid4

import pytest

from conftest import auth_headers
from thesismaster.exceptions import PaymentGatewayError
from thesismaster.services.chapter_service import chapter_service


async def create_chapter(client, owner_id, **overrides):
    body = {"title": "Introduction", "chapter_number": 1, "target_word_count": 2000}
    body.update(overrides)
    response = await client.post("/api/chapters", json=body, headers=auth_headers(owner_id))
    assert response.status_code == 201, response.text
    return response.json()


async def pay_for(client, owner_id, chapter_id):
    response = await client.post(
        "/api/payments/process",
        json={"chapter_id": chapter_id, "phone_number": "254700000000"},
        headers=auth_headers(owner_id),
    )
    assert response.status_code == 200, response.text
    return response.json()


class TestIdentity:

    @pytest.mark.asyncio
    async def test_missing_user_is_unauthorized(self, client):
        response = await client.get("/api/chapters")
        assert response.status_code == 401
        assert response.json()["error"] == "unauthorized"

    @pytest.mark.asyncio
    async def test_malformed_user_id(self, client):
        response = await client.get("/api/chapters", headers={"X-User-Id": "not-a-uuid"})
        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_unknown_role(self, client, student_id):
        response = await client.get("/api/chapters", headers=auth_headers(student_id, "root"))
        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_student_cannot_use_writer_routes(self, client, student_id):
        response = await client.get("/api/writer/chapters", headers=auth_headers(student_id))
        assert response.status_code == 403
        assert response.json()["error"] == "forbidden"


class TestChaptersApi:

    @pytest.mark.asyncio
    async def test_create_and_get(self, client, student_id):
        created = await create_chapter(
            client, student_id, level="phd", work_type="statistics", urgency="urgent"
        )
        assert created["estimated_cost"] == 8736
        assert created["status"] == "draft"

        response = await client.get(f"/api/chapters/{created['id']}", headers=auth_headers(student_id))
        assert response.status_code == 200
        assert response.json()["pricing"]["totalPrice"] == 8736

    @pytest.mark.asyncio
    async def test_list_sets_total_header(self, client, student_id):
        await create_chapter(client, student_id, chapter_number=1)
        await create_chapter(client, student_id, chapter_number=2, title="Literature Review")

        response = await client.get("/api/chapters?limit=1", headers=auth_headers(student_id))

        assert response.status_code == 200
        assert response.headers["X-Total-Count"] == "2"
        body = response.json()
        assert len(body["chapters"]) == 1
        assert body["pagination"]["pages"] == 2

    @pytest.mark.asyncio
    async def test_duplicate_number_conflict(self, client, student_id):
        await create_chapter(client, student_id)
        response = await client.post(
            "/api/chapters",
            json={"title": "Again", "chapter_number": 1},
            headers=auth_headers(student_id),
        )
        assert response.status_code == 409
        assert response.json()["error"] == "business_rule_violation"

    @pytest.mark.asyncio
    async def test_invalid_enum_in_body_is_422(self, client, student_id):
        response = await client.post(
            "/api/chapters",
            json={"title": "X", "chapter_number": 1, "level": "kindergarten"},
            headers=auth_headers(student_id),
        )
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_other_users_chapter_is_404(self, client, student_id, other_id):
        created = await create_chapter(client, student_id)
        response = await client.get(f"/api/chapters/{created['id']}", headers=auth_headers(other_id))
        assert response.status_code == 404
        body = response.json()
        assert body["error"] == "not_found"
        assert body["request_id"] == response.headers["X-Request-ID"]

    @pytest.mark.asyncio
    async def test_update_and_delete(self, client, student_id):
        created = await create_chapter(client, student_id)
        headers = auth_headers(student_id)

        response = await client.put(
            f"/api/chapters/{created['id']}",
            json={"content": "new words here", "changes": "First draft"},
            headers=headers,
        )
        assert response.status_code == 200
        assert response.json()["word_count"] == 3
        assert len(response.json()["revisions"]) == 1

        response = await client.delete(f"/api/chapters/{created['id']}", headers=headers)
        assert response.status_code == 200
        assert response.json()["message"] == "Chapter deleted successfully"

        response = await client.get(f"/api/chapters/{created['id']}", headers=headers)
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_feedback(self, client, student_id):
        created = await create_chapter(client, student_id)
        response = await client.post(
            f"/api/chapters/{created['id']}/feedback",
            json={"reviewer": "Supervisor", "comment": "Good start", "rating": 5},
            headers=auth_headers(student_id),
        )
        assert response.status_code == 201
        assert response.json()["rating"] == 5

    @pytest.mark.asyncio
    async def test_file_upload_download_delete(self, client, student_id, tmp_path):
        created = await create_chapter(client, student_id)
        headers = auth_headers(student_id)
        base = f"/api/chapters/{created['id']}/files"

        with patch.object(chapter_service.files, "_detect_mime", return_value="text/plain"):
            response = await client.post(
                base, files={"file": ("notes.txt", b"chapter notes", "text/plain")}, headers=headers
            )
        assert response.status_code == 201, response.text
        stored = response.json()["file_name"]

        listing = await client.get(base, headers=headers)
        assert [f["file_name"] for f in listing.json()] == [stored]

        download = await client.get(f"{base}/{stored}", headers=headers)
        assert download.status_code == 200
        assert download.content == b"chapter notes"

        response = await client.delete(f"{base}/{stored}", headers=headers)
        assert response.json()["message"] == "File deleted successfully"

    @pytest.mark.asyncio
    async def test_unsupported_upload_is_400(self, client, student_id):
        created = await create_chapter(client, student_id)
        response = await client.post(
            f"/api/chapters/{created['id']}/files",
            files={"file": ("tool.exe", b"MZ", "application/octet-stream")},
            headers=auth_headers(student_id),
        )
        assert response.status_code == 400
        assert response.json()["error"] == "validation_error"


class TestPricingApi:

    @pytest.mark.asyncio
    async def test_quote(self, client, student_id):
        response = await client.get(
            "/api/pricing/quote",
            params={"target_word_count": 750, "level": "phd", "work_type": "revision", "urgency": "urgent"},
            headers=auth_headers(student_id),
        )
        assert response.status_code == 200
        body = response.json()
        assert body["estimated_pages"] == 3
        assert body["estimated_cost"] == 1872

    @pytest.mark.asyncio
    async def test_negative_word_count(self, client, student_id):
        response = await client.get(
            "/api/pricing/quote",
            params={"target_word_count": -1},
            headers=auth_headers(student_id),
        )
        assert response.status_code == 400


class TestPaymentsApi:

    @pytest.mark.asyncio
    async def test_manual_lifecycle(self, client, student_id):
        chapter = await create_chapter(client, student_id)
        headers = auth_headers(student_id)

        response = await client.post(
            "/api/payments",
            json={"chapter_id": chapter["id"], "payment_method": "mpesa", "description": "Chapter 1"},
            headers=headers,
        )
        assert response.status_code == 201
        payment = response.json()
        assert payment["amount"] == 3200
        assert payment["status"] == "pending"

        response = await client.put(
            f"/api/payments/{payment['id']}", json={"status": "completed"}, headers=headers
        )
        assert response.status_code == 200
        assert response.json()["chapter"]["is_paid"] is True

        response = await client.delete(f"/api/payments/{payment['id']}", headers=headers)
        assert response.status_code == 409

        response = await client.put(
            f"/api/payments/{payment['id']}",
            json={"status": "refunded", "refund_reason": "Changed topic"},
            headers=headers,
        )
        assert response.status_code == 200
        assert response.json()["refund_amount"] == 3200

        chapter_now = await client.get(f"/api/chapters/{chapter['id']}", headers=headers)
        assert chapter_now.json()["is_paid"] is False
        assert chapter_now.json()["payment_id"] is None

    @pytest.mark.asyncio
    async def test_illegal_transition_is_409(self, client, student_id):
        headers = auth_headers(student_id)
        response = await client.post(
            "/api/payments",
            json={"amount": 100, "payment_method": "card", "description": "Consultation"},
            headers=headers,
        )
        payment_id = response.json()["id"]

        response = await client.put(
            f"/api/payments/{payment_id}", json={"status": "refunded"}, headers=headers
        )
        assert response.status_code == 409
        assert response.json()["details"]["payment_id"] == payment_id

    @pytest.mark.asyncio
    async def test_unknown_status_is_400(self, client, student_id):
        headers = auth_headers(student_id)
        response = await client.post(
            "/api/payments",
            json={"amount": 100, "payment_method": "card", "description": "Consultation"},
            headers=headers,
        )
        response = await client.put(
            f"/api/payments/{response.json()['id']}", json={"status": "settled"}, headers=headers
        )
        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_process_approved(self, client, student_id, approving_gateway):
        chapter = await create_chapter(client, student_id)

        body = await pay_for(client, student_id, chapter["id"])

        assert body["success"] is True
        assert body["message"] == "Payment completed successfully"
        assert body["payment"]["transaction_id"] == "TXN_1700000000000_ABCDEF0123"
        assert len(approving_gateway.requests) == 1

        listing = await client.get("/api/payments", headers=auth_headers(student_id))
        assert listing.headers["X-Total-Count"] == "1"
        assert listing.json()["totals"]["completed"]["amount"] == 3200

    @pytest.mark.asyncio
    async def test_process_declined(self, client, student_id, declining_gateway, gateway_override):
        gateway_override["gateway"] = declining_gateway
        chapter = await create_chapter(client, student_id)

        body = await pay_for(client, student_id, chapter["id"])

        assert body["success"] is False
        assert body["message"] == "Payment failed: Insufficient funds or payment declined"
        assert body["payment"]["status"] == "failed"

    @pytest.mark.asyncio
    async def test_process_gateway_down_rolls_back(self, client, student_id, gateway_override):
        broken = MagicMock()
        broken.charge = AsyncMock(side_effect=PaymentGatewayError(message="Processor down"))
        gateway_override["gateway"] = broken
        chapter = await create_chapter(client, student_id)

        response = await client.post(
            "/api/payments/process",
            json={"chapter_id": chapter["id"]},
            headers=auth_headers(student_id),
        )

        assert response.status_code == 503
        assert response.json()["error"] == "payment_gateway_error"
        listing = await client.get("/api/payments", headers=auth_headers(student_id))
        assert listing.json()["payments"] == []

    @pytest.mark.asyncio
    async def test_process_paid_chapter_is_409(self, client, student_id):
        chapter = await create_chapter(client, student_id)
        await pay_for(client, student_id, chapter["id"])

        response = await client.post(
            "/api/payments/process",
            json={"chapter_id": chapter["id"]},
            headers=auth_headers(student_id),
        )
        assert response.status_code == 409


class TestWriterApi:

    @pytest.mark.asyncio
    async def test_accept_complete_and_earn(self, client, student_id, writer_id):
        chapter = await create_chapter(client, student_id)
        await pay_for(client, student_id, chapter["id"])
        writer = auth_headers(writer_id, "writer")

        available = await client.get("/api/writer/chapters", headers=writer)
        assert [c["id"] for c in available.json()["chapters"]] == [chapter["id"]]

        response = await client.post(f"/api/writer/chapters/{chapter['id']}/accept", headers=writer)
        assert response.status_code == 200
        assert response.json()["writer_id"] == str(writer_id)

        response = await client.put(
            f"/api/writer/chapters/{chapter['id']}/status",
            json={"status": "completed"},
            headers=writer,
        )
        assert response.status_code == 200
        assert response.json()["completed_at"] is not None

        earnings = (await client.get("/api/writer/earnings", headers=writer)).json()
        assert earnings["stats"]["total_earnings"] == 2240
        assert earnings["pending_payout"] == {"amount": 2240, "chapters": 1}

        response = await client.post(
            "/api/writer/payouts",
            json={"amount": 2240, "account_details": {"phone_number": "254711000000"}},
            headers=writer,
        )
        assert response.status_code == 201
        assert response.json()["status"] == "pending"

    @pytest.mark.asyncio
    async def test_earnings_range_with_mixed_offsets(self, client, writer_id):
        response = await client.get(
            "/api/writer/earnings",
            params={"start": "2026-01-01T00:00:00", "end": "2026-02-01T00:00:00Z"},
            headers=auth_headers(writer_id, "writer"),
        )
        assert response.status_code == 200
        assert response.json()["stats"]["total_chapters"] == 0

    @pytest.mark.asyncio
    async def test_accept_unpaid_is_409(self, client, student_id, writer_id):
        chapter = await create_chapter(client, student_id)
        response = await client.post(
            f"/api/writer/chapters/{chapter['id']}/accept", headers=auth_headers(writer_id, "writer")
        )
        assert response.status_code == 409

    @pytest.mark.asyncio
    async def test_writer_cannot_approve(self, client, student_id, writer_id):
        chapter = await create_chapter(client, student_id)
        await pay_for(client, student_id, chapter["id"])
        writer = auth_headers(writer_id, "writer")
        await client.post(f"/api/writer/chapters/{chapter['id']}/accept", headers=writer)

        response = await client.put(
            f"/api/writer/chapters/{chapter['id']}/status",
            json={"status": "approved"},
            headers=writer,
        )
        assert response.status_code == 400


class TestAdminApi:

    @pytest.mark.asyncio
    @pytest.mark.parametrize("role", [None, "writer"])
    async def test_requires_admin_role(self, client, student_id, role):
        response = await client.get("/api/admin/stats", headers=auth_headers(student_id, role))
        assert response.status_code == 403
        assert response.json()["error"] == "forbidden"

    @pytest.mark.asyncio
    async def test_mark_paid_assign_and_stats(self, client, student_id, writer_id, admin_id):
        admin = auth_headers(admin_id, "admin")
        chapter = await create_chapter(client, student_id)
        response = await client.post(
            "/api/payments",
            json={"chapter_id": chapter["id"], "payment_method": "bank", "description": "Chapter 1"},
            headers=auth_headers(student_id),
        )
        payment_id = response.json()["id"]

        response = await client.put(
            f"/api/admin/payments/{payment_id}", json={"action": "mark_paid"}, headers=admin
        )
        assert response.status_code == 200
        assert response.json()["payment"]["status"] == "completed"

        response = await client.get("/api/admin/payments", headers=admin)
        assert response.headers["X-Total-Count"] == "1"
        assert response.json()["totals"]["completed"] == {"count": 1, "amount": 3200}

        response = await client.put(
            f"/api/admin/chapters/{chapter['id']}",
            json={"action": "assign_writer", "writer_id": str(writer_id)},
            headers=admin,
        )
        assert response.status_code == 200
        assert response.json()["writer_id"] == str(writer_id)
        assert response.json()["status"] == "in_progress"

        response = await client.get("/api/admin/chapters", params={"is_paid": "true"}, headers=admin)
        listing = response.json()
        assert [c["id"] for c in listing["chapters"]] == [chapter["id"]]
        assert listing["statistics"]["paid"] == 1

        stats = (await client.get("/api/admin/stats", headers=admin)).json()
        assert stats["revenue"] == 3200
        assert stats["active_writers"] == 1

    @pytest.mark.asyncio
    async def test_refund_rules(self, client, student_id, admin_id):
        admin = auth_headers(admin_id, "admin")
        chapter = await create_chapter(client, student_id)
        payment_id = (await pay_for(client, student_id, chapter["id"]))["payment"]["id"]

        response = await client.put(
            f"/api/admin/payments/{payment_id}", json={"action": "refund"}, headers=admin
        )
        assert response.status_code == 400

        response = await client.put(
            f"/api/admin/payments/{payment_id}",
            json={"action": "refund", "reason": "Duplicate order"},
            headers=admin,
        )
        assert response.status_code == 200
        assert response.json()["payment"]["refund_amount"] == 3200

        response = await client.get(f"/api/chapters/{chapter['id']}", headers=auth_headers(student_id))
        assert response.json()["is_paid"] is False

    @pytest.mark.asyncio
    async def test_unknown_action_is_422(self, client, admin_id):
        response = await client.put(
            f"/api/admin/payments/{uuid4()}",
            json={"action": "dispute"},
            headers=auth_headers(admin_id, "admin"),
        )
        assert response.status_code == 422


class TestDashboardAndHealth:

    @pytest.mark.asyncio
    async def test_dashboard_stats(self, client, student_id):
        await create_chapter(client, student_id, content="one two three four")
        chapter = await create_chapter(client, student_id, chapter_number=2, title="Methods")
        await pay_for(client, student_id, chapter["id"])

        response = await client.get("/api/dashboard/stats", headers=auth_headers(student_id))

        assert response.status_code == 200
        stats = response.json()
        assert stats["total_chapters"] == 2
        assert stats["total_words"] == 4
        assert stats["total_target_words"] == 4000
        assert stats["total_paid"] == 3200
        assert stats["chapters_by_status"]["draft"]["count"] == 1
        assert stats["chapters_by_status"]["in_progress"]["count"] == 1

    @pytest.mark.asyncio
    async def test_health(self, client):
        response = await client.get("/health")
        assert response.status_code == 200
        body = response.json()
        assert body["status"] in ("healthy", "degraded", "unhealthy")
        assert body["payment_gateway"] in ("closed", "open", "half_open")

    @pytest.mark.asyncio
    async def test_request_id_is_echoed(self, client, student_id):
        response = await client.get(
            f"/api/chapters/{uuid4()}",
            headers={**auth_headers(student_id), "X-Request-ID": "abc12345"},
        )
        assert response.status_code == 404
        assert response.headers["X-Request-ID"] == "abc12345"
        assert response.json()["request_id"] == "abc12345"
