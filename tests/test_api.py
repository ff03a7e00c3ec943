"""HTTP tests for the payroll and attendance API."""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from attendance_payroll.api.app import create_app
from attendance_payroll.api.dependencies import get_db_session
from attendance_payroll.config import get_settings

from .conftest import workdays

PERIOD = {"start": "2024-06-01", "end": "2024-06-30"}


@pytest_asyncio.fixture
async def client(session_factory, settings):
    app = create_app()

    async def override_session():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db_session] = override_session
    app.dependency_overrides[get_settings] = lambda: settings

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client


@pytest_asyncio.fixture
async def headers(org):
    return {"X-Organization-ID": str(org.organization_id), "X-Actor-ID": "payroll-clerk"}


@pytest_asyncio.fixture
async def nurse(roster, org, north):
    worker = await roster.worker(org, "Amina", "Otieno", "salaried", "30000", "Nurse")
    for day in workdays(date(2024, 6, 1), 20):
        await roster.staff_attendance(org, worker, day, "present_full", north)
    await roster.leave(org, worker, date(2024, 6, 29), date(2024, 6, 30))
    return worker


class TestHealth:
    async def test_health(self, client):
        response = await client.get("/health")

        assert response.status_code == 200
        assert response.json()["database"] == "healthy"
        assert response.json()["dialect"] == "sqlite"

    async def test_ready(self, client):
        response = await client.get("/ready")

        assert response.status_code == 200
        assert response.json() == {"status": "ready"}

    async def test_live(self, client):
        response = await client.get("/live")

        assert response.json() == {"status": "alive"}


class TestHeaders:
    async def test_missing_organization(self, client):
        response = await client.get("/api/v1/payroll", params=PERIOD)

        assert response.status_code == 400

    async def test_malformed_organization(self, client):
        response = await client.get("/api/v1/payroll", params=PERIOD, headers={"X-Organization-ID": "clinic-7"})

        assert response.status_code == 400


class TestPayrollFlow:
    async def test_compute_pay_finalize_export(self, client, headers, nurse):
        response = await client.get("/api/v1/payroll", params=PERIOD, headers=headers)
        assert response.status_code == 200
        body = response.json()
        run_id = body["run"]["payroll_run_id"]
        assert body["run"]["status"] == "draft"
        assert body["issues"] == []
        (item,) = body["items"]
        assert Decimal(item["base_pay"]) == Decimal("22000")
        assert Decimal(item["paid_units"]) == Decimal("22")
        assert item["has_warning"] is False

        response = await client.put(
            f"/api/v1/payroll/items/{item['payroll_item_id']}/allowances",
            json={"allowances": [{"amount": "500", "notes": "Transport"}, {"amount": -100, "note": "Advance"}]},
            headers=headers,
        )
        assert response.status_code == 200
        updated = response.json()
        assert Decimal(updated["gross_pay"]) == Decimal("22400")
        assert [a["note"] for a in updated["allowances"]] == ["Transport", "Advance"]

        response = await client.post(f"/api/v1/payroll/runs/{run_id}/finalize", headers=headers)
        assert response.status_code == 409
        assert response.json()["code"] == "UNPAID_ITEMS"

        response = await client.get(f"/api/v1/payroll/runs/{run_id}/export", headers=headers)
        assert response.status_code == 409
        assert response.json()["code"] == "RUN_NOT_FINALIZED"

        response = await client.patch(
            f"/api/v1/payroll/runs/{run_id}", json={"marked_by": "Finance Office"}, headers=headers
        )
        assert response.json()["marked_by"] == "Finance Office"

        response = await client.post(f"/api/v1/payroll/runs/{run_id}/mark-all-paid", headers=headers)
        assert response.json() == {"updated": 1}

        response = await client.post(f"/api/v1/payroll/runs/{run_id}/finalize", headers=headers)
        assert response.status_code == 200
        assert response.json()["status"] == "finalized"
        assert response.json()["finalized_by"] == "payroll-clerk"

        response = await client.patch(
            f"/api/v1/payroll/items/{item['payroll_item_id']}/paid", json={"is_paid": False}, headers=headers
        )
        assert response.status_code == 409
        assert response.json()["code"] == "RUN_LOCKED"
        assert response.json()["entity_id"] == item["payroll_item_id"]

        response = await client.get(f"/api/v1/payroll/runs/{run_id}/export", headers=headers)
        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/csv")
        assert 'filename="payroll-2024-06-01-2024-06-30.csv"' in response.headers["content-disposition"]
        header, row, _ = response.text.split("\n")
        assert header.startswith('"Staff","Role","DaysWorked"')
        assert row.startswith('"Amina Otieno","Nurse","20","22","30","30000","prorated","22000","400","22400","Paid"')
        assert row.endswith('"Finance Office"')

    async def test_item_paid_toggle(self, client, headers, nurse):
        body = (await client.get("/api/v1/payroll", params=PERIOD, headers=headers)).json()
        item_id = body["items"][0]["payroll_item_id"]

        response = await client.patch(f"/api/v1/payroll/items/{item_id}/paid", json={"is_paid": True}, headers=headers)

        assert response.status_code == 200
        assert response.json()["is_paid"] is True
        assert response.json()["paid_by"] == "payroll-clerk"

    @pytest.mark.parametrize("amount", ["abc", 1e30, "10000000000"])
    async def test_invalid_allowance_amount(self, client, headers, nurse, amount):
        body = (await client.get("/api/v1/payroll", params=PERIOD, headers=headers)).json()
        item_id = body["items"][0]["payroll_item_id"]

        response = await client.put(
            f"/api/v1/payroll/items/{item_id}/allowances",
            json={"allowances": [{"amount": amount}]},
            headers=headers,
        )

        assert response.status_code == 422
        assert response.json()["code"] == "INVALID_AMOUNT"

    async def test_invalid_divisor(self, client, headers, nurse):
        body = (await client.get("/api/v1/payroll", params=PERIOD, headers=headers)).json()
        run_id = body["run"]["payroll_run_id"]

        response = await client.patch(
            f"/api/v1/payroll/runs/{run_id}", json={"month_units_divisor": "0.001"}, headers=headers
        )

        assert response.status_code == 422
        assert response.json()["code"] == "INVALID_SETTING"

    async def test_inverted_period(self, client, headers):
        response = await client.get(
            "/api/v1/payroll", params={"start": "2024-06-30", "end": "2024-06-01"}, headers=headers
        )

        assert response.status_code == 422

    async def test_unknown_run(self, client, headers):
        response = await client.post(f"/api/v1/payroll/runs/{uuid4()}/finalize", headers=headers)

        assert response.status_code == 404
        assert response.json()["code"] == "NOT_FOUND"

    async def test_delete_draft_run(self, client, headers, nurse):
        body = (await client.get("/api/v1/payroll", params=PERIOD, headers=headers)).json()
        run_id = body["run"]["payroll_run_id"]

        response = await client.delete(f"/api/v1/payroll/runs/{run_id}", headers=headers)
        assert response.status_code == 204

        response = await client.post(f"/api/v1/payroll/runs/{run_id}/finalize", headers=headers)
        assert response.status_code == 404

    async def test_location_filter(self, client, headers, nurse, south):
        response = await client.get(
            "/api/v1/payroll",
            params={**PERIOD, "location_id": str(south.location_id)},
            headers=headers,
        )

        assert response.status_code == 200
        assert response.json()["items"] == []


class TestAttendanceEndpoints:
    async def test_clock_in_and_out(self, client, headers, roster, org, north):
        worker = await roster.worker(org)
        await roster.assign(await roster.block(org, north, date(2024, 6, 3)), worker)

        response = await client.post(
            "/api/v1/attendance/clock-in",
            json={"worker_id": str(worker.worker_id), "at": "2024-06-03T08:00:00Z"},
            headers=headers,
        )
        assert response.status_code == 201
        assert response.json()["location_id"] == str(north.location_id)

        response = await client.post(
            "/api/v1/attendance/clock-in",
            json={"worker_id": str(worker.worker_id), "at": "2024-06-03T09:00:00Z"},
            headers=headers,
        )
        assert response.status_code == 409
        assert response.json()["code"] == "ATTENDANCE_CONFLICT"

        response = await client.post(
            "/api/v1/attendance/clock-out",
            json={"worker_id": str(worker.worker_id), "at": "2024-06-03T12:00:00Z"},
            headers=headers,
        )
        assert response.status_code == 200
        assert response.json()["status"] == "present_partial"
        assert Decimal(response.json()["total_hours"]) == Decimal("4")

    async def test_unscheduled_clock_in_without_location(self, client, headers, roster, org):
        worker = await roster.worker(org)

        response = await client.post(
            "/api/v1/attendance/clock-in",
            json={"worker_id": str(worker.worker_id), "at": "2024-06-03T08:00:00Z"},
            headers=headers,
        )

        assert response.status_code == 409
        assert response.json()["code"] == "LOCATION_UNRESOLVED"

    async def test_locum_review_and_list(self, client, headers, roster, org, north):
        booking = await roster.booking(org, await roster.block(org, north, date(2024, 6, 3)))

        response = await client.get("/api/v1/attendance", params=PERIOD, headers=headers)
        (line,) = response.json()["lines"]
        assert line["outcome"] is None
        assert line["synthesized"] is True

        response = await client.post(
            "/api/v1/attendance/locum",
            json={"locum_booking_id": str(booking.locum_booking_id), "status": "WORKED"},
            headers=headers,
        )
        assert response.status_code == 200
        attendance_id = response.json()["attendance_id"]

        response = await client.post(
            "/api/v1/attendance/locum",
            json={"locum_booking_id": str(booking.locum_booking_id), "status": "MAYBE"},
            headers=headers,
        )
        assert response.status_code == 422
        assert response.json()["code"] == "INVALID_ATTENDANCE_STATUS"

        response = await client.patch(
            f"/api/v1/attendance/{attendance_id}/review",
            json={"status": "NO_SHOW", "notes": "Did not arrive"},
            headers=headers,
        )
        assert response.status_code == 200
        assert response.json()["locum_status"] == "NO_SHOW"
        assert response.json()["reviewed_by"] == "payroll-clerk"

        response = await client.get(
            "/api/v1/attendance", params={**PERIOD, "worker_type": "locum"}, headers=headers
        )
        (line,) = response.json()["lines"]
        assert line["outcome"] == "NO_SHOW"
        assert Decimal(line["units"]) == Decimal("0")

    async def test_backfill(self, client, headers, roster, org, north):
        worker = await roster.worker(org)
        await roster.assign(await roster.block(org, north, date(2024, 6, 3)), worker)
        record = await roster.staff_attendance(org, worker, date(2024, 6, 3), location=None)

        response = await client.post("/api/v1/attendance/backfill-locations", headers=headers)

        assert response.status_code == 200
        assert response.json() == {"repaired": [str(record.attendance_id)], "unresolved": []}
