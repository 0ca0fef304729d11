"""
API tests for the print and printer routers, run against the in-process app.
"""
import time

import pytest
from fastapi.testclient import TestClient

from LabelMatrix.config.print_config import PrintConfig
from LabelMatrix.dependencies import get_detector
from LabelMatrix.main import create_app
from LabelMatrix.services.printer.printer_detector import PrinterDetector


@pytest.fixture
def client(transaction_source):
    app = create_app(PrintConfig(register_mock_printer=True, shutdown_drain_seconds=1.0), transaction_source)
    with TestClient(app) as client:
        yield client


def wait_for_job(client, job_id, state="completed", attempts=100):
    for _ in range(attempts):
        body = client.get(f"/api/print/jobs/{job_id}").json()
        if body["data"]["status"] == state:
            return body
        time.sleep(0.05)
    raise AssertionError(f"job {job_id} never reached {state}: {body}")


class TestLabelRoutes:

    def test_generate_labels(self, client):
        response = client.post("/api/print/labels", json={
            "company": "Acme Foods", "transaction_no": "INW-0001", "box_numbers": [1, 2, 3],
        })

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "success"
        assert [label["box_number"] for label in body["data"]["labels"]] == [1, 2, 3]
        assert body["data"]["labels"][0]["qr_data"].startswith("QR1|")

    def test_unknown_transaction_is_404_envelope(self, client):
        response = client.post("/api/print/labels", json={
            "company": "Acme Foods", "transaction_no": "INW-9999", "box_numbers": [1],
        })

        assert response.status_code == 404
        body = response.json()
        assert body["status"] == "error"
        assert body["data"]["resource_type"] == "transaction"

    def test_unknown_box_is_422(self, client):
        response = client.post("/api/print/labels", json={
            "company": "Acme Foods", "transaction_no": "INW-0001", "box_numbers": [42],
        })

        assert response.status_code == 422
        assert response.json()["status"] == "error"

    def test_decode_scanned_payload(self, client):
        labels = client.post("/api/print/labels", json={
            "company": "Acme Foods", "transaction_no": "INW-0001", "box_numbers": [2],
        }).json()["data"]["labels"]

        response = client.post("/api/print/payload/decode", json={"qr_data": labels[0]["qr_data"]})

        body = response.json()
        assert response.status_code == 200
        assert body["data"]["payload"]["box_number"] == 2
        assert body["data"]["payload"]["net_weight"] == 12.5
        assert body["data"]["validation"]["is_valid"] is True

    def test_malformed_payload_is_422(self, client):
        response = client.post("/api/print/payload/decode", json={"qr_data": "not|a|payload"})

        assert response.status_code == 422
        assert response.json()["status"] == "error"


class TestJobRoutes:

    def test_submit_and_poll_until_completed(self, client):
        response = client.post("/api/print/jobs", json={
            "company": "Acme Foods", "transaction_no": "INW-0001", "box_numbers": [1, 2, 3],
        })

        assert response.status_code == 200
        job = response.json()["data"]
        assert job["labels_count"] == 3
        assert job["status"] in ("queued", "printing", "completed")

        final = wait_for_job(client, job["job_id"])
        assert final["data"]["progress"] == 100
        assert final["data"]["printer_name"] == "Mock Printer"

    def test_unknown_print_settings_key_is_422(self, client):
        response = client.post("/api/print/jobs", json={
            "company": "Acme Foods", "transaction_no": "INW-0001", "box_numbers": [1],
            "print_settings": {"width": "4in", "label_size": "4x2"},
        })

        assert response.status_code == 422
        assert response.json()["message"] == "Validation error"

    def test_unknown_printer_is_404(self, client):
        response = client.post("/api/print/jobs", json={
            "company": "Acme Foods", "transaction_no": "INW-0001", "box_numbers": [1], "printer_name": "Ghost",
        })

        assert response.status_code == 404

    def test_unknown_job_is_404(self, client):
        response = client.get("/api/print/jobs/job_missing")

        assert response.status_code == 404
        assert response.json()["data"]["resource_type"] == "print_job"

    def test_cancel_finished_job_is_conflict(self, client):
        job_id = client.post("/api/print/jobs", json={
            "company": "Acme Foods", "transaction_no": "INW-0001", "box_numbers": [1],
        }).json()["data"]["job_id"]
        wait_for_job(client, job_id)

        response = client.post(f"/api/print/jobs/{job_id}/cancel")

        assert response.status_code == 409

    def test_queue_and_job_listing(self, client):
        job_id = client.post("/api/print/jobs", json={
            "company": "Acme Foods", "transaction_no": "INW-0002", "box_numbers": [1],
        }).json()["data"]["job_id"]

        listed = client.get("/api/print/jobs", params={"transaction_no": "INW-0002"}).json()["data"]
        queue = client.get("/api/print/queue").json()["data"]

        assert [job["job_id"] for job in listed] == [job_id]
        assert queue["total_jobs"] == 1

    def test_batch_submit_and_status(self, client):
        response = client.post("/api/print/batch", json={"transactions": [
            {"company": "Acme Foods", "transaction_no": "INW-0001", "box_numbers": [1, 2, 3]},
            {"company": "Acme Foods", "transaction_no": "INW-0002", "box_numbers": [1, 2]},
        ]})

        assert response.status_code == 200
        batch = response.json()["data"]
        assert batch["total_jobs"] == 2
        assert batch["total_labels"] == 5

        for job in batch["jobs"]:
            wait_for_job(client, job["job_id"])
        status = client.get(f"/api/print/batch/{batch['batch_id']}").json()["data"]
        assert status["completed_jobs"] == 2
        assert status["pending_jobs"] == 0

    def test_unknown_batch_is_404(self, client):
        assert client.get("/api/print/batch/batch_missing").status_code == 404


class TestPrinterRoutes:

    def test_list_and_drivers(self, client):
        printers = client.get("/api/printers/").json()["data"]
        drivers = client.get("/api/printers/drivers").json()["data"]

        assert [printer["name"] for printer in printers] == ["Mock Printer"]
        assert {driver["id"] for driver in drivers} >= {"mock", "zpl"}

    def test_register_and_update_status(self, client):
        response = client.post("/api/printers/register", json={
            "name": "Dock Zebra", "type": "Network", "identifier": "tcp://10.0.0.5:9100", "model": "ZT230",
        })
        assert response.status_code == 200
        assert response.json()["data"]["discovery_method"] == "manual"

        response = client.put("/api/printers/Dock Zebra/status", json={"status": "offline", "error_message": "lid open"})

        assert response.status_code == 200
        assert response.json()["data"]["status"] == "offline"
        assert response.json()["data"]["error_message"] == "lid open"

    def test_connection_test_uses_driver(self, client):
        response = client.post("/api/printers/Mock Printer/test")

        assert response.status_code == 200
        assert response.json()["data"]["success"] is True

    def test_remove_printer(self, client):
        assert client.delete("/api/printers/Mock Printer").status_code == 200
        assert client.delete("/api/printers/Mock Printer").status_code == 404

    def test_reserved_printer_removal_is_conflict(self, client):
        client.app.state.printer_registry.try_reserve("Mock Printer", "job_elsewhere")

        response = client.delete("/api/printers/Mock Printer")

        assert response.status_code == 409
        assert response.json()["data"]["current_job_id"] == "job_elsewhere"
        client.app.state.printer_registry.release("Mock Printer", "job_elsewhere")

    def test_detection_with_no_methods_is_limited(self, client):
        client.app.dependency_overrides[get_detector] = lambda: PrinterDetector([])

        response = client.post("/api/printers/detect")

        assert response.status_code == 200
        assert response.json()["data"]["detection_status"] == "limited"
