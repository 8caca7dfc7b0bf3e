import io
import os

import pandas as pd
import pytest
from fastapi.testclient import TestClient

from backend import DataManager
from main import create_app


@pytest.fixture
def client(settings):
    return TestClient(create_app(settings))


def _seed(client, clients, workers, tasks):
    for entity_type, rows in (("clients", clients), ("workers", workers), ("tasks", tasks)):
        response = client.post(f"/data/{entity_type}", json={"rows": rows})
        assert response.status_code == 200
        assert response.json()["ingest"]["accepted"] is True


def _csv_bytes(rows):
    return pd.DataFrame(rows).to_csv(index=False).encode("utf-8")


class TestHealthAndSchema:
    def test_health(self, client):
        assert client.get("/health").json() == {"status": "ok"}

    def test_schema_lists_required_columns(self, client):
        body = client.get("/schema").json()
        assert body["clients"][:2] == ["ClientID", "ClientName"]
        assert set(body) == {"clients", "workers", "tasks"}


class TestIngestEndpoints:
    def test_ingest_rows_returns_full_validation(self, client, clients, workers, tasks):
        _seed(client, clients, workers, tasks)
        body = client.get("/data").json()
        assert body["validation"]["isValid"] is True
        assert body["summary"]["total_workers"] == 2
        assert body["data"]["tasks"][0]["TaskID"] == "T1"

    def test_rejected_rows_are_reported_not_fatal(self, client, clients):
        client.post("/data/clients", json={"rows": clients})
        response = client.post("/data/clients", json={"rows": [{"ClientID": "C7"}]})

        assert response.status_code == 200
        body = response.json()
        assert body["ingest"]["accepted"] is False
        assert body["ingest"]["validation"]["globalErrors"]
        assert [row["ClientID"] for row in body["data"]["clients"]] == ["C1", "C2"]

    def test_unknown_entity_type(self, client):
        response = client.post("/data/vendors", json={"rows": []})
        assert response.status_code == 400
        assert response.json()["status"] == "error"

    def test_upload_single_file(self, client, tasks, settings):
        response = client.post(
            "/upload/tasks", files={"file": ("tasks.csv", _csv_bytes(tasks), "text/csv")}
        )
        assert response.status_code == 200
        body = response.json()
        assert body["ingest"]["accepted"] is True
        assert body["ingest"]["rowCount"] == 2
        assert len(os.listdir(settings.upload_dir)) == 1

    def test_upload_unsupported_file(self, client):
        response = client.post(
            "/upload/tasks", files={"file": ("tasks.txt", io.BytesIO(b"TaskID\nT1\n"), "text/plain")}
        )
        assert response.status_code == 400

    def test_upload_several_files(self, client, clients, workers):
        response = client.post(
            "/upload",
            files={
                "clients": ("clients.csv", _csv_bytes(clients), "text/csv"),
                "workers": ("workers.csv", _csv_bytes(workers), "text/csv"),
            },
        )
        assert response.status_code == 200
        body = response.json()
        assert [item["entityType"] for item in body["ingests"]] == ["clients", "workers"]
        assert body["summary"]["total_clients"] == 2
        # clients request T1/T2 but no tasks are loaded, so the reference check is skipped
        assert body["validation"]["isValid"] is True

    def test_mixed_upload_with_unsupported_file_changes_nothing(self, client, clients):
        response = client.post(
            "/upload",
            files={
                "clients": ("clients.csv", _csv_bytes(clients), "text/csv"),
                "workers": ("workers.txt", io.BytesIO(b"WorkerID\nW1\n"), "text/plain"),
            },
        )
        assert response.status_code == 400
        assert client.get("/data").json()["data"]["clients"] == []

    def test_deeply_nested_json_cell_is_reported(self, client, clients):
        clients[0]["AttributesJSON"] = "[" * 100000
        response = client.post("/data/clients", json={"rows": clients})

        assert response.status_code == 200
        assert response.json()["validation"]["cellErrors"][0]["message"] == "Invalid JSON format"
        assert client.get("/data").status_code == 200

    def test_upload_without_files(self, client):
        assert client.post("/upload").status_code == 400


class TestDatasetEndpoints:
    def test_cell_edit_triggers_revalidation(self, client, clients, workers, tasks):
        _seed(client, clients, workers, tasks)
        response = client.patch("/data/clients/0", json={"column": "AttributesJSON", "value": "{bad json"})

        assert response.status_code == 200
        body = response.json()
        assert body["row"]["AttributesJSON"] == "{bad json"
        assert body["validation"]["cellErrors"] == [{
            "entityType": "clients",
            "rowIndex": 0,
            "columnId": "AttributesJSON",
            "message": "Invalid JSON format",
        }]

    def test_cell_edit_out_of_range(self, client, clients):
        client.post("/data/clients", json={"rows": clients})
        assert client.patch("/data/clients/10", json={"column": "ClientName", "value": "x"}).status_code == 404

    def test_validate_endpoint(self, client, clients, workers, tasks):
        workers[0]["AvailableSlots"] = "[1,2]"
        workers[0]["MaxLoadPerPhase"] = 3
        _seed(client, clients, workers, tasks)
        body = client.get("/validate").json()
        assert body["isValid"] is False
        assert body["cellErrors"][0]["message"] == "Max load (3) exceeds available slots (2)"

    def test_clear_entity(self, client, clients):
        client.post("/data/clients", json={"rows": clients})
        body = client.delete("/data/clients").json()
        assert body["data"]["clients"] == []


class TestRuleEndpoints:
    def test_generate_rule(self, client):
        response = client.post("/ai_generate_rule", json={
            "prompt": "Tasks T1 and T2 must run together",
            "clients": [], "workers": [], "tasks": [],
        })
        body = response.json()
        assert body["success"] is True
        assert body["rule"]["type"] == "coRun"
        assert set(body["rule"]["config"]["taskIDs"]) == {"T1", "T2"}
        assert client.get("/rules").json()["rules"] == []

    def test_generate_rule_failure(self, client):
        body = client.post("/ai_generate_rule", json={"prompt": "hello world"}).json()
        assert body["success"] is False
        assert len(body["suggestions"]) == 4

    def test_rule_crud(self, client):
        generated = client.post("/ai_generate_rule", json={"prompt": "VIP clients need minimum 2 common slots"})
        rule = generated.json()["rule"]

        created = client.post("/rules", json=rule)
        assert created.status_code == 201
        rule_id = created.json()["rule"]["id"]
        assert rule_id == rule["id"]

        updated = client.put(f"/rules/{rule_id}", json={"priority": 2, "name": "VIP overlap"}).json()["rule"]
        assert updated["priority"] == 2
        assert updated["config"]["groupName"] == "VIP"

        toggled = client.post(f"/rules/{rule_id}/toggle").json()["rule"]
        assert toggled["enabled"] is False

        assert client.delete(f"/rules/{rule_id}").json()["rules"] == []
        assert client.delete(f"/rules/{rule_id}").status_code == 404

    def test_add_rule_from_form_assigns_id(self, client):
        response = client.post("/rules", json={
            "type": "phaseWindow", "name": "T3 early", "config": {"taskID": "T3", "allowedPhases": [1, 2]},
        })
        assert response.status_code == 201
        rule = response.json()["rule"]
        assert rule["id"]
        assert rule["enabled"] is True

    def test_invalid_rule(self, client):
        response = client.post("/rules", json={"type": "teleport"})
        assert response.status_code == 400
        assert response.json()["message"] == "Invalid rule"

    def test_update_unknown_rule(self, client):
        assert client.put("/rules/nope", json={"name": "x"}).status_code == 404


class TestWeightEndpoints:
    def test_get_and_set(self, client):
        assert client.get("/weights").json()["priorityLevel"] == 50
        body = client.put("/weights", json={
            "priorityLevel": 10, "fulfillment": 20, "fairness": 30,
            "efficiency": 40, "cost": 50, "speed": 60,
        }).json()
        assert body["speed"] == 60

    def test_patch_single_weight(self, client):
        assert client.patch("/weights/cost", json={"value": 90}).json()["cost"] == 90
        assert client.patch("/weights/mood", json={"value": 1}).status_code == 404

    def test_presets(self, client):
        names = [preset["name"] for preset in client.get("/weights/presets").json()["presets"]]
        assert names == ["Maximize Fulfillment", "Fair Distribution", "Minimize Workload", "Cost Optimized"]
        assert client.post("/weights/presets/Fair Distribution").json()["fairness"] == 80
        assert client.post("/weights/presets/Unknown").status_code == 404


class TestExportEndpoints:
    def test_export_requires_data(self, client):
        assert client.post("/export").status_code == 400
        assert client.post("/export_download").status_code == 400

    def test_export_and_download(self, client, clients, workers, tasks):
        _seed(client, clients, workers, tasks)
        body = client.post("/export").json()
        assert {f["name"] for f in body["files"]} == {
            "clients_cleaned.csv", "workers_cleaned.csv", "tasks_cleaned.csv", "rules_config.json",
        }

        download = client.get("/download/rules_config.json")
        assert download.status_code == 200
        assert set(download.json()) == {"clients", "workers", "tasks", "rules", "weights"}
        assert client.get("/download/missing.csv").status_code == 404

    def test_export_after_excel_upload_with_dates(self, client, tasks):
        df = pd.DataFrame(tasks)
        df["StartDate"] = [pd.Timestamp("2024-01-05"), pd.Timestamp("2024-02-10")]
        buffer = io.BytesIO()
        df.to_excel(buffer, index=False)
        buffer.seek(0)
        xlsx = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
        upload = client.post("/upload/tasks", files={"file": ("tasks.xlsx", buffer, xlsx)})
        assert upload.json()["ingest"]["accepted"] is True

        assert client.post("/export").status_code == 200
        body = client.post("/export_download").json()
        assert body["summary"]["total_files"] == 2

    def test_export_download_payload(self, client, clients):
        client.post("/data/clients", json={"rows": clients})
        body = client.post("/export_download").json()
        assert body["summary"]["total_files"] == 2
        assert body["files"][0]["content"].startswith("ClientID,ClientName")


class FakeAgent:
    def ask(self, prompt):
        return f"echo: {prompt}"


class TestAIQueryEndpoint:
    def test_missing_token_is_server_error(self, client):
        response = client.post("/ai_query", json={"prompt": "hi"})
        assert response.status_code == 500
        assert "GITHUB_TOKEN" in response.json()["error"]

    def test_query(self, settings):
        client = TestClient(create_app(settings, DataManager(settings, gpt_agent=FakeAgent())))
        body = client.post("/ai_query", json={"prompt": "hi"}).json()
        assert body == {"success": True, "aiResponse": "echo: hi"}
