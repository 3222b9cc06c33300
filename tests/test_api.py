"""
API tests for the smart paste and learning routers.

The engine dependency is overridden with an in-memory engine per test.
"""

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from decimal import Decimal
import pytest
from fastapi.testclient import TestClient

from smartpaste.main import app
from smartpaste.services.engine import SmartPasteEngine
from smartpaste.utils.engine import get_engine
from smartpaste.utils.storage import InMemoryStore

STARBUCKS_SMS = "Spent 50 SAR at Starbucks, on 2024-05-01"
JARIR_SMS = "Purchase of SAR 120.00 with card **1234 at Jarir Bookstore on 2024-03-05"
JARIR_TRANSACTION = {
    "amount": "120",
    "currency": "SAR",
    "vendor": "Jarir Bookstore",
    "account": "1234",
    "type": "expense",
    "category": "Shopping",
    "subcategory": "Books",
}


@pytest.fixture
def engine():
    return SmartPasteEngine(InMemoryStore(), default_currency='SAR')


@pytest.fixture
def client(engine):
    app.dependency_overrides[get_engine] = lambda: engine
    yield TestClient(app)
    app.dependency_overrides.clear()


class TestHealth:

    def test_root(self, client):
        response = client.get("/")
        assert response.status_code == 200
        assert response.json()["status"] == "running"

    def test_health(self, client):
        assert client.get("/health").json() == {"status": "healthy"}


class TestSmartPasteEndpoints:

    def test_parse(self, client):
        response = client.post("/smart-paste/parse", json={"text": STARBUCKS_SMS})
        assert response.status_code == 200

        data = response.json()
        assert data["is_financial"] is True
        assert Decimal(data["result"]["draft"]["amount"]) == Decimal('50')
        assert data["result"]["draft"]["vendor"] == "Starbucks"
        assert data["result"]["provenance"]["amount"] == "extracted"
        assert data["result"]["parsing_status"] == "success"

    def test_parse_non_financial(self, client):
        response = client.post("/smart-paste/parse", json={"text": "see you tomorrow"})
        assert response.status_code == 200
        assert response.json() == {"is_financial": False, "result": None}

    def test_parse_requires_text(self, client):
        assert client.post("/smart-paste/parse", json={}).status_code == 422

    def test_learn_then_match(self, client):
        response = client.post("/smart-paste/learn", json={"text": JARIR_SMS, "transaction": JARIR_TRANSACTION})
        assert response.status_code == 200
        assert response.json()["success"] is True
        assert len(response.json()["template_id"]) == 64

        match = client.post("/smart-paste/match", json={"text": JARIR_SMS}).json()
        assert match["matched"] is True
        assert match["confidence"] == 1.0
        assert match["entry"]["confirmed_fields"]["vendor"] == "Jarir Bookstore"

    def test_learn_disabled(self, client):
        client.put("/smart-paste/config", json={"enabled": False})
        response = client.post("/smart-paste/learn", json={"text": JARIR_SMS, "transaction": JARIR_TRANSACTION})
        assert response.json() == {"success": False, "entry_id": None, "template_id": None}

    def test_confirm(self, client, engine):
        response = client.post("/smart-paste/confirm", json={"text": JARIR_SMS, "transaction": JARIR_TRANSACTION})
        assert response.status_code == 200
        assert response.json() == {"success": True}
        assert len(engine.entries.all()) == 1

    def test_infer(self, client):
        fields = client.post("/smart-paste/infer", json={"text": STARBUCKS_SMS}).json()["fields"]
        assert fields["vendor"] == "Starbucks"
        assert fields["type"] == "expense"

    def test_tokens(self, client):
        data = client.post("/smart-paste/tokens", json={"text": JARIR_SMS}).json()
        assert data["tokens"][3] == "120.00"
        assert [t["token"] for t in data["vendor"]] == ["jarir", "bookstore"]
        assert [t["token"] for t in data["account"]] == ["1234"]
        assert data["dates"] == ["2024-03-05T00:00:00.000Z"]

    def test_import(self, client):
        response = client.post("/smart-paste/import", json={"messages": [STARBUCKS_SMS, "hi"]})
        data = response.json()
        assert (data["total"], data["parsed"], data["skipped"]) == (2, 1, 1)

    def test_config_round_trip(self, client):
        assert client.get("/smart-paste/config").json()["min_confidence_threshold"] == 0.75

        response = client.put("/smart-paste/config", json={"min_confidence_threshold": 0.6})
        assert response.status_code == 200
        assert response.json()["min_confidence_threshold"] == 0.6
        assert response.json()["save_automatically"] is True

    def test_config_out_of_range(self, client):
        response = client.put("/smart-paste/config", json={"min_confidence_threshold": 0.3})
        assert response.status_code == 422
        assert client.get("/smart-paste/config").json()["min_confidence_threshold"] == 0.75


class TestLearningEndpoints:

    def test_templates_listed_with_confidence(self, client):
        client.post("/smart-paste/parse", json={"text": STARBUCKS_SMS})
        templates = client.get("/learning/templates").json()

        assert len(templates) == 1
        assert templates[0]["template"]["meta"]["usage_count"] == 1
        assert templates[0]["confidence"]["status"] == "candidate"

    def test_template_stats(self, client):
        client.post("/smart-paste/parse", json={"text": STARBUCKS_SMS})
        stats = client.get("/learning/templates/stats", params={"range": "7d"}).json()

        assert stats["total_templates"] == 1
        assert stats["total_fallback"] == 1
        assert stats["fallback_rate"] == 100.0

    def test_template_stats_bad_range(self, client):
        assert client.get("/learning/templates/stats", params={"range": "1y"}).status_code == 422

    def test_stale_and_delete_template(self, client):
        client.post("/smart-paste/parse", json={"text": STARBUCKS_SMS})
        assert client.get("/learning/templates/stale").json() == []

        template_id = client.get("/learning/templates").json()[0]["template"]["id"]
        assert client.delete(f"/learning/templates/{template_id}").status_code == 200
        assert client.delete(f"/learning/templates/{template_id}").status_code == 404

    def test_master_mind(self, client):
        client.post("/smart-paste/learn", json={"text": JARIR_SMS, "transaction": JARIR_TRANSACTION})
        token_map = client.get("/learning/master-mind").json()
        assert token_map["jarir"]["field"] == "vendor"

        assert client.delete("/learning/master-mind").json() == {"success": True}
        assert client.get("/learning/master-mind").json() == {}

    def test_user_vendor(self, client):
        response = client.put("/learning/vendors/Panda", json={
            "type": "expense",
            "category": "Shopping",
            "subcategory": "Groceries",
        })
        assert response.status_code == 200
        assert response.json()["user"] is True

        assert client.get("/learning/vendors", params={"source": "user"}).json()["Panda"]["category"] == "Shopping"
        assert client.delete("/learning/vendors/Panda").status_code == 200
        assert client.delete("/learning/vendors/Panda").status_code == 404

    def test_keywords(self, client):
        response = client.put("/learning/keywords/Jarir", json={
            "mappings": [{"field": "category", "value": "Education"}],
        })
        assert response.status_code == 200
        assert response.json()["keyword"] == "jarir"

        assert [k["keyword"] for k in client.get("/learning/keywords", params={"search": "jar"}).json()] == ["jarir"]
        assert client.delete("/learning/keywords/jarir").status_code == 200
        assert client.delete("/learning/keywords/jarir").status_code == 404

    def test_keyword_bad_field(self, client):
        response = client.put("/learning/keywords/jarir", json={
            "mappings": [{"field": "date", "value": "today"}],
        })
        assert response.status_code == 400

    def test_csv_import(self, client):
        row = {"vendor": "Panda", "type": "expense", "category": "Shopping", "subcategory": "Groceries"}
        response = client.post("/learning/csv-import", json={"transactions": [row, row]})

        assert response.status_code == 200
        assert response.json()["vendors_learned"] == 1
        assert list(client.get("/learning/vendors", params={"source": "csv-import"}).json()) == ["panda"]

    def test_type_keywords(self, client):
        response = client.put("/learning/type-keywords/Refund", json={"type": "income"})
        assert response.status_code == 200
        assert response.json() == {"keyword": "refund", "type": "income"}

        keywords = client.get("/learning/type-keywords").json()
        assert {"keyword": "refund", "type": "income"} in keywords

        assert client.delete("/learning/type-keywords/refund").status_code == 200
        assert client.delete("/learning/type-keywords/refund").status_code == 404
