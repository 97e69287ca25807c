"""
Tests for the review API - FastAPI endpoints and authentication

Tests cover:
- Bearer token identity
- Verification create/read/update endpoints
- Detection listing, recent feed, detail, map points and species list
- History listing
- Statistics endpoints and cache invalidation
- Error mapping and security headers

Uses FastAPI TestClient for endpoint testing.
"""

from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient

from pestwatch.api import create_access_token, create_app
from pestwatch.cache import TTLCache
from pestwatch.errors import StoreError
from pestwatch.models import to_iso
from pestwatch.storage import DETECTIONS, USERS, VERIFICATIONS, JSONDocumentStore

SECRET = "test-secret-key"


def recent(days_ago: float) -> str:
    return to_iso(datetime.now(timezone.utc) - timedelta(days=days_ago))


@pytest.fixture
def store():
    """Store with three detections and one known submitter."""
    store = JSONDocumentStore()
    store.insert(USERS, {"id": "U9", "name": "Jordan"})
    store.insert(
        DETECTIONS,
        {
            "id": "D1",
            "cur_veri_status": "pending",
            "pest_type": "Fruit fly",
            "timestamp": recent(1),
            "user_id": "U9",
            "image_region": "New South Wales",
        },
    )
    store.insert(
        DETECTIONS,
        {
            "id": "D2",
            "cur_veri_status": "pending",
            "pest_type": "Aphid",
            "timestamp": recent(2),
            "user_id": "U404",
            "user_region": "Victoria",
        },
    )
    store.insert(
        DETECTIONS,
        {
            "id": "D3",
            "cur_veri_status": "pending",
            "pest_type": "Locust",
            "timestamp": recent(30),
            "user_id": "U9",
        },
    )
    return store


@pytest.fixture
def cache():
    return TTLCache(ttl_minutes=5)


@pytest.fixture
def app(store, cache):
    """Create FastAPI app for testing."""
    return create_app(store=store, secret_key=SECRET, cache=cache)


@pytest.fixture
def client(app):
    """Create test client."""
    return TestClient(app)


@pytest.fixture
def auth_headers():
    """Authorization headers for reviewer U1."""
    token = create_access_token({"sub": "U1", "name": "Riley"}, SECRET)
    return {"Authorization": f"Bearer {token}"}


def create_verification(client, headers, pred_id="D1", status="pending", **extra):
    response = client.post(
        "/api/v1/verifications",
        json={"pred_id": pred_id, "status": status, **extra},
        headers=headers,
    )
    assert response.status_code == 201, response.text
    return response.json()["id"]


class TestAuthentication:
    """Tests for bearer token identity."""

    def test_health_needs_no_token(self, client):
        response = client.get("/api/v1/health")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    def test_get_current_user(self, client, auth_headers):
        response = client.get("/api/v1/auth/me", headers=auth_headers)

        assert response.status_code == 200
        assert response.json() == {"user_id": "U1", "name": "Riley"}

    def test_name_defaults_to_subject(self, client):
        token = create_access_token({"sub": "U7"}, SECRET)
        response = client.get("/api/v1/auth/me", headers={"Authorization": f"Bearer {token}"})

        assert response.json()["name"] == "U7"

    def test_no_token(self, client):
        """Test accessing protected endpoint without token."""
        response = client.get("/api/v1/detections")
        assert response.status_code in (401, 403)

    def test_invalid_token(self, client):
        response = client.get("/api/v1/auth/me", headers={"Authorization": "Bearer invalid"})
        assert response.status_code == 401

    def test_wrong_key(self, client):
        token = create_access_token({"sub": "U1"}, "another-key")
        response = client.get("/api/v1/auth/me", headers={"Authorization": f"Bearer {token}"})
        assert response.status_code == 401

    def test_expired_token(self, client):
        token = create_access_token({"sub": "U1"}, SECRET, expires_delta=timedelta(minutes=-1))
        response = client.get("/api/v1/auth/me", headers={"Authorization": f"Bearer {token}"})

        assert response.status_code == 401
        assert response.json()["detail"] == "Token has expired"

    def test_token_without_subject(self, client):
        token = create_access_token({"name": "Nobody"}, SECRET)
        response = client.get("/api/v1/auth/me", headers={"Authorization": f"Bearer {token}"})
        assert response.status_code == 401

    def test_app_requires_secret(self, store, monkeypatch):
        from pestwatch.config import Config

        monkeypatch.setattr(Config, "JWT_SECRET_KEY", None)
        with pytest.raises(ValueError):
            create_app(store=store)


class TestVerificationEndpoints:
    """Tests for /verifications."""

    def test_create_defaults_verifier_to_caller(self, client, auth_headers, store):
        response = client.post(
            "/api/v1/verifications",
            json={"pred_id": "D1", "status": "verified", "category": "real-pest"},
            headers=auth_headers,
        )

        assert response.status_code == 201
        verification = response.json()["verification"]
        assert verification["verifier_id"] == "U1"
        assert verification["verifier_name"] == "Riley"
        assert verification["category"] == "real-pest"
        assert verification["pred_image_url"] == ""
        assert store.get(DETECTIONS, "D1")["cur_veri_status"] == "verified"

    def test_create_invalid_status(self, client, auth_headers):
        response = client.post(
            "/api/v1/verifications",
            json={"pred_id": "D1", "status": "maybe"},
            headers=auth_headers,
        )

        assert response.status_code == 400
        assert "maybe" in response.json()["detail"]

    def test_create_duplicate(self, client, auth_headers):
        create_verification(client, auth_headers)
        response = client.post(
            "/api/v1/verifications",
            json={"pred_id": "D1", "status": "verified"},
            headers=auth_headers,
        )
        assert response.status_code == 400

    def test_list_by_status(self, client, auth_headers):
        verification_id = create_verification(client, auth_headers)
        create_verification(client, auth_headers, pred_id="D2", status="rejected")

        response = client.get("/api/v1/verifications?status=pending", headers=auth_headers)

        assert response.status_code == 200
        data = response.json()
        assert data["count"] == 1
        assert data["verifications"][0]["id"] == verification_id

    def test_list_invalid_status(self, client, auth_headers):
        response = client.get("/api/v1/verifications?status=maybe", headers=auth_headers)
        assert response.status_code == 400

    def test_get_missing(self, client, auth_headers):
        response = client.get("/api/v1/verifications/nope", headers=auth_headers)

        assert response.status_code == 404
        assert "nope" in response.json()["detail"]

    def test_update_appends_history(self, client, auth_headers, store):
        verification_id = create_verification(client, auth_headers)

        response = client.patch(
            f"/api/v1/verifications/{verification_id}",
            json={"updates": {"status": "verified"}, "reason": "confirmed by expert"},
            headers=auth_headers,
        )

        assert response.status_code == 200
        assert response.json()["verification"]["status"] == "verified"
        assert store.get(DETECTIONS, "D1")["cur_veri_status"] == "verified"

        history = client.get("/api/v1/detections/D1/history", headers=auth_headers).json()
        assert history["history"] == [
            {
                "id": history["history"][0]["id"],
                "pred_id": "D1",
                "previous_status": "pending",
                "new_status": "verified",
                "changed_by": "U1",
                "changed_at": history["history"][0]["changed_at"],
                "reason": "confirmed by expert",
            }
        ]

    def test_update_explicit_changed_by(self, client, auth_headers):
        verification_id = create_verification(client, auth_headers)
        client.patch(
            f"/api/v1/verifications/{verification_id}",
            json={"updates": {"notes": "n"}, "changed_by": "U2"},
            headers=auth_headers,
        )

        history = client.get("/api/v1/detections/D1/history", headers=auth_headers).json()
        assert history["history"][0]["changed_by"] == "U2"

    def test_update_protected_field(self, client, auth_headers):
        verification_id = create_verification(client, auth_headers)
        response = client.patch(
            f"/api/v1/verifications/{verification_id}",
            json={"updates": {"pred_id": "D2"}},
            headers=auth_headers,
        )
        assert response.status_code == 400

    def test_update_missing(self, client, auth_headers):
        response = client.patch(
            "/api/v1/verifications/nope",
            json={"updates": {"status": "verified"}},
            headers=auth_headers,
        )
        assert response.status_code == 404


class TestDetectionEndpoints:
    """Tests for /detections."""

    def test_list_paginates(self, client, auth_headers):
        first = client.get("/api/v1/detections?limit=2", headers=auth_headers).json()

        assert [d["id"] for d in first["detections"]] == ["D1", "D2"]
        assert first["has_more"] is True

        second = client.get(
            f"/api/v1/detections?limit=2&cursor={first['next_cursor']}", headers=auth_headers
        ).json()
        assert [d["id"] for d in second["detections"]] == ["D3"]
        assert second["next_cursor"] is None

    def test_list_resolves_user_names(self, client, auth_headers):
        data = client.get("/api/v1/detections", headers=auth_headers).json()
        names = {d["id"]: d["user_name"] for d in data["detections"]}

        assert names == {"D1": "Jordan", "D2": "Deleted User", "D3": "Jordan"}

    def test_list_status_filter(self, client, auth_headers):
        create_verification(client, auth_headers, pred_id="D2", status="verified")

        data = client.get("/api/v1/detections?status=verified", headers=auth_headers).json()
        assert [d["id"] for d in data["detections"]] == ["D2"]

    def test_list_invalid_limit(self, client, auth_headers):
        response = client.get("/api/v1/detections?limit=0", headers=auth_headers)
        assert response.status_code == 400

    def test_list_unknown_cursor(self, client, auth_headers):
        response = client.get("/api/v1/detections?cursor=missing", headers=auth_headers)
        assert response.status_code == 400

    def test_recent(self, client, auth_headers):
        data = client.get("/api/v1/detections/recent?days=7", headers=auth_headers).json()

        assert [d["id"] for d in data["detections"]] == ["D1", "D2"]
        assert data["count"] == 2

    def test_recent_invalid_days(self, client, auth_headers):
        response = client.get("/api/v1/detections/recent?days=0", headers=auth_headers)
        assert response.status_code == 400

    def test_detail(self, client, auth_headers):
        verification_id = create_verification(client, auth_headers)

        data = client.get("/api/v1/detections/D1", headers=auth_headers).json()

        assert data["detection"]["user_name"] == "Jordan"
        assert data["verification"]["id"] == verification_id

    def test_detail_missing(self, client, auth_headers):
        response = client.get("/api/v1/detections/D404", headers=auth_headers)
        assert response.status_code == 404

    def test_detail_with_legacy_verification(self, client, auth_headers, store):
        """Test that stored "not pest" verifications still render."""
        store.insert(
            VERIFICATIONS,
            {"id": "V-old", "pred_id": "D1", "status": "not pest", "verifier_id": "U1"},
        )

        response = client.get("/api/v1/detections/D1", headers=auth_headers)

        assert response.status_code == 200
        assert response.json()["verification"]["status"] == "not pest"

    def test_map_filters(self, client, auth_headers, store):
        store.update(DETECTIONS, "D1", {"scientific_name": "Bactrocera tryoni",
                                        "image_lat": -33.87, "image_long": 151.21})
        store.update(DETECTIONS, "D2", {"scientific_name": "Aphis gossypii"})

        data = client.get(
            "/api/v1/detections/map",
            params={"start": recent(7), "scientific_name": "Bactrocera tryoni"},
            headers=auth_headers,
        ).json()

        assert data["count"] == 1
        point = data["detections"][0]
        assert point["id"] == "D1"
        assert (point["image_lat"], point["image_long"]) == (-33.87, 151.21)
        assert point["has_location"] is True
        assert point["user_name"] == "Jordan"

    def test_map_date_range_and_status(self, client, auth_headers):
        create_verification(client, auth_headers, pred_id="D3", status="verified")

        data = client.get(
            "/api/v1/detections/map",
            params={"start": recent(60), "end": recent(10), "status": "verified"},
            headers=auth_headers,
        ).json()

        assert [d["id"] for d in data["detections"]] == ["D3"]
        assert data["detections"][0]["has_location"] is False

    def test_map_unfiltered_newest_first(self, client, auth_headers):
        data = client.get("/api/v1/detections/map", headers=auth_headers).json()
        assert [d["id"] for d in data["detections"]] == ["D1", "D2", "D3"]

    def test_map_invalid_dates(self, client, auth_headers):
        bad = client.get("/api/v1/detections/map?start=yesterday", headers=auth_headers)
        reversed_range = client.get(
            "/api/v1/detections/map",
            params={"start": recent(1), "end": recent(5)},
            headers=auth_headers,
        )

        assert bad.status_code == 400
        assert reversed_range.status_code == 400

    def test_species(self, client, auth_headers, store):
        store.update(DETECTIONS, "D1", {"scientific_name": "Bactrocera tryoni"})
        store.update(DETECTIONS, "D2", {"scientific_name": "Aphis gossypii"})
        store.update(DETECTIONS, "D3", {"scientific_name": "Bactrocera tryoni"})

        data = client.get("/api/v1/species", headers=auth_headers).json()

        assert data == {"species": ["Aphis gossypii", "Bactrocera tryoni"]}


class TestHistoryEndpoint:
    """Tests for /history."""

    def test_history_page(self, client, auth_headers):
        verification_id = create_verification(client, auth_headers)
        for status in ("verified", "rejected"):
            client.patch(
                f"/api/v1/verifications/{verification_id}",
                json={"updates": {"status": status}},
                headers=auth_headers,
            )

        data = client.get("/api/v1/history?limit=1", headers=auth_headers).json()

        assert data["total_count"] == 2
        assert data["has_more"] is True
        entry = data["history"][0]
        assert entry["new_status"] == "rejected"
        assert entry["current_status"] == "rejected"
        assert entry["verifier_name"] == "Riley"


class TestStatisticsEndpoints:
    """Tests for /stats."""

    def test_verification_stats_refresh_after_write(self, client, auth_headers):
        assert client.get("/api/v1/stats/verification", headers=auth_headers).json()["total"] == 0

        create_verification(client, auth_headers)
        stats = client.get("/api/v1/stats/verification", headers=auth_headers).json()

        assert stats == {"total": 1, "pending": 1, "verified": 0, "rejected": 0}

    def test_category_counts(self, client, auth_headers):
        create_verification(client, auth_headers, status="verified", category="real-pest")
        year = datetime.fromisoformat(
            client.get("/api/v1/detections/D1", headers=auth_headers).json()["detection"]["timestamp"]
        ).year

        data = client.get(f"/api/v1/stats/categories?year={year}", headers=auth_headers).json()

        assert data["year"] == year
        assert len(data["months"]) == 12
        assert sum(m["real-pest"] for m in data["months"]) == 1

    def test_category_counts_default_year(self, client, auth_headers):
        data = client.get("/api/v1/stats/categories", headers=auth_headers).json()
        assert data["year"] == datetime.now(timezone.utc).year

    def test_category_counts_invalid_year(self, client, auth_headers):
        response = client.get("/api/v1/stats/categories?year=99", headers=auth_headers)
        assert response.status_code == 400

    def test_geographic(self, client, auth_headers):
        data = client.get("/api/v1/stats/geographic", headers=auth_headers).json()

        assert [(s["state"], s["percentage"]) for s in data["states"]] == [
            ("NSW", 50.0),
            ("VIC", 50.0),
        ]

    def test_timeline(self, client, auth_headers):
        data = client.get("/api/v1/stats/timeline", headers=auth_headers).json()

        assert sum(p["value"] for p in data["points"]) == 3
        assert all(len(p["timestamp"]) == 7 for p in data["points"])


class TestErrorsAndHeaders:
    """Tests for error mapping and response headers."""

    def test_store_error_is_500(self, auth_headers):
        class FailingStore(JSONDocumentStore):
            def query(self, *args, **kwargs):
                raise StoreError("database unavailable")

        client = TestClient(create_app(store=FailingStore(), secret_key=SECRET))
        response = client.get("/api/v1/stats/verification", headers=auth_headers)

        assert response.status_code == 500
        assert response.json() == {"detail": "Storage backend error"}

    def test_security_headers(self, client):
        response = client.get("/api/v1/health")

        assert response.headers["X-Content-Type-Options"] == "nosniff"
        assert response.headers["X-Frame-Options"] == "DENY"

    def test_request_id_generated(self, client, auth_headers):
        response = client.get("/api/v1/auth/me", headers=auth_headers)
        assert response.headers["X-Request-ID"]

    def test_request_id_propagated(self, client, auth_headers):
        headers = {**auth_headers, "X-Request-ID": "req-123"}
        response = client.get("/api/v1/auth/me", headers=headers)
        assert response.headers["X-Request-ID"] == "req-123"
