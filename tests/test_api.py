"""Tests de la API REST con FastAPI TestClient."""

import time
from datetime import datetime, timedelta, timezone

import jwt
import pytest
from fastapi.testclient import TestClient

from telemetry_api.core.domain import (
    CropThreshold,
    PollAttempt,
    PollOutcome,
    SensorReading,
    SensorType,
)
from telemetry_api.devices import DeviceRegistry
from telemetry_api.main import create_app

from conftest import JWT_TEST_KEY, ScriptedDeviceClient, make_settings, make_token, utc

T0 = utc(2026, 3, 10, 8, 0, 0)

CROPS = {
    "tomate": {
        SensorType.MOISTURE: CropThreshold(min_value=60.0, max_value=80.0),
        SensorType.PH: CropThreshold(min_value=5.5, max_value=6.8),
    }
}


def _reading(device_id, sensor_type, value, collected_at, unit="%"):
    return SensorReading(
        device_id=device_id,
        sensor_type=sensor_type,
        value=value,
        unit=unit,
        collected_at=collected_at,
        ingested_at=collected_at,
    )


@pytest.fixture
def registry(device, other_device):
    return DeviceRegistry([device, other_device], failure_threshold=1)


@pytest.fixture
def client(store, registry):
    app = create_app(
        settings=make_settings(),
        store=store,
        registry=registry,
        crops=CROPS,
        scheduler_enabled=False,
    )
    with TestClient(app) as c:
        yield c


class TestAuthentication:

    def test_missing_token(self, client, device):
        resp = client.get(f"/devices/{device.device_id}/readings/latest")

        assert resp.status_code == 401
        assert resp.headers["www-authenticate"] == "Bearer"

    def test_expired_token(self, client, device):
        token = make_token(expires_in=timedelta(minutes=-5))
        resp = client.get(
            f"/devices/{device.device_id}/readings/latest",
            headers={"Authorization": f"Bearer {token}"},
        )
        assert resp.status_code == 401

    def test_wrong_signature(self, client, device):
        token = make_token(key="another-key-another-key-another-key-0000")
        resp = client.get("/devices", headers={"Authorization": f"Bearer {token}"})
        assert resp.status_code == 401

    def test_token_without_exp(self, client):
        token = jwt.encode({"sub": "someone"}, JWT_TEST_KEY, algorithm="HS256")
        resp = client.get("/devices", headers={"Authorization": f"Bearer {token}"})
        assert resp.status_code == 401

    def test_wrong_scheme(self, client):
        resp = client.get("/devices", headers={"Authorization": f"Basic {make_token()}"})
        assert resp.status_code == 401

    def test_issuer_and_audience_are_not_checked(self, client, auth_headers):
        token = make_token(iss="users-service", aud="some-other-app")
        resp = client.get("/devices", headers={"Authorization": f"Bearer {token}"})
        assert resp.status_code == 200

    def test_key_not_configured_is_server_error(self, store, registry, auth_headers):
        app = create_app(
            settings=make_settings(jwt_key=None),
            store=store,
            registry=registry,
            scheduler_enabled=False,
        )
        with TestClient(app) as c:
            resp = c.get("/devices", headers=auth_headers)
        assert resp.status_code == 500

    def test_health_is_public(self, client):
        assert client.get("/health").json() == {"status": "ok"}
        ready = client.get("/ready")
        assert ready.status_code == 200
        assert ready.json()["status"] == "ready"


class TestReadings:

    def test_latest_per_sensor(self, client, store, device, auth_headers):
        store.write([
            _reading(device.device_id, SensorType.MOISTURE, 40.0, T0),
            _reading(device.device_id, SensorType.MOISTURE, 42.5, T0 + timedelta(minutes=1)),
            _reading(device.device_id, SensorType.PH, 6.1, T0, unit="pH"),
        ])

        resp = client.get(f"/devices/{device.device_id}/readings/latest", headers=auth_headers)

        assert resp.status_code == 200
        body = resp.json()
        by_type = {r["sensor_type"]: r["value"] for r in body["readings"]}
        assert by_type == {"moisture": 42.5, "ph": 6.1}

    def test_latest_single_sensor(self, client, store, device, auth_headers):
        store.write([_reading(device.device_id, SensorType.MOISTURE, 42.5, T0)])

        resp = client.get(
            f"/devices/{device.device_id}/readings/latest",
            params={"sensor_type": "moisture"},
            headers=auth_headers,
        )

        readings = resp.json()["readings"]
        assert len(readings) == 1
        assert readings[0]["value"] == 42.5
        assert readings[0]["unit"] == "%"

    def test_latest_for_device_without_data(self, client, other_device, auth_headers):
        resp = client.get(f"/devices/{other_device.device_id}/readings/latest", headers=auth_headers)
        assert resp.status_code == 200
        assert resp.json()["readings"] == []

    def test_unknown_device_is_404(self, client, auth_headers):
        resp = client.get("/devices/ghost/readings/latest", headers=auth_headers)
        assert resp.status_code == 404

    def test_unknown_sensor_type_is_422(self, client, device, auth_headers):
        resp = client.get(f"/devices/{device.device_id}/readings/co2", headers=auth_headers)
        assert resp.status_code == 422

    def test_history_window(self, client, store, device, auth_headers):
        store.write([
            _reading(device.device_id, SensorType.MOISTURE, float(m), T0 + timedelta(minutes=m))
            for m in (0, 10, 20, 30, 120)
        ])

        resp = client.get(
            f"/devices/{device.device_id}/readings/moisture",
            params={"start": "2026-03-10T08:00:00Z", "end": "2026-03-10T08:30:00Z"},
            headers=auth_headers,
        )

        assert resp.status_code == 200
        body = resp.json()
        assert body["count"] == 4
        assert [r["value"] for r in body["readings"]] == [0.0, 10.0, 20.0, 30.0]
        assert body["truncated"] is False

    def test_history_limit_keeps_most_recent(self, client, store, device, auth_headers):
        store.write([
            _reading(device.device_id, SensorType.MOISTURE, float(m), T0 + timedelta(minutes=m))
            for m in range(5)
        ])

        resp = client.get(
            f"/devices/{device.device_id}/readings/moisture",
            params={"start": "2026-03-10T08:00:00Z", "end": "2026-03-10T09:00:00Z", "limit": 2},
            headers=auth_headers,
        )

        body = resp.json()
        assert [r["value"] for r in body["readings"]] == [3.0, 4.0]
        assert body["count"] == 2
        assert body["truncated"] is True

    def test_history_default_limit_includes_newest_reading(self, client, store, device, auth_headers):
        # Un día a 30 s supera el límite por defecto
        now = datetime.now(timezone.utc).replace(microsecond=0)
        newest = now - timedelta(seconds=30)
        store.write([
            _reading(device.device_id, SensorType.MOISTURE, float(i), newest - timedelta(seconds=30 * i))
            for i in range(1500)
        ])

        resp = client.get(f"/devices/{device.device_id}/readings/moisture", headers=auth_headers)

        assert resp.status_code == 200
        body = resp.json()
        assert body["count"] == 1000
        assert body["truncated"] is True
        assert body["readings"][-1]["value"] == 0.0
        assert datetime.fromisoformat(body["readings"][-1]["collected_at"].replace("Z", "+00:00")) == newest
        assert body["readings"][0]["value"] == 999.0

    def test_history_default_window_is_last_24h(self, client, store, device, auth_headers):
        now = datetime.now(timezone.utc).replace(microsecond=0)
        store.write([
            _reading(device.device_id, SensorType.MOISTURE, 1.0, now - timedelta(hours=30)),
            _reading(device.device_id, SensorType.MOISTURE, 2.0, now - timedelta(hours=1)),
        ])

        resp = client.get(f"/devices/{device.device_id}/readings/moisture", headers=auth_headers)

        assert [r["value"] for r in resp.json()["readings"]] == [2.0]

    def test_history_start_after_end_is_422(self, client, device, auth_headers):
        resp = client.get(
            f"/devices/{device.device_id}/readings/moisture",
            params={"start": "2026-03-10T09:00:00Z", "end": "2026-03-10T08:00:00Z"},
            headers=auth_headers,
        )
        assert resp.status_code == 422

    def test_stats(self, client, store, device, auth_headers):
        store.write([
            _reading(device.device_id, SensorType.MOISTURE, v, T0 + timedelta(minutes=i))
            for i, v in enumerate([10.0, 20.0, 60.0])
        ])

        resp = client.get(
            f"/devices/{device.device_id}/readings/moisture/stats",
            params={"start": "2026-03-10T08:00:00Z", "end": "2026-03-10T09:00:00Z"},
            headers=auth_headers,
        )

        stats = resp.json()["stats"]
        assert stats["count"] == 3
        assert stats["min"] == 10.0
        assert stats["max"] == 60.0
        assert stats["avg"] == pytest.approx(30.0)

    def test_stats_empty_window(self, client, device, auth_headers):
        resp = client.get(
            f"/devices/{device.device_id}/readings/ph/stats",
            params={"start": "2026-03-10T08:00:00Z", "end": "2026-03-10T09:00:00Z"},
            headers=auth_headers,
        )
        assert resp.status_code == 200
        assert resp.json()["stats"] is None


class TestDashboard:

    def test_threshold_status(self, client, store, device, auth_headers):
        now = datetime.now(timezone.utc).replace(microsecond=0)
        store.write([
            _reading(device.device_id, SensorType.MOISTURE, 42.5, now - timedelta(minutes=5)),
            _reading(device.device_id, SensorType.PH, 6.2, now - timedelta(minutes=5), unit="pH"),
            _reading(device.device_id, SensorType.TEMPERATURE, 21.0, now - timedelta(minutes=5), unit="°C"),
        ])

        resp = client.get(f"/devices/{device.device_id}/dashboard", headers=auth_headers)

        assert resp.status_code == 200
        body = resp.json()
        status = {s["sensor_type"]: s["threshold_status"] for s in body["sensors"]}
        assert status == {"moisture": "low", "ph": "ok", "temperature": "unknown"}
        assert body["alerts"] == 1
        moisture = next(s for s in body["sensors"] if s["sensor_type"] == "moisture")
        assert moisture["threshold"] == {"min": 60.0, "max": 80.0}
        assert moisture["stats"]["count"] == 1

    def test_threshold_without_data_is_unknown(self, client, device, auth_headers):
        body = client.get(f"/devices/{device.device_id}/dashboard", headers=auth_headers).json()

        assert {s["sensor_type"]: s["threshold_status"] for s in body["sensors"]} == {
            "moisture": "unknown",
            "ph": "unknown",
        }
        assert body["alerts"] == 0


class TestDevices:

    def test_list_devices(self, client, device, other_device, auth_headers):
        body = client.get("/devices", headers=auth_headers).json()

        assert sorted(d["device_id"] for d in body) == sorted([device.device_id, other_device.device_id])
        assert all(d["state"] == "idle" and d["active"] for d in body)

    def test_reactivate_deactivated_device(self, client, registry, device, auth_headers):
        registry.try_begin_poll(device.device_id, now=0.0)
        registry.record_failure(
            device.device_id,
            PollAttempt(device_id=device.device_id, outcome=PollOutcome.TIMEOUT, error="timeout"),
            now=0.0,
            delay_for=lambda n: 30.0,
        )
        before = client.get(f"/devices/{device.device_id}", headers=auth_headers).json()
        assert before["state"] == "deactivated"
        assert before["last_attempt"]["outcome"] == "timeout"

        resp = client.post(f"/devices/{device.device_id}/reactivate", headers=auth_headers)

        assert resp.status_code == 200
        assert resp.json()["state"] == "idle"
        assert resp.json()["consecutive_failures"] == 0

    def test_reactivate_unknown(self, client, auth_headers):
        assert client.post("/devices/ghost/reactivate", headers=auth_headers).status_code == 404

    def test_metrics_without_scheduler(self, client):
        assert client.get("/metrics").json() == {"scheduler": None}


class TestLifespan:

    def test_scheduler_runs_inside_app_lifespan(self, store, registry, device, other_device):
        payload = '{"type": "moisture", "value": 42.5, "unit": "%"}'
        device_client = ScriptedDeviceClient({device.device_id: [payload], other_device.device_id: [payload]})
        app = create_app(
            settings=make_settings(scheduler_tick_seconds=0.01),
            store=store,
            registry=registry,
            client=device_client,
            scheduler_enabled=True,
        )

        with TestClient(app) as c:
            deadline = time.monotonic() + 5
            while registry.get(other_device.device_id).last_attempt is None and time.monotonic() < deadline:
                time.sleep(0.02)

            stats = c.get("/metrics").json()["scheduler"]
            assert stats["running"] is True
            assert stats["devices"] == 2

        assert store.latest(device.device_id, SensorType.MOISTURE).value == 42.5
        assert device_client.closed

    def test_prometheus_exposition(self, store, registry, device, other_device):
        payload = '{"type": "moisture", "value": 42.5}'
        device_client = ScriptedDeviceClient({device.device_id: [payload], other_device.device_id: [payload]})
        app = create_app(
            settings=make_settings(scheduler_tick_seconds=0.01),
            store=store,
            registry=registry,
            client=device_client,
            scheduler_enabled=True,
        )

        with TestClient(app) as c:
            deadline = time.monotonic() + 5
            while registry.get(device.device_id).last_attempt is None and time.monotonic() < deadline:
                time.sleep(0.02)
            resp = c.get("/metrics/prometheus")

        assert resp.status_code == 200
        assert 'telemetry_polls_total{outcome="success"}' in resp.text
