"""
HTTP tests for the ChargeUp API.

Settlement runs out of band, so tests that need it dispatch the change feed
by hand after the request returns.
"""
from datetime import timedelta
from decimal import Decimal

from chargeup.models.charge import ChargeSession
from chargeup.services.settlement import subscribe_settlement
from tests.helpers.factories import (
    FAR_AWAY,
    NEARBY,
    STATION_LAT,
    STATION_LNG,
    auth_headers,
    create_station,
)

NEARBY_LOCATION = {"lat": NEARBY[0], "lng": NEARBY[1]}


def test_healthz(client):
    response = client.get("/healthz")

    assert response.status_code == 200
    assert response.json()["ok"] is True


def test_requires_bearer_token(client):
    assert client.get("/v1/stations").status_code == 401
    assert client.get("/v1/stations", headers={"Authorization": "Bearer not-a-jwt"}).status_code == 401


class TestStations:
    def test_owner_lists_station(self, client, owner):
        response = client.post(
            "/v1/stations",
            json={
                "address": "500 Howard St, San Francisco, CA",
                "latitude": 37.7881,
                "longitude": -122.3966,
                "charge_rate": "0.30",
                "adapter_types": ["CCS", "J1772"],
            },
            headers=auth_headers(owner.id),
        )

        assert response.status_code == 201
        body = response.json()
        assert body["id"].startswith("owner-1_")
        assert body["status"] == "available"
        assert Decimal(body["charge_rate"]) == Decimal("0.30")
        assert body["network_type"] == "In-net"

    def test_invalid_station(self, client, owner):
        response = client.post(
            "/v1/stations",
            json={
                "address": "500 Howard St",
                "latitude": 37.7881,
                "longitude": -122.3966,
                "charge_rate": "0.30",
                "adapter_types": [],
            },
            headers=auth_headers(owner.id),
        )

        assert response.status_code == 400
        assert response.json()["error"] == "invalid_station"

    def test_map_listing_filters_and_sorts(self, client, db, owner, driver, clock):
        near = create_station(db, owner.id, clock=clock, adapter_types=("CCS",))
        farther = create_station(db, owner.id, clock=clock, latitude=STATION_LAT + 0.02, adapter_types=("CCS",))
        create_station(db, owner.id, clock=clock, adapter_types=("CHAdeMO",))

        response = client.get(
            "/v1/stations",
            params={"lat": STATION_LAT, "lng": STATION_LNG, "adapter": "CCS"},
            headers=auth_headers(driver.id),
        )

        assert response.status_code == 200
        ids = [s["id"] for s in response.json()["stations"]]
        assert ids == [near.id, farther.id]
        assert response.json()["stations"][0]["distance_mi"] == 0.0

    def test_deactivated_station_hidden(self, client, station, owner, driver):
        response = client.patch(
            f"/v1/stations/{station.id}/availability",
            json={"available": False},
            headers=auth_headers(owner.id),
        )
        assert response.status_code == 200
        assert response.json()["available"] is False

        listing = client.get("/v1/stations", headers=auth_headers(driver.id)).json()
        assert station.id not in [s["id"] for s in listing["stations"]]

        mine = client.get("/v1/owner/stations", headers=auth_headers(owner.id)).json()
        assert station.id in [s["id"] for s in mine["stations"]]

    def test_only_owner_toggles_availability(self, client, station, driver):
        response = client.patch(
            f"/v1/stations/{station.id}/availability",
            json={"available": False},
            headers=auth_headers(driver.id),
        )

        assert response.status_code == 403
        assert response.json()["error"] == "forbidden"

    def test_unknown_station(self, client, driver):
        response = client.get("/v1/stations/missing", headers=auth_headers(driver.id))
        assert response.status_code == 404


class TestChargeFlow:
    def test_navigate_then_second_driver_conflicts(self, client, station, driver, other_driver):
        first = client.post(
            "/v1/charge-flow/navigate",
            json={"station_id": station.id},
            headers=auth_headers(driver.id),
        )
        assert first.status_code == 200
        assert first.json()["station"]["status"] == "enRoute"
        assert first.json()["directions_url"].endswith("travelmode=driving")

        second = client.post(
            "/v1/charge-flow/navigate",
            json={"station_id": station.id},
            headers=auth_headers(other_driver.id),
        )
        assert second.status_code == 409
        assert second.json()["error"] == "already_occupied"

    def test_billing_required(self, client, station):
        response = client.post(
            "/v1/charge-flow/start",
            json={"station_id": station.id, "location": NEARBY_LOCATION},
            headers=auth_headers("driver-without-card"),
        )

        assert response.status_code == 402
        assert response.json()["error"] == "billing_required"

    def test_too_far(self, client, station, driver):
        response = client.post(
            "/v1/charge-flow/start",
            json={"station_id": station.id, "location": {"lat": FAR_AWAY[0], "lng": FAR_AWAY[1]}},
            headers=auth_headers(driver.id),
        )

        assert response.status_code == 422
        assert response.json()["error"] == "too_far"

    def test_invalid_location(self, client, station, driver):
        response = client.post(
            "/v1/charge-flow/start",
            json={"station_id": station.id, "location": {"lat": 123.0, "lng": 0.0}},
            headers=auth_headers(driver.id),
        )
        assert response.status_code == 422

    def test_full_flow_with_settlement(self, client, db, feed, provider, station, owner, driver):
        headers = auth_headers(driver.id)

        start = client.post(
            "/v1/charge-flow/start",
            json={"station_id": station.id, "location": NEARBY_LOCATION},
            headers=headers,
        )
        assert start.status_code == 201
        session_id = start.json()["session"]["id"]
        assert start.json()["station"]["status"] == "charging"

        with subscribe_settlement(feed, provider):
            feed.dispatch_pending(db)
            assert client.get(f"/v1/charges/{session_id}", headers=headers).json()["status"] == "authorized"

            # Five minutes of charging
            session = db.get(ChargeSession, session_id)
            session.start_time = session.start_time - timedelta(minutes=5)
            db.commit()

            state = client.get("/v1/charge-flow/state", headers=headers).json()
            assert state["session"]["id"] == session_id

            end = client.post(
                "/v1/charge-flow/end",
                json={"session_id": session_id, "station_id": station.id},
                headers=headers,
            )
            assert end.status_code == 200
            assert end.json()["station"]["status"] == "available"
            assert end.json()["total_cost"].startswith("10.0")

            feed.dispatch_pending(db)

        charge = client.get(f"/v1/charges/{session_id}", headers=headers).json()
        assert charge["status"] == "completed"
        assert charge["payout_method"] == "wallet"
        assert charge["platform_share_cents"] + charge["owner_share_cents"] == charge["amount_cents"]

        wallet = client.get("/v1/owner/wallet", headers=auth_headers(owner.id)).json()
        assert wallet["balance_cents"] == charge["owner_share_cents"]
        assert wallet["completed_sessions"] == 1
        assert wallet["payout_account_linked"] is False

        history = client.get("/v1/charges", headers=headers).json()
        assert [c["id"] for c in history["charges"]] == [session_id]

    def test_charge_hidden_from_other_driver(self, client, station, driver, other_driver):
        start = client.post(
            "/v1/charge-flow/start",
            json={"station_id": station.id, "location": NEARBY_LOCATION},
            headers=auth_headers(driver.id),
        )
        session_id = start.json()["session"]["id"]

        response = client.get(f"/v1/charges/{session_id}", headers=auth_headers(other_driver.id))
        assert response.status_code == 404

    def test_proximity_reminder(self, client, station, driver):
        headers = auth_headers(driver.id)
        start = client.post(
            "/v1/charge-flow/start",
            json={"station_id": station.id, "location": NEARBY_LOCATION},
            headers=headers,
        )
        session_id = start.json()["session"]["id"]
        away = {"session_id": session_id, "location": {"lat": FAR_AWAY[0], "lng": FAR_AWAY[1]}}

        first = client.post("/v1/charge-flow/proximity", json=away, headers=headers).json()
        second = client.post("/v1/charge-flow/proximity", json=away, headers=headers).json()

        assert first["show_reminder"] is True
        assert second["show_reminder"] is False


class TestMe:
    def test_new_user_adds_card(self, client):
        headers = auth_headers("new-driver", "new@test.com")

        me = client.get("/v1/me", headers=headers).json()
        assert me["id"] == "new-driver"
        assert me["has_payment_method"] is False

        updated = client.put(
            "/v1/me/payment-method",
            json={"payment_method_id": "pm_card_visa", "customer_id": "cus_1"},
            headers=headers,
        ).json()
        assert updated["has_payment_method"] is True

        cleared = client.delete("/v1/me/payment-method", headers=headers).json()
        assert cleared["has_payment_method"] is False

    def test_linking_payout_account_makes_driver_an_owner(self, client, driver):
        response = client.put(
            "/v1/me/payout-account",
            json={"stripe_account_id": "acct_host"},
            headers=auth_headers(driver.id),
        )

        assert response.status_code == 200
        assert response.json()["role"] == "Both"
        assert response.json()["payout_account_linked"] is True
