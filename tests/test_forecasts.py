"""
Forecasts: scoping, uniqueness, ownership and the submit/review lifecycle.
"""

from forecasting import models
from forecasting.models import ForecastStatus, MarketSegment, Role


class TestForecastCrud:
    def test_create_forecast(self, client, db, make_user, make_period, headers_for):
        user = make_user(Role.CONTRIBUTOR, segments=["ENERGY"])
        period = make_period()
        resp = client.post("/api/forecasts", json={"period_id": period.id, "market_segment": "ENERGY",
                                                   "notes": "first pass"}, headers=headers_for(user))
        assert resp.status_code == 201
        forecast = resp.json()["forecast"]
        assert forecast["status"] == "DRAFT"
        assert forecast["user_id"] == user.id
        assert forecast["projects"] == []
        assert db.query(models.AuditLog).filter_by(action="create_forecast").count() == 1

    def test_duplicate_forecast(self, client, make_user, make_period, headers_for):
        user = make_user(Role.CONTRIBUTOR, segments=["ENERGY"])
        period = make_period()
        body = {"period_id": period.id, "market_segment": "ENERGY"}
        assert client.post("/api/forecasts", json=body, headers=headers_for(user)).status_code == 201
        resp = client.post("/api/forecasts", json=body, headers=headers_for(user))
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "DUPLICATE_FIELD"
        assert resp.json()["error"]["details"]["field"] == "user_id"

    def test_unknown_period(self, client, make_user, headers_for):
        user = make_user(Role.CONTRIBUTOR, segments=["ENERGY"])
        resp = client.post("/api/forecasts", json={"period_id": 999, "market_segment": "ENERGY"},
                           headers=headers_for(user))
        assert resp.status_code == 404

    def test_locked_period(self, client, make_user, make_period, headers_for):
        user = make_user(Role.CONTRIBUTOR, segments=["ENERGY"])
        period = make_period(is_locked=True)
        resp = client.post("/api/forecasts", json={"period_id": period.id, "market_segment": "ENERGY"},
                           headers=headers_for(user))
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "VALIDATION_ERROR"

    def test_scoping(self, client, make_user, make_period, make_forecast, headers_for):
        period = make_period()
        alice = make_user(Role.CONTRIBUTOR, segments=["ENERGY", "RESIDENTIAL"])
        bob = make_user(Role.CONTRIBUTOR, segments=["ENERGY"])
        vp = make_user(Role.VP_DIRECTOR, segments=["ENERGY"])
        executive = make_user(Role.EXECUTIVE)
        a_energy = make_forecast(alice, period, MarketSegment.ENERGY)
        a_res = make_forecast(alice, period, MarketSegment.RESIDENTIAL)
        b_energy = make_forecast(bob, period, MarketSegment.ENERGY)

        def ids(user, **params):
            resp = client.get("/api/forecasts", params=params, headers=headers_for(user))
            return sorted(f["id"] for f in resp.json()["forecasts"])

        assert ids(alice) == sorted([a_energy.id, a_res.id])
        assert ids(bob) == [b_energy.id]
        assert ids(vp) == sorted([a_energy.id, b_energy.id])
        assert ids(executive) == sorted([a_energy.id, a_res.id, b_energy.id])
        assert ids(executive, market_segment="RESIDENTIAL") == [a_res.id]

        assert client.get(f"/api/forecasts/{a_res.id}", headers=headers_for(bob)).status_code == 403
        assert client.get(f"/api/forecasts/{a_res.id}", headers=headers_for(alice)).status_code == 200

    def test_only_owner_or_admin_edits(self, client, make_user, make_period, make_forecast, admin, headers_for):
        owner = make_user(Role.CONTRIBUTOR, segments=["ENERGY"])
        other = make_user(Role.EXECUTIVE)
        forecast = make_forecast(owner, make_period())

        resp = client.put(f"/api/forecasts/{forecast.id}", json={"notes": "hijack"}, headers=headers_for(other))
        assert resp.status_code == 403
        resp = client.put(f"/api/forecasts/{forecast.id}", json={"notes": "tidy"}, headers=headers_for(admin))
        assert resp.status_code == 200
        assert resp.json()["forecast"]["notes"] == "tidy"

    def test_delete_forecast_cascades_projects(self, client, db, make_user, make_period, make_forecast,
                                               make_project, headers_for):
        owner = make_user(Role.CONTRIBUTOR, segments=["ENERGY"])
        forecast = make_forecast(owner, make_period())
        make_project(forecast)
        resp = client.delete(f"/api/forecasts/{forecast.id}", headers=headers_for(owner))
        assert resp.status_code == 200
        db.expire_all()
        assert db.query(models.Project).count() == 0


class TestLifecycle:
    def test_submit_approve(self, client, make_user, make_period, make_forecast, headers_for):
        owner = make_user(Role.CONTRIBUTOR, segments=["ENERGY"])
        vp = make_user(Role.VP_DIRECTOR, segments=["ENERGY"])
        forecast = make_forecast(owner, make_period())

        resp = client.post(f"/api/forecasts/{forecast.id}/submit", headers=headers_for(owner))
        assert resp.status_code == 200
        assert resp.json()["forecast"]["status"] == "SUBMITTED"
        assert resp.json()["forecast"]["submitted_at"] is not None

        # submitted forecasts are frozen
        resp = client.put(f"/api/forecasts/{forecast.id}", json={"notes": "late"}, headers=headers_for(owner))
        assert resp.status_code == 400

        resp = client.post(f"/api/forecasts/{forecast.id}/approve", headers=headers_for(vp))
        assert resp.status_code == 200
        assert resp.json()["forecast"]["status"] == "APPROVED"
        assert resp.json()["forecast"]["approved_at"] is not None

    def test_reject_then_resubmit(self, client, make_user, make_period, make_forecast, headers_for):
        owner = make_user(Role.CONTRIBUTOR, segments=["ENERGY"])
        executive = make_user(Role.EXECUTIVE)
        forecast = make_forecast(owner, make_period(), status=ForecastStatus.SUBMITTED)

        resp = client.post(f"/api/forecasts/{forecast.id}/reject", json={"reason": "numbers too rosy"},
                           headers=headers_for(executive))
        assert resp.json()["forecast"]["status"] == "REJECTED"
        assert resp.json()["forecast"]["rejection_reason"] == "numbers too rosy"

        resp = client.post(f"/api/forecasts/{forecast.id}/submit", headers=headers_for(owner))
        assert resp.json()["forecast"]["status"] == "SUBMITTED"
        assert resp.json()["forecast"]["rejection_reason"] is None

    def test_reject_requires_reason(self, client, make_user, make_period, make_forecast, headers_for):
        owner = make_user(Role.CONTRIBUTOR, segments=["ENERGY"])
        forecast = make_forecast(owner, make_period(), status=ForecastStatus.SUBMITTED)
        resp = client.post(f"/api/forecasts/{forecast.id}/reject", json={},
                           headers=headers_for(make_user(Role.EXECUTIVE)))
        assert resp.status_code == 400
        assert resp.json()["error"]["details"]["field"] == "reason"

    def test_cannot_approve_draft(self, client, make_user, make_period, make_forecast, admin, headers_for):
        owner = make_user(Role.CONTRIBUTOR, segments=["ENERGY"])
        forecast = make_forecast(owner, make_period())
        resp = client.post(f"/api/forecasts/{forecast.id}/approve", headers=headers_for(admin))
        assert resp.status_code == 400
        assert resp.json()["error"]["message"] == "Cannot approve a forecast in status DRAFT"

    def test_vp_reviews_own_segments_only(self, client, make_user, make_period, make_forecast, headers_for):
        owner = make_user(Role.CONTRIBUTOR, segments=["RESIDENTIAL"])
        vp = make_user(Role.VP_DIRECTOR, segments=["ENERGY"])
        forecast = make_forecast(owner, make_period(), MarketSegment.RESIDENTIAL, ForecastStatus.SUBMITTED)
        resp = client.post(f"/api/forecasts/{forecast.id}/approve", headers=headers_for(vp))
        assert resp.status_code == 403

    def test_lifecycle_is_audited(self, client, db, make_user, make_period, make_forecast, admin, headers_for):
        owner = make_user(Role.CONTRIBUTOR, segments=["ENERGY"])
        forecast = make_forecast(owner, make_period())
        client.post(f"/api/forecasts/{forecast.id}/submit", headers=headers_for(owner))
        client.post(f"/api/forecasts/{forecast.id}/approve", headers=headers_for(admin))
        actions = [log.action for log in db.query(models.AuditLog).order_by(models.AuditLog.id)]
        assert actions == ["submit_forecast", "approve_forecast"]
        approve = db.query(models.AuditLog).filter_by(action="approve_forecast").one()
        assert approve.old_data["status"] == "SUBMITTED"
        assert approve.new_data["status"] == "APPROVED"
