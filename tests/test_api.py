# tests/test_api.py
"""
Tests for the JSON blueprints: /api/mlm (members) and /api/admin/mlm (admins).

Data comes from the api_data fixture (chain Alice..Gita, SALE ladder, an admin,
and Waqar with 5,000 withdrawable). Requests run without an outer app context,
so every request resolves the session's member afresh.

Run:
    pytest tests/test_api.py -v
"""
from decimal import Decimal

import pytest

from extensions import db
from models import Member, Wallet, Order, OrderStatus
from mlm.commission_engine import CommissionEngine
from mlm.orders import OrderHelper

from conftest import BANK_DETAILS, login, logout


def place_and_process(app, member_id, total="10000"):
    with app.app_context():
        order = OrderHelper.create_order(member_id, total, OrderStatus.CONFIRMED)
        CommissionEngine.process_order_commissions(order.id)
        return order.id


def balance_of(app, member_id):
    with app.app_context():
        return Wallet.query.filter_by(member_id=member_id).first().balance


# =============================================================================
# TEST CLASS: access control
# =============================================================================

class TestAccess:

    def test_healthz(self, client):
        response = client.get("/healthz")

        assert response.status_code == 200
        assert response.get_json() == {"status": "ok"}

    def test_anonymous_gets_401(self, client, api_data):
        for path in ("/api/mlm/wallet", "/api/admin/mlm/analytics"):
            response = client.get(path)
            assert response.status_code == 401
            assert response.get_json()["success"] is False

    def test_member_cannot_use_admin_api(self, member_client):
        response = member_client.get("/api/admin/mlm/analytics")

        assert response.status_code == 403
        assert response.get_json()["error"] == "Admin access required"

    def test_inactive_member_gets_403(self, app, client, api_data):
        with app.app_context():
            db.session.get(Member, api_data["funded"]).is_active = False
            db.session.commit()
        login(client, api_data["funded"])

        assert client.get("/api/mlm/wallet").status_code == 403

    def test_unknown_route_is_json(self, client):
        response = client.get("/api/mlm/nothing-here")

        assert response.status_code == 404
        assert response.get_json()["success"] is False

    def test_wrong_method_is_json(self, member_client):
        response = member_client.delete("/api/mlm/wallet")

        assert response.status_code == 405


# =============================================================================
# TEST CLASS: member endpoints
# =============================================================================

class TestMemberApi:

    def test_wallet(self, member_client):
        response = member_client.get("/api/mlm/wallet")

        body = response.get_json()
        assert response.status_code == 200
        assert body["success"] is True
        assert body["wallet"]["balance"] == 5000.0
        assert body["wallet"]["pendingWithdrawals"] == 0

    def test_tree_depth_clamped(self, client, api_data):
        login(client, api_data["chain"][0])

        body = client.get("/api/mlm/tree?depth=10").get_json()

        assert body["depth"] == 5
        assert body["tree"]["id"] == api_data["chain"][0]
        assert body["stats"]["totalDownline"] == 6

    def test_tree_rejects_bad_depth(self, client, api_data):
        login(client, api_data["chain"][0])

        response = client.get("/api/mlm/tree?depth=deep")

        assert response.status_code == 400
        assert response.get_json()["type"] == "validation"

    def test_direct_downline(self, client, api_data):
        login(client, api_data["chain"][0])

        body = client.get("/api/mlm/downline").get_json()

        assert body["total"] == 1
        assert body["data"][0]["id"] == api_data["chain"][1]
        assert body["totalDownline"] == 6

    def test_referral_link(self, client, api_data):
        alice = api_data["chain"][0]
        login(client, alice)

        body = client.get("/api/mlm/referral-link").get_json()

        assert body["referralLink"].endswith(f"?ref={api_data['codes'][alice]}")
        assert body["totalReferrals"] == 6

    def test_rank(self, member_client):
        body = member_client.get("/api/mlm/rank").get_json()

        assert body["rank"]["name"] == "Starter"
        assert body["rank"]["next"]["name"] == "Bronze"

    def test_commission_history(self, app, client, api_data):
        """
        TEST: Farah's history after Gita's 10,000 order.

        Verify: one PENDING 1,000 commission and a matching summary.
        """
        place_and_process(app, api_data["chain"][-1])
        login(client, api_data["chain"][5])

        body = client.get("/api/mlm/commissions?status=pending&type=SALE").get_json()

        assert body["total"] == 1
        assert body["data"][0]["amount"] == 1000.0
        assert body["data"][0]["level"] == 1
        assert body["summary"]["pending"] == 1000.0
        assert body["summary"]["totalEarned"] == 0.0

    def test_commission_history_bad_filter(self, member_client):
        response = member_client.get("/api/mlm/commissions?type=BOGUS")

        assert response.status_code == 400

    def test_commission_history_date_window(self, app, client, api_data):
        place_and_process(app, api_data["chain"][-1])
        login(client, api_data["chain"][5])

        body = client.get("/api/mlm/commissions?from=2000-01-01&to=2000-12-31").get_json()

        assert body["total"] == 0


# =============================================================================
# TEST CLASS: member withdrawals
# =============================================================================

class TestMemberWithdrawals:

    def test_request_withdrawal(self, app, member_client, api_data):
        response = member_client.post("/api/mlm/withdrawals", json={
            "amount": 1000, "method": "BANK", "details": BANK_DETAILS,
        })

        body = response.get_json()
        assert response.status_code == 201
        assert body["withdrawal"]["status"] == "PENDING"
        assert body["withdrawal"]["netAmount"] == 1000.0
        assert balance_of(app, api_data["funded"]) == Decimal("4000")

        history = member_client.get("/api/mlm/withdrawals").get_json()
        assert history["total"] == 1

    def test_account_details_alias(self, member_client):
        response = member_client.post("/api/mlm/withdrawals", json={
            "amount": "750", "method": "easypaisa", "accountDetails": {"walletNumber": "03451234567"},
        })

        assert response.status_code == 201
        assert response.get_json()["withdrawal"]["method"] == "EASYPAISA"

    @pytest.mark.parametrize("payload, status", [
        ({"amount": 100, "method": "BANK", "details": BANK_DETAILS}, 400),
        ({"amount": 10000, "method": "BANK", "details": BANK_DETAILS}, 400),
        ({"amount": 1000, "method": "PAYPAL", "details": BANK_DETAILS}, 400),
        ({"amount": 1000, "method": "BANK", "details": {}}, 400),
    ])
    def test_rejected_requests(self, app, member_client, api_data, payload, status):
        response = member_client.post("/api/mlm/withdrawals", json=payload)

        assert response.status_code == status
        assert response.get_json()["success"] is False
        assert balance_of(app, api_data["funded"]) == Decimal("5000")

    def test_body_must_be_json(self, member_client):
        response = member_client.post("/api/mlm/withdrawals", data="amount=1000")

        assert response.status_code == 400
        assert response.get_json()["error"] == "Request body must be JSON"


# =============================================================================
# TEST CLASS: admin endpoints
# =============================================================================

class TestAdminApi:

    def test_analytics(self, admin_client):
        body = admin_client.get("/api/admin/mlm/analytics").get_json()

        assert body["success"] is True
        assert body["analytics"]["members"]["total"] == 9

    def test_rule_crud(self, admin_client):
        duplicate = admin_client.post("/api/admin/mlm/rules", json={
            "name": "Again", "type": "SALE", "level": 1, "percentage": 8,
        })
        created = admin_client.post("/api/admin/mlm/rules", json={
            "name": "Leadership Bonus", "type": "BONUS", "level": 1, "percentage": 1,
        })
        rule_id = created.get_json()["rule"]["id"]
        updated = admin_client.put(f"/api/admin/mlm/rules/{rule_id}", json={"percentage": 1.5})
        listing = admin_client.get("/api/admin/mlm/rules").get_json()
        deleted = admin_client.delete(f"/api/admin/mlm/rules/{rule_id}")
        missing = admin_client.delete(f"/api/admin/mlm/rules/{rule_id}")

        assert duplicate.status_code == 409
        assert created.status_code == 201
        assert updated.get_json()["rule"]["percentage"] == 1.5
        assert len(listing["rulesByType"]["SALE"]) == 5
        assert len(listing["rulesByType"]["BONUS"]) == 1
        assert deleted.status_code == 200
        assert missing.status_code == 404

    def test_settings(self, admin_client):
        current = admin_client.get("/api/admin/mlm/settings").get_json()
        invalid = admin_client.put("/api/admin/mlm/settings", json={"maxLevels": 20})
        updated = admin_client.put("/api/admin/mlm/settings", json={"withdrawalFeePercent": 5})

        assert current["settings"]["maxLevels"] == 5
        assert invalid.status_code == 400
        assert updated.get_json()["settings"]["withdrawalFeePercent"] == 5.0

    def test_order_status_and_commission_actions(self, app, admin_client, api_data):
        """
        TEST: Admin confirms Gita's order, re-processes it, then acts on a commission.
        """
        with app.app_context():
            order_id = OrderHelper.create_order(api_data["chain"][-1], "10000").id

        confirmed = admin_client.put(f"/api/admin/mlm/orders/{order_id}/status", json={"status": "CONFIRMED"})
        again = admin_client.post(f"/api/admin/mlm/orders/{order_id}/commissions")
        listing = admin_client.get("/api/admin/mlm/commissions?status=PENDING").get_json()

        assert confirmed.status_code == 200
        assert confirmed.get_json()["commissions"]["count"] == 5
        assert again.get_json()["result"]["processed"] is False
        assert listing["total"] == 5
        assert listing["stats"]["pending"]["amount"] == 2100.0

        commission_id = confirmed.get_json()["commissions"]["commissions"][0]["id"]
        approved = admin_client.put(f"/api/admin/mlm/commissions/{commission_id}", json={"action": "approve"})
        twice = admin_client.put(f"/api/admin/mlm/commissions/{commission_id}", json={"action": "approve"})
        unknown = admin_client.put(f"/api/admin/mlm/commissions/{commission_id}", json={"action": "explode"})

        assert approved.get_json()["commission"]["status"] == "APPROVED"
        assert twice.status_code == 409
        assert unknown.status_code == 400
        assert balance_of(app, api_data["chain"][5]) == Decimal("1000")

    def test_order_status_requires_status(self, app, admin_client, api_data):
        with app.app_context():
            order_id = OrderHelper.create_order(api_data["chain"][-1], "10000").id

        response = admin_client.put(f"/api/admin/mlm/orders/{order_id}/status", json={})

        assert response.status_code == 400
        with app.app_context():
            assert db.session.get(Order, order_id).status is OrderStatus.PENDING

    def test_withdrawal_reject_refunds(self, app, client, api_data):
        login(client, api_data["funded"])
        withdrawal = client.post("/api/mlm/withdrawals", json={
            "amount": 1000, "method": "BANK", "details": BANK_DETAILS,
        }).get_json()["withdrawal"]

        logout(client)
        login(client, api_data["admin"])
        listing = client.get("/api/admin/mlm/withdrawals?status=PENDING").get_json()
        rejected = client.put(f"/api/admin/mlm/withdrawals/{withdrawal['id']}",
                              json={"action": "reject", "reason": "Wrong account title"})

        assert listing["total"] == 1
        assert listing["data"][0]["user"]["id"] == api_data["funded"]
        body = rejected.get_json()
        assert body["withdrawal"]["status"] == "REJECTED"
        assert body["withdrawal"]["notes"] == "Wrong account title"
        assert balance_of(app, api_data["funded"]) == Decimal("5000")

    def test_withdrawal_pay_flow(self, app, client, api_data):
        login(client, api_data["funded"])
        withdrawal_id = client.post("/api/mlm/withdrawals", json={
            "amount": 1000, "method": "CRYPTO",
            "details": {"cryptoAddress": "TQn9Y2khEsLJW1ChVWFMSMeRDow5KcbLSE", "cryptoNetwork": "TRC20"},
        }).get_json()["withdrawal"]["id"]

        login(client, api_data["admin"])
        pay_early = client.put(f"/api/admin/mlm/withdrawals/{withdrawal_id}", json={"action": "pay"})
        approved = client.put(f"/api/admin/mlm/withdrawals/{withdrawal_id}", json={"action": "approve"})
        paid = client.put(f"/api/admin/mlm/withdrawals/{withdrawal_id}", json={"action": "pay"})

        assert pay_early.status_code == 409
        assert approved.get_json()["withdrawal"]["status"] == "APPROVED"
        assert paid.get_json()["withdrawal"]["status"] == "PAID"
        with app.app_context():
            wallet = Wallet.query.filter_by(member_id=api_data["funded"]).first()
            assert wallet.total_withdrawn == Decimal("1000")
            assert wallet.balance == Decimal("4000")

    def test_members(self, admin_client, api_data):
        gita = api_data["chain"][-1]

        search = admin_client.get("/api/admin/mlm/members?search=gita").get_json()
        updated = admin_client.put(f"/api/admin/mlm/members/{gita}", json={"isMLMEnabled": False})
        cycle = admin_client.put(f"/api/admin/mlm/members/{api_data['chain'][0]}", json={"sponsorId": gita})

        assert search["total"] == 1
        assert search["data"][0]["id"] == gita
        assert updated.get_json()["member"]["isMLMEnabled"] is False
        assert cycle.status_code == 409
