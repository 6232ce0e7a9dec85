"""Tests for the order status state machine."""

from datetime import timedelta
from decimal import Decimal

import pytest

from conftest import as_user
from core.database import SessionLocal
from core.errors import Expired, InvalidTransition, NotFound, ValidationError
from models.artwork import Artwork
from models.giftcard import GiftCard
from models.order import Order, OrderStatus
from utils import giftcards, order_state
from utils.order_state import OrderEvent, next_status
from utils.orders import create_order
from utils.payments import mark_paid
from utils.validation import utcnow

LEGAL = {
    (OrderStatus.PENDING, OrderEvent.PAYMENT_CONFIRMED): OrderStatus.PAID,
    (OrderStatus.PAID, OrderEvent.REQUEST_CONFIRMATION): OrderStatus.AWAITING_CONFIRMATION,
    (OrderStatus.AWAITING_CONFIRMATION, OrderEvent.CONFIRM): OrderStatus.CONFIRMED,
    (OrderStatus.CONFIRMED, OrderEvent.SHIP): OrderStatus.SHIPPED,
    (OrderStatus.SHIPPED, OrderEvent.DELIVER): OrderStatus.DELIVERED,
}
NON_TERMINAL = [s for s in OrderStatus if s not in (OrderStatus.DELIVERED, OrderStatus.CANCELLED)]


def _timestamps(order):
    return (
        order.paid_at, order.artist_notified_at, order.artist_confirmed_at, order.admin_confirmed_at,
        order.shipped_at, order.delivered_at, order.cancelled_at,
    )


@pytest.fixture
def place(db, make_artwork, shipping):
    def _place(artwork_id="a1", item_type="ORIGINAL", payment_method="card", **kwargs):
        make_artwork(artwork_id, price="10000")
        line = {"artwork_id": artwork_id, "item_type": item_type, "quantity": 1}
        if item_type == "PRINT":
            line["print_size"] = "A3"
        return create_order(db, "buyer-1", [line], shipping, payment_method, **kwargs)
    return _place


def _advance(db, order, to):
    """Drive an order forward to status `to` through legal events."""
    if to == OrderStatus.PENDING:
        return order
    mark_paid(db, order, "test")
    if to == OrderStatus.PAID:
        return order
    order_state.request_confirmation(db, order.id)
    if to == OrderStatus.AWAITING_CONFIRMATION:
        return order
    order_state.confirm(db, order.id, "admin-1")
    if to == OrderStatus.CONFIRMED:
        return order
    order_state.ship(db, order.id, "TRK1")
    if to == OrderStatus.SHIPPED:
        return order
    order_state.deliver(db, order.id)
    return order


class TestTransitionTable:
    @pytest.mark.parametrize("status", list(OrderStatus))
    @pytest.mark.parametrize("event", list(OrderEvent))
    def test_every_combination(self, status, event):
        if event == OrderEvent.CANCEL:
            if status in NON_TERMINAL:
                assert next_status(status, event) == OrderStatus.CANCELLED
            else:
                with pytest.raises(InvalidTransition):
                    next_status(status, event)
        elif (status, event) in LEGAL:
            assert next_status(status, event) == LEGAL[(status, event)]
        else:
            with pytest.raises(InvalidTransition) as exc:
                next_status(status, event)
            assert exc.value.from_status == status.value
            assert exc.value.event == event.value

    @pytest.mark.parametrize("status", [OrderStatus.PENDING, OrderStatus.PAID, OrderStatus.AWAITING_CONFIRMATION])
    def test_illegal_ship_changes_nothing(self, db, place, status):
        order = _advance(db, place(), status)
        before = _timestamps(order)
        with pytest.raises(InvalidTransition):
            order_state.ship(db, order.id, "TRK9")
        db.expire_all()
        reloaded = db.get(Order, order.id)
        assert reloaded.status == status
        assert reloaded.tracking_number is None
        assert _timestamps(reloaded) == before


class TestForwardPath:
    def test_stamps_each_state(self, db, place, outbox):
        order = place()
        mark_paid(db, order, "test")
        assert order.paid_at is not None

        order_state.request_confirmation(db, order.id)
        assert order.status == OrderStatus.AWAITING_CONFIRMATION
        assert order.artist_notified_at is not None
        assert len(order.artist_confirmation_token) == 64
        assert any(m["to"] == "artist@example.com" for m in outbox)

        order_state.confirm(db, order.id, "admin-1")
        assert order.admin_confirmed_at is not None
        assert order.admin_confirmed_by == "admin-1"

        order_state.ship(db, order.id, "  TRK123 ", carrier="TCS", notes="Crated", shipped_by="admin-1")
        assert order.status == OrderStatus.SHIPPED
        assert order.tracking_number == "TRK123"
        assert order.carrier == "TCS"
        assert order.admin_notes == "Shipping: Crated"

        order_state.deliver(db, order.id, notes="Signed by buyer")
        assert order.status == OrderStatus.DELIVERED
        assert order.delivered_at is not None
        assert order.admin_notes == "Shipping: Crated\nDelivery: Signed by buyer"

    def test_ship_requires_tracking(self, db, place):
        order = _advance(db, place(), OrderStatus.CONFIRMED)
        with pytest.raises(ValidationError):
            order_state.ship(db, order.id, "   ")
        db.expire_all()
        assert db.get(Order, order.id).status == OrderStatus.CONFIRMED

    def test_delivered_is_terminal(self, db, place):
        order = _advance(db, place(), OrderStatus.DELIVERED)
        with pytest.raises(InvalidTransition):
            order_state.cancel(db, order.id)

    def test_set_notes_any_status(self, db, place):
        order = _advance(db, place(), OrderStatus.DELIVERED)
        order_state.set_notes(db, order.id, "Buyer asked for a certificate")
        assert order.admin_notes == "Buyer asked for a certificate"
        assert order.status == OrderStatus.DELIVERED

    def test_missing_order(self, db):
        with pytest.raises(NotFound):
            order_state.confirm(db, "nope", "admin-1")


class TestConcurrentTransition:
    def test_stale_status_is_rejected(self, db, place):
        order = place()
        stale_session = SessionLocal()
        try:
            stale = stale_session.get(Order, order.id)
            assert stale.status == OrderStatus.PENDING

            order_state.cancel(db, order.id, "changed my mind")

            with pytest.raises(InvalidTransition) as exc:
                order_state.transition(stale_session, stale, OrderEvent.PAYMENT_CONFIRMED, {"paid_at": utcnow()})
            assert exc.value.from_status == "CANCELLED"
        finally:
            stale_session.close()

        db.expire_all()
        reloaded = db.get(Order, order.id)
        assert reloaded.status == OrderStatus.CANCELLED
        assert reloaded.paid_at is None


class TestCancel:
    @pytest.mark.parametrize("status", NON_TERMINAL)
    def test_cancel_releases_originals(self, db, place, status):
        order = _advance(db, place(), status)
        order_state.cancel(db, order.id, "Buyer request")
        db.expire_all()
        reloaded = db.get(Order, order.id)
        assert reloaded.status == OrderStatus.CANCELLED
        assert reloaded.cancelled_at is not None
        assert reloaded.cancellation_reason == "Buyer request"
        assert db.get(Artwork, "a1").in_stock is True

    def test_cancel_print_only_leaves_stock_alone(self, db, place):
        order = place(item_type="PRINT")
        artwork = db.get(Artwork, "a1")
        artwork.in_stock = False
        db.commit()

        order_state.cancel(db, order.id)
        db.expire_all()
        assert db.get(Artwork, "a1").in_stock is False

    def test_cancel_restores_gift_card(self, db, place):
        card = giftcards.issue(db, 4000)
        order = place(gift_card_code=card.code)
        db.expire_all()
        assert db.get(GiftCard, card.id).balance == Decimal("0")

        order_state.cancel(db, order.id)
        db.expire_all()
        restored = db.get(GiftCard, card.id)
        assert restored.balance == Decimal("4000")
        assert restored.is_redeemed is False

    def test_cancel_twice(self, db, place):
        order = place()
        order_state.cancel(db, order.id)
        with pytest.raises(InvalidTransition):
            order_state.cancel(db, order.id)

    def test_cancel_sends_buyer_email(self, db, place, outbox):
        order = place()
        order_state.cancel(db, order.id, "Out of budget")
        assert any("cancelled" in m["subject"] and m["to"] == "ayesha@example.com" for m in outbox)

    def test_email_failure_does_not_undo_cancel(self, db, place, monkeypatch):
        def _broken(*args, **kwargs):
            raise ConnectionError("smtp down")

        monkeypatch.setattr("utils.notifications.send_email_smtp", _broken)
        order = place()
        order_state.cancel(db, order.id)
        db.expire_all()
        assert db.get(Order, order.id).status == OrderStatus.CANCELLED


class TestArtistResponse:
    def test_confirm_via_token(self, db, place):
        order = _advance(db, place(), OrderStatus.AWAITING_CONFIRMATION)
        order_state.artist_respond(db, order.artist_confirmation_token, "confirm")
        assert order.status == OrderStatus.CONFIRMED
        assert order.artist_confirmed_at is not None
        assert order.admin_confirmed_at is None

    def test_decline_cancels(self, db, place):
        order = _advance(db, place(), OrderStatus.AWAITING_CONFIRMATION)
        order_state.artist_respond(db, order.artist_confirmation_token, "decline")
        db.expire_all()
        reloaded = db.get(Order, order.id)
        assert reloaded.status == OrderStatus.CANCELLED
        assert reloaded.cancellation_reason == order_state.ARTIST_DECLINE_REASON
        assert db.get(Artwork, "a1").in_stock is True

    def test_expired_token(self, db, place):
        order = _advance(db, place(), OrderStatus.AWAITING_CONFIRMATION)
        order.artist_confirmation_expires_at = utcnow() - timedelta(minutes=1)
        db.commit()
        with pytest.raises(Expired):
            order_state.artist_respond(db, order.artist_confirmation_token, "confirm")

    def test_reused_token(self, db, place):
        order = _advance(db, place(), OrderStatus.AWAITING_CONFIRMATION)
        token = order.artist_confirmation_token
        order_state.artist_respond(db, token, "confirm")
        with pytest.raises(InvalidTransition):
            order_state.artist_respond(db, token, "decline")

    def test_unknown_token(self, db):
        with pytest.raises(NotFound):
            order_state.artist_respond(db, "f" * 64, "confirm")

    def test_bad_action(self, db):
        with pytest.raises(ValidationError):
            order_state.artist_respond(db, "f" * 64, "maybe")


class TestOrderStateApi:
    def _order(self, client, buyer, shipping):
        body = {"items": [{"artwork_id": "a1"}], "shipping_address": shipping, "payment_method": "bank"}
        return client.post("/api/orders", json=body, headers=as_user(buyer.uid)).json()["order"]["id"]

    def test_admin_actions_need_admin(self, client, make_artwork, shipping, buyer):
        make_artwork("a1")
        order_id = self._order(client, buyer, shipping)
        for method, path in [
            ("post", f"/api/orders/{order_id}/request-confirmation"),
            ("put", f"/api/orders/{order_id}/confirm"),
            ("put", f"/api/orders/{order_id}/deliver"),
        ]:
            response = getattr(client, method)(path, headers=as_user(buyer.uid))
            assert response.status_code == 403

    def test_invalid_transition_body(self, client, make_artwork, shipping, buyer, admin):
        make_artwork("a1")
        order_id = self._order(client, buyer, shipping)
        response = client.put(f"/api/orders/{order_id}/ship", json={"tracking_number": "TRK1"}, headers=as_user(admin.uid))
        assert response.status_code == 409
        assert response.json()["error"] == "invalid_transition"
        assert response.json()["from"] == "PENDING"
        assert response.json()["event"] == "SHIP"

    def test_owner_can_cancel(self, client, make_artwork, shipping, buyer):
        make_artwork("a1")
        order_id = self._order(client, buyer, shipping)
        response = client.put(f"/api/orders/{order_id}/cancel", json={"reason": "Ordered twice"}, headers=as_user(buyer.uid))
        assert response.status_code == 200
        assert response.json()["order"]["status"] == "CANCELLED"

    def test_stranger_cannot_cancel(self, client, make_artwork, shipping, buyer, other_buyer):
        make_artwork("a1")
        order_id = self._order(client, buyer, shipping)
        response = client.put(f"/api/orders/{order_id}/cancel", headers=as_user(other_buyer.uid))
        assert response.status_code == 403

    def test_artist_link_is_public(self, client, db, make_artwork, shipping, buyer, admin):
        make_artwork("a1")
        order_id = self._order(client, buyer, shipping)
        client.post("/api/payments/confirm-bank-transfer", json={"order_id": order_id}, headers=as_user(admin.uid))
        client.post(f"/api/orders/{order_id}/request-confirmation", headers=as_user(admin.uid))

        db.expire_all()
        token = db.get(Order, order_id).artist_confirmation_token
        response = client.get("/api/orders/artist-confirm", params={"token": token, "action": "confirm"})
        assert response.status_code == 200
        assert response.json()["status"] == "CONFIRMED"

    def test_expired_artist_link(self, client, db, place):
        order = _advance(db, place(), OrderStatus.AWAITING_CONFIRMATION)
        order.artist_confirmation_expires_at = utcnow() - timedelta(hours=1)
        db.commit()
        response = client.get(
            "/api/orders/artist-confirm", params={"token": order.artist_confirmation_token, "action": "confirm"}
        )
        assert response.status_code == 410
        assert response.json()["error"] == "expired"
