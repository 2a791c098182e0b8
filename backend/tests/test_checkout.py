from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

from sqlmodel import select

from conftest import (
    BOLETO_LINE,
    CARD,
    CUSTOMER,
    PIX_IMAGE,
    PIX_PAYLOAD,
    FakeGateway,
    auth_headers,
    make_course,
    make_document,
    make_ebook,
    make_user,
)
from edustore.api.deps import get_gateway
from edustore.enums import ItemKind, OrderStatus, PaymentMethod, PaymentStatus
from edustore.integrations.asaas import AsaasGateway
from edustore.integrations.payment_gateway import CardDetails, CustomerProfile
from edustore.main import app
from edustore.models import Entitlement, ItemRef, Order, OrderItem, User
from edustore.services.checkout_service import (
    CheckoutCommand,
    create_checkout,
    due_date_for,
    holder_info,
    parse_vendor_datetime,
)

URL = "/api/v1/checkout/create"


def _orders(db) -> list[Order]:
    db.expire_all()
    return list(db.exec(select(Order)).all())


def _entitlements(db) -> list[Entitlement]:
    db.expire_all()
    return list(db.exec(select(Entitlement)).all())


def test_pix_checkout_for_ebook_returns_transfer_code(client, db, gateway):
    user = make_user(db)
    ebook = make_ebook(db, price=4990)

    r = client.post(
        URL,
        headers=auth_headers(user),
        json={"ebookId": ebook.id, "paymentMethod": "PIX", "customer": CUSTOMER},
    )
    assert r.status_code == 200
    body = r.json()
    assert body["code"] == 0
    data = body["data"]
    assert data["status"] == "PENDING"
    assert data["paymentStatus"] == "PENDING"
    assert data["pix"]["payload"] == PIX_PAYLOAD
    assert data["pix"]["qrCodeImage"] == PIX_IMAGE
    assert data["pix"]["expirationDate"] == "2026-10-20 23:59:59"
    assert data["boleto"] is None
    assert data["accessToken"] is None

    order = data["order"]
    assert order["totalAmount"] == 4990
    assert order["pixCode"] == PIX_PAYLOAD
    assert order["items"] == [
        {"kind": "EBOOK", "itemId": ebook.id, "title": "Guia de Redação ENEM", "price": 4990}
    ]
    due = datetime.fromisoformat(order["dueDate"])
    created = datetime.fromisoformat(order["createdAt"])
    assert abs((due - created) - timedelta(minutes=30)) < timedelta(seconds=5)

    # No entitlement until the payment is confirmed.
    assert _entitlements(db) == []
    spec = gateway.specs[0]
    assert spec.external_reference == str(data["orderId"])
    assert spec.value == 4990
    assert spec.method == PaymentMethod.pix


def test_card_checkout_confirmed_enrolls_once_even_on_retry(client, db, gateway):
    user = make_user(db)
    course = make_course(db)
    payload = {
        "courseId": course.id,
        "paymentMethod": "CREDIT_CARD",
        "customer": CUSTOMER,
        "creditCard": CARD,
    }

    r = client.post(URL, headers=auth_headers(user), json=payload)
    assert r.status_code == 200
    data = r.json()["data"]
    assert data["status"] == "COMPLETED"
    assert data["paymentStatus"] == "CONFIRMED"
    assert data["card"] == {"status": "CONFIRMED"}
    assert data["order"]["paidAt"] is not None

    rows = _entitlements(db)
    assert len(rows) == 1
    assert (rows[0].user_id, rows[0].item_kind, rows[0].item_id) == (user.id, "COURSE", course.id)
    assert rows[0].expires_at is None

    # Client retries the identical request.
    r = client.post(URL, headers=auth_headers(user), json=payload)
    assert r.status_code == 409
    assert r.json()["code"] == 409101
    assert len(_entitlements(db)) == 1
    assert len(_orders(db)) == 1


def test_concurrent_card_checkouts_grant_single_enrollment(db, gateway):
    user = make_user(db)
    course = make_course(db)
    command = CheckoutCommand(
        ref=ItemRef(kind=ItemKind.course, id=course.id),
        method=PaymentMethod.credit_card,
        customer=CustomerProfile(name="Ana Souza", email="ana@example.com", cpf_cnpj="24971563792"),
        card=CardDetails(
            holder_name="ANA SOUZA",
            number="5162306000829472",
            expiry_month="05",
            expiry_year="2030",
            ccv="318",
        ),
    )

    async def _both():
        return await asyncio.gather(
            create_checkout(session=db, gateway=gateway, command=command, current_user=user),
            create_checkout(session=db, gateway=gateway, command=command, current_user=user),
        )

    results = asyncio.run(_both())

    assert [r.order.payment_status for r in results] == [PaymentStatus.confirmed] * 2
    assert len(_entitlements(db)) == 1


def test_checkout_rejected_when_already_enrolled(client, db, gateway):
    user = make_user(db)
    course = make_course(db)
    db.add(Entitlement(user_id=user.id, item_kind=ItemKind.course, item_id=course.id))
    db.commit()

    r = client.post(
        URL,
        headers=auth_headers(user),
        json={"courseId": course.id, "paymentMethod": "PIX", "customer": CUSTOMER},
    )
    assert r.status_code == 409
    assert r.json()["code"] == 409101
    assert _orders(db) == []
    assert gateway.calls == []


def test_checkout_rejected_when_document_already_purchased(client, db):
    user = make_user(db)
    document = make_document(db)
    db.add(
        Entitlement(
            user_id=user.id,
            item_kind=ItemKind.document,
            item_id=document.id,
            expires_at=datetime.now(timezone.utc) + timedelta(days=30),
        )
    )
    db.commit()

    r = client.post(
        URL,
        headers=auth_headers(user),
        json={"documentId": document.id, "paymentMethod": "PIX", "customer": CUSTOMER},
    )
    assert r.status_code == 409
    assert r.json()["code"] == 409102


def test_boleto_single_installment_is_plain_charge(client, db, gateway):
    user = make_user(db)
    course = make_course(db, price=29900)

    r = client.post(
        URL,
        headers=auth_headers(user),
        json={
            "courseId": course.id,
            "paymentMethod": "BOLETO",
            "customer": CUSTOMER,
            "installments": 1,
        },
    )
    assert r.status_code == 200
    data = r.json()["data"]
    assert data["boleto"]["url"].startswith("https://sandbox.asaas.com/b/pdf/")
    assert data["boleto"]["barcode"] == BOLETO_LINE
    assert data["order"]["boletoUrl"] == data["boleto"]["url"]

    spec = gateway.specs[0]
    assert spec.installment_count == 1
    assert spec.is_installment is False
    vendor_payload = AsaasGateway.build_charge_payload(spec)
    assert "installmentCount" not in vendor_payload
    assert "installmentValue" not in vendor_payload

    due = datetime.fromisoformat(data["order"]["dueDate"])
    created = datetime.fromisoformat(data["order"]["createdAt"])
    assert abs((due - created) - timedelta(days=7)) < timedelta(seconds=5)


def test_item_reference_must_be_exactly_one(client, db, gateway):
    user = make_user(db)
    course = make_course(db)
    ebook = make_ebook(db)

    r = client.post(
        URL,
        headers=auth_headers(user),
        json={"courseId": course.id, "ebookId": ebook.id, "paymentMethod": "PIX", "customer": CUSTOMER},
    )
    assert r.status_code == 400
    assert r.json()["code"] == 400101

    r = client.post(
        URL, headers=auth_headers(user), json={"paymentMethod": "PIX", "customer": CUSTOMER}
    )
    assert r.status_code == 400
    assert _orders(db) == []
    assert gateway.calls == []


def test_request_shape_errors_are_422(client, db):
    user = make_user(db)
    r = client.post(
        URL,
        headers=auth_headers(user),
        json={"courseId": 1, "paymentMethod": "CASH", "customer": {**CUSTOMER, "cpfCnpj": "123"}},
    )
    assert r.status_code == 422
    assert r.json()["code"] == 422000


def test_unknown_or_unpublished_item_is_not_found(client, db):
    user = make_user(db)
    hidden = make_course(db, is_published=False)

    for course_id in (hidden.id, 42):
        r = client.post(
            URL,
            headers=auth_headers(user),
            json={"courseId": course_id, "paymentMethod": "PIX", "customer": CUSTOMER},
        )
        assert r.status_code == 404
        assert r.json()["code"] == 404101


def test_free_items_are_not_sold(client, db):
    user = make_user(db)
    course = make_course(db, price=0)
    r = client.post(
        URL,
        headers=auth_headers(user),
        json={"courseId": course.id, "paymentMethod": "PIX", "customer": CUSTOMER},
    )
    assert r.status_code == 400


def test_anonymous_checkout_requires_registration(client, db):
    course = make_course(db)
    r = client.post(URL, json={"courseId": course.id, "paymentMethod": "PIX", "customer": CUSTOMER})
    assert r.status_code == 401


def test_checkout_with_registration_creates_account(client, db, gateway):
    ebook = make_ebook(db)
    r = client.post(
        URL,
        json={
            "ebookId": ebook.id,
            "paymentMethod": "PIX",
            "customer": CUSTOMER,
            "registration": {
                "name": "Bruno Lima",
                "email": "Bruno@Example.com",
                "password": "s3nha-forte",
                "cpfCnpj": "529.982.247-25",
            },
        },
    )
    assert r.status_code == 200
    data = r.json()["data"]
    assert data["accessToken"]
    assert data["expiresIn"] > 0

    db.expire_all()
    user = db.exec(select(User).where(User.email == "bruno@example.com")).one()
    assert user.cpf_cnpj == "52998224725"
    assert _orders(db)[0].user_id == user.id

    # The returned token works for status polling.
    r = client.get(
        f"/api/v1/checkout/status/{data['orderId']}",
        headers={"Authorization": f"Bearer {data['accessToken']}"},
    )
    assert r.status_code == 200


def test_registration_with_existing_email_conflicts(client, db, gateway):
    make_user(db, "ana@example.com")
    ebook = make_ebook(db)
    r = client.post(
        URL,
        json={
            "ebookId": ebook.id,
            "paymentMethod": "PIX",
            "customer": CUSTOMER,
            "registration": {"name": "Ana", "email": "ANA@example.com", "password": "s3nha-forte"},
        },
    )
    assert r.status_code == 409
    assert r.json()["code"] == 409201
    assert _orders(db) == []
    assert gateway.calls == []


def test_unconfigured_gateway_rejects_before_any_write(client, db):
    app.dependency_overrides[get_gateway] = lambda: FakeGateway(configured=False)
    ebook = make_ebook(db)
    r = client.post(
        URL,
        json={
            "ebookId": ebook.id,
            "paymentMethod": "PIX",
            "customer": CUSTOMER,
            "registration": {"name": "Carla", "email": "carla@example.com", "password": "s3nha-forte"},
        },
    )
    assert r.status_code == 503
    assert r.json()["code"] == 503001
    assert _orders(db) == []
    db.expire_all()
    assert db.exec(select(User)).all() == []


def test_customer_sync_failure_creates_no_order(client, db):
    app.dependency_overrides[get_gateway] = lambda: FakeGateway(fail_on={"reconcile_customer"})
    user = make_user(db)
    course = make_course(db)
    r = client.post(
        URL,
        headers=auth_headers(user),
        json={"courseId": course.id, "paymentMethod": "PIX", "customer": CUSTOMER},
    )
    assert r.status_code == 502
    assert _orders(db) == []


def test_charge_failure_marks_order_failed(client, db):
    failing = FakeGateway(fail_on={"open_charge"})
    app.dependency_overrides[get_gateway] = lambda: failing
    user = make_user(db)
    course = make_course(db)

    r = client.post(
        URL,
        headers=auth_headers(user),
        json={"courseId": course.id, "paymentMethod": "BOLETO", "customer": CUSTOMER},
    )
    assert r.status_code == 502
    assert r.json()["message"] == "open_charge failed: Transação não autorizada"

    [order] = _orders(db)
    assert order.status == OrderStatus.canceled
    assert order.payment_status == PaymentStatus.failed
    assert order.failure_reason == "open_charge failed: Transação não autorizada"
    assert failing.canceled == []


def test_declined_card_fails_order_and_cancels_charge(client, db):
    failing = FakeGateway(fail_on={"pay_with_card"})
    app.dependency_overrides[get_gateway] = lambda: failing
    user = make_user(db)
    course = make_course(db)

    r = client.post(
        URL,
        headers=auth_headers(user),
        json={"courseId": course.id, "paymentMethod": "CREDIT_CARD", "customer": CUSTOMER, "creditCard": CARD},
    )
    assert r.status_code == 502

    [order] = _orders(db)
    assert order.payment_status == PaymentStatus.failed
    assert failing.canceled == [order.charge_id]
    assert _entitlements(db) == []


def test_card_timeout_leaves_order_open_until_webhook_confirms(client, db):
    flaky = FakeGateway(unknown_on={"pay_with_card"})
    app.dependency_overrides[get_gateway] = lambda: flaky
    user = make_user(db)
    course = make_course(db)

    r = client.post(
        URL,
        headers=auth_headers(user),
        json={"courseId": course.id, "paymentMethod": "CREDIT_CARD", "customer": CUSTOMER, "creditCard": CARD},
    )
    assert r.status_code == 502
    body = r.json()
    assert body["code"] == 502002
    order_id = body["data"]["orderId"]

    # The card may have been charged: the order stays open and the charge is kept.
    [order] = _orders(db)
    assert order.id == order_id
    assert order.payment_status == PaymentStatus.pending
    assert order.failure_reason is None
    assert order.charge_id
    assert flaky.canceled == []
    assert _entitlements(db) == []

    r = client.post(
        "/api/v1/webhooks/asaas",
        json={
            "id": "evt_card_late",
            "event": "PAYMENT_CONFIRMED",
            "payment": {"id": order.charge_id, "status": "CONFIRMED", "externalReference": str(order_id)},
        },
    )
    assert r.status_code == 200

    [order] = _orders(db)
    assert (order.status, order.payment_status) == (OrderStatus.completed, PaymentStatus.confirmed)
    [row] = _entitlements(db)
    assert (row.user_id, row.item_id) == (user.id, course.id)


def test_charge_creation_timeout_leaves_order_pending(client, db):
    flaky = FakeGateway(unknown_on={"open_charge"})
    app.dependency_overrides[get_gateway] = lambda: flaky
    user = make_user(db)
    ebook = make_ebook(db)

    r = client.post(
        URL,
        headers=auth_headers(user),
        json={"ebookId": ebook.id, "paymentMethod": "PIX", "customer": CUSTOMER},
    )
    assert r.status_code == 502
    assert r.json()["code"] == 502002

    [order] = _orders(db)
    assert order.payment_status == PaymentStatus.pending
    assert order.charge_id is None
    assert "cancel_charge" not in flaky.calls


def test_registration_retry_after_customer_sync_failure(client, db):
    flaky = FakeGateway(fail_on={"reconcile_customer"})
    app.dependency_overrides[get_gateway] = lambda: flaky
    ebook = make_ebook(db)
    payload = {
        "ebookId": ebook.id,
        "paymentMethod": "PIX",
        "customer": CUSTOMER,
        "registration": {"name": "Bruno Lima", "email": "bruno@example.com", "password": "s3nha-forte"},
    }

    r = client.post(URL, json=payload)
    assert r.status_code == 502
    assert r.json()["data"] is None
    db.expire_all()
    assert db.exec(select(User)).all() == []

    # The same request goes through once the gateway recovers.
    flaky.fail_on.clear()
    r = client.post(URL, json=payload)
    assert r.status_code == 200
    assert r.json()["data"]["accessToken"]


def test_charge_failure_after_registration_returns_account_token(client, db):
    app.dependency_overrides[get_gateway] = lambda: FakeGateway(fail_on={"open_charge"})
    ebook = make_ebook(db)

    r = client.post(
        URL,
        json={
            "ebookId": ebook.id,
            "paymentMethod": "PIX",
            "customer": CUSTOMER,
            "registration": {"name": "Bruno Lima", "email": "bruno@example.com", "password": "s3nha-forte"},
        },
    )
    assert r.status_code == 502
    data = r.json()["data"]
    assert data["expiresIn"] > 0

    # The new account can look up its failed order and log in again.
    r = client.get(
        f"/api/v1/checkout/status/{data['orderId']}",
        headers={"Authorization": f"Bearer {data['accessToken']}"},
    )
    assert r.status_code == 200
    assert r.json()["data"]["paymentStatus"] == "FAILED"


def test_boleto_barcode_failure_keeps_charge(client, db):
    flaky = FakeGateway(fail_on={"get_bank_slip_code"})
    app.dependency_overrides[get_gateway] = lambda: flaky
    user = make_user(db)
    course = make_course(db)

    r = client.post(
        URL,
        headers=auth_headers(user),
        json={"courseId": course.id, "paymentMethod": "BOLETO", "customer": CUSTOMER},
    )
    assert r.status_code == 200
    data = r.json()["data"]
    assert data["paymentStatus"] == "PENDING"
    assert data["boleto"]["url"] == f"https://sandbox.asaas.com/b/pdf/{data['chargeId']}"
    assert data["boleto"]["barcode"] is None
    assert flaky.canceled == []

    [order] = _orders(db)
    assert order.payment_status == PaymentStatus.pending
    assert order.boleto_url == data["boleto"]["url"]
    assert order.boleto_barcode is None


def test_card_under_review_moves_to_processing(client, db):
    app.dependency_overrides[get_gateway] = lambda: FakeGateway(card_status="AWAITING_RISK_ANALYSIS")
    user = make_user(db)
    course = make_course(db)

    r = client.post(
        URL,
        headers=auth_headers(user),
        json={"courseId": course.id, "paymentMethod": "CREDIT_CARD", "customer": CUSTOMER, "creditCard": CARD},
    )
    data = r.json()["data"]
    assert data["status"] == "PROCESSING"
    assert data["paymentStatus"] == "PROCESSING"
    assert data["card"]["status"] == "AWAITING_RISK_ANALYSIS"
    assert _entitlements(db) == []


def test_card_without_card_data_returns_invoice_url(client, db, gateway):
    user = make_user(db)
    course = make_course(db)
    r = client.post(
        URL,
        headers=auth_headers(user),
        json={"courseId": course.id, "paymentMethod": "CREDIT_CARD", "customer": CUSTOMER, "installments": 3},
    )
    data = r.json()["data"]
    assert data["paymentStatus"] == "PENDING"
    assert data["invoiceUrl"] == f"https://sandbox.asaas.com/i/{data['chargeId']}"
    assert gateway.card_payments == []
    assert gateway.specs[0].is_installment is True


def test_card_holder_defaults_and_remote_ip(client, db, gateway):
    user = make_user(db)
    course = make_course(db)
    client.post(
        URL,
        headers=auth_headers(user),
        json={"courseId": course.id, "paymentMethod": "CREDIT_CARD", "customer": CUSTOMER, "creditCard": CARD},
    )
    charge_id, card, holder, remote_ip = gateway.card_payments[0]
    assert card.number == "5162306000829472"
    assert holder.postal_code == "00000000"
    assert holder.address_number == "S/N"
    assert holder.phone == "11987654321"
    assert holder.cpf_cnpj == "24971563792"
    assert remote_ip == "testclient"


def test_pix_installments_are_rejected(client, db, gateway):
    user = make_user(db)
    ebook = make_ebook(db)
    r = client.post(
        URL,
        headers=auth_headers(user),
        json={"ebookId": ebook.id, "paymentMethod": "PIX", "customer": CUSTOMER, "installments": 2},
    )
    assert r.status_code == 400
    assert gateway.calls == []


def test_status_visible_to_owner_and_admin_only(client, db):
    owner = make_user(db, "ana@example.com")
    other = make_user(db, "outro@example.com")
    admin = make_user(db, "admin@example.com", is_superuser=True)
    ebook = make_ebook(db)
    r = client.post(
        URL,
        headers=auth_headers(owner),
        json={"ebookId": ebook.id, "paymentMethod": "PIX", "customer": CUSTOMER},
    )
    order_id = r.json()["data"]["orderId"]
    status_url = f"/api/v1/checkout/status/{order_id}"

    r = client.get(status_url, headers=auth_headers(owner))
    assert r.status_code == 200
    assert r.json()["data"]["id"] == order_id
    assert r.json()["data"]["paymentStatus"] == "PENDING"

    assert client.get(status_url, headers=auth_headers(admin)).status_code == 200
    assert client.get(status_url, headers=auth_headers(other)).status_code == 404
    assert client.get(status_url).status_code == 401
    assert client.get("/api/v1/checkout/status/1", headers=auth_headers(owner)).status_code == 404


def test_admin_reconcile_applies_remote_charge_state(client, db, gateway):
    owner = make_user(db)
    admin = make_user(db, "admin@example.com", is_superuser=True)
    ebook = make_ebook(db)
    r = client.post(
        URL,
        headers=auth_headers(owner),
        json={"ebookId": ebook.id, "paymentMethod": "PIX", "customer": CUSTOMER},
    )
    data = r.json()["data"]
    gateway.remote_status[data["chargeId"]] = "RECEIVED"
    reconcile_url = f"/api/v1/checkout/reconcile/{data['orderId']}"

    assert client.post(reconcile_url, headers=auth_headers(owner)).status_code == 403

    r = client.post(reconcile_url, headers=auth_headers(admin))
    assert r.status_code == 200
    assert r.json()["data"]["outcome"] == "applied"
    assert r.json()["data"]["paymentStatus"] == "CONFIRMED"
    assert r.json()["data"]["granted"] == 1

    rows = _entitlements(db)
    assert len(rows) == 1
    assert rows[0].download_url == "https://files.example.com/redacao.pdf"
    assert rows[0].expires_at is not None

    # A second run finds nothing left to do.
    r = client.post(reconcile_url, headers=auth_headers(admin))
    assert r.json()["data"]["outcome"] == "ignored"


def test_manual_confirmation_route(client, db):
    owner = make_user(db)
    admin = make_user(db, "admin@example.com", is_superuser=True)
    course = make_course(db)
    r = client.post(
        URL,
        headers=auth_headers(owner),
        json={"courseId": course.id, "paymentMethod": "BOLETO", "customer": CUSTOMER},
    )
    order_id = r.json()["data"]["orderId"]

    assert client.post(f"/api/v1/test/confirm-payment/{order_id}", headers=auth_headers(owner)).status_code == 403

    r = client.post(f"/api/v1/test/confirm-payment/{order_id}", headers=auth_headers(admin))
    assert r.status_code == 200
    assert r.json()["data"]["outcome"] == "applied"

    r = client.get(f"/api/v1/checkout/status/{order_id}", headers=auth_headers(owner))
    assert r.json()["data"]["status"] == "COMPLETED"
    assert len(_entitlements(db)) == 1

    r = client.post("/api/v1/test/confirm-payment/1", headers=auth_headers(admin))
    assert r.status_code == 404


def test_order_item_snapshot_has_single_reference(client, db):
    user = make_user(db)
    document = make_document(db)
    client.post(
        URL,
        headers=auth_headers(user),
        json={"documentId": document.id, "paymentMethod": "PIX", "customer": CUSTOMER},
    )
    db.expire_all()
    [item] = db.exec(select(OrderItem)).all()
    assert item.item_kind == ItemKind.document
    assert item.document_id == document.id
    assert item.course_id is None and item.ebook_id is None
    assert item.price == document.price


def test_due_date_policy_and_helpers():
    now = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)
    assert due_date_for(PaymentMethod.credit_card, now) == now
    assert due_date_for(PaymentMethod.pix, now) == now + timedelta(minutes=30)
    assert due_date_for(PaymentMethod.boleto, now) == now + timedelta(days=7)

    assert parse_vendor_datetime("2026-10-19 23:59:59") == datetime(2026, 10, 20, 2, 59, 59, tzinfo=timezone.utc)
    assert parse_vendor_datetime("not a date") is None
    assert parse_vendor_datetime(None) is None

    holder = holder_info(
        CustomerProfile(
            name="Ana",
            email="ana@example.com",
            cpf_cnpj="24971563792",
            phone="1133334444",
            postal_code="01310100",
            address_number="1578",
        )
    )
    assert (holder.postal_code, holder.address_number, holder.phone) == ("01310100", "1578", "1133334444")
