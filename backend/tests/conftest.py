from __future__ import annotations

import asyncio
import os
from collections.abc import Generator
from typing import Any

# Settings are read at import time.
os.environ.setdefault("PROJECT_NAME", "edustore-test")
os.environ.setdefault("POSTGRES_SERVER", "localhost")
os.environ.setdefault("POSTGRES_USER", "postgres")
os.environ["ENVIRONMENT"] = "local"
os.environ["ASAAS_API_KEY"] = ""
os.environ["ASAAS_WEBHOOK_TOKEN"] = ""

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402
from sqlmodel import Session, SQLModel, create_engine, delete  # noqa: E402

from edustore import crud  # noqa: E402
from edustore.api.deps import get_db, get_gateway  # noqa: E402
from edustore.api.errors import GatewayOutcomeUnknownError, GatewayRequestError  # noqa: E402
from edustore.core.security import issue_user_token  # noqa: E402
from edustore.enums import PaymentMethod  # noqa: E402
from edustore.integrations.asaas import charge_state  # noqa: E402
from edustore.integrations.payment_gateway import (  # noqa: E402
    BankSlipCode,
    Charge,
    InstantTransferCode,
)
from edustore.main import app  # noqa: E402
from edustore.models import (  # noqa: E402
    ApiIntegration,
    Course,
    Document,
    Ebook,
    Entitlement,
    GatewayEvent,
    Order,
    OrderItem,
    User,
)

PIX_PAYLOAD = "00020101021226820014br.gov.bcb.pix2560qrpix-h.bradesco.com.br/9d36b84f"
PIX_IMAGE = "iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAYAAAAfFcSJAAAADUlEQVR42mNk"
BOLETO_LINE = "23793.38128 60000.000003 00000.000400 1 95140000004990"


class FakeGateway:
    """
    In-memory payment gateway.

    fail_on: operation names that raise GatewayRequestError.
    unknown_on: operation names that raise GatewayOutcomeUnknownError.
    card_status: vendor status returned by pay_with_card.
    remote_status: vendor status returned by get_charge, per charge id.
    """

    def __init__(
        self,
        *,
        configured: bool = True,
        card_status: str = "CONFIRMED",
        fail_on: set[str] | None = None,
        unknown_on: set[str] | None = None,
    ) -> None:
        self.configured = configured
        self.card_status = card_status
        self.fail_on = set(fail_on or ())
        self.unknown_on = set(unknown_on or ())
        self.remote_status: dict[str, str] = {}
        self.specs: list[Any] = []
        self.card_payments: list[tuple[str, Any, Any, str | None]] = []
        self.canceled: list[str] = []
        self.calls: list[str] = []
        self._seq = 0

    async def _enter(self, op: str) -> None:
        self.calls.append(op)
        # Yield so concurrent checkouts interleave at every gateway call.
        await asyncio.sleep(0)
        if op in self.fail_on:
            raise GatewayRequestError(message=f"{op} failed: Transação não autorizada")
        if op in self.unknown_on:
            raise GatewayOutcomeUnknownError(
                message=f"{op} failed: no response from payment gateway, outcome unknown"
            )

    async def reconcile_customer(self, profile) -> str:
        await self._enter("reconcile_customer")
        return "cus_000005113026"

    async def open_charge(self, spec) -> Charge:
        await self._enter("open_charge")
        self._seq += 1
        charge_id = f"pay_{self._seq:012d}"
        self.specs.append(spec)
        return Charge(
            id=charge_id,
            status="PENDING",
            state=charge_state("PENDING"),
            value=spec.value,
            external_reference=spec.external_reference,
            invoice_url=f"https://sandbox.asaas.com/i/{charge_id}",
            bank_slip_url=(
                f"https://sandbox.asaas.com/b/pdf/{charge_id}"
                if spec.method == PaymentMethod.boleto
                else None
            ),
        )

    async def pay_with_card(self, charge_id, card, holder, *, remote_ip=None) -> Charge:
        await self._enter("pay_with_card")
        self.card_payments.append((charge_id, card, holder, remote_ip))
        return Charge(id=charge_id, status=self.card_status, state=charge_state(self.card_status))

    async def get_instant_transfer_code(self, charge_id) -> InstantTransferCode:
        await self._enter("get_instant_transfer_code")
        return InstantTransferCode(
            payload=PIX_PAYLOAD, encoded_image=PIX_IMAGE, expiration_date="2026-10-20 23:59:59"
        )

    async def get_bank_slip_code(self, charge_id) -> BankSlipCode:
        await self._enter("get_bank_slip_code")
        return BankSlipCode(identification_field=BOLETO_LINE, bar_code="23791951400000049903381")

    async def get_charge(self, charge_id) -> Charge:
        await self._enter("get_charge")
        status = self.remote_status.get(charge_id, "PENDING")
        return Charge(id=charge_id, status=status, state=charge_state(status))

    async def cancel_charge(self, charge_id) -> None:
        await self._enter("cancel_charge")
        self.canceled.append(charge_id)

    async def refund(self, charge_id, amount=None, description=None) -> None:
        await self._enter("refund")


@pytest.fixture(scope="session")
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    return engine


@pytest.fixture(scope="function")
def db(engine) -> Generator[Session, None, None]:
    with Session(engine) as session:
        yield session
        session.rollback()
        # Clean tables after each test (children first).
        session.exec(delete(GatewayEvent))
        session.exec(delete(Entitlement))
        session.exec(delete(OrderItem))
        session.exec(delete(Order))
        session.exec(delete(Course))
        session.exec(delete(Ebook))
        session.exec(delete(Document))
        session.exec(delete(ApiIntegration))
        session.exec(delete(User))
        session.commit()


@pytest.fixture(scope="function")
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture(scope="function")
def client(engine, db, gateway) -> Generator[TestClient, None, None]:
    def _override_get_db() -> Generator[Session, None, None]:
        with Session(engine) as session:
            yield session

    app.dependency_overrides[get_db] = _override_get_db
    app.dependency_overrides[get_gateway] = lambda: gateway
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


def make_user(
    db: Session, email: str = "ana@example.com", *, is_superuser: bool = False
) -> User:
    return crud.create_user(
        session=db,
        email=email,
        password="correct-horse",
        full_name="Ana Souza",
        cpf_cnpj="24971563792",
        is_superuser=is_superuser,
    )


def make_course(db: Session, *, price: int = 19900, is_published: bool = True) -> Course:
    course = Course(title="Cálculo I", description="Limites e derivadas", price=price, is_published=is_published)
    db.add(course)
    db.commit()
    db.refresh(course)
    return course


def make_ebook(db: Session, *, price: int = 4990) -> Ebook:
    ebook = Ebook(title="Guia de Redação ENEM", price=price, file_url="https://files.example.com/redacao.pdf")
    db.add(ebook)
    db.commit()
    db.refresh(ebook)
    return ebook


def make_document(db: Session, *, price: int = 1500) -> Document:
    document = Document(title="TCC Modelo ABNT", price=price, file_url="https://files.example.com/tcc.docx")
    db.add(document)
    db.commit()
    db.refresh(document)
    return document


def auth_headers(user: User) -> dict[str, str]:
    token, _ = issue_user_token(user.id)
    return {"Authorization": f"Bearer {token}"}


CUSTOMER = {
    "name": "Ana Souza",
    "email": "ana@example.com",
    "cpfCnpj": "249.715.637-92",
    "mobilePhone": "(11) 98765-4321",
}

CARD = {
    "holderName": "ANA SOUZA",
    "number": "5162 3060 0082 9472",
    "expiryMonth": "05",
    "expiryYear": "2030",
    "ccv": "318",
}
