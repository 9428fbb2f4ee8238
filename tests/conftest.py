"""
Pytest configuration and fixtures.

Every test gets its own SQLite file, a fixed team of users and a recording
email notifier installed as the default dispatcher.
"""
import os

os.environ["APP_ENV"] = "development"
os.environ["DB_TYPE"] = "sqlite"
os.environ.setdefault("JWT_ACCESS_SECRET_KEY", "test-secret-key")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./test_quotations.db")

from dataclasses import dataclass, field
from decimal import Decimal
from types import SimpleNamespace
from typing import Any

import pytest
import pytest_asyncio

from app.core.db import Base, make_engine, make_session_factory
from app.core.security import hash_password
from app.models.billing.quotation_models import Quotation
from app.models.enums.approval_level import ApprovalLevel, ApprovalDecision
from app.models.enums.quotation_status import QuotationStatus
from app.models.users.user_models import User
from app.schemas.billing.quotation_schemas import QuotationCreate, QuotationItemCreate, TransitionRequest
from app.services.billing.approval_service import request_approval, approve
from app.services.billing.quotation_service import create_quotation, transition_quotation, mark_reviewed
from app.services.billing.quotation_store import get_quotation_row
from app.services.notifications.dispatcher import NotificationDispatcher, set_dispatcher
from app.services.notifications.notifier import EmailNotifier, NotificationKind


# ==================== Notifications ====================

@dataclass
class SentEmail:
    kind: NotificationKind
    to: str
    quotation: Any
    payload: dict = field(default_factory=dict)


class RecordingNotifier(EmailNotifier):
    """Keeps every email in memory instead of sending it."""

    def __init__(self):
        self.sent: list[SentEmail] = []

    async def _record(self, kind, recipient, quotation, payload) -> bool:
        self.sent.append(SentEmail(kind, recipient.email, quotation, payload))
        return True

    def recipients(self, kind: NotificationKind) -> set[str]:
        return {m.to for m in self.sent if m.kind is kind}

    async def send_approval_request_email(self, recipient, quotation, **payload):
        return await self._record(NotificationKind.APPROVAL_REQUEST, recipient, quotation, payload)

    async def send_approval_decision_email(self, recipient, quotation, **payload):
        return await self._record(NotificationKind.APPROVAL_DECISION, recipient, quotation, payload)

    async def send_next_approval_level_email(self, recipient, quotation, **payload):
        return await self._record(NotificationKind.NEXT_APPROVAL_LEVEL, recipient, quotation, payload)

    async def send_approval_escalation_email(self, recipient, quotation, **payload):
        return await self._record(NotificationKind.APPROVAL_ESCALATION, recipient, quotation, payload)

    async def send_overdue_approval_email(self, recipient, quotation, **payload):
        return await self._record(NotificationKind.OVERDUE_APPROVAL, recipient, quotation, payload)

    async def send_revision_request_email(self, recipient, quotation, **payload):
        return await self._record(NotificationKind.REVISION_REQUEST, recipient, quotation, payload)

    async def send_revision_decision_email(self, recipient, quotation, **payload):
        return await self._record(NotificationKind.REVISION_DECISION, recipient, quotation, payload)

    async def send_revision_implemented_email(self, recipient, quotation, **payload):
        return await self._record(NotificationKind.REVISION_IMPLEMENTED, recipient, quotation, payload)


@pytest.fixture
def outbox():
    return RecordingNotifier()


@pytest.fixture(autouse=True)
def dispatcher(outbox):
    dispatcher = NotificationDispatcher(outbox)
    previous = set_dispatcher(dispatcher)
    yield dispatcher
    set_dispatcher(previous)


# ==================== Database ====================

@pytest_asyncio.fixture
async def engine(tmp_path):
    # file-backed so several sessions see the same data
    engine = make_engine(f"sqlite+aiosqlite:///{tmp_path / 'quotations.db'}")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return make_session_factory(engine)


@pytest_asyncio.fixture
async def db(session_factory, dispatcher):
    async with session_factory() as session:
        yield session
        await dispatcher.drain()


# ==================== Users ====================

# every seeded user logs in with this; hashed once, bcrypt is slow
PASSWORD = "s3cret-pass"
PASSWORD_HASH = hash_password(PASSWORD)


@pytest_asyncio.fixture
async def users(db):
    def user(username, full_name, *roles):
        return User(
            username=username,
            full_name=full_name,
            password_hash=PASSWORD_HASH,
            roles=list(roles),
            is_active=True,
            token_version=0,
        )

    team = SimpleNamespace(
        sales=user("sales@example.com", "Sam Sales", "sales_rep"),
        other_sales=user("sales2@example.com", "Olive Other", "sales_rep"),
        manager=user("manager@example.com", "Mia Manager", "manager"),
        director=user("director@example.com", "Dan Director", "admin"),
        executive=user("ceo@example.com", "Eve Executive", "super_admin"),
        client=user("client@example.com", "Carl Client", "client"),
    )
    db.add_all(list(vars(team).values()))
    await db.commit()
    return team


# ==================== Quotations ====================

def quotation_payload(users, **overrides) -> QuotationCreate:
    data = dict(
        title="Office fit-out",
        client_id=users.client.id,
        client_name="Carl Client",
        client_email="client@example.com",
        terms="Net 30",
        validity_period=30,
        tax_rate=Decimal("0.10"),
        items=[QuotationItemCreate(name="Workstation", quantity=2, unit_price=Decimal("50.00"))],
    )
    data.update(overrides)
    return QuotationCreate(**data)


# order in which make_quotation walks the lifecycle
_PATH = (
    QuotationStatus.draft,
    QuotationStatus.pending_review,
    QuotationStatus.pending_approval,
    QuotationStatus.approved,
    QuotationStatus.active,
    QuotationStatus.sent,
    QuotationStatus.accepted,
)


@pytest.fixture
def make_quotation(db, users):
    """
    Create a quotation (subtotal 100.00, tax 10%, total 110.00) owned by the
    sales rep and drive it through the real services up to `status`.
    """

    async def _make(status: QuotationStatus = QuotationStatus.draft, **overrides):
        q = await create_quotation(db, quotation_payload(users, **overrides), users.sales)
        steps = _PATH[1:_PATH.index(status) + 1]

        for target in steps:
            if target is QuotationStatus.pending_review:
                await transition_quotation(db, q.id, TransitionRequest(target_status=target), users.sales)
            elif target is QuotationStatus.pending_approval:
                await mark_reviewed(db, q.id, users.manager)
                await transition_quotation(db, q.id, TransitionRequest(target_status=target), users.manager)
            elif target is QuotationStatus.approved:
                await request_approval(db, q.id, users.manager, level=ApprovalLevel.executive)
                await approve(db, q.id, users.executive, decision=ApprovalDecision.approved)
            elif target is QuotationStatus.accepted:
                await transition_quotation(db, q.id, TransitionRequest(target_status=target), users.client)
            else:
                await transition_quotation(db, q.id, TransitionRequest(target_status=target), users.sales)

        return await get_quotation_row(db, q.id)

    return _make


@pytest.fixture
def fetch(session_factory):
    """Load a quotation through a fresh session, bypassing the test session's identity map."""

    async def _fetch(quotation_id: int) -> Quotation:
        async with session_factory() as session:
            return await get_quotation_row(session, quotation_id)

    return _fetch
