import copy
import json
from collections import defaultdict
from typing import Any

import pytest

from app.auth.verify import auth_dependency, privileged_dependency
from app.db.document_store import (
    ConcurrentModificationError,
    DocumentNotFoundError,
    WriteBatch,
    _dumps,
    new_document_id,
)
from app.infrastructure.audit import AuditLogger
from app.services.collaboration.lifecycle_service import (
    CollaborationLifecycleService,
    get_lifecycle_service,
)
from app.services.collaboration.scheduling_service import (
    SchedulingService,
    get_scheduling_service,
)
from app.services.matching.match_engine import MatchEngine, get_match_engine
from app.services.notifications.mailgun_client import NotificationError
from app.services.notifications.notifier import Notifier
from app.services.payments.flutterwave_client import (
    PaymentGatewayError,
    TransactionVerification,
    TransferResult,
)
from app.services.redis_client import LockError


class FakeDocumentStore:
    """In-memory DocumentStore with the same version and batch semantics as Postgres."""

    def __init__(self):
        self.collections: dict[str, dict[str, dict[str, Any]]] = defaultdict(dict)
        self.versions: dict[tuple[str, str], int] = {}

    @staticmethod
    def _normalize(data: dict[str, Any]) -> dict[str, Any]:
        # Same JSON round-trip the JSONB column applies
        return json.loads(_dumps({k: v for k, v in data.items() if k not in ("id", "version")}))

    def _document(self, collection: str, doc_id: str) -> dict[str, Any]:
        data = copy.deepcopy(self.collections[collection][doc_id])
        return {**data, "id": doc_id, "version": self.versions[(collection, doc_id)]}

    @staticmethod
    def _matches(doc: dict[str, Any], filters) -> bool:
        for field_name, op, value in filters or []:
            actual = doc.get(field_name)
            if op == "==" and actual != value:
                return False
            if op == "in" and actual not in list(value):
                return False
        return True

    def seed(self, collection: str, data: dict[str, Any], doc_id: str | None = None) -> str:
        doc_id = doc_id or new_document_id()
        self.collections[collection][doc_id] = self._normalize(data)
        self.versions[(collection, doc_id)] = 1
        return doc_id

    def raw(self, collection: str, doc_id: str) -> dict[str, Any] | None:
        if doc_id not in self.collections[collection]:
            return None
        return self._document(collection, doc_id)

    def all(self, collection: str) -> list[dict[str, Any]]:
        return [self._document(collection, doc_id) for doc_id in self.collections[collection]]

    async def get(self, collection: str, doc_id: str) -> dict[str, Any] | None:
        return self.raw(collection, doc_id)

    async def query(
        self, collection, filters=None, *, order_by=None, descending=False, limit=None
    ) -> list[dict[str, Any]]:
        docs = [d for d in self.all(collection) if self._matches(d, filters)]
        if order_by:
            docs.sort(key=lambda d: str(d.get(order_by) or ""), reverse=descending)
        if limit is not None:
            docs = docs[:limit]
        return docs

    async def count(self, collection, filters=None) -> int:
        return len(await self.query(collection, filters))

    async def create(self, collection, data, doc_id=None) -> dict[str, Any]:
        doc_id = self.seed(collection, data, doc_id)
        return self._document(collection, doc_id)

    def _apply_update(self, collection, doc_id, changes, expected_version) -> int:
        key = (collection, doc_id)
        if doc_id not in self.collections[collection]:
            if expected_version is not None:
                raise ConcurrentModificationError(collection, doc_id, expected_version)
            raise DocumentNotFoundError(collection, doc_id)
        if expected_version is not None and self.versions[key] != expected_version:
            raise ConcurrentModificationError(collection, doc_id, expected_version)
        self.collections[collection][doc_id].update(self._normalize(changes))
        self.versions[key] += 1
        return self.versions[key]

    async def update(self, collection, doc_id, changes, expected_version=None) -> int:
        return self._apply_update(collection, doc_id, changes, expected_version)

    async def delete(self, collection, doc_id) -> bool:
        if self.collections[collection].pop(doc_id, None) is None:
            return False
        del self.versions[(collection, doc_id)]
        return True

    def batch(self) -> WriteBatch:
        return WriteBatch()

    async def commit(self, batch: WriteBatch) -> None:
        snapshot = (copy.deepcopy(self.collections), dict(self.versions))
        try:
            for op in batch.operations:
                if op.kind == "create":
                    self.seed(op.collection, op.data, op.doc_id)
                else:
                    self._apply_update(op.collection, op.doc_id, op.data, op.expected_version)
        except Exception:
            self.collections, self.versions = snapshot
            raise


class FakeLocks:
    def __init__(self):
        self.held: dict[str, str] = {}
        self.unavailable = False
        self.acquired: list[str] = []

    async def acquire_lock(self, name: str, token: str, ttl_s: int) -> bool:
        if self.unavailable:
            raise LockError("redis down")
        if name in self.held:
            return False
        self.held[name] = token
        self.acquired.append(name)
        return True

    async def release_lock(self, name: str, token: str) -> bool:
        if self.held.get(name) == token:
            del self.held[name]
            return True
        return False


class FakeMailer:
    def __init__(self):
        self.sent = []
        self.fail = False

    async def send(self, message) -> bool:
        if self.fail:
            raise NotificationError("mailgun down", status_code=503)
        self.sent.append(message)
        return True

    def subjects(self) -> list[str]:
        return [m.subject for m in self.sent]


class FakeGateway:
    def __init__(self):
        self.verification: TransactionVerification | None = None
        self.verify_error: PaymentGatewayError | None = None
        self.transfer_error: PaymentGatewayError | None = None
        self.transfers = []
        self.verified: list[str] = []

    async def verify_transaction(self, transaction_id: str) -> TransactionVerification:
        self.verified.append(transaction_id)
        if self.verify_error:
            raise self.verify_error
        return self.verification

    async def initiate_transfer(self, request) -> TransferResult:
        self.transfers.append(request)
        if self.transfer_error:
            raise self.transfer_error
        return TransferResult(
            transfer_id=f"tr-{len(self.transfers)}", status="NEW", reference=request.reference
        )


@pytest.fixture
def store():
    return FakeDocumentStore()


@pytest.fixture
def locks():
    return FakeLocks()


@pytest.fixture
def mailer():
    return FakeMailer()


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def notifier(mailer):
    return Notifier(mailer)


@pytest.fixture
def lifecycle_service(store, notifier, gateway, locks):
    return CollaborationLifecycleService(
        store=store, notifier=notifier, gateway=gateway, locks=locks, audit=AuditLogger(store)
    )


@pytest.fixture
def scheduling_service(store, notifier, locks):
    return SchedulingService(
        store=store, notifier=notifier, locks=locks, audit=AuditLogger(store)
    )


@pytest.fixture
def match_engine(store, notifier, locks):
    return MatchEngine(store=store, notifier=notifier, locks=locks)


# ----------------------------------------------------------------------
# Seed data: a guest, a podcast with its owner and service, a legend
# ----------------------------------------------------------------------

GUEST_ID = "guest-1"
OWNER_ID = "owner-1"
PODCAST_ID = "podcast-1"
PODCAST_SERVICE_ID = "service-podcast"
LEGEND_ID = "legend-1"
LEGEND_SERVICE_ID = "service-legend"
ARTIST_ID = "artist-1"
ADMIN_ID = "admin-1"

PAYOUT_DETAILS = {"accountBank": "044", "accountNumber": "0690000031", "beneficiaryName": "X"}


@pytest.fixture
def directory(store):
    store.seed(
        "users",
        {
            "email": "guest@example.com",
            "displayName": "Grace Guest",
            "isGuest": True,
            "isVerifiedGuest": False,
            "guestTopics": ["ai", "growth"],
            "payoutDetails": PAYOUT_DETAILS,
        },
        GUEST_ID,
    )
    store.seed(
        "users",
        {"email": "owner@example.com", "displayName": "Olu Owner", "payoutDetails": PAYOUT_DETAILS},
        OWNER_ID,
    )
    store.seed(
        "users",
        {
            "email": "legend@example.com",
            "displayName": "Lara Legend",
            "role": "legend",
            "payoutDetails": PAYOUT_DETAILS,
        },
        LEGEND_ID,
    )
    store.seed("users", {"email": "artist@example.com", "displayName": "Ade Artist"}, ARTIST_ID)
    store.seed("users", {"email": "admin@example.com", "role": "admin"}, ADMIN_ID)
    store.seed(
        "podcasts",
        {"ownerId": OWNER_ID, "title": "Tech Talk", "status": "approved"},
        PODCAST_ID,
    )
    store.seed(
        "services",
        {
            "ownerType": "podcast",
            "ownerId": PODCAST_ID,
            "title": "Guest slot",
            "price": 100.0,
            "isActive": True,
        },
        PODCAST_SERVICE_ID,
    )
    store.seed(
        "services",
        {
            "ownerType": "legend",
            "ownerId": LEGEND_ID,
            "title": "Verse feature",
            "price": 100.0,
            "isActive": True,
        },
        LEGEND_SERVICE_ID,
    )
    return store


def seed_collaboration(store: FakeDocumentStore, **overrides) -> str:
    """A paid guest appearance (guest pays podcast) in the given state."""
    data = {
        "type": "guest_appearance",
        "status": "pending_agreement",
        "buyerId": GUEST_ID,
        "guestId": GUEST_ID,
        "podcastId": PODCAST_ID,
        "podcastOwnerId": OWNER_ID,
        "serviceId": PODCAST_SERVICE_ID,
        "price": 100.0,
        "paymentDirection": "guest_pays_podcast",
        "initiatedBy": GUEST_ID,
        "proposedTopics": ["ai"],
        "negotiationHistory": [],
        "deliverables": [],
        "rescheduleCount": 0,
        "maxReschedules": 2,
    }
    data.update(overrides)
    return store.seed("collaborations", data)


@pytest.fixture
def auth_override():
    def _override():
        return {"sub": "user-123"}

    return _override


@pytest.fixture
def apply_auth_override(auth_override):
    def _apply(app):
        app.dependency_overrides[auth_dependency] = auth_override

    return _apply


@pytest.fixture
def api(store, notifier, gateway, locks):
    """
    The FastAPI app wired to the in-memory fakes.

    ``api.as_user(user_id)`` switches the authenticated caller.
    """
    from fastapi.testclient import TestClient

    from app.main import app

    app.dependency_overrides[get_lifecycle_service] = lambda: CollaborationLifecycleService(
        store=store, notifier=notifier, gateway=gateway, locks=locks, audit=AuditLogger(store)
    )
    app.dependency_overrides[get_scheduling_service] = lambda: SchedulingService(
        store=store, notifier=notifier, locks=locks, audit=AuditLogger(store)
    )
    app.dependency_overrides[get_match_engine] = lambda: MatchEngine(
        store=store, notifier=notifier, locks=locks
    )
    app.dependency_overrides[privileged_dependency] = lambda: {
        "sub": None,
        "privileged_via": "cron_secret",
    }

    client = TestClient(app)

    def as_user(user_id: str):
        app.dependency_overrides[auth_dependency] = lambda: {"sub": user_id}
        return client

    client.as_user = as_user
    yield client
    app.dependency_overrides.clear()
