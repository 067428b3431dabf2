import os
import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec

# Settings are read at import time, so the environment is prepared before goalvault is imported
PRIVATE_KEY = ec.generate_private_key(ec.SECP256R1())
PUBLIC_PEM = PRIVATE_KEY.public_key().public_bytes(
    serialization.Encoding.PEM, serialization.PublicFormat.SubjectPublicKeyInfo
).decode()
APP_ID = "test-app-id"

os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["PRIVY_APP_ID"] = APP_ID
os.environ["PRIVY_PUBLIC_VERIFICATION_KEY"] = PUBLIC_PEM

import httpx  # noqa: E402
import jwt  # noqa: E402
import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from goalvault.core.database import Base, get_async_session  # noqa: E402
from goalvault.deposits.errors import GoalMissing  # noqa: E402
from goalvault.deposits.network import NetworkGuard  # noqa: E402
from goalvault.deposits.watcher import ConfirmationWatcher  # noqa: E402
from goalvault.main import app  # noqa: E402
from goalvault.schemas.goal import GoalRead  # noqa: E402

ALICE = "did:privy:alice"
BOB = "did:privy:bob"
CHAIN_ID = 8453
TOKEN = "0x833589fCD6eDb6E08f4c7C32D4f71b54bdA02913"
VAULT = "0x7BfA7C4f149E7415b73bdeDfe609237e29CBF34A"
WALLET_ADDRESS = "0x1111111111111111111111111111111111111111"


def make_token(sub=ALICE, audience=APP_ID, issuer="privy.io", expires_in=timedelta(hours=1), key=PRIVATE_KEY):
    now = datetime.now(timezone.utc)
    payload = {"iss": issuer, "aud": audience, "iat": now, "exp": now + expires_in}
    if sub is not None:
        payload["sub"] = sub
    return jwt.encode(payload, key, algorithm="ES256")


def auth_headers(sub=ALICE):
    return {"Authorization": f"Bearer {make_token(sub=sub)}"}


def make_goal(target="500", funded="0", goal_id=None, title="Trip", vault=VAULT, user_id=ALICE):
    now = datetime.now(timezone.utc)
    return GoalRead(
        id=goal_id or uuid.uuid4(),
        user_id=user_id,
        title=title,
        target_amount=Decimal(target),
        current_funded_amount=Decimal(funded),
        vault_address=vault,
        created_at=now,
        updated_at=now,
    )


# ------------------------------------------------------------
# Goals API against an in-memory database
# ------------------------------------------------------------
@pytest_asyncio.fixture
async def db_engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(db_engine):
    return async_sessionmaker(db_engine, expire_on_commit=False)


@pytest_asyncio.fixture
async def client(session_factory):
    async def override_session():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_async_session] = override_session
    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


# ------------------------------------------------------------
# Deposit side: wallet, chain and goals API doubles
# ------------------------------------------------------------
class FakeClock:
    """Monotonic clock advanced only by the watcher's sleeps."""

    def __init__(self):
        self.now = 0.0
        self.sleeps = []

    def __call__(self):
        return self.now

    async def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds


class FakeWallet:
    """
    In-memory wallet and chain.

    ``outcomes`` decides what happens to each kind of transaction once sent:
    1 mined, 0 reverted, None never mined.
    """

    def __init__(self, address=WALLET_ADDRESS, chain_id=CHAIN_ID):
        self.address = address
        self.chain_id = chain_id
        self.block_number = 100
        self.outcomes = {"approval": 1, "deposit": 1}
        self.broadcast_errors = {}
        self.switch_error = None
        self.switch_requests = []
        self.sent = []
        self.receipts = {}

    async def get_address(self):
        return self.address

    async def get_chain_id(self):
        return self.chain_id

    async def switch_chain(self, chain_id):
        self.switch_requests.append(chain_id)
        if self.switch_error is not None:
            raise self.switch_error
        self.chain_id = chain_id

    async def send_approve(self, token_address, spender, amount_units):
        return self._send("approval", (token_address, spender, amount_units))

    async def send_deposit(self, vault_address, amount_units, receiver):
        return self._send("deposit", (vault_address, amount_units, receiver))

    def _send(self, kind, args):
        if kind in self.broadcast_errors:
            raise self.broadcast_errors[kind]
        tx_hash = "0x" + f"{len(self.sent) + 1:064x}"
        self.sent.append((kind, args, tx_hash))
        status = self.outcomes.get(kind)
        if status is not None:
            self.receipts[tx_hash] = {"status": status, "blockNumber": self.block_number}
        return tx_hash

    def hashes(self, kind):
        return [tx_hash for sent_kind, _, tx_hash in self.sent if sent_kind == kind]

    async def get_transaction_receipt(self, tx_hash):
        return self.receipts.get(tx_hash)

    async def get_block_number(self):
        return self.block_number


class FakeGoalsApi:
    def __init__(self, *goals):
        self.goals = {str(goal.id): goal for goal in goals}
        self.created = []
        self.funding_calls = []
        self.funding_error = None
        self.create_error = None
        self.gate = None

    async def get_goal(self, goal_id):
        if self.gate is not None:
            await self.gate.wait()
        try:
            return self.goals[str(goal_id)]
        except KeyError:
            raise GoalMissing(f"Goal {goal_id} not found.", status_code=404)

    async def create_goal(self, title, target_amount, vault_address, description=None, end_date=None):
        if self.create_error is not None:
            raise self.create_error
        goal = make_goal(target=target_amount, title=title, vault=vault_address)
        self.goals[str(goal.id)] = goal
        self.created.append(goal)
        return goal

    async def update_funding(self, goal_id, deposited_amount, tx_hash=None):
        self.funding_calls.append((str(goal_id), deposited_amount, tx_hash))
        if self.funding_error is not None:
            raise self.funding_error
        goal = self.goals[str(goal_id)]
        goal = goal.model_copy(
            update={"current_funded_amount": goal.current_funded_amount + Decimal(deposited_amount)}
        )
        self.goals[str(goal_id)] = goal
        return goal


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def wallet():
    return FakeWallet()


@pytest.fixture
def watcher(wallet, clock):
    return ConfirmationWatcher(wallet, confirmations=1, poll_interval=2.0, timeout=10.0, sleep=clock.sleep, clock=clock)


@pytest.fixture
def guard():
    return NetworkGuard(CHAIN_ID, chain_name="Base")
