"""Test configuration."""
import os
from collections.abc import AsyncIterator, Callable, Iterator
from decimal import Decimal
from pathlib import Path
from uuid import uuid4

from alembic import command
from alembic.config import Config
import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

# --- Default test environment
os.environ.setdefault("DATABASE_URL", "sqlite:///./fundflow_test.db")
os.environ.setdefault("FUNDFLOW_ENV", "dev")
os.environ.setdefault("MOBILE_MONEY_WEBHOOK_SECRET", "test-mobile-money-secret")
os.environ.setdefault("STRIPE_WEBHOOK_SECRET", "whsec_test_secret")
os.environ.setdefault("PHOTO_CHECK_ENABLED", "false")
os.environ.setdefault("PROMETHEUS_ENABLED", "false")

from fundflow.main import app  # noqa: E402
from fundflow.db import get_db  # noqa: E402
from fundflow.models import (  # noqa: E402
    Base,
    CommunityValidator,
    Milestone,
    MilestoneStatus,
    Project,
    ProjectCategory,
    ValidatorStatus,
)
from fundflow.services import notifications  # noqa: E402
from fundflow.services import settlement as settlement_service  # noqa: E402
from fundflow.services.fund_release import FundReleaseError, ReleaseReceipt  # noqa: E402

DB_PATH = Path("./fundflow_test.db")


def _run_migrations() -> None:
    cfg = Config(str(Path(__file__).resolve().parents[1] / "alembic.ini"))
    cfg.set_main_option("script_location", str(Path(__file__).resolve().parents[1] / "alembic"))
    cfg.set_main_option("sqlalchemy.url", os.environ["DATABASE_URL"])
    command.upgrade(cfg, "head")


# --- (1) Fresh database file per session
if DB_PATH.exists():
    DB_PATH.unlink()

engine = create_engine(
    os.environ["DATABASE_URL"],
    connect_args={"check_same_thread": False},
    future=True,
)
TestingSessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False,
                                   future=True, expire_on_commit=False)

# --- (2) Schema built through Alembic only
_run_migrations()


def _wipe_tables() -> None:
    with engine.begin() as conn:
        for table in reversed(Base.metadata.sorted_tables):
            conn.execute(table.delete())


@pytest.fixture
def db_session() -> Iterator[Session]:
    # Services commit per unit of work, so isolation comes from wiping rows.
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()
        _wipe_tables()


@pytest.fixture(autouse=True)
def override_db_dependency(db_session: Session) -> Iterator[None]:
    def _get_db() -> Iterator[Session]:
        yield db_session
    app.dependency_overrides[get_db] = _get_db
    yield
    app.dependency_overrides.pop(get_db, None)


@pytest.fixture
async def client() -> AsyncIterator[AsyncClient]:
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as async_client:
        yield async_client


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


class RecordingReleaser:
    """Fund releaser double recording every call."""

    def __init__(self) -> None:
        self.calls: list[tuple[int, int, list[int]]] = []
        self.fail = False

    def release(self, project_id, milestone_id, validation_ids) -> ReleaseReceipt:
        self.calls.append((project_id, milestone_id, list(validation_ids)))
        if self.fail:
            raise FundReleaseError("release endpoint unavailable")
        return ReleaseReceipt(reference=f"REL-test-{milestone_id}-{len(self.calls)}")


@pytest.fixture(autouse=True)
def releaser(monkeypatch) -> RecordingReleaser:
    fake = RecordingReleaser()
    monkeypatch.setattr(settlement_service, "get_fund_releaser", lambda: fake)
    return fake


@pytest.fixture
def make_project(db_session: Session) -> Callable[..., Project]:
    """Factory creating a project with ``milestones`` pending milestones."""

    def _factory(
        *,
        category: ProjectCategory = ProjectCategory.WATER,
        currency: str = "USD",
        target: str = "10000.00",
        milestones: int = 1,
        validators_required: int = 3,
        region_id: str = "ke",
    ) -> Project:
        project = Project(
            title=f"Borehole {uuid4().hex[:6]}",
            description="Community water point",
            target_amount=Decimal(target),
            current_amount=Decimal("0"),
            currency=currency,
            category=category,
            region_id=region_id,
            ngo_address=f"0xngo{uuid4().hex[:8]}",
            images=[],
        )
        for idx in range(1, milestones + 1):
            project.milestones.append(
                Milestone(
                    idx=idx,
                    title=f"Phase {idx}",
                    description="",
                    target_amount=Decimal("2500.00"),
                    current_amount=Decimal("0"),
                    status=MilestoneStatus.ACTIVE if idx == 1 else MilestoneStatus.PENDING,
                    validators_required=validators_required,
                )
            )
        db_session.add(project)
        db_session.commit()
        db_session.refresh(project)
        return project

    return _factory


@pytest.fixture
def make_validator(db_session: Session) -> Callable[..., CommunityValidator]:
    def _factory(*, status: ValidatorStatus = ValidatorStatus.ACTIVE, region_id: str = "ke") -> CommunityValidator:
        validator = CommunityValidator(
            wallet_address=f"0xval{uuid4().hex}",
            region_id=region_id,
            languages=["en", "sw"],
            status=status,
        )
        db_session.add(validator)
        db_session.commit()
        db_session.refresh(validator)
        return validator

    return _factory


@pytest.fixture
def session_factory() -> sessionmaker:
    """Factory for sessions independent from ``db_session`` (concurrent writers)."""

    return TestingSessionLocal


class BrokenNotifier:
    """Notifier double whose delivery always fails."""

    def __init__(self) -> None:
        self.attempts: list[str] = []

    def notify(self, stakeholders, message) -> None:
        self.attempts.append(message)
        raise RuntimeError("notification gateway unreachable")


@pytest.fixture
def broken_notifier(monkeypatch) -> BrokenNotifier:
    fake = BrokenNotifier()
    monkeypatch.setattr(notifications, "get_notifier", lambda: fake)
    return fake
