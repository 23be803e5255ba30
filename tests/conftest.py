from decimal import Decimal
from types import SimpleNamespace

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from core.breaker import breaker
from core.get_db import Base
from models.enums import PropertyStatus, UserRole
from models.models import Customer, Project, Property, User
from schemas.schema import BookingCreateSchema
from services.booking_service import BookingService


@pytest.fixture
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'crm_test.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


def _user(name: str, role: UserRole, is_active: bool = True) -> User:
    return User(
        full_name=name.title(),
        email=f"{name}@crm.test",
        role=role,
        is_active=is_active,
    )


@pytest.fixture(autouse=True)
def reset_breaker():
    breaker._close()
    yield
    breaker._close()


@pytest.fixture
async def seed(session_factory):
    # Seeded rows live outside the test session so a rollback there
    # does not expire them.
    users = {
        "admin": _user("admin", UserRole.ADMIN),
        "manager": _user("manager", UserRole.MANAGER),
        "sales": _user("sales", UserRole.SALES),
        "other_sales": _user("other sales", UserRole.SALES),
        "accountant": _user("accountant", UserRole.ACCOUNTANT),
        "support": _user("support", UserRole.SUPPORT),
        "marketing": _user("marketing", UserRole.MARKETING),
        "inactive": _user("inactive", UserRole.SALES, is_active=False),
    }
    project = Project(code="SKY", name="Sky Garden", commission_rate=Decimal("2.50"))
    plain_project = Project(code="RIV", name="Riverside", commission_rate=None)
    async with session_factory() as db:
        db.add_all([*users.values(), project, plain_project])
        await db.flush()

        properties = [
            Property(
                project_id=project.id, code=f"SKY-A-{n:02d}", building="A", floor=n
            )
            for n in range(1, 6)
        ]
        riverside = Property(
            project_id=plain_project.id, code="RIV-B-01", building="B"
        )
        sold = Property(
            project_id=project.id, code="SKY-SOLD", status=PropertyStatus.SOLD
        )
        customer = Customer(full_name="Nguyen Van An", phone="0901234567")
        other_customer = Customer(full_name="Tran Thi Binh", phone="0907654321")
        db.add_all([*properties, riverside, sold, customer, other_customer])
        await db.commit()

    return SimpleNamespace(
        **users,
        project=project,
        plain_project=plain_project,
        properties=properties,
        riverside=riverside,
        sold=sold,
        customer=customer,
        other_customer=other_customer,
    )


@pytest.fixture
def make_booking(db, seed):
    async def _make(
        property=None,
        user=None,
        agreed_price="2500000000",
        customer=None,
        **extra,
    ):
        data = BookingCreateSchema(
            property_id=(property or seed.properties[0]).id,
            customer_id=(customer or seed.customer).id,
            agreed_price=Decimal(agreed_price),
            **extra,
        )
        return await BookingService(db).create_booking(data, user or seed.sales)

    return _make
