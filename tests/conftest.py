import os
import tempfile
from collections.abc import Generator
from datetime import datetime, timedelta

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

os.environ["ENVIRONMENT"] = "development"
os.environ["DATABASE_URL"] = "sqlite:///:memory:"

import ridepromo.models  # noqa: F401
from ridepromo.db.base_class import Base
from ridepromo.db.session import get_db
from ridepromo.main import app
from ridepromo.models.coupon import ApplicableFor, Coupon, DiscountType
from ridepromo.models.customer import Customer
from ridepromo.models.trip import Trip, TripStatus


@pytest.fixture()
def engine() -> Generator[Engine, None, None]:
    db_file = tempfile.NamedTemporaryFile(suffix=".db", delete=False)
    db_file.close()

    engine = create_engine(
        f"sqlite:///{db_file.name}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    Base.metadata.create_all(bind=engine)
    try:
        yield engine
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()
        os.unlink(db_file.name)


@pytest.fixture()
def session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture()
def db_session(session_factory: sessionmaker) -> Generator[Session, None, None]:
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def client(db_session: Session) -> Generator[TestClient, None, None]:
    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    app.state.limiter.reset()
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture()
def make_customer(db_session: Session):
    def _make(name: str = "Test Rider") -> Customer:
        customer = Customer(name=name)
        db_session.add(customer)
        db_session.commit()
        db_session.refresh(customer)
        return customer

    return _make


@pytest.fixture()
def make_trip(db_session: Session):
    def _make(customer: Customer, status: TripStatus = TripStatus.COMPLETED, vehicle_type: str = "car") -> Trip:
        trip = Trip(customer_id=customer.id, status=status, vehicle_type=vehicle_type, fare=250.0)
        db_session.add(trip)
        db_session.commit()
        db_session.refresh(trip)
        return trip

    return _make


@pytest.fixture()
def complete_rides(make_trip):
    def _complete(customer: Customer, count: int) -> None:
        for _ in range(count):
            make_trip(customer, status=TripStatus.COMPLETED)

    return _complete


@pytest.fixture()
def make_coupon(db_session: Session):
    def _make(code: str = "RIDE10", **overrides) -> Coupon:
        now = datetime.utcnow()
        fields = {
            "code": code.upper(),
            "description": f"{code} promotion",
            "discount_type": DiscountType.PERCENTAGE,
            "discount_value": 10.0,
            "applicable_vehicles": ["all"],
            "applicable_for": ApplicableFor.ALL_RIDES,
            "valid_from": now - timedelta(days=1),
            "valid_until": now + timedelta(days=30),
        }
        fields.update(overrides)
        coupon = Coupon(**fields)
        db_session.add(coupon)
        db_session.commit()
        db_session.refresh(coupon)
        return coupon

    return _make
