import os
import tempfile

import pytest

_TMP_DIR = tempfile.mkdtemp(prefix="billtracker-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_TMP_DIR, 'test.db')}"
os.environ["UPLOAD_DIR"] = os.path.join(_TMP_DIR, "uploads")
os.environ["JWT_SECRET"] = "test-secret"
os.environ["BCRYPT_ROUNDS"] = "4"
os.environ["MAIL_SUPPRESS_SEND"] = "1"

from fastapi.testclient import TestClient  # noqa: E402

import auth  # noqa: E402
import main  # noqa: E402
import models  # noqa: E402
from database import Base, SessionLocal, engine  # noqa: E402


@pytest.fixture(autouse=True)
def fresh_schema():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def client():
    with TestClient(main.app) as c:
        yield c


def make_user(db, email="ravi@billtracker.in", password="secret1", role="staff",
              full_name="Ravi Kumar", staff_id=None, is_active=True):
    user = models.User(
        email=email,
        hashed_password=auth.get_password_hash(password),
        full_name=full_name,
        staff_id=staff_id,
        role=role,
        is_active=is_active,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def auth_headers(user):
    return {"Authorization": f"Bearer {auth.token_for(user)}"}


def make_ward(db, corporate_name="Zone A", ward_name="Ward 1", mohallas=("Civil Lines",)):
    ward = models.Ward(corporate_name=corporate_name, ward_name=ward_name, mohallas=list(mohallas))
    db.add(ward)
    db.commit()
    db.refresh(ward)
    return ward


def make_property(db, ward, property_id="PID00001", owner_name="Ramesh Gupta"):
    prop = models.Property(
        property_id=property_id,
        ward_id=ward.id,
        mohalla=(ward.mohallas or [""])[0],
        owner_name=owner_name,
        address="1 Main Road",
        delivery_status="Pending",
    )
    db.add(prop)
    db.commit()
    db.refresh(prop)
    return prop


def make_delivery(db, prop, staff, data_source="owner", delivery_date=None, correction_status="None"):
    delivery = models.Delivery(
        property_id=prop.id,
        staff_id=staff.id,
        data_source=data_source,
        photo_url="http://localhost:8080/uploads/delivery-photos/x.jpg",
        lng=80.95,
        lat=26.85,
        correction_status=correction_status,
    )
    if delivery_date is not None:
        delivery.delivery_date = delivery_date
    db.add(delivery)
    db.commit()
    db.refresh(delivery)
    return delivery
