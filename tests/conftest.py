"""
Pytest configuration and shared fixtures for the grooming admin tests.

Every test gets a fresh app bound to an in-memory SQLite database. Workflow
tests talk to that same app over HTTP through an httpx MockTransport that
forwards each request to the Flask test client.
"""
import datetime
import os

os.environ.setdefault("TESTING", "True")

import bcrypt  # noqa: E402
import httpx  # noqa: E402
import pytest  # noqa: E402
from flask import Flask  # noqa: E402

from main import create_app  # noqa: E402
from app.config import is_production_database  # noqa: E402
from app.extensions import db as database  # noqa: E402
from app.models import (  # noqa: E402
    Appointment,
    AppointmentService,
    AuthUser,
    Base,
    Customer,
    InventoryItem,
    Pet,
    Service,
    ServiceConsumable,
    Staff,
)
from app.services.api_client import CredentialsTokenProvider, GroomingApiClient  # noqa: E402

ADMIN_EMAIL = "admin@example.com"
ADMIN_PASSWORD = "password123"
GROOMER_EMAIL = "groomer@example.com"
GROOMER_PASSWORD = "groomerpass123"


@pytest.fixture
def app():
    """Create and configure a test app instance."""
    test_db_url = os.environ.get("DATABASE_TEST_URL", "sqlite://")
    if is_production_database(test_db_url):
        pytest.exit(f"Refusing to run tests against {test_db_url}")

    app = create_app(
        {
            "TESTING": True,
            "SQLALCHEMY_DATABASE_URI": test_db_url,
            "SECRET_KEY": "test-secret-key-for-testing-only",
            "BUSINESS_TIMEZONE": "UTC",
            "WORKDAY_START": "09:00",
            "WORKDAY_END": "18:00",
        }
    )

    with app.app_context():
        Base.metadata.create_all(bind=database.engine)
        yield app
        database.session.remove()
        Base.metadata.drop_all(bind=database.engine)


@pytest.fixture
def db_session(app: Flask):
    return database.session


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def runner(app):
    return app.test_cli_runner()


def _hash(password):
    # Low cost factor keeps the suite fast
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds=4))


@pytest.fixture
def admin_user(db_session):
    user = AuthUser(email=ADMIN_EMAIL, password_hash=_hash(ADMIN_PASSWORD), role="admin")
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture
def groomer_user(db_session):
    user = AuthUser(
        email=GROOMER_EMAIL, password_hash=_hash(GROOMER_PASSWORD), role="groomer"
    )
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture
def auth_headers(client, admin_user):
    """Bearer headers for the admin user, obtained through the login endpoint."""
    response = client.post(
        "/api/auth/login", json={"email": ADMIN_EMAIL, "password": ADMIN_PASSWORD}
    )
    assert response.status_code == 200
    return {"Authorization": f"Bearer {response.json['token']}"}


@pytest.fixture
def groomer_auth_headers(client, groomer_user):
    response = client.post(
        "/api/auth/login", json={"email": GROOMER_EMAIL, "password": GROOMER_PASSWORD}
    )
    assert response.status_code == 200
    return {"Authorization": f"Bearer {response.json['token']}"}


@pytest.fixture
def groomers(db_session, groomer_user):
    alex = Staff(
        user_id=groomer_user.id,
        name="Alex Groomer",
        email=GROOMER_EMAIL,
        role="groomer",
        max_daily_appointments=6,
    )
    sam = Staff(name="Sam Groomer", email="sam@example.com", role="groomer")
    desk = Staff(name="Front Desk", email="desk@example.com", role="staff")
    db_session.add_all([alex, sam, desk])
    db_session.commit()
    return {"alex": alex, "sam": sam, "desk": desk}


@pytest.fixture
def sample_pet(db_session):
    customer = Customer(
        first_name="Test", last_name="Customer", email="customer@example.com", phone="555-0100"
    )
    db_session.add(customer)
    db_session.flush()

    pet = Pet(customer_id=customer.id, name="Biscuit", type="dog", breed="Poodle", size="medium")
    db_session.add(pet)
    db_session.commit()
    return pet


@pytest.fixture
def inventory_items(db_session):
    shampoo = InventoryItem(
        name="Oatmeal Shampoo", category="Shampoo", unit="oz", quantity=10, minimum_quantity=2
    )
    conditioner = InventoryItem(
        name="Detangling Conditioner", category="Conditioner", unit="oz", quantity=5, minimum_quantity=1
    )
    ear_cleaner = InventoryItem(
        name="Ear Cleaner", category="Ear Care", unit="ml", quantity=2, minimum_quantity=1
    )
    db_session.add_all([shampoo, conditioner, ear_cleaner])
    db_session.commit()
    return {"shampoo": shampoo, "conditioner": conditioner, "ear_cleaner": ear_cleaner}


@pytest.fixture
def services(db_session, inventory_items):
    bath = Service(name="Full Bath", category="Service", duration=30, price=25)
    bath.consumables.append(
        ServiceConsumable(
            item_id=inventory_items["shampoo"].id, item_name="Oatmeal Shampoo", quantity_used=2
        )
    )
    haircut = Service(name="Breed Haircut", category="Service", duration=60, price=40)
    nails = Service(name="Nail Trim", category="Addon", duration=15, price=10)
    db_session.add_all([bath, haircut, nails])
    db_session.commit()
    return {"bath": bath, "haircut": haircut, "nails": nails}


def _book(db_session, pet, groomer, start, service_list, status="pending"):
    duration = sum(s.duration for s in service_list)
    appointment = Appointment(
        customer_id=pet.customer_id,
        pet_id=pet.id,
        groomer_id=groomer.id,
        date=start,
        end_at=start + datetime.timedelta(minutes=duration),
        status=status,
        total_duration=duration,
        total_price=sum(s.price for s in service_list),
    )
    appointment.service_links = [
        AppointmentService(service=s, position=i) for i, s in enumerate(service_list)
    ]
    db_session.add(appointment)
    db_session.commit()
    return appointment


@pytest.fixture
def book(db_session):
    """Factory fixture: book(pet, groomer, start, [services], status=...)."""

    def factory(pet, groomer, start, service_list, status="pending"):
        return _book(db_session, pet, groomer, start, service_list, status)

    return factory


@pytest.fixture
def sample_appointment(book, sample_pet, groomers, services):
    """Pending bath with Alex on 2024-06-01 14:30 UTC."""
    return book(
        sample_pet,
        groomers["alex"],
        datetime.datetime(2024, 6, 1, 14, 30),
        [services["bath"]],
    )


@pytest.fixture
def api_transport(client):
    """
    httpx transport that hands each request to the Flask test client.
    Requests are kept on ``transport.calls`` in the order they were sent.
    """
    calls = []

    def handler(request: httpx.Request):
        calls.append(request)
        headers = {
            k: v
            for k, v in request.headers.items()
            if k.lower() in ("authorization", "content-type")
        }
        response = client.open(
            request.url.raw_path.decode("ascii"),
            method=request.method,
            headers=headers,
            data=request.content,
        )
        return httpx.Response(
            response.status_code,
            headers={"content-type": response.content_type},
            content=response.data,
        )

    def calls_to(method, path):
        return [r for r in calls if r.method == method and r.url.path == path]

    transport = httpx.MockTransport(handler)
    transport.calls = calls
    transport.calls_to = calls_to
    return transport


@pytest.fixture
def make_api(api_transport, admin_user):
    """Factory for API clients logged in as the admin user."""

    def factory(email=ADMIN_EMAIL, password=ADMIN_PASSWORD):
        return GroomingApiClient(
            "http://testserver",
            CredentialsTokenProvider(email, password),
            transport=api_transport,
        )

    return factory
