import os
import tempfile

os.environ.setdefault("JWT_SECRET", "test-secret")
os.environ.setdefault("JWT_ALGORITHM", "HS256")
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("LOG_DIR", tempfile.mkdtemp(prefix="hotel-logs-"))
os.environ.pop("REDIS_URL", None)

from datetime import date, datetime, timedelta  # noqa: E402

import pytest  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

import app.db.base  # noqa: E402,F401
from app.core.errors import PaymentProviderError, WebhookSignatureError  # noqa: E402
from app.db.session import Base  # noqa: E402
from app.models.admin import Admin  # noqa: E402
from app.models.booking import Booking  # noqa: E402
from app.models.enums import BookingStatus, PaymentStatus, RoomStatus  # noqa: E402
from app.models.hotel import Hotel, Room, SeasonalPricingRule  # noqa: E402
from app.models.user import User  # noqa: E402
from app.services.notifications import hub  # noqa: E402
from app.utils.razorpay_client import PaymentIntent  # noqa: E402

NOW = datetime.utcnow().replace(microsecond=0)
TODAY = NOW.date()


def next_weekday(start: date, weekday: int) -> date:
    """First date strictly after ``start`` falling on ``weekday`` (Mon=0)."""
    days = (weekday - start.weekday()) % 7 or 7
    return start + timedelta(days=days)


MONDAY = next_weekday(TODAY, 0)


# ══════════════════════════════════════════════════════════════
# PAYMENT GATEWAY DOUBLE
# ══════════════════════════════════════════════════════════════

class FakeGateway:
    def __init__(self):
        self.intents = []
        self.refunds = []
        self.fail_create = False
        self.fail_refund = False
        # Called with the provider refund while it is in flight
        self.during_refund = None

    def create_intent(self, amount, currency="INR", receipt=None, notes=None):
        if self.fail_create:
            raise PaymentProviderError("provider down")
        intent = PaymentIntent(
            id=f"order_{len(self.intents) + 1}",
            client_secret=f"secret_{len(self.intents) + 1}",
            amount=amount,
            currency=currency,
            status="created",
            public_key="rzp_test_key",
        )
        self.intents.append(intent)
        return intent

    def confirm_payment(self, intent_id, payment_id, signature):
        if signature == "bad-signature":
            raise PaymentProviderError("Invalid payment signature")
        return "succeeded"

    def verify_webhook(self, body, signature):
        if signature != "valid-signature":
            raise WebhookSignatureError("Invalid webhook signature")

    def refund(self, payment_id, amount=None):
        if self.fail_refund:
            raise PaymentProviderError("refund failed")
        refund = {"id": f"rfnd_{len(self.refunds) + 1}", "payment_id": payment_id, "amount": amount}
        self.refunds.append(refund)
        if self.during_refund:
            hook, self.during_refund = self.during_refund, None
            hook(refund)
        return refund


# ══════════════════════════════════════════════════════════════
# DATABASE
# ══════════════════════════════════════════════════════════════

@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autocommit=False, autoflush=False)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def file_session_factory(tmp_path):
    """Separate connections per session, for optimistic-versioning races."""
    engine = create_engine(f"sqlite:///{tmp_path / 'race.db'}")
    Base.metadata.create_all(engine)
    yield sessionmaker(bind=engine, autocommit=False, autoflush=False)
    engine.dispose()


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def events():
    received = []

    def collect(event, payload):
        received.append((event, payload))

    hub.subscribe(collect)
    yield received
    hub.unsubscribe(collect)


# ══════════════════════════════════════════════════════════════
# FACTORIES
# ══════════════════════════════════════════════════════════════

def make_admin(db, email="admin@example.com"):
    admin = Admin(name="Admin", email=email, password_hash="x")
    db.add(admin)
    db.commit()
    return admin


def make_user(db, email="guest@example.com", name="Guest"):
    user = User(name=name, email=email, password_hash="x")
    db.add(user)
    db.commit()
    return user


def make_hotel(db, admin, base_price=100.0, rooms=(("101", "Standard"),), seasonal=()):
    hotel = Hotel(admin_id=admin.id, name="Seaside", description="", base_price=base_price, amenities=[])
    hotel.rooms = [Room(number=n, type=t, status=RoomStatus.AVAILABLE.value, images=[]) for n, t in rooms]
    hotel.seasonal_pricing = [
        SeasonalPricingRule(position=i, start_date=s, end_date=e, price=p)
        for i, (s, e, p) in enumerate(seasonal)
    ]
    db.add(hotel)
    db.commit()
    return hotel


def make_booking(db, user, hotel, room_number="101", check_in=None, check_out=None,
                 total_price=300.0, status=BookingStatus.CONFIRMED.value,
                 payment_status=PaymentStatus.SUCCEEDED.value, code=None):
    check_in = check_in or MONDAY
    check_out = check_out or check_in + timedelta(days=2)
    n = db.query(Booking).count() + 1
    booking = Booking(
        booking_code=code or f"BKTEST{n}",
        user_id=user.id,
        hotel_id=hotel.id,
        room_number=room_number,
        room_type="Standard",
        check_in=check_in,
        check_out=check_out,
        adults=2,
        children=0,
        total_price=total_price,
        refunded_amount=0.0,
        status=status,
        payment_status=payment_status,
        payment_intent_id=f"order_seed_{n}",
        payment_id=f"pay_seed_{n}",
    )
    db.add(booking)
    db.commit()
    return booking


def room_status(db, hotel, number="101"):
    db.expire_all()
    return db.query(Room).filter(Room.hotel_id == hotel.id, Room.number == number).one().status
