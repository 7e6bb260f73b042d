# Import every model so string-based relationships resolve and
# Base.metadata is complete (used by Alembic and the test suite).
from app.db.session import Base  # noqa: F401
from app.models.admin import Admin  # noqa: F401
from app.models.user import User  # noqa: F401
from app.models.hotel import Hotel, Room, SeasonalPricingRule  # noqa: F401
from app.models.room_hold import RoomHold  # noqa: F401
from app.models.booking import Booking  # noqa: F401
from app.models.notification import Notification  # noqa: F401
