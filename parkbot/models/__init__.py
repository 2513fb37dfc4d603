# Parkbot — Database Models
# Import all models here for SQLAlchemy discovery

from parkbot.models.zone import Zone                        # noqa
from parkbot.models.parking_space import ParkingSpace       # noqa
from parkbot.models.linked_account import LinkedAccount     # noqa
from parkbot.models.payment_record import PaymentRecord     # noqa
from parkbot.models.payment_intent import PaymentIntent     # noqa
from parkbot.models.reservation import Reservation          # noqa
from parkbot.models.bot_update import BotUpdate             # noqa
