# Import models so that SQLAlchemy metadata includes them on app startup
from .user import User  # noqa: F401
from .payment import Payment  # noqa: F401
from .payment_event import PaymentEvent  # noqa: F401
from .reference_counter import ReferenceCounter  # noqa: F401
from .demande import Demande  # noqa: F401
from .formation import Formation  # noqa: F401
from .registration import RegistrationItem  # noqa: F401
from .plan import Plan  # noqa: F401
from .subscription import Subscription  # noqa: F401
from .boutique import Boutique  # noqa: F401
from .purchase import Purchase  # noqa: F401
