from .subscription import Subscription  # noqa: F401
from .payments import PayPalWebhookEvent  # noqa: F401
