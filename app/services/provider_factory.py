from functools import lru_cache

from app.config import settings
from app.services.notification_service import Notifier, RoleRecipientResolver


@lru_cache(maxsize=1)
def get_notifier() -> Notifier:
    resolver = RoleRecipientResolver(
        role=settings.notification_recipient_role.strip().lower(),
        policy=settings.notification_recipient_policy.strip().lower(),
    )
    return Notifier(resolver)
