from services import users as user_service
from services.orders import OrderStore


class AppSession:
    """Everything one signed-in user works with during a request."""

    def __init__(self, user, repository):
        self.user = user
        self.repository = repository
        self.order_store = OrderStore(repository)

    @property
    def user_id(self):
        return self.user.get("id") if self.user else None

    @property
    def actor_name(self):
        if not self.user:
            return None
        return self.user.get("name") or self.user.get("username")

    @property
    def can_import(self):
        return user_service.can_import(self.user)

    @property
    def can_manage_users(self):
        return user_service.can_manage_users(self.user)
