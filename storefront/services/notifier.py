"""Order notification port and the Celery-backed adapter used in production."""

from abc import ABC, abstractmethod

import structlog
from kombu.exceptions import KombuError

from storefront.core.exceptions import NotificationFailure
from storefront.models.order import Order

logger = structlog.get_logger()


class OrderNotifier(ABC):
    """Fire-and-forget delivery of order notifications."""

    @abstractmethod
    def send_order_confirmation(self, order: Order, recipient_email: str) -> bool:
        """
        Hand off an order confirmation for delivery without waiting on it.

        Returns:
            bool: True once the message is handed off

        Raises:
            NotificationFailure: when the hand-off itself failed
        """
        ...


class CeleryOrderNotifier(OrderNotifier):
    """Queues confirmation emails on the Celery notifications queue."""

    def send_order_confirmation(self, order: Order, recipient_email: str) -> bool:
        from storefront.tasks.notification_tasks import send_order_confirmation

        try:
            result = send_order_confirmation.delay(order.id, recipient_email)
        except (KombuError, OSError) as exc:
            raise NotificationFailure(f"Could not queue order confirmation: {exc}") from exc

        logger.info(
            "order_confirmation_queued",
            order_id=order.id,
            order_number=order.order_number,
            task_id=result.id,
        )
        return True


_default_notifier = CeleryOrderNotifier()


def get_notifier() -> OrderNotifier:
    """FastAPI dependency; tests override it with a recording fake."""
    return _default_notifier
