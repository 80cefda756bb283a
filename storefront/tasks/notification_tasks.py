from celery import Task
from celery.utils.log import get_task_logger

from storefront.core.celery_app import celery_app
from storefront.core.config import settings
from storefront.utils.email import build_email, send_email_smtp
from storefront.utils.email_templates import order_confirmation_template, order_confirmation_text

logger = get_task_logger(__name__)


class EmailTask(Task):
    """
    Base email task with retries and backoff.
    Prevents email loss on temporary SMTP failures.
    """
    autoretry_for = (Exception,)
    retry_kwargs = {"max_retries": 3}
    retry_backoff = True
    retry_backoff_max = 600  # 10 minutes
    retry_jitter = True
    acks_late = True  # retry if worker crashes


@celery_app.task(base=EmailTask, bind=True)
def send_order_confirmation(self, order_id: int, recipient_email: str):
    from storefront.db.session import SessionLocal
    from storefront.models.order import Order

    db = SessionLocal()
    try:
        order = db.query(Order).filter(Order.id == order_id).first()
        if not order:
            logger.error("order_confirmation_skipped order_id=%s reason=missing_order", order_id)
            return

        recipient_name = order.user.full_name if order.user else order.shipping_name
        html = order_confirmation_template(order, recipient_name)

        msg = build_email(
            to=recipient_email,
            subject=f"Order Confirmed - {order.order_number}",
            text=order_confirmation_text(order),
            html=html,
            from_email=settings.EMAILS_FROM_ORDERS or None,
        )

        send_email_smtp(msg)
        logger.info("order_confirmation_sent order_id=%s", order_id)
    finally:
        db.close()
