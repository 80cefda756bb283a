from decimal import Decimal
from html import escape

from storefront.core.config import settings
from storefront.services.checkout_service import estimated_delivery

_STYLE = """
    body { font-family: Arial, sans-serif; line-height: 1.6; color: #111827; }
    .container { max-width: 600px; margin: 0 auto; padding: 20px; }
    .header { background: #1f2937; color: white; padding: 20px; text-align: center; }
    table { width: 100%; border-collapse: collapse; margin: 20px 0; }
    th, td { padding: 10px; text-align: left; border-bottom: 1px solid #ddd; }
    .total td { font-size: 18px; font-weight: bold; }
"""


def _money(amount) -> str:
    return f"${Decimal(amount):,.2f}"


def _delivery_date(order) -> str:
    return estimated_delivery(order.created_at).strftime("%b %d, %Y")


def _line_rows(order) -> str:
    return "".join(
        "<tr><td>{name}</td><td>{qty}</td><td>{price}</td><td>{total}</td></tr>".format(
            name=escape(item.product_name),
            qty=item.quantity,
            price=_money(item.unit_price),
            total=_money(item.total_price),
        )
        for item in order.items
    )


def _shipping_block(order) -> str:
    parts = [
        order.shipping_name,
        order.shipping_phone,
        order.shipping_address,
        f"{order.shipping_city} {order.shipping_postal_code}",
    ]
    return "<br>".join(escape(part) for part in parts)


def order_confirmation_template(order, recipient_name: str) -> str:
    """HTML body of the order confirmation email. Every customer value is escaped."""
    return f"""<!DOCTYPE html>
<html>
<head><style>{_STYLE}</style></head>
<body>
  <div class="container">
    <div class="header">
      <h1>{escape(settings.EMAILS_FROM_NAME)}</h1>
      <p>Order Confirmation</p>
    </div>
    <p>Dear {escape(recipient_name)},</p>
    <p>Thank you for your purchase! Your order <strong>#{escape(order.order_number)}</strong>
    is expected by {_delivery_date(order)}.</p>
    <table>
      <thead><tr><th>Item</th><th>Qty</th><th>Price</th><th>Total</th></tr></thead>
      <tbody>{_line_rows(order)}</tbody>
      <tfoot><tr class="total"><td colspan="3">Total</td><td>{_money(order.total_amount)}</td></tr></tfoot>
    </table>
    <h3>Shipping to</h3>
    <p>{_shipping_block(order)}</p>
    <p>Payment: {order.payment_method.value.upper()}</p>
  </div>
</body>
</html>
"""


def order_confirmation_text(order) -> str:
    """Plain-text alternative for mail clients that do not render HTML."""
    lines = [
        f"Order #{order.order_number}",
        "",
    ]
    lines.extend(
        f"{item.quantity} x {item.product_name} @ {_money(item.unit_price)} = {_money(item.total_price)}"
        for item in order.items
    )
    lines.extend(
        [
            "",
            f"Total: {_money(order.total_amount)}",
            f"Payment: {order.payment_method.value.upper()}",
            f"Expected delivery: {_delivery_date(order)}",
        ]
    )
    return "\n".join(lines)
