from flask import current_app
from flask_mail import Message
from markupsafe import escape
from threading import Thread
from fooddash.utils.money import format_amount
import logging

logger = logging.getLogger(__name__)

BRAND = 'FoodDash'

def send_async_email(app, msg):
    """Deliver a message inside its own app context"""
    with app.app_context():
        mail = current_app.extensions.get('mail')
        if not mail:
            logger.warning("Mail extension not configured; dropping '%s'", msg.subject)
            return
        try:
            mail.send(msg)
        except Exception:
            logger.exception("Error sending email to %s", msg.recipients)

def send_email(subject, recipients, html_body, text_body=None):
    """Queue an email; runs inline under TESTING"""
    if not recipients:
        return
    app = current_app._get_current_object()
    msg = Message(
        subject=subject,
        recipients=recipients if isinstance(recipients, list) else [recipients],
        html=html_body,
        body=text_body
    )
    if app.config.get('TESTING'):
        send_async_email(app, msg)
        return
    Thread(target=send_async_email, args=(app, msg), daemon=True).start()

def _layout(heading, greeting_name, *paragraphs):
    body = "\n".join(f"            <p>{p}</p>" for p in paragraphs)
    return f"""
    <html>
        <body>
            <h2>{escape(heading)}</h2>
            <p>Hello {escape(greeting_name)},</p>
{body}
            <p>Thank you for ordering with {BRAND}!</p>
        </body>
    </html>
    """

def _restaurant_name(order):
    return order.restaurant.name if order.restaurant else 'the restaurant'

def send_order_confirmation_email(user, order):
    """Tell the customer their payment went through"""
    html_body = _layout(
        "Order Confirmed!",
        user.name,
        f"Your order <strong>{escape(order.order_number)}</strong> from "
        f"{escape(_restaurant_name(order))} has been confirmed.",
        f"Total paid: R{format_amount(order.total)}",
        f"Collection code: <strong>{escape(order.pickup_code)}</strong>" if order.pickup_code
        else "We'll let you know when it's on its way."
    )
    send_email(f"Order Confirmed - {order.order_number}", user.email, html_body)

def send_order_cancelled_email(user, order):
    """Tell the customer their payment failed or was cancelled"""
    html_body = _layout(
        "Payment Unsuccessful",
        user.name,
        f"We couldn't take payment for order <strong>{escape(order.order_number)}</strong>, "
        "so it has been cancelled.",
        "You have not been charged. You can place the order again at any time."
    )
    send_email(f"Order Cancelled - {order.order_number}", user.email, html_body)

def send_order_status_update_email(user, order):
    """Send order status update email"""
    html_body = _layout(
        "Order Status Update",
        user.name,
        f"Your order <strong>{escape(order.order_number)}</strong> status has been updated to: "
        f"<strong>{escape(order.status)}</strong>"
    )
    send_email(f"Order Update - {order.order_number}", user.email, html_body)

def send_new_order_notification_to_restaurant(restaurant, order):
    """Let the restaurant owner know a paid order is waiting"""
    owner = restaurant.owner if restaurant else None
    if owner is None:
        return
    lines = "<br>".join(
        f"{item.quantity} x {escape(item.name)}" for item in order.items
    )
    html_body = _layout(
        "New Order Received!",
        owner.name,
        f"Order <strong>{escape(order.order_number)}</strong> ({escape(order.fulfillment_type)}) "
        f"has been paid.",
        lines,
        f"Order total: R{format_amount(order.total)}"
    )
    send_email(f"New Order Received - {order.order_number}", owner.email, html_body)
