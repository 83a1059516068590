from flask import Blueprint, request, jsonify, current_app, Response, stream_with_context
from sqlalchemy.exc import SQLAlchemyError
from fooddash import db
from fooddash.models.order import Order
from fooddash.services.order_status import (
    OrderStatusPresenter, get_change_feed, present_status,
    publish_delivery_location, publish_order_change
)
from fooddash.services.recovery import (
    PaymentCancelledError, PaymentVerificationTimeout, clear_payment_backup,
    get_pending_orders, recover_pending_orders, remove_pending_order, verify_payment_status
)
from fooddash.services.storage import SQLDocumentStorage, namespace_for_user
from fooddash.utils.auth import require_role
from fooddash.utils.email_service import send_order_status_update_email
from fooddash.utils.validators import validate_coordinates
from datetime import datetime
import json
import logging
import queue

logger = logging.getLogger(__name__)

orders_bp = Blueprint('orders', __name__)

ORDER_ROLES = ('customer', 'restaurant', 'delivery_partner', 'admin')
FINAL_STATUSES = ('delivered', 'cancelled', 'refunded')
KEEPALIVE_SECONDS = 15
MAX_VERIFY_ATTEMPTS = 10

def can_view_order(user, order):
    """Customers see their own orders, owners their restaurant's, partners their deliveries"""
    if user.role == 'admin':
        return True
    if user.role == 'customer':
        return order.customer_id == user.id
    if user.role == 'restaurant':
        return order.restaurant is not None and order.restaurant.owner_id == user.id
    if user.role == 'delivery_partner':
        if order.delivery_partner_id is None:
            # Unassigned orders are open to partners only once paid
            return order.payment_status == 'paid'
        return order.delivery_partner_id == user.id
    return False

def order_payload(order):
    data = order.to_dict()
    data['status_view'] = present_status(order.status).to_dict()
    return data

def _sse(payload):
    return f"data: {json.dumps(payload)}\n\n"

@orders_bp.route('', methods=['GET'])
@require_role(*ORDER_ROLES)
def list_orders(current_user):
    """List orders visible to the current user"""
    status = request.args.get('status')
    page = int(request.args.get('page', 1))
    per_page = int(request.args.get('per_page', 20))

    query = Order.query

    # Filter based on role
    if current_user.role == 'customer':
        query = query.filter_by(customer_id=current_user.id)
    elif current_user.role == 'restaurant':
        restaurant_ids = [r.id for r in current_user.restaurants]
        if not restaurant_ids:
            return jsonify({'orders': [], 'total': 0}), 200
        query = query.filter(Order.restaurant_id.in_(restaurant_ids))
    elif current_user.role == 'delivery_partner':
        query = query.filter_by(delivery_partner_id=current_user.id)

    if status:
        query = query.filter_by(status=status)

    query = query.order_by(Order.created_at.desc())

    pagination = query.paginate(page=page, per_page=per_page, error_out=False)

    return jsonify({
        'orders': [o.to_dict(include_items=False) for o in pagination.items],
        'total': pagination.total,
        'page': page,
        'per_page': per_page,
        'pages': pagination.pages
    }), 200

@orders_bp.route('/<int:order_id>', methods=['GET'])
@require_role(*ORDER_ROLES)
def get_order(current_user, order_id):
    """Get order details with display status"""
    order = db.get_or_404(Order, order_id)

    if not can_view_order(current_user, order):
        return jsonify({'error': 'Unauthorized'}), 403

    return jsonify(order_payload(order)), 200

@orders_bp.route('/<int:order_id>/status', methods=['PUT'])
@require_role('restaurant', 'delivery_partner', 'admin')
def update_order_status(current_user, order_id):
    """Write a new order status and notify live listeners"""
    order = db.get_or_404(Order, order_id)

    if not can_view_order(current_user, order):
        return jsonify({'error': 'Unauthorized'}), 403

    data = request.get_json(silent=True) or {}
    new_status = str(data.get('status') or '').strip().lower()

    if not new_status:
        return jsonify({'error': 'Status is required'}), 400
    if len(new_status) > 30:
        return jsonify({'error': 'Status must be at most 30 characters'}), 400

    # First partner to move the order claims the delivery
    if current_user.role == 'delivery_partner' and order.delivery_partner_id is None:
        order.delivery_partner_id = current_user.id

    old_status = order.status
    order.status = new_status
    if new_status == 'refunded':
        order.payment_status = 'refunded'

    try:
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        logger.exception("Failed to update status of order %s", order.id)
        return jsonify({'error': 'Failed to update order status'}), 500

    logger.info("Order %s status %s -> %s by user %s", order.id, old_status, new_status, current_user.id)
    publish_order_change(order)

    if order.customer:
        send_order_status_update_email(order.customer, order)

    return jsonify({
        'message': 'Order status updated successfully',
        'order': order_payload(order)
    }), 200

@orders_bp.route('/<int:order_id>/location', methods=['POST'])
@require_role('delivery_partner', 'admin')
def update_delivery_location(current_user, order_id):
    """Broadcast the delivery partner's current position"""
    order = db.get_or_404(Order, order_id)

    if current_user.role == 'delivery_partner' and order.delivery_partner_id != current_user.id:
        return jsonify({'error': 'Unauthorized'}), 403

    data = request.get_json(silent=True) or {}
    latitude, longitude, error = validate_coordinates(data.get('latitude'), data.get('longitude'))
    if error:
        return jsonify({'error': error}), 400

    location = {
        'order_id': order.id,
        'latitude': latitude,
        'longitude': longitude,
        'heading': data.get('heading'),
        'updated_at': datetime.utcnow().isoformat()
    }
    listeners = publish_delivery_location(order.id, location)

    return jsonify({'message': 'Location updated', 'location': location, 'listeners': listeners}), 200

@orders_bp.route('/<int:order_id>/events', methods=['GET'])
@require_role(*ORDER_ROLES)
def order_events(current_user, order_id):
    """Server-sent events stream of order status and delivery location"""
    order = db.get_or_404(Order, order_id)

    if not can_view_order(current_user, order):
        return jsonify({'error': 'Unauthorized'}), 403

    events = queue.Queue()
    snapshot = order.to_dict()
    presenter = OrderStatusPresenter(
        order.id,
        get_change_feed(),
        loader=lambda _order_id: snapshot,
        on_change=lambda p: events.put(p.to_dict())
    )
    presenter.start()

    def generate():
        try:
            yield _sse(presenter.to_dict())
            if presenter.view.status in FINAL_STATUSES:
                return
            while True:
                try:
                    payload = events.get(timeout=KEEPALIVE_SECONDS)
                except queue.Empty:
                    yield ": keep-alive\n\n"
                    continue
                yield _sse(payload)
                if payload['status']['status'] in FINAL_STATUSES:
                    return
        finally:
            presenter.close()

    return Response(
        stream_with_context(generate()),
        mimetype='text/event-stream',
        headers={'Cache-Control': 'no-cache', 'X-Accel-Buffering': 'no'}
    )

@orders_bp.route('/recover', methods=['POST'])
@require_role('customer', 'admin')
def recover_orders(current_user):
    """Sweep the caller's pending orders after an interrupted payment redirect"""
    storage = SQLDocumentStorage(namespace_for_user(current_user.id))

    def fetch_status(order_id):
        order = Order.query.filter_by(id=int(order_id), customer_id=current_user.id).first()
        return order.status if order else None

    recovered = recover_pending_orders(storage, fetch_status)

    return jsonify({
        'recovered': recovered,
        'pending': list(get_pending_orders(storage).values())
    }), 200

@orders_bp.route('/<int:order_id>/payment-status', methods=['GET'])
@require_role('customer', 'admin')
def payment_status(current_user, order_id):
    """Wait for the payment notification to confirm or cancel the order"""
    order = db.get_or_404(Order, order_id)

    if not can_view_order(current_user, order):
        return jsonify({'error': 'Unauthorized'}), 403

    try:
        attempts = int(request.args.get('attempts', MAX_VERIFY_ATTEMPTS))
    except ValueError:
        return jsonify({'error': 'attempts must be an integer'}), 400
    attempts = max(1, min(attempts, MAX_VERIFY_ATTEMPTS))

    def fetch_status(_order_id):
        db.session.refresh(order)
        return order.status

    storage = SQLDocumentStorage(namespace_for_user(order.customer_id))

    try:
        status = verify_payment_status(
            order.id,
            fetch_status,
            max_attempts=attempts,
            interval=current_app.config.get('PAYMENT_VERIFY_INTERVAL', 2.0)
        )
    except PaymentCancelledError as e:
        clear_payment_backup(storage, order.id)
        remove_pending_order(storage, order.id)
        return jsonify({'error': str(e), 'status': order.status, 'retryable': False}), 402
    except PaymentVerificationTimeout as e:
        return jsonify({'error': str(e), 'status': order.status, 'retryable': True}), 202

    clear_payment_backup(storage, order.id)
    remove_pending_order(storage, order.id)

    return jsonify({'status': status, 'order': order_payload(order)}), 200
