from flask import Blueprint, request, jsonify, current_app, Response
from fooddash.routes.cart import get_cart_registry, get_user_cart
from fooddash.services.checkout import CheckoutError, CheckoutOrchestrator
from fooddash.services.payfast import render_redirect_form
from fooddash.services.storage import SQLDocumentStorage, namespace_for_user
from fooddash.utils.auth import require_role

checkout_bp = Blueprint('checkout', __name__)

@checkout_bp.route('', methods=['POST'])
@require_role('customer', 'admin')
def checkout(current_user):
    """Create the order from the cart and return the hosted payment redirect"""
    data = request.get_json(silent=True) or {}
    fulfillment_type = data.get('fulfillment_type', 'delivery')
    
    orchestrator = CheckoutOrchestrator(
        cart=get_user_cart(current_user),
        config=current_app.config,
        storage=SQLDocumentStorage(namespace_for_user(current_user.id)),
        pricing=get_cart_registry().pricing
    )
    
    try:
        result = orchestrator.checkout(current_user, fulfillment_type)
    except CheckoutError as e:
        return jsonify({'error': str(e), 'retryable': e.retryable}), e.status_code
    
    if request.args.get('format') == 'html':
        return Response(render_redirect_form(result.redirect), status=201, mimetype='text/html')
    
    response = result.to_dict()
    response['message'] = 'Order created. Redirecting to payment.'
    return jsonify(response), 201
