from flask import Blueprint, request, current_app
from sqlalchemy.exc import SQLAlchemyError
from fooddash.services.payfast import InvalidNotificationError, handle_itn
import logging

logger = logging.getLogger(__name__)

payments_bp = Blueprint('payments', __name__)

@payments_bp.route('/payfast/notify', methods=['POST'])
def payfast_notify():
    """PayFast ITN webhook (server-to-server, form encoded)"""
    logger.info("PayFast webhook received")
    
    try:
        handle_itn(request.form, current_app.config)
    except InvalidNotificationError as e:
        logger.warning("Rejected PayFast notification: %s", e)
        return str(e), 400
    except SQLAlchemyError:
        return 'Error updating order', 500
    
    return 'OK', 200
