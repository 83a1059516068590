from fooddash.utils.auth import generate_tokens, require_role, get_current_user
from fooddash.utils.validators import (
    validate_email, validate_phone, validate_password, validate_quantity,
    validate_special_instructions, validate_coordinates
)
from fooddash.utils.email_service import send_email
from fooddash.utils.rate_limiter import rate_limit
from fooddash.utils.money import to_money, format_amount

__all__ = [
    'generate_tokens',
    'require_role',
    'get_current_user',
    'validate_email',
    'validate_phone',
    'validate_password',
    'validate_quantity',
    'validate_special_instructions',
    'validate_coordinates',
    'send_email',
    'rate_limit',
    'to_money',
    'format_amount'
]
