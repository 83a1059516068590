import re
from email_validator import validate_email as validate_email_addr, EmailNotValidError

MAX_INSTRUCTIONS_LENGTH = 500

# +27 82 123 4567, 082-123-4567, or any international number
SA_PHONE_PATTERN = re.compile(r'^(?:\+27|0)[1-9]\d{8}$')
INTL_PHONE_PATTERN = re.compile(r'^\+[1-9]\d{7,14}$')

def validate_email(email):
    """Validate email format"""
    if not email or not isinstance(email, str):
        return False, "Email is required"
    try:
        validate_email_addr(email, check_deliverability=False)
        return True, None
    except EmailNotValidError as e:
        return False, str(e)

def normalize_phone(phone):
    """Strip spaces, dashes and brackets; None stays None"""
    if not phone:
        return None
    return re.sub(r'[\s\-()]', '', str(phone))

def validate_phone(phone):
    """Validate a South African or international phone number"""
    if not phone or not isinstance(phone, str):
        return False, "Phone number is required"
    compact = normalize_phone(phone)
    if SA_PHONE_PATTERN.match(compact) or INTL_PHONE_PATTERN.match(compact):
        return True, None
    return False, "Invalid phone number format"

def validate_password(password):
    """Validate password strength"""
    if not password or len(password) < 8:
        return False, "Password must be at least 8 characters long"
    if len(password) > 128:
        return False, "Password is too long"
    if not re.search(r'[A-Za-z]', password) or not re.search(r'\d', password):
        return False, "Password must contain at least one letter and one number"
    return True, None

def validate_name(name):
    if not name or not isinstance(name, str) or len(name.strip()) < 2:
        return False, "Name must be at least 2 characters"
    if len(name) > 100:
        return False, "Name is too long"
    return True, None

def validate_quantity(value, allow_zero=False):
    """Validate a cart quantity: a whole number, at least 1 unless allow_zero"""
    if isinstance(value, bool):
        return False, "Quantity must be a whole number"
    try:
        quantity = int(value)
    except (TypeError, ValueError):
        return False, "Quantity must be a whole number"
    if str(value).strip() != str(quantity):
        return False, "Quantity must be a whole number"
    if quantity < 0 or (quantity == 0 and not allow_zero):
        return False, "Quantity must be greater than 0"
    return True, None

def validate_special_instructions(instructions):
    if instructions is None:
        return True, None
    if not isinstance(instructions, str):
        return False, "Special instructions must be text"
    if len(instructions) > MAX_INSTRUCTIONS_LENGTH:
        return False, f"Special instructions must be at most {MAX_INSTRUCTIONS_LENGTH} characters"
    return True, None

def validate_coordinates(latitude, longitude):
    """Parse a latitude/longitude pair; returns (lat, lng, error)"""
    try:
        lat = float(latitude)
        lng = float(longitude)
    except (TypeError, ValueError):
        return None, None, "latitude and longitude are required numbers"
    if not -90 <= lat <= 90 or not -180 <= lng <= 180:
        return None, None, "Coordinates out of range"
    return lat, lng, None
