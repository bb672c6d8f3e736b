import re

EMAIL_LOCAL_RE = re.compile(r'^[A-Za-z0-9._%+-]+$')
EMAIL_DOMAIN_RE = re.compile(r'^[A-Za-z0-9.-]+\.[A-Za-z]{2,}$')
MOBILE_RE = re.compile(r'^\d{10}$')


def normalize_email(email):
    return str(email or '').strip().lower()


def is_valid_email(email):
    value = str(email or '').strip()
    if not value or len(value) > 254 or '..' in value:
        return False

    parts = value.split('@')
    if len(parts) != 2:
        return False

    local_part, domain = parts
    if not local_part or not domain or len(local_part) > 64:
        return False
    if not EMAIL_LOCAL_RE.match(local_part) or not EMAIL_DOMAIN_RE.match(domain):
        return False
    return all(label and not label.startswith('-') and not label.endswith('-') for label in domain.split('.'))


def is_valid_password(password):
    return len(str(password or '')) >= 8


def normalize_mobile(mobile):
    digits = re.sub(r'\D', '', str(mobile or ''))
    if len(digits) == 12 and digits.startswith('91'):
        return digits[2:]
    return digits


def is_valid_mobile(mobile):
    return bool(MOBILE_RE.match(str(mobile or '')))


def normalize_food_category(value):
    category = str(value or 'food').lower()
    if category in ('drink', 'drinks'):
        return 'drink'
    if category in ('snack', 'snacks'):
        return 'snack'
    return 'food'


def normalize_image_url(value):
    raw = str(value or '').strip()
    if not raw:
        return ''
    if re.match(r'^https?://', raw, re.IGNORECASE):
        return raw
    if raw.startswith('//'):
        return f"https:{raw}"
    if re.match(r'^www\.', raw, re.IGNORECASE):
        return f"https://{raw}"
    return raw


def parse_price(value):
    """Non-negative float, or None."""
    if isinstance(value, bool):
        return None
    try:
        price = float(value)
    except (TypeError, ValueError):
        return None
    return price if price >= 0 else None
