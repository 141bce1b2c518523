import re
import secrets
import string
from datetime import datetime, timezone


def slugify(text: str) -> str:
    text = text.lower().strip()
    text = re.sub(r"[^\w\s-]", "", text)
    text = re.sub(r"[\s_-]+", "-", text)
    return text.strip("-")


def unique_suffix(length: int = 5) -> str:
    alphabet = string.ascii_lowercase + string.digits
    return "".join(secrets.choice(alphabet) for _ in range(length))


def generate_order_number(now: datetime | None = None) -> str:
    """GH-YYYYMMDD-XXXX"""
    now = now or datetime.now(timezone.utc)
    return f"GH-{now:%Y%m%d}-{unique_suffix(4).upper()}"


def page_params(page: int, limit: int, max_limit: int = 50):
    page = max(page, 1)
    limit = min(max(limit, 1), max_limit)
    return page, limit, (page - 1) * limit
