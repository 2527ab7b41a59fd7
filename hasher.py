import base64
import hashlib

MAX_HASH_LENGTH = 30


def hash_order_id(order_id: str) -> str:
    """
    Bounded, SQL-safe key for an external order id.

    SHA-256 of the UTF-8 bytes, base64 encoded with '/' -> '_', '+' -> '-' and
    the '=' padding stripped, cut to 30 characters. The POS reference column
    only ever holds this value, never the raw id.
    """
    digest = hashlib.sha256((order_id or "").encode("utf-8")).digest()
    encoded = base64.b64encode(digest).decode("ascii")
    safe = encoded.replace("/", "_").replace("+", "-").replace("=", "")
    return safe[:MAX_HASH_LENGTH]
