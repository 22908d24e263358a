import secrets
import uuid


def new_ride_id() -> str:
    return f"ride_{uuid.uuid4().hex[:16]}"


def new_account_id() -> str:
    return f"acct_{uuid.uuid4().hex[:16]}"


def generate_trip_code() -> str:
    """Six-digit one-time code, never starting with zero."""
    return str(100000 + secrets.randbelow(900000))
