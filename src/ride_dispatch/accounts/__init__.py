from .service import AccountService, NearbyDriver, Registration

__all__ = ["AccountService", "NearbyDriver", "Registration"]
