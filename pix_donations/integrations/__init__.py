"""External integrations: the Pix gateway and its webhook."""
from .pix_client import ChargeStatus, PixClient

__all__ = ["ChargeStatus", "PixClient"]
