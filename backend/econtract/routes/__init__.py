"""E-Contract API routers."""
from . import certificates, contracts, signing, viewer

__all__ = ["certificates", "contracts", "signing", "viewer"]
