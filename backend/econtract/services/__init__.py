"""E-Contract services: lifecycle, signing, certificates and viewer access."""
