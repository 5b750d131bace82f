"""E-Contract - contract lifecycle and electronic signature engine.

Packages:
- models: pydantic records (contracts, signatures, certificates, audit)
- services: hashing, tokens, workflow, signing orchestration, certificates
- repositories: interchangeable contract storage backends
- cache: key-value store used for token consumption tracking and rate limits
- routes: FastAPI routers
"""

__version__ = "1.0.0"
