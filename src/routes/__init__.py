"""
API Routes Package
==================
Shared pieces for the FastAPI app in api.py.

Modules:
  helpers  - request → domain conversion, JSON-safe payloads
"""
