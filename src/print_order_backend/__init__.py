"""
Print Order Backend - REST API for a print shop's order intake

This package provides a FastAPI-based web service behind the print shop
ordering front end. It enables:

- Document uploads (PDF and Word) validated and stored as a batch
- Order creation, listing and lookup
- Order status updates from the admin view
- Admin login with expiring session tokens
- Bulk clearing of orders and stored files

Key Components:
    - main: FastAPI application and HTTP endpoint definitions
    - record_store: Durable collections with single-writer mutation (JSON or SQLite)
    - order_repository: Order lifecycle on top of a record store
    - credential_store: Seeded admin credential document
    - auth: Session tokens issued on admin login
    - uploads: Batch upload validation, storage and bulk deletion
    - models: Pydantic models for request/response validation
    - configuration: Layered OmegaConf settings (defaults, YAML, environment)
    - errors: Error taxonomy mapped onto HTTP status codes

Usage:
    Run the API server with:
        uvicorn print_order_backend.main:app --reload --host 0.0.0.0 --port 3001

    Or use the console script, which honours PORT/HOST:
        print-order-backend
"""
from __future__ import annotations

__version__ = "0.1.0"
