"""
Seat Booking & Mobile Money Backend
===================================
Entry point. Run with: uvicorn main:app --reload

Seed demo data first with ``python seed.py``; payments run against the
in-process sandbox unless ``PAYMENT_SANDBOX=false``.
"""

import uvicorn

from src.api.app import create_app
from src.config import settings

app = create_app()

if __name__ == "__main__":
    uvicorn.run("main:app", host=settings.api_host, port=settings.api_port)
