"""
asgi.py -- Process entry point for Gatehouse.

This is the ONLY module that calls get_settings(). Everything below it
receives Settings explicitly through create_app(). A missing SECRET_KEY or a
broken bcrypt install raises here, at import time, so uvicorn never starts
serving.

Run with:  uvicorn asgi:app --reload
"""

from api.main import create_app
from core.config import get_settings

app = create_app(get_settings())
