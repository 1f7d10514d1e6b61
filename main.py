"""
CarryOn Delivery Backend
========================
ASGI entry point: ``uvicorn main:app``.  Running this file directly
serves on ``API_HOST``/``API_PORT`` with auto-reload.
"""

import uvicorn

from carryon.api.app import create_app
from carryon.config import settings

app = create_app()

if __name__ == "__main__":
    uvicorn.run("main:app", host=settings.api_host, port=settings.api_port, reload=True)
