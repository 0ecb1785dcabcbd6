"""
TODA Ride Backend
=================
REST API under ``/api/v1`` plus the realtime websocket at ``/ws``.

Run with: uvicorn main:app --reload
"""

import uvicorn

from todaride.api.app import create_app
from todaride.config import settings

app = create_app()

if __name__ == "__main__":
    uvicorn.run("main:app", host=settings.api_host, port=settings.api_port, reload=True)
