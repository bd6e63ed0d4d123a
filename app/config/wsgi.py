"""
WSGI entry point.

Serves the REST API, admin and health check only. Websocket clients need
the ASGI application in config/asgi.py, so production runs Uvicorn; this
module exists for management tooling and plain WSGI hosts that only expose
the HTTP API.
"""

import os

from django.core.wsgi import get_wsgi_application

os.environ.setdefault("DJANGO_SETTINGS_MODULE", "config.settings")

application = get_wsgi_application()
