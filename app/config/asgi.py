"""
ASGI config for the payment engine.

Exposes the ASGI callable as a module-level variable named `application`.
Uvicorn uses this entry point to serve the Django application.

For more information on this file, see:
https://docs.djangoproject.com/en/5.2/howto/deployment/asgi/
"""

import os

from django.core.asgi import get_asgi_application

# Set the default Django settings module for the ASGI application
os.environ.setdefault("DJANGO_SETTINGS_MODULE", "config.settings")

application = get_asgi_application()
