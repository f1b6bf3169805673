"""
WSGI config for the clinic project.

It exposes the WSGI callable as a module-level variable named ``application``.
Only the HTTP API is served this way; the real-time socket channel needs
the ASGI entrypoint in ``clinic.asgi``.
"""
import os

from django.core.wsgi import get_wsgi_application  # type: ignore

os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'clinic.settings')

application = get_wsgi_application()
