"""
WSGI config for calendar_sync_api project.

It exposes the WSGI callable as a module-level variable named ``application``.
"""

import os

from django.core.wsgi import get_wsgi_application


os.environ.setdefault("DJANGO_SETTINGS_MODULE", "calendar_sync_api.settings.production")

application = get_wsgi_application()
