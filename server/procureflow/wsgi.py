"""
WSGI config for the procureflow project.
"""
import os

from django.core.wsgi import get_wsgi_application

os.environ.setdefault("DJANGO_SETTINGS_MODULE", "procureflow.settings")

application = get_wsgi_application()
