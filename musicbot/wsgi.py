"""
WSGI config for the music-bot project.

Exposes the WSGI callable as a module-level variable named ``application``.
Run the Huey worker alongside it (python manage.py run_huey) so cache
cleanup passes get executed.
"""

import os

from django.core.wsgi import get_wsgi_application

os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'musicbot.settings')

application = get_wsgi_application()
