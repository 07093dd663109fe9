"""
WSGI config for multisign project.
"""

import os

from django.core.wsgi import get_wsgi_application

os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'multisign.settings')

application = get_wsgi_application()
