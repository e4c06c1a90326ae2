"""
ASGI config for the NutriVault project.

Only plain HTTP is served; there is no websocket routing.
"""
import os

from django.core.asgi import get_asgi_application  # type: ignore

os.environ.setdefault("DJANGO_SETTINGS_MODULE", "nutrivault.settings")

application = get_asgi_application()
