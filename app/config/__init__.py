# =============================================================================
# Django Project Configuration Package
# =============================================================================
# Settings, URLs, ASGI/WSGI entry points and the Celery application.
#
# The Celery app is imported here so that @shared_task functions in the
# escrow app bind to it whenever Django starts.
# =============================================================================

from config.celery import app as celery_app

__all__ = ("celery_app",)
