# Celery instance is defined in exchange_project/celery.py
# It points celery_app at the Django settings so workers
# and the web process share one configuration
from .celery import celery_app

# 'from exchange_project import *', only exports celery_app
__all__ = ("celery_app",)

""" Workers are started with "celery -A exchange_project worker -l info"
    -A exchange_project imports this module and picks up celery_app. """
