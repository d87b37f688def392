from __future__ import annotations
import os
from celery import Celery
from celery.schedules import crontab

# ensure Django settings are set for Celery
os.environ.setdefault("DJANGO_SETTINGS_MODULE", "exchange_project.settings")

# name should match the project package
celery_app = Celery("exchange_project")

# read config from Django settings, using CELERY_ prefix
celery_app.config_from_object("django.conf:settings", namespace="CELERY")

# autoload tasks from installed apps (ledger_core.tasks)
celery_app.autodiscover_tasks()

# Nightly drift check: recompute every cash balance from history
# and report rows whose stored value disagrees with the fold
celery_app.conf.beat_schedule = {
    "ledger-balance-drift-check": {
        "task": "ledger_core.tasks.recompute_all_balances_for_all_tenants",
        "schedule": crontab(hour=2, minute=30),
    },
}
