# src/apps/common/health.py
from __future__ import annotations

import logging
from typing import Any

from django.db import DatabaseError, connection
from django.http import JsonResponse

logger = logging.getLogger(__name__)


def db_health() -> dict[str, Any]:
    """SELECT 1 round-trip against the default database."""
    vendor = connection.vendor
    try:
        with connection.cursor() as cursor:
            cursor.execute("SELECT 1")
            cursor.fetchone()
        return {"status": "ok", "kind": vendor}
    except DatabaseError as e:
        logger.error("health.db.failed: %s", e)
        return {"status": "error", "kind": vendor, "error": str(e)}


def healthz(request):
    db = db_health()
    status = "ok" if db["status"] == "ok" else "degraded"
    return JsonResponse({"status": status, "db": db}, status=200 if status == "ok" else 503)
