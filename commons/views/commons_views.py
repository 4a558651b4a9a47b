from django.http import JsonResponse
from django.db import DatabaseError, connection
from datetime import datetime, timezone

from fiscal.services.job_store import JobStore


def liveness(request):
    return JsonResponse({"ok": True})


def readiness(request):
    try:
        with connection.cursor() as cur:
            cur.execute("SELECT 1")
            cur.fetchone()
        jobs = JobStore.counts_by_status()
    except DatabaseError as e:
        return JsonResponse({"ok": False, "error": e.__class__.__name__}, status=503)
    return JsonResponse({"ok": True, "jobs": jobs})


def time_now(request):
    now = datetime.now(timezone.utc).astimezone()
    return JsonResponse({"now": now.isoformat()})
