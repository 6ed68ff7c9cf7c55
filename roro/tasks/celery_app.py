from urllib.parse import urlparse, urlunparse, parse_qs, urlencode

from celery import Celery
from celery.signals import worker_ready
from roro.core.config import settings


def _redis_url_for_celery(url: str) -> str:
    """Celery requires ssl_cert_reqs for rediss:// (e.g. Upstash TLS)."""
    if not url or not url.strip().lower().startswith("rediss://"):
        return url
    parsed = urlparse(url)
    qs = parse_qs(parsed.query)
    if "ssl_cert_reqs" not in qs:
        qs["ssl_cert_reqs"] = ["CERT_NONE"]
        new_query = urlencode(qs, doseq=True)
        return urlunparse(parsed._replace(query=new_query))
    return url


_redis_url = _redis_url_for_celery(settings.REDIS_URL)

celery = Celery(
    "roro",
    broker=_redis_url,
    backend=_redis_url,
    include=["roro.tasks.jobs"],
)

celery.conf.timezone = "UTC"

# Catch up on deadlines that lapsed while nothing was running
@worker_ready.connect
def on_worker_ready(sender, **kwargs):
    from roro.tasks.jobs import sweep_deadlines
    sweep_deadlines.delay()

celery.conf.beat_schedule = {
    "sweep-deadlines": {
        "task": "roro.tasks.jobs.sweep_deadlines",
        "schedule": settings.DEADLINE_SWEEP_SECONDS,
    },
}
