from roro.tasks.celery_app import celery
from roro.tasks import worker_jobs

@celery.task(name="roro.tasks.jobs.sweep_deadlines")
def sweep_deadlines():
    return worker_jobs.sweep_deadlines()
