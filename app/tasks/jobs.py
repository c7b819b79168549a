from app.tasks.celery_app import celery
from app.tasks import worker_jobs


@celery.task(name="app.tasks.jobs.process_email_queue")
def process_email_queue(limit: int = 50):
    return worker_jobs.process_email_queue(limit=limit)


@celery.task(name="app.tasks.jobs.reconcile_pending_payments")
def reconcile_pending_payments():
    return worker_jobs.reconcile_pending_payments()


@celery.task(name="app.tasks.jobs.reap_stale_bookings")
def reap_stale_bookings():
    return worker_jobs.reap_stale_bookings()
