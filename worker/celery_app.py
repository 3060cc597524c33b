from celery import Celery

from reloop.core.config import settings

celery = Celery(
    "reloop-worker",
    broker=settings.rabbitmq_url,
    backend=settings.redis_url,
    include=["worker.tasks"],
)

celery.conf.update(
    task_acks_late=True,
    worker_prefetch_multiplier=1,
    task_default_queue="default",
    task_routes={
        "worker.tasks.process_outbox_event": {"queue": "outbox"},
        "worker.tasks.expire_listings": {"queue": "default"},
    },
    beat_schedule={
        "expire-listings": {
            "task": "worker.tasks.expire_listings",
            "schedule": 3600.0,
        },
    },
)
