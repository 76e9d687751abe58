# Run this with: rq worker -u redis://localhost:6379 insights
# or: python -m opsight.workers.worker (which will spin a small worker loop for dev)
import logging

from redis import Redis
from rq import Queue, Worker

from opsight.core.config import settings
from opsight.core.logging import configure_logging
from opsight.queue_client import QUEUE_NAME

configure_logging(settings.ENV)
logger = logging.getLogger("opsight")

listen = [QUEUE_NAME]

conn = Redis.from_url(settings.REDIS_URL)

if __name__ == '__main__':
    worker = Worker([Queue(name, connection=conn) for name in listen], connection=conn)
    logger.info("Starting RQ worker (interactive).")
    worker.work()
