from __future__ import annotations

from redis import Redis
from rq import Queue
from rq.job import Job

from token_resolver.config.settings import settings
from token_resolver.jobs.maintenance import run_market_warmup, run_purge


def get_redis_connection() -> Redis:
    return Redis.from_url(settings.redis_url)


def get_queue(name: str | None = None) -> Queue:
    queue_name = name or settings.maintenance_queue_name
    return Queue(name=queue_name, connection=get_redis_connection())


def enqueue_purge() -> Job:
    queue = get_queue()
    return queue.enqueue(run_purge)


def enqueue_market_warmup(addresses: list[str]) -> Job:
    queue = get_queue()
    return queue.enqueue(run_market_warmup, addresses=addresses)
