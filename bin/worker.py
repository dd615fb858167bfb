#!/usr/bin/env python3
"""Run a Temporal worker hosting PullRequestWorkflow.

Persistence and notification delivery are in-memory here. Deployments that
need durable collaborators inject them with init_pull_request_store() and
init_notification_emitter() before calling run_worker().

Usage:
    bin/worker.py
    bin/worker.py --task-queue review-staging
    TEMPORAL_ADDRESS=temporal:7233 bin/worker.py
"""

import argparse
import asyncio
import logging
import os

from temporalio.client import Client
from temporalio.worker import Worker

from review_protocol.activities import (
    InMemoryNotificationEmitter,
    InMemoryPullRequestStore,
    emit_notification,
    init_notification_emitter,
    init_pull_request_store,
    persist_pull_request,
)
from review_protocol.workflow import PullRequestWorkflow

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
)
logger = logging.getLogger(__name__)

DEFAULT_TASK_QUEUE = "review-protocol"

# (flag, environment variable, default, help)
_OPTIONS = (
    ("--namespace", "TEMPORAL_NAMESPACE", "default", "Temporal namespace"),
    ("--task-queue", "TEMPORAL_TASK_QUEUE", DEFAULT_TASK_QUEUE, "task queue to poll"),
    ("--server-address", "TEMPORAL_ADDRESS", "localhost:7233", "Temporal frontend host:port"),
)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """A flag beats its environment variable, which beats the default."""
    parser = argparse.ArgumentParser(description="Pull request review protocol worker.")
    for flag, env_var, default, text in _OPTIONS:
        parser.add_argument(
            flag,
            default=os.environ.get(env_var, default),
            help=f"{text} (env: {env_var}, default: {default!r})",
        )
    return parser.parse_args(argv)


async def run_worker(namespace: str, task_queue: str, server_address: str) -> None:
    client = await Client.connect(server_address, namespace=namespace)
    async with Worker(
        client,
        task_queue=task_queue,
        workflows=[PullRequestWorkflow],
        activities=[persist_pull_request, emit_notification],
    ):
        logger.info(
            "Polling %r on %s (namespace %r)", task_queue, server_address, namespace
        )
        await asyncio.Event().wait()


async def main() -> None:
    args = parse_args()
    init_pull_request_store(InMemoryPullRequestStore())
    init_notification_emitter(InMemoryNotificationEmitter())
    await run_worker(args.namespace, args.task_queue, args.server_address)


if __name__ == "__main__":
    asyncio.run(main())
