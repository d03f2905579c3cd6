"""Fetch task dispatch: an in-process worker pool or Amazon SQS."""

from __future__ import annotations

import abc
import json
import logging
import queue
import threading
from typing import Any, Callable, Dict, List

import boto3

from modfinder.config import DEPLOYMENT_MODES
from modfinder.errors import ErrorKind, ModfinderError, invalid_argument, transient
from modfinder.etl.exclusions import ExclusionRegistry

LOGGER = logging.getLogger(__name__)

Handler = Callable[[str, str], Any]

_STOP = object()


class FetchQueue(abc.ABC):
    """Accepts ``(module_path, version)`` fetch tasks.

    Exclusions are checked before a task is handed to the backend, so an
    excluded version never reaches the fetch handler.
    """

    def __init__(self, registry: ExclusionRegistry) -> None:
        self.registry = registry

    def enqueue(self, module_path: str, version: str) -> bool:
        """Dispatch a fetch task; returns False when the version is excluded."""
        if self.registry.is_excluded(module_path, version):
            return False
        self._dispatch(module_path, version)
        return True

    @abc.abstractmethod
    def _dispatch(self, module_path: str, version: str) -> None:
        ...

    def close(self) -> None:
        """Release backend resources."""


class InMemoryQueue(FetchQueue):
    """Bounded buffer serviced by a fixed pool of worker threads.

    ``enqueue`` blocks while the buffer is full. Failed tasks are logged and
    dropped; callers re-enqueue if they want a retry.
    """

    def __init__(
        self,
        registry: ExclusionRegistry,
        handler: Handler,
        *,
        workers: int = 10,
        buffer_size: int | None = None,
    ) -> None:
        super().__init__(registry)
        if workers < 1:
            raise invalid_argument(f"workers must be positive, got {workers}")
        self.handler = handler
        self._tasks: queue.Queue = queue.Queue(maxsize=buffer_size or workers)
        self._threads = [
            threading.Thread(target=self._work, name=f"fetch-worker-{i}", daemon=True)
            for i in range(workers)
        ]
        for thread in self._threads:
            thread.start()

    def _dispatch(self, module_path: str, version: str) -> None:
        self._tasks.put((module_path, version))

    def _work(self) -> None:
        while True:
            task = self._tasks.get()
            try:
                if task is _STOP:
                    return
                self._run(*task)
            finally:
                self._tasks.task_done()

    def _run(self, module_path: str, version: str) -> None:
        try:
            if self.registry.is_excluded(module_path, version):
                return
            self.handler(module_path, version)
        except Exception as exc:
            LOGGER.error("Fetch %s@%s failed: %s", module_path, version, exc)

    def join(self) -> None:
        """Block until every queued task has been processed."""
        self._tasks.join()

    def close(self) -> None:
        for _ in self._threads:
            self._tasks.put(_STOP)
        for thread in self._threads:
            thread.join()


class SQSQueue(FetchQueue):
    """Hands tasks to an SQS queue; a consumer runs :func:`handle_sqs_event`.

    SQS delivers at least once and in no particular order.
    """

    def __init__(self, registry: ExclusionRegistry, client: Any, queue_name: str) -> None:
        super().__init__(registry)
        self.client = client
        self.queue_name = queue_name
        self._queue_url: str | None = None

    @property
    def queue_url(self) -> str:
        if self._queue_url is None:
            try:
                self._queue_url = self.client.get_queue_url(QueueName=self.queue_name)["QueueUrl"]
            except Exception as exc:
                raise transient(f"get_queue_url({self.queue_name!r}): {exc}") from exc
        return self._queue_url

    def _dispatch(self, module_path: str, version: str) -> None:
        body = json.dumps({"module_path": module_path, "version": version})
        try:
            self.client.send_message(QueueUrl=self.queue_url, MessageBody=body)
        except Exception as exc:
            raise transient(f"send_message({self.queue_name!r}, {body}): {exc}") from exc
        LOGGER.debug("Queued %s@%s on %s", module_path, version, self.queue_name)


def handle_sqs_event(event: Dict[str, Any], handler: Handler) -> Dict[str, List[Dict[str, str]]]:
    """Run ``handler`` for each SQS record in a Lambda event.

    Records that failed with a retryable error are reported back as batch
    item failures so SQS redelivers them; invalid ones are dropped.
    """
    failures = []
    for record in event.get("Records", []):
        message_id = record.get("messageId", "")
        try:
            task = json.loads(record["body"])
            handler(task["module_path"], task["version"])
        except (KeyError, TypeError, json.JSONDecodeError) as exc:
            LOGGER.error("Dropping malformed fetch message %s: %s", message_id, exc)
        except ModfinderError as exc:
            if exc.kind is ErrorKind.INVALID_ARGUMENT:
                LOGGER.error("Dropping fetch message %s: %s", message_id, exc)
                continue
            LOGGER.error("Fetch message %s failed: %s", message_id, exc)
            failures.append({"itemIdentifier": message_id})
        except Exception as exc:
            LOGGER.error("Fetch message %s failed: %s", message_id, exc)
            failures.append({"itemIdentifier": message_id})
    return {"batchItemFailures": failures}


def new_queue(
    mode: str,
    registry: ExclusionRegistry,
    handler: Handler,
    *,
    workers: int = 10,
    buffer_size: int | None = None,
    queue_name: str = "dev-fetch-tasks",
    region: str | None = None,
    sqs_client: Any = None,
) -> FetchQueue:
    """Build the queue backend for a deployment mode."""
    if mode == "local":
        return InMemoryQueue(registry, handler, workers=workers, buffer_size=buffer_size)
    if mode == "managed":
        if sqs_client is None:
            sqs_client = boto3.client("sqs", region_name=region)
        return SQSQueue(registry, sqs_client, queue_name)
    raise invalid_argument(f"unknown deployment mode {mode!r}; expected one of {DEPLOYMENT_MODES}")
