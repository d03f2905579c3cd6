"""AWS Lambda entry point for SQS-delivered fetch tasks."""

from __future__ import annotations

import logging
from typing import Any, Dict

from modfinder.bootstrap import Services, start
from modfinder.config import AppConfig
from modfinder.etl.dispatch import handle_sqs_event

LOGGER = logging.getLogger(__name__)

_services: Services | None = None


def get_services() -> Services:
    global _services
    if _services is None:
        _services = start(AppConfig.from_env(), with_queue=False)
    return _services


def lambda_handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    services = get_services()
    return handle_sqs_event(event, services.handler)
