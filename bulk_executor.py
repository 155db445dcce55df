"""
Bulk Executor Module

Applies one lifecycle action to many containers. Targets are handled one at a
time in input order and a failure on one never stops the rest.
"""

import threading
from typing import Iterable, Optional

from config import STOP_TIMEOUT
from error_classifier import RUNTIME_FAILURES
from models import BulkAction, BulkOutcome, BulkReport, OutcomeStatus
from runtime_gateway import RuntimeGateway, runtime_session
from utils import logger, log_container_operation, RequestCancelled


class BulkLifecycleExecutor:
    def __init__(
        self,
        gateway: RuntimeGateway,
        stop_timeout: int = STOP_TIMEOUT,
        cancel_event: Optional[threading.Event] = None,
    ):
        self.gateway = gateway
        self.stop_timeout = stop_timeout
        self.cancel_event = cancel_event

    def apply(self, action: str, target_ids: Iterable[str]) -> BulkReport:
        try:
            handler = self._handler_for(BulkAction(action))
        except ValueError:
            handler = None

        outcomes = []
        for target_id in target_ids:
            if self.cancel_event is not None and self.cancel_event.is_set():
                logger.info("Bulk operation cancelled", action=action, processed=len(outcomes))
                raise RequestCancelled()
            outcomes.append(self._run_one(action, handler, target_id))

        report = BulkReport(action=action, outcomes=tuple(outcomes))
        logger.info(
            "Bulk operation completed",
            action=action,
            total=report.total,
            success=report.success_count,
            errors=report.error_count,
        )
        return report

    def _run_one(self, action, handler, target_id) -> BulkOutcome:
        if handler is None:
            outcome = BulkOutcome(target_id, OutcomeStatus.ERROR, f"unknown action: {action}")
        else:
            try:
                handler(target_id)
                outcome = BulkOutcome(target_id, OutcomeStatus.SUCCESS)
            except RUNTIME_FAILURES as e:
                outcome = BulkOutcome(target_id, OutcomeStatus.ERROR, str(e))

        log_container_operation(
            f"bulk_{action}",
            target_id,
            outcome.status.value,
            {"message": outcome.message} if outcome.message else None,
        )
        return outcome

    def _handler_for(self, action: BulkAction):
        return {
            BulkAction.START: self.gateway.start_container,
            BulkAction.STOP: lambda cid: self.gateway.stop_container(cid, timeout=self.stop_timeout),
            BulkAction.REMOVE: lambda cid: self.gateway.remove_container(cid, force=True),
            BulkAction.RESTART: lambda cid: self.gateway.restart_container(cid, timeout=self.stop_timeout),
        }[action]


def run_bulk_action(
    action: str, target_ids, cancel_event: Optional[threading.Event] = None
) -> BulkReport:
    with runtime_session() as gateway:
        executor = BulkLifecycleExecutor(gateway, cancel_event=cancel_event)
        return executor.apply(action, target_ids)
