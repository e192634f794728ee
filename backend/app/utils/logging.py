"""Structured logging for chat turns and change application."""

import logging
from typing import Any

logger = logging.getLogger(__name__)

_OK_TURN_OUTCOMES = ("proposed", "applied", "needs_disambiguation", "answered", "clarify")


class StructuredChatLogger:
    """Structured logger for the chat editing pipeline."""

    def log_turn(
        self,
        itinerary_id: str,
        task: str,
        outcome: str,
        latency_ms: float,
        confidence: float | None = None,
        agent: str | None = None,
        error_code: str | None = None,
    ) -> None:
        """Log a completed chat turn with structured data."""
        log_data: dict[str, Any] = {
            "itinerary_id": itinerary_id,
            "task": task,
            "outcome": outcome,
            "latency_ms": round(latency_ms, 2),
        }

        if confidence is not None:
            log_data["confidence"] = round(confidence, 3)
        if agent:
            log_data["agent"] = agent
        if error_code:
            log_data["error_code"] = error_code

        log_msg = f"Chat turn: {task} - {outcome}"

        if outcome in _OK_TURN_OUTCOMES and (not error_code or outcome == "needs_disambiguation"):
            logger.info(log_msg, extra={"structured": log_data})
        else:
            logger.warning(log_msg, extra={"structured": log_data})

    def log_apply(
        self,
        itinerary_id: str,
        base_version: int,
        result: str,
        new_version: int | None = None,
        author: str | None = None,
        reason: str | None = None,
    ) -> None:
        """Log a ChangeSet apply attempt with structured data."""
        log_data: dict[str, Any] = {
            "itinerary_id": itinerary_id,
            "base_version": base_version,
            "result": result,
        }

        if new_version is not None:
            log_data["new_version"] = new_version
        if author:
            log_data["author"] = author
        if reason:
            log_data["reason"] = reason

        log_msg = f"ChangeSet apply: {itinerary_id} - {result}"

        if result == "applied":
            logger.info(log_msg, extra={"structured": log_data})
        else:
            logger.warning(log_msg, extra={"structured": log_data})
