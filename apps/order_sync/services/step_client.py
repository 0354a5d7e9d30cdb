from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

import requests

from .. import sync_settings

logger = logging.getLogger(__name__)

STEP_ORDER = "order"
STEP_PURCHASE = "purchase"


@dataclass(frozen=True)
class StepResult:
    success: bool
    message: str = ""


class StepFailedError(RuntimeError):
    def __init__(self, step: str, message: str):
        super().__init__(f"{step.capitalize()}: {message}")
        self.step = step


def _error_message(step: str, data: dict[str, Any]) -> str:
    error = data.get("error")
    if isinstance(error, dict) and error.get("error"):
        return str(error["error"])
    if error:
        return str(error)
    if data.get("message"):
        return str(data["message"])
    return f"Step {step} failed"


def interpret_step_response(step: str, data: Any) -> StepResult:
    if not isinstance(data, dict):
        data = {}
    if data.get("skipped"):
        return StepResult(success=True, message="skipped")
    if data.get("success"):
        return StepResult(success=True)
    return StepResult(success=False, message=_error_message(step, data))


class StepExecutorClient:
    """Posts one step of an order submission to the external ERP step endpoint."""

    def __init__(
        self,
        *,
        url: str | None = None,
        api_key: str | None = None,
        timeout_seconds: float | None = None,
        session: requests.Session | None = None,
    ):
        self.url = url if url is not None else sync_settings.get_step_url()
        self.api_key = api_key if api_key is not None else sync_settings.get_step_api_key()
        self.timeout_seconds = timeout_seconds or sync_settings.get_step_timeout_seconds()
        self.session = session or requests.Session()

    def execute_step(
        self,
        step: str,
        transactions: list[dict[str, Any]],
        non_stock_transactions: list[dict[str, Any]],
    ) -> StepResult:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        body = {"step": step, "transactions": transactions, "nonStockProducts": non_stock_transactions}

        try:
            resp = self.session.post(self.url, json=body, headers=headers, timeout=self.timeout_seconds)
        except requests.exceptions.Timeout:
            logger.warning("Step %s timed out after %ss", step, self.timeout_seconds)
            return StepResult(success=False, message=f"Step {step} timed out after {round(self.timeout_seconds)}s")
        except requests.exceptions.RequestException as exc:
            logger.warning("Step %s request failed: %s", step, exc)
            return StepResult(success=False, message=str(exc) or "Network error")

        try:
            data = resp.json()
        except ValueError:
            data = {}
        return interpret_step_response(step, data)
