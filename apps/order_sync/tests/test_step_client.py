from __future__ import annotations

from unittest import mock

import requests
from django.test import SimpleTestCase

from apps.order_sync.services.step_client import (
    STEP_ORDER,
    STEP_PURCHASE,
    StepExecutorClient,
    StepFailedError,
    interpret_step_response,
)


def _response(data=None, *, bad_json=False):
    response = mock.Mock()
    if bad_json:
        response.json.side_effect = ValueError("not json")
    else:
        response.json.return_value = data
    return response


class InterpretStepResponseTests(SimpleTestCase):
    def test_skipped_counts_as_success(self):
        result = interpret_step_response(STEP_ORDER, {"skipped": True})

        self.assertTrue(result.success)
        self.assertEqual(result.message, "skipped")

    def test_success_flag(self):
        self.assertTrue(interpret_step_response(STEP_ORDER, {"success": True}).success)

    def test_error_message_precedence(self):
        nested = interpret_step_response(STEP_ORDER, {"error": {"error": "Partner missing"}, "message": "ignored"})
        flat = interpret_step_response(STEP_ORDER, {"error": "Bad SKU", "message": "ignored"})
        message_only = interpret_step_response(STEP_ORDER, {"message": "Locked"})
        empty = interpret_step_response(STEP_PURCHASE, {})

        self.assertEqual(nested.message, "Partner missing")
        self.assertEqual(flat.message, "Bad SKU")
        self.assertEqual(message_only.message, "Locked")
        self.assertFalse(empty.success)
        self.assertEqual(empty.message, "Step purchase failed")

    def test_non_dict_body_is_a_failure(self):
        result = interpret_step_response(STEP_ORDER, ["unexpected"])

        self.assertFalse(result.success)
        self.assertEqual(result.message, "Step order failed")

    def test_step_failed_error_prefixes_step_name(self):
        self.assertEqual(str(StepFailedError(STEP_ORDER, "Bad SKU")), "Order: Bad SKU")


class StepExecutorClientTests(SimpleTestCase):
    def _client(self, session):
        return StepExecutorClient(
            url="https://erp.example.com/step",
            api_key="secret",
            timeout_seconds=30,
            session=session,
        )

    def test_posts_step_body_with_bearer_header(self):
        session = mock.Mock()
        session.post.return_value = _response({"success": True})
        transactions = [{"order_number": "202501010001"}]

        result = self._client(session).execute_step(STEP_ORDER, transactions, [])

        self.assertTrue(result.success)
        session.post.assert_called_once_with(
            "https://erp.example.com/step",
            json={"step": "order", "transactions": transactions, "nonStockProducts": []},
            headers={"Content-Type": "application/json", "Authorization": "Bearer secret"},
            timeout=30,
        )

    def test_timeout_is_reported_as_failure(self):
        session = mock.Mock()
        session.post.side_effect = requests.exceptions.Timeout()

        result = self._client(session).execute_step(STEP_ORDER, [], [])

        self.assertFalse(result.success)
        self.assertEqual(result.message, "Step order timed out after 30s")

    def test_network_error_uses_exception_text(self):
        session = mock.Mock()
        session.post.side_effect = requests.exceptions.ConnectionError("Connection refused")

        result = self._client(session).execute_step(STEP_PURCHASE, [], [])

        self.assertFalse(result.success)
        self.assertEqual(result.message, "Connection refused")

    def test_network_error_without_text(self):
        session = mock.Mock()
        session.post.side_effect = requests.exceptions.ConnectionError()

        result = self._client(session).execute_step(STEP_ORDER, [], [])

        self.assertEqual(result.message, "Network error")

    def test_unparseable_body_is_a_failure(self):
        session = mock.Mock()
        session.post.return_value = _response(bad_json=True)

        result = self._client(session).execute_step(STEP_ORDER, [], [])

        self.assertFalse(result.success)
        self.assertEqual(result.message, "Step order failed")

    def test_no_authorization_header_without_api_key(self):
        session = mock.Mock()
        session.post.return_value = _response({"success": True})
        client = StepExecutorClient(url="https://erp.example.com/step", api_key="", timeout_seconds=5, session=session)

        client.execute_step(STEP_ORDER, [], [])

        self.assertEqual(session.post.call_args.kwargs["headers"], {"Content-Type": "application/json"})
