from __future__ import annotations

import asyncio
from datetime import UTC, datetime
import json
from typing import Any

import pytest

from shopledger.adapters.shopify.bulk import BulkJobRunner, reassemble_bulk_lines
from shopledger.adapters.shopify.client import HttpResponse
from shopledger.core.errors import (
    BulkJobFailedError,
    JobTimeoutError,
    UpstreamRequestError,
)
from tests.fixtures.shopify import (
    ScriptedTransport,
    bulk_operation,
    create_client,
    create_order_node,
    graphql_response,
)

START = datetime(2024, 10, 1, tzinfo=UTC)
END = datetime(2024, 10, 31, tzinfo=UTC)
OP_ID = "gid://shopify/BulkOperation/1"
RESULT_URL = "https://storage.shopifycloud.com/result.jsonl"

# Helper classes


class RecordingSleep:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


# Helper functions


def no_current_operation() -> HttpResponse:
    return graphql_response({"currentBulkOperation": None})


def mutation_ok(field: str, status: str = "CREATED") -> HttpResponse:
    return graphql_response(
        {field: {"bulkOperation": {"id": OP_ID, "status": status}, "userErrors": []}}
    )


def jsonl(records: list[dict[str, Any]]) -> HttpResponse:
    body = "\n".join(json.dumps(record) for record in records) + "\n"
    return HttpResponse(status=200, body=body.encode("utf-8"))


def create_bulk_records() -> list[dict[str, Any]]:
    """Flattened export of two orders, one refund line and one orphan."""
    first = create_order_node(1)
    line = first.pop("lineItems")["edges"][0]["node"]
    first.pop("shippingLines")
    first["refunds"] = [
        {
            "id": "gid://shopify/Refund/7",
            "createdAt": "2024-10-05T09:00:00Z",
            "totalRefundedSet": {"shopMoney": {"amount": "125.00"}},
        }
    ]
    second = create_order_node(2)
    second_line = second.pop("lineItems")["edges"][0]["node"]
    second.pop("shippingLines")
    return [
        first,
        {**line, "__parentId": first["id"]},
        {
            "id": "gid://shopify/RefundLineItem/70",
            "quantity": 1,
            "priceSet": {"shopMoney": {"amount": "125.00"}},
            "lineItem": {"id": line["id"], "sku": line["sku"]},
            "__parentId": "gid://shopify/Refund/7",
        },
        second,
        {**second_line, "__parentId": second["id"]},
        {**second_line, "__parentId": "gid://shopify/Order/404"},
    ]


def create_runner(
    transport: ScriptedTransport,
    *,
    timeout: float = 30.0,
    sleep: RecordingSleep | None = None,
) -> BulkJobRunner:
    return BulkJobRunner(
        create_client(transport),
        poll_interval=10.0,
        timeout=timeout,
        sleep=sleep or RecordingSleep(),
    )


class TestReassembleBulkLines:
    def test_children_attach_to_their_parents(self) -> None:
        # input
        lines = [json.dumps(record) for record in create_bulk_records()]

        # act
        result = reassemble_bulk_lines(lines)

        # assert
        assert [order["id"] for order in result.orders] == [
            "gid://shopify/Order/1",
            "gid://shopify/Order/2",
        ]
        first = result.orders[0]
        assert len(first["lineItems"]) == 1
        assert "__parentId" not in first["lineItems"][0]
        refund_lines = first["refunds"][0]["refundLineItems"]
        assert refund_lines[0]["quantity"] == 1
        assert result.orphans == 1
        assert result.malformed == 0

    def test_malformed_lines_are_counted(self) -> None:
        result = reassemble_bulk_lines(["{not json", "[1, 2]"])

        assert result.orders == []
        assert result.malformed == 2


class TestBulkJobRunner:
    def test_run_returns_parsed_orders(self) -> None:
        # input
        transport = ScriptedTransport(
            [
                no_current_operation(),
                mutation_ok("bulkOperationRunQuery"),
                bulk_operation("RUNNING"),
                bulk_operation("COMPLETED", url=RESULT_URL),
                jsonl(create_bulk_records()),
            ]
        )
        sleep = RecordingSleep()

        # act
        orders = asyncio.run(create_runner(transport, sleep=sleep).run(START, END))

        # assert
        assert [order.order_id for order in orders] == ["1", "2"]
        assert len(orders[0].line_items) == 1
        assert orders[0].refunds[0].lines[0].quantity == 1
        assert sleep.delays == [10.0]
        assert transport.requests[-1].url == RESULT_URL
        submitted = transport.requests[1].variables["query"]
        assert "created_at:>=2024-10-01T00:00:00Z" in submitted

    def test_stuck_job_times_out_and_is_cancelled(self) -> None:
        """
        A job still RUNNING after timeout / poll_interval polls.

        The runner waits out the whole timeout, cancels the job and raises
        instead of polling forever.
        """
        # input
        transport = ScriptedTransport(
            [
                no_current_operation(),
                mutation_ok("bulkOperationRunQuery"),
                bulk_operation("RUNNING"),
                bulk_operation("RUNNING"),
                bulk_operation("RUNNING"),
                mutation_ok("bulkOperationCancel", status="CANCELING"),
            ]
        )
        sleep = RecordingSleep()
        runner = create_runner(transport, timeout=30.0, sleep=sleep)

        # act
        with pytest.raises(JobTimeoutError):
            asyncio.run(runner.run(START, END))

        # assert
        assert runner.max_polls == 3
        assert sum(sleep.delays) == 30.0
        assert "bulkOperationCancel" in transport.requests[-1].query
        assert transport.requests[-1].variables == {"id": OP_ID}

    def test_failed_job_raises_with_error_code(self) -> None:
        transport = ScriptedTransport(
            [
                no_current_operation(),
                mutation_ok("bulkOperationRunQuery"),
                bulk_operation("FAILED", error_code="ACCESS_DENIED"),
            ]
        )

        with pytest.raises(BulkJobFailedError) as exc_info:
            asyncio.run(create_runner(transport).run(START, END))

        assert exc_info.value.error_code == "ACCESS_DENIED"

    def test_completed_without_url_returns_nothing(self) -> None:
        transport = ScriptedTransport(
            [
                no_current_operation(),
                mutation_ok("bulkOperationRunQuery"),
                bulk_operation("COMPLETED"),
            ]
        )

        assert asyncio.run(create_runner(transport).run(START, END)) == []

    def test_prior_running_job_is_cancelled_first(self) -> None:
        # input
        transport = ScriptedTransport(
            [
                bulk_operation("RUNNING", key="currentBulkOperation"),
                mutation_ok("bulkOperationCancel", status="CANCELING"),
                bulk_operation("CANCELED", key="currentBulkOperation"),
                mutation_ok("bulkOperationRunQuery"),
                bulk_operation("COMPLETED"),
            ]
        )

        # act
        asyncio.run(create_runner(transport).run(START, END))

        # assert
        assert "bulkOperationCancel" in transport.requests[1].query
        assert "bulkOperationRunQuery" in transport.requests[3].query

    def test_submit_user_errors_raise(self) -> None:
        transport = ScriptedTransport(
            [
                no_current_operation(),
                graphql_response(
                    {
                        "bulkOperationRunQuery": {
                            "bulkOperation": None,
                            "userErrors": [{"field": None, "message": "Bad query"}],
                        }
                    }
                ),
            ]
        )

        with pytest.raises(UpstreamRequestError, match="Bad query"):
            asyncio.run(create_runner(transport).run(START, END))

    def test_failed_cancel_still_reports_timeout(self) -> None:
        """
        The stuck job finishes just as it is cancelled, so the cancel is rejected.

        The chunk still fails with the timeout, not with the cancel error.
        """
        # input
        transport = ScriptedTransport(
            [
                no_current_operation(),
                mutation_ok("bulkOperationRunQuery"),
                bulk_operation("RUNNING"),
                graphql_response(
                    {
                        "bulkOperationCancel": {
                            "bulkOperation": None,
                            "userErrors": [
                                {"field": None, "message": "Operation is complete"}
                            ],
                        }
                    }
                ),
            ]
        )
        runner = create_runner(transport, timeout=10.0)

        # act
        with pytest.raises(JobTimeoutError, match="after 1 poll"):
            asyncio.run(runner.run(START, END))

        # assert
        assert "bulkOperationCancel" in transport.requests[-1].query
