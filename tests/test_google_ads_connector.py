"""Tests for the Google Ads connector with a mocked client."""
from __future__ import annotations

from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import pytest

from adpilot.connectors.google_ads import (
    GoogleAdsConnectorError,
    GoogleAdsMutationService,
    GoogleAdsQueryService,
    build_services,
    describe_error,
)
from adpilot.errors import UpstreamMutationError
from adpilot.mappers import map_record_to_metric_row
from adpilot.schema import MutationOperation


def _mock_row():
    return SimpleNamespace(
        campaign=SimpleNamespace(id=111, name="Camp"),
        ad_group=SimpleNamespace(id=5, name="Group"),
        ad_group_ad=SimpleNamespace(ad=SimpleNamespace(id=12345, name="Ad")),
        metrics=SimpleNamespace(
            impressions=1000,
            clicks=20,
            cost_micros=50000000,
            conversions=5,
            conversions_value=200.0,
        ),
        segments=SimpleNamespace(date="2026-01-01"),
    )


def _query_client(search_stream):
    service = SimpleNamespace(search_stream=search_stream)
    return SimpleNamespace(get_service=lambda name: service)


class TestQueryService:
    def test_flattens_stream_batches(self):
        batches = [SimpleNamespace(results=[_mock_row()]), SimpleNamespace(results=[_mock_row()])]
        calls = {}

        def search_stream(customer_id, query, timeout=None):
            calls.update(customer_id=customer_id, timeout=timeout)
            return batches

        svc = GoogleAdsQueryService(_query_client(search_stream), "123-456-7890")
        rows = svc.query("SELECT campaign.id FROM campaign", timeout=12)
        assert len(rows) == 2
        assert calls == {"customer_id": "1234567890", "timeout": 12}
        assert map_record_to_metric_row(rows[0]).cost_micros == 50000000

    def test_auth_error_message(self):
        def search_stream(customer_id, query, timeout=None):
            raise RuntimeError("PERMISSION_DENIED: user lacks access")

        svc = GoogleAdsQueryService(_query_client(search_stream), "1")
        with pytest.raises(GoogleAdsConnectorError, match="authentication/permission"):
            svc.query("SELECT campaign.id FROM campaign")

    def test_other_errors_wrapped(self):
        def search_stream(customer_id, query, timeout=None):
            raise RuntimeError("unrecognized field")

        svc = GoogleAdsQueryService(_query_client(search_stream), "1")
        with pytest.raises(GoogleAdsConnectorError, match="unrecognized field"):
            svc.query("SELECT x FROM campaign")


class TestDescribeError:
    def test_failure_errors_joined(self):
        exc = RuntimeError("outer")
        exc.failure = SimpleNamespace(
            errors=[SimpleNamespace(message="first", error_code="QUOTA"), SimpleNamespace(message="second")]
        )
        message, code = describe_error(exc)
        assert message == "first; second"
        assert code == "QUOTA"

    def test_grpc_code(self):
        exc = RuntimeError("deadline")
        exc.code = lambda: SimpleNamespace(name="DEADLINE_EXCEEDED")
        assert describe_error(exc) == ("deadline", "DEADLINE_EXCEEDED")


def _mutation_client(mutate):
    client = MagicMock()
    client.get_service.return_value = SimpleNamespace(mutate=mutate)
    client.get_type.side_effect = lambda name: MagicMock()
    client.enums.AdGroupCriterionStatusEnum.PAUSED = "ENUM_PAUSED"
    return client


_PAUSE = MutationOperation(
    "update",
    "ad_group_criterion",
    "customers/1/adGroupCriteria/5~77",
    {"status": "PAUSED"},
    ["status"],
)


class TestMutationService:
    def test_builds_request_and_reports_success(self):
        seen = {}

        def mutate(request, timeout=None):
            seen.update(request=request, timeout=timeout)
            return SimpleNamespace(partial_failure_error=None)

        client = _mutation_client(mutate)
        svc = GoogleAdsMutationService(client, "1")
        resp = svc.mutate([_PAUSE], timeout=30)

        request = seen["request"]
        assert request.customer_id == "1"
        assert request.validate_only is False
        assert request.partial_failure is True
        assert seen["timeout"] == 30
        assert [r.success for r in resp.results] == [True]

        op = request.mutate_operations.append.call_args[0][0]
        assert op.ad_group_criterion_operation.update.status == "ENUM_PAUSED"
        assert op.ad_group_criterion_operation.update.resource_name == _PAUSE.resource_name

    def test_remove_operation(self):
        client = _mutation_client(lambda request, timeout=None: SimpleNamespace(partial_failure_error=None))
        svc = GoogleAdsMutationService(client, "1")
        remove = MutationOperation("remove", "ad_group_criterion", "customers/1/adGroupCriteria/5~78")
        mutate_op = svc._to_proto(remove)
        assert mutate_op.ad_group_criterion_operation.remove == remove.resource_name

    def test_all_or_nothing_without_partial_failure(self):
        client = _mutation_client(lambda request, timeout=None: SimpleNamespace())
        svc = GoogleAdsMutationService(client, "1", partial_failure=False)
        assert svc.mutate([_PAUSE]).results == []

    def test_exception_becomes_upstream_error(self):
        def mutate(request, timeout=None):
            exc = RuntimeError("boom")
            exc.failure = SimpleNamespace(errors=[SimpleNamespace(message="Budget too low", error_code="RANGE")])
            raise exc

        svc = GoogleAdsMutationService(_mutation_client(mutate), "1")
        with pytest.raises(UpstreamMutationError) as exc_info:
            svc.mutate([_PAUSE])
        assert exc_info.value.message == "Budget too low"
        assert exc_info.value.upstream_code == "RANGE"

    def test_partial_failure_indices(self):
        status = SimpleNamespace(message="1 operation failed", details=[SimpleNamespace(value=b"x")])
        client = _mutation_client(lambda request, timeout=None: SimpleNamespace(partial_failure_error=status))

        failure = SimpleNamespace(
            errors=[
                SimpleNamespace(
                    message="Resource not found",
                    location=SimpleNamespace(field_path_elements=[SimpleNamespace(index=1)]),
                )
            ]
        )

        class _Failure:
            @staticmethod
            def deserialize(value):
                return failure

        client.get_type.side_effect = lambda name: _Failure() if name == "GoogleAdsFailure" else MagicMock()
        svc = GoogleAdsMutationService(client, "1")
        resp = svc.mutate([_PAUSE, _PAUSE])
        assert [r.success for r in resp.results] == [True, False]
        assert resp.results[1].error == "Resource not found"

    def test_unattributed_partial_failure_raises(self):
        status = SimpleNamespace(message="unknown", details=[SimpleNamespace(value=b"x")])
        client = _mutation_client(lambda request, timeout=None: SimpleNamespace(partial_failure_error=status))

        class _Failure:
            @staticmethod
            def deserialize(value):
                return SimpleNamespace(
                    errors=[SimpleNamespace(message="?", location=SimpleNamespace(field_path_elements=[]))]
                )

        client.get_type.side_effect = lambda name: _Failure() if name == "GoogleAdsFailure" else MagicMock()
        with pytest.raises(UpstreamMutationError, match="unknown"):
            GoogleAdsMutationService(client, "1").mutate([_PAUSE])


def test_build_services_share_client():
    client = object()
    with patch("adpilot.connectors.google_ads.load_google_ads_config") as mock_cfg:
        mock_cfg.return_value = SimpleNamespace(
            developer_token="d", client_id="id", client_secret="sec",
            refresh_token="rt", customer_id="123", login_customer_id=None,
        )
        query, mutation = build_services(customer_id="123", client=client)
    assert query.client is mutation.client is client
    assert mutation.customer_id == "123"
