"""Google Ads connector: GAQL queries and batched mutations via the google-ads SDK."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Sequence, Tuple

from google.protobuf.field_mask_pb2 import FieldMask

from adpilot.config_google_ads import (
    GoogleAdsConfig,
    format_customer_id,
    load_google_ads_config,
)
from adpilot.errors import UpstreamMutationError
from adpilot.schema import MutationOperation, MutationResponse, OperationResult
from adpilot.services.base import AdsQueryService, MutationService

logger = logging.getLogger(__name__)


class GoogleAdsConnectorError(RuntimeError):
    pass


def build_client(cfg: GoogleAdsConfig):
    try:
        from google.ads.googleads.client import GoogleAdsClient
    except ImportError as exc:  # pragma: no cover
        raise GoogleAdsConnectorError(
            "google-ads SDK missing. Install dependency `google-ads` and retry."
        ) from exc

    payload = {
        "developer_token": cfg.developer_token,
        "client_id": cfg.client_id,
        "client_secret": cfg.client_secret,
        "refresh_token": cfg.refresh_token,
        "use_proto_plus": True,
    }
    if cfg.login_customer_id:
        payload["login_customer_id"] = cfg.login_customer_id

    return GoogleAdsClient.load_from_dict(payload)


# ─────────────────────────────────────────────────────────────────────────────
# Error description
# ─────────────────────────────────────────────────────────────────────────────


def _error_code_name(err) -> Optional[str]:
    code = getattr(err, "error_code", None)
    if code is None:
        return None
    pb = getattr(code, "_pb", None)
    if pb is not None:
        which = pb.WhichOneof("error_code")
        if which:
            value = getattr(code, which, None)
            return getattr(value, "name", None) or str(value)
    return str(code) or None


def describe_error(exc: Exception) -> Tuple[str, Optional[str]]:
    """Return ``(message, code)`` for an SDK or transport exception.

    ``GoogleAdsException`` carries a ``failure`` with one entry per error;
    their messages are joined and the first error code is reported.
    """
    failure = getattr(exc, "failure", None)
    errors = list(getattr(failure, "errors", None) or [])
    if errors:
        message = "; ".join(str(getattr(e, "message", "") or e) for e in errors)
        return message, _error_code_name(errors[0])

    code = getattr(exc, "code", None)
    if callable(code):
        code = code()
    code_name = getattr(code, "name", None) or (str(code) if code is not None else None)
    return str(exc) or exc.__class__.__name__, code_name


def _is_auth_error(message: str) -> bool:
    s = message.lower()
    return any(k in s for k in ["permission", "unauthorized", "unauthenticated", "authentication"])


# ─────────────────────────────────────────────────────────────────────────────
# Query service
# ─────────────────────────────────────────────────────────────────────────────


class GoogleAdsQueryService(AdsQueryService):
    def __init__(self, client, customer_id: str):
        self.client = client
        self.customer_id = format_customer_id(customer_id)

    def query(self, query: str, timeout: Optional[float] = None) -> List[Any]:
        service = self.client.get_service("GoogleAdsService")
        try:
            stream = service.search_stream(
                customer_id=self.customer_id, query=query, timeout=timeout
            )
            return [row for batch in stream for row in getattr(batch, "results", [])]
        except Exception as exc:
            message, code = describe_error(exc)
            if _is_auth_error(message):
                raise GoogleAdsConnectorError(
                    "Google Ads authentication/permission error. Verify developer token, OAuth creds, "
                    f"refresh token, and account access. ({message})"
                ) from exc
            raise GoogleAdsConnectorError(f"Google Ads query failed [{code}]: {message}") from exc


# ─────────────────────────────────────────────────────────────────────────────
# Mutation service
# ─────────────────────────────────────────────────────────────────────────────

_ENUM_FIELDS = {
    ("ad_group_criterion", "status"): "AdGroupCriterionStatusEnum",
    ("ad_group_ad", "status"): "AdGroupAdStatusEnum",
    ("campaign_criterion", "status"): "CampaignCriterionStatusEnum",
    ("campaign_criterion", "keyword.match_type"): "KeywordMatchTypeEnum",
}


def _set_path(target, path: str, value) -> None:
    parts = path.split(".")
    for part in parts[:-1]:
        target = getattr(target, part)
    setattr(target, parts[-1], value)


class GoogleAdsMutationService(MutationService):
    """Submits a batch through ``GoogleAdsService.mutate``.

    With ``partial_failure`` on, valid operations are applied and the
    failing ones are reported per index.
    """

    def __init__(self, client, customer_id: str, partial_failure: bool = True):
        self.client = client
        self.customer_id = format_customer_id(customer_id)
        self.supports_partial_failure = partial_failure

    def _enum_value(self, resource_type: str, path: str, value):
        enum_name = _ENUM_FIELDS.get((resource_type, path))
        if enum_name is None or not isinstance(value, str):
            return value
        return getattr(getattr(self.client.enums, enum_name), value)

    def _to_proto(self, op: MutationOperation):
        mutate_op = self.client.get_type("MutateOperation")
        sub = getattr(mutate_op, f"{op.resource_type}_operation")
        if op.operation == "remove":
            sub.remove = op.resource_name
            return mutate_op

        target = getattr(sub, op.operation)
        if op.operation == "update":
            target.resource_name = op.resource_name
        for path, value in op.fields.items():
            _set_path(target, path, self._enum_value(op.resource_type, path, value))
        if op.operation == "update" and op.update_mask:
            self.client.copy_from(sub.update_mask, FieldMask(paths=list(op.update_mask)))
        return mutate_op

    def _partial_failures(self, response) -> Dict[int, str]:
        status = getattr(response, "partial_failure_error", None)
        if not status:
            return {}
        failure_message = self.client.get_type("GoogleAdsFailure")
        failure_cls = type(failure_message)
        failed: Dict[int, str] = {}
        for detail in status.details:
            failure = failure_cls.deserialize(detail.value)
            for err in failure.errors:
                elements = list(err.location.field_path_elements)
                if not elements:
                    continue
                idx = elements[0].index
                msg = str(err.message)
                failed[idx] = f"{failed[idx]}; {msg}" if idx in failed else msg
        if not failed:
            # a failure that names no operation cannot be attributed
            raise UpstreamMutationError(
                str(getattr(status, "message", "") or "Google Ads reported an unattributed failure")
            )
        return failed

    def mutate(
        self,
        operations: Sequence[MutationOperation],
        validate_only: bool = False,
        timeout: Optional[float] = None,
    ) -> MutationResponse:
        service = self.client.get_service("GoogleAdsService")
        request = self.client.get_type("MutateGoogleAdsRequest")
        request.customer_id = self.customer_id
        request.validate_only = validate_only
        request.partial_failure = self.supports_partial_failure
        for op in operations:
            request.mutate_operations.append(self._to_proto(op))

        try:
            response = service.mutate(request=request, timeout=timeout)
        except Exception as exc:
            message, code = describe_error(exc)
            logger.error("Google Ads mutate failed [%s]: %s", code, message)
            raise UpstreamMutationError(
                message,
                upstream_code=code,
                details={"operations": len(operations)},
            ) from exc

        if not self.supports_partial_failure:
            return MutationResponse(validate_only=validate_only)

        failed = self._partial_failures(response)
        results = [
            OperationResult(
                index=i,
                success=i not in failed,
                resource_name=op.resource_name,
                error=failed.get(i),
            )
            for i, op in enumerate(operations)
        ]
        return MutationResponse(results=results, validate_only=validate_only)


def build_services(
    customer_id: Optional[str] = None,
    config_path: Optional[str] = None,
    client=None,
    partial_failure: bool = True,
) -> Tuple[GoogleAdsQueryService, GoogleAdsMutationService]:
    """Build one client and the two services sharing it."""
    cfg = load_google_ads_config(customer_id=customer_id, yaml_path=config_path)
    client = client or build_client(cfg)
    return (
        GoogleAdsQueryService(client, cfg.customer_id),
        GoogleAdsMutationService(client, cfg.customer_id, partial_failure=partial_failure),
    )
