"""Configuration loader/validator for the Google Ads connector (BYO creds)."""
from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import yaml


class GoogleAdsConfigError(ValueError):
    pass


@dataclass
class GoogleAdsConfig:
    developer_token: str
    client_id: str
    client_secret: str
    refresh_token: str
    customer_id: str
    login_customer_id: Optional[str] = None


def _clean(v) -> str:
    return str(v or "").strip()


def format_customer_id(value) -> str:
    """Strip the dashes Google shows in the UI: ``123-456-7890`` → ``1234567890``."""
    return _clean(value).replace("-", "")


def _env(name: str) -> Optional[str]:
    # ADPILOT_GOOGLE_ADS_* wins over the short GADS_* names
    return os.environ.get(f"ADPILOT_GOOGLE_ADS_{name}") or os.environ.get(f"GADS_{name}")


def load_google_ads_config(customer_id: Optional[str] = None, yaml_path: Optional[str] = None) -> GoogleAdsConfig:
    """Load config from env and optional google-ads.yaml style file.

    Priority:
    1) explicit *yaml_path*
    2) env `ADPILOT_GOOGLE_ADS_YAML`
    3) default `google-ads.yaml` in cwd
    4) env vars only
    """
    cfg_path = yaml_path or os.environ.get("ADPILOT_GOOGLE_ADS_YAML") or "google-ads.yaml"
    raw = {}
    p = Path(cfg_path)
    if p.exists():
        raw = yaml.safe_load(p.read_text(encoding="utf-8")) or {}

    dev = _clean(_env("DEVELOPER_TOKEN") or raw.get("developer_token"))
    cid = _clean(_env("CLIENT_ID") or raw.get("client_id"))
    csec = _clean(_env("CLIENT_SECRET") or raw.get("client_secret"))
    rtok = _clean(_env("REFRESH_TOKEN") or raw.get("refresh_token"))
    lcid = format_customer_id(_env("LOGIN_CUSTOMER_ID") or raw.get("login_customer_id")) or None

    cust = format_customer_id(customer_id or _env("CUSTOMER_ID") or raw.get("customer_id"))

    missing = [
        name for name, value in [
            ("developer_token", dev),
            ("client_id", cid),
            ("client_secret", csec),
            ("refresh_token", rtok),
            ("customer_id", cust),
        ] if not value
    ]
    if missing:
        raise GoogleAdsConfigError(
            "Missing Google Ads config: " + ", ".join(missing) + ". "
            "Set ADPILOT_GOOGLE_ADS_* (or GADS_*) env vars or provide google-ads.yaml."
        )
    if not cust.isdigit():
        raise GoogleAdsConfigError(f"customer_id must be numeric, got {cust!r}")

    return GoogleAdsConfig(
        developer_token=dev,
        client_id=cid,
        client_secret=csec,
        refresh_token=rtok,
        customer_id=cust,
        login_customer_id=lcid,
    )
