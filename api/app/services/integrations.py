"""Connectivity checks for every third-party integration.

Each check makes one minimal, non-destructive call. Credentials are read from
the live environment on every run so the admin page reflects the running
process. A check returns ("pass" | "fail" | "skip", message); `run_all`
adds timing and turns exceptions into failures.
"""

import asyncio
import base64
import json
import logging
import os
import time
from collections.abc import Awaitable, Callable, Mapping
from datetime import datetime, timezone
from typing import Any
from urllib.parse import urlsplit

import httpx
from sqlalchemy import text

from app import config
from app.database import SessionLocal

logger = logging.getLogger(__name__)

CheckResult = tuple[str, str]
Check = Callable[[httpx.AsyncClient, Mapping[str, str]], Awaitable[CheckResult]]

SAFE_IMAGE_URL = (
    "https://upload.wikimedia.org/wikipedia/commons/thumb/4/47/"
    "PNG_transparency_demonstration_1.png/280px-PNG_transparency_demonstration_1.png"
)


class SkipCheck(Exception):
    pass


def _require(env: Mapping[str, str], *names: str, label: str | None = None) -> list[str]:
    values = [str(env.get(n) or "").strip() for n in names]
    if not all(values):
        missing = label or f"Missing {', '.join(n for n, v in zip(names, values) if not v)}"
        raise SkipCheck(missing)
    return values


def _basic(user: str, password: str) -> str:
    return "Basic " + base64.b64encode(f"{user}:{password}".encode()).decode()


def _count_accounts() -> int:
    with SessionLocal() as db:
        return int(db.execute(text("SELECT COUNT(*) FROM accounts")).scalar() or 0)


async def check_database(client: httpx.AsyncClient, env: Mapping[str, str]) -> CheckResult:
    count = await asyncio.to_thread(_count_accounts)
    return "pass", f"Connected, {count} accounts"


async def check_stripe(client: httpx.AsyncClient, env: Mapping[str, str]) -> CheckResult:
    (key,) = _require(env, "STRIPE_SECRET_KEY")
    resp = await client.get("https://api.stripe.com/v1/products", params={"limit": 1}, headers={"Authorization": f"Bearer {key}"})
    data = resp.json()
    if data.get("error"):
        return "fail", str(data["error"].get("message") or "Stripe error")
    return "pass", f"Connected, {len(data.get('data') or [])} product(s) found"


async def check_postmark(client: httpx.AsyncClient, env: Mapping[str, str]) -> CheckResult:
    (token,) = _require(env, "POSTMARK_SERVER_TOKEN")
    resp = await client.get(
        "https://api.postmarkapp.com/server",
        headers={"Accept": "application/json", "X-Postmark-Server-Token": token},
    )
    if resp.status_code == 401:
        return "fail", "Invalid server token"
    data = resp.json()
    if data.get("Name"):
        return "pass", f"Connected, server \"{data['Name']}\""
    return "fail", str(data.get("Message") or f"HTTP {resp.status_code}")


async def check_zoom(client: httpx.AsyncClient, env: Mapping[str, str]) -> CheckResult:
    account_id, client_id, secret = _require(
        env, "ZOOM_ACCOUNT_ID", "ZOOM_CLIENT_ID", "ZOOM_CLIENT_SECRET", label="Missing Zoom credentials"
    )
    resp = await client.post(
        "https://zoom.us/oauth/token",
        params={"grant_type": "account_credentials", "account_id": account_id},
        headers={"Authorization": _basic(client_id, secret)},
    )
    data = resp.json()
    if data.get("access_token"):
        return "pass", "Connected, token obtained"
    return "fail", str(data.get("reason") or data.get("error") or "Unknown error")


async def check_sentry(client: httpx.AsyncClient, env: Mapping[str, str]) -> CheckResult:
    (dsn,) = _require(env, "SENTRY_DSN")
    parts = urlsplit(dsn)
    resp = await client.get(f"{parts.scheme}://{parts.hostname}/api/0/")
    # 401/403 still prove the DSN host answers.
    if resp.status_code in (200, 401, 403):
        return "pass", f"Connected, DSN host reachable ({resp.status_code})"
    return "fail", f"DSN host returned {resp.status_code}"


async def check_turnstile(client: httpx.AsyncClient, env: Mapping[str, str]) -> CheckResult:
    secret, _site = _require(env, "TURNSTILE_SECRET_KEY", "TURNSTILE_SITE_KEY", label="Missing Turnstile keys")
    resp = await client.post(
        "https://challenges.cloudflare.com/turnstile/v0/siteverify",
        data={"secret": secret, "response": "test-token"},
    )
    errors = resp.json().get("error-codes") or []
    if "invalid-input-secret" in errors:
        return "fail", "Invalid secret key"
    return "pass", "Secret key valid (test token rejected as expected)"


async def check_fingerprint(client: httpx.AsyncClient, env: Mapping[str, str]) -> CheckResult:
    (key,) = _require(env, "FINGERPRINT_API_KEY")
    return "pass", f"API key configured ({key[:6]}...), client-side only"


async def check_ipqs(client: httpx.AsyncClient, env: Mapping[str, str]) -> CheckResult:
    (key,) = _require(env, "IPQS_API_KEY")
    resp = await client.get(f"https://ipqualityscore.com/api/json/ip/{key}/8.8.8.8", params={"strictness": 0})
    data = resp.json()
    if data.get("success"):
        return "pass", f"Connected, Google DNS fraud score: {data.get('fraud_score')}"
    return "fail", str(data.get("message") or "API returned failure")


async def check_onesignal(client: httpx.AsyncClient, env: Mapping[str, str]) -> CheckResult:
    app_id, rest_key = _require(env, "ONESIGNAL_APP_ID", "ONESIGNAL_REST_KEY", label="Missing OneSignal credentials")
    resp = await client.get(f"https://api.onesignal.com/apps/{app_id}", headers={"Authorization": f"Key {rest_key}"})
    data = resp.json()
    if data.get("id"):
        return "pass", f"Connected, app \"{data.get('name')}\""
    errors = data.get("errors") or ["Unknown error"]
    return "fail", str(errors[0])


async def check_mixpanel(client: httpx.AsyncClient, env: Mapping[str, str]) -> CheckResult:
    (token,) = _require(env, "MIXPANEL_TOKEN")
    event = {
        "event": "integration_test",
        "properties": {"token": token, "distinct_id": "test-admin", "time": int(time.time())},
    }
    encoded = base64.b64encode(json.dumps(event).encode()).decode()
    resp = await client.get("https://api.mixpanel.com/track", params={"data": encoded, "verbose": 1})
    data = resp.json()
    if data.get("status") == 1:
        return "pass", "Connected, test event accepted"
    return "fail", str(data.get("error") or "Event rejected")


async def check_thehive(client: httpx.AsyncClient, env: Mapping[str, str]) -> CheckResult:
    (key,) = _require(env, "THEHIVE_API_KEY")
    resp = await client.post(
        "https://api.thehive.ai/api/v2/task/sync",
        headers={"Authorization": f"Token {key}"},
        json={"url": SAFE_IMAGE_URL},
    )
    if resp.status_code in (401, 403):
        return "fail", f"Invalid API key ({resp.status_code})"
    return "pass", f"API reachable (HTTP {resp.status_code})"


async def check_imagekit(client: httpx.AsyncClient, env: Mapping[str, str]) -> CheckResult:
    (url,) = _require(env, "IMAGEKIT_URL")
    resp = await client.head(f"{url.rstrip('/')}/test-connectivity.jpg")
    if resp.status_code in (200, 404):
        return "pass", f"CDN reachable (HTTP {resp.status_code})"
    return "fail", f"Unexpected status {resp.status_code}"


async def check_customerio(client: httpx.AsyncClient, env: Mapping[str, str]) -> CheckResult:
    site_id, key = _require(env, "CUSTOMERIO_SITE_ID", "CUSTOMERIO_API_KEY", label="Missing Customer.io credentials")
    resp = await client.get("https://track.customer.io/auth", headers={"Authorization": _basic(site_id, key)})
    if resp.status_code == 200:
        return "pass", "Connected, credentials valid"
    return "fail", f"Auth failed (HTTP {resp.status_code})"


async def check_sinch(client: httpx.AsyncClient, env: Mapping[str, str]) -> CheckResult:
    plan_id, token = _require(env, "SINCH_SERVICE_PLAN_ID", "SINCH_API_TOKEN", label="Missing Sinch credentials")
    resp = await client.get(
        f"https://us.sms.api.sinch.com/xms/v1/{plan_id}/batches",
        params={"page_size": 1},
        headers={"Authorization": f"Bearer {token}"},
    )
    if resp.status_code == 200:
        sender = "sender number set" if env.get("SINCH_SENDER_NUMBER") else "WARNING: no SINCH_SENDER_NUMBER"
        return "pass", f"Connected, {sender}"
    if resp.status_code in (401, 403):
        return "fail", "Invalid API credentials"
    return "fail", f"Unexpected status {resp.status_code}"


async def check_zoho(client: httpx.AsyncClient, env: Mapping[str, str]) -> CheckResult:
    client_id, secret, refresh = _require(
        env, "ZOHO_CLIENT_ID", "ZOHO_CLIENT_SECRET", "ZOHO_REFRESH_TOKEN", label="Missing Zoho credentials"
    )
    resp = await client.post(
        "https://accounts.zoho.com/oauth/v2/token",
        params={
            "grant_type": "refresh_token",
            "client_id": client_id,
            "client_secret": secret,
            "refresh_token": refresh,
        },
    )
    data = resp.json()
    if data.get("access_token"):
        org = env.get("ZOHO_ORG_ID")
        org_msg = f"Org ID: {org}" if org else "WARNING: no ZOHO_ORG_ID for Desk"
        return "pass", f"Connected, token obtained, {org_msg}"
    return "fail", str(data.get("error") or "Token refresh failed")


async def check_search_console(client: httpx.AsyncClient, env: Mapping[str, str]) -> CheckResult:
    (code,) = _require(env, "GSC_VERIFICATION")
    return "pass", f"Verification code set ({code[:12]}...)"


CHECKS: list[tuple[str, Check]] = [
    ("Database", check_database),
    ("Stripe", check_stripe),
    ("Postmark", check_postmark),
    ("Zoom", check_zoom),
    ("Sentry", check_sentry),
    ("Cloudflare Turnstile", check_turnstile),
    ("FingerprintJS", check_fingerprint),
    ("IPQualityScore", check_ipqs),
    ("OneSignal", check_onesignal),
    ("Mixpanel", check_mixpanel),
    ("TheHive.ai", check_thehive),
    ("ImageKit", check_imagekit),
    ("Customer.io", check_customerio),
    ("Sinch SMS", check_sinch),
    ("Zoho One", check_zoho),
    ("Google Search Console", check_search_console),
]


async def _run_one(service: str, check: Check, client: httpx.AsyncClient, env: Mapping[str, str]) -> dict[str, Any]:
    start = time.perf_counter()
    try:
        status, message = await check(client, env)
    except SkipCheck as exc:
        return {"service": service, "status": "skip", "message": str(exc)}
    except Exception as exc:
        logger.warning(f"[integrations] {service} check failed: {exc}")
        status, message = "fail", str(exc) or exc.__class__.__name__
    return {
        "service": service,
        "status": status,
        "message": message,
        "responseTime": int((time.perf_counter() - start) * 1000),
    }


def summarize(results: list[dict[str, Any]], now: datetime | None = None) -> dict[str, Any]:
    now = now or datetime.now(timezone.utc)
    return {
        "total": len(results),
        "passed": sum(1 for r in results if r["status"] == "pass"),
        "failed": sum(1 for r in results if r["status"] == "fail"),
        "skipped": sum(1 for r in results if r["status"] == "skip"),
        "timestamp": now.isoformat(),
    }


async def run_all(
    env: Mapping[str, str] | None = None,
    *,
    checks: list[tuple[str, Check]] | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> dict[str, Any]:
    env = os.environ if env is None else env
    async with httpx.AsyncClient(timeout=config.HTTP_TIMEOUT_SECONDS, transport=transport) as client:
        results = await asyncio.gather(*(_run_one(name, fn, client, env) for name, fn in (checks or CHECKS)))
    results = list(results)
    return {"summary": summarize(results), "results": results}
