"""
Webhook application - inbound change notifications and manual sync trigger

POST /sync/webhook        {operation, module, id, <field>: value, ...}
POST /sync/run/{source_id}
"""

import hashlib
import hmac
import json
import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, FastAPI, Header, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse

from config import SyncConfig
from crmsync.cli.runner import SyncRunner
from crmsync.errors import AuthError, ConfigError
from crmsync.schema.models import TargetRef, TargetSystem
from crmsync.sync.reconciliation import EventState

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "X-Sync-Signature"
RESERVED_KEYS = ("operation", "module", "id", "system")


def verify_signature(payload: bytes, signature: str, secret: str) -> bool:
    """Hex HMAC-SHA256 of the raw body"""
    computed = hmac.new(secret.encode(), payload, hashlib.sha256).hexdigest()
    return hmac.compare_digest(computed.encode(), signature.strip().lower().encode())


def parse_target(data: Dict[str, Any]) -> Optional[TargetRef]:
    module = str(data.get("module") or "").strip()
    if not module:
        return None
    if "/" in module:
        return TargetRef.from_key(module)
    return TargetRef(TargetSystem(str(data.get("system") or "crm").lower()), module)


def create_router(runner: SyncRunner, sync_config: SyncConfig) -> APIRouter:
    router = APIRouter(prefix="/sync")

    @router.post("/webhook")
    async def sync_webhook(request: Request, x_sync_signature: Optional[str] = Header(None, alias=SIGNATURE_HEADER)):
        """
        Remote change notification

        The signature header is checked whenever a secret is configured and
        the header is present; require_signature makes it mandatory.
        """
        payload = await request.body()

        if sync_config.webhook_secret and (x_sync_signature or sync_config.require_signature):
            if not x_sync_signature or not verify_signature(payload, x_sync_signature, sync_config.webhook_secret):
                logger.warning("Webhook rejected: invalid signature")
                return JSONResponse(status_code=403, content={"success": False, "state": EventState.REJECTED.value})

        try:
            data = json.loads(payload)
        except ValueError:
            return _bad_request("Body is not valid JSON")
        if not isinstance(data, dict):
            return _bad_request("Body must be a JSON object")

        try:
            target = parse_target(data)
        except (ValueError, ConfigError):
            return _bad_request(f"Unknown module {data.get('module')!r}")
        if target is None or not data.get("id") or not data.get("operation"):
            return _bad_request("operation, module and id are required")

        fields = {k: v for k, v in data.items() if k not in RESERVED_KEYS}
        try:
            outcome = await run_in_threadpool(
                runner.handle_event, target, str(data["id"]), str(data["operation"]), fields or None
            )
        except AuthError as e:
            logger.error(f"Webhook for {target} failed: {e.message}")
            return JSONResponse(status_code=401, content={"success": False, "message": e.message})

        if outcome.state == EventState.REJECTED:
            return JSONResponse(status_code=400, content={"success": False, **outcome.to_dict()})
        return {"success": True, **outcome.to_dict()}

    @router.post("/run/{source_id}")
    async def run_sync(source_id: str):
        """Manual reconciliation for one source"""
        try:
            result = await run_in_threadpool(runner.reconcile, source_id)
        except ConfigError as e:
            return JSONResponse(status_code=404, content={"success": False, "message": e.message})
        except AuthError as e:
            return JSONResponse(status_code=401, content={"success": False, "message": e.message})
        return {"success": True, **result.to_dict()}

    return router


def _bad_request(message: str) -> JSONResponse:
    logger.warning(f"Webhook rejected: {message}")
    return JSONResponse(status_code=400, content={"success": False, "message": message})


def create_app(runner: SyncRunner, sync_config: Optional[SyncConfig] = None) -> FastAPI:
    app = FastAPI(title="Form CRM Sync")
    app.include_router(create_router(runner, sync_config or runner.config.sync))
    return app
