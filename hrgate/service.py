"""
hrgate Signer Service

HTTP front end for the signer. The mobile/watch side posts samples to
``/signal``; the publisher signs and distributes them. ``/refs`` exposes a
ref store over HTTP for deployments without a git remote (HttpRefStore is
its client).

Every endpoint except ``/healthz`` requires ``Authorization: Bearer <token>``.
"""

import base64
import binascii
from typing import Optional

from fastapi import Depends, FastAPI, Header, HTTPException

from .config import is_production
from .errors import TransportError
from .models import RefContent, RefWriteRequest, SignalRequest, SignalResponse
from .publisher import SignalPublisher
from .transport import InMemoryRefStore, RefStore
from .util import constant_time_compare, mask_sensitive


def create_app(
    publisher: SignalPublisher,
    ref_store: Optional[RefStore] = None,
    api_token: str = ""
) -> FastAPI:
    """
    Build the service app.

    Raises:
        ValueError: if ``api_token`` is empty
    """
    if not api_token:
        raise ValueError("api_token is required")
    store = ref_store if ref_store is not None else InMemoryRefStore()
    expected = f"Bearer {api_token}"

    # no interactive docs in prod
    app = FastAPI(title="hrgate signer", docs_url=None if is_production() else "/docs", redoc_url=None)

    def require_token(authorization: Optional[str] = Header(default=None)):
        if authorization is None or not constant_time_compare(authorization, expected):
            raise HTTPException(401, "UNAUTHORIZED")

    @app.get("/healthz")
    def healthz():
        return {"status": "ok", "user_key": mask_sensitive(publisher.subject_key)}

    @app.post("/signal", response_model=SignalResponse, dependencies=[Depends(require_token)])
    def post_signal(req: SignalRequest):
        report = publisher.submit(req.session_id, req.bpm, req.threshold_bpm, req.sample_ts)
        if report is None:
            return SignalResponse(published=False, debounced=True)
        return SignalResponse(
            published=report.ok,
            hr_ok=report.assertion.threshold_met,
            exp_unix=report.assertion.expires_at_unix,
            stale=report.stale,
            failed_targets=sorted(report.failed),
        )

    @app.put("/refs", dependencies=[Depends(require_token)])
    def put_ref(req: RefWriteRequest):
        try:
            content = base64.b64decode(req.content_b64, validate=True)
        except (binascii.Error, ValueError):
            raise HTTPException(400, "BAD_CONTENT")
        try:
            object_id = store.publish(req.ref, req.filename, content, req.message)
        except TransportError as e:
            raise HTTPException(502, str(e))
        return {"ref": req.ref, "object_id": object_id}

    @app.get("/refs", response_model=RefContent, dependencies=[Depends(require_token)])
    def get_ref(ref: str, filename: str):
        try:
            content = store.fetch(ref, filename)
        except TransportError:
            raise HTTPException(404, "NOT_FOUND")
        return RefContent(
            ref=ref,
            filename=filename,
            content_b64=base64.b64encode(content).decode("ascii"),
        )

    return app
