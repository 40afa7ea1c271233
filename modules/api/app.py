"""
HTTP API for Budget Buckets.

Routes:
- POST   /api/billing/webhook                Stripe lifecycle notifications
- GET    /api/billing/config                 Publishable billing settings
- POST   /api/billing/setup-intent           Start collecting a payment method
- POST   /api/billing/create-subscription    Subscribe to Plus
- POST   /api/billing/portal                 Billing portal session
- POST   /api/account/bootstrap              Free record for a new user
- POST   /api/buckets                        Create a bucket (admission controlled)
- DELETE /api/buckets/{bucket_id}            Delete a bucket
- GET    /api/buckets/count                  Live bucket count
- POST   /api/admin/reconcile/{uid}          Manual reconciliation
- POST   /api/admin/buckets/{uid}/recount    Counter repair
- GET    /api/admin/divergences              Open claim divergences
- GET    /__/health
"""

import logging
from typing import Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Request, Response
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from config.environment import Environment
from config.feature_flags import FeatureFlags
from modules.api.auth import AuthenticatedUser, get_current_user, require_admin
from modules.core.error_handler import (
    AppError,
    BillingProviderError,
    CapacityExceededError,
    TransientStorageError,
    ValidationError,
    log_error,
)
from modules.core.models import BucketPayload
from modules.core.service_container import ServiceContainer, get_services

logger = logging.getLogger(__name__)

# Gateway outcome -> HTTP status. Only 'error' asks Stripe to redeliver.
WEBHOOK_STATUS_CODES = {
    'success': 200,
    'duplicate': 200,
    'ignored': 200,
    'rejected': 400,
    'error': 500,
}

app = FastAPI(title=Environment.APP_NAME, version=Environment.APP_VERSION)


class CreateSubscriptionRequest(BaseModel):
    customerId: str
    paymentMethodId: str
    priceId: Optional[str] = None


class PortalRequest(BaseModel):
    returnUrl: Optional[str] = None


@app.exception_handler(CapacityExceededError)
async def capacity_exceeded_handler(request: Request, exc: CapacityExceededError):
    return JSONResponse(status_code=403, content={
        'error': 'capacity_exceeded',
        'plan': exc.plan,
        'total': exc.total,
        'limit': exc.limit
    })


@app.exception_handler(TransientStorageError)
async def storage_error_handler(request: Request, exc: TransientStorageError):
    return JSONResponse(status_code=503, content=log_error(exc, context=request.url.path))


@app.exception_handler(BillingProviderError)
async def billing_error_handler(request: Request, exc: BillingProviderError):
    return JSONResponse(status_code=502, content=log_error(exc, context=request.url.path))


@app.exception_handler(ValidationError)
async def validation_error_handler(request: Request, exc: ValidationError):
    return JSONResponse(status_code=400, content=log_error(exc, context=request.url.path))


@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError):
    return JSONResponse(status_code=500, content=log_error(exc, context=request.url.path))


@app.get("/__/health")
def health():
    return {"status": "ok"}


@app.post("/api/billing/webhook")
async def stripe_webhook(request: Request, stripe_signature: Optional[str] = Header(None),
                         services: ServiceContainer = Depends(get_services)):
    """Raw body is required for signature verification"""
    payload = await request.body()
    result = services.webhooks.handle_event(payload, stripe_signature)
    return JSONResponse(status_code=WEBHOOK_STATUS_CODES.get(result['status'], 500), content=result)


@app.get("/api/billing/config")
def billing_config(services: ServiceContainer = Depends(get_services)):
    return services.payments.get_billing_config()


@app.post("/api/billing/setup-intent")
def setup_intent(user: AuthenticatedUser = Depends(get_current_user),
                 services: ServiceContainer = Depends(get_services)):
    return services.payments.create_setup_intent(user.uid, user.email)


@app.post("/api/billing/create-subscription")
def create_subscription(body: CreateSubscriptionRequest,
                        user: AuthenticatedUser = Depends(get_current_user),
                        services: ServiceContainer = Depends(get_services)):
    return services.payments.create_subscription(
        user.uid, body.customerId, body.paymentMethodId, body.priceId)


@app.post("/api/billing/portal")
def billing_portal(body: Optional[PortalRequest] = None,
                   user: AuthenticatedUser = Depends(get_current_user),
                   services: ServiceContainer = Depends(get_services)):
    if not FeatureFlags.is_feature_enabled('billing_portal'):
        raise HTTPException(status_code=503, detail={"error": "Billing portal disabled", "code": "billing_disabled"})

    url = services.payments.create_portal_session(user.uid, body.returnUrl if body else None)
    if not url:
        raise HTTPException(status_code=404, detail="No billing account. Subscribe first.")
    return {"url": url}


@app.post("/api/account/bootstrap")
def bootstrap_account(user: AuthenticatedUser = Depends(get_current_user),
                      services: ServiceContainer = Depends(get_services)):
    record = services.entitlements.bootstrap_user(user.uid, user.email)
    return record.model_dump(mode='json')


@app.post("/api/buckets", status_code=201)
def create_bucket(payload: BucketPayload,
                  user: AuthenticatedUser = Depends(get_current_user),
                  services: ServiceContainer = Depends(get_services)):
    bucket = services.buckets.create_bucket(user.uid, payload)
    return bucket.model_dump(mode='json')


@app.delete("/api/buckets/{bucket_id}", status_code=204)
def delete_bucket(bucket_id: str,
                  user: AuthenticatedUser = Depends(get_current_user),
                  services: ServiceContainer = Depends(get_services)):
    services.buckets.delete_bucket(user.uid, bucket_id)
    return Response(status_code=204)


@app.get("/api/buckets/count")
def bucket_count(user: AuthenticatedUser = Depends(get_current_user),
                 services: ServiceContainer = Depends(get_services)):
    return {"total": services.buckets.get_bucket_count(user.uid)}


@app.post("/api/admin/reconcile/{uid}", dependencies=[Depends(require_admin)])
def admin_reconcile(uid: str, services: ServiceContainer = Depends(get_services)):
    return services.admin.reconcile_user(uid)


@app.post("/api/admin/buckets/{uid}/recount", dependencies=[Depends(require_admin)])
def admin_recount(uid: str, services: ServiceContainer = Depends(get_services)):
    return services.admin.recount_buckets(uid)


@app.get("/api/admin/divergences", dependencies=[Depends(require_admin)])
def admin_divergences(services: ServiceContainer = Depends(get_services)):
    return {"divergences": services.admin.list_divergences()}
