import logging
import os

from dotenv import load_dotenv
from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.orm import Session
from starlette.exceptions import HTTPException as StarletteHTTPException

load_dotenv()

from db.base import Base
from db.deps import atomic, get_rental_db
from db.session import engine_rental
from db.tenant import TenantScope
from schemas.customers import CustomerUpdate, CustomerUpsert
from schemas.payments import LateFeeRequest, ProcessPaymentRequest, RefundRequest
from schemas.rentals import CancelRequest, CreateRentalDto, ExtensionRequest, ReturnRequest
from schemas.vehicles import VehicleUpdate, VehicleUpsert
from services.clock import as_naive_utc
from services.customer_service import (
    create_customer,
    customer_analytics,
    customer_payments,
    customer_rentals,
    deactivate_customer,
    get_customer_or_404,
    list_customers,
    serialize_customer,
    update_customer,
)
from services.dashboard_service import dashboard_stats, recent_activity, revenue_chart
from services.errors import RentalServiceError
from services.payment_service import (
    apply_late_fee,
    get_payment_or_404,
    list_overdue_payments,
    list_payments,
    process_payment,
    refund_payment,
    serialize_payment,
)
from services.rental_service import (
    cancel_rental,
    create_rental,
    extend_rental,
    get_rental_or_404,
    list_rentals,
    return_rental,
    serialize_rental,
)
from services.vehicle_service import (
    get_vehicle_or_404,
    list_vehicles,
    register_vehicle,
    serialize_vehicle,
    update_vehicle,
)

API_LOGGER = logging.getLogger("rental_management.api")

app = FastAPI(title="Rental Management API")


def _parse_csv_env(name: str, default: str) -> list[str]:
    raw = os.environ.get(name, default)
    return [item.strip() for item in str(raw).split(",") if item.strip()]


def _env_flag(name: str, default: str) -> bool:
    return str(os.environ.get(name, default)).strip().lower() in {"1", "true", "yes", "on"}


_CORS_ALLOW_ORIGINS = _parse_csv_env(
    "CORS_ALLOW_ORIGINS",
    "http://127.0.0.1,http://localhost,http://127.0.0.1:3000,http://localhost:3000",
)
_CORS_ALLOW_CREDENTIALS = _env_flag("CORS_ALLOW_CREDENTIALS", "true")
if "*" in _CORS_ALLOW_ORIGINS:
    # Browsers reject wildcard origins with credentials; force safe behavior.
    _CORS_ALLOW_CREDENTIALS = False

app.add_middleware(
    CORSMiddleware,
    allow_origins=_CORS_ALLOW_ORIGINS,
    allow_credentials=_CORS_ALLOW_CREDENTIALS,
    allow_methods=["*"],
    allow_headers=["*"],
)

if _env_flag("RENTAL_MANAGEMENT_CREATE_TABLES", "false"):
    Base.metadata.create_all(engine_rental)


def _error_response(status_code: int, message: str, **extra) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "message": message, **extra})


@app.exception_handler(RentalServiceError)
async def _handle_service_error(request: Request, exc: RentalServiceError):
    API_LOGGER.info("%s %s -> %s %s", request.method, request.url.path, exc.status_code, exc.message)
    return _error_response(exc.status_code, exc.message)


@app.exception_handler(StarletteHTTPException)
async def _handle_http_error(request: Request, exc: StarletteHTTPException):
    return _error_response(exc.status_code, str(exc.detail))


@app.exception_handler(RequestValidationError)
async def _handle_validation_error(request: Request, exc: RequestValidationError):
    errors = [
        {"field": ".".join(str(part) for part in error.get("loc", ()) if part != "body"), "message": error.get("msg")}
        for error in exc.errors()
    ]
    return _error_response(400, "Validation failed", errors=errors)


@app.exception_handler(Exception)
async def _handle_unexpected_error(request: Request, exc: Exception):
    API_LOGGER.exception("Unhandled error on %s %s", request.method, request.url.path)
    return _error_response(500, "Unexpected server error")


def get_tenant(
    db: Session = Depends(get_rental_db),
    x_dealer_id: str | None = Header(None, alias="X-Dealer-ID"),
) -> TenantScope:
    raw = (x_dealer_id or "").strip()
    if not raw.isdigit():
        raise HTTPException(status_code=401, detail="Dealer context required.")
    return TenantScope(db, int(raw))


def _ok(data=None, message: str | None = None, pagination: dict | None = None) -> dict:
    body = {"success": True}
    if message:
        body["message"] = message
    if data is not None:
        body["data"] = data
    if pagination is not None:
        body["pagination"] = pagination
    return body


def _pagination(page: int, limit: int, total: int) -> dict:
    return {"current": page, "pages": (total + limit - 1) // limit, "total": total}


@app.get("/healthz")
def healthcheck():
    return {"status": "ok"}


@app.get("/api/healthz")
def healthcheck_api(db: Session = Depends(get_rental_db)):
    try:
        db.execute(text("SELECT 1"))
        return {"status": "ok"}
    except Exception as exc:
        raise HTTPException(status_code=503, detail=f"db_unavailable: {exc}") from exc


# Rentals

@app.get("/api/rentals")
def get_rentals(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    status: str = Query(""),
    search: str = Query(""),
    scope: TenantScope = Depends(get_tenant),
):
    rentals, total = list_rentals(scope, page=page, limit=limit, status=status, search=search)
    return _ok([serialize_rental(rental) for rental in rentals], pagination=_pagination(page, limit, total))


@app.get("/api/rentals/{rental_id}")
def get_rental(rental_id: int, scope: TenantScope = Depends(get_tenant)):
    rental = get_rental_or_404(scope, rental_id)
    return _ok(
        {
            "rental": serialize_rental(rental),
            "payments": [serialize_payment(payment) for payment in reversed(rental.Payments)],
        }
    )


@app.post("/api/rentals", status_code=201)
def post_rental(payload: CreateRentalDto, scope: TenantScope = Depends(get_tenant)):
    start_date = as_naive_utc(payload.startDate)
    expected_end_date = as_naive_utc(payload.expectedEndDate)
    if expected_end_date < start_date:
        raise HTTPException(status_code=400, detail="expectedEndDate must be on or after startDate.")

    with atomic(scope.db):
        rental = create_rental(
            scope,
            customer_id=payload.customerID,
            vehicle_id=payload.vehicleID,
            start_date=start_date,
            expected_end_date=expected_end_date,
            total_amount=payload.totalAmount,
            notes=payload.notes,
        )
    return _ok(serialize_rental(rental), message="Rental created successfully")


@app.put("/api/rentals/{rental_id}/return")
def put_rental_return(rental_id: int, payload: ReturnRequest, scope: TenantScope = Depends(get_tenant)):
    with atomic(scope.db):
        rental = return_rental(
            scope,
            rental_id,
            return_condition=payload.returnCondition,
            notes=payload.notes,
            images=payload.images,
            checked_by=payload.checkedBy,
            damage_charges=payload.damageCharges,
            actual_end_date=as_naive_utc(payload.actualEndDate),
        )
    return _ok(serialize_rental(rental), message="Vehicle returned successfully")


@app.put("/api/rentals/{rental_id}/extend")
def put_rental_extend(rental_id: int, payload: ExtensionRequest, scope: TenantScope = Depends(get_tenant)):
    with atomic(scope.db):
        rental = extend_rental(
            scope,
            rental_id,
            new_end_date=as_naive_utc(payload.newEndDate),
            additional_amount=payload.additionalAmount,
        )
    return _ok(serialize_rental(rental), message="Rental extended successfully")


@app.put("/api/rentals/{rental_id}/cancel")
def put_rental_cancel(rental_id: int, payload: CancelRequest, scope: TenantScope = Depends(get_tenant)):
    with atomic(scope.db):
        rental = cancel_rental(scope, rental_id, reason=payload.reason, cancellation_fee=payload.cancellationFee)
    return _ok(serialize_rental(rental), message="Rental cancelled successfully")


# Customers

@app.get("/api/customers")
def get_customers(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    search: str = Query(""),
    business_type: str = Query("", alias="businessType"),
    scope: TenantScope = Depends(get_tenant),
):
    customers, total = list_customers(scope, page=page, limit=limit, search=search, business_type=business_type)
    return _ok([serialize_customer(customer) for customer in customers], pagination=_pagination(page, limit, total))


@app.get("/api/customers/{customer_id}")
def get_customer(customer_id: int, scope: TenantScope = Depends(get_tenant)):
    customer = get_customer_or_404(scope, customer_id)
    return _ok(
        {
            "customer": serialize_customer(customer, include_history=True),
            "rentals": [serialize_rental(rental) for rental in customer_rentals(scope, customer)],
            "payments": [serialize_payment(payment) for payment in customer_payments(scope, customer)],
        }
    )


@app.post("/api/customers", status_code=201)
def post_customer(payload: CustomerUpsert, scope: TenantScope = Depends(get_tenant)):
    with atomic(scope.db):
        customer = create_customer(scope, payload.model_dump())
    return _ok(serialize_customer(customer), message="Customer created successfully")


@app.put("/api/customers/{customer_id}")
def put_customer(customer_id: int, payload: CustomerUpdate, scope: TenantScope = Depends(get_tenant)):
    with atomic(scope.db):
        customer = update_customer(scope, customer_id, payload.model_dump(exclude_unset=True, exclude_none=True))
    return _ok(serialize_customer(customer), message="Customer updated successfully")


@app.delete("/api/customers/{customer_id}")
def delete_customer(customer_id: int, scope: TenantScope = Depends(get_tenant)):
    with atomic(scope.db):
        deactivate_customer(scope, customer_id)
    return _ok(message="Customer deleted successfully")


@app.get("/api/customers/{customer_id}/analytics")
def get_customer_analytics(customer_id: int, scope: TenantScope = Depends(get_tenant)):
    customer = get_customer_or_404(scope, customer_id)
    return _ok(customer_analytics(scope, customer))


# Vehicles

@app.get("/api/vehicles")
def get_vehicles(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    status: str = Query(""),
    vehicle_type: str = Query("", alias="type"),
    search: str = Query(""),
    scope: TenantScope = Depends(get_tenant),
):
    vehicles, total = list_vehicles(
        scope, page=page, limit=limit, status=status, vehicle_type=vehicle_type, search=search
    )
    return _ok([serialize_vehicle(vehicle) for vehicle in vehicles], pagination=_pagination(page, limit, total))


@app.get("/api/vehicles/{vehicle_id}")
def get_vehicle(vehicle_id: int, scope: TenantScope = Depends(get_tenant)):
    vehicle = get_vehicle_or_404(scope, vehicle_id)
    return _ok(serialize_vehicle(vehicle, include_history=True))


@app.post("/api/vehicles", status_code=201)
def post_vehicle(payload: VehicleUpsert, scope: TenantScope = Depends(get_tenant)):
    with atomic(scope.db):
        vehicle = register_vehicle(scope, payload.model_dump())
    return _ok(serialize_vehicle(vehicle), message="Vehicle registered successfully")


@app.put("/api/vehicles/{vehicle_id}")
def put_vehicle(vehicle_id: int, payload: VehicleUpdate, scope: TenantScope = Depends(get_tenant)):
    with atomic(scope.db):
        vehicle = update_vehicle(scope, vehicle_id, payload.model_dump(exclude_unset=True, exclude_none=True))
    return _ok(serialize_vehicle(vehicle), message="Vehicle updated successfully")


# Payments

@app.get("/api/payments")
def get_payments(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    status: str = Query(""),
    payment_type: str = Query("", alias="paymentType"),
    search: str = Query(""),
    scope: TenantScope = Depends(get_tenant),
):
    payments, total = list_payments(
        scope, page=page, limit=limit, status=status, payment_type=payment_type, search=search
    )
    return _ok([serialize_payment(payment) for payment in payments], pagination=_pagination(page, limit, total))


@app.get("/api/payments/overdue/list")
def get_overdue_payments(scope: TenantScope = Depends(get_tenant)):
    return _ok(list_overdue_payments(scope))


@app.get("/api/payments/{payment_id}")
def get_payment(payment_id: int, scope: TenantScope = Depends(get_tenant)):
    return _ok(serialize_payment(get_payment_or_404(scope, payment_id)))


@app.put("/api/payments/{payment_id}/process")
def put_payment_process(payment_id: int, payload: ProcessPaymentRequest, scope: TenantScope = Depends(get_tenant)):
    with atomic(scope.db):
        payment = process_payment(
            scope,
            payment_id,
            payment_method=payload.paymentMethod,
            transaction_id=payload.transactionId,
            reference=payload.reference,
            paid_amount=payload.paidAmount,
            notes=payload.notes,
        )
    return _ok(serialize_payment(payment), message="Payment processed successfully")


@app.put("/api/payments/{payment_id}/refund")
def put_payment_refund(payment_id: int, payload: RefundRequest, scope: TenantScope = Depends(get_tenant)):
    with atomic(scope.db):
        payment = refund_payment(
            scope,
            payment_id,
            refund_amount=payload.refundAmount,
            reason=payload.reason,
            refund_method=payload.refundMethod,
        )
    return _ok(serialize_payment(payment), message="Refund processed successfully")


@app.put("/api/payments/{payment_id}/late-fee")
def put_payment_late_fee(payment_id: int, payload: LateFeeRequest, scope: TenantScope = Depends(get_tenant)):
    with atomic(scope.db):
        payment = apply_late_fee(scope, payment_id, payload.lateFeeAmount)
    return _ok(serialize_payment(payment), message="Late fee applied successfully")


# Dashboard

@app.get("/api/dashboard/stats")
def get_dashboard_stats(scope: TenantScope = Depends(get_tenant)):
    with atomic(scope.db):
        stats = dashboard_stats(scope)
    return _ok(stats)


@app.get("/api/dashboard/recent-activity")
def get_recent_activity(limit: int = Query(10, ge=1, le=100), scope: TenantScope = Depends(get_tenant)):
    return _ok(recent_activity(scope, limit=limit))


@app.get("/api/dashboard/revenue-chart")
def get_revenue_chart(period: str = Query("month"), scope: TenantScope = Depends(get_tenant)):
    return _ok(revenue_chart(scope, period=period))
