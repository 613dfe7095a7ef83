import asyncio
import logging
import os
from datetime import date, datetime, timezone
from typing import Callable, Optional, Tuple

from fastapi import Depends, FastAPI, HTTPException, Request, WebSocket, WebSocketDisconnect
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, EmailStr, Field, field_validator
from starlette.concurrency import run_in_threadpool

import database
from database import (
    DatabaseUnavailable, StaleRecord, count_documents, create_document, delete_document,
    get_document_by_id, get_documents, update_document,
)
from dashboards import ROLE_INFO, VOYAGER_ROUTES, compose_dashboard, overview_stats, recent_activity
from live import LiveCollection, scoped
from realtime import ChangeEvent, feed, order_notice
from schemas import BOOKING, ITEM, ORDER, USER, Booking, BookingDetails, Item, Order, OrderLine
from session import (
    AuthError, Session, current_session, friendly_auth_message, register, require_roles,
    resolve_session, secret_key_valid, sign_in, sign_out,
)
from workflow import (
    BOOKING_CATEGORIES, BOOKING_STAFF, ORDER_CATEGORIES, ORDER_STAFF_SCOPE, STAFF_ROLES,
    Category, InvalidTransition, RecordKind, Role, available_actions, can_manage_orders,
    order_scope_for, partition, transition_update,
)

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="Cruise Concierge API", version="1.0.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=[origin.strip() for origin in os.getenv("CORS_ORIGINS", "*").split(",")],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

order_staff = require_roles(*ORDER_STAFF_SCOPE)
booking_staff = require_roles(*BOOKING_STAFF)
catalog_staff = require_roles(*STAFF_ROLES)
overview_staff = require_roles(Role.ADMIN, Role.MANAGER)


# ===================== Errors =====================
class FormError(Exception):
    """A single form field failed a check that needs server state."""

    def __init__(self, field: str, message: str):
        super().__init__(message)
        self.field = field
        self.message = message


def _form_errors(errors: dict) -> JSONResponse:
    return JSONResponse(status_code=422, content={"detail": "Please correct the highlighted fields", "errors": errors})


@app.exception_handler(RequestValidationError)
def validation_error_handler(request: Request, exc: RequestValidationError):
    errors = {}
    for error in exc.errors():
        field = ".".join(str(part) for part in error.get("loc", ()) if part not in ("body", "query", "path")) or "form"
        message = error.get("msg", "Invalid value")
        if message.startswith("Value error, "):
            message = message[len("Value error, "):]
        if field == "email" and "valid email" in message:
            message = "Please enter a valid email address"
        errors.setdefault(field, message)
    return _form_errors(errors)


@app.exception_handler(FormError)
def form_error_handler(request: Request, exc: FormError):
    return _form_errors({exc.field: exc.message})


@app.exception_handler(AuthError)
def auth_error_handler(request: Request, exc: AuthError):
    return JSONResponse(status_code=exc.status_code, content={"detail": friendly_auth_message(str(exc))})


@app.exception_handler(InvalidTransition)
def invalid_transition_handler(request: Request, exc: InvalidTransition):
    logger.warning("rejected %s", exc)
    return JSONResponse(status_code=409, content={"detail": str(exc)})


@app.exception_handler(StaleRecord)
def stale_record_handler(request: Request, exc: StaleRecord):
    logger.warning("%s", exc)
    return JSONResponse(status_code=409, content={"detail": "This record was changed by another session. Reload and try again."})


@app.exception_handler(DatabaseUnavailable)
def database_unavailable_handler(request: Request, exc: DatabaseUnavailable):
    return JSONResponse(status_code=503, content={"detail": str(exc)})


# ===================== Public Endpoints =====================
@app.get("/")
def root():
    return {"message": "Cruise Concierge API running"}


@app.get("/test")
def test_database():
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_url": None,
        "database_name": None,
        "connection_status": "Not Connected",
        "collections": []
    }
    try:
        if database.db is not None:
            response["database"] = "✅ Available"
            response["connection_status"] = "Connected"
            response["collections"] = database.db.list_collection_names()
        else:
            response["database"] = "⚠️  Available but not initialized"
    except Exception as e:
        response["database"] = f"❌ Error: {str(e)[:80]}"
    response["database_url"] = "✅ Set" if os.getenv("DATABASE_URL") else "❌ Not Set"
    response["database_name"] = "✅ Set" if os.getenv("DATABASE_NAME") else "❌ Not Set"
    return response


@app.get("/roles")
def list_roles():
    return [
        {"role": role.value, "label": label, "description": description, "requires_secret": role != Role.VOYAGER}
        for role, (label, description) in ROLE_INFO.items()
    ]


# ===================== Auth =====================
def clean_email(value):
    if isinstance(value, str):
        value = value.strip()
        if len(value) > 255:
            raise ValueError("Email too long")
    return value


def check_password(value: str) -> str:
    if len(value) < 6:
        raise ValueError("Password must be at least 6 characters")
    if len(value) > 100:
        raise ValueError("Password too long")
    return value


class LoginRequest(BaseModel):
    email: EmailStr
    password: str

    @field_validator("email", mode="before")
    @classmethod
    def email_length(cls, value):
        return clean_email(value)

    @field_validator("password")
    @classmethod
    def password_length(cls, value: str) -> str:
        return check_password(value)


class SignupRequest(LoginRequest):
    full_name: str
    role: Role = Role.VOYAGER
    secret_key: str = ""

    @field_validator("full_name")
    @classmethod
    def name_length(cls, value: str) -> str:
        value = value.strip()
        if len(value) < 2:
            raise ValueError("Name must be at least 2 characters")
        if len(value) > 100:
            raise ValueError("Name too long")
        return value


def _session_view(session: Session) -> dict:
    return {
        "user_id": session.user_id,
        "email": session.email,
        "full_name": session.full_name,
        "role": session.effective_role.value,
        "created_at": session.created_at,
    }


@app.post("/auth/signup", status_code=201)
def signup(payload: SignupRequest):
    if not secret_key_valid(payload.role, payload.secret_key):
        raise FormError("secret_key", "Invalid secret key for privileged role")
    user = register(email=payload.email, password=payload.password, full_name=payload.full_name, role=payload.role)
    # No session is started: the new user signs in explicitly.
    return {**user, "message": "Account created successfully! Please sign in."}


@app.post("/auth/login")
def login(payload: LoginRequest):
    session = sign_in(email=payload.email, password=payload.password)
    return {"token": session.token, "session": _session_view(session), "message": "Welcome back!"}


@app.post("/auth/logout")
def logout(session: Session = Depends(current_session)):
    sign_out(session.token)
    return {"signed_out": True}


@app.get("/auth/session")
def get_session(session: Session = Depends(current_session)):
    return _session_view(session)


# ===================== Dashboards =====================
@app.get("/dashboard")
def dashboard(session: Session = Depends(current_session)):
    return compose_dashboard(session.role)


@app.get("/dashboard/overview")
def dashboard_overview(session: Session = Depends(overview_staff)):
    orders = get_documents(ORDER)
    bookings = get_documents(BOOKING)
    return overview_stats(session.effective_role, count_documents(USER), orders, bookings)


@app.get("/dashboard/{route}")
def voyager_route(route: str, session: Session = Depends(current_session)):
    category = VOYAGER_ROUTES.get(route)
    if category is None:
        raise HTTPException(404, "Page not found")
    mode = "order" if category in ORDER_CATEGORIES else "booking"
    return {"category": category.value, "mode": mode, "items": _browse(category)}


@app.get("/me/activity")
def my_activity(session: Session = Depends(current_session)):
    mine = {"user_id": session.user_id}
    newest = [("created_at", -1)]
    orders = get_documents(ORDER, mine, limit=5, sort=newest)
    bookings = get_documents(BOOKING, mine, limit=5, sort=newest)
    return recent_activity(orders, bookings)


# ===================== Items =====================
class ItemRequest(BaseModel):
    name: str = Field(..., min_length=1)
    description: Optional[str] = None
    category: Category
    price: float = Field(..., ge=0)
    stock: int = Field(0, ge=0)
    image_url: Optional[str] = None
    available: bool = True


def _browse(category: Category):
    return get_documents(ITEM, {"category": category.value, "available": True}, sort=[("name", 1)])


def _check_item_scope(session: Session, category: Optional[str]) -> None:
    if session.effective_role == Role.HEAD_COOK and category not in (None, Category.CATERING.value):
        raise HTTPException(403, "Head cooks manage catering items only")


@app.get("/items")
def list_items(category: Category, session: Session = Depends(current_session)):
    return _browse(category)


@app.get("/items/{item_id}")
def get_item(item_id: str, session: Session = Depends(current_session)):
    item = get_document_by_id(ITEM, item_id)
    if not item:
        raise HTTPException(404, "Item not found")
    return item


@app.get("/admin/items")
def manage_items(category: Optional[Category] = None, session: Session = Depends(catalog_staff)):
    if session.effective_role == Role.HEAD_COOK:
        _check_item_scope(session, category.value if category else None)
        category = Category.CATERING
    filt = {"category": category.value} if category else {}
    return get_documents(ITEM, filt, sort=[("created_at", -1)])


@app.post("/admin/items", status_code=201)
def create_item(payload: ItemRequest, session: Session = Depends(catalog_staff)):
    _check_item_scope(session, payload.category.value)
    item = create_document(ITEM, Item(**payload.model_dump()))
    logger.info("%s added item %s (%s)", session.email, item["name"], item["category"])
    return {"item": item, "message": "Item added successfully!"}


@app.put("/admin/items/{item_id}")
def update_item(item_id: str, payload: ItemRequest, session: Session = Depends(catalog_staff)):
    existing = get_document_by_id(ITEM, item_id)
    if not existing:
        raise HTTPException(404, "Item not found")
    _check_item_scope(session, existing["category"])
    _check_item_scope(session, payload.category.value)
    item = update_document(ITEM, item_id, Item(**payload.model_dump()).model_dump())
    if not item:
        raise HTTPException(404, "Item not found")
    return {"item": item, "message": "Item updated successfully!"}


@app.delete("/admin/items/{item_id}")
def delete_item(item_id: str, session: Session = Depends(catalog_staff)):
    existing = get_document_by_id(ITEM, item_id)
    if not existing:
        raise HTTPException(404, "Item not found")
    _check_item_scope(session, existing["category"])
    if not delete_document(ITEM, item_id):
        raise HTTPException(404, "Item not found")
    logger.info("%s deleted item %s", session.email, item_id)
    return {"deleted": True, "message": "Item deleted successfully"}


# ===================== Orders & Bookings =====================
class OrderRequest(BaseModel):
    item_id: str
    quantity: int = Field(1, ge=1)


class BookingRequest(BaseModel):
    item_id: str
    booking_date: Optional[date] = None


class StatusRequest(BaseModel):
    status: str
    version: Optional[int] = None


def _available_item(item_id: str) -> dict:
    item = get_document_by_id(ITEM, item_id)
    if not item:
        raise HTTPException(404, "Item not found")
    if not item.get("available", True):
        raise HTTPException(400, f"{item['name']} is not available right now")
    return item


def _apply_transition(kind: RecordKind, collection: str, record: dict, payload: StatusRequest) -> dict:
    version = record.get("version")
    if payload.version is not None and payload.version != (version or 0):
        raise StaleRecord(f"{collection} {record['id']} is at version {version or 0}, not {payload.version}")
    update = transition_update(kind, record["status"], payload.status, datetime.now(timezone.utc))
    update["version"] = (version or 0) + 1
    stored = update_document(collection, record["id"], update, match={"status": record["status"], "version": version})
    if stored is None:
        raise HTTPException(404, f"{kind.value.capitalize()} not found")
    logger.info("%s %s: %s -> %s", kind.value, record["id"], record["status"], stored["status"])
    return stored


def _with_actions(kind: RecordKind, records):
    active, completed = partition(records)
    for record in active:
        record["actions"] = available_actions(kind, record["status"])
    return {"active": active, "completed": completed}


@app.post("/orders", status_code=201)
def place_order(payload: OrderRequest, session: Session = Depends(current_session)):
    item = _available_item(payload.item_id)
    if Category(item["category"]) not in ORDER_CATEGORIES:
        raise HTTPException(400, f"{item['name']} is booked for a date, not ordered")
    order = Order(
        user_id=session.user_id,
        type=item["category"],
        items=[OrderLine(item_id=item["id"], name=item["name"], quantity=payload.quantity, price=item["price"])],
        total_amount=item["price"] * payload.quantity,
    )
    record = create_document(ORDER, order)
    logger.info("order %s placed by %s: %d x %s", record["id"], session.email, payload.quantity, item["name"])
    return {"order": record, "message": f"Ordered {payload.quantity} x {item['name']} successfully!"}


@app.get("/orders")
def list_orders(type: Optional[Category] = None, session: Session = Depends(order_staff)):
    scope = order_scope_for(session.effective_role)
    if scope is not None:
        if type is not None and type != scope:
            raise HTTPException(403, f"Your role manages {scope.value} orders only")
        type = scope
    filt = {"type": type.value} if type else {}
    return _with_actions(RecordKind.ORDER, get_documents(ORDER, filt, sort=[("created_at", -1)]))


@app.put("/orders/{order_id}/status")
def update_order_status(order_id: str, payload: StatusRequest, session: Session = Depends(order_staff)):
    order = get_document_by_id(ORDER, order_id)
    if not order:
        raise HTTPException(404, "Order not found")
    if not can_manage_orders(session.effective_role, order.get("type")):
        raise HTTPException(403, "Your role does not manage this order type")
    stored = _apply_transition(RecordKind.ORDER, ORDER, order, payload)
    return {"order": stored, "message": f"Order marked as {stored['status']}"}


@app.post("/bookings", status_code=201)
def place_booking(payload: BookingRequest, session: Session = Depends(current_session)):
    if payload.booking_date is None:
        raise FormError("booking_date", "Please select a date")
    item = _available_item(payload.item_id)
    if Category(item["category"]) not in BOOKING_CATEGORIES:
        raise HTTPException(400, f"{item['name']} is ordered, not booked")
    booking = Booking(
        user_id=session.user_id,
        booking_type=item["category"],
        booking_date=payload.booking_date.isoformat(),
        total_amount=item["price"],
        details=BookingDetails(item_id=item["id"], item_name=item["name"]),
    )
    record = create_document(BOOKING, booking)
    logger.info("booking %s requested by %s for %s on %s", record["id"], session.email, item["name"], record["booking_date"])
    return {"booking": record, "message": "Booking request sent successfully!"}


@app.get("/bookings")
def list_bookings(booking_type: Optional[Category] = None, session: Session = Depends(booking_staff)):
    filt = {"booking_type": booking_type.value} if booking_type else {}
    return _with_actions(RecordKind.BOOKING, get_documents(BOOKING, filt, sort=[("created_at", -1)]))


@app.put("/bookings/{booking_id}/status")
def update_booking_status(booking_id: str, payload: StatusRequest, session: Session = Depends(booking_staff)):
    booking = get_document_by_id(BOOKING, booking_id)
    if not booking:
        raise HTTPException(404, "Booking not found")
    stored = _apply_transition(RecordKind.BOOKING, BOOKING, booking, payload)
    return {"booking": stored, "message": f"Booking {stored['status']} successfully"}


# ===================== Live updates =====================
def live_scope(session: Session, collection: str, category: Optional[str]) -> Tuple[dict, Optional[Callable[[dict], bool]]]:
    """Equality filter and membership predicate for one live list."""
    role = session.effective_role
    if category is not None:
        category = Category(category).value
    if collection == ITEM:
        if session.is_staff:
            if role == Role.HEAD_COOK:
                if category not in (None, Category.CATERING.value):
                    raise PermissionError("Head cooks manage catering items only")
                category = Category.CATERING.value
            return ({"category": category} if category else {}), None
        if category is None:
            raise ValueError("category is required")
        return {"category": category}, lambda record: record.get("available", True)
    if collection == ORDER:
        if role in ORDER_STAFF_SCOPE:
            scope = order_scope_for(role)
            if scope is not None:
                if category not in (None, scope.value):
                    raise PermissionError(f"Your role manages {scope.value} orders only")
                category = scope.value
            return ({"type": category} if category else {}), None
        return {"user_id": session.user_id}, None
    if collection == BOOKING:
        if role in BOOKING_STAFF:
            return ({"booking_type": category} if category else {}), None
        return {"user_id": session.user_id}, None
    raise LookupError(collection)


async def _pump_events(websocket: WebSocket, queue: asyncio.Queue, view: LiveCollection, session: Session):
    while True:
        event: ChangeEvent = await queue.get()
        if not view.apply(event):
            continue
        message = {"event": event.event_type, "collection": event.collection, "record": event.record}
        if event.event_type == "UPDATE" and event.record_id not in view:
            # The change moved the record out of this list.
            message.update(event="DELETE", record=event.old or event.record)
        notice = None if session.is_staff else order_notice(event)
        if notice:
            message["notice"] = notice
        await websocket.send_json(jsonable_encoder(message))


async def _until_disconnect(websocket: WebSocket):
    while True:
        await websocket.receive_text()


@app.websocket("/ws/{collection}")
async def live_updates(websocket: WebSocket, collection: str, token: str = "", category: Optional[str] = None):
    session = await run_in_threadpool(resolve_session, token)
    if session is None:
        await websocket.close(code=4401)
        return
    try:
        filter_dict, predicate = live_scope(session, collection, category)
    except LookupError:
        await websocket.close(code=4404)
        return
    except PermissionError:
        await websocket.close(code=4403)
        return
    except ValueError:
        await websocket.close(code=4400)
        return

    await websocket.accept()
    loop = asyncio.get_running_loop()
    queue: asyncio.Queue = asyncio.Queue()
    # Subscribe before the snapshot so nothing written in between is lost.
    subscription = feed.subscribe(
        collection,
        lambda event: loop.call_soon_threadsafe(queue.put_nowait, event),
        filter_dict,
    )
    tasks = set()
    try:
        records = await run_in_threadpool(get_documents, collection, filter_dict, None, [("created_at", -1)])
        view = LiveCollection(records, predicate=scoped(filter_dict, predicate), newest_first=True)
        await websocket.send_json(jsonable_encoder({"event": "SNAPSHOT", "collection": collection, "records": view.records}))
        tasks = {
            asyncio.ensure_future(_pump_events(websocket, queue, view, session)),
            asyncio.ensure_future(_until_disconnect(websocket)),
        }
        done, _ = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
        for task in done:
            exc = task.exception()
            if exc is not None and not isinstance(exc, WebSocketDisconnect):
                logger.warning("live %s feed for %s ended: %r", collection, session.email, exc)
    finally:
        for task in tasks:
            task.cancel()
        subscription.close()


# ===================== Schema Export for Docs =====================
@app.get("/schema")
def get_schema():
    return {
        "collections": [
            "user",
            "user_roles",
            "session",
            "item",
            "order",
            "booking"
        ],
        "live": [ITEM, ORDER, BOOKING],
        "notes": "Each class in schemas.py maps to a MongoDB collection (lowercase)."
    }


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
