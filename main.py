import asyncio
import os
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Any, Dict, List, Optional

import structlog
import uvicorn
from fastapi import APIRouter, Depends, FastAPI, HTTPException, Query, Request, WebSocket, WebSocketDisconnect
from fastapi.concurrency import run_in_threadpool
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel
from pymongo.database import Database
from pymongo.errors import PyMongoError

from auth import AdminDirectory, AdminSession, IdentityClient, authenticate, require_admin, setup_first_admin
from config import Settings, settings as default_settings
from database import connect
from documents import DocumentKind, DocumentProbe, FirebaseStorageStore, GridFSObjectStore, ObjectNotFound, ObjectStore
from errors import AdminError, MutationFailedError, NotAdminError
from filters import filter_status, filter_time_frame, search_records
from logging_config import configure_logging
from mutations import MutationGateway, MutationResult
from reader import CollectionReader, ReadStatus
from schemas import Record, format_location
from stats import StatAggregator
from subscriptions import Subscription
from tracking import load_positions, map_center, nearby
from users import load_user_detail

logger = structlog.get_logger(__name__)


@dataclass
class Services:
    settings: Settings
    db: Database
    reader: CollectionReader
    stats: StatAggregator
    probe: DocumentProbe
    gateway: MutationGateway
    identity: IdentityClient
    admins: AdminDirectory
    object_store: ObjectStore


def build_services(
    settings: Settings,
    db: Database,
    object_store: Optional[ObjectStore] = None,
    identity: Optional[IdentityClient] = None,
) -> Services:
    if object_store is None:
        if settings.STORAGE_TYPE == "firebase":
            object_store = FirebaseStorageStore(settings.STORAGE_BUCKET, settings.STORAGE_BASE_URL, settings.REQUEST_TIMEOUT)
        else:
            object_store = GridFSObjectStore(db, bucket=settings.GRIDFS_BUCKET)
    if identity is None:
        identity = IdentityClient(settings.IDENTITY_BASE_URL, settings.IDENTITY_API_KEY, settings.REQUEST_TIMEOUT)
    reader = CollectionReader(db, strict=settings.STRICT_RECORDS)
    return Services(
        settings=settings,
        db=db,
        reader=reader,
        stats=StatAggregator(reader),
        probe=DocumentProbe(object_store),
        gateway=MutationGateway(db, enforce=settings.ENFORCE_TRANSITIONS),
        identity=identity,
        admins=AdminDirectory(db),
        object_store=object_store,
    )


def get_services(request: Request) -> Services:
    return request.app.state.services


public = APIRouter()
router = APIRouter(dependencies=[Depends(require_admin)])


class LoginRequest(BaseModel):
    email: str
    password: str


class AcceptRequest(BaseModel):
    driver_id: Optional[str] = None
    driver_name: Optional[str] = None


class CancelRequest(BaseModel):
    reason: Optional[str] = None


# Utility

def with_location_text(records: List[Record]) -> List[Dict[str, Any]]:
    items = []
    for r in records:
        item = r.to_dict()
        item["locationText"] = format_location(getattr(r, "location", None))
        items.append(item)
    return items


def listing(records: List[Record], filtered: List[Any], degraded: bool) -> Dict[str, Any]:
    return {"total": len(records), "filtered": len(filtered), "degraded": degraded, "items": filtered}


def mutation_response(result: MutationResult):
    if not result.ok:
        raise MutationFailedError(f"Failed to update {result.collection} record {result.record_id}: {result.error}")
    return result.record


@public.get("/")
def read_root():
    return {"message": "QuickCare Admin backend is running"}


@public.get("/test")
def test_database(services: Services = Depends(get_services)):
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_url": None,
        "database_name": None,
        "connection_status": "Not Connected",
        "collections": [],
    }

    db = services.db
    try:
        if db is not None:
            response["database"] = "✅ Available"
            response["database_url"] = "✅ Set" if os.getenv("DATABASE_URL") else "❌ Not Set"
            response["database_name"] = db.name if hasattr(db, "name") else "✅ Connected"
            try:
                collections = db.list_collection_names()
                response["collections"] = collections[:10]
                response["database"] = "✅ Connected & Working"
                response["connection_status"] = "Connected"
            except PyMongoError as e:
                response["database"] = f"⚠️  Connected but Error: {str(e)[:50]}"
        else:
            response["database"] = "⚠️  Available but not initialized"
    except Exception as e:
        response["database"] = f"❌ Error: {str(e)[:50]}"

    return response


# Auth

@public.post("/auth/login")
def login(payload: LoginRequest, services: Services = Depends(get_services)):
    account = services.identity.sign_in(payload.email, payload.password)
    if not services.admins.is_admin(account.get("localId"), account.get("email")):
        raise NotAdminError("Admin access required")
    return {
        "idToken": account.get("idToken"),
        "refreshToken": account.get("refreshToken"),
        "expiresIn": account.get("expiresIn"),
        "uid": account.get("localId"),
        "email": account.get("email"),
    }


@public.post("/auth/setup", status_code=201)
def setup_admin(payload: LoginRequest, services: Services = Depends(get_services)):
    return setup_first_admin(services.identity, services.admins, payload.email, payload.password)


@router.get("/auth/me")
def me(session: AdminSession = Depends(require_admin)):
    return session


# Dashboard and reports

@router.get("/stats")
def dashboard_stats(services: Services = Depends(get_services)):
    return services.stats.dashboard()


@router.get("/reports")
def reports(
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    services: Services = Depends(get_services),
):
    date_to = date_to or date.today()
    date_from = date_from or date_to - timedelta(days=30)
    if date_from > date_to:
        raise HTTPException(status_code=400, detail="date_from must not be after date_to")
    return services.stats.report(date_from, date_to)


# Drivers

@router.get("/drivers")
def list_drivers(
    search: Optional[str] = None,
    status: Optional[str] = None,
    services: Services = Depends(get_services),
):
    result = services.reader.fetch_all("driver_profiles", order_by="updatedAt")
    records = result.raise_for_status()
    filtered = filter_status(search_records(records, search, ("full_name", "email", "license_number")), status)
    return listing(records, filtered, result.degraded)


@router.get("/drivers/{driver_id}")
def get_driver(driver_id: str, services: Services = Depends(get_services)):
    return services.reader.fetch_one("driver_profiles", driver_id)


@router.post("/drivers/{driver_id}/approve")
def approve_driver(driver_id: str, services: Services = Depends(get_services)):
    records = [services.reader.fetch_one("driver_profiles", driver_id)]
    return mutation_response(services.gateway.approve_driver(driver_id, records))


@router.post("/drivers/{driver_id}/reject")
def reject_driver(driver_id: str, services: Services = Depends(get_services)):
    records = [services.reader.fetch_one("driver_profiles", driver_id)]
    return mutation_response(services.gateway.reject_driver(driver_id, records))


@router.get("/drivers/{driver_id}/documents")
def driver_document_paths(driver_id: str, services: Services = Depends(get_services)):
    return {
        "paths": services.probe.candidate_paths(driver_id),
        "exists": {kind.value: services.probe.exists(driver_id, kind) for kind in DocumentKind},
    }


@router.get("/drivers/{driver_id}/documents/{kind}")
def driver_document(driver_id: str, kind: DocumentKind, services: Services = Depends(get_services)):
    return services.probe.resolve(driver_id, kind)


# Users

@router.get("/users")
def list_users(search: Optional[str] = None, services: Services = Depends(get_services)):
    result = services.reader.fetch_all("user_profiles", order_by="updatedAt")
    records = result.raise_for_status()
    filtered = search_records(records, search, ("full_name", "emergency_email", "emergency_contact"))
    return listing(records, filtered, result.degraded)


@router.get("/users/{user_id}")
def get_user(user_id: str, services: Services = Depends(get_services)):
    return load_user_detail(services.reader, user_id)


# Emergency requests and bookings

REQUEST_COLLECTIONS = {"emergencies": "emergency_requests", "bookings": "ambulance_bookings"}


@router.get("/emergencies")
def list_emergencies(
    search: Optional[str] = None,
    status: Optional[str] = None,
    services: Services = Depends(get_services),
):
    result = services.reader.fetch_all("emergency_requests", order_by="createdAt")
    records = result.raise_for_status()
    filtered = filter_status(search_records(records, search, ("user_name", "patient_name", "location_description")), status)
    return listing(records, with_location_text(filtered), result.degraded)


@router.get("/emergencies/recent")
def recent_emergencies(services: Services = Depends(get_services)):
    return recent_emergency_payload(services)


@router.get("/emergencies/{request_id}")
def get_emergency(request_id: str, services: Services = Depends(get_services)):
    return with_location_text([services.reader.fetch_one("emergency_requests", request_id)])[0]


@router.get("/bookings")
def list_bookings(
    search: Optional[str] = None,
    status: Optional[str] = None,
    services: Services = Depends(get_services),
):
    result = services.reader.fetch_all("ambulance_bookings", order_by="createdAt")
    records = result.raise_for_status()
    filtered = filter_status(search_records(records, search, ("patient_name", "emergency_type", "patient_phone")), status)
    return listing(records, with_location_text(filtered), result.degraded)


@router.post("/{kind}/{request_id}/accept")
def accept_request(kind: str, request_id: str, payload: Optional[AcceptRequest] = None, services: Services = Depends(get_services)):
    payload = payload or AcceptRequest()
    collection = request_collection(kind)
    records = [services.reader.fetch_one(collection, request_id)]
    return mutation_response(
        services.gateway.accept_request(collection, request_id, payload.driver_id, payload.driver_name, records)
    )


@router.post("/{kind}/{request_id}/complete")
def complete_request(kind: str, request_id: str, services: Services = Depends(get_services)):
    collection = request_collection(kind)
    records = [services.reader.fetch_one(collection, request_id)]
    return mutation_response(services.gateway.complete_request(collection, request_id, records))


@router.post("/{kind}/{request_id}/cancel")
def cancel_request(kind: str, request_id: str, payload: Optional[CancelRequest] = None, services: Services = Depends(get_services)):
    payload = payload or CancelRequest()
    collection = request_collection(kind)
    records = [services.reader.fetch_one(collection, request_id)]
    return mutation_response(services.gateway.cancel_request(collection, request_id, payload.reason, records))


def request_collection(kind: str) -> str:
    if kind not in REQUEST_COLLECTIONS:
        raise HTTPException(status_code=404, detail="Not Found")
    return REQUEST_COLLECTIONS[kind]


# Trip history

@router.get("/trips")
def trip_history(
    status: Optional[str] = None,
    time_frame: str = Query("all", pattern="^(all|today|week|month)$"),
    search: Optional[str] = None,
    services: Services = Depends(get_services),
):
    result = services.reader.fetch_all(
        "emergency_requests",
        order_by="createdAt",
        limit=services.settings.TRIP_HISTORY_LIMIT,
    )
    records = result.raise_for_status()
    trips = filter_status(records, status)
    trips = filter_time_frame(trips, time_frame)
    trips = search_records(trips, search, ("user_name", "driver_name", "location_description", "id"))
    return listing(records, with_location_text(trips), result.degraded)


# Driver tracking

@router.get("/tracking")
def tracking(services: Services = Depends(get_services)):
    positions = load_positions(services.reader)
    return {"drivers": positions, "center": map_center(positions)}


@router.get("/tracking/nearby")
def tracking_nearby(
    lat: float = Query(..., ge=-90, le=90),
    lng: float = Query(..., ge=-180, le=180),
    radius_km: Optional[float] = Query(None, gt=0),
    services: Services = Depends(get_services),
):
    positions = load_positions(services.reader)
    return nearby(positions, lat, lng, radius_km or services.settings.NEARBY_RADIUS_KM)


# Stored documents

@router.get("/storage/{path:path}")
def stored_document(path: str, services: Services = Depends(get_services)):
    store = services.object_store
    if not isinstance(store, GridFSObjectStore):
        raise HTTPException(status_code=404, detail="Documents are served by the storage bucket")
    try:
        grid_out = store.open(path)
    except ObjectNotFound:
        raise HTTPException(status_code=404, detail="Document not found")
    return StreamingResponse(grid_out, media_type=getattr(grid_out, "content_type", None) or "application/pdf")


# Live emergency feed

def recent_emergency_payload(services: Services) -> List[Dict[str, Any]]:
    result = services.reader.fetch_all(
        "emergency_requests",
        order_by="createdAt",
        limit=services.settings.RECENT_EMERGENCY_LIMIT,
    )
    if result.status == ReadStatus.FAILED:
        result.raise_for_status()
    return [
        {
            "id": r.id,
            "location": format_location(r.location),
            "status": r.status,
            "patientName": r.patient_name,
            "createdAt": r.created_at.isoformat() if r.created_at else None,
            "priority": r.priority,
        }
        for r in result.records
    ]


@public.websocket("/ws/emergencies")
async def emergencies_feed(websocket: WebSocket):
    services: Services = websocket.app.state.services
    try:
        await run_in_threadpool(authenticate, services.identity, services.admins, websocket.query_params.get("token", ""))
    except AdminError as exc:
        await websocket.close(code=1008, reason=exc.message)
        return

    await websocket.accept()
    loop = asyncio.get_running_loop()
    queue: asyncio.Queue = asyncio.Queue()

    subscription = Subscription(
        services.db["emergency_requests"],
        on_change=lambda change: loop.call_soon_threadsafe(queue.put_nowait, "change"),
        on_error=lambda exc: loop.call_soon_threadsafe(queue.put_nowait, exc),
    )

    async def watch_disconnect():
        try:
            while True:
                await websocket.receive_text()
        except WebSocketDisconnect:
            queue.put_nowait(None)

    receiver = asyncio.create_task(watch_disconnect())
    try:
        # open the stream before the snapshot so no change falls between them
        await run_in_threadpool(subscription.start)
        await websocket.send_json({"requests": await run_in_threadpool(recent_emergency_payload, services)})
        while True:
            item = await queue.get()
            if item is None:
                break
            if isinstance(item, Exception):
                await websocket.send_json({"error": "Failed to load emergency requests"})
                break
            await websocket.send_json({"requests": await run_in_threadpool(recent_emergency_payload, services)})
    except (AdminError, PyMongoError) as exc:
        logger.error("Emergency feed failed", error=str(exc))
        await websocket.send_json({"error": "Failed to load emergency requests"})
    except WebSocketDisconnect:
        pass
    finally:
        receiver.cancel()
        await run_in_threadpool(subscription.close)


def create_app(
    settings: Optional[Settings] = None,
    db: Optional[Database] = None,
    object_store: Optional[ObjectStore] = None,
    identity: Optional[IdentityClient] = None,
) -> FastAPI:
    settings = settings or default_settings
    configure_logging(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        client = None
        database = db
        if database is None:
            client, database = connect(settings)
        app.state.services = build_services(settings, database, object_store, identity)
        logger.info("Admin API started", database=database.name, storage=type(app.state.services.object_store).__name__)
        try:
            yield
        finally:
            if client is not None:
                client.close()

    app = FastAPI(
        title=settings.PROJECT_NAME,
        description="Admin backend for the QuickCare emergency ambulance service",
        version=settings.VERSION,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(AdminError)
    async def admin_error_handler(request: Request, exc: AdminError):
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})

    app.include_router(public)
    app.include_router(router)
    return app


app = create_app()


if __name__ == "__main__":
    port = int(os.getenv("PORT", default_settings.PORT))
    uvicorn.run(app, host="0.0.0.0", port=port)
