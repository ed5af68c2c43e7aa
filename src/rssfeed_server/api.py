"""FastAPI application exposing the feed reader's REST API."""

import logging
from contextlib import asynccontextmanager

from fastapi import APIRouter, Depends, FastAPI, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel

from rssfeed_server import services
from rssfeed_server.config import Settings
from rssfeed_server.database import Database, category_to_dict, feed_to_dict
from rssfeed_server.errors import AppError, UnauthorizedError
from rssfeed_server.models import User, utcnow
from rssfeed_server.scheduler import FeedScheduler
from rssfeed_server.subscriptions import subscribe

logger = logging.getLogger(__name__)

auth_scheme = HTTPBearer(auto_error=False)


def ok(data=None, message: str | None = None, success: bool = True) -> dict:
    body = {"success": success, "data": data}
    if message:
        body["message"] = message
    return body


# --- Request bodies ---


class Credentials(BaseModel):
    username: str
    password: str


class CategoryBody(BaseModel):
    title: str


class FeedCreateBody(BaseModel):
    feed_url: str
    category_id: int | None = None
    title: str | None = None


class FeedUpdateBody(BaseModel):
    title: str | None = None
    category_id: int | None = None
    disabled: bool | None = None


class StarBody(BaseModel):
    starred: bool


class StatusBody(BaseModel):
    status: str


class MarkAllReadBody(BaseModel):
    feed_id: int | None = None
    category_id: int | None = None


# --- Dependencies ---


def get_db(request: Request) -> Database:
    return request.app.state.db


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_token(
    credentials: HTTPAuthorizationCredentials | None = Depends(auth_scheme),
) -> str:
    if not credentials or credentials.scheme.lower() != "bearer":
        raise UnauthorizedError()
    return credentials.credentials


def get_current_user(
    token: str = Depends(get_token), db: Database = Depends(get_db)
) -> User:
    return services.authenticate_token(db, token)


# --- Routes ---

health_router = APIRouter()
auth_router = APIRouter()
categories_router = APIRouter(dependencies=[Depends(get_current_user)])
feeds_router = APIRouter(dependencies=[Depends(get_current_user)])
entries_router = APIRouter(dependencies=[Depends(get_current_user)])


@health_router.get("/health")
def health():
    return {"status": "ok", "timestamp": utcnow().isoformat()}


def _login_payload(
    request: Request, db: Database, settings: Settings, credentials: Credentials
) -> dict:
    session, user = services.login(
        db,
        credentials.username,
        credentials.password,
        settings,
        user_agent=request.headers.get("user-agent"),
        ip_address=request.client.host if request.client else None,
    )
    return {"user": services.user_to_dict(user), "token": session.token}


@auth_router.post("/register", status_code=201)
def register(
    body: Credentials,
    request: Request,
    db: Database = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    services.register_user(db, body.username, body.password)
    return ok(
        _login_payload(request, db, settings, body),
        message="Admin account created successfully",
    )


@auth_router.post("/login")
def login(
    body: Credentials,
    request: Request,
    db: Database = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    return ok(_login_payload(request, db, settings, body))


@auth_router.post("/logout")
def logout(token: str = Depends(get_token), db: Database = Depends(get_db)):
    services.authenticate_token(db, token)
    services.logout(db, token)
    return ok(message="Logged out successfully")


@auth_router.get("/me")
def me(user: User = Depends(get_current_user)):
    return ok(services.user_to_dict(user))


@categories_router.get("")
def list_categories(
    user: User = Depends(get_current_user), db: Database = Depends(get_db)
):
    return ok(services.list_categories(db, user.id))


@categories_router.post("", status_code=201)
def create_category(
    body: CategoryBody,
    user: User = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    return ok(services.create_category(db, user.id, body.title))


@categories_router.get("/{category_id}")
def get_category(
    category_id: int,
    user: User = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    return ok(category_to_dict(services.get_category(db, user.id, category_id)))


@categories_router.put("/{category_id}")
def update_category(
    category_id: int,
    body: CategoryBody,
    user: User = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    return ok(services.rename_category(db, user.id, category_id, body.title))


@categories_router.delete("/{category_id}")
def delete_category(
    category_id: int,
    user: User = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    services.delete_category(db, user.id, category_id)
    return ok(message="Category deleted")


@feeds_router.get("")
def list_feeds(user: User = Depends(get_current_user), db: Database = Depends(get_db)):
    return ok(services.list_feeds(db, user.id))


@feeds_router.post("", status_code=201)
def create_feed(
    body: FeedCreateBody,
    user: User = Depends(get_current_user),
    db: Database = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    result = subscribe(
        db,
        user.id,
        body.feed_url,
        settings,
        category_id=body.category_id,
        title=body.title,
    )
    return ok(
        feed_to_dict(result.feed),
        message=f"Subscribed to feed with {result.entries_created} entries",
    )


@feeds_router.post("/refresh-all")
async def refresh_all(request: Request):
    scheduler: FeedScheduler = request.app.state.scheduler
    result = await scheduler.run_sweep()
    if result is None:
        return ok(
            {"refreshed": 0, "errors": 0, "skipped": True},
            message="A refresh is already in progress",
        )
    return ok(
        {"refreshed": result.refreshed, "errors": result.errors, "skipped": False},
        message=f"Refreshed {result.refreshed} feeds ({result.errors} errors)",
    )


@feeds_router.get("/{feed_id}")
def get_feed(
    feed_id: int,
    user: User = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    return ok(feed_to_dict(services.get_feed(db, user.id, feed_id)))


@feeds_router.put("/{feed_id}")
def update_feed(
    feed_id: int,
    body: FeedUpdateBody,
    user: User = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    return ok(
        services.update_feed(
            db,
            user.id,
            feed_id,
            title=body.title,
            category_id=body.category_id,
            disabled=body.disabled,
        )
    )


@feeds_router.delete("/{feed_id}")
def delete_feed(
    feed_id: int,
    user: User = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    services.delete_feed(db, user.id, feed_id)
    return ok(message="Feed deleted")


@feeds_router.post("/{feed_id}/refresh")
def refresh_feed(
    feed_id: int,
    user: User = Depends(get_current_user),
    db: Database = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    result = services.refresh_user_feed(db, user.id, feed_id, settings)
    message = (
        f"Refreshed: {result.new_entries} new entries"
        if result.success
        else f"Refresh failed: {result.error_message}"
    )
    return ok(
        feed_to_dict(services.get_feed(db, user.id, feed_id)),
        message=message,
        success=result.success,
    )


@entries_router.get("")
def list_entries(
    status: str | None = None,
    starred: bool | None = None,
    feed_id: int | None = None,
    category_id: int | None = None,
    search: str | None = None,
    page: int = 1,
    limit: int = 50,
    order_by: str = "published_at",
    order_dir: str = "desc",
    user: User = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    return ok(
        services.list_entries(
            db,
            user.id,
            status=status,
            starred=starred,
            feed_id=feed_id,
            category_id=category_id,
            search=search,
            page=page,
            limit=limit,
            order_by=order_by,
            order_dir=order_dir,
        )
    )


@entries_router.get("/starred")
def list_starred(
    page: int = 1,
    limit: int = 50,
    user: User = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    return ok(services.list_entries(db, user.id, starred=True, page=page, limit=limit))


@entries_router.get("/counts")
def entry_counts(user: User = Depends(get_current_user), db: Database = Depends(get_db)):
    return ok(services.entry_counts(db, user.id))


@entries_router.post("/mark-all-read")
def mark_all_read(
    body: MarkAllReadBody | None = None,
    user: User = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    body = body or MarkAllReadBody()
    count = services.mark_all_read(
        db, user.id, feed_id=body.feed_id, category_id=body.category_id
    )
    return ok({"updated": count})


@entries_router.get("/{entry_id}")
def get_entry(
    entry_id: int,
    user: User = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    return ok(services.get_entry_with_enclosures(db, user.id, entry_id))


@entries_router.post("/{entry_id}/star")
def toggle_star(
    entry_id: int,
    user: User = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    return ok(services.toggle_starred(db, user.id, entry_id))


@entries_router.put("/{entry_id}/star")
def set_star(
    entry_id: int,
    body: StarBody,
    user: User = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    return ok(services.set_starred(db, user.id, entry_id, body.starred))


@entries_router.put("/{entry_id}/status")
def set_status(
    entry_id: int,
    body: StatusBody,
    user: User = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    return ok(services.set_status(db, user.id, entry_id, body.status))


@entries_router.post("/{entry_id}/fetch-content")
async def fetch_content(
    entry_id: int,
    user: User = Depends(get_current_user),
    db: Database = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    return ok(
        await run_in_threadpool(
            services.fetch_full_content, db, user.id, entry_id, settings
        )
    )


# --- Application ---


async def handle_app_error(request: Request, exc: AppError) -> JSONResponse:
    logger.warning(
        "%s %s -> %d: %s",
        request.method,
        request.url.path,
        exc.status_code,
        exc.message,
    )
    return JSONResponse(
        status_code=exc.status_code, content={"success": False, "error": exc.message}
    )


async def handle_validation_error(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    messages = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ())[1:])
        messages.append(f"{location}: {error.get('msg')}" if location else error.get("msg"))
    return JSONResponse(
        status_code=400, content={"success": False, "error": ", ".join(messages)}
    )


async def handle_unexpected_error(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500, content={"success": False, "error": "Internal server error"}
    )


def create_app(
    settings: Settings | None = None,
    db: Database | None = None,
    scheduler: FeedScheduler | None = None,
) -> FastAPI:
    """Build the API application.

    When db is given it is expected to be connected already and is left open
    on shutdown; otherwise the app opens and closes its own store.
    """
    settings = settings or Settings.from_env()
    owns_db = db is None
    db = db or Database(settings.db_path)
    scheduler = scheduler or FeedScheduler(db, settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if owns_db:
            db.connect()
        services.bootstrap_admin(db, settings)
        if settings.scheduler_enabled:
            await scheduler.start()
        yield
        # Stop timers before the store goes away.
        await scheduler.stop()
        if owns_db:
            db.close()

    app = FastAPI(title="RSS Feed Server", version="0.1.0", lifespan=lifespan)
    app.state.settings = settings
    app.state.db = db
    app.state.scheduler = scheduler

    app.add_exception_handler(AppError, handle_app_error)
    app.add_exception_handler(RequestValidationError, handle_validation_error)
    app.add_exception_handler(Exception, handle_unexpected_error)

    app.include_router(health_router, prefix="/api", tags=["Health"])
    app.include_router(auth_router, prefix="/api/auth", tags=["Authentication"])
    app.include_router(categories_router, prefix="/api/categories", tags=["Categories"])
    app.include_router(feeds_router, prefix="/api/feeds", tags=["Feeds"])
    app.include_router(entries_router, prefix="/api/entries", tags=["Entries"])
    return app
