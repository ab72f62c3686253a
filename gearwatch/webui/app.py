from __future__ import annotations

import contextlib
import logging
from fastapi import FastAPI, HTTPException, status
from starlette.concurrency import run_in_threadpool

from ..errors import DerivationInternalError, GearwatchError
from ..session import MonitorSession
from ..state_store import NotificationFeed
from ..version import __version__

logger = logging.getLogger(__name__)


def create_app(session: MonitorSession) -> FastAPI:
    """Build the HTTP surface for one monitor session.

    The session is activated when the app starts and stopped on shutdown,
    so its timers live exactly as long as the server.
    """
    @contextlib.asynccontextmanager
    async def lifespan(app: FastAPI):
        await run_in_threadpool(session.start)
        try:
            yield
        finally:
            session.stop()

    app = FastAPI(title="gearwatch", version=__version__, lifespan=lifespan)
    app.state.session = session

    def _not_found(notification_id: str) -> HTTPException:
        return HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Notification {notification_id} not found",
        )

    @app.get("/api/counters")
    def get_counters():
        counters = session.get_aggregate_counters()
        if counters is None:
            return {"counters": None, "last_error": session.status()["last_error"]}
        return {"counters": counters.as_dict(), "last_error": session.status()["last_error"]}

    @app.get("/api/notifications")
    def list_notifications(filter: str = "all"):
        try:
            feed = NotificationFeed(session.store, filter)
        except ValueError as e:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
        items = [n.as_dict() for n in feed]
        return {
            "filter": filter,
            "count": len(items),
            "unread": session.store.unread_count(),
            "available": session.store.available,
            "notifications": items,
        }

    @app.post("/api/refresh")
    def refresh():
        try:
            counters = session.trigger_refresh("explicit")
        except DerivationInternalError as e:
            raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(e))
        except GearwatchError as e:
            raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(e))
        return {"counters": counters.as_dict() if counters else None}

    @app.post("/api/focus")
    def focus():
        session.notify_focus()
        return {"status": "ok"}

    @app.post("/api/mutations", status_code=status.HTTP_202_ACCEPTED)
    def mutation(silent: bool = False):
        session.notify_mutation(silent=silent)
        return {"status": "scheduled"}

    @app.post("/api/notifications/read-all")
    def read_all():
        return {"changed": session.mark_all_read()}

    @app.post("/api/notifications/{notification_id}/read")
    def read(notification_id: str):
        if not session.mark_read(notification_id):
            raise _not_found(notification_id)
        return {"id": notification_id, "read": True}

    @app.post("/api/notifications/{notification_id}/unread")
    def unread(notification_id: str):
        if not session.mark_unread(notification_id):
            raise _not_found(notification_id)
        return {"id": notification_id, "read": False}

    @app.delete("/api/notifications/{notification_id}")
    def dismiss(notification_id: str):
        if not session.dismiss(notification_id):
            raise _not_found(notification_id)
        return {"id": notification_id, "dismissed": True}

    @app.get("/api/status")
    def get_status():
        return session.status()

    return app
