from __future__ import annotations

import logging
from functools import lru_cache
from typing import Any, Iterable

from django.conf import settings
from django.utils.module_loading import import_string

from .models import Notification

logger = logging.getLogger(__name__)


@lru_cache(maxsize=None)
def _backend_for(path: str):
    return import_string(path)()


def get_realtime_backend():
    path = (getattr(settings, "REALTIME_BACKEND", "") or "").strip()
    if not path:
        path = "notifications.backends.LoggingBackend"
    return _backend_for(path)


def publish_to_room(*, room: Any, event: str, payload: dict[str, Any]) -> bool:
    """Fire-and-forget push to one user's room.

    Delivery is not guaranteed; transport failures are logged, never raised.
    """

    room_key = str(room or "").strip()
    if not room_key:
        return False
    try:
        get_realtime_backend().publish(room_key, event, payload)
    except Exception:
        logger.exception("Realtime publish failed", extra={"room": room_key, "event": event})
        return False
    return True


def publish_to_rooms(*, rooms: Iterable[Any], event: str, payload: dict[str, Any]) -> int:
    sent = 0
    seen: set[str] = set()
    for room in rooms:
        key = str(room or "").strip()
        if not key or key in seen:
            continue
        seen.add(key)
        if publish_to_room(room=key, event=event, payload=payload):
            sent += 1
    return sent


def notify_user(
    *,
    user_id: int,
    title: str,
    message: str = "",
    kind: str = Notification.Kind.ORDER,
    ref_id: str = "",
    url: str = "",
) -> Notification:
    notif = Notification.objects.create(
        user_id=int(user_id),
        kind=kind,
        title=(title or "").strip()[:255],
        message=(message or "").strip(),
        ref_id=str(ref_id or ""),
        url=(url or "").strip(),
    )
    publish_to_room(
        room=notif.user_id,
        event="notification:new",
        payload={
            "id": notif.id,
            "kind": notif.kind,
            "title": notif.title,
            "message": notif.message,
            "refId": notif.ref_id,
            "url": notif.url,
        },
    )
    return notif
