from datetime import datetime
from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import StreamingResponse
from config import settings
from event_bus import Broadcaster, BroadcastPermissionError, authorize_broadcast, get_broadcaster
from realtime import ConnectionRegistry, get_registry
from schemas.realtime import BroadcastRequest
from security import Identity, get_current_identity, get_stream_identity, require_admin
from services.stream import ConnectionStream

router = APIRouter(prefix="/realtime", tags=["realtime"])

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    # Disable proxy buffering (nginx) so frames flush immediately
    "X-Accel-Buffering": "no",
}


@router.get("/stream")
async def open_stream(
    request: Request,
    identity: Identity = Depends(get_stream_identity),
    registry: ConnectionRegistry = Depends(get_registry),
):
    stream = ConnectionStream(
        registry,
        identity,
        keepalive_seconds=settings.SSE_KEEPALIVE_SECONDS,
        queue_size=settings.SSE_QUEUE_SIZE,
        is_disconnected=request.is_disconnected,
    )
    return StreamingResponse(stream.frames(), media_type="text/event-stream", headers=SSE_HEADERS)


@router.post("/broadcast")
async def broadcast_event(
    body: BroadcastRequest,
    identity: Identity = Depends(get_current_identity),
    broadcaster: Broadcaster = Depends(get_broadcaster),
):
    try:
        authorize_broadcast(body.event_type, identity.role)
    except BroadcastPermissionError as e:
        raise HTTPException(
            status_code=403,
            detail={
                "error": f"Insufficient permissions to broadcast {body.event_type}",
                "user_role": identity.role,
                "required_roles": e.required_roles,
            },
        )
    now = datetime.utcnow()
    payload = dict(body.data or {})
    if body.target_entity is not None:
        payload["target_entity"] = body.target_entity.model_dump()
    payload["trigger_role"] = identity.role
    payload["trigger_time"] = now.isoformat()
    result = broadcaster.broadcast(body.event_type, payload, triggered_by=identity.holder_label)
    return {
        "success": True,
        "message": f"{body.event_type} broadcasted successfully",
        "event_type": body.event_type,
        "triggered_by": identity.holder_label,
        "trigger_role": identity.role,
        "delivered": result.delivered,
        "eligible": result.eligible,
        "broadcast_time": now.isoformat(),
    }


@router.get("/connections")
async def list_connections(
    identity: Identity = Depends(require_admin),
    registry: ConnectionRegistry = Depends(get_registry),
):
    return {
        "count": len(registry),
        "connections": [
            {
                "client_id": c.client_id,
                "holder_id": c.holder_id,
                "holder_label": c.holder_label,
                "role": c.holder_role,
                "connected_at": c.connected_at.isoformat(),
            }
            for c in registry.list_all()
        ],
    }
