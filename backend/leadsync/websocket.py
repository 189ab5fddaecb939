"""WebSocket real-time notifications using Socket.IO."""

import socketio
import logging
from typing import Dict, Set

from leadsync import events
from leadsync.events import LeadsChanged

logger = logging.getLogger(__name__)

# Create Socket.IO async server
sio = socketio.AsyncServer(
    async_mode='asgi',
    cors_allowed_origins='*',
    logger=False,
    engineio_logger=False
)

# Socket.IO ASGI app
socket_app = socketio.ASGIApp(
    sio,
    socketio_path='/socket.io'
)

# Track active connections by tenant
active_connections: Dict[str, Set[str]] = {}


def get_socket_app():
    """Get the Socket.IO ASGI app for mounting."""
    return socket_app


def tenant_room(tenant_id) -> str:
    return f'tenant_{tenant_id}'


# Socket.IO Event Handlers

@sio.event
async def connect(sid, environ):
    """Handle client connection."""
    logger.info(f"Client connected: {sid}")


@sio.event
async def disconnect(sid):
    """Handle client disconnection."""
    logger.info(f"Client disconnected: {sid}")

    for tenant_id, sids in list(active_connections.items()):
        if sid in sids:
            sids.remove(sid)
            if not sids:
                del active_connections[tenant_id]


@sio.event
async def join_tenant(sid, data):
    """Join a tenant room for receiving tenant-specific notifications."""
    tenant_id = (data or {}).get('tenant_id')

    if not tenant_id:
        await sio.emit('error', {
            'message': 'tenant_id is required'
        }, room=sid)
        return

    await sio.enter_room(sid, tenant_room(tenant_id))
    active_connections.setdefault(str(tenant_id), set()).add(sid)

    logger.info(f"Client {sid} joined tenant room: {tenant_id}")

    await sio.emit('joined_tenant', {
        'tenant_id': tenant_id,
        'message': f'Joined tenant room {tenant_id}'
    }, room=sid)


# Notification Helpers

async def notify_leads_changed(event: LeadsChanged):
    """Forward a committed lead change to the tenant's room."""
    await sio.emit('leads_changed', {
        'type': 'leads_changed',
        'tenant_id': str(event.tenant_id),
        'reason': event.reason
    }, room=tenant_room(event.tenant_id))
    logger.info(f"Notified tenant {event.tenant_id}: leads changed ({event.reason})")


def register_event_handlers():
    events.subscribe(notify_leads_changed)


def get_connection_stats():
    """Get statistics about active connections."""
    return {
        'total_connections': sum(len(sids) for sids in active_connections.values()),
        'tenants_connected': len(active_connections),
        'connections_by_tenant': {
            tenant_id: len(sids)
            for tenant_id, sids in active_connections.items()
        }
    }
