"""
HTTP endpoints of the serial bridge.

/list               - JSON listing of devices
/read/<id>          - Server-Sent Event stream of a device's output
/baud/<id>/<rate>   - set the baud rate used on the next open
/write/<id>/<cmd>   - write a single command
/write/<id> (POST)  - write the body, one command per line
/close/<id>         - force disconnect of every session of a device
"""

import logging

from flask import Blueprint, Response, g, jsonify, request

from serbridge.core.exceptions import (
    DeviceNotFound,
    DeviceUnavailable,
    InvalidPayload,
    WriteConflict,
)
from serbridge.serial.registry import PROTOCOL_VERSION
from serbridge.web.sse import QueueSink

logger = logging.getLogger(__name__)

bridge_bp = Blueprint("bridge", __name__)


def client_origin() -> str:
    """Describe the requesting client for logs."""
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded
    return request.remote_addr or "unknown"


def _run(coro):
    return g.loop.call(coro)


# --- Error mapping ---

@bridge_bp.errorhandler(DeviceNotFound)
def handle_not_found(e: DeviceNotFound):
    return jsonify({"error": str(e)}), 404


@bridge_bp.errorhandler(WriteConflict)
def handle_conflict(e: WriteConflict):
    return jsonify({"error": str(e)}), 409


@bridge_bp.errorhandler(InvalidPayload)
def handle_invalid_payload(e: InvalidPayload):
    return jsonify({"error": str(e)}), 400


@bridge_bp.errorhandler(DeviceUnavailable)
def handle_unavailable(e: DeviceUnavailable):
    return jsonify({"error": str(e)}), 503


# --- Endpoints ---

@bridge_bp.route("/list", methods=["GET"])
def list_devices():
    """Enumerate devices."""
    devices = _run(g.registry.refresh())
    return jsonify({
        "protocol": PROTOCOL_VERSION,
        "devices": devices,
    })


@bridge_bp.route("/read/<device_id>", methods=["GET"])
def read_device(device_id: str):
    """Stream a device's output as Server-Sent Events."""
    sink = QueueSink()
    _run(g.registry.attach(device_id, sink, client_origin()))
    return Response(
        sink.stream(),
        mimetype="text/event-stream",
        headers={"Cache-Control": "no-cache"},
    )


@bridge_bp.route("/baud/<device_id>/<int:baud_rate>", methods=["GET"])
def set_baud(device_id: str, baud_rate: int):
    """Set the baud rate applied on the next open."""
    _run(g.registry.configure(device_id, baud_rate))
    return "", 204


@bridge_bp.route("/write/<device_id>/<path:command>", methods=["GET"])
def write_command(device_id: str, command: str):
    """Write a single command."""
    _run(g.registry.write(device_id, command, client_origin()))
    return "", 204


@bridge_bp.route("/write/<device_id>", methods=["POST"])
def write_body(device_id: str):
    """Write the request body, one command per line."""
    body = request.get_data(as_text=True)
    _run(g.registry.write(device_id, body, client_origin()))
    return "", 204


@bridge_bp.route("/close/<device_id>", methods=["GET"])
def close_device(device_id: str):
    """Force close a device."""
    origin = client_origin()
    _run(g.registry.force_close(device_id))
    logger.info(f'{device_id}: force close from "{origin}"')
    return "", 204
