#!/usr/bin/env python3
"""
FLOW Server
-----------
Serves the FLOW dashboard/kanban UI and a JSON API over local JSON documents.
Board saves, chat posts and workspace edits become domain events that feed
the activity timeline and the memory log.

Usage:
    python flow_server.py
    python flow_server.py --port 3456 --data-dir ./data --config flow.yaml

Access:
    Local:  http://localhost:3456

API:
    GET  /api/data              → board snapshot (default template on first load)
    POST /api/data              → replace board snapshot, diff → kanban events
    GET  /api/activity          → activity feed
    GET  /api/memory            → memory log
    GET  /api/memory/refresh    → re-scan daily logs (POST too)
    GET  /api/deliverables      → deliverables document
    GET  /api/messages          → ingest session transcripts, return messages
    POST /api/messages          → append a message, publish chat:message
    GET  /api/events            → event log
    POST /api/trigger           → { event, data } publish an allowed event
    GET  /api/workspace/<f>.md  → { content }
    POST /api/workspace/<f>.md  → { content } overwrite, publish kai:fileEdited
    GET  /api/tokens, /api/crons, /api/channels, /api/gateway/status
    POST /api/gateway/restart
"""

import json
import logging
import sys
from dataclasses import dataclass
from functools import wraps
from pathlib import Path
from typing import Optional

from flask import Flask, Response, current_app, jsonify, request, send_from_directory

from flow.activity import ActivityLog
from flow.board import BoardRepository
from flow.config import Config
from flow.events import EventBus
from flow.memory import MemoryExtractor, MemoryRefreshScheduler
from flow.openclaw import CLIError, OpenClawClient
from flow.schema import TRIGGERABLE_EVENTS, EventType, FileEditedEvent, InvalidRequest, event_from_dict
from flow.sessions import MessageLog, empty_messages
from flow.store import ACTIVITY, DELIVERABLES, MEMORY, MESSAGES, BlobStore
from flow.workspace import Workspace

logger = logging.getLogger("flow")

# Path aliases for the static UI
PAGE_ALIASES = {
    "": "dashboard.html",
    "dashboard": "dashboard.html",
    "kanban": "kanban.html",
    "kanban.html": "kanban.html",
}


# ── Composition root ─────────────────────────────────────────────────────────

@dataclass
class Services:
    """Everything the routes need, built once per app."""
    config: Config
    store: BlobStore
    bus: EventBus
    activity: ActivityLog
    board: BoardRepository
    messages: MessageLog
    memory: MemoryExtractor
    workspace: Workspace
    openclaw: OpenClawClient


def build_services(cfg: Config) -> Services:
    store = BlobStore(cfg.data_dir)
    bus = EventBus(store)
    activity = ActivityLog(store)
    activity.register(bus)
    return Services(
        config=cfg,
        store=store,
        bus=bus,
        activity=activity,
        board=BoardRepository(store, bus),
        messages=MessageLog(store, bus, cfg.sessions_dir),
        memory=MemoryExtractor(store, str(cfg.memory_dir)),
        workspace=Workspace(cfg.workspace_dir),
        openclaw=OpenClawClient(
            binary=cfg.openclaw_bin,
            config_path=cfg.openclaw_config,
            sessions_dir=cfg.sessions_dir,
            timeout=cfg.cli_timeout,
        ),
    )


def services() -> Services:
    return current_app.extensions["flow"]


# ── Helpers ──────────────────────────────────────────────────────────────────

def json_body():
    """Parse the request body as JSON; malformed bodies become InvalidRequest."""
    raw = request.get_data(as_text=True)
    try:
        return json.loads(raw)
    except ValueError as e:
        raise InvalidRequest(str(e))


def api_errors(f):
    """Decorator: unexpected failures → 500 with the message. InvalidRequest
    is left to the app-wide 400 handler."""
    @wraps(f)
    def decorated(*args, **kwargs):
        try:
            return f(*args, **kwargs)
        except InvalidRequest:
            raise
        except Exception as e:
            logger.exception(f"{request.method} {request.path} failed")
            return jsonify({"error": str(e)}), 500
    return decorated


def adapter(empty: dict):
    """Decorator for status endpoints: failures answer 200 with an error field."""
    def wrap(f):
        @wraps(f)
        def decorated(*args, **kwargs):
            try:
                return jsonify(f(*args, **kwargs))
            except (CLIError, OSError, ValueError) as e:
                logger.warning(f"{request.path}: {e}")
                return jsonify({**empty, "error": str(e)})
        return decorated
    return wrap


def invalid_request(e: InvalidRequest):
    return jsonify({"error": str(e)}), 400


def raw_document(name: str, missing: str):
    text = services().store.read_text(name)
    if text is None:
        return jsonify({"error": missing}), 404
    return Response(text, mimetype="application/json")


# ── App factory ──────────────────────────────────────────────────────────────

def create_app(cfg: Optional[Config] = None) -> Flask:
    if cfg is None:
        cfg = Config.load()
    app = Flask(__name__)
    app.extensions["flow"] = build_services(cfg)
    app.register_error_handler(InvalidRequest, invalid_request)
    register_routes(app)
    return app


def register_routes(app: Flask) -> None:

    @app.after_request
    def cors(response):
        response.headers["Access-Control-Allow-Origin"] = "*"
        response.headers["Access-Control-Allow-Methods"] = "GET, POST, OPTIONS"
        response.headers["Access-Control-Allow-Headers"] = "Content-Type"
        return response

    @app.before_request
    def preflight():
        if request.method == "OPTIONS":
            return Response(status=200)

    # Board

    @app.route("/api/data", methods=["GET"])
    @api_errors
    def api_data_get():
        return jsonify(services().board.load())

    @app.route("/api/data", methods=["POST"])
    @api_errors
    def api_data_set():
        services().board.save(json_body())
        return jsonify({"success": True})

    # Satellite documents

    @app.route("/api/activity")
    @api_errors
    def api_activity():
        return raw_document(ACTIVITY, "Activity data not found")

    @app.route("/api/memory")
    @api_errors
    def api_memory():
        return raw_document(MEMORY, "Memory data not found")

    @app.route("/api/deliverables")
    @api_errors
    def api_deliverables():
        return raw_document(DELIVERABLES, "Deliverables data not found")

    @app.route("/api/memory/refresh", methods=["GET", "POST"])
    @api_errors
    def api_memory_refresh():
        added = services().memory.parse_daily_logs()
        return jsonify({"success": True, "message": "Memory refresh triggered", "added": added})

    # Messages

    @app.route("/api/messages", methods=["GET"])
    @api_errors
    def api_messages_get():
        svc = services()
        svc.messages.sync_from_sessions()
        text = svc.store.read_text(MESSAGES)
        if text is None:
            return jsonify(empty_messages())
        return Response(text, mimetype="application/json")

    @app.route("/api/messages", methods=["POST"])
    @api_errors
    def api_messages_post():
        message = services().messages.append(json_body())
        return jsonify({"success": True, "message": message})

    # Events

    @app.route("/api/events")
    @api_errors
    def api_events():
        return jsonify(services().bus.recent())

    @app.route("/api/trigger", methods=["POST"])
    @api_errors
    def api_trigger():
        body = json_body()
        if not isinstance(body, dict):
            raise InvalidRequest("Body must be a JSON object")
        event_type = EventType.parse(body.get("event"))
        if event_type not in TRIGGERABLE_EVENTS:
            return jsonify({"error": "Invalid event type"}), 400
        payload = event_from_dict(event_type, body.get("data"))
        services().bus.publish(event_type, payload)
        return jsonify({"success": True, "event": event_type.value})

    # Workspace files

    @app.route("/api/workspace/<path:file_name>", methods=["GET"])
    @api_errors
    def api_workspace_get(file_name):
        content = services().workspace.read(file_name)
        if content is None:
            return jsonify({"error": "File not found"}), 404
        return jsonify({"content": content})

    @app.route("/api/workspace/<path:file_name>", methods=["POST"])
    @api_errors
    def api_workspace_set(file_name):
        svc = services()
        body = json_body()
        if not isinstance(body, dict):
            raise InvalidRequest("Body must be a JSON object")
        svc.workspace.write(file_name, body.get("content"))
        svc.bus.publish(EventType.FILE_EDITED, FileEditedEvent(file=file_name))
        try:
            svc.memory.extract_from_file_edit(file_name)
        except Exception as e:
            logger.error(f"Error extracting memory: {e}")
        return jsonify({"success": True})

    # OpenClaw adapters

    @app.route("/api/tokens")
    @adapter({"sessions": [], "summary": {}})
    def api_tokens():
        return services().openclaw.tokens()

    @app.route("/api/crons")
    @adapter({"crons": [], "count": 0})
    def api_crons():
        return services().openclaw.crons()

    @app.route("/api/channels")
    @adapter({"channels": []})
    def api_channels():
        return services().openclaw.channels()

    @app.route("/api/gateway/status")
    @adapter({"running": False})
    def api_gateway_status():
        return services().openclaw.gateway_status()

    @app.route("/api/gateway/restart", methods=["GET", "POST"])
    def api_gateway_restart():
        try:
            services().openclaw.restart_gateway()
        except OSError as e:
            logger.error(f"Gateway restart error: {e}")
            return jsonify({"success": False, "error": str(e)}), 500
        return jsonify({"success": True, "message": "Gateway restart initiated"})

    @app.route("/health")
    def health():
        return jsonify({"status": "ok", "data_dir": str(services().store.data_dir)})

    # Static UI

    @app.route("/", defaults={"asset": ""})
    @app.route("/<path:asset>")
    def static_asset(asset):
        app_dir = Path(services().config.app_dir).resolve()
        return send_from_directory(app_dir, PAGE_ALIASES.get(asset, asset))


# ── Main ─────────────────────────────────────────────────────────────────────

def main(argv=None):
    import argparse

    parser = argparse.ArgumentParser(description="FLOW Server")
    parser.add_argument("--config", help="Path to flow.yaml (overrides FLOW_CONFIG env var)")
    parser.add_argument("--host", help="Bind address (use 0.0.0.0 to expose on network)")
    parser.add_argument("--port", type=int)
    parser.add_argument("--data-dir", help="Directory for the JSON documents")
    args = parser.parse_args(argv)

    cfg = Config.load(args.config)
    if args.host:
        cfg.host = args.host
    if args.port:
        cfg.port = args.port
    if args.data_dir:
        cfg.data_dir = args.data_dir
        cfg.resolve_paths()

    logging.basicConfig(
        level=getattr(logging, str(cfg.log_level).upper(), logging.INFO),
        format="%(asctime)s [flow] %(levelname)s: %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
    )

    app = create_app(cfg)
    scheduler = MemoryRefreshScheduler(app.extensions["flow"].memory, cfg.memory_refresh_interval)
    scheduler.start()

    print(f"""
╔═══════════════════════════════════════╗
║  FLOW Server                          ║
╠═══════════════════════════════════════╣
║  URL:  http://{cfg.host}:{cfg.port:<20}║
║  Data: {cfg.data_dir:<31}║
║  Workspace: {cfg.workspace_dir:<26}║
╚═══════════════════════════════════════╝
""")

    try:
        app.run(host=cfg.host, port=cfg.port, debug=False, threaded=True)
    finally:
        scheduler.stop(timeout=1)


if __name__ == "__main__":
    main()
