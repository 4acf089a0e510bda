#!/usr/bin/env python3
"""
masterlist local server
-----------------------
JSON API over a TaskStore, for whatever frontend renders the lists.

Usage:
    masterlist-server --db ~/.local/share/masterlist/masterlist.db --port 3000

API:
    GET    /api/items?view=active|completed|all → { items, count }
    POST   /api/items              { title, category? } → { item }
    GET    /api/items/<id>         → { item }
    PATCH  /api/items/<id>         { title?, category?, is_completed? } → { item }
    POST   /api/items/<id>/toggle  → { item }
    POST   /api/items/<id>/move    { index } → { items }
    DELETE /api/items/<id>         → { deleted }
    POST   /api/items/reorder      { ids } → { items }
    GET    /api/categories         → { categories }
    GET    /api/board              → { active, completed, stats }
"""

import argparse
import logging

from flask import Flask, jsonify, request

from .backend import SqliteBackend
from .config import Config, setup_logging
from .schema import (
    Category,
    MasterListError,
    NotFoundError,
    PersistenceError,
    Record,
    ValidationError,
)
from .store import TaskStore
from .views import active_view, all_view, completed_view

logger = logging.getLogger(__name__)

_STATUS = {
    ValidationError: 400,
    NotFoundError: 404,
    PersistenceError: 503,
}


def _body() -> dict:
    data = request.get_json(force=True, silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("request body must be a JSON object")
    return data


def _items(records) -> list:
    return [r.to_dict() for r in records]


def create_app(store: TaskStore, default_category: str = "Personal") -> Flask:
    """Build the Flask app bound to one store and its live views."""
    app = Flask(__name__)
    views = {
        "active": active_view(store),
        "completed": completed_view(store),
        "all": all_view(store),
    }
    app.config["MASTERLIST_STORE"] = store
    app.config["MASTERLIST_VIEWS"] = views

    # ── Errors ───────────────────────────────────────────────────────────────

    @app.errorhandler(MasterListError)
    def handle_store_error(e):
        status = _STATUS.get(type(e), 500)
        if status >= 500:
            app.logger.warning("store error: %s", e)
        return jsonify({"error": str(e)}), status

    # ── Routes ───────────────────────────────────────────────────────────────

    @app.route("/api/items", methods=["GET"])
    def api_list_items():
        name = request.args.get("view", "active")
        view = views.get(name)
        if view is None:
            raise ValidationError(f"view must be one of {sorted(views)}")
        items = view.current_items()
        return jsonify({"items": _items(items), "count": len(items)})

    @app.route("/api/items", methods=["POST"])
    def api_create_item():
        data = _body()
        category = data.get("category") or default_category
        record = store.create(data.get("title", ""), category)
        return jsonify({"item": record.to_dict()}), 201

    @app.route("/api/items/reorder", methods=["POST"])
    def api_reorder():
        ids = _body().get("ids")
        if not isinstance(ids, list) or not all(isinstance(i, str) for i in ids):
            raise ValidationError("ids must be a list of item ids")
        return jsonify({"items": _items(store.reorder(ids))})

    @app.route("/api/items/<record_id>", methods=["GET"])
    def api_get_item(record_id):
        return jsonify({"item": store.get(record_id).to_dict()})

    @app.route("/api/items/<record_id>", methods=["PATCH"])
    def api_update_item(record_id):
        data = _body()
        if "is_completed" in data and not isinstance(data["is_completed"], bool):
            raise ValidationError("is_completed must be a boolean")

        def apply(record: Record) -> None:
            if "title" in data:
                record.title = data["title"]
            if "category" in data:
                record.category = data["category"]
            if "is_completed" in data:
                record.is_completed = data["is_completed"]

        return jsonify({"item": store.update(record_id, apply).to_dict()})

    @app.route("/api/items/<record_id>/toggle", methods=["POST"])
    def api_toggle_item(record_id):
        return jsonify({"item": store.toggle_completion(record_id).to_dict()})

    @app.route("/api/items/<record_id>/move", methods=["POST"])
    def api_move_item(record_id):
        index = _body().get("index")
        if isinstance(index, bool) or not isinstance(index, int):
            raise ValidationError("index must be an integer")
        return jsonify({"items": _items(store.move(record_id, index))})

    @app.route("/api/items/<record_id>", methods=["DELETE"])
    def api_delete_item(record_id):
        store.delete(record_id)
        return jsonify({"deleted": record_id})

    @app.route("/api/categories")
    def api_categories():
        return jsonify({"categories": Category.metadata()})

    @app.route("/api/board")
    def api_board():
        active = views["active"].current_items()
        completed = views["completed"].current_items()

        by_category = {c.value: 0 for c in Category}
        for r in active:
            by_category[r.category.value] += 1

        return jsonify({
            "active":    _items(active),
            "completed": _items(completed),
            "stats": {
                "active":      len(active),
                "completed":   len(completed),
                "total":       len(active) + len(completed),
                "by_category": by_category,
            },
        })

    return app


def main():
    ap = argparse.ArgumentParser(description="masterlist local JSON API")
    ap.add_argument("--config", default=None, help="Path to config.yaml")
    ap.add_argument("--db", default=None, help="SQLite database path")
    ap.add_argument("--host", default=None, help="Bind address (default from config)")
    ap.add_argument("--port", type=int, default=None, help="Port (default from config)")
    args = ap.parse_args()

    cfg = Config.load(args.config)
    # CLI overrides
    if args.db:
        cfg.db_path = args.db
    if args.host:
        cfg.host = args.host
    if args.port:
        cfg.port = args.port
    cfg.resolve_paths()

    setup_logging(cfg.log_level)
    store = TaskStore(SqliteBackend(cfg.db_path))
    app = create_app(store, default_category=cfg.default_category)
    logger.info("Serving %s on http://%s:%d", cfg.db_path, cfg.host, cfg.port)
    try:
        app.run(host=cfg.host, port=cfg.port)
    finally:
        store.close()


if __name__ == "__main__":
    main()
