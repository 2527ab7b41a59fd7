from dataclasses import asdict
from typing import Optional

from flask import Flask, jsonify, request

from config import SyncSettings, load_settings
from db import StateStore
from hasher import hash_order_id


def _state_json(state):
    if state is None:
        return None
    d = asdict(state)
    for k in ("order_pulled_at", "last_updated_at"):
        if d[k] is not None:
            d[k] = d[k].isoformat()
    return d


def create_app(settings: Optional[SyncSettings] = None) -> Flask:
    """
    Read-only view of the state DB. Waitress: ``waitress-serve --call admin:create_app``.
    Nothing here mutates state; only the workers do.
    """
    settings = settings or load_settings()
    store = StateStore(settings.state_db_path)

    app = Flask(__name__)
    app.config["STATE_STORE"] = store

    @app.route("/health")
    def health():
        return jsonify({"status": "ok", "state_records": store.count(), "db_path": store.path})

    @app.route("/runs")
    def runs():
        try:
            limit = max(1, min(int(request.args.get("limit", 25)), 500))
        except ValueError:
            limit = 25
        worker = (request.args.get("worker") or "").strip() or None
        return jsonify({"runs": store.recent_runs(limit=limit, worker=worker)})

    @app.route("/order/<external_id>")
    def order_detail(external_id):
        state = store.get_by_external_id(external_id)
        body = {"external_id": external_id, "hash": hash_order_id(external_id), "state": _state_json(state)}
        return jsonify(body), (200 if state else 404)

    @app.route("/order/hash/<hashed_id>")
    def order_by_hash(hashed_id):
        state = store.get_by_hash(hashed_id)
        return jsonify({"hash": hashed_id, "state": _state_json(state)}), (200 if state else 404)

    return app


if __name__ == "__main__":
    # For local dev only. Waitress uses admin:create_app
    create_app().run(host="0.0.0.0", port=5050, debug=True)
