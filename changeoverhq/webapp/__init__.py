"""Flask application exposing the ChangeoverHQ actions as a JSON API."""

from __future__ import annotations

import logging
from typing import Any, Mapping

from flask import Flask, jsonify, redirect, request, url_for

from changeoverhq.core import templates
from changeoverhq.core.changeovers import GenerationOutcome
from changeoverhq.core.database import SQLiteStore
from changeoverhq.core.logging_config import setup_logging
from changeoverhq.core.system import (
    ChangeoverSystem,
    RecordNotFound,
    StorageWriteError,
    ValidationError,
)
from changeoverhq.core.templates import TemplateCatalog

DEFAULT_QUOTA_BYTES = 5 * 1024 * 1024

logger = logging.getLogger(__name__)


def _banner(tone: str, text: str) -> dict[str, str]:
    return {"tone": tone, "text": text}


def _payload() -> dict[str, Any]:
    data = request.get_json(silent=True)
    if isinstance(data, dict):
        return data
    return request.form.to_dict()


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes", "on"}
    return bool(value)


def create_app(
    database_path: str = "changeoverhq.db", config: Mapping[str, Any] | None = None
) -> Flask:
    """Create and configure the Flask application."""

    app = Flask(__name__)
    app.config.from_mapping(
        SECRET_KEY="changeoverhq-secret",
        DATABASE=database_path,
        STORE_QUOTA_BYTES=DEFAULT_QUOTA_BYTES,
        LOG_LEVEL="INFO",
        LOG_JSON=False,
    )
    app.config.from_prefixed_env("CHANGEOVERHQ")
    if config:
        app.config.update(config)

    setup_logging(app.config["LOG_LEVEL"], json_format=bool(app.config["LOG_JSON"]))

    store = SQLiteStore(app.config["DATABASE"], quota_bytes=app.config["STORE_QUOTA_BYTES"])
    system = ChangeoverSystem(store)
    app.extensions["changeoverhq"] = system

    @app.errorhandler(RecordNotFound)
    def handle_not_found(exc: RecordNotFound) -> Any:
        return jsonify({"error": str(exc), "field": exc.field}), 404

    @app.errorhandler(ValidationError)
    def handle_validation_error(exc: ValidationError) -> Any:
        return jsonify({"error": str(exc), "field": exc.field}), 400

    @app.errorhandler(StorageWriteError)
    def handle_storage_error(exc: StorageWriteError) -> Any:
        logger.warning("Write to %s refused; nothing was changed", exc.key)
        return jsonify({"banner": _banner("warn", str(exc))}), 507

    @app.get("/")
    def index() -> Any:
        return redirect(url_for("properties"))

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------
    @app.get("/properties")
    def properties() -> Any:
        rows = system.list_properties()
        for row in rows:
            row["hasSavedConfig"] = system.has_saved_config(row["id"])
        return jsonify({"properties": rows})

    @app.post("/properties")
    def create_property() -> Any:
        row = system.create_property(name=_payload().get("name", ""))
        return jsonify({"property": row}), 201

    @app.post("/properties/<property_id>/active")
    def set_property_active(property_id: str) -> Any:
        is_active = _as_bool(_payload().get("isActive", True))
        return jsonify({"property": system.set_property_active(property_id, is_active)})

    @app.delete("/properties/<property_id>")
    def delete_property(property_id: str) -> Any:
        result = system.delete_property(property_id)
        body: dict[str, Any] = {"result": result}
        if result["failed_keys"]:
            body["banner"] = _banner("warn", "Property deleted, but some saved setup could not be cleared.")
        return jsonify(body)

    # ------------------------------------------------------------------
    # Property setup
    # ------------------------------------------------------------------
    @app.get("/properties/<property_id>/setup")
    def property_setup(property_id: str) -> Any:
        return jsonify(system.open_property_setup(property_id))

    @app.put("/properties/<property_id>/setup")
    def save_property_setup(property_id: str) -> Any:
        result = system.save_property_setup(property_id, _payload().get("config"))
        result["banner"] = _banner("ok", "Saved. This property is now independent of workspace defaults.")
        return jsonify(result)

    @app.post("/properties/<property_id>/setup/actions")
    def property_setup_action(property_id: str) -> Any:
        """Apply one edit to an unsaved working copy and hand it back."""

        system.get_property(property_id)
        data = _payload()
        config = templates.validate_config(data.get("config"))
        section = data.get("section")
        params = data.get("params") or {}
        if not isinstance(params, dict):
            raise ValidationError("params must be an object", field="params")
        if section == "beds":
            config["beds"] = templates.apply_bed_action(config["beds"], data.get("action"), **params)
        else:
            catalog = TemplateCatalog.parse(section)
            config[catalog.value] = templates.apply_item_action(
                config[catalog.value], data.get("action"), **params
            )
        return jsonify({"config": config, "progress": templates.setup_progress(config)})

    # ------------------------------------------------------------------
    # Workspace defaults
    # ------------------------------------------------------------------
    def _defaults_body(catalog: TemplateCatalog, items: list[dict]) -> dict[str, Any]:
        return {
            "catalog": catalog.value,
            "items": items,
            "saved": system.workspace_defaults_saved(catalog),
            "summary": templates.summarize_items(items),
        }

    @app.get("/defaults/<catalog>")
    def workspace_defaults(catalog: str) -> Any:
        parsed = TemplateCatalog.parse(catalog)
        return jsonify(_defaults_body(parsed, system.get_workspace_template(parsed)))

    @app.post("/defaults/<catalog>/actions")
    def workspace_defaults_action(catalog: str) -> Any:
        parsed = TemplateCatalog.parse(catalog)
        data = _payload()
        params = data.get("params") or {}
        if not isinstance(params, dict):
            raise ValidationError("params must be an object", field="params")
        items = system.update_workspace_template(parsed, data.get("action"), **params)
        return jsonify(_defaults_body(parsed, items))

    @app.post("/defaults/<catalog>/reset")
    def reset_workspace_defaults(catalog: str) -> Any:
        parsed = TemplateCatalog.parse(catalog)
        items = system.reset_workspace_template(parsed)
        return jsonify(_defaults_body(parsed, items))

    # ------------------------------------------------------------------
    # Bookings & changeovers
    # ------------------------------------------------------------------
    @app.get("/bookings")
    def bookings() -> Any:
        return jsonify({"bookings": system.list_bookings()})

    @app.post("/bookings")
    def create_booking() -> Any:
        data = _payload()
        booking = system.add_booking(
            property_id=data.get("propertyId", ""),
            guest_name=data.get("guestName", ""),
            check_in_date=data.get("checkInDate", ""),
            check_out_date=data.get("checkOutDate", ""),
            channel=data.get("channel") or None,
        )
        return jsonify({"booking": booking}), 201

    @app.post("/bookings/demo")
    def seed_demo_bookings() -> Any:
        rows = system.seed_demo_bookings()
        return jsonify({"bookings": rows, "banner": _banner("ok", "Seeded demo bookings.")})

    @app.get("/changeovers")
    def changeovers() -> Any:
        return jsonify({"changeovers": system.list_changeovers()})

    @app.post("/changeovers/generate")
    def generate_changeovers() -> Any:
        result = system.generate_changeovers(today=_payload().get("today") or None)
        tone = "ok" if result.outcome is GenerationOutcome.GENERATED else "warn"
        return jsonify(
            {
                "outcome": result.outcome.value,
                "generated": result.generated,
                "changeovers": result.changeovers,
                "banner": _banner(tone, result.message),
            }
        )

    @app.get("/changeovers/<changeover_id>")
    def changeover_detail(changeover_id: str) -> Any:
        return jsonify({"changeover": system.get_changeover(changeover_id)})

    return app


__all__ = ["create_app"]
