"""Flask JSON API exposing compare, import and clone operations."""
from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

from flask import Flask, g, has_request_context, jsonify, request

from .cloner import CloneEngine, preview_transformations, validate_transformation
from .config import AppConfig, ConfigurationError, load_config
from .equality import ComparisonDepthError
from .exporter import export_policies
from .graph_client import GraphClient, GraphClientError, GraphConfigurationError
from .importer import ImportEngine, validate_import_file
from .logging_setup import setup_logging
from .models import IdentityMapping, InputError, NameTransformation
from .policy_types import PolicyType, describe_policy_types
from .reconcile import compare_backups, compare_with_tenant


def create_app(config_path: Optional[Path | str] = None, client: Optional[GraphClient] = None) -> Flask:
    """Create and configure the Flask application.

    ``client`` replaces the Graph client built from configuration, which lets
    callers point the API at another tenant handle.
    """

    app = Flask(__name__)
    app.config["CONFIG_PATH"] = Path(config_path) if config_path else None
    app.config["JSON_SORT_KEYS"] = False
    if client is not None:
        app.config["_GRAPH_CLIENT"] = client
        app.config["_GRAPH_CLIENT_INJECTED"] = True

    register_routes(app)
    return app


def register_routes(app: Flask) -> None:
    """Attach all API routes to the provided Flask app."""

    @app.errorhandler(InputError)
    def _input_error(exc: InputError) -> Any:
        return jsonify({"message": str(exc)}), 400

    @app.errorhandler(ComparisonDepthError)
    def _depth_error(exc: ComparisonDepthError) -> Any:
        return jsonify({"message": str(exc)}), 400

    @app.errorhandler(ConfigurationError)
    def _configuration_error(exc: ConfigurationError) -> Any:
        return jsonify({"message": str(exc)}), 500

    @app.errorhandler(GraphClientError)
    def _graph_error(exc: GraphClientError) -> Any:
        app.logger.warning("Graph request failed: %s", exc)
        status = 400 if isinstance(exc, GraphConfigurationError) else 502
        return jsonify({"message": str(exc)}), status

    @app.get("/api/policy-types")
    def api_policy_types() -> Any:
        return jsonify({"items": describe_policy_types()})

    @app.post("/api/backups/validate")
    def api_validate_backup() -> Any:
        payload = _json_body()
        return jsonify(validate_import_file(payload.get("backup")).to_dict())

    @app.post("/api/export")
    def api_export() -> Any:
        payload = _json_body()
        client = _require_client(app)
        keys = payload.get("policyTypes") or [policy_type.value for policy_type in PolicyType]
        backup = export_policies(
            client,
            keys,
            include_assignments=payload.get("includeAssignments", True) is not False,
            on_progress=_progress_logger(app, "export"),
        )
        return jsonify(backup)

    @app.post("/api/compare")
    def api_compare() -> Any:
        payload = _json_body()
        config = _load_app_config(app)
        backup = _require_backup(payload, "backup")
        policy_types = payload.get("policyTypes")
        if payload.get("against") is not None:
            report = compare_backups(
                _require_backup(payload, "against"), backup, policy_types, max_depth=config.engine.max_depth
            )
        else:
            report = compare_with_tenant(
                _require_client(app),
                backup,
                policy_types,
                on_progress=_progress_logger(app, "compare"),
                max_depth=config.engine.max_depth,
            )
        return jsonify(report.to_dict())

    @app.post("/api/import")
    def api_import() -> Any:
        payload = _json_body()
        config = _load_app_config(app)
        backup = _require_backup(payload, "backup")
        result = ImportEngine(_require_client(app)).import_policies(
            backup,
            mode=payload.get("mode") or config.engine.default_mode,
            mapping=IdentityMapping.from_dict(payload.get("assignmentMapping")),
            selected_types=payload.get("selectedTypes"),
            on_progress=_progress_logger(app, "import"),
        )
        return jsonify(result.to_dict())

    @app.post("/api/clone/preview")
    def api_clone_preview() -> Any:
        payload = _json_body()
        rule = NameTransformation.from_dict(payload.get("transformation") or {})
        validation = validate_transformation(rule)
        if not validation.valid:
            return jsonify(validation.to_dict()), 400
        return jsonify({"items": preview_transformations(payload.get("policies") or {}, rule)})

    @app.post("/api/clone")
    def api_clone() -> Any:
        payload = _json_body()
        config = _load_app_config(app)
        rule = NameTransformation.from_dict(payload.get("transformation") or {})
        raw_mapping = payload.get("assignmentMapping")
        check_duplicates = payload.get("checkDuplicates")
        result = CloneEngine(_require_client(app)).clone_policies(
            payload.get("policies") or {},
            rule,
            check_duplicates=config.engine.check_duplicates if check_duplicates is None else bool(check_duplicates),
            clone_assignments=payload.get("cloneAssignments", True) is not False,
            mapping=IdentityMapping.from_dict(raw_mapping) if raw_mapping else None,
            on_progress=_progress_logger(app, "clone"),
        )
        return jsonify(result.to_dict())


def _json_body() -> Dict[str, Any]:
    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        raise InputError("Request body must be a JSON object.")
    return payload


def _require_backup(payload: Dict[str, Any], key: str) -> Dict[str, Any]:
    backup = payload.get(key)
    if not isinstance(backup, dict):
        raise InputError(f"'{key}' must be a backup object.")
    return backup


def _progress_logger(app: Flask, operation: str):
    def _report(current: int, total: int, label: str) -> None:
        app.logger.info("%s progress %s/%s: %s", operation, current, total, label)

    return _report


def _require_client(app: Flask) -> GraphClient:
    client = _get_graph_client(app, _load_app_config(app))
    if client is None:
        raise GraphConfigurationError(
            "Microsoft Graph credentials are not configured. "
            "Provide tenant_id, client_id, and client_secret."
        )
    return client


def _get_graph_client(app: Flask, config: AppConfig) -> Optional[GraphClient]:
    if app.config.get("_GRAPH_CLIENT_INJECTED"):
        return app.config["_GRAPH_CLIENT"]

    graph_config = config.graph
    if not graph_config.has_credentials:
        return None

    signature: Tuple[Any, ...] = (
        graph_config.tenant_id,
        graph_config.client_id,
        graph_config.client_secret,
        graph_config.base_url,
        tuple(sorted(graph_config.endpoints.items())),
    )
    cached_signature = app.config.get("_GRAPH_CONFIG_SIGNATURE")
    cached_client = app.config.get("_GRAPH_CLIENT")
    if cached_client and cached_signature == signature:
        return cached_client

    client = GraphClient(graph_config)
    app.config["_GRAPH_CLIENT"] = client
    app.config["_GRAPH_CONFIG_SIGNATURE"] = signature
    return client


def _load_app_config(app: Flask) -> AppConfig:
    if has_request_context():
        cached = getattr(g, "_app_config", None)
        if cached is None:
            cached = load_config(app.config.get("CONFIG_PATH"))
            g._app_config = cached
        return cached
    return load_config(app.config.get("CONFIG_PATH"))


def main() -> None:
    """Run the development server."""

    config_path = os.environ.get("INTUNE_SYNC_CONFIG")
    config = load_config(Path(config_path) if config_path else None)
    setup_logging(config.logging.level, config.logging.file)
    app = create_app(config_path)
    app.run(
        host=os.environ.get("INTUNE_SYNC_WEB_HOST", "127.0.0.1"),
        port=int(os.environ.get("INTUNE_SYNC_WEB_PORT", "5000")),
        debug=os.environ.get("INTUNE_SYNC_WEB_DEBUG") == "1",
    )


if __name__ == "__main__":
    main()
