"""
JournalVault Local API
======================
Flask adapter exposing the command surface as JSON under ``/api``.

Meant to bind to the loopback interface for a local UI shell. Every
``VaultError`` becomes ``{"error": <code>, "message": ...}`` with an HTTP
status chosen by error type.
"""

from __future__ import annotations

import io
import logging
import mimetypes
import os
from datetime import datetime, timezone
from typing import Any, Optional

from flask import Flask, jsonify, request, send_file
from werkzeug.exceptions import HTTPException
from werkzeug.utils import secure_filename

from journalvault.commands import VaultCommands
from journalvault.core.config import VaultConfig
from journalvault.core.errors import (
    AlreadyInitialized,
    AuthenticationFailure,
    LockedError,
    NotFoundError,
    VaultBusy,
    VaultCorrupt,
    VaultError,
    VaultIOError,
    WrongPassphrase,
)
from journalvault.core.logging import configure_logging
from journalvault.utils.validators import ValidationError

# Most specific first
ERROR_STATUS: list[tuple[type[VaultError], int]] = [
    (WrongPassphrase, 401),
    (LockedError, 423),
    (NotFoundError, 404),
    (AlreadyInitialized, 409),
    (VaultBusy, 409),
    (AuthenticationFailure, 422),
    (VaultCorrupt, 422),
    (VaultIOError, 500),
]

_log = logging.getLogger("journalvault.web")


def status_for(error: VaultError) -> int:
    for error_type, status in ERROR_STATUS:
        if isinstance(error, error_type):
            return status
    return 500


def _json_body() -> dict[str, Any]:
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data


def create_app(commands: Optional[VaultCommands] = None, config: Optional[VaultConfig] = None) -> Flask:
    """
    Build the Flask application around one ``VaultCommands`` facade.

    Args:
        commands: Facade to serve (a new one is created if omitted)
        config: Configuration for a newly created facade
    """
    app = Flask(__name__)
    app.config["MAX_CONTENT_LENGTH"] = 16 * 1024 * 1024
    app.config["CORS_ORIGIN"] = os.environ.get("JOURNALVAULT_CORS_ORIGIN")

    vault = commands or VaultCommands(config)
    app.extensions["journalvault"] = vault

    # ============================================================
    # CORS AND ERRORS
    # ============================================================

    @app.after_request
    def add_cors_headers(response):
        origin = app.config.get("CORS_ORIGIN")
        if origin:
            response.headers["Access-Control-Allow-Origin"] = origin
            response.headers["Access-Control-Allow-Methods"] = "GET, POST, PUT, DELETE, OPTIONS"
            response.headers["Access-Control-Allow-Headers"] = "Content-Type"
            response.headers["Access-Control-Max-Age"] = "3600"
        return response

    @app.route("/api/<path:path>", methods=["OPTIONS"])
    def handle_options(path):
        return app.make_response("")

    @app.errorhandler(VaultError)
    def handle_vault_error(error: VaultError):
        status = status_for(error)
        if status >= 500:
            _log.error("Request %s %s failed: %s", request.method, request.path, error.code)
        return jsonify({"error": error.code, "message": str(error)}), status

    @app.errorhandler(ValidationError)
    def handle_validation_error(error: ValidationError):
        return jsonify({"error": ValidationError.code, "message": str(error)}), 400

    @app.errorhandler(HTTPException)
    def handle_http_error(error: HTTPException):
        return jsonify({"error": "http_error", "message": error.description}), error.code

    # ============================================================
    # LIFECYCLE
    # ============================================================

    @app.route("/api/health")
    def health():
        return jsonify({
            "status": "healthy",
            "timestamp": datetime.now(timezone.utc).isoformat(),
        })

    @app.route("/api/status", methods=["GET"])
    def status():
        return jsonify(vault.status())

    @app.route("/api/unlock", methods=["POST"])
    def unlock():
        data = _json_body()
        result = vault.unlock(
            data.get("passphrase", ""),
            directory=data.get("directory"),
            algorithm=data.get("algorithm"),
        )
        return jsonify(result), 201 if result["created"] else 200

    @app.route("/api/lock", methods=["POST"])
    def lock():
        vault.lock()
        return jsonify({"message": "Vault locked"})

    @app.route("/api/settings/text-encryption", methods=["PUT"])
    def set_text_encryption():
        data = _json_body()
        return jsonify(vault.set_text_encryption(data.get("algorithm", "")))

    @app.route("/api/passphrase", methods=["PUT"])
    def change_passphrase():
        data = _json_body()
        return jsonify(vault.change_passphrase(
            data.get("old_passphrase", ""),
            data.get("new_passphrase", ""),
        ))

    # ============================================================
    # ENTRIES
    # ============================================================

    @app.route("/api/entries", methods=["GET"])
    def list_entries():
        query = request.args.get("q")
        if query is not None:
            return jsonify({"entries": vault.search_entries(query)})
        return jsonify({"entries": vault.list_entries()})

    @app.route("/api/entries", methods=["POST"])
    def create_entry():
        data = _json_body()
        entry = vault.create_entry(
            title=data.get("title"),
            content=data.get("content"),
            folder=data.get("folder"),
        )
        return jsonify(entry), 201

    @app.route("/api/entries/<entry_id>", methods=["GET"])
    def load_entry(entry_id):
        return jsonify(vault.load_entry(entry_id))

    @app.route("/api/entries/<entry_id>", methods=["PUT"])
    def update_entry(entry_id):
        data = _json_body()
        return jsonify(vault.update_entry({**data, "id": entry_id}))

    @app.route("/api/entries/<entry_id>", methods=["DELETE"])
    def delete_entry(entry_id):
        vault.delete_entry(entry_id)
        return jsonify({"message": "Entry deleted"})

    # ============================================================
    # EXPORT
    # ============================================================

    @app.route("/api/export", methods=["GET"])
    def export_plaintext():
        return jsonify({"document": vault.export_plaintext()})

    @app.route("/api/export", methods=["POST"])
    def export_plaintext_file():
        data = _json_body()
        return jsonify({"path": vault.export_plaintext_file(data.get("destination"))})

    # ============================================================
    # IMAGES
    # ============================================================

    @app.route("/api/images", methods=["POST"])
    def store_image():
        if "file" in request.files:
            upload = request.files["file"]
            reference = vault.import_clipboard_image({
                "data": upload.read(),
                "mime": upload.mimetype,
                "name": secure_filename(upload.filename or ""),
            })
        else:
            data = _json_body()
            if "data" in data:
                reference = vault.import_clipboard_image(data)
            else:
                reference = vault.store_image(data.get("path", ""))
        return jsonify({"path": reference}), 201

    @app.route("/api/images/<path:reference>", methods=["GET"])
    def decrypt_image(reference):
        data = vault.decrypt_image(reference)
        mimetype = mimetypes.guess_type(reference)[0] or "application/octet-stream"
        return send_file(io.BytesIO(data), mimetype=mimetype)

    return app


# ============================================================
# ENTRY POINT
# ============================================================

def main() -> None:
    config = VaultConfig.get_instance()
    configure_logging(config.logging, config.paths.log_dir)
    app = create_app(config=config)
    app.run(host="127.0.0.1", port=int(os.environ.get("JOURNALVAULT_PORT", 5000)))


if __name__ == "__main__":
    main()
