"""
MedSecure Companion - Local Service

A local FastAPI application around the upload and retrieval flows.
Runs on http://127.0.0.1:18422.
"""

import logging
from typing import Any, NoReturn, Optional
from contextlib import asynccontextmanager
from datetime import datetime
from urllib.parse import quote

from fastapi import FastAPI, Request, UploadFile, File, Form, HTTPException
from fastapi.responses import Response

from config import Config, VERSION
from envelope import KeyManager, KeyPair
from envelope.errors import (
    AnchorError,
    AuthenticationError,
    ConfigurationError,
    EnvelopeError,
    KeyUnwrapError,
    KeyWrapError,
    MalformedPayloadError,
    MissingKeyForRecipient,
    RecordNotFound,
)
from envelope.keypair import load_public_key_hex
from records import RetrievalOrchestrator, UploadAttempt, UploadOrchestrator, UploadStage
from records.factory import close_collaborator, create_blob_store, create_registry

logger = logging.getLogger(__name__)

__version__ = VERSION


# Global state
class AppState:
    """Application state container."""
    config: Optional[Config] = None
    key_manager: Optional[KeyManager] = None
    blob_store: Any = None
    registry: Any = None
    processing_logs: list[dict] = []

    def add_log(self, level: str, message: str, details: str = ""):
        """Add a log entry."""
        getattr(logger, level if level in ("info", "warning", "error") else "info")(
            "%s: %s", message, details
        )
        self.processing_logs.append({
            "timestamp": datetime.now().isoformat(),
            "level": level,
            "message": message,
            "details": details,
        })
        # Keep only last 100 logs
        if len(self.processing_logs) > 100:
            self.processing_logs = self.processing_logs[-100:]

    def clear_sensitive_data(self):
        """Clear all sensitive data from memory."""
        if self.key_manager:
            self.key_manager.lock()

    def upload_orchestrator(self) -> UploadOrchestrator:
        return UploadOrchestrator(self.blob_store, self.registry, timeout=self.config.REQUEST_TIMEOUT)

    def retrieval_orchestrator(self) -> RetrievalOrchestrator:
        return RetrievalOrchestrator(self.blob_store, self.registry, timeout=self.config.REQUEST_TIMEOUT)


app_state = AppState()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    # Startup
    app_state.config = Config.from_env()
    app_state.processing_logs = []
    app_state.key_manager = KeyManager(app_state.config.keys_dir)
    app_state.blob_store = create_blob_store(app_state.config, allow_memory=True)
    app_state.registry = create_registry(app_state.config, allow_memory=True)

    app_state.add_log(
        "info",
        "MedSecure Companion started",
        f"Blob store: {type(app_state.blob_store).__name__}, registry: {type(app_state.registry).__name__}",
    )

    yield

    # Shutdown - clear sensitive data
    app_state.clear_sensitive_data()
    await close_collaborator(app_state.blob_store)
    await close_collaborator(app_state.registry)
    app_state.add_log("info", "MedSecure Companion stopped", "Sensitive data cleared from memory")


# Create FastAPI app
app = FastAPI(
    title="MedSecure Companion",
    description="Local client for sharing encrypted records with one recipient",
    version=__version__,
    lifespan=lifespan,
)


def _status_for(error: EnvelopeError) -> int:
    """HTTP status for each failure kind."""
    if isinstance(error, ConfigurationError):
        return 400
    if isinstance(error, (RecordNotFound, MissingKeyForRecipient)):
        return 404
    if isinstance(error, (KeyUnwrapError, KeyWrapError)):
        return 403
    if isinstance(error, (MalformedPayloadError, AuthenticationError)):
        return 422
    return 502


def _raise_http(error: EnvelopeError, action: str) -> NoReturn:
    app_state.add_log("error", f"{action} failed", f"{type(error).__name__}: {error}")
    detail: dict[str, Any] = {"error": type(error).__name__, "message": str(error)}
    if isinstance(error, AnchorError):
        detail["resume"] = {
            "content_id": error.content_id,
            "wrapped_key": error.wrapped_key,
            "recipient_id": error.recipient_id,
            "metadata": error.metadata or {},
        }
    raise HTTPException(status_code=_status_for(error), detail=detail) from error


# ============================================================================
# Key Management API
# ============================================================================

@app.get("/api/keys/status")
async def get_key_status():
    """Get current key status."""
    return {
        "has_keys": app_state.key_manager.has_keys,
        "is_unlocked": app_state.key_manager.is_unlocked,
        "public_key": app_state.key_manager.get_public_key_hex(),
    }


@app.post("/api/keys/generate")
async def generate_keys(request: Request):
    """Generate a new recipient identity."""
    data = await request.json()
    passphrase = data.get("passphrase", "")

    if not passphrase or len(passphrase) < 8:
        raise HTTPException(status_code=400, detail="Passphrase must be at least 8 characters")

    if app_state.key_manager.has_keys:
        raise HTTPException(status_code=400, detail="Keys already exist. Delete existing keys first.")

    keypair = app_state.key_manager.generate_keypair(passphrase)
    app_state.add_log("info", "Keys generated", "New X25519 keypair created")

    return {
        "success": True,
        "message": "Keys generated successfully",
        "public_key": keypair.public_key_hex,
    }


@app.post("/api/keys/unlock")
async def unlock_keys(request: Request):
    """Unlock private key with passphrase."""
    data = await request.json()
    passphrase = data.get("passphrase", "")

    if not passphrase:
        raise HTTPException(status_code=400, detail="Passphrase required")

    if not app_state.key_manager.has_keys:
        raise HTTPException(status_code=400, detail="No keys found. Generate keys first.")

    try:
        unlocked = app_state.key_manager.unlock(passphrase)
    except ConfigurationError as e:
        app_state.add_log("error", "Unlock failed", str(e))
        raise HTTPException(status_code=400, detail=str(e))

    if unlocked:
        app_state.add_log("info", "Keys unlocked", "Private key loaded")
        return {"success": True, "message": "Keys unlocked"}

    app_state.add_log("warning", "Unlock failed", "Invalid passphrase")
    raise HTTPException(status_code=401, detail="Invalid passphrase")


@app.post("/api/keys/lock")
async def lock_keys():
    """Lock private key (clear from memory)."""
    app_state.key_manager.lock()
    app_state.add_log("info", "Keys locked", "Private key cleared from memory")
    return {"success": True, "message": "Keys locked"}


@app.post("/api/keys/export")
async def export_keys():
    """Write the key export for out-of-band distribution to the recipient."""
    export_path = app_state.config.STORAGE_DIR / "patient_keys.json"
    try:
        app_state.key_manager.export_keys(export_path)
    except ConfigurationError as e:
        raise HTTPException(status_code=400, detail=str(e))

    app_state.add_log("warning", "Keys exported", f"Private key written to {export_path}")
    return {"success": True, "path": str(export_path)}


@app.post("/api/keys/import")
async def import_keys(request: Request):
    """Store an identity provisioned elsewhere under a new passphrase."""
    data = await request.json()
    passphrase = data.get("passphrase", "")

    if not passphrase or len(passphrase) < 8:
        raise HTTPException(status_code=400, detail="Passphrase must be at least 8 characters")

    if app_state.key_manager.has_keys:
        raise HTTPException(status_code=400, detail="Keys already exist. Delete existing keys first.")

    try:
        keypair = KeyPair.from_export(data)
    except ConfigurationError as e:
        raise HTTPException(status_code=400, detail=str(e))

    app_state.key_manager.import_keypair(keypair, passphrase)
    app_state.add_log("info", "Keys imported", f"Identity {keypair.public_key_hex}")
    return {"success": True, "public_key": keypair.public_key_hex}


# ============================================================================
# Records API
# ============================================================================

@app.post("/api/records/upload")
async def upload_record(
    file: UploadFile = File(...),
    recipient_id: str = Form(...),
    recipient_public_key: str = Form(...),
):
    """Encrypt a file for a recipient, store it and anchor its record."""
    content = await file.read()
    metadata = {"filename": file.filename or "upload.bin"}
    if file.content_type:
        metadata["content_type"] = file.content_type

    try:
        public_key = load_public_key_hex(recipient_public_key)
        record_id = await app_state.upload_orchestrator().upload(
            content, public_key, recipient_id, metadata
        )
    except EnvelopeError as e:
        _raise_http(e, "Upload")

    app_state.add_log("info", "Record anchored", f"Record {record_id} for {recipient_id} ({len(content)} bytes)")
    return {"success": True, "record_id": record_id}


@app.post("/api/records/resume")
async def resume_record(request: Request):
    """Anchor a payload whose upload failed at the registry step."""
    data = await request.json()
    attempt = UploadAttempt(
        recipient_id=data.get("recipient_id") or "",
        stage=UploadStage.STORED,
        content_id=data.get("content_id"),
        wrapped_key=data.get("wrapped_key"),
        metadata=data.get("metadata") or {},
    )

    try:
        record_id = await app_state.upload_orchestrator().resume(attempt)
    except EnvelopeError as e:
        _raise_http(e, "Resume")

    app_state.add_log("info", "Record anchored", f"Record {record_id} resumed from {attempt.content_id}")
    return {"success": True, "record_id": record_id}


@app.get("/api/records/{record_id}/download")
async def download_record(record_id: int):
    """Decrypt a record with the unlocked private key."""
    private_key = app_state.key_manager.get_unlocked_private_key()
    if private_key is None:
        raise HTTPException(status_code=400, detail="Keys must be unlocked first")

    try:
        document = await app_state.retrieval_orchestrator().retrieve_document(record_id, private_key)
    except EnvelopeError as e:
        _raise_http(e, "Download")

    app_state.add_log("info", "Record decrypted", f"Record {record_id} ({len(document.content)} bytes)")
    return Response(
        content=document.content,
        media_type=document.content_type,
        headers={"Content-Disposition": content_disposition(document.filename)},
    )


def content_disposition(filename: str) -> str:
    """Attachment header that survives non-ASCII and quoted names."""
    quoted = quote(filename)
    if quoted != filename:
        return f"attachment; filename*=utf-8''{quoted}"
    return f'attachment; filename="{filename}"'


# ============================================================================
# Logs & Version API
# ============================================================================

@app.get("/api/logs")
async def get_logs(limit: int = 50):
    """Get recent activity entries."""
    return {"logs": app_state.processing_logs[-limit:]}


@app.get("/api/version")
async def get_version():
    """Get current application version."""
    return {
        "version": __version__,
        "app_name": "MedSecure Companion",
    }


# ============================================================================
# Main Entry Point
# ============================================================================

def run():
    import uvicorn

    config = Config.from_env()
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    uvicorn.run(app, host=config.HOST, port=config.PORT, log_level="info")


if __name__ == "__main__":
    run()
