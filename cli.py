#!/usr/bin/env python3
"""
MedSecure Command Line Interface

Usage:
    medsecure keygen --out <file>
    medsecure upload <file> --recipient-id <id> --recipient-public-key <hex>
    medsecure resume --content-id <cid> --wrapped-key <b64> --recipient-id <id>
    medsecure retrieve <record-id> (--private-key <hex> | --key-file <file>) [--out <file>]

Blob store and registry settings are read from MEDSECURE_* environment
variables (see config.py).
"""

import sys
import json
import shlex
import asyncio
import logging
import argparse
import mimetypes
from pathlib import Path

from config import Config
from envelope import KeyPair
from envelope.errors import AnchorError, ConfigurationError, EnvelopeError
from envelope.keypair import load_private_key_hex, load_public_key_hex
from records import RetrievalOrchestrator, UploadAttempt, UploadOrchestrator, UploadStage
from records.factory import close_collaborator, create_blob_store, create_registry

logger = logging.getLogger("medsecure")


def load_json(path: str) -> dict:
    """Load JSON from file."""
    with open(path, 'r') as f:
        return json.load(f)


def save_json(data: dict, path: str):
    """Save JSON to file."""
    with open(path, 'w') as f:
        json.dump(data, f, indent=2)


def cmd_keygen(args, config: Config) -> int:
    """Generate an identity and write its hex export."""
    keypair = KeyPair.generate()
    save_json(keypair.export(), args.out)
    print(f"Keys written to {args.out}")
    print(f"Public key: {keypair.public_key_hex}")
    return 0


async def _upload(args, config: Config) -> int:
    path = Path(args.file)
    if not path.is_file():
        raise ConfigurationError(f"File not found: {path}")
    recipient_public_key = load_public_key_hex(args.recipient_public_key)

    blob_store = create_blob_store(config)
    registry = create_registry(config)
    orchestrator = UploadOrchestrator(blob_store, registry, timeout=config.REQUEST_TIMEOUT)

    metadata = {"filename": path.name}
    content_type, _ = mimetypes.guess_type(path.name)
    if content_type:
        metadata["content_type"] = content_type

    try:
        logger.info("Encrypting and uploading %s", path)
        record_id = await orchestrator.upload(
            path.read_bytes(), recipient_public_key, args.recipient_id, metadata
        )
    except AnchorError as e:
        print("Payload stored but record not anchored. Resume with:", file=sys.stderr)
        resume_argv = [
            "medsecure", "resume",
            "--content-id", e.content_id,
            "--wrapped-key", e.wrapped_key,
            "--recipient-id", e.recipient_id,
            "--metadata", json.dumps(e.metadata or {}),
        ]
        print("  " + " ".join(shlex.quote(arg) for arg in resume_argv), file=sys.stderr)
        raise
    finally:
        await close_collaborator(blob_store)
        await close_collaborator(registry)

    print(f"Record created: {record_id}")
    return 0


async def _resume(args, config: Config) -> int:
    try:
        metadata = json.loads(args.metadata) if args.metadata else {}
    except ValueError:
        raise ConfigurationError("--metadata must be a JSON object")

    registry = create_registry(config)
    # Only the registry is touched on resume
    orchestrator = UploadOrchestrator(blob_store=None, registry=registry, timeout=config.REQUEST_TIMEOUT)

    attempt = UploadAttempt(
        recipient_id=args.recipient_id,
        stage=UploadStage.STORED,
        content_id=args.content_id,
        wrapped_key=args.wrapped_key,
        metadata=metadata,
    )
    try:
        record_id = await orchestrator.resume(attempt)
    finally:
        await close_collaborator(registry)

    print(f"Record created: {record_id}")
    return 0


async def _retrieve(args, config: Config) -> int:
    if args.key_file:
        private_key = KeyPair.from_export(load_json(args.key_file)).private_key
    elif args.private_key:
        private_key = load_private_key_hex(args.private_key)
    else:
        raise ConfigurationError("Provide --private-key or --key-file")

    blob_store = create_blob_store(config)
    registry = create_registry(config)
    orchestrator = RetrievalOrchestrator(blob_store, registry, timeout=config.REQUEST_TIMEOUT)

    try:
        logger.info("Fetching record %s", args.record_id)
        document = await orchestrator.retrieve_document(args.record_id, private_key)
    finally:
        await close_collaborator(blob_store)
        await close_collaborator(registry)

    out = Path(args.out) if args.out else Path(f"decrypted_{document.filename}")
    out.write_bytes(document.content)
    print(f"Decrypted file written to: {out}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="medsecure",
        description="Encrypt files for one recipient and anchor them in a registry",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    subparsers = parser.add_subparsers(dest="command", required=True)

    keygen = subparsers.add_parser("keygen", help="Generate an identity keypair")
    keygen.add_argument("--out", required=True, help="Output JSON file")
    keygen.set_defaults(func=cmd_keygen)

    upload = subparsers.add_parser("upload", help="Encrypt, store and anchor a file")
    upload.add_argument("file", help="File to upload")
    upload.add_argument("--recipient-id", required=True, help="Registry identity of the recipient")
    upload.add_argument("--recipient-public-key", required=True, help="Recipient public key (hex)")
    upload.set_defaults(func=lambda args, config: asyncio.run(_upload(args, config)))

    resume = subparsers.add_parser("resume", help="Anchor an already stored payload")
    resume.add_argument("--content-id", required=True)
    resume.add_argument("--wrapped-key", required=True)
    resume.add_argument("--recipient-id", required=True)
    resume.add_argument("--metadata", help="Record metadata as JSON")
    resume.set_defaults(func=lambda args, config: asyncio.run(_resume(args, config)))

    retrieve = subparsers.add_parser("retrieve", help="Decrypt the file behind a record")
    retrieve.add_argument("record_id", type=int)
    retrieve.add_argument("--private-key", help="Recipient private key (hex)")
    retrieve.add_argument("--key-file", help="Key export JSON of the recipient")
    retrieve.add_argument("--out", help="Output file")
    retrieve.set_defaults(func=lambda args, config: asyncio.run(_retrieve(args, config)))

    return parser


def main(argv=None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        config = Config.from_env()
        return args.func(args, config)
    except EnvelopeError as e:
        print(f"Error: {e}", file=sys.stderr)
        return e.exit_code


if __name__ == "__main__":
    sys.exit(main())
