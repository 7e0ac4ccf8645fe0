"""Tests for the medsecure command line."""

import json
import shlex

import pytest

import cli
from envelope import KeyPair
from records import InMemoryBlobStore, InMemoryRegistry

from tests.conftest import FlakyRegistry


@pytest.fixture
def clean_env(monkeypatch, tmp_path):
    """No remote endpoints configured."""
    for name in ("PINATA_API_KEY", "PINATA_API_SECRET", "REGISTRY_URL", "REGISTRY_TOKEN"):
        monkeypatch.delenv(f"MEDSECURE_{name}", raising=False)
    monkeypatch.setenv("MEDSECURE_STORAGE_DIR", str(tmp_path / "store"))


@pytest.fixture
def shared_collaborators(monkeypatch, clean_env):
    """Route every CLI invocation to the same in-memory services."""
    blob_store = InMemoryBlobStore()
    registry = InMemoryRegistry(uploader="hospital-1")
    monkeypatch.setattr(cli, "create_blob_store", lambda config: blob_store)
    monkeypatch.setattr(cli, "create_registry", lambda config: registry)
    return blob_store, registry


class TestKeygen:

    def test_writes_export(self, tmp_path, clean_env, capsys):
        out = tmp_path / "patient_keys.json"

        assert cli.main(["keygen", "--out", str(out)]) == 0

        export = json.loads(out.read_text())
        assert KeyPair.from_export(export).public_key_hex == export["publicKeyHex"]
        assert export["publicKeyHex"] in capsys.readouterr().out


class TestUploadRetrieve:

    def test_round_trip(self, tmp_path, shared_collaborators, capsys):
        recipient = KeyPair.generate()
        key_file = tmp_path / "patient_keys.json"
        key_file.write_text(json.dumps(recipient.export()))
        source = tmp_path / "record.pdf"
        source.write_bytes(b"%PDF-1.7 test record")

        assert cli.main([
            "upload", str(source),
            "--recipient-id", "patient-1",
            "--recipient-public-key", recipient.public_key_hex,
        ]) == 0
        assert "Record created: 1" in capsys.readouterr().out

        out = tmp_path / "decrypted.pdf"
        assert cli.main(["retrieve", "1", "--key-file", str(key_file), "--out", str(out)]) == 0
        assert out.read_bytes() == b"%PDF-1.7 test record"

        _, registry = shared_collaborators
        assert registry._records[0].metadata == {"filename": "record.pdf", "content_type": "application/pdf"}

    def test_retrieve_with_wrong_key(self, tmp_path, shared_collaborators):
        recipient = KeyPair.generate()
        source = tmp_path / "note.txt"
        source.write_bytes(b"note")
        cli.main([
            "upload", str(source),
            "--recipient-id", "patient-1",
            "--recipient-public-key", recipient.public_key_hex,
        ])

        exit_code = cli.main(["retrieve", "1", "--private-key", KeyPair.generate().private_key_hex])

        assert exit_code == 8

    def test_retrieve_unknown_record(self, shared_collaborators):
        exit_code = cli.main(["retrieve", "5", "--private-key", KeyPair.generate().private_key_hex])

        assert exit_code == 6

    def test_upload_missing_file(self, tmp_path, shared_collaborators):
        exit_code = cli.main([
            "upload", str(tmp_path / "missing.pdf"),
            "--recipient-id", "patient-1",
            "--recipient-public-key", KeyPair.generate().public_key_hex,
        ])

        assert exit_code == 2

    def test_upload_without_configuration(self, tmp_path, clean_env):
        source = tmp_path / "note.txt"
        source.write_bytes(b"note")

        exit_code = cli.main([
            "upload", str(source),
            "--recipient-id", "patient-1",
            "--recipient-public-key", KeyPair.generate().public_key_hex,
        ])

        assert exit_code == 2


class TestResume:

    def test_anchor_failure_then_resume(self, tmp_path, monkeypatch, clean_env, capsys):
        blob_store = InMemoryBlobStore()
        registry = FlakyRegistry(failures=1)
        monkeypatch.setattr(cli, "create_blob_store", lambda config: blob_store)
        monkeypatch.setattr(cli, "create_registry", lambda config: registry)
        recipient = KeyPair.generate()
        source = tmp_path / "note.txt"
        source.write_bytes(b"note")

        exit_code = cli.main([
            "upload", str(source),
            "--recipient-id", "patient-1",
            "--recipient-public-key", recipient.public_key_hex,
        ])
        assert exit_code == 5

        resume_line = next(
            line for line in capsys.readouterr().err.splitlines() if "medsecure resume" in line
        )
        resume_argv = shlex.split(resume_line)[1:]
        assert resume_argv[0] == "resume"

        assert cli.main(resume_argv) == 0
        assert "Record created: 1" in capsys.readouterr().out
        assert len(blob_store) == 1

        out = tmp_path / "out.txt"
        exit_code = cli.main(["retrieve", "1", "--private-key", recipient.private_key_hex, "--out", str(out)])
        assert exit_code == 0
        assert out.read_bytes() == b"note"

    def test_resume_command_quotes_filename(self, tmp_path, monkeypatch, clean_env, capsys):
        """The printed command stays valid shell for names with quotes."""
        blob_store = InMemoryBlobStore()
        registry = FlakyRegistry(failures=1)
        monkeypatch.setattr(cli, "create_blob_store", lambda config: blob_store)
        monkeypatch.setattr(cli, "create_registry", lambda config: registry)
        recipient = KeyPair.generate()
        source = tmp_path / "patient's note.txt"
        source.write_bytes(b"note")

        cli.main([
            "upload", str(source),
            "--recipient-id", "patient-1",
            "--recipient-public-key", recipient.public_key_hex,
        ])
        resume_line = next(
            line for line in capsys.readouterr().err.splitlines() if "medsecure resume" in line
        )

        assert cli.main(shlex.split(resume_line)[1:]) == 0
        assert registry._records[0].metadata["filename"] == "patient's note.txt"

        out = tmp_path / "out.txt"
        cli.main(["retrieve", "1", "--private-key", recipient.private_key_hex, "--out", str(out)])
        assert out.read_bytes() == b"note"

    def test_resume_bad_metadata(self, shared_collaborators):
        exit_code = cli.main([
            "resume",
            "--content-id", "cid",
            "--wrapped-key", "d3JhcHBlZA==",
            "--recipient-id", "patient-1",
            "--metadata", "{not json",
        ])

        assert exit_code == 2
