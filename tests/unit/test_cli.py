"""Unit tests for the command-line interface."""

import pytest
from rich.console import Console
from typer.testing import CliRunner

from conftest import FakeEmbeddingClient
from kbcore import cli
from kbcore.config import get_settings
from kbcore.exceptions import InvalidCredentialError
from kbcore.models import Chunk
from kbcore.retrieval.embeddings import EmbeddingClient
from kbcore.storage import JSONChunkStore

runner = CliRunner()


def _stored(store_path) -> list[Chunk]:
    return sorted(JSONChunkStore(store_path).fetch_all_chunks(), key=lambda c: c.created_order)


@pytest.fixture
def cli_env(tmp_path, monkeypatch):
    """Point the CLI at a temporary store and a fake provider."""
    store_path = tmp_path / "chunks.jsonl"
    monkeypatch.setenv("OPENAI_API_KEY", "test-api-key")
    monkeypatch.setenv("STORE_PATH", str(store_path))
    monkeypatch.setenv("RATE_LIMIT_DELAY", "0")
    monkeypatch.setenv("RETRY_DELAY", "0")
    monkeypatch.setenv("LOG_LEVEL", "WARNING")
    monkeypatch.setattr(cli, "console", Console(width=200))

    fake = FakeEmbeddingClient()

    async def fake_embed(self, text):
        return await fake.embed(text)

    monkeypatch.setattr(EmbeddingClient, "embed", fake_embed)

    get_settings.cache_clear()
    yield store_path, fake
    get_settings.cache_clear()


@pytest.mark.unit
class TestCLI:
    """Tests for kbcore commands."""

    def test_version(self, cli_env):
        result = runner.invoke(cli.app, ["version"])

        assert result.exit_code == 0
        assert "kbcore v" in result.stdout

    def test_ingest_file(self, cli_env, tmp_path):
        store_path, fake = cli_env
        path = tmp_path / "faq.txt"
        path.write_text("refunds are issued within fourteen days", encoding="utf-8")

        result = runner.invoke(cli.app, ["ingest", str(path)])

        assert result.exit_code == 0, result.stdout
        assert "faq.txt: 1 chunks" in result.stdout
        stored = _stored(store_path)
        assert len(stored) == 1
        assert stored[0].owner_document_id == cli._file_document_id(path)
        assert fake.calls == ["refunds are issued within fourteen days"]

    def test_reingest_replaces_chunks(self, cli_env, tmp_path):
        store_path, _ = cli_env
        path = tmp_path / "faq.txt"
        path.write_text("first version", encoding="utf-8")
        runner.invoke(cli.app, ["ingest", str(path)])

        path.write_text("second version", encoding="utf-8")
        result = runner.invoke(cli.app, ["ingest", str(path)])

        assert result.exit_code == 0, result.stdout
        assert [chunk.text for chunk in _stored(store_path)] == ["second version"]

    def test_ingest_same_path_twice(self, cli_env, tmp_path):
        """A path repeated on the command line is ingested once."""
        store_path, fake = cli_env
        path = tmp_path / "faq.txt"
        path.write_text("refunds within fourteen days", encoding="utf-8")

        result = runner.invoke(cli.app, ["ingest", str(path), str(tmp_path / "." / "faq.txt")])

        assert result.exit_code == 0, result.stdout
        assert len(fake.calls) == 1
        assert len(_stored(store_path)) == 1

    def test_ingest_chunk_options(self, cli_env, tmp_path):
        store_path, _ = cli_env
        path = tmp_path / "words.txt"
        path.write_text("alpha beta gamma", encoding="utf-8")

        result = runner.invoke(cli.app, ["ingest", str(path), "--chunk-size", "5", "--overlap", "0"])

        assert result.exit_code == 0, result.stdout
        assert [chunk.text for chunk in _stored(store_path)] == ["alpha", "beta", "gamma"]

    def test_ingest_rejects_zero_chunk_size(self, cli_env, tmp_path):
        """--chunk-size 0 is a usage error, not a silent fallback to the default."""
        store_path, fake = cli_env
        path = tmp_path / "faq.txt"
        path.write_text("refunds within fourteen days", encoding="utf-8")

        result = runner.invoke(cli.app, ["ingest", str(path), "--chunk-size", "0"])

        assert result.exit_code == 2
        assert fake.calls == []
        assert not store_path.exists()

    def test_ingest_missing_file(self, cli_env, tmp_path):
        result = runner.invoke(cli.app, ["ingest", str(tmp_path / "nope.txt")])

        assert result.exit_code == 1
        assert "File not found" in result.stdout

    def test_add_text(self, cli_env):
        store_path, _ = cli_env

        result = runner.invoke(cli.app, ["add-text", "Shipping", "--text", "shipping takes three days"])

        assert result.exit_code == 0, result.stdout
        assert _stored(store_path)[0].text == "shipping takes three days"

    def test_add_text_from_file(self, cli_env, tmp_path):
        store_path, _ = cli_env
        path = tmp_path / "note.txt"
        path.write_text("support by email", encoding="utf-8")

        result = runner.invoke(cli.app, ["add-text", "Support", "--file", str(path)])

        assert result.exit_code == 0, result.stdout
        assert _stored(store_path)[0].text == "support by email"

    def test_add_text_requires_one_source(self, cli_env):
        result = runner.invoke(cli.app, ["add-text", "Empty"])

        assert result.exit_code == 1
        assert "exactly one" in result.stdout

    def test_add_text_missing_file(self, cli_env, tmp_path):
        """An unreadable --file is reported, not raised as a traceback."""
        result = runner.invoke(cli.app, ["add-text", "Notes", "--file", str(tmp_path / "nope.txt")])

        assert result.exit_code == 1
        assert isinstance(result.exception, SystemExit)
        assert "Cannot read" in result.stdout

    def test_add_text_non_utf8_file(self, cli_env, tmp_path):
        path = tmp_path / "binary.txt"
        path.write_bytes(b"\xff\xfe\xfa")

        result = runner.invoke(cli.app, ["add-text", "Notes", "--file", str(path)])

        assert result.exit_code == 1
        assert isinstance(result.exception, SystemExit)
        assert "Cannot read" in result.stdout

    def test_update_text(self, cli_env):
        """Updating keeps the document id and replaces its chunks."""
        store_path, _ = cli_env
        runner.invoke(cli.app, ["add-text", "Refunds", "-t", "refunds within fourteen days"])
        document_id = _stored(store_path)[0].owner_document_id

        result = runner.invoke(cli.app, ["update-text", document_id, "-t", "refunds within thirty days"])

        assert result.exit_code == 0, result.stdout
        stored = _stored(store_path)
        assert [chunk.text for chunk in stored] == ["refunds within thirty days"]
        assert stored[0].owner_document_id == document_id

    def test_update_unknown_document(self, cli_env):
        _, fake = cli_env

        result = runner.invoke(cli.app, ["update-text", "missing", "-t", "anything"])

        assert result.exit_code == 1
        assert "No chunks found" in result.stdout
        assert fake.calls == []

    def test_query(self, cli_env):
        runner.invoke(cli.app, ["add-text", "Refunds", "-t", "refunds within fourteen days"])
        runner.invoke(cli.app, ["add-text", "Shipping", "-t", "shipping takes three days"])

        result = runner.invoke(cli.app, ["query", "shipping days", "--limit", "1", "--verbose"])

        assert result.exit_code == 0, result.stdout
        assert "shipping takes three days" in result.stdout
        assert "refunds" not in result.stdout
        assert "score=" in result.stdout

    def test_query_empty_store(self, cli_env):
        _, fake = cli_env

        result = runner.invoke(cli.app, ["query", "anything"])

        assert result.exit_code == 0
        assert "empty" in result.stdout
        assert fake.calls == []

    def test_query_invalid_credential(self, cli_env, monkeypatch):
        runner.invoke(cli.app, ["add-text", "Refunds", "-t", "refunds within fourteen days"])

        async def reject(self, text):
            raise InvalidCredentialError()

        monkeypatch.setattr(EmbeddingClient, "embed", reject)

        result = runner.invoke(cli.app, ["query", "refunds"])

        assert result.exit_code == 1
        assert "rejected the API key" in result.stdout

    def test_delete(self, cli_env, tmp_path):
        store_path, _ = cli_env
        path = tmp_path / "faq.txt"
        path.write_text("refunds within fourteen days", encoding="utf-8")
        runner.invoke(cli.app, ["ingest", str(path)])

        result = runner.invoke(cli.app, ["delete", cli._file_document_id(path)])

        assert result.exit_code == 0, result.stdout
        assert "Deleted 1 chunks" in result.stdout
        assert _stored(store_path) == []

    def test_delete_unknown_document(self, cli_env):
        result = runner.invoke(cli.app, ["delete", "missing"])

        assert result.exit_code == 1
        assert "No chunks found" in result.stdout

    def test_list(self, cli_env, tmp_path):
        path = tmp_path / "faq.txt"
        path.write_text("refunds within fourteen days", encoding="utf-8")
        runner.invoke(cli.app, ["ingest", str(path)])

        result = runner.invoke(cli.app, ["list"])

        assert result.exit_code == 0
        assert cli._file_document_id(path) in result.stdout
        assert "refunds within fourteen days" in result.stdout

    def test_list_empty(self, cli_env):
        result = runner.invoke(cli.app, ["list"])

        assert result.exit_code == 0
        assert "No documents stored" in result.stdout
