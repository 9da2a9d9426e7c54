import asyncio

import pytest
from typer.testing import CliRunner

import scriptflow.persistence as persistence
from scriptflow.cli import app
from scriptflow.persistence import BackendTier, FallbackResolver, InMemoryPipelineRepository
from scriptflow.webhook import compute_signature


@pytest.fixture
def repo():
    repo = InMemoryPipelineRepository()
    persistence._resolver_instance = FallbackResolver(
        [BackendTier("in-memory", lambda: repo)], name="pipeline"
    )
    yield repo
    persistence.reset_resolver()


def test_pipeline_list_shows_pipelines(repo, make_create):
    first = asyncio.run(repo.create(make_create(name="Morning digest")))
    second = asyncio.run(repo.create(make_create(name="Evening digest")))

    runner = CliRunner()
    result = runner.invoke(app, ["pipeline", "list"])
    assert result.exit_code == 0, f"Command failed. Output: {result.stdout}"
    assert first.id in result.stdout
    assert second.id in result.stdout
    assert result.stdout.index("Evening digest") < result.stdout.index("Morning digest")


def test_pipeline_list_empty(repo):
    result = CliRunner().invoke(app, ["pipeline", "list"])
    assert result.exit_code == 0
    assert "No pipelines found" in result.stdout


def test_pipeline_show_and_missing(repo, make_create):
    created = asyncio.run(repo.create(make_create(schedule={"cron": "0 7 * * *"})))

    runner = CliRunner()
    result = runner.invoke(app, ["pipeline", "show", created.id])
    assert result.exit_code == 0
    assert "Morning digest" in result.stdout
    assert "Schedule: 0 7 * * *" in result.stdout
    assert "2. chunk" in result.stdout
    assert created.webhook_secret not in result.stdout

    result = runner.invoke(app, ["pipeline", "show", "missing"])
    assert result.exit_code == 1
    assert "Pipeline not found" in result.stdout


def test_pipeline_delete(repo, make_create):
    created = asyncio.run(repo.create(make_create()))
    result = CliRunner().invoke(app, ["pipeline", "delete", created.id])
    assert result.exit_code == 0
    assert asyncio.run(repo.get(created.id)) is None


def test_webhook_sign_prints_headers(tmp_path):
    body_file = tmp_path / "body.json"
    body_file.write_bytes(b'{"content": "Hello."}')

    result = CliRunner().invoke(
        app, ["webhook", "sign", "s3cret", str(body_file), "--no-timestamp"]
    )
    assert result.exit_code == 0
    expected = compute_signature("s3cret", b'{"content": "Hello."}')
    assert f"X-Webhook-Signature: sha256={expected}" in result.stdout
    assert "X-Webhook-Timestamp" not in result.stdout


def test_webhook_sign_with_timestamp(tmp_path):
    body_file = tmp_path / "body.json"
    body_file.write_bytes(b"{}")

    result = CliRunner().invoke(app, ["webhook", "sign", "s3cret", str(body_file)])
    assert result.exit_code == 0
    lines = result.stdout.strip().splitlines()
    stamp = lines[0].split(": ", 1)[1]
    assert lines[1] == f"X-Webhook-Signature: sha256={compute_signature('s3cret', b'{}', stamp)}"
