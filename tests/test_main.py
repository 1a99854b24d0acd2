import pytest
from click.testing import CliRunner

from conftest import make_image
from toonvocab.db import VocabularyStore
from toonvocab.main import cli, collect_input_files


@pytest.fixture()
def env(monkeypatch, tmp_path):
    for key in ("OCR_API_KEY", "GEMINI_API_KEY", "PIPELINE_DEBUG_DIR", "LOG_LEVEL"):
        monkeypatch.delenv(key, raising=False)
    url = f"sqlite:///{tmp_path / 'cli.db'}"
    monkeypatch.setenv("DATABASE_URL", url)
    return ["--env-file", str(tmp_path / "missing.env")], url


def test_init_db_and_add_series(env):
    base, url = env
    runner = CliRunner()

    assert runner.invoke(cli, base + ["init-db"]).exit_code == 0
    result = runner.invoke(cli, base + ["add-series", "tower-of-god", "Tower of God"])

    assert result.exit_code == 0
    store = VocabularyStore(url)
    try:
        assert store.ensure_series("tower-of-god", "ignored") == 1
    finally:
        store.dispose()


def test_process_reports_stage_failure(env, tmp_path):
    base, _ = env
    page = tmp_path / "page.png"
    page.write_bytes(make_image(50, 50))

    result = CliRunner().invoke(cli, base + ["process", str(page), "--series", "x", "--chapter", "1"])

    assert result.exit_code == 1
    assert "OCR failed: OCR_API_KEY not configured" in result.output


def test_process_rejects_non_positive_chapter(env, tmp_path):
    base, _ = env
    page = tmp_path / "page.png"
    page.write_bytes(make_image(5, 5))

    result = CliRunner().invoke(cli, base + ["process", str(page), "--series", "x", "--chapter", "0"])

    assert result.exit_code == 2


def test_collect_input_files_sorts_directories_naturally(tmp_path):
    for name in ["10.png", "2.png", "1.jpg", "notes.txt"]:
        (tmp_path / name).write_bytes(b"x")
    extra = tmp_path.parent / f"{tmp_path.name}-cover.png"
    extra.write_bytes(b"x")

    files = collect_input_files([str(extra), str(tmp_path)])

    assert [f.name for f in files] == [extra.name, "1.jpg", "2.png", "10.png"]
