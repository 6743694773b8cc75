from pathlib import Path

import pytest

from confluence_rag import ingest as cli
from confluence_rag.services.retrieval import SqliteVectorIndex

from fakes import FailingSource, FakeSource, KeywordEmbedder, make_page


@pytest.fixture
def fake_source(monkeypatch: pytest.MonkeyPatch) -> FakeSource:
    source = FakeSource(
        spaces={"DEV": [make_page("1", "ABCDEFGHIJ"), make_page("2", "XYZ")]},
        pages=[make_page("77", "robotics")],
    )
    monkeypatch.setattr(cli, "ConfluenceClient", lambda **kwargs: source)
    monkeypatch.setattr(cli, "build_embedder", lambda settings: KeywordEmbedder())
    return source


def test_cli_ingests_space(
    fake_source: FakeSource,
    tmp_path: Path,
    capsys: pytest.CaptureFixture[str],
) -> None:
    index_path = tmp_path / "vectors.db"

    cli.main(
        [
            "--space",
            "DEV",
            "--chunk-size",
            "4",
            "--chunk-overlap",
            "1",
            "--index-path",
            str(index_path),
        ]
    )

    out = capsys.readouterr().out
    assert f"[rag-ingest] completed pages=2 chunks=4 index_chunks=4 index_path={index_path}" in out
    assert SqliteVectorIndex(index_path).count() == 4


def test_cli_ingests_pages_by_url(
    fake_source: FakeSource,
    tmp_path: Path,
    capsys: pytest.CaptureFixture[str],
) -> None:
    cli.main(
        [
            "--page-url",
            "https://wiki.example.com/spaces/DEV/pages/77/Robots",
            "--index-path",
            str(tmp_path / "vectors.db"),
        ]
    )

    assert "pages=1 chunks=1" in capsys.readouterr().out
    assert fake_source.fetched_ids == ["77"]


def test_cli_requires_a_target(fake_source: FakeSource) -> None:
    with pytest.raises(SystemExit) as exc_info:
        cli.main([])

    assert exc_info.value.code == 2


def test_cli_reports_failure(
    monkeypatch: pytest.MonkeyPatch,
    tmp_path: Path,
    capsys: pytest.CaptureFixture[str],
) -> None:
    monkeypatch.setattr(cli, "ConfluenceClient", lambda **kwargs: FailingSource())
    monkeypatch.setattr(cli, "build_embedder", lambda settings: KeywordEmbedder())

    with pytest.raises(SystemExit) as exc_info:
        cli.main(["--space", "OPS", "--index-path", str(tmp_path / "vectors.db")])

    assert exc_info.value.code == 1
    assert "[rag-ingest] failed: Confluence returned non-2xx: 503" in capsys.readouterr().err


def test_cli_reports_index_total_across_runs(
    fake_source: FakeSource,
    tmp_path: Path,
    capsys: pytest.CaptureFixture[str],
) -> None:
    index_path = str(tmp_path / "vectors.db")
    cli.main(["--space", "DEV", "--chunk-size", "4", "--chunk-overlap", "1", "--index-path", index_path])
    capsys.readouterr()

    cli.main(["--page-id", "77", "--index-path", index_path])

    assert "pages=1 chunks=1 index_chunks=5" in capsys.readouterr().out
