import pytest
import yaml

from lodestar_rag.common.exceptions import ConfigurationError
from lodestar_rag.config import GlobalConfig
from lodestar_rag.config.global_config import CONFIG_FILENAME


def _write(path, data):
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(yaml.safe_dump(data), encoding="utf-8")
    return path


def test_defaults(tmp_path):
    config = GlobalConfig.load(cwd=tmp_path)

    assert config.config_paths == []
    assert config.chunking == {"size": 1000, "overlap": 150}
    assert config.embed_dim == 3072
    assert config.top_k == 8
    assert config.index_method == "ivfflat"
    assert config.ingest == {"workers": 8, "batch_size": 20}
    assert config.sources == []
    assert config.reranker["provider"] == "heuristic"


def test_environment_defaults(monkeypatch, tmp_path):
    monkeypatch.setenv("DATABASE_URL", "postgresql+psycopg://db/env")
    monkeypatch.setenv("EMBEDDINGS_DIM", "384")
    monkeypatch.setenv("LODESTAR_PROJECT", "EnvProject")

    config = GlobalConfig.load(cwd=tmp_path)

    assert config.database_url == "postgresql+psycopg://db/env"
    assert config.embed_dim == 384
    assert config.project == "envproject"


def test_working_directory_overrides_home(tmp_path):
    home = tmp_path / "home"
    work = tmp_path / "work"
    _write(home / CONFIG_FILENAME, {"project": "home", "chunking": {"size": 200, "overlap": 20}})
    _write(work / CONFIG_FILENAME, {"project": "work", "chunking": {"overlap": 50}})

    config = GlobalConfig.load(cwd=work)

    assert config.project == "work"
    assert config.chunking == {"size": 200, "overlap": 50}
    assert [p.name for p in config.config_paths] == [CONFIG_FILENAME, CONFIG_FILENAME]


def test_explicit_path_and_overrides(tmp_path):
    explicit = _write(tmp_path / "custom.yml", {"project": "custom", "retrieval": {"top_k": 3}})

    config = GlobalConfig.load(explicit, overrides={"project": "cli", "index_method": None})

    assert config.project == "cli"
    assert config.top_k == 3
    assert config.index_method == "ivfflat"
    assert config.config_paths == [explicit.resolve()]


def test_missing_explicit_path(tmp_path):
    with pytest.raises(ConfigurationError, match="not found"):
        GlobalConfig.load(tmp_path / "absent.yml")


def test_non_mapping_file(tmp_path):
    path = tmp_path / "list.yml"
    path.write_text("- a\n- b\n", encoding="utf-8")

    with pytest.raises(ConfigurationError, match="mapping"):
        GlobalConfig.load(path)


def test_unparseable_file_is_skipped(tmp_path):
    (tmp_path / CONFIG_FILENAME).write_text("project: [unclosed\n", encoding="utf-8")

    config = GlobalConfig.load(cwd=tmp_path)

    assert config.config_paths == []


def test_environment_variables_expand(monkeypatch):
    monkeypatch.setenv("LODESTAR_TEST_DB", "sqlite:///notes.db")

    config = GlobalConfig.from_dict(
        {"database_url": "${LODESTAR_TEST_DB}", "sources": [{"type": "db", "url": "${LODESTAR_TEST_DB}"}]}
    )

    assert config.database_url == "sqlite:///notes.db"
    assert config.sources[0]["url"] == "sqlite:///notes.db"


def test_project_is_sanitised():
    assert GlobalConfig.from_dict({"project": "My Docs-2"}).project == "my_docs_2"


@pytest.mark.parametrize(
    "chunking",
    [{"size": 100, "overlap": 100}, {"size": 0, "overlap": 0}, {"size": 100, "overlap": -1}, {"size": "big"}],
)
def test_invalid_chunking(chunking):
    with pytest.raises(ConfigurationError):
        GlobalConfig.from_dict({"chunking": chunking}).chunking


def test_invalid_index_method():
    with pytest.raises(ConfigurationError, match="index_method"):
        GlobalConfig.from_dict({"index_method": "lsh"}).index_method


def test_invalid_embedding_dimension():
    with pytest.raises(ConfigurationError):
        GlobalConfig.from_dict({"embedder": {"dim": 0}}).embedder


def test_sources_are_normalised():
    config = GlobalConfig.from_dict(
        {"sources": [{"type": "Folder", "path": "./docs"}, {"name": "crm", "type": "db", "url": "sqlite://"}]}
    )

    assert config.sources == [
        {"type": "folder", "path": "./docs", "name": "source1"},
        {"name": "crm", "type": "db", "url": "sqlite://"},
    ]


@pytest.mark.parametrize(
    "sources",
    [
        {"type": "folder"},
        ["folder"],
        [{"type": "s3", "path": "bucket"}],
        [{"type": "folder"}],
        [{"type": "db"}],
    ],
)
def test_invalid_sources(sources):
    with pytest.raises(ConfigurationError):
        GlobalConfig.from_dict({"sources": sources}).sources


def test_workers_and_batch_size_have_a_floor():
    assert GlobalConfig.from_dict({"ingest": {"workers": 0, "batch_size": -5}}).ingest == {
        "workers": 1,
        "batch_size": 1,
    }


def test_non_integer_top_k():
    with pytest.raises(ConfigurationError, match="top_k"):
        GlobalConfig.from_dict({"retrieval": {"top_k": "many"}}).top_k


@pytest.mark.parametrize("ingest", [{"workers": "lots"}, {"batch_size": None}, {"workers": [4]}])
def test_non_integer_ingest_settings(ingest):
    with pytest.raises(ConfigurationError, match="ingest"):
        GlobalConfig.from_dict({"ingest": ingest}).ingest
