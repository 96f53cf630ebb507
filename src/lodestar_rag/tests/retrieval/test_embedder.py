import pytest

from lodestar_rag.common.exceptions import ConfigurationError, TransportError
from lodestar_rag.retrieval import embedder as embedder_module
from lodestar_rag.retrieval.embedder import (
    LocalHTTPEmbedder,
    MockEmbedder,
    OllamaEmbedder,
    create_embedder,
)


def test_mock_embedder_is_deterministic():
    a = MockEmbedder(dim=16).embed_texts(["hello", "world"])
    b = MockEmbedder(dim=16).embed_texts(["hello", "world"])

    assert a == b
    assert a[0] != a[1]
    assert all(len(v) == 16 and all(-1.0 <= x < 1.0 for x in v) for v in a)


def test_mock_embedder_rejects_bad_dimension():
    with pytest.raises(ConfigurationError):
        MockEmbedder(dim=0)


def test_local_http_embedder(monkeypatch):
    seen = {}

    def fake_post(url, payload, **kwargs):
        seen["url"], seen["payload"] = url, payload
        return {"data": [{"embedding": [1, 2]}, {"embedding": [3, 4]}]}

    monkeypatch.setattr(embedder_module, "post_json", fake_post)
    vectors = LocalHTTPEmbedder(endpoint="http://emb/embed", model_name="m").embed_texts(["a", "b"])

    assert vectors == [[1.0, 2.0], [3.0, 4.0]]
    assert seen == {"url": "http://emb/embed", "payload": {"model": "m", "input": ["a", "b"]}}


def test_local_http_embedder_count_mismatch(monkeypatch):
    monkeypatch.setattr(embedder_module, "post_json", lambda url, payload, **kw: {"data": [{"embedding": [1]}]})

    with pytest.raises(TransportError):
        LocalHTTPEmbedder().embed_texts(["a", "b"])


def test_local_http_embedder_malformed_body(monkeypatch):
    monkeypatch.setattr(embedder_module, "post_json", lambda url, payload, **kw: {"unexpected": True})

    with pytest.raises(TransportError):
        LocalHTTPEmbedder().embed_texts(["a"])


def test_ollama_embedder_one_request_per_text(monkeypatch):
    prompts = []

    def fake_post(url, payload, **kwargs):
        prompts.append(payload["prompt"])
        return {"embedding": [float(len(payload["prompt"]))]}

    monkeypatch.setattr(embedder_module, "post_json", fake_post)
    embedder = OllamaEmbedder.from_config_dict({"model_name": "text-embedding-3-large", "host": "http://ol:11434/"})

    assert embedder.model_name == "mxbai-embed-large"
    assert embedder.embed_texts(["ab", "abc"]) == [[2.0], [3.0]]
    assert prompts == ["ab", "abc"]


def test_create_embedder_selects_provider():
    assert isinstance(create_embedder({"provider": "mock", "dim": 4}), MockEmbedder)
    assert isinstance(create_embedder({"kind": "Local"}), LocalHTTPEmbedder)


def test_create_embedder_unknown_provider():
    with pytest.raises(ConfigurationError, match="Unknown embeddings provider"):
        create_embedder({"provider": "carrier-pigeon"})


def test_openai_embedder_requires_key():
    with pytest.raises(ConfigurationError, match="OPENAI_API_KEY"):
        create_embedder({"provider": "openai"})


def test_create_embedder_requires_mapping():
    with pytest.raises(ConfigurationError):
        create_embedder(["mock"])
