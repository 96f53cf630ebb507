"""
Retrieval layer.

This package covers embedding query and chunk text, ranking catalog chunks
for a query and refining a ranked list with a second pass.

Submodules
----------
embedder
    Embedding provider interface, implementations and factory.
scoring
    Pure scoring helpers: alpha clamping, blending and cosine similarity.
search
    Query validation, mode dispatch, post-filters and result export.
reranker
    Heuristic, model-scored and HTTP cross-encoder rerankers.
"""
