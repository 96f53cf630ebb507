"""lodestar_rag.pipelines

Pipeline orchestration components.

Pipelines coordinate retrieval, prompt construction and chat generation. They
hold no state beyond their configured components; the chat transcript lives
in the catalog.

Modules
-------
rag_pipeline
    Retrieval-augmented chat pipeline.
"""
