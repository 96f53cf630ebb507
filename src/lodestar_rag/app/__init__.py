"""lodestar_rag.app

Application wiring and the ``lodestar`` command line.

Modules
-------
container
    Composition root with lazily constructed components.
cli
    argparse entry point.
"""
