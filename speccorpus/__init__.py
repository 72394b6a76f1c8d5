"""
speccorpus - specification-corpus orchestrator.

Coordinates the production and maintenance of a library of single-topic
behavioral documents: uniqueness, shared-behavior propagation, bounded
investigation concurrency and all-or-nothing publishing.
"""

__version__ = "0.1.0"
