"""
Utility modules for speccorpus.

Cross-cutting concerns:
- Naming: Topic normalization and document file names
- Storage: Atomic JSON state, spec documents and notes documents
- Reporting: Corpus status table
"""
