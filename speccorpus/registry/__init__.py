"""
Topic Registry Module.

Single source of truth for topics and spec documents, the dedup lookup
that guards every write, and the shared-behavior dependency graph.
"""
