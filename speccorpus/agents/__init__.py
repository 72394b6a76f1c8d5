"""
Collaborator adapters for speccorpus.

- Investigation Agent: topic + corpus -> Trace
- Topic Review Agent: single-capability admission check
- Spec Writer: Trace -> SpecDocument and Markdown
"""
