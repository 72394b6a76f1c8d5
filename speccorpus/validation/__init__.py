"""Spec-versus-trace consistency validation."""
