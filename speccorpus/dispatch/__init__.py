"""Bounded investigation job dispatch."""
