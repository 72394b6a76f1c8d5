"""
Data models for speccorpus.
"""
