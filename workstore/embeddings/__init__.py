"""
Embedding layer — chunking, canonical text and hashing, generators, and the
lifecycle that keeps stored vectors in step with entity content.
"""
