"""Normalisation, chunking and embedding of fetched documents."""
