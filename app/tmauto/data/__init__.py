"""Bundled data files for tmauto."""
