"""Handlers package for the 3x-ui account bot."""
