"""
Package release tracker for the Elm package registry.

This package is responsible for:
* Synchronizing every published release into a local SQLite store.
* Normalizing the three historical registry metadata formats.
* Answering filtered queries and rendering them as RSS feeds.
"""
