"""
notegraph - the link graph core of a personal note-taking application.

Keeps a relational store of notes, folders, tags and wikilink edges in sync
with note bodies, and answers backlink, unlinked-mention and related-note
queries. Exposed both as a library and as an MCP server.
"""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("notegraph")
except PackageNotFoundError:
    __version__ = "0.3.0"
