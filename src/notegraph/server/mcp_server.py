"""MCP server exposing the notegraph tools."""

import atexit
import json
import logging
import uuid
from pathlib import Path
from typing import Any, List, Optional

from mcp.server.fastmcp import FastMCP

from notegraph.config import config
from notegraph.exceptions import NotegraphError
from notegraph.observability import metrics, timed_operation
from notegraph.services.ai_provider import create_completion_provider
from notegraph.services.note_service import NoteService

logger = logging.getLogger(__name__)

MAX_TITLE_LENGTH = 500
MAX_BODY_LENGTH = 1_000_000  # 1 MB


def _validate_input_lengths(title: Optional[str] = None, body: Optional[str] = None) -> None:
    """Validate input string lengths at the MCP boundary."""
    if title and len(title) > MAX_TITLE_LENGTH:
        raise ValueError(f"Title exceeds maximum length of {MAX_TITLE_LENGTH} characters")
    if body and len(body) > MAX_BODY_LENGTH:
        raise ValueError(f"Body exceeds maximum length of {MAX_BODY_LENGTH} characters")


def _split_ids(value: Optional[str]) -> List[str]:
    """Comma-separated ids to a list, blanks dropped."""
    if not value:
        return []
    return [part.strip() for part in value.split(",") if part.strip()]


def _to_json(payload: Any) -> str:
    return json.dumps(payload, ensure_ascii=False, indent=2, default=str)


def _dump(models) -> List[dict]:
    return [m.model_dump(mode="json") for m in models]


class NotegraphMcpServer:
    """MCP server for the note link graph."""

    def __init__(self, engine=None):
        """Initialize the MCP server.

        Args:
            engine: Pre-configured SQLAlchemy engine shared by all
                repositories. The configured database is used when None.
        """
        self.mcp = FastMCP(config.server_name)
        self.note_service = NoteService(
            engine=engine,
            completion_provider=create_completion_provider(),
        )
        atexit.register(self._shutdown)
        self._register_tools()
        logger.info("notegraph MCP server initialized")

    def _shutdown(self) -> None:
        """Clean up resources on server exit."""
        self.note_service.shutdown()

    def format_error_response(self, error: Exception) -> str:
        """Format an error response in a consistent way.

        Args:
            error: The exception that occurred

        Returns:
            Formatted error message with appropriate level of detail
        """
        # Short id that ties the reply to the log line
        error_id = str(uuid.uuid4())[:8]

        if isinstance(error, NotegraphError):
            logger.error(
                f"[{error.code.name}] [{error_id}]: {error.message}",
                extra={"error_details": error.details},
            )
            return f"Error: {error.message}"
        elif isinstance(error, ValueError):
            logger.error(f"Validation error [{error_id}]: {str(error)}")
            return f"Error: Invalid input (ref: {error_id})"
        elif isinstance(error, (IOError, OSError)):
            logger.error(f"File system error [{error_id}]: {str(error)}", exc_info=True)
            return f"Error: A file system error occurred (ref: {error_id})"
        else:
            logger.error(f"Unexpected error [{error_id}]: {str(error)}", exc_info=True)
            return f"Error: An unexpected error occurred (ref: {error_id})"

    def _register_tools(self) -> None:
        """Register MCP tools."""

        # Notes

        @self.mcp.tool(name="ng_create_note")
        def ng_create_note(title: str = "", body: str = "", folder_id: Optional[str] = None) -> str:
            """Create a note. Wikilinks and hashtags in the body are reconciled.
            Args:
                title: The title of the note (may be empty)
                body: The markup source of the note
                folder_id: Optional folder to place the note in
            """
            with timed_operation("ng_create_note", title=title[:30]) as op:
                try:
                    _validate_input_lengths(title=title, body=body)
                    note = self.note_service.create_note(title=title, body=body, folder_id=folder_id)
                    op["note_id"] = note.id
                    return _to_json(note.model_dump(mode="json"))
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="ng_get_note")
        def ng_get_note(identifier: str) -> str:
            """Retrieve a note by ID or, failing that, by exact title.
            Args:
                identifier: The ID or title of the note
            """
            with timed_operation("ng_get_note", identifier=identifier[:30]) as op:
                try:
                    note = self.note_service.get_note(identifier)
                    if note is None:
                        note = self.note_service.get_note_by_title(identifier)
                    op["found"] = note is not None
                    if note is None:
                        return f"Note not found: {identifier}"
                    return _to_json(note.model_dump(mode="json"))
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="ng_update_note")
        def ng_update_note(
            note_id: str,
            title: Optional[str] = None,
            body: Optional[str] = None,
            folder_id: Optional[str] = None,
        ) -> str:
            """Update a note. Omitted fields are left unchanged.
            Args:
                note_id: The ID of the note to update
                title: New title (optional)
                body: New body (optional)
                folder_id: New folder ID, or "" to remove it from its folder (optional)
            """
            with timed_operation("ng_update_note", note_id=note_id) as op:
                try:
                    _validate_input_lengths(title=title, body=body)
                    note = self.note_service.update_note(
                        note_id, title=title, body=body, folder_id=folder_id
                    )
                    op["updated"] = True
                    return _to_json(note.model_dump(mode="json"))
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="ng_delete_note")
        def ng_delete_note(note_id: str) -> str:
            """Delete a note together with every link to or from it.
            Args:
                note_id: The ID of the note to delete
            """
            with timed_operation("ng_delete_note", note_id=note_id):
                try:
                    self.note_service.delete_note(note_id)
                    return f"Note deleted successfully: {note_id}"
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="ng_save_note")
        def ng_save_note(note_id: str, body: str) -> str:
            """Save a note body and reconcile its links and tags.
            Args:
                note_id: The ID of the saved note
                body: The full markup source
            """
            with timed_operation("ng_save_note", note_id=note_id) as op:
                try:
                    _validate_input_lengths(body=body)
                    result = self.note_service.save_note(note_id, body)
                    op["resolved_links"] = result.resolved_links
                    return _to_json(result.to_dict())
                except Exception as e:
                    return self.format_error_response(e)

        # Graph

        @self.mcp.tool(name="ng_get_backlinks")
        def ng_get_backlinks(note_id: str) -> str:
            """Notes linking to this note, with text around each link.
            Args:
                note_id: The ID of the note
            """
            with timed_operation("ng_get_backlinks", note_id=note_id) as op:
                try:
                    groups = self.note_service.get_backlinks(note_id)
                    op["count"] = len(groups)
                    return _to_json({"backlinks": _dump(groups)})
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="ng_get_unlinked_mentions")
        def ng_get_unlinked_mentions(note_id: str) -> str:
            """Notes mentioning this note's title without linking to it.
            Args:
                note_id: The ID of the note
            """
            with timed_operation("ng_get_unlinked_mentions", note_id=note_id) as op:
                try:
                    groups = self.note_service.get_unlinked_mentions(note_id)
                    op["count"] = len(groups)
                    return _to_json({"unlinked_mentions": _dump(groups)})
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="ng_get_outgoing_links")
        def ng_get_outgoing_links(note_id: str) -> str:
            """Links from this note, including "missing:<title>" placeholders.
            Args:
                note_id: The ID of the note
            """
            with timed_operation("ng_get_outgoing_links", note_id=note_id):
                try:
                    links = self.note_service.get_outgoing_links(note_id)
                    return _to_json({"links": _dump(links)})
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="ng_get_local_graph")
        def ng_get_local_graph(note_id: Optional[str] = None) -> str:
            """Neighbours of a note, or the whole graph when no note is given.
            Args:
                note_id: The ID of the note (optional)
            """
            with timed_operation("ng_get_local_graph", note_id=note_id):
                try:
                    if not note_id:
                        return _to_json({"graph": self.note_service.get_graph().model_dump(mode="json")})
                    neighbors = self.note_service.get_local_graph(note_id)
                    return _to_json({"links": _dump(neighbors)})
                except Exception as e:
                    return self.format_error_response(e)

        # Suggestions

        @self.mcp.tool(name="ng_suggest_links")
        def ng_suggest_links(note_id: str, recent_note_ids: Optional[str] = None) -> str:
            """Suggest notes to link that are not linked yet.
            Args:
                note_id: The ID of the current note
                recent_note_ids: Comma-separated IDs of recently viewed notes, most recent first
            """
            with timed_operation("ng_suggest_links", note_id=note_id) as op:
                try:
                    suggestions = self.note_service.suggest_links(
                        note_id, _split_ids(recent_note_ids)
                    )
                    op["count"] = len(suggestions)
                    return _to_json({"suggestions": _dump(suggestions)})
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="ng_approve_links")
        def ng_approve_links(note_id: str, target_ids: str) -> str:
            """Create links from a note to accepted suggestions.
            Args:
                note_id: The ID of the source note
                target_ids: Comma-separated IDs of the target notes
            """
            with timed_operation("ng_approve_links", note_id=note_id) as op:
                try:
                    created = self.note_service.approve_links(note_id, _split_ids(target_ids))
                    op["created"] = created
                    return _to_json({"created": created})
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="ng_connect_notes")
        def ng_connect_notes(note_id: str, recent_note_ids: Optional[str] = None) -> str:
            """Related notes with a one-line reason for each connection.
            Args:
                note_id: The ID of the current note
                recent_note_ids: Comma-separated IDs of recently viewed notes, most recent first
            """
            with timed_operation("ng_connect_notes", note_id=note_id) as op:
                try:
                    results = self.note_service.connect_notes(note_id, _split_ids(recent_note_ids))
                    op["count"] = len(results)
                    return _to_json({"results": _dump(results)})
                except Exception as e:
                    return self.format_error_response(e)

        # Tags

        @self.mcp.tool(name="ng_list_tags")
        def ng_list_tags(note_id: Optional[str] = None) -> str:
            """List all tags with note counts, or the tags of one note.
            Args:
                note_id: The ID of a note (optional)
            """
            with timed_operation("ng_list_tags"):
                try:
                    if note_id:
                        tags = self.note_service.get_tags_for_note(note_id)
                        return _to_json({"tags": _dump(tags)})
                    return _to_json({"tags": self.note_service.list_tags()})
                except Exception as e:
                    return self.format_error_response(e)

        # Presence

        @self.mcp.tool(name="ng_heartbeat")
        def ng_heartbeat(note_id: str, session_id: str, user_name: str) -> str:
            """Record that a session is viewing a note.
            Args:
                note_id: The ID of the viewed note
                session_id: Opaque ID of the viewer's session
                user_name: Display name of the viewer
            """
            with timed_operation("ng_heartbeat", note_id=note_id):
                try:
                    presence = self.note_service.heartbeat(note_id, session_id, user_name)
                    return _to_json({"presence": presence.model_dump(mode="json")})
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="ng_get_viewers")
        def ng_get_viewers(note_id: str, exclude_session_id: Optional[str] = None) -> str:
            """Sessions that sent a heartbeat for a note recently.
            Args:
                note_id: The ID of the note
                exclude_session_id: Leave this session out (usually the caller's own)
            """
            with timed_operation("ng_get_viewers", note_id=note_id):
                try:
                    viewers = self.note_service.get_viewers(note_id, exclude_session_id)
                    return _to_json({"presences": _dump(viewers)})
                except Exception as e:
                    return self.format_error_response(e)

        # Markdown

        @self.mcp.tool(name="ng_export_note")
        def ng_export_note(note_id: str) -> str:
            """Render a note as a markdown file with frontmatter.
            Args:
                note_id: The ID of the note
            """
            with timed_operation("ng_export_note", note_id=note_id):
                try:
                    path, content = self.note_service.export_markdown(note_id)
                    return _to_json({"path": path, "content": content})
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="ng_import_vault")
        def ng_import_vault(directory: str) -> str:
            """Import every markdown file of an Obsidian-style vault.
            Args:
                directory: Path of the vault directory
            """
            with timed_operation("ng_import_vault") as op:
                try:
                    vault = Path(directory).expanduser()
                    if not vault.is_dir():
                        return f"Error: Not a directory: {directory}"
                    report = self.note_service.import_vault(vault)
                    op["imported"] = report.imported
                    return _to_json({"imported": report.imported, "errors": report.errors})
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="ng_metrics")
        def ng_metrics(reset: bool = False) -> str:
            """Operation counts and timings since the server started.
            Args:
                reset: Clear the counters after reading them
            """
            try:
                payload = {"summary": metrics.get_summary(), "operations": metrics.get_metrics()}
                if reset:
                    metrics.reset()
                return _to_json(payload)
            except Exception as e:
                return self.format_error_response(e)

    def run(self) -> None:
        """Run the MCP server."""
        self.mcp.run()
