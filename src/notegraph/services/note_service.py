"""Service layer for notegraph operations.

``NoteService`` is the single entry point used by the MCP server and by
library callers. It owns the repositories and the core components and
runs the "note saved" event: persist the body, then reconcile links and
tags from it.
"""
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.engine import Engine

from notegraph.config import config
from notegraph.exceptions import (
    ErrorCode,
    NoteNotFoundError,
    NoteValidationError,
    ReconciliationError,
    StorageError,
    ValidationError,
    collect_messages,
)
from notegraph.models.db_models import get_session_factory, init_db
from notegraph.models.schema import (
    MISSING_PREFIX,
    UNTITLED,
    Graph,
    GraphEdge,
    GraphNeighbor,
    GraphNode,
    ImportReport,
    LinkSuggestion,
    MentionGroup,
    Note,
    OutgoingLink,
    Presence,
    ReconcileResult,
    Tag,
)
from notegraph.observability import traced
from notegraph.services.ai_provider import CompletionProvider
from notegraph.services.context_builder import ContextBuilder
from notegraph.services.link_resolver import LinkResolver
from notegraph.services.markup import extract_wikilinks
from notegraph.services.ranker import ContextRanker
from notegraph.services.suggestion_service import SuggestionService
from notegraph.services.tag_reconciler import TagReconciler
from notegraph.storage import (
    LinkRepository,
    MarkdownCodec,
    NoteRepository,
    PresenceRepository,
    TagRepository,
)

logger = logging.getLogger(__name__)


def _missing_id(title: str) -> str:
    return f"{MISSING_PREFIX}{title}"


class NoteService:
    """Service for managing notes and their link graph."""

    def __init__(
        self,
        engine: Optional[Engine] = None,
        completion_provider: Optional[CompletionProvider] = None,
    ):
        """Initialize the service.

        Args:
            engine: Pre-configured SQLAlchemy engine. The configured database
                is opened (and its schema created) when None.
            completion_provider: Optional provider used by ``connect_notes``
                to phrase reasons. Deterministic reasons are used without it.
        """
        self.engine = engine if engine is not None else init_db()
        session_factory = get_session_factory(self.engine)

        self.notes = NoteRepository(session_factory)
        self.links = LinkRepository(session_factory)
        self.tags = TagRepository(session_factory)
        self.presence = PresenceRepository(session_factory)
        self.codec = MarkdownCodec()

        self.resolver = LinkResolver(self.notes)
        self.tag_reconciler = TagReconciler(self.tags)
        self.context_builder = ContextBuilder(self.notes, self.links)
        self.ranker = ContextRanker(self.notes, self.links, self.tags)
        self.suggestions = SuggestionService(
            self.ranker, self.notes, self.links, provider=completion_provider
        )

    def shutdown(self) -> None:
        """Release worker threads and pooled connections."""
        self.suggestions.shutdown()
        self.engine.dispose()

    # =========================================================================
    # Validation helpers
    # =========================================================================

    @staticmethod
    def _require_id(note_id: Optional[str]) -> str:
        if not note_id or not note_id.strip():
            raise NoteValidationError(
                "Note ID is required", field="note_id", code=ErrorCode.NOTE_ID_REQUIRED
            )
        return note_id

    def _require_note(self, note_id: Optional[str]) -> Note:
        note = self.notes.get(self._require_id(note_id))
        if note is None:
            raise NoteNotFoundError(note_id)
        return note

    # =========================================================================
    # Reconciliation ("note saved" event)
    # =========================================================================

    def reconcile_note(self, note_id: str, body: Optional[str]) -> ReconcileResult:
        """Make the stored links and tags of ``note_id`` match ``body``.

        Links are reconciled first, then tags; each step is its own
        transaction. Running it twice with the same body is a no-op.

        Raises:
            ReconciliationError: If either step fails. The note row itself
                is not touched here.
        """
        titles = extract_wikilinks(body)
        resolved = self.resolver.resolve(note_id, titles)
        try:
            count = self.links.replace_outgoing(note_id, resolved.resolved_target_ids)
        except StorageError as e:
            raise ReconciliationError(note_id, "links", original_error=e) from e
        try:
            tags = self.tag_reconciler.reconcile(note_id, body or "")
        except StorageError as e:
            raise ReconciliationError(note_id, "tags", original_error=e) from e

        if resolved.unresolved_titles:
            logger.debug(
                f"Note {note_id} has unresolved links: {resolved.unresolved_titles}"
            )
        return ReconcileResult(
            note_id=note_id,
            resolved_links=count,
            unresolved_titles=resolved.unresolved_titles,
            tags=tags,
        )

    @traced("save_note")
    def save_note(self, note_id: str, body: Optional[str]) -> ReconcileResult:
        """Store a new body for an existing note and reconcile its graph.

        Args:
            note_id: ID of the saved note.
            body: The full markup source.

        Returns:
            Number of resolved links, unresolved titles and current tags.

        Raises:
            NoteValidationError: If ``note_id`` or ``body`` is missing.
            NoteNotFoundError: If the note does not exist.
            StorageError: If the body could not be saved.
            ReconciliationError: If the body was saved but links/tags were not.
        """
        self._require_id(note_id)
        if body is None:
            raise NoteValidationError(
                "Body is required", field="body", code=ErrorCode.NOTE_BODY_REQUIRED
            )
        self.notes.update_body(note_id, body)
        return self.reconcile_note(note_id, body)

    # =========================================================================
    # CRUD
    # =========================================================================

    @traced("create_note")
    def create_note(
        self,
        title: str = "",
        body: str = "",
        folder_id: Optional[str] = None,
    ) -> Note:
        """Create a note and reconcile its links and tags.

        Other notes that already reference this title are not re-resolved;
        their links are picked up the next time they are saved.
        """
        if folder_id and self.notes.get_folder(folder_id) is None:
            raise ValidationError("Unknown folder", field="folder_id", value=folder_id)
        try:
            note = Note(title=title or "", body=body or "", folder_id=folder_id)
        except PydanticValidationError as e:
            raise NoteValidationError(str(e)) from e
        self.notes.create(note)
        self.reconcile_note(note.id, note.body)
        return self.notes.get(note.id)

    def get_note(self, note_id: str) -> Optional[Note]:
        """Retrieve a note by ID."""
        return self.notes.get(self._require_id(note_id))

    def get_note_by_title(self, title: str) -> Optional[Note]:
        """Retrieve the canonical note for a title."""
        return self.notes.get_by_title(title)

    def list_notes(self, limit: Optional[int] = None, offset: int = 0) -> List[Note]:
        return self.notes.list_notes(limit=limit, offset=offset)

    @traced("update_note")
    def update_note(
        self,
        note_id: str,
        title: Optional[str] = None,
        body: Optional[str] = None,
        folder_id: Optional[str] = None,
    ) -> Note:
        """Update an existing note and reconcile its graph.

        Args:
            note_id: ID of the note to update.
            title: New title (optional).
            body: New body (optional).
            folder_id: New folder (optional, empty string clears it).

        Returns:
            Updated Note object.

        Raises:
            ReconciliationError: The note was saved but links/tags were not.
        """
        note = self._require_note(note_id)
        if title is not None:
            note.title = title
        if body is not None:
            note.body = body
        if folder_id is not None:
            if folder_id and self.notes.get_folder(folder_id) is None:
                raise ValidationError("Unknown folder", field="folder_id", value=folder_id)
            note.folder_id = folder_id or None

        self.notes.update(note)
        self.reconcile_note(note.id, note.body)
        return self.notes.get(note.id)

    @traced("delete_note")
    def delete_note(self, note_id: str) -> None:
        """Delete a note along with every link touching it and its tag rows."""
        self.notes.delete(self._require_id(note_id))

    def create_folder(self, name: str, parent_id: Optional[str] = None) -> str:
        """Create (or reuse) a folder under ``parent_id``. Returns its id."""
        if not name or not name.strip():
            raise ValidationError("Folder name is required", field="name")
        path = self.notes.get_folder_path(parent_id) if parent_id else []
        return self.notes.get_or_create_folder_path(path + [name.strip()])

    # =========================================================================
    # Graph queries
    # =========================================================================

    @traced("get_backlinks")
    def get_backlinks(self, note_id: str) -> List[MentionGroup]:
        return self.context_builder.backlinks_with_context(self._require_id(note_id))

    @traced("get_unlinked_mentions")
    def get_unlinked_mentions(self, note_id: str) -> List[MentionGroup]:
        return self.context_builder.unlinked_mentions(self._require_id(note_id))

    @traced("get_outgoing_links")
    def get_outgoing_links(self, note_id: str) -> List[OutgoingLink]:
        """Resolved outgoing links followed by placeholders for missing titles.

        A ``[[Title]]`` in the body that has no stored edge (and is not the
        note's own title) is listed with id ``missing:<Title>`` so a UI can
        offer to create it.
        """
        note = self._require_note(note_id)
        links = []
        seen_titles = set()
        for edge in self.links.get_outgoing(note.id):
            title = edge.target_title or UNTITLED
            seen_titles.add(title)
            links.append(OutgoingLink(id=edge.target_id, title=title, exists=True))

        for title in extract_wikilinks(note.body, unique=True):
            if title in seen_titles or title == note.title:
                continue
            links.append(OutgoingLink(id=_missing_id(title), title=title, exists=False))
        return links

    @traced("get_local_graph")
    def get_local_graph(self, note_id: str) -> List[GraphNeighbor]:
        """Direct neighbours of a note. A note linked both ways counts as outgoing."""
        note = self._require_note(note_id)
        neighbors: Dict[str, GraphNeighbor] = {}
        for edge in self.links.get_outgoing(note.id):
            neighbors[edge.target_id] = GraphNeighbor(
                id=edge.target_id, title=edge.target_title or UNTITLED, direction="outgoing"
            )
        for edge in self.links.get_incoming(note.id):
            if edge.source_id in neighbors:
                continue
            neighbors[edge.source_id] = GraphNeighbor(
                id=edge.source_id, title=edge.source_title or UNTITLED, direction="incoming"
            )
        return list(neighbors.values())

    @traced("get_graph")
    def get_graph(self) -> Graph:
        """The whole store as nodes and edges.

        Stored edges become ``source:target`` edges. Wikilink titles that
        match no note become ``missing:<title>`` nodes, each connected to
        the notes that mention it.
        """
        nodes_with_bodies = self.notes.get_graph_nodes()
        graph = Graph(nodes=[node for node, _ in nodes_with_bodies])
        graph.edges = [
            GraphEdge(id=f"{source}:{target}", source=source, target=target)
            for source, target in self.links.get_all_edges()
        ]

        titles_by_note: List[Tuple[GraphNode, List[str]]] = [
            (node, extract_wikilinks(body, unique=True)) for node, body in nodes_with_bodies
        ]
        known = self.notes.find_ids_by_titles(
            title for _, titles in titles_by_note for title in titles
        )
        missing_nodes: Dict[str, GraphNode] = {}
        for node, titles in titles_by_note:
            for title in titles:
                if title in known or title == node.title:
                    continue
                if title not in missing_nodes:
                    missing_nodes[title] = GraphNode(
                        id=_missing_id(title), title=title, is_missing=True
                    )
                graph.edges.append(
                    GraphEdge(
                        id=f"{MISSING_PREFIX}{node.id}:{title}",
                        source=node.id,
                        target=_missing_id(title),
                    )
                )
        graph.nodes.extend(missing_nodes.values())
        return graph

    # =========================================================================
    # Suggestions
    # =========================================================================

    @traced("suggest_links")
    def suggest_links(
        self, note_id: str, recent_note_ids: Sequence[str] = (), limit: int = 3
    ) -> List[LinkSuggestion]:
        return self.suggestions.suggest_links(
            self._require_id(note_id), recent_note_ids, limit=limit
        )

    @traced("connect_notes")
    def connect_notes(
        self, note_id: str, recent_note_ids: Sequence[str] = ()
    ) -> List[LinkSuggestion]:
        return self.suggestions.connect(self._require_id(note_id), recent_note_ids)

    @traced("approve_links")
    def approve_links(self, note_id: str, target_ids: Sequence[str]) -> int:
        """Add accepted suggestions as edges. Returns how many were created.

        Self references, unknown targets and edges that already exist are
        skipped. The body is not modified, so the next save of the note
        replaces these edges with whatever its body links to.
        """
        self._require_note(note_id)
        if not target_ids:
            raise ValidationError("At least one target is required", field="target_ids")
        known = self.notes.get_summaries(target_ids)
        unknown = [t for t in target_ids if t not in known]
        if unknown:
            logger.warning(f"Skipping unknown link targets for {note_id}: {unknown}")
        return self.links.add_links(note_id, [t for t in target_ids if t in known])

    # =========================================================================
    # Tags
    # =========================================================================

    def list_tags(self) -> List[Dict[str, Any]]:
        """Every tag with its color and how many notes carry it."""
        counts = self.tags.get_with_counts()
        return [
            {"name": tag.name, "color": tag.color, "count": counts.get(tag.name, 0)}
            for tag in self.tags.get_all()
        ]

    def get_tags_for_note(self, note_id: str) -> List[Tag]:
        return self.tags.get_tags_for_note(self._require_id(note_id))

    def set_tag_color(self, name: str, color: Optional[str]) -> Tag:
        return self.tags.set_color(name, color)

    def delete_unused_tags(self) -> int:
        """Delete tags no note refers to any more."""
        return self.tags.delete_unused()

    # =========================================================================
    # Presence
    # =========================================================================

    def heartbeat(self, note_id: str, session_id: str, user_name: str) -> Presence:
        """Record that ``session_id`` is viewing ``note_id``."""
        try:
            presence = Presence(
                note_id=self._require_id(note_id),
                session_id=session_id,
                user_name=user_name,
            )
        except PydanticValidationError as e:
            raise ValidationError(
                "Invalid presence data", field="presence", code=ErrorCode.PRESENCE_INVALID
            ) from e
        return self.presence.heartbeat(presence)

    def get_viewers(
        self, note_id: str, exclude_session_id: Optional[str] = None
    ) -> List[Presence]:
        """Sessions seen on the note within the presence window."""
        viewers = self.presence.get_active(
            self._require_id(note_id), config.presence_window_seconds
        )
        return [v for v in viewers if v.session_id != exclude_session_id]

    def leave(self, note_id: str, session_id: str) -> int:
        return self.presence.leave(note_id, session_id)

    def cleanup_presence(self) -> int:
        return self.presence.cleanup(config.presence_window_seconds)

    # =========================================================================
    # Markdown export / import
    # =========================================================================

    @traced("export_markdown")
    def export_markdown(self, note_id: str) -> Tuple[str, str]:
        """Render a note as a vault file.

        Returns:
            ``(relative_path, content)``, the path mirroring the folder tree.
        """
        note = self._require_note(note_id)
        path = self.codec.export_path(note, self.notes.get_folder_path(note.folder_id))
        return path, self.codec.render(note)

    def export_vault(self, directory: Path) -> int:
        """Write every note under ``directory``. Returns the number of files written.

        Notes that would land on the same path get a `` (n)`` suffix.
        """
        directory = Path(directory)
        used = set()
        count = 0
        for note in self.notes.list_notes():
            relative, content = self.export_markdown(note.id)
            stem, n = relative[:-3], 2
            while relative in used:
                relative = f"{stem} ({n}).md"
                n += 1
            used.add(relative)
            target = directory / relative
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(content, encoding="utf-8")
            count += 1
        logger.info(f"Exported {count} notes to {directory}")
        return count

    def _create_from_markdown(self, path_in_vault: str, text: str) -> Note:
        parsed = self.codec.parse(path_in_vault, text)
        folder_id = self.notes.get_or_create_folder_path(parsed.folder_path)
        fields: Dict[str, Any] = {"title": parsed.title, "body": parsed.body, "folder_id": folder_id}
        if parsed.created_at is not None:
            fields["created_at"] = parsed.created_at
        return self.notes.create(Note(**fields))

    @traced("import_markdown")
    def import_markdown(self, path_in_vault: str, text: str) -> Note:
        """Create one note from a vault file and reconcile it.

        The title is the file name, folders are created from the path, and
        frontmatter plus a leading ``# heading`` are dropped from the body.
        """
        note = self._create_from_markdown(path_in_vault, text)
        self.reconcile_note(note.id, note.body)
        return self.notes.get(note.id)

    @traced("import_vault")
    def import_vault(self, directory: Path) -> ImportReport:
        """Import every ``.md`` file under ``directory``.

        All notes are created before any is reconciled, so links between
        imported notes resolve regardless of file order. A file that fails
        is reported and skipped.
        """
        directory = Path(directory)
        report = ImportReport()
        created: List[Note] = []
        failed_paths: List[str] = []
        failures: List[Exception] = []

        for file_path in sorted(directory.rglob("*.md")):
            relative = file_path.relative_to(directory).as_posix()
            if relative.startswith("__MACOSX") or any(
                part.startswith(".") for part in file_path.relative_to(directory).parts
            ):
                continue
            try:
                text = file_path.read_text(encoding="utf-8")
                created.append(self._create_from_markdown(relative, text))
            except (OSError, UnicodeDecodeError, ValueError, StorageError) as e:
                logger.warning(f"Failed to import {relative}: {e}")
                failed_paths.append(relative)
                failures.append(e)

        for note in created:
            try:
                self.reconcile_note(note.id, note.body)
            except ReconciliationError as e:
                failed_paths.append(note.title)
                failures.append(e)
        report.imported = len(created)
        report.errors = [
            f"{path}: {message}"
            for path, message in zip(failed_paths, collect_messages(failures))
        ]
        logger.info(f"Imported {report.imported} notes from {directory}")
        return report
