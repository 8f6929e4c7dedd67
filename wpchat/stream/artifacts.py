"""
Artifact Extraction and Storage

The assistant may embed a structured document in its text:

    <artifact type="workflow" title="Daily digest">{"name": ..., "nodes": [...]}</artifact>

ArtifactExtractor watches the coalesced text of the current turn and returns
the text each run should display (tag syntax and partial payloads never
leak), the artifacts completed so far and whether a tag is still open.

ArtifactStore owns the artifacts themselves: one per assistant turn, with
later completions in the same turn appended as new versions, plus a transient
"generating" placeholder while a tag is still streaming.
"""

from __future__ import annotations

import hashlib
import json
import logging
import re
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, Field

from wpchat.stream.logging_utils import log_artifact_event, truncate
from wpchat.stream.models import Artifact, ArtifactVersion, ParsedArtifact

logger = logging.getLogger(__name__)

_TAG_OPEN_RE = re.compile(r"<artifact\b", re.IGNORECASE)
_START_TAG_RE = re.compile(r"<artifact\b([^>]*)>", re.IGNORECASE)
_END_TAG_RE = re.compile(r"</artifact\s*>", re.IGNORECASE)
_ATTR_RE = re.compile(r'([A-Za-z_][\w-]*)\s*=\s*"([^"]*)"')
_CODE_FENCE_RE = re.compile(r"^```[\w-]*\s*\n?(.*?)\n?```$", re.DOTALL)

_TAG_OPEN_LITERAL = "<artifact"
_END_TAG_LITERAL = "</artifact>"

DEFAULT_TITLES = {
    "workflow": "Generated Workflow",
    "document": "Generated Document",
    "code": "Generated Code",
    "svg": "Generated Diagram",
}


class ArtifactNotFoundError(KeyError):
    """Unknown artifact or version id."""


class PendingTag(BaseModel):
    """Start tag seen, end tag not yet."""

    type: str = "workflow"
    title: str | None = None


class ExtractionResult(BaseModel):
    display: str
    completed: list[ParsedArtifact] = Field(default_factory=list)
    dropped: int = 0
    pending: PendingTag | None = None


def parse_tag_attributes(tag_text: str) -> dict[str, str]:
    """Attributes of a (possibly incomplete) start tag, keys lower-cased."""
    return {name.lower(): value for name, value in _ATTR_RE.findall(tag_text)}


def _held_back_length(text: str) -> int:
    """Length of a trailing fragment that could still grow into '<artifact'."""
    lowered = text[-len(_TAG_OPEN_LITERAL) :].lower()
    for size in range(min(len(lowered), len(_TAG_OPEN_LITERAL) - 1), 0, -1):
        if _TAG_OPEN_LITERAL.startswith(lowered[-size:]):
            return size
    return 0


def _strip_code_fence(text: str) -> str:
    text = text.strip()
    match = _CODE_FENCE_RE.match(text)
    return match.group(1).strip() if match else text


class ArtifactExtractor:
    """Incremental scanner for tagged artifacts inside one assistant turn.

    Text already shown and completed spans leave ``_tail`` as soon as they are
    scanned, so each token only re-scans an open tag or a held-back fragment.
    A tag still open when a tool call closes the run stays open in the next
    run: its content keeps accumulating and stays hidden until the end tag.
    """

    def __init__(self, supported_types: list[str] | None = None, enabled: bool = True) -> None:
        requested = set(supported_types or DEFAULT_TITLES.keys())
        unknown = requested - DEFAULT_TITLES.keys()
        if unknown:
            logger.warning("Ignoring unknown artifact types: %s", ", ".join(sorted(unknown)))
        self.supported_types = requested & DEFAULT_TITLES.keys()
        self.enabled = enabled
        self._tag_open = False
        self.begin_run()

    def begin_run(self) -> None:
        """Start a new text run after a tool call closed the previous one."""
        self._display = ""
        if self._tag_open:
            self._tag_seen = True
            return
        self._tail = ""
        self._tag_seen = False
        self._end_search_from = 0  # offset into _tail, no end tag before it

    def feed(self, text: str) -> ExtractionResult:
        if not self.enabled:
            self._display += text
            return ExtractionResult(display=self._display)
        self._tail += text
        return self._scan(final=False)

    def finish(self) -> ExtractionResult:
        """Flush held-back characters when the run ends. An open tag stays hidden."""
        if not self.enabled:
            return ExtractionResult(display=self._display)
        return self._scan(final=True)

    def _scan(self, final: bool) -> ExtractionResult:
        completed: list[ParsedArtifact] = []
        dropped = 0
        pending: PendingTag | None = None

        while True:
            opener = _TAG_OPEN_RE.search(self._tail)
            if opener is None:
                held = 0 if final else _held_back_length(self._tail)
                safe = len(self._tail) - held
                self._display += self._tail[:safe]
                self._tail = self._tail[safe:]
                break

            self._tag_seen = True
            if opener.start():
                self._display += self._tail[: opener.start()]
                self._tail = self._tail[opener.start() :]
                self._end_search_from = 0

            start_tag = _START_TAG_RE.match(self._tail)
            if start_tag is None:
                # start tag itself still streaming
                pending = self._pending_from(parse_tag_attributes(self._tail))
                break

            search_from = max(start_tag.end(), self._end_search_from)
            end_tag = _END_TAG_RE.search(self._tail, search_from)
            if end_tag is None:
                pending = self._pending_from(parse_tag_attributes(start_tag.group(1)))
                self._end_search_from = max(start_tag.end(), len(self._tail) - len(_END_TAG_LITERAL))
                break

            attrs_text = start_tag.group(1)
            inner = self._tail[start_tag.end() : end_tag.start()]
            restarts = list(_START_TAG_RE.finditer(inner))
            if restarts:
                # a repeated start tag continues the same artifact
                logger.debug("Artifact start tag repeated %d time(s) before the end tag", len(restarts))
                attrs_text = restarts[-1].group(1)
                inner = inner[restarts[-1].end() :]

            parsed = self._parse(parse_tag_attributes(attrs_text), inner)
            if parsed is None:
                dropped += 1
            else:
                completed.append(parsed)

            self._tail = self._tail[end_tag.end() :]
            self._end_search_from = 0

        self._tag_open = pending is not None
        display = self._display.strip() if self._tag_seen else self._display
        return ExtractionResult(display=display, completed=completed, dropped=dropped, pending=pending)

    def _pending_from(self, attrs: dict[str, str]) -> PendingTag:
        return PendingTag(type=attrs.get("type", "workflow").lower(), title=attrs.get("title") or None)

    def _parse(self, attrs: dict[str, str], inner: str) -> ParsedArtifact | None:
        artifact_type = attrs.get("type", "workflow").lower()
        title = attrs.get("title") or None

        if artifact_type not in self.supported_types:
            logger.warning("Dropping artifact of unsupported type %r", artifact_type)
            return None

        if artifact_type != "workflow":
            return ParsedArtifact(
                type=artifact_type,  # type: ignore[arg-type]
                title=title or DEFAULT_TITLES.get(artifact_type, "Generated Artifact"),
                content=inner.strip(),
            )

        try:
            data: Any = json.loads(_strip_code_fence(inner))
        except json.JSONDecodeError as e:
            logger.warning("Dropping workflow artifact with invalid JSON (%s): %s", e, truncate(inner))
            return None

        if not isinstance(data, dict) or not isinstance(data.get("name"), str) or not isinstance(data.get("nodes"), list):
            logger.warning("Dropping workflow artifact without a name and node list: %s", truncate(inner))
            return None

        return ParsedArtifact(type="workflow", title=title or data["name"] or DEFAULT_TITLES["workflow"], content=data)


# ==============================================================================
# WORKFLOW HELPERS
# ==============================================================================


def content_hash(content: Any) -> str:
    """Stable hash of artifact content, used to skip identical re-emissions."""
    if isinstance(content, str):
        serialized = content
    else:
        serialized = json.dumps(content, sort_keys=True, ensure_ascii=False, default=str)
    return hashlib.sha256(serialized.encode("utf-8")).hexdigest()[:16]


def _node_types(workflow: dict[str, Any]) -> list[str]:
    return [str(node.get("type", "")).lower() for node in workflow.get("nodes", []) if isinstance(node, dict)]


def workflow_complexity(workflow: dict[str, Any]) -> str:
    node_types = _node_types(workflow)
    has_branching = any(t.split(".")[-1] in ("if", "switch", "merge") for t in node_types)
    has_subworkflows = any("subworkflow" in t for t in node_types)
    has_loops = any("splitinbatches" in t for t in node_types)

    if len(node_types) <= 5 and not (has_branching or has_subworkflows or has_loops):
        return "simple"
    if len(node_types) <= 15 and not (has_subworkflows or has_loops):
        return "medium"
    return "complex"


def workflow_category(workflow: dict[str, Any]) -> str:
    node_types = _node_types(workflow)

    def has(*needles: str) -> bool:
        return any(needle in t for t in node_types for needle in needles)

    if has("webhook"):
        return "API Integration"
    if has("schedule", "cron"):
        return "Scheduled Automation"
    if has("email", "slack"):
        return "Communication"
    if has("sheets", "airtable"):
        return "Data Processing"
    if has("github", "gitlab"):
        return "Development"
    if has("wordpress"):
        return "Content Management"
    return "General Automation"


def required_credentials(workflow: dict[str, Any]) -> list[str]:
    found: list[str] = []
    for node in workflow.get("nodes", []):
        if not isinstance(node, dict):
            continue
        for cred in (node.get("credentials") or {}).values():
            name = cred if isinstance(cred, str) else (cred.get("name") if isinstance(cred, dict) else None)
            if isinstance(name, str) and name not in found:
                found.append(name)
    return found


def external_dependencies(workflow: dict[str, Any]) -> list[str]:
    found: list[str] = []
    for node in workflow.get("nodes", []):
        if not isinstance(node, dict):
            continue
        node_type = str(node.get("type", ""))
        if not node_type or node_type == "n8n-nodes-base.start":
            continue
        clean = node_type.replace("n8n-nodes-base.", "").replace("n8n-nodes-", "")
        if clean not in found:
            found.append(clean)
    return found


_USE_CASE_PATTERNS = (
    (("webhook", "slack"), "Webhook to Slack notifications"),
    (("schedule", "email"), "Automated email reporting"),
    (("github", "discord"), "GitHub to Discord integration"),
    (("sheets", "airtable"), "Data synchronization between platforms"),
)


def workflow_use_cases(workflow: dict[str, Any]) -> list[str]:
    node_types = _node_types(workflow)
    use_cases = [
        label
        for needles, label in _USE_CASE_PATTERNS
        if all(any(needle in t for t in node_types) for needle in needles)
    ]
    return use_cases or ["Custom automation workflow"]


def validate_workflow(workflow: dict[str, Any]) -> dict[str, list[str]]:
    """Structural checks on a workflow document: errors, warnings and suggestions."""
    errors: list[str] = []
    warnings: list[str] = []
    suggestions: list[str] = []

    if not workflow.get("name"):
        errors.append("Workflow name is required")

    nodes = [node for node in workflow.get("nodes", []) if isinstance(node, dict)]
    if not nodes:
        errors.append("Workflow must contain at least one node")

    node_names: set[str] = set()
    node_ids: set[str] = set()
    for index, node in enumerate(nodes):
        node_id = node.get("id")
        if node_id is not None:
            if node_id in node_ids:
                errors.append(f"Duplicate node ID found: {node_id}")
            node_ids.add(node_id)
        if not node.get("name"):
            errors.append(f"Node at index {index} is missing a name")
        else:
            node_names.add(node["name"])
        if not node.get("type"):
            errors.append(f"Node at index {index} is missing a type")
        position = node.get("position")
        if not isinstance(position, list | tuple) or len(position) != 2:
            warnings.append(f'Node "{node.get("name", index)}" has invalid position data')

    triggers = [t for t in _node_types(workflow) if "trigger" in t or "webhook" in t]
    if nodes and not triggers:
        warnings.append("Workflow has no trigger nodes - it can only be executed manually")
    if len(triggers) > 1:
        suggestions.append("Consider using a single trigger with conditional logic instead of multiple triggers")

    # connections are keyed by node name in n8n exports
    known = node_names | node_ids
    connections = workflow.get("connections") or {}
    if isinstance(connections, dict):
        for source, outputs in connections.items():
            if source not in known:
                errors.append(f"Connection references non-existent node: {source}")
            if not isinstance(outputs, dict):
                continue
            for branches in outputs.values():
                for branch in branches or []:
                    targets = branch if isinstance(branch, list) else [branch]
                    for target in targets:
                        if isinstance(target, dict) and target.get("node") not in known:
                            errors.append(f"Connection references non-existent target node: {target.get('node')}")

    if len(nodes) > 20:
        suggestions.append("Large workflows may benefit from being split into smaller, reusable workflows")

    return {"errors": errors, "warnings": warnings, "suggestions": suggestions}


def workflow_metadata(workflow: dict[str, Any]) -> dict[str, Any]:
    return {
        "complexity": workflow_complexity(workflow),
        "category": workflow_category(workflow),
        "required_credentials": required_credentials(workflow),
        "external_dependencies": external_dependencies(workflow),
        "use_cases": workflow_use_cases(workflow),
        "validation": validate_workflow(workflow),
    }


# ==============================================================================
# STORE
# ==============================================================================


ArtifactListener = Callable[["Artifact | None"], None]


class ArtifactStore:
    """Owns artifacts for one chat. Turns only keep a weak reference by id."""

    def __init__(self) -> None:
        self._artifacts: dict[str, Artifact] = {}
        self._by_turn: dict[str, str] = {}
        self._placeholders: dict[str, Artifact] = {}
        self._active_id: str | None = None
        self._listeners: list[ArtifactListener] = []

    # ----- observers -----

    def subscribe(self, listener: ArtifactListener) -> None:
        if listener not in self._listeners:
            self._listeners.append(listener)

    def unsubscribe(self, listener: ArtifactListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _notify(self) -> None:
        active = self.active
        for listener in self._listeners:
            try:
                listener(active)
            except Exception as e:
                logger.error(f"Error in artifact listener: {e}")

    # ----- queries -----

    @property
    def active(self) -> Artifact | None:
        if self._active_id is None:
            return None
        if self._active_id in self._artifacts:
            return self._artifacts[self._active_id]
        for placeholder in self._placeholders.values():
            if placeholder.id == self._active_id:
                return placeholder
        return None

    def get(self, artifact_id: str) -> Artifact:
        try:
            return self._artifacts[artifact_id]
        except KeyError:
            raise ArtifactNotFoundError(artifact_id) from None

    def for_turn(self, turn_id: str) -> Artifact | None:
        artifact_id = self._by_turn.get(turn_id)
        return self._artifacts.get(artifact_id) if artifact_id else None

    def placeholder_for(self, turn_id: str) -> Artifact | None:
        return self._placeholders.get(turn_id)

    def all(self) -> list[Artifact]:
        return list(self._artifacts.values())

    # ----- lifecycle -----

    def begin_placeholder(self, turn_id: str, artifact_type: str = "workflow", title: str | None = None) -> Artifact:
        """Show a loading artifact for a tag that is still streaming (one per turn)."""
        existing = self._placeholders.get(turn_id)
        if existing is not None:
            return existing

        placeholder = Artifact(
            type=artifact_type if artifact_type in DEFAULT_TITLES else "workflow",  # type: ignore[arg-type]
            title=title or f"Generating {artifact_type.capitalize()}...",
            description=f"{artifact_type.capitalize()} is being generated, please wait...",
            status="generating",
            turn_id=turn_id,
        )
        self._placeholders[turn_id] = placeholder
        self._active_id = placeholder.id
        log_artifact_event("placeholder", placeholder.id, placeholder.title)
        self._notify()
        return placeholder

    def discard_placeholder(self, turn_id: str) -> None:
        placeholder = self._placeholders.pop(turn_id, None)
        if placeholder is None:
            return
        if self._active_id == placeholder.id:
            committed = self._by_turn.get(turn_id)
            self._active_id = committed
        log_artifact_event("placeholder discarded", placeholder.id, placeholder.title)
        self._notify()

    def commit(self, turn_id: str, parsed: ParsedArtifact) -> Artifact:
        """Create the turn's artifact, or append a version if it already has one."""
        now = datetime.now(UTC)
        digest = content_hash(parsed.content)
        artifact = self.for_turn(turn_id)

        if artifact is not None:
            current = artifact.current_version
            if current is not None and current.content_hash == digest:
                logger.debug("Artifact %s re-emitted unchanged; no new version", artifact.id)
            else:
                version = ArtifactVersion(
                    content=parsed.content,
                    timestamp=now,
                    title=parsed.title or f"Version {len(artifact.versions) + 1}",
                    content_hash=digest,
                )
                artifact.versions.append(version)
                artifact.current_version_id = version.id
                artifact.title = parsed.title
                artifact.updated_at = now
                if parsed.type == "workflow" and isinstance(parsed.content, dict):
                    artifact.metadata = workflow_metadata(parsed.content)
                log_artifact_event(f"version {len(artifact.versions)}", artifact.id, artifact.title)
        else:
            version = ArtifactVersion(content=parsed.content, timestamp=now, title=parsed.title, content_hash=digest)
            artifact = Artifact(
                type=parsed.type,
                title=parsed.title,
                description=self._describe(parsed),
                turn_id=turn_id,
                versions=[version],
                current_version_id=version.id,
                created_at=now,
                updated_at=now,
                metadata=workflow_metadata(parsed.content)
                if parsed.type == "workflow" and isinstance(parsed.content, dict)
                else {},
            )
            self._artifacts[artifact.id] = artifact
            self._by_turn[turn_id] = artifact.id
            log_artifact_event("created", artifact.id, artifact.title)

        # placeholder is replaced in the same step the artifact becomes visible
        self._placeholders.pop(turn_id, None)
        self._active_id = artifact.id
        self._notify()
        return artifact

    def switch_version(self, artifact_id: str, version_id: str) -> Artifact:
        artifact = self.get(artifact_id)
        if not any(v.id == version_id for v in artifact.versions):
            raise ArtifactNotFoundError(version_id)
        artifact.current_version_id = version_id
        artifact.updated_at = datetime.now(UTC)
        self._notify()
        return artifact

    def open(self, artifact_id: str) -> Artifact:
        artifact = self.get(artifact_id)
        self._active_id = artifact.id
        self._notify()
        return artifact

    def close_active(self) -> None:
        self._active_id = None
        self._notify()

    def clear(self) -> None:
        """Destroy every artifact (the owning chat was discarded)."""
        self._artifacts.clear()
        self._by_turn.clear()
        self._placeholders.clear()
        self._active_id = None
        self._notify()

    @staticmethod
    def _describe(parsed: ParsedArtifact) -> str:
        if parsed.type == "workflow" and isinstance(parsed.content, dict):
            return f"Workflow with {len(parsed.content.get('nodes', []))} nodes"
        return f"Generated {parsed.type} artifact"
