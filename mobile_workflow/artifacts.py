"""Feature artifacts on disk.

Layout inside a project:

    <project>/magi-sdd/
        001-offline-sync/
            feature-brief.md
            requirements.md
            PRD.md
        002-push-notifications/
            ...

Feature ids are kebab-case. A new feature gets the next number after the
highest one present; asking for an id that already has a directory reuses it.
"""

from __future__ import annotations

import logging
import os
import re
from enum import Enum

from pydantic import BaseModel, Field

from mobile_workflow import config
from mobile_workflow.execution_limits import WorkflowError
from mobile_workflow.tools.schemas import ModifiedRequirement, Requirement

logger = logging.getLogger(__name__)

_FEATURE_ID = re.compile(r"^[a-z0-9]+(?:-[a-z0-9]+)*$")
_FEATURE_DIR = re.compile(r"^(\d{3})-([a-z0-9]+(?:-[a-z0-9]+)*)$")


class ArtifactError(WorkflowError):
    """Raised for invalid feature ids or unusable artifact locations."""


class Artifact(str, Enum):
    FEATURE_BRIEF = "feature-brief.md"
    REQUIREMENTS = "requirements.md"
    PRD = "PRD.md"


# ---------------------------------------------------------------------------
# Directories
# ---------------------------------------------------------------------------


def artifacts_root(project_path: str) -> str:
    return os.path.join(project_path, config.ARTIFACTS_DIR_NAME)


def ensure_artifacts_root(project_path: str) -> str:
    root = artifacts_root(project_path)
    os.makedirs(root, exist_ok=True)
    return root


def validate_feature_id(feature_id: str) -> str:
    if not feature_id or not _FEATURE_ID.match(feature_id):
        raise ArtifactError(f"Invalid feature id {feature_id!r}: expected kebab-case like 'offline-sync'")
    return feature_id


def _feature_dirs(project_path: str) -> list[tuple[int, str, str]]:
    root = artifacts_root(project_path)
    try:
        entries = sorted(os.listdir(root))
    except FileNotFoundError:
        return []
    found = []
    for entry in entries:
        match = _FEATURE_DIR.match(entry)
        if match and os.path.isdir(os.path.join(root, entry)):
            found.append((int(match.group(1)), match.group(2), entry))
    return found


def list_feature_ids(project_path: str) -> list[str]:
    return [feature_id for _, feature_id, _ in _feature_dirs(project_path)]


def feature_directory(project_path: str, feature_id: str, create: bool = False) -> str | None:
    """Directory for ``feature_id``; created with the next free number when ``create`` is set."""
    validate_feature_id(feature_id)
    dirs = _feature_dirs(project_path)
    for _, existing_id, entry in dirs:
        if existing_id == feature_id:
            return os.path.join(artifacts_root(project_path), entry)
    if not create:
        return None

    number = max((n for n, _, _ in dirs), default=0) + 1
    path = os.path.join(ensure_artifacts_root(project_path), f"{number:03d}-{feature_id}")
    os.makedirs(path, exist_ok=True)
    logger.info("Created feature directory %s", path)
    return path


def artifact_path(project_path: str, feature_id: str, artifact: Artifact, create: bool = False) -> str:
    directory = feature_directory(project_path, feature_id, create=create)
    if directory is None:
        raise ArtifactError(f"No artifact directory for feature {feature_id!r}")
    return os.path.join(directory, artifact.value)


def read_artifact(project_path: str, feature_id: str, artifact: Artifact) -> str:
    """Artifact content, or "" when the feature or file does not exist yet."""
    directory = feature_directory(project_path, feature_id)
    if directory is None:
        return ""
    try:
        with open(os.path.join(directory, artifact.value), encoding="utf-8") as fh:
            return fh.read()
    except FileNotFoundError:
        return ""


def write_artifact(project_path: str, feature_id: str, artifact: Artifact, content: str) -> str:
    path = artifact_path(project_path, feature_id, artifact, create=True)
    with open(path, "w", encoding="utf-8") as fh:
        fh.write(content)
    logger.debug("Wrote %s (%d chars)", path, len(content))
    return path


# ---------------------------------------------------------------------------
# Requirements document
# ---------------------------------------------------------------------------


class ReviewEntry(BaseModel):
    summary: str = ""
    approved_ids: list[str] = Field(default_factory=list)
    rejected_ids: list[str] = Field(default_factory=list)
    modified_ids: list[str] = Field(default_factory=list)


class RequirementsDocument(BaseModel):
    """The reviewed requirements for one feature, as kept in requirements.md."""

    feature_id: str
    pending_requirements: list[Requirement] = Field(default_factory=list)
    approved_requirements: list[Requirement] = Field(default_factory=list)
    modified_requirements: list[ModifiedRequirement] = Field(default_factory=list)
    rejected_requirements: list[Requirement] = Field(default_factory=list)
    review_history: list[ReviewEntry] = Field(default_factory=list)

    def add_pending(self, requirements: list[Requirement]) -> None:
        known = {r.id for r in self.pending_requirements}
        for req in requirements:
            if req.id in known:
                self.pending_requirements = [req if r.id == req.id else r for r in self.pending_requirements]
            else:
                self.pending_requirements.append(req)
                known.add(req.id)

    def merge_review(
        self,
        approved: list[Requirement],
        rejected: list[Requirement],
        modified: list[ModifiedRequirement],
        summary: str,
    ) -> None:
        """Fold one review into the document; later decisions on an id replace earlier ones."""
        self.approved_requirements = _merge_by_id(self.approved_requirements, approved)
        self.rejected_requirements = _merge_by_id(self.rejected_requirements, rejected)
        self.modified_requirements = _merge_by_id(self.modified_requirements, modified)
        decided = {r.id for r in approved} | {r.id for r in rejected} | {r.id for r in modified}
        decided |= {r.original_id for r in modified if r.original_id}
        self.pending_requirements = [r for r in self.pending_requirements if r.id not in decided]
        self.review_history.append(
            ReviewEntry(
                summary=summary or "No summary provided for this review.",
                approved_ids=[r.id for r in approved],
                rejected_ids=[r.id for r in rejected],
                modified_ids=[r.id for r in modified],
            )
        )

    def to_markdown(self) -> str:
        lines = ["# Requirements", "", f"**Feature ID:** {self.feature_id}", ""]
        sections = (
            ("Pending Requirements", self.pending_requirements, "Pending Review"),
            ("Approved Requirements", self.approved_requirements, "Approved"),
            ("Modified Requirements", self.modified_requirements, "Approved (Modified)"),
            ("Rejected Requirements", self.rejected_requirements, "Rejected"),
        )
        for title, reqs, status in sections:
            if not reqs:
                continue
            lines += [f"## {title}", ""]
            for req in reqs:
                lines.append(f"### {req.id}: {req.title}")
                if isinstance(req, ModifiedRequirement) and req.original_id:
                    lines.append(f"- **Original ID**: {req.original_id}")
                lines.append(f"- **Priority**: {req.priority}")
                lines.append(f"- **Category**: {req.category}")
                lines.append(f"- **Description**: {req.description}")
                if isinstance(req, ModifiedRequirement) and req.modification_notes:
                    lines.append(f"- **Modification Notes**: {req.modification_notes}")
                lines += [f"- **Status**: {status}", ""]
        if self.review_history:
            lines += ["## Review History", ""]
            for number, entry in enumerate(self.review_history, start=1):
                lines.append(f"### Review {number}")
                lines.append(f"- **Summary**: {entry.summary}")
                for label, ids in (
                    ("Approved IDs", entry.approved_ids),
                    ("Rejected IDs", entry.rejected_ids),
                    ("Modified IDs", entry.modified_ids),
                ):
                    if ids:
                        lines.append(f"- **{label}**: {', '.join(ids)}")
                lines.append("")
        return "\n".join(lines)

    @classmethod
    def from_markdown(cls, text: str, feature_id: str) -> "RequirementsDocument":
        doc = cls(feature_id=feature_id)
        for section in re.split(r"^## ", text, flags=re.MULTILINE)[1:]:
            title, _, body = section.partition("\n")
            title = title.strip()
            if title == "Review History":
                doc.review_history = _parse_history(body)
                continue
            target = {
                "Pending Requirements": "pending_requirements",
                "Approved Requirements": "approved_requirements",
                "Modified Requirements": "modified_requirements",
                "Rejected Requirements": "rejected_requirements",
            }.get(title)
            if target is None:
                continue
            model = ModifiedRequirement if target == "modified_requirements" else Requirement
            setattr(doc, target, [model(**fields) for fields in _parse_blocks(body)])
        return doc


def _merge_by_id(existing: list, incoming: list) -> list:
    merged = {r.id: r for r in existing}
    for req in incoming:
        merged[req.id] = req
    return list(merged.values())


_FIELD_LINE = re.compile(r"^- \*\*(.+?)\*\*:\s*(.*)$")
_FIELD_NAMES = {
    "Priority": "priority",
    "Category": "category",
    "Description": "description",
    "Original ID": "original_id",
    "Modification Notes": "modification_notes",
}


def _parse_blocks(body: str) -> list[dict]:
    blocks = []
    for block in re.split(r"^### ", body, flags=re.MULTILINE)[1:]:
        header, _, rest = block.partition("\n")
        req_id, sep, title = header.partition(":")
        if not sep:
            continue
        fields: dict = {"id": req_id.strip(), "title": title.strip()}
        for line in rest.splitlines():
            match = _FIELD_LINE.match(line.strip())
            if match and match.group(1) in _FIELD_NAMES:
                fields[_FIELD_NAMES[match.group(1)]] = match.group(2).strip()
        if fields.get("priority", "medium").lower() not in ("high", "medium", "low"):
            fields["priority"] = "medium"
        elif "priority" in fields:
            fields["priority"] = fields["priority"].lower()
        blocks.append(fields)
    return blocks


def _parse_history(body: str) -> list[ReviewEntry]:
    entries = []
    for block in re.split(r"^### ", body, flags=re.MULTILINE)[1:]:
        entry = ReviewEntry()
        for line in block.splitlines()[1:]:
            match = _FIELD_LINE.match(line.strip())
            if not match:
                continue
            label, value = match.group(1), match.group(2).strip()
            ids = [i.strip() for i in value.split(",") if i.strip()]
            if label == "Summary":
                entry.summary = value
            elif label == "Approved IDs":
                entry.approved_ids = ids
            elif label == "Rejected IDs":
                entry.rejected_ids = ids
            elif label == "Modified IDs":
                entry.modified_ids = ids
        entries.append(entry)
    return entries
