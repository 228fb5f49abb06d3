# src/review_stream/core/form_models.py
"""
Data models for the review stream engine.

All sync - no async needed for data structures. These models represent the
canonical review form document, the transient state of one analysis run and
the log entries shown in the analysis panel.

Designed for JSON serialization with to_dict()/from_dict() methods. The
dictionary form uses the wire (camelCase) keys the analysis backend sends.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Any
from enum import Enum
from datetime import datetime, timezone
import logging

logger = logging.getLogger(__name__)


# ============================================================================
# ENUMS
# ============================================================================

class SessionPhase(str, Enum):
    """Lifecycle phase of an analysis run."""
    IDLE = "idle"
    AWAITING = "awaiting"    # Request in flight
    STREAMING = "streaming"  # First byte received
    COMPLETE = "complete"
    FAILED = "failed"


class MergeMode(str, Enum):
    """How an incoming structured update is reconciled."""
    PARTIAL = "partial"    # Only overwrite fields present in the update
    COMPLETE = "complete"  # Authoritative; may replace list fields wholesale


PROJECT_INFO_KEYS = (
    "projectTitle",
    "projectType",
    "researchField",
    "applicantName",
    "applicationId",
)

# Top-level keys that identify a payload as form data
FORM_KEYS = ("title", "formTitle", "projectInfo", "evaluationSections", "textualEvaluations")


# ============================================================================
# COERCION HELPERS
# ============================================================================

def _as_text(value: Any, default: str = "") -> str:
    if value is None:
        return default
    if isinstance(value, str):
        return value
    return str(value)


def _as_optional_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    return _as_text(value)


def _as_bool(value: Any, default: bool) -> bool:
    if value is None:
        return default
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "y")
    return bool(value)


def _as_min_length(value: Any) -> int:
    try:
        return max(0, int(value))
    except (TypeError, ValueError):
        logger.warning(f"Ignoring invalid minLength: {value!r}")
        return 0


def _as_options(value: Any) -> List[str]:
    """Ordered, de-duplicated list of option labels."""
    if value is None:
        return []
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, (list, tuple)):
        logger.warning(f"Ignoring invalid options: {value!r}")
        return []
    options: List[str] = []
    for item in value:
        label = _as_text(item)
        if label not in options:
            options.append(label)
    return options


# ============================================================================
# FORM DOCUMENT
# ============================================================================

@dataclass
class EvaluationSection:
    """A multiple-choice evaluation section of the review form."""
    id: Optional[str]
    title: str = ""
    required: bool = False
    options: List[str] = field(default_factory=list)
    description: Optional[str] = None
    ai_recommendation: Optional[str] = None
    ai_reason: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    _KNOWN = ("id", "title", "required", "options", "description", "aiRecommendation", "aiReason")

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        data: Dict[str, Any] = dict(self.extra)
        if self.id is not None:
            data['id'] = self.id
        data['title'] = self.title
        data['required'] = self.required
        data['options'] = list(self.options)
        if self.description is not None:
            data['description'] = self.description
        if self.ai_recommendation is not None:
            data['aiRecommendation'] = self.ai_recommendation
        if self.ai_reason is not None:
            data['aiReason'] = self.ai_reason
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'EvaluationSection':
        """Create from dictionary."""
        return cls(
            id=_as_optional_text(data.get('id')),
            title=_as_text(data.get('title')),
            required=_as_bool(data.get('required'), False),
            options=_as_options(data.get('options')),
            description=_as_optional_text(data.get('description')),
            ai_recommendation=_as_optional_text(data.get('aiRecommendation')),
            ai_reason=_as_optional_text(data.get('aiReason')),
            extra={k: v for k, v in data.items() if k not in cls._KNOWN}
        )


@dataclass
class TextualEvaluation:
    """A free-text evaluation question of the review form."""
    id: Optional[str]
    title: str = ""
    placeholder: str = ""
    required: bool = False
    min_length: int = 0
    ai_recommendation: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    _KNOWN = ("id", "title", "placeholder", "required", "minLength", "aiRecommendation")

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        data: Dict[str, Any] = dict(self.extra)
        if self.id is not None:
            data['id'] = self.id
        data['title'] = self.title
        data['placeholder'] = self.placeholder
        data['required'] = self.required
        data['minLength'] = self.min_length
        if self.ai_recommendation is not None:
            data['aiRecommendation'] = self.ai_recommendation
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'TextualEvaluation':
        """Create from dictionary."""
        return cls(
            id=_as_optional_text(data.get('id')),
            title=_as_text(data.get('title')),
            placeholder=_as_text(data.get('placeholder')),
            required=_as_bool(data.get('required'), False),
            min_length=_as_min_length(data.get('minLength', 0)),
            ai_recommendation=_as_optional_text(data.get('aiRecommendation')),
            extra={k: v for k, v in data.items() if k not in cls._KNOWN}
        )


@dataclass
class FormDocument:
    """The canonical, renderer-facing review form."""
    title: str = ""
    project_info: Dict[str, str] = field(default_factory=lambda: {k: "" for k in PROJECT_INFO_KEYS})
    evaluation_sections: List[EvaluationSection] = field(default_factory=list)
    textual_evaluations: List[TextualEvaluation] = field(default_factory=list)

    @classmethod
    def empty(cls) -> 'FormDocument':
        """The uninitialized skeleton: empty project info and no sections."""
        return cls()

    def section(self, section_id: str) -> Optional[EvaluationSection]:
        for section in self.evaluation_sections:
            if section.id == section_id:
                return section
        return None

    def evaluation(self, evaluation_id: str) -> Optional[TextualEvaluation]:
        for evaluation in self.textual_evaluations:
            if evaluation.id == evaluation_id:
                return evaluation
        return None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            'title': self.title,
            'projectInfo': dict(self.project_info),
            'evaluationSections': [s.to_dict() for s in self.evaluation_sections],
            'textualEvaluations': [e.to_dict() for e in self.textual_evaluations]
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'FormDocument':
        """Create from dictionary. Malformed entries are dropped with a warning."""
        project_info = {k: "" for k in PROJECT_INFO_KEYS}
        raw_info = data.get('projectInfo')
        if isinstance(raw_info, dict):
            project_info.update({str(k): _as_text(v) for k, v in raw_info.items()})

        sections = []
        for item in data.get('evaluationSections') or []:
            if isinstance(item, dict):
                sections.append(EvaluationSection.from_dict(item))
            else:
                logger.warning(f"Dropping invalid evaluation section: {item!r}")

        evaluations = []
        for item in data.get('textualEvaluations') or []:
            if isinstance(item, dict):
                evaluations.append(TextualEvaluation.from_dict(item))
            else:
                logger.warning(f"Dropping invalid textual evaluation: {item!r}")

        title = data.get('title')
        if title is None:
            title = data.get('formTitle')

        return cls(
            title=_as_text(title),
            project_info=project_info,
            evaluation_sections=sections,
            textual_evaluations=evaluations
        )


# ============================================================================
# SESSION STATE
# ============================================================================

def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class LogEntry:
    """One line (or one growing block) of the analysis log."""
    kind: str
    text: str
    timestamp: str = field(default_factory=_now_iso)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            'timestamp': self.timestamp,
            'kind': self.kind,
            'text': self.text
        }


@dataclass
class StreamSession:
    """Transient state of one analysis run."""
    phase: SessionPhase = SessionPhase.IDLE
    progress: float = 0.0  # 0-100 percentage
    status_message: str = ""
    reasoning_text: str = ""
    final_content: str = ""
    json_structure_text: str = ""
    json_complete_ready: bool = False
    error: Optional[str] = None
    file_path: Optional[str] = None
    generation: int = 0
    started_at: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            'phase': self.phase.value,
            'progress': self.progress,
            'status_message': self.status_message,
            'reasoning_text': self.reasoning_text,
            'final_content': self.final_content,
            'json_structure_text': self.json_structure_text,
            'json_complete_ready': self.json_complete_ready,
            'error': self.error,
            'file_path': self.file_path,
            'generation': self.generation,
            'started_at': self.started_at
        }
