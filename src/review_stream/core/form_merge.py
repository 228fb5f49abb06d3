# src/review_stream/core/form_merge.py
"""
Reconcile streamed structured updates into the canonical review form.

Merging works on the wire (dict) form of the document: the current document
is serialized, the incoming fields are folded in, and the result is parsed
back into a FormDocument. Partial updates only touch fields that are present
in the update; complete updates may replace list fields wholesale.

Merging never raises. A malformed field is skipped with a warning and the
remaining fields are still merged.
"""
import copy
import logging
from typing import Any, Callable, Dict, List, Optional

from review_stream.core.form_models import (
    FORM_KEYS,
    EvaluationSection,
    FormDocument,
    MergeMode,
    TextualEvaluation,
)
from review_stream.core.json_repair import normalize_incoming
from review_stream.core.text_utils import preview

logger = logging.getLogger(__name__)

WarningHandler = Callable[[str], None]
UpdateCallback = Callable[[FormDocument, MergeMode], None]

LIST_FIELDS = {
    'evaluationSections': EvaluationSection,
    'textualEvaluations': TextualEvaluation,
}

# Keys of the plain paper-review JSON some backends return instead of form data
REVIEW_JSON_KEYS = ("authors", "abstract", "keywords", "evaluation", "comments")


def _warn(handler: Optional[WarningHandler], message: str):
    logger.warning(message)
    if handler:
        handler(message)


def has_form_keys(data: Dict[str, Any]) -> bool:
    return any(key in data for key in FORM_KEYS)


# ============================================================================
# LIST RECONCILIATION
# ============================================================================

def merge_items(
        existing: List[Dict[str, Any]],
        incoming: List[Any],
        model,
        on_warning: Optional[WarningHandler] = None
) -> List[Dict[str, Any]]:
    """
    Element-wise reconcile `incoming` into `existing` by id.

    Matching entries have the incoming fields overwritten and keep the rest.
    New ids are appended. Entries without an id are appended unless an equal
    entry is already present.
    """
    merged = [dict(item) for item in existing]
    positions = {
        str(item['id']): pos
        for pos, item in enumerate(merged)
        if item.get('id') not in (None, "")
    }

    for item in incoming:
        if not isinstance(item, dict):
            _warn(on_warning, f"Skipping invalid {model.__name__} entry: {preview(repr(item), 80)}")
            continue

        item_id = item.get('id')
        if item_id in (None, ""):
            normalized = model.from_dict(item).to_dict()
            if normalized not in merged:
                merged.append(normalized)
            continue

        key = str(item_id)
        if key in positions:
            merged[positions[key]].update(copy.deepcopy(item))
        else:
            positions[key] = len(merged)
            merged.append(copy.deepcopy(item))

    return merged


def merge_form_data(
        current: Dict[str, Any],
        incoming: Dict[str, Any],
        mode: MergeMode = MergeMode.PARTIAL,
        on_warning: Optional[WarningHandler] = None
) -> Dict[str, Any]:
    """Fold `incoming` into a copy of `current` (both in wire form)."""
    result = copy.deepcopy(current)

    # Title
    title = incoming.get('title', incoming.get('formTitle'))
    if title is not None:
        if isinstance(title, str):
            if title.strip():
                result['title'] = title
        else:
            _warn(on_warning, f"Ignoring non-string title: {preview(repr(title), 80)}")

    # Project info: shallow merge
    if 'projectInfo' in incoming:
        info = incoming['projectInfo']
        if isinstance(info, dict):
            project_info = dict(result.get('projectInfo') or {})
            for key, value in info.items():
                if value is None or isinstance(value, (dict, list)):
                    _warn(on_warning, f"Skipping invalid projectInfo.{key}: {preview(repr(value), 80)}")
                    continue
                project_info[str(key)] = value
            result['projectInfo'] = project_info
        else:
            _warn(on_warning, f"projectInfo is not an object: {preview(repr(info), 80)}")

    # Sections and textual evaluations
    for key, model in LIST_FIELDS.items():
        if key not in incoming:
            continue
        items = incoming[key]
        if not isinstance(items, list):
            _warn(on_warning, f"{key} is not a list: {preview(repr(items), 80)}")
            continue

        if mode is MergeMode.COMPLETE and items:
            result[key] = merge_items([], items, model, on_warning)
        else:
            result[key] = merge_items(result.get(key) or [], items, model, on_warning)

    return result


# ============================================================================
# PAPER-REVIEW JSON
# ============================================================================

def _find_target(items: List[Dict[str, Any]], key: str) -> Optional[Dict[str, Any]]:
    for item in items:
        if item.get('id') == key:
            return item
    for item in items:
        if key.lower() in str(item.get('title', '')).lower():
            return item
    return None


def transform_review_json(api_json: Dict[str, Any], reference: Dict[str, Any]) -> Dict[str, Any]:
    """
    Map a plain paper-review result onto form fields.

    `reference` is the current document in wire form; its section ids decide
    where evaluation scores and texts land.
    """
    update: Dict[str, Any] = {}
    info: Dict[str, str] = {}

    title = api_json.get('title')
    if isinstance(title, str) and title.strip():
        info['projectTitle'] = title
    authors = api_json.get('authors')
    if isinstance(authors, list) and authors:
        info['applicantName'] = ", ".join(str(a) for a in authors)
    keywords = api_json.get('keywords')
    if isinstance(keywords, list) and keywords:
        info['researchField'] = ", ".join(str(k) for k in keywords)
    if info:
        update['projectInfo'] = info

    sections = reference.get('evaluationSections') or []
    evaluations = reference.get('textualEvaluations') or []
    section_updates: Dict[str, str] = {}
    texts: Dict[str, List[str]] = {}

    def add_text(target: Optional[Dict[str, Any]], label: str, text: str):
        if target is not None and target.get('id'):
            texts.setdefault(str(target['id']), []).append(f"**{label}**: {text}")

    evaluation = api_json.get('evaluation')
    if isinstance(evaluation, dict):
        for key, value in evaluation.items():
            if isinstance(value, bool) or not isinstance(value, (str, int, float)):
                continue
            target = _find_target(sections, key)
            if target is not None and target.get('id'):
                section_updates[str(target['id'])] = str(value)

        recommendation = evaluation.get('recommendation')
        if isinstance(recommendation, str) and recommendation.strip():
            add_text(_find_target(evaluations, 'overall'), "Overall Evaluation", recommendation)

    abstract = api_json.get('abstract')
    if isinstance(abstract, str) and abstract.strip():
        target = _find_target(evaluations, 'abstract') or (evaluations[0] if evaluations else None)
        add_text(target, "Abstract", abstract)

    comments = api_json.get('comments')
    if isinstance(comments, str) and comments.strip():
        target = _find_target(evaluations, 'comments') or (evaluations[1] if len(evaluations) > 1 else None)
        add_text(target, "Detailed Comments", comments)

    if section_updates:
        update['evaluationSections'] = [
            {'id': sid, 'aiRecommendation': value} for sid, value in section_updates.items()
        ]
    if texts:
        update['textualEvaluations'] = [
            {'id': eid, 'aiRecommendation': "\n\n".join(parts)} for eid, parts in texts.items()
        ]
    return update


def is_review_json(data: Dict[str, Any]) -> bool:
    structural = ('formTitle', 'projectInfo', 'evaluationSections', 'textualEvaluations')
    return not any(k in data for k in structural) and any(k in data for k in REVIEW_JSON_KEYS)


# ============================================================================
# ENGINE
# ============================================================================

class FormMergeEngine:
    """Own the canonical FormDocument and apply merges to it."""

    def __init__(
            self,
            default_document: Optional[FormDocument] = None,
            on_warning: Optional[WarningHandler] = None
    ):
        self.default_document = default_document
        self.on_warning = on_warning
        self.document = FormDocument.empty()
        self.structure_initialized = False
        self._callback: Optional[UpdateCallback] = None

    def register_update_callback(self, callback: Optional[UpdateCallback]):
        """Set the single callback invoked with every changed document."""
        self._callback = callback

    def reset(self):
        """Back to the uninitialized skeleton."""
        self.document = FormDocument.empty()
        self.structure_initialized = False

    def _initial_skeleton(self, current: Dict[str, Any]) -> Dict[str, Any]:
        """Fill list fields from the default document, keeping entries merged so far."""
        if self.default_document is None:
            return current

        defaults = self.default_document.to_dict()
        skeleton = copy.deepcopy(current)
        for key, model in LIST_FIELDS.items():
            # Blank fields of entries merged so far must not mask the defaults
            blank = model(id=None).to_dict()
            received = [
                {k: v for k, v in item.items() if k == 'id' or blank.get(k, object()) != v}
                for item in current.get(key) or []
            ]
            skeleton[key] = merge_items(defaults[key], received, model)
        if not skeleton.get('title'):
            skeleton['title'] = defaults['title']
        return skeleton

    def merge(self, incoming: Any, mode: MergeMode = MergeMode.PARTIAL) -> bool:
        """
        Merge `incoming` (object or JSON text) into the document.

        Returns True when the document changed. The registered callback is
        only invoked on change.
        """
        if incoming is None or incoming == "" or incoming == {}:
            return False

        data = normalize_incoming(incoming)
        current = self.document.to_dict()

        if is_review_json(data):
            logger.info("Transforming paper-review JSON into form fields")
            data = transform_review_json(data, current)

        if not has_form_keys(data):
            _warn(self.on_warning, f"Update has no form fields: {preview(repr(data))}")
            return False

        initializing = mode is MergeMode.COMPLETE and not self.structure_initialized
        try:
            base = self._initial_skeleton(current) if initializing else current
            merged = merge_form_data(base, data, mode, self.on_warning)
            updated = FormDocument.from_dict(merged)
        except Exception as e:
            logger.error(f"Form merge failed: {e}")
            _warn(self.on_warning, f"Form merge failed: {e}")
            return False

        if initializing:
            self.structure_initialized = True
            logger.info("Form structure initialized")

        if updated == self.document:
            logger.debug("Merged document unchanged, skipping update")
            return False

        self.document = updated
        logger.debug(f"Form document updated ({mode.value})")
        if self._callback:
            self._callback(updated, mode)
        return True
