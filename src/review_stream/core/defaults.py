# src/review_stream/core/defaults.py
"""
Default review form used to initialize the form skeleton.

The merge engine never hardcodes this; sessions inject it (or a custom
document) when they are created.
"""
import copy
from typing import Any, Dict

from review_stream.core.form_models import FormDocument

DEFAULT_REVIEW_FORM: Dict[str, Any] = {
    "title": "Review Opinion Form",
    "projectInfo": {
        "projectTitle": "",
        "projectType": "",
        "researchField": "",
        "applicantName": "",
        "applicationId": ""
    },
    "evaluationSections": [
        {
            "id": "applicantQualification",
            "title": "Agent Familiarity",
            "options": ["Familiar", "Somewhat Familiar", "Not Familiar"],
            "required": True,
            "aiRecommendation": "",
            "aiReason": ""
        },
        {
            "id": "significance",
            "title": "Overall Evaluation",
            "options": ["Excellent", "Good", "Average", "Poor"],
            "required": True,
            "aiRecommendation": "",
            "aiReason": ""
        },
        {
            "id": "relationshipExplanation",
            "title": "Funding Opinion",
            "description": "Please select the appropriate relationship description",
            "options": ["Priority Funding", "Fundable", "Not Recommended for Funding"],
            "required": True,
            "aiRecommendation": "",
            "aiReason": ""
        }
    ],
    "textualEvaluations": [
        {
            "id": "scientificValue",
            "title": "Scientific Evaluation Description",
            "placeholder": "Please enter scientific evaluation description",
            "required": True,
            "aiRecommendation": "",
            "minLength": 800
        },
        {
            "id": "socialDevelopment",
            "title": "Does the project meet economic and social development needs or address "
                     "important scientific issues at the frontier of science?",
            "placeholder": "Please enter your evaluation opinion",
            "required": True,
            "aiRecommendation": "",
            "minLength": 800
        },
        {
            "id": "innovation",
            "title": "Please evaluate the innovation of the scientific issues described in the "
                     "application and the academic value of the expected results",
            "placeholder": "Please enter your evaluation opinion",
            "required": True,
            "aiRecommendation": "",
            "minLength": 800
        },
        {
            "id": "feasibility",
            "title": "Please detail the research foundation and feasibility of the project. "
                     "If possible, please suggest improvements to the research plan.",
            "placeholder": "Please enter your evaluation opinion",
            "required": True,
            "aiRecommendation": "",
            "minLength": 800
        },
        {
            "id": "otherSuggestions",
            "title": "Other Suggestions",
            "placeholder": "Please enter other suggestions",
            "required": False,
            "aiRecommendation": "",
            "minLength": 800
        }
    ]
}


def default_form_document() -> FormDocument:
    """A fresh copy of the default review form."""
    return FormDocument.from_dict(copy.deepcopy(DEFAULT_REVIEW_FORM))
