"""
Parsers for the structured blocks the AI coach embeds in its replies.

The model returns prose with fenced code blocks such as::

    ```adli-scores
    {"approach": 70, "deployment": 60, "learning": 45, "integration": 65}
    ```

Each ``parse_*`` function returns ``(data, cleaned_text)``: the decoded block
(or an empty value when absent or malformed) and the text with the block
removed. ``coach-suggestions`` is matched greedily up to the LAST closing
fence so nested fences (e.g. mermaid in a workflow suggestion) survive.
"""

import json
import re

FIELD_LABELS = {
    "charter": "Charter",
    "adli_approach": "ADLI: Approach",
    "adli_deployment": "ADLI: Deployment",
    "adli_learning": "ADLI: Learning",
    "adli_integration": "ADLI: Integration",
    "workflow": "Process Map",
}

BLOCK_TYPES = (
    "adli-scores", "coach-suggestions", "adli-suggestion",
    "proposed-tasks", "metric-suggestions", "survey-questions",
)

# Greedy blocks may contain nested fences.
_GREEDY = ("coach-suggestions", "adli-suggestion")

_PARTIAL_KINDS = (
    ("adli-scores", "scores"),
    ("coach-suggestions", "suggestions"),
    ("proposed-tasks", "tasks"),
    ("metric-suggestions", "metrics"),
    ("survey-questions", "survey-questions"),
)


def _body_pattern(block):
    body = r"([\s\S]*)" if block in _GREEDY else r"([\s\S]*?)"
    return re.compile(r"```" + re.escape(block) + r"\s*\n" + body + r"\n```")


def _strip_pattern(block):
    body = r"[\s\S]*" if block in _GREEDY else r"[\s\S]*?"
    return re.compile(r"```" + re.escape(block) + r"\s*\n" + body + r"\n```\s*\n?")


def _parse_block(text, block, empty):
    match = _body_pattern(block).search(text)
    if not match:
        return empty, text
    try:
        data = json.loads(match.group(1))
    except ValueError:
        return empty, text
    return data, _strip_pattern(block).sub("", text, count=1).strip()


def parse_adli_scores(text):
    """``({approach, deployment, learning, integration} | None, cleaned_text)``."""
    return _parse_block(text, "adli-scores", None)


def parse_coach_suggestions(text):
    """Coach suggestions, falling back to the single-suggestion legacy block."""
    if _body_pattern("coach-suggestions").search(text):
        suggestions, cleaned = _parse_block(text, "coach-suggestions", [])
        return suggestions, cleaned

    old, _ = _parse_block(text, "adli-suggestion", None)
    if isinstance(old, dict) and old.get("field"):
        cleaned = _strip_pattern("adli-suggestion").sub("", text).strip()
        field = old["field"]
        return [{
            "id": "legacy",
            "field": field,
            "priority": "important",
            "effort": "moderate",
            "title": f"Update {FIELD_LABELS.get(field, field)}",
            "whyMatters": "AI-suggested improvement for this section.",
            "preview": "Apply the suggested content to this section.",
            "content": old.get("content"),
        }], cleaned
    return [], text


def parse_proposed_tasks(text):
    return _parse_block(text, "proposed-tasks", [])


def parse_metric_suggestions(text):
    return _parse_block(text, "metric-suggestions", [])


def parse_survey_questions(text):
    return _parse_block(text, "survey-questions", [])


def strip_partial_blocks(text):
    """Remove complete blocks and any block still being streamed."""
    cleaned = text
    for block in BLOCK_TYPES:
        cleaned = _strip_pattern(block).sub("", cleaned)
    for block in BLOCK_TYPES:
        cleaned = re.sub(r"```" + re.escape(block) + r"[\s\S]*$", "", cleaned)
    return cleaned.strip()


def has_partial_block(text):
    """Kind of the block that has opened but not closed yet, or None."""
    for block, kind in _PARTIAL_KINDS:
        if re.search(r"```" + re.escape(block) + r"(?![\s\S]*?```)[\s\S]*$", text):
            return kind
    return None


def parse_question_list(text):
    """Survey questions from the survey designer's reply.

    Accepts a bare JSON array, one wrapped in a ```json fence, or a
    ``survey-questions`` block. Raises ``ValueError`` when no array is found.
    """
    questions, _ = parse_survey_questions(text)
    if questions:
        return questions
    cleaned = text.strip()
    if cleaned.startswith("```"):
        cleaned = re.sub(r"^```(?:json)?\s*", "", cleaned)
        cleaned = re.sub(r"\s*```$", "", cleaned)
    data = json.loads(cleaned)
    if not isinstance(data, list):
        raise ValueError("expected a JSON array of questions")
    return data


def parse_reply(text):
    """Split a complete coach reply into prose and its structured blocks.

    A block left open (the reply hit the token limit) is dropped from
    ``message`` and its kind reported as ``incompleteBlock``.
    """
    scores, text = parse_adli_scores(text)
    suggestions, text = parse_coach_suggestions(text)
    tasks, text = parse_proposed_tasks(text)
    metrics, text = parse_metric_suggestions(text)
    questions, text = parse_survey_questions(text)
    return {
        "message": strip_partial_blocks(text),
        "scores": scores,
        "suggestions": suggestions,
        "proposedTasks": tasks,
        "metricSuggestions": metrics,
        "surveyQuestions": questions,
        "incompleteBlock": has_partial_block(text),
    }
