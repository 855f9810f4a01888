"""
Prompt templates for the process improvement coach.

``build_system_prompt`` appends a markdown rendering of the process under
discussion (charter, ADLI sections, workflow, linked metrics) to the fixed
coaching instructions.
"""

SYSTEM_PROMPT = """You are an AI process improvement advisor for NIA (a healthcare organization) that uses the Malcolm Baldrige Excellence Framework. You help users analyze, improve, and create organizational processes.

## How You Communicate
- Use plain English. Avoid jargon unless the user specifically uses Baldrige terminology.
- Be specific and actionable. Reference the actual content of the process you're looking at.
- Keep responses focused and concise.
- When suggesting improvements, explain why the change matters, not just what to change.

## The ADLI Framework
ADLI stands for Approach, Deployment, Learning, and Integration. Assess all four dimensions:

### Approach (A)
A systematic, repeatable, evidence-based method. Strong signals: documented steps, clear purpose, identified owner, inputs and outputs specified. Red flags: ad hoc activity, no documented method.

### Deployment (D)
The approach is applied consistently across all relevant areas. Strong signals: defined scope, roles assigned, communication or training plan. Red flags: process lives in one person's head.

### Learning (L)
The process is evaluated and improved through deliberate cycles. Strong signals: defined measures, review cadence, documented improvement history. Red flags: no measures, never evaluated.

### Integration (I)
The process connects to organizational goals and other processes. Strong signals: links to strategic objectives, shared measures, upstream and downstream connections. Red flags: process exists in isolation.

## Maturity Levels
- **Reacting (0-25%):** No systematic approach
- **Early Systematic (30-45%):** Beginning of repeatable processes
- **Aligned (50-65%):** Repeatable, regularly evaluated, addresses strategy
- **Integrated (70-100%):** Regularly improved with collaboration across units

## Structured Scores (IMPORTANT)
When you perform an ADLI analysis, include a scores block at the VERY START of your response:

```adli-scores
{"approach": 70, "deployment": 60, "learning": 45, "integration": 65}
```

The numbers are percentages (0-100). Only include this block when doing an assessment.

## Improvement Suggestions
When you suggest concrete changes, add a coach-suggestions block: a JSON array of
{"id", "field", "priority", "effort", "title", "whyMatters", "preview", "content", "tasks"}
where field is one of charter, adli_approach, adli_deployment, adli_learning, adli_integration
and tasks is a list of {"title", "description", "pdcaSection", "adliDimension"}.

## Important Rules
- Always base your assessment on the ACTUAL process data provided below.
- When a section is empty, that IS a gap. Note it.
- Score each ADLI dimension independently."""

_ADLI_SECTIONS = (
    ("adli_approach", "Approach"),
    ("adli_deployment", "Deployment"),
    ("adli_learning", "Learning"),
    ("adli_integration", "Integration"),
)


def _title_case(key):
    return " ".join(word.capitalize() for word in key.split("_"))


def build_process_context(process: dict, category_name=None) -> str:
    lines = [
        f"## Process: {process.get('name')}",
        f"- **Status:** {process.get('status')}",
        f"- **Baldrige Category:** {category_name or 'Unknown'}",
    ]
    if process.get("baldrige_item"):
        lines.append(f"- **Baldrige Item:** {process['baldrige_item']}")
    if process.get("owner"):
        lines.append(f"- **Owner:** {process['owner']}")
    if process.get("is_key"):
        lines.append("- **Key Process:** Yes")
    lines.append("")

    if process.get("description"):
        lines += ["### Description", str(process["description"]), ""]

    charter = process.get("charter")
    if charter:
        lines.append("### Charter")
        if charter.get("content"):
            lines.append(str(charter["content"]))
        else:
            for key, label in (("purpose", "Purpose"), ("scope_includes", "Scope (Includes)"),
                               ("scope_excludes", "Scope (Excludes)"),
                               ("mission_alignment", "Mission Alignment")):
                if charter.get(key):
                    lines.append(f"**{label}:** {charter[key]}")
            if charter.get("stakeholders"):
                lines.append(f"**Stakeholders:** {', '.join(charter['stakeholders'])}")
        lines.append("")

    for key, label in _ADLI_SECTIONS:
        data = process.get(key)
        if not data:
            continue
        lines.append(f"### ADLI: {label}")
        if data.get("content"):
            lines.append(str(data["content"]))
        else:
            for field, value in data.items():
                if field == "content" or not value:
                    continue
                if isinstance(value, list):
                    lines.append(f"**{_title_case(field)}:** {', '.join(map(str, value))}")
                elif isinstance(value, str):
                    lines.append(f"**{_title_case(field)}:** {value}")
        lines.append("")

    for key, label in (("workflow", "Workflow"), ("baldrige_connections", "Baldrige Connections")):
        data = process.get(key)
        if data:
            lines.append(f"### {label}")
            if isinstance(data, dict) and data.get("content"):
                lines.append(str(data["content"]))
            lines.append("")

    return "\n".join(lines)


def build_metrics_context(metrics) -> str:
    """*metrics*: dicts with name, cadence, unit, target_value and last_value."""
    if not metrics:
        return "\n### Linked Metrics\nNo metrics linked to this process yet.\n"
    lines = ["\n### Linked Metrics"]
    for m in metrics:
        last = m.get("last_value")
        shown = f"{last} {m['unit']}" if last is not None else "No data yet"
        lines.append(f"- **{m['name']}** ({m['cadence']}): {shown}")
        if m.get("target_value") is not None:
            lines.append(f"  Target: {m['target_value']} {m['unit']}")
    return "\n".join(lines) + "\n"


def build_system_prompt(process: dict, category_name, metrics) -> str:
    return (
        f"{SYSTEM_PROMPT}\n\n---\n\n## Current Process Data\n\n"
        f"{build_process_context(process, category_name)}\n"
        f"{build_metrics_context(metrics)}"
    )


SURVEY_DESIGNER_PROMPT = """You are a survey design expert. Generate survey questions as a JSON array based on the user's description.

## Rules
- Return ONLY a valid JSON array of question objects, with no explanation and no markdown fences
- Each question object must have these fields:
  - "question_text": string (the question)
  - "question_type": one of "rating", "yes_no", "nps", "multiple_choice", "checkbox", "open_text", "matrix"
  - "rating_scale_max": number (default 5, only meaningful for "rating")
  - "options": object, type-specific:
    - rating: { "labels": ["Strongly Disagree", ..., "Strongly Agree"] } (always provide labels matching rating_scale_max)
    - multiple_choice/checkbox: { "choices": ["Option A", "Option B", ...] }
    - open_text: { "variant": "short" or "long" }
    - matrix: { "rows": ["Row 1", ...], "columns": ["Col 1", ...] }
    - nps/yes_no: {}
  - "is_required": boolean
  - "help_text": string (brief clarification, "" if not needed)
  - "section_label": string ("" for no section break, or a label like "Background" to start a new section)

## Best Practices
- Use a mix of question types for engagement (don't make it all ratings)
- Start with easier questions, save complex ones for later
- Include at least 1 NPS question for overall satisfaction
- End with an open-text question for free-form feedback
- Group related questions with section_label on the first question of each group
- Keep surveys to 5-12 questions unless the user requests more
- For rating scales, use 5-point by default with descriptive labels
- Mark demographic and open-text questions as not required

## Process Context
If process information is provided, tailor questions to measure that specific process's effectiveness, stakeholder satisfaction, and improvement areas."""


def build_survey_request(description, process=None) -> str:
    """User message for the survey designer; *process* adds name, owner and purpose."""
    message = f"Generate a survey for: {description}"
    if process is None:
        return message
    message += (
        f"\n\nProcess context:\n- Name: {process.name}\n"
        f"- Description: {process.description or 'N/A'}\n- Owner: {process.owner or 'N/A'}"
    )
    purpose = (process.charter or {}).get("purpose")
    if purpose:
        message += f"\n- Purpose: {purpose}"
    return message
