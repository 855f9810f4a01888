"""CSV export of raw survey responses for one wave."""

from hub.core.exceptions import ValidationError
from hub.services.formatting import csv_row, slugify
from hub.services.survey_service import wave_responses
from hub.utils.helpers import iso


def _choices(question):
    return (question.options or {}).get("choices") or []


def _cell(question, answer):
    qtype = question.question_type
    if answer is None:
        return ""
    if qtype in ("rating", "nps"):
        return _num(answer["value_numeric"])
    if qtype == "yes_no":
        return {1: "Yes", 0: "No"}.get(answer["value_numeric"], "")
    if qtype == "multiple_choice":
        choices = _choices(question)
        idx = answer["value_numeric"]
        if idx is not None and 0 <= idx < len(choices):
            return choices[int(idx)]
        if answer["value_text"]:
            return f"Other: {answer['value_text']}"
        return ""
    if qtype == "checkbox":
        selected = (answer["value_json"] or {}).get("selected")
        if not selected:
            return ""
        choices = _choices(question)
        labels = [choices[i] if 0 <= i < len(choices) else f"Option {i}" for i in selected]
        if answer["value_text"]:
            labels.append(f"Other: {answer['value_text']}")
        return "; ".join(labels)
    if qtype == "open_text":
        return answer["value_text"] or ""
    if answer["value_numeric"] is not None:
        return _num(answer["value_numeric"])
    return answer["value_text"] or ""


def _num(value):
    if value is None:
        return ""
    return str(int(value)) if float(value).is_integer() else str(value)


def build_wave_csv(survey, wave) -> tuple[str, str]:
    """Return ``(filename, csv_text)``.

    Matrix questions expand to one column per grid row; every other question
    is one column.

    Raises:
        ValidationError: the survey has no questions or the wave no responses.
    """
    questions = list(survey.questions)
    if not questions:
        raise ValidationError("No questions")
    responses, answers = wave_responses(wave)
    if not responses:
        raise ValidationError("No responses")

    single = {}
    matrix = {}
    for a in answers:
        key = (a["response_id"], a["question_id"])
        single[key] = a
        matrix.setdefault(key, []).append(a)

    header = ["response_id", "submitted_at"]
    for q in questions:
        if q.question_type == "matrix":
            header += [f"{q.question_text} - {row}" for row in (q.options or {}).get("rows") or []]
        else:
            header.append(q.question_text)

    lines = [csv_row(header)]
    for resp in responses:
        cells = [resp.id, iso(resp.created_at)]
        for q in questions:
            if q.question_type != "matrix":
                cells.append(_cell(q, single.get((resp.id, q.id))))
                continue
            opts = q.options or {}
            columns = opts.get("columns") or []
            rows = matrix.get((resp.id, q.id), [])
            for row_idx in range(len(opts.get("rows") or [])):
                hit = next((a for a in rows if (a["value_json"] or {}).get("row_index") == row_idx), None)
                value = hit["value_numeric"] if hit else None
                cells.append(columns[int(value)] if value is not None and 0 <= value < len(columns) else "")
        lines.append(csv_row(cells))

    filename = f"{slugify(survey.title or 'survey')}-round-{wave.wave_number}.csv"
    return filename, "\n".join(lines)
