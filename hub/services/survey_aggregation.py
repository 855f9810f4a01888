"""
Survey answer aggregation.

Pure reductions over answer rows. An answer row is a dict with
``question_id``, ``response_id``, ``value_numeric``, ``value_text`` and
``value_json``; questions are dicts shaped like ``SurveyQuestion.to_dict()``.
"""

from hub.services.formatting import round_half_up

NO_TREND_TYPES = ("open_text", "multiple_choice", "checkbox")

# Numeric answers are counted by the survey-to-metric bridge for these types
NUMERIC_TYPES = ("rating", "yes_no", "nps", "multiple_choice", "matrix")


def calculate_nps_score(values) -> int:
    """``round(((promoters - detractors) / total) * 100)``; 0 for no values.

    >>> calculate_nps_score([9, 9, 10, 3])
    50
    """
    values = list(values)
    if not values:
        return 0
    promoters = sum(1 for v in values if v >= 9)
    detractors = sum(1 for v in values if v <= 6)
    return round_half_up((promoters - detractors) / len(values) * 100)


def nps_category(score) -> str:
    if score <= 6:
        return "detractor"
    if score <= 8:
        return "passive"
    return "promoter"


def _mean(values):
    values = list(values)
    return sum(values) / len(values) if values else 0


def _numerics(answers):
    return [a["value_numeric"] for a in answers if a.get("value_numeric") is not None]


def _options(question):
    return question.get("options") or {}


def _base(question, response_count):
    return {
        "question_id": question["id"],
        "question_text": question["question_text"],
        "question_type": question["question_type"],
        "response_count": response_count,
        "previous_avg": None,
    }


def empty_result(question) -> dict:
    """Result for a question in a wave with no responses yet."""
    base = dict(_base(question, 0), avg_value=0)
    qtype = question["question_type"]
    opts = _options(question)
    if qtype == "rating":
        return dict(base, distribution=[0] * (question.get("rating_scale_max") or 5))
    if qtype == "nps":
        return dict(base, distribution=[0] * 11, nps_score=0,
                    nps_segments={"detractors": 0, "passives": 0, "promoters": 0})
    if qtype in ("multiple_choice", "checkbox"):
        choices = opts.get("choices") or []
        return dict(base, option_counts=[0] * len(choices), option_labels=choices)
    if qtype == "open_text":
        return dict(base, text_responses=[])
    if qtype == "matrix":
        rows = opts.get("rows") or []
        columns = opts.get("columns") or []
        return dict(
            base,
            matrix_rows=[{"row_label": r, "avg_value": 0, "response_count": 0,
                          "distribution": [0] * len(columns)} for r in rows],
            column_labels=columns,
        )
    return dict(base, distribution=[])


def _matrix_rows(question, answers):
    opts = _options(question)
    columns = opts.get("columns") or []
    rows = []
    for row_idx, label in enumerate(opts.get("rows") or []):
        row_values = [
            a["value_numeric"] for a in answers
            if a.get("value_numeric") is not None
            and (a.get("value_json") or {}).get("row_index") == row_idx
        ]
        distribution = [0] * len(columns)
        for v in row_values:
            if 0 <= v < len(columns):
                distribution[int(v)] += 1
        rows.append({
            "row_label": label,
            "avg_value": _mean(row_values),
            "response_count": len(row_values),
            "distribution": distribution,
        })
    return rows


def _choice_counts(question, answers, checkbox):
    choices = _options(question).get("choices") or []
    counts = [0] * len(choices)
    other_texts = []
    for a in answers:
        if checkbox:
            indices = (a.get("value_json") or {}).get("selected") or []
        else:
            indices = [a["value_numeric"]] if a.get("value_numeric") is not None else []
        for idx in indices:
            if 0 <= idx < len(choices):
                counts[int(idx)] += 1
        text = a.get("value_text")
        if text and text.strip():
            other_texts.append(text)
    return {
        "option_counts": counts,
        "option_labels": choices,
        "other_count": len(other_texts),
        "other_texts": other_texts,
    }


def aggregate_question(question, all_answers, total_responses) -> dict:
    """Type-specific summary of one question's answers in a wave."""
    answers = [a for a in all_answers if a["question_id"] == question["id"]]
    numerics = _numerics(answers)
    base = _base(question, len(answers))
    qtype = question["question_type"]

    if qtype == "rating":
        scale = question.get("rating_scale_max") or 5
        distribution = [0] * scale
        for v in numerics:
            bucket = round_half_up(v) - 1
            if 0 <= bucket < scale:
                distribution[bucket] += 1
        return dict(base, avg_value=_mean(numerics), distribution=distribution)

    if qtype == "yes_no":
        return dict(base, avg_value=_mean(numerics), distribution=[])

    if qtype == "nps":
        score = calculate_nps_score(numerics)
        distribution = [0] * 11
        for v in numerics:
            if 0 <= v <= 10:
                distribution[int(v)] += 1
        return dict(
            base,
            avg_value=score,
            distribution=distribution,
            nps_score=score,
            nps_segments={
                "detractors": sum(1 for v in numerics if v <= 6),
                "passives": sum(1 for v in numerics if 7 <= v <= 8),
                "promoters": sum(1 for v in numerics if v >= 9),
            },
        )

    if qtype == "multiple_choice":
        return dict(base, avg_value=0, **_choice_counts(question, answers, checkbox=False))

    if qtype == "checkbox":
        avg_selections = sum(numerics) / len(answers) if answers else 0
        return dict(
            base,
            avg_value=avg_selections,
            total_respondents=total_responses,
            **_choice_counts(question, answers, checkbox=True),
        )

    if qtype == "open_text":
        texts = [a["value_text"] for a in answers if a.get("value_text") and a["value_text"].strip()]
        return dict(base, avg_value=0, text_responses=texts, response_count=len(texts))

    if qtype == "matrix":
        rows = _matrix_rows(question, answers)
        return dict(
            base,
            avg_value=_mean(r["avg_value"] for r in rows),
            matrix_rows=rows,
            column_labels=_options(question).get("columns") or [],
        )

    return dict(base, avg_value=_mean(numerics), distribution=[])


def previous_average(question, previous_answers):
    """Scalar for the trend comparison, or None when there is nothing to compare."""
    qtype = question["question_type"]
    if qtype in NO_TREND_TYPES:
        return None
    answers = [a for a in previous_answers if a["question_id"] == question["id"]]
    numerics = _numerics(answers)
    if not numerics:
        return None
    if qtype == "nps":
        return calculate_nps_score(numerics)
    if qtype == "matrix":
        rows = [r for r in _matrix_rows(question, answers) if r["response_count"]]
        return _mean(r["avg_value"] for r in rows) if rows else None
    return _mean(numerics)


def aggregate_wave(questions, answers, total_responses, previous_answers=None):
    """Aggregate every question, attaching ``previous_avg`` when a previous
    wave with responses is supplied."""
    results = [aggregate_question(q, answers, total_responses) for q in questions]
    if previous_answers:
        by_id = {q["id"]: q for q in questions}
        for result in results:
            result["previous_avg"] = previous_average(by_id[result["question_id"]], previous_answers)
    return results


def collect_comments(answers):
    return [a["value_text"] for a in answers if a.get("value_text") and a["value_text"].strip()]


def trend_point(question_type, values):
    """Per-wave scalar for the trends chart (None when there are no values)."""
    if not values:
        return None
    if question_type == "nps":
        return calculate_nps_score(values)
    if question_type == "yes_no":
        return round_half_up(sum(1 for v in values if v == 1) / len(values) * 100)
    return round_half_up(_mean(values), 2)


def metric_entry_for_question(question_type, answers, base_note):
    """Value and note to log against a question's linked metric when a wave closes.

    Returns ``(value, note)`` or None when the question produces no entry.
    """
    if question_type == "open_text":
        return None
    numerics = _numerics(answers)

    if question_type == "checkbox":
        if not answers:
            return None
        value = round_half_up(sum(numerics) / len(answers), 2)
        if value == 0:
            return None
        return value, f"{base_note}, {len(answers)} responses, avg selections"

    if not numerics:
        return None
    if question_type == "yes_no":
        pct = round_half_up(sum(1 for v in numerics if v == 1) / len(numerics) * 100)
        return pct, f"{base_note}, {len(numerics)} responses"
    if question_type == "nps":
        return calculate_nps_score(numerics), f"{base_note}, {len(numerics)} responses, NPS"
    if question_type == "multiple_choice":
        return len(numerics), f"{base_note}, {len(numerics)} responses"
    if question_type == "matrix":
        return round_half_up(_mean(numerics), 2), f"{base_note}, {len(numerics)} answers, matrix avg"
    return round_half_up(_mean(numerics), 2), f"{base_note}, {len(numerics)} responses"
