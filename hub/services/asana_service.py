"""
Asana service: per-user OAuth tokens, project import and export, and task
sync.

All outbound HTTP is delegated to ``hub.integrations.asana_gateway``.
Direct ``requests`` usage is forbidden in this module.

Sync rules:
  - Tasks are upserted by ``asana_task_gid`` (Hub tasks exported to Asana
    carry a GID too, so they are matched rather than duplicated).
  - ``[ADLI: …]`` documentation tasks are never imported as tasks.
  - Hub rows whose GID no longer exists in the project are deleted.
  - Resync refreshes the cached raw snapshot only; charter and ADLI
    narratives entered in the Hub are left untouched.
  - Export writes ADLI narratives to one ``[ADLI: …]`` task per dimension and
    records their GIDs in ``asana_adli_task_gids``.
"""

from __future__ import annotations

import logging
import re
import time
from datetime import datetime, timedelta, timezone

from flask import current_app

from hub.core.exceptions import UpstreamError, ValidationError
from hub.integrations.asana_gateway import asana_gateway
from hub.models import db
from hub.models.process import ADLI_LABELS, Process, ProcessHistory, ProcessImprovement
from hub.models.task import PDCA_LABELS, PDCA_SECTIONS, ProcessTask
from hub.models.user import AsanaToken
from hub.services import cache_service
from hub.utils.helpers import as_utc, parse_date, parse_datetime

logger = logging.getLogger(__name__)

TOKEN_MAX_AGE = timedelta(hours=1)

ADLI_TASK_PATTERNS = {
    "[adli: approach]": "approach",
    "[adli: deployment]": "deployment",
    "[adli: learning]": "learning",
    "[adli: integration]": "integration",
}

ADLI_TASK_NAMES = {
    "approach": "[ADLI: Approach] How We Do It",
    "deployment": "[ADLI: Deployment] How We Roll It Out",
    "learning": "[ADLI: Learning] How We Improve",
    "integration": "[ADLI: Integration] How It Connects",
}

_TASK_FIELDS = (
    "name,notes,completed,completed_at,assignee.name,assignee.gid,"
    "start_on,due_on,due_at,num_subtasks,permalink_url,custom_fields"
)
_SUBTASK_FIELDS = "name,notes,completed,completed_at,assignee.name,assignee.gid,start_on,due_on"


def is_missing_project_error(exc: Exception) -> bool:
    """True when Asana reports the linked project no longer exists."""
    msg = str(exc)
    return "Unknown object" in msg or "Not Found" in msg or "404" in msg or (
        isinstance(exc, UpstreamError) and exc.status_code == 404
    )


# ═════════════════════════════════════════════════════════════════════════════
# Tokens
# ═════════════════════════════════════════════════════════════════════════════


def get_token_row(auth_id) -> AsanaToken | None:
    return AsanaToken.query.filter_by(auth_id=auth_id).first()


def get_asana_token(auth_id, now=None) -> str | None:
    """Valid access token for *auth_id*, refreshing it once it is an hour old.

    Returns None when the user never connected or the refresh was refused.
    """
    row = get_token_row(auth_id)
    if row is None:
        return None
    now = now or datetime.now(timezone.utc)
    connected_at = as_utc(row.connected_at)
    if connected_at and now - connected_at > TOKEN_MAX_AGE and row.refresh_token:
        data = asana_gateway.refresh_access_token(
            row.refresh_token,
            current_app.config.get("ASANA_CLIENT_ID"),
            current_app.config.get("ASANA_CLIENT_SECRET"),
        )
        if not data or not data.get("access_token"):
            return None
        row.access_token = data["access_token"]
        row.refresh_token = data.get("refresh_token") or row.refresh_token
        row.connected_at = now
        db.session.commit()
        logger.info("Refreshed Asana token", extra={"auth_id": auth_id})
    return row.access_token


def connect(auth_id, code) -> AsanaToken:
    """Finish the OAuth flow: exchange *code*, look up the first workspace and
    upsert the user's token row. Raises ``UpstreamError``."""
    cfg = current_app.config
    token_data = asana_gateway.exchange_code(
        code, cfg.get("ASANA_CLIENT_ID"), cfg.get("ASANA_CLIENT_SECRET"), cfg.get("ASANA_REDIRECT_URI"),
    )
    access_token = token_data.get("access_token")
    if not access_token:
        raise UpstreamError("token_exchange_failed")
    asana_user = token_data.get("data") or {}

    workspaces = asana_gateway.get(access_token, "/workspaces").get("data") or []
    workspace = workspaces[0] if workspaces else {}

    row = get_token_row(auth_id)
    if row is None:
        row = AsanaToken(auth_id=auth_id)
        db.session.add(row)
    row.access_token = access_token
    row.refresh_token = token_data.get("refresh_token")
    row.user_name = asana_user.get("name") or "Unknown"
    row.workspace_id = workspace.get("gid")
    row.workspace_name = workspace.get("name")
    row.connected_at = datetime.now(timezone.utc)
    db.session.commit()
    logger.info("Asana connected", extra={"auth_id": auth_id})
    return row


def disconnect(auth_id) -> None:
    AsanaToken.query.filter_by(auth_id=auth_id).delete()
    db.session.commit()


# ═════════════════════════════════════════════════════════════════════════════
# Workspace lookups
# ═════════════════════════════════════════════════════════════════════════════


def list_projects(token, workspace_id) -> list[dict]:
    body = asana_gateway.get(
        token,
        f"/projects?workspace={workspace_id}&opt_fields=name,notes,modified_at,team.name&limit=100",
    )
    return [
        {
            "gid": p["gid"],
            "name": p.get("name"),
            "description": (p.get("notes") or "")[:150],
            "modified_at": p.get("modified_at"),
            "team": (p.get("team") or {}).get("name"),
        }
        for p in body.get("data") or []
    ]


def list_workspace_members(token, workspace_id) -> list[dict]:
    """Workspace users sorted by name, cached per workspace for 10 minutes."""

    def _load():
        body = asana_gateway.get(
            token, f"/workspaces/{workspace_id}/users?opt_fields=name,email&limit=100",
        )
        members = [
            {"gid": u["gid"], "name": u.get("name") or "", "email": u.get("email")}
            for u in body.get("data") or []
        ]
        return sorted(members, key=lambda m: m["name"].lower())

    return cache_service.get_cached(
        cache_service.workspace_members_key(workspace_id),
        ttl=cache_service.WORKSPACE_MEMBERS_TTL,
        loader=_load,
    )


# ═════════════════════════════════════════════════════════════════════════════
# Project structure
# ═════════════════════════════════════════════════════════════════════════════


def _task_dict(t, with_subtasks=False) -> dict:
    assignee = t.get("assignee") or {}
    data = {
        "gid": t["gid"],
        "name": t.get("name") or "",
        "notes": t.get("notes") or "",
        "completed": bool(t.get("completed")),
        "assignee": assignee.get("name"),
        "assignee_gid": assignee.get("gid"),
        "completed_at": t.get("completed_at"),
        "start_on": t.get("start_on"),
        "due_on": t.get("due_on") or (t.get("due_at") if with_subtasks else None),
    }
    if with_subtasks:
        data["num_subtasks"] = t.get("num_subtasks") or 0
        data["permalink_url"] = t.get("permalink_url")
        data["subtasks"] = []
    return data


def fetch_project_sections(token, project_gid) -> list[dict]:
    """All sections of a project with their tasks and one level of subtasks."""
    sections = asana_gateway.get(token, f"/projects/{project_gid}/sections?opt_fields=name").get("data") or []
    result = []
    for section in sections:
        tasks = []
        for raw in asana_gateway.fetch_all_pages(
            token, f"/sections/{section['gid']}/tasks?opt_fields={_TASK_FIELDS}",
        ):
            task = _task_dict(raw, with_subtasks=True)
            if task["num_subtasks"] > 0:
                try:
                    subs = asana_gateway.fetch_all_pages(
                        token, f"/tasks/{task['gid']}/subtasks?opt_fields={_SUBTASK_FIELDS}",
                    )
                    task["subtasks"] = [_task_dict(s) for s in subs]
                except UpstreamError as exc:
                    logger.warning("Subtasks of %s unavailable: %s", task["gid"], exc)
            tasks.append(task)
        result.append({"name": section.get("name") or "", "gid": section["gid"], "tasks": tasks})
    return result


def is_adli_task(name) -> bool:
    lower = (name or "").lower().strip()
    return any(lower.startswith(p) for p in ADLI_TASK_PATTERNS)


def find_adli_tasks(sections) -> dict:
    """dimension → ``{gid, notes}`` for the first ADLI documentation task of each dimension."""
    found = {}
    for section in sections:
        for task in section["tasks"]:
            lower = task["name"].lower().strip()
            for pattern, dimension in ADLI_TASK_PATTERNS.items():
                if lower.startswith(pattern) and dimension not in found:
                    found[dimension] = {"gid": task["gid"], "notes": task["notes"]}
    return found


def section_to_pdca(section_name) -> str:
    lower = (section_name or "").lower().strip()
    return lower if lower in PDCA_SECTIONS else "plan"


# ═════════════════════════════════════════════════════════════════════════════
# Task sync
# ═════════════════════════════════════════════════════════════════════════════


def _fetch_assignee_emails(token, gids) -> dict:
    emails = {}
    for gid in dict.fromkeys(gids):
        try:
            body = asana_gateway.get(token, f"/users/{gid}?opt_fields=email")
        except UpstreamError:
            continue
        email = (body.get("data") or {}).get("email")
        if email:
            emails[gid] = email
    return emails


def _flatten(sections):
    items = []
    for section in sections:
        pdca = section_to_pdca(section["name"])
        for task in section["tasks"]:
            if is_adli_task(task["name"]):
                continue
            items.append((task, section, pdca, None, False, task.get("permalink_url")))
            for sub in task.get("subtasks") or []:
                if is_adli_task(sub["name"]):
                    continue
                items.append((sub, section, pdca, task["gid"], True, None))
    return items


def sync_process_tasks(token, process: Process) -> dict:
    """Import every task of the linked project into ``process_tasks``."""
    sections = fetch_project_sections(token, process.asana_project_gid)
    items = _flatten(sections)
    emails = _fetch_assignee_emails(token, [t["assignee_gid"] for t, *_ in items if t.get("assignee_gid")])

    existing = {
        t.asana_task_gid: t
        for t in ProcessTask.query.filter(
            ProcessTask.process_id == process.id, ProcessTask.asana_task_gid.isnot(None),
        )
    }
    seen = set()
    imported = updated = 0
    now = datetime.now(timezone.utc)

    for task, section, pdca, parent_gid, is_subtask, permalink in items:
        gid = task["gid"]
        seen.add(gid)
        fields = {
            "title": task["name"],
            "description": task["notes"] or None,
            "status": "completed" if task["completed"] else "active",
            "assignee_name": task.get("assignee"),
            "assignee_email": emails.get(task.get("assignee_gid")),
            "assignee_asana_gid": task.get("assignee_gid"),
            "due_date": parse_date(task.get("due_on")),
            "completed": task["completed"],
            "completed_at": parse_datetime(task.get("completed_at")),
            "asana_section_name": section["name"],
            "asana_section_gid": section["gid"],
            "parent_asana_gid": parent_gid,
            "is_subtask": is_subtask,
            "asana_task_url": permalink,
            "last_synced_at": now,
            "origin": "asana",
        }
        row = existing.get(gid)
        if row is not None:
            for key, value in fields.items():
                setattr(row, key, value)
            updated += 1
        else:
            db.session.add(ProcessTask(
                process_id=process.id,
                pdca_section=pdca,
                source="ai_suggestion",
                asana_task_gid=gid,
                **fields,
            ))
            imported += 1

    removed = 0
    for gid, row in existing.items():
        if gid not in seen:
            db.session.delete(row)
            removed += 1

    db.session.commit()
    logger.info(
        "Asana sync process=%s imported=%d updated=%d removed=%d",
        process.id, imported, updated, removed, extra={"process_id": process.id},
    )
    return {
        "processId": process.id,
        "processName": process.name,
        "imported": imported,
        "updated": updated,
        "removed": removed,
        "total": len(items),
        "lastSyncedAt": now.isoformat(),
    }


def sync_all(token, delay_seconds=None) -> dict:
    """Sync every linked process in name order, one at a time.

    Per-process failures are collected rather than raised.
    """
    if delay_seconds is None:
        delay_seconds = current_app.config.get("ASANA_SYNC_DELAY_SECONDS", 1.0)
    processes = (
        Process.query.filter(Process.asana_project_gid.isnot(None)).order_by(Process.name).all()
    )
    results = []
    for i, process in enumerate(processes):
        try:
            results.append(sync_process_tasks(token, process))
        except UpstreamError as exc:
            db.session.rollback()
            logger.warning("Asana sync failed for process %s: %s", process.id, exc)
            results.append({
                "processId": process.id,
                "processName": process.name,
                "imported": 0,
                "updated": 0,
                "removed": 0,
                "total": 0,
                "lastSyncedAt": datetime.now(timezone.utc).isoformat(),
                "error": str(exc) or "Unknown error",
            })
        if delay_seconds and i < len(processes) - 1:
            time.sleep(delay_seconds)

    failed = sum(1 for r in results if r.get("error"))
    return {
        "results": results,
        "summary": {"total": len(processes), "synced": len(results) - failed, "failed": failed},
    }


def resync_process(token, process: Process, user_email=None) -> dict:
    """Refresh the cached Asana snapshot of a linked process.

    The previous snapshot is kept in ``asana_raw_data_previous`` for
    comparison. Charter and ADLI narratives are not touched.
    """
    gid = process.asana_project_gid
    project = asana_gateway.get(
        token, f"/projects/{gid}?opt_fields=name,notes,html_notes,owner.name,due_on,start_on,members.name",
    )
    sections = fetch_project_sections(token, gid)

    total_tasks = sum(len(s["tasks"]) for s in sections)
    total_subtasks = sum(len(t["subtasks"]) for s in sections for t in s["tasks"])
    adli_tasks = find_adli_tasks(sections)

    process.asana_raw_data_previous = process.asana_raw_data
    process.asana_raw_data = {
        "project": project.get("data"),
        "sections": sections,
        "fetched_at": datetime.now(timezone.utc).isoformat(),
    }
    process.asana_adli_task_gids = {dim: info["gid"] for dim, info in adli_tasks.items()}
    process.guided_step = "charter"
    db.session.add(ProcessHistory(
        process_id=process.id,
        change_description=(
            f"Synced from Asana ({total_tasks} tasks, {total_subtasks} subtasks, "
            f"{len(adli_tasks)} ADLI docs) by {user_email or 'unknown'}"
        ),
    ))
    db.session.commit()
    return {
        "success": True,
        "sections": len(sections),
        "tasks": total_tasks,
        "subtasks": total_subtasks,
        "adliFound": len(adli_tasks),
    }


# ═════════════════════════════════════════════════════════════════════════════
# Project import / export
# ═════════════════════════════════════════════════════════════════════════════

# Section name (ADLI or PDCA wording) → ADLI field. Order matters for the
# substring fallback in ``match_adli_field``.
SECTION_TO_ADLI = {
    "approach": "adli_approach",
    "how we do it": "adli_approach",
    "methodology": "adli_approach",
    "method": "adli_approach",
    "deployment": "adli_deployment",
    "implementation": "adli_deployment",
    "rollout": "adli_deployment",
    "who does it": "adli_deployment",
    "learning": "adli_learning",
    "measurement": "adli_learning",
    "metrics": "adli_learning",
    "how we improve": "adli_learning",
    "integration": "adli_integration",
    "alignment": "adli_integration",
    "connections": "adli_integration",
    "how it connects": "adli_integration",
    "plan": "adli_approach",
    "planning": "adli_approach",
    "execute": "adli_deployment",
    "execution": "adli_deployment",
    "do": "adli_deployment",
    "evaluate": "adli_learning",
    "evaluation": "adli_learning",
    "check": "adli_learning",
    "improve": "adli_integration",
    "improvement": "adli_integration",
    "improvements": "adli_integration",
    "act": "adli_integration",
}

ADLI_TO_PDCA_SECTION = {
    "approach": "plan",
    "deployment": "execute",
    "learning": "evaluate",
    "integration": "improve",
}

IMPROVE_SECTION_NAMES = ("improve", "act", "improvement", "improvements", "act (improve)")

NO_DOCUMENTATION = "No documentation yet. Edit this process in the Excellence Hub to add content."

_IMPROVEMENT_LABELS = {
    "approach": "Approach",
    "deployment": "Deployment",
    "learning": "Learning",
    "integration": "Integration",
    "charter": "Charter",
}

_NO_SECTION = "(no section)"


def project_url(project_gid) -> str:
    return f"https://app.asana.com/0/{project_gid}"


def match_adli_field(section_name) -> str | None:
    lower = (section_name or "").lower().strip()
    if lower in SECTION_TO_ADLI:
        return SECTION_TO_ADLI[lower]
    for key, field in SECTION_TO_ADLI.items():
        if key in lower:
            return field
    return None


def _task_line(task, indent=""):
    meta = [m for m in (task.get("assignee"), task.get("due_on") and f"due {task['due_on']}") if m]
    if task.get("completed"):
        meta.append("done")
    name = f"~~{task['name']}~~" if task.get("completed") else task["name"]
    return f"{indent}- {name}" + (f" ({', '.join(meta)})" if meta else "")


def _section_markdown(section) -> str:
    lines = []
    for task in section["tasks"]:
        lines.append(_task_line(task))
        if task.get("notes"):
            lines.append(f"  {task['notes']}")
        for sub in task.get("subtasks") or []:
            lines.append(_task_line(sub, indent="  "))
    return f"## {section['name']}\n\n" + "\n".join(lines)


def _short_description(notes):
    if not notes:
        return None
    return re.split(r"[.!?]\s", notes)[0][:200]


def import_project(token, project_gid, user_email=None) -> dict:
    """Create a draft process from an Asana project.

    The project notes become the charter, sections whose names match an ADLI
    dimension (or its PDCA step) become ADLI narratives, and the full
    snapshot is stored in ``asana_raw_data``.
    """
    project = asana_gateway.get(
        token,
        f"/projects/{project_gid}?opt_fields=name,notes,html_notes,owner.name,due_on,start_on,"
        "custom_fields,members.name",
    ).get("data") or {}
    sections = fetch_project_sections(token, project_gid)

    notes = project.get("notes") or ""
    stakeholders = []
    summary = []
    for section in sections:
        for task in section["tasks"]:
            if task.get("assignee") and task["assignee"] not in stakeholders:
                stakeholders.append(task["assignee"])
        if section["name"] and section["name"] != _NO_SECTION and section["tasks"]:
            summary.append(f"- **{section['name']}** ({len(section['tasks'])} tasks)")

    content = None
    if notes:
        content = f"{notes}\n\n## Asana Project Sections\n\n" + "\n".join(summary) if summary else notes

    adli = {}
    for section in sections:
        if not section["name"] or section["name"] == _NO_SECTION or not section["tasks"]:
            continue
        field = match_adli_field(section["name"])
        if field:
            adli[field] = {"content": _section_markdown(section)}

    name = project.get("name") or f"Asana project {project_gid}"
    adli_tasks = find_adli_tasks(sections)
    process = Process(
        name=name,
        description=_short_description(notes),
        status="draft",
        owner=(project.get("owner") or {}).get("name"),
        charter={
            "purpose": notes or None,
            "scope_includes": None,
            "scope_excludes": None,
            "stakeholders": stakeholders,
            "mission_alignment": None,
            "content": content,
        },
        adli_approach=adli.get("adli_approach"),
        adli_deployment=adli.get("adli_deployment"),
        adli_learning=adli.get("adli_learning"),
        adli_integration=adli.get("adli_integration"),
        asana_project_gid=project_gid,
        asana_project_url=project_url(project_gid),
        asana_raw_data={
            "project": project,
            "sections": sections,
            "fetched_at": datetime.now(timezone.utc).isoformat(),
        },
        asana_adli_task_gids={dim: info["gid"] for dim, info in adli_tasks.items()} or None,
    )
    db.session.add(process)
    db.session.flush()
    db.session.add(ProcessHistory(
        process_id=process.id,
        change_description=f'Imported from Asana project "{name}" by {user_email or "unknown"}',
    ))
    db.session.commit()
    logger.info("Imported Asana project %s: %d sections, %d ADLI mapped",
                project_gid, len(sections), len(adli), extra={"process_id": process.id})
    return {
        "id": process.id,
        "name": name,
        "templateType": "full",
        "sectionsImported": len(sections),
        "adliMapped": len(adli),
    }


def _field_text(label, data) -> str:
    if not data:
        return ""
    if isinstance(data.get("content"), str) and data["content"]:
        return f"## {label}\n\n{data['content']}"
    parts = []
    for key, value in data.items():
        if key == "content":
            continue
        title = key.replace("_", " ").title()
        if isinstance(value, list) and value:
            parts.append(f"**{title}:**\n" + "\n".join(f"- {v}" for v in value))
        elif isinstance(value, str) and value.strip():
            parts.append(f"**{title}:** {value}")
    return f"## {label}\n\n" + "\n\n".join(parts) if parts else ""


def charter_text(process: Process) -> str:
    charter = process.charter or {}
    if isinstance(charter.get("content"), str) and charter["content"]:
        return f"## Charter\n\n{charter['content']}"
    if isinstance(charter.get("purpose"), str) and charter["purpose"]:
        return f"## Charter\n\n{charter['purpose']}"
    return ""


def _project_notes(process: Process) -> str:
    charter = process.charter or {}
    return charter.get("content") or charter.get("purpose") or process.description or ""


def _project_sections(token, project_gid) -> dict:
    """Lower-cased section name → GID, creating any missing PDCA section."""
    rows = asana_gateway.get(token, f"/projects/{project_gid}/sections?opt_fields=name").get("data") or []
    sections = {(s.get("name") or "").lower(): s["gid"] for s in rows}
    for key in PDCA_SECTIONS:
        if key not in sections:
            created = asana_gateway.post(token, f"/projects/{project_gid}/sections", {"name": PDCA_LABELS[key]})
            sections[key] = created["data"]["gid"]
    return sections


def _sync_adli_tasks(token, process: Process, project_gid, sections) -> int:
    """Create or update one ``[ADLI: …]`` documentation task per documented
    dimension and record their GIDs on the process."""
    gids = dict(process.asana_adli_task_gids or {})
    written = 0
    for dimension, name in ADLI_TASK_NAMES.items():
        text = _field_text(ADLI_LABELS[f"adli_{dimension}"], getattr(process, f"adli_{dimension}"))
        if not text:
            continue
        if dimension in gids:
            try:
                asana_gateway.put(token, f"/tasks/{gids[dimension]}", {"notes": text})
                written += 1
                continue
            except UpstreamError as exc:
                if exc.status_code != 404:
                    raise
        section_gid = sections[ADLI_TO_PDCA_SECTION[dimension]]
        created = asana_gateway.post(token, "/tasks", {
            "name": name,
            "notes": text,
            "projects": [project_gid],
            "memberships": [{"project": project_gid, "section": section_gid}],
        })
        gids[dimension] = created["data"]["gid"]
        written += 1
    process.asana_adli_task_gids = gids or None
    return written


def _backfill_improvements(token, process: Process, project_gid, section_gid) -> int:
    """One task per improvement that has no Asana link yet, in the Improve section."""
    app_url = (current_app.config.get("APP_URL") or "").rstrip("/")
    created = 0
    for imp in ProcessImprovement.query.filter_by(process_id=process.id, trigger_detail=None).order_by(
        ProcessImprovement.id,
    ):
        label = _IMPROVEMENT_LABELS.get(imp.section_affected, imp.section_affected)
        notes = "\n".join([
            imp.description or f"Improvement to {label} section.",
            "",
            f"View process: {app_url}/processes/{process.id}",
        ])
        try:
            result = asana_gateway.post(token, "/tasks", {
                "name": f"[{label}] {imp.title}",
                "notes": notes,
                "projects": [project_gid],
                "memberships": [{"project": project_gid, "section": section_gid}],
            })
        except UpstreamError as exc:
            logger.warning("Improvement %s not exported: %s", imp.id, exc, extra={"process_id": process.id})
            continue
        permalink = (result.get("data") or {}).get("permalink_url")
        if permalink:
            imp.trigger_detail = permalink
        created += 1
    return created


def export_process(token, process: Process, user_email=None, workspace_id=None, force_new=False) -> dict:
    """Push a process to Asana.

    A linked project is updated in place (notes, missing PDCA sections, ADLI
    documentation tasks, improvement backfill); otherwise a new project is
    created in *workspace_id*. A link to a deleted project is cleared first.
    Raises ``ValidationError`` when a new project has no workspace.
    """
    notes = _project_notes(process)
    existing_gid = None if force_new else process.asana_project_gid
    if existing_gid:
        try:
            asana_gateway.get(token, f"/projects/{existing_gid}?opt_fields=name")
        except UpstreamError as exc:
            if not is_missing_project_error(exc):
                raise
            logger.info("Linked Asana project %s is gone; unlinking", existing_gid,
                        extra={"process_id": process.id})
            process.asana_project_gid = None
            process.asana_project_url = None
            db.session.commit()
            existing_gid = None

    if existing_gid:
        asana_gateway.put(token, f"/projects/{existing_gid}", {"notes": notes})
        sections = _project_sections(token, existing_gid)
        _sync_adli_tasks(token, process, existing_gid, sections)
        improve_gid = next((sections[n] for n in IMPROVE_SECTION_NAMES if n in sections), None)
        backfill = _backfill_improvements(token, process, existing_gid, improve_gid) if improve_gid else 0
        suffix = f" ({backfill} improvement tasks created)" if backfill else ""
        db.session.add(ProcessHistory(
            process_id=process.id,
            change_description=f"Synced to Asana project by {user_email or 'unknown'}{suffix}",
        ))
        db.session.commit()
        return {"action": "updated", "asanaUrl": project_url(existing_gid), "backfillCount": backfill}

    if not workspace_id:
        raise ValidationError("No workspace found")
    payload = {"name": process.name, "notes": notes, "workspace": workspace_id}
    try:
        teams = asana_gateway.get(token, f"/organizations/{workspace_id}/teams?limit=1").get("data") or []
        if teams:
            payload["team"] = teams[0]["gid"]
    except UpstreamError:
        logger.info("Workspace %s has no teams; creating project without one", workspace_id)
    project_gid = asana_gateway.post(token, "/projects", payload)["data"]["gid"]

    sections = _project_sections(token, project_gid)
    asana_gateway.post(token, "/tasks", {
        "name": "Process Documentation",
        "notes": charter_text(process) or NO_DOCUMENTATION,
        "projects": [project_gid],
        "memberships": [{"project": project_gid, "section": sections["plan"]}],
    })
    process.asana_project_gid = project_gid
    process.asana_project_url = project_url(project_gid)
    _sync_adli_tasks(token, process, project_gid, sections)
    backfill = _backfill_improvements(token, process, project_gid, sections["improve"])
    suffix = f" ({backfill} improvement tasks created)" if backfill else ""
    db.session.add(ProcessHistory(
        process_id=process.id,
        change_description=f"Exported to new Asana project by {user_email or 'unknown'}{suffix}",
    ))
    db.session.commit()
    logger.info("Exported process to new Asana project %s", project_gid, extra={"process_id": process.id})
    return {
        "action": "created",
        "asanaUrl": project_url(project_gid),
        "projectGid": project_gid,
        "backfillCount": backfill,
    }


# ═════════════════════════════════════════════════════════════════════════════
# Task write-back
# ═════════════════════════════════════════════════════════════════════════════

# Hub field → Asana field
_WRITE_BACK_FIELDS = {
    "title": "name",
    "description": "notes",
    "start_date": "start_on",
    "due_date": "due_on",
    "completed": "completed",
    "assignee_asana_gid": "assignee",
}


def push_task_changes(token, task: ProcessTask, body: dict) -> bool:
    """PUT the Asana-mapped subset of *body*. Raises ``UpstreamError``."""
    payload = {asana: body[hub] for hub, asana in _WRITE_BACK_FIELDS.items() if hub in body}
    if not payload:
        return False
    asana_gateway.put(token, f"/tasks/{task.asana_task_gid}", payload)
    return True


def move_task_to_section(token, task: ProcessTask, pdca_section) -> str | None:
    """Move the task to the project section named like *pdca_section*.

    Returns the target section GID, or None when the project has no such
    section or the move failed.
    """
    process = db.session.get(Process, task.process_id)
    if process is None or not process.asana_project_gid:
        return None
    target_label = PDCA_LABELS[pdca_section].lower()
    try:
        sections = asana_gateway.get(
            token, f"/projects/{process.asana_project_gid}/sections?opt_fields=name",
        ).get("data") or []
        target = next((s for s in sections if (s.get("name") or "").lower() == target_label), None)
        if target is None:
            return None
        asana_gateway.post(token, f"/sections/{target['gid']}/addTask", {"task": task.asana_task_gid})
    except UpstreamError as exc:
        logger.warning("Asana section move failed for task %s: %s", task.id, exc,
                       extra={"task_id": task.id})
        return None
    return target["gid"]


def delete_remote_task(token, task: ProcessTask) -> None:
    asana_gateway.request(token, f"/tasks/{task.asana_task_gid}", "DELETE")
