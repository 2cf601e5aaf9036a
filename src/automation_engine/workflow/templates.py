"""Built-in workflow templates.

Templates are disabled definitions users can install and adapt. They are
rebuilt on every call so callers may mutate the returned objects freely.
"""

from __future__ import annotations

from typing import Any

from .models import Workflow

DAY_MS = 86_400_000
WEEK_MS = 7 * DAY_MS

_INSTANCE_FIELDS = {"id", "created_at", "last_run_at", "run_count", "success_count"}


def get_templates() -> list[Workflow]:
    return [
        Workflow.model_validate(
            {
                "id": "template_daily_summary",
                "name": "Daily Summary",
                "description": "Get a daily summary of emails, tasks, and calendar",
                "trigger": {"type": "schedule", "config": {"interval": DAY_MS}},
                "steps": [
                    {
                        "id": "s1",
                        "name": "Get Emails",
                        "type": "tool",
                        "config": {"tool": "gmail_list", "params": {"q": "is:unread"}},
                        "next_on_success": "s2",
                    },
                    {
                        "id": "s2",
                        "name": "Get Tasks",
                        "type": "tool",
                        "config": {"tool": "get_tasks", "params": {}},
                        "next_on_success": "s3",
                    },
                    {
                        "id": "s3",
                        "name": "Generate Summary",
                        "type": "agent",
                        "config": {"prompt": "Summarize: {{step_s1}} {{step_s2}}"},
                    },
                ],
                "enabled": False,
            }
        ),
        Workflow.model_validate(
            {
                "id": "template_file_backup",
                "name": "File Backup",
                "description": "Backup important files to cloud storage",
                "trigger": {"type": "schedule", "config": {"interval": WEEK_MS}},
                "steps": [
                    {
                        "id": "s1",
                        "name": "List Files",
                        "type": "tool",
                        "config": {"tool": "list_files", "params": {"path": "{{source_path}}"}},
                        "next_on_success": "s2",
                    },
                    {
                        "id": "s2",
                        "name": "Upload Files",
                        "type": "loop",
                        "config": {
                            "items": "step_s1",
                            "body": {
                                "type": "tool",
                                "config": {"tool": "upload_file", "params": {"file": "{{item}}"}},
                            },
                        },
                    },
                ],
                "variables": {"source_path": "~/Documents"},
                "enabled": False,
            }
        ),
        Workflow.model_validate(
            {
                "id": "template_social_post",
                "name": "Social Media Post",
                "description": "Post content to multiple social platforms",
                "trigger": {"type": "manual", "config": {}},
                "steps": [
                    {
                        "id": "s1",
                        "name": "Input Content",
                        "type": "input",
                        "config": {"prompt": "Enter your post content"},
                        "next_on_success": "s2",
                    },
                    {
                        "id": "s2",
                        "name": "Post to Twitter",
                        "type": "tool",
                        "config": {"tool": "twitter_post", "params": {"text": "{{input_s1}}"}},
                        "next_on_success": "s3",
                    },
                    {
                        "id": "s3",
                        "name": "Post to LinkedIn",
                        "type": "tool",
                        "config": {"tool": "linkedin_post", "params": {"text": "{{input_s1}}"}},
                    },
                ],
                "enabled": False,
            }
        ),
    ]


def get_template(template_id: str) -> Workflow | None:
    for template in get_templates():
        if template.id == template_id:
            return template
    return None


def template_definition(template_id: str) -> dict[str, Any] | None:
    """Fields for a new workflow installed from a template.

    Identity and run bookkeeping are left out so the store assigns fresh ones.
    """

    template = get_template(template_id)
    if template is None:
        return None
    return template.model_dump(exclude=_INSTANCE_FIELDS)
