"""
Built-in documents used by reconciliation.

- default_groups(): the document materialized on a cold start
- migrate_legacy_apps(): wraps the old flat item list into one group
- document_from_backup(): pulls the document out of an exported backup
"""

from __future__ import annotations

import copy
from typing import Any, Dict, List, Optional

DEFAULT_GROUP_ID = "default"

DEFAULT_APPS: List[Dict[str, Any]] = [
    {"id": "1", "name": "YouTube", "url": "https://youtube.com", "color": "#ff0000"},
    {"id": "2", "name": "GitHub", "url": "https://github.com", "color": "#333333"},
    {"id": "3", "name": "Google", "url": "https://google.com", "color": "#4285f4"},
    {"id": "4", "name": "Twitter", "url": "https://twitter.com", "color": "#1da1f2"},
    {"id": "5", "name": "ChatGPT", "url": "https://chat.openai.com", "color": "#10a37f"},
    {"id": "6", "name": "Figma", "url": "https://figma.com", "color": "#f24e1e"},
]


def default_groups(group_name: str = "Default") -> List[Dict[str, Any]]:
    """Fresh copy of the built-in document."""
    return [{"id": DEFAULT_GROUP_ID, "name": group_name, "apps": copy.deepcopy(DEFAULT_APPS)}]


def migrate_legacy_apps(apps: List[Any], group_name: str = "Default") -> List[Dict[str, Any]]:
    """Wrap a legacy flat item list into a single synthetic group."""
    return [{"id": DEFAULT_GROUP_ID, "name": group_name, "apps": copy.deepcopy(apps)}]


def normalize_groups(groups: Any) -> Optional[List[Dict[str, Any]]]:
    """Keep well-formed groups from an imported list; None if nothing usable."""
    if not isinstance(groups, list):
        return None
    normalized = []
    for index, group in enumerate(groups):
        if not isinstance(group, dict):
            continue
        apps = group.get("apps")
        normalized.append(
            {
                **group,
                "id": str(group.get("id") or f"group-{index}"),
                "name": str(group.get("name") or ""),
                "apps": [app for app in apps if isinstance(app, dict)] if isinstance(apps, list) else [],
            }
        )
    return normalized or None


def document_from_backup(data: Any, group_name: str = "Default") -> Optional[List[Dict[str, Any]]]:
    """Extract the document from an exported backup.

    Accepts {"quickLaunchGroups": [...]} and the older {"quickLaunchApps": [...]}.
    """
    if not isinstance(data, dict):
        return None
    groups = normalize_groups(data.get("quickLaunchGroups"))
    if groups is not None:
        return groups
    if isinstance(data.get("quickLaunchApps"), list):
        return migrate_legacy_apps(data["quickLaunchApps"], group_name)
    return None


def is_empty_document(document: Any) -> bool:
    """Whether a document carries nothing worth restoring."""
    if document is None:
        return True
    if isinstance(document, (list, dict, str)):
        return len(document) == 0
    return False
