# plugins/core_versions/diff.py
from typing import Any, Dict, List

from .contracts import ChangeType, VersionDiff

# 元数据字段，不参与内容比较
IGNORED_FIELDS = frozenset({"id", "createdAt", "updatedAt", "userId", "createdBy"})
_MISSING = object()


def calculate_diff(old: Dict[str, Any], new: Dict[str, Any]) -> List[VersionDiff]:
    """逐字段比较两个快照，返回 added / removed / modified 列表，字段顺序稳定。"""
    diffs: List[VersionDiff] = []
    fields = list(old.keys()) + [k for k in new.keys() if k not in old]

    for field in fields:
        if field in IGNORED_FIELDS:
            continue
        old_value = old.get(field, _MISSING)
        new_value = new.get(field, _MISSING)
        if old_value == new_value:
            continue

        if old_value is _MISSING:
            diffs.append(VersionDiff(field=field, new_value=new_value, change_type=ChangeType.ADDED))
        elif new_value is _MISSING:
            diffs.append(VersionDiff(field=field, old_value=old_value, change_type=ChangeType.REMOVED))
        else:
            diffs.append(VersionDiff(
                field=field, old_value=old_value, new_value=new_value, change_type=ChangeType.MODIFIED
            ))
    return diffs
