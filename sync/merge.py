# sync/merge.py
"""Bootstrap merge of the on-device snapshot with the cloud snapshot.

Last write wins per entry id for bookmarks, highlights and notes; reading
plan progress is a set union of completed dates. Every annotation has a
single owner, so there are no concurrent edits of the same entry to
reconcile beyond picking the newer one.
"""
from models import PersonalStore, PlanProgress
from utils.dates import timestamp_sort_key


def _newest_first(entries):
    return sorted(entries, key=lambda entry: timestamp_sort_key(entry.last_modified), reverse=True)


def merge_entries(local_entries, cloud_entries):
    by_id = {}
    # Cloud first so that local wins on equal timestamps
    for entry in list(cloud_entries) + list(local_entries):
        existing = by_id.get(entry.id)
        if existing is None or timestamp_sort_key(entry.last_modified) >= timestamp_sort_key(existing.last_modified):
            by_id[entry.id] = entry
    return _newest_first(by_id.values())


def merge_plan(local_plan, cloud_plan):
    if local_plan is None or cloud_plan is None:
        plan = local_plan or cloud_plan
        return PlanProgress(
            plan_id=plan.plan_id,
            completed_dates=sorted(set(plan.completed_dates)),
            last_completed_at=plan.last_completed_at,
        )

    completed_dates = sorted(set(local_plan.completed_dates) | set(cloud_plan.completed_dates))
    if timestamp_sort_key(local_plan.last_completed_at) >= timestamp_sort_key(cloud_plan.last_completed_at):
        last_completed_at = local_plan.last_completed_at
    else:
        last_completed_at = cloud_plan.last_completed_at
    return PlanProgress(
        plan_id=local_plan.plan_id,
        completed_dates=completed_dates,
        last_completed_at=last_completed_at,
    )


def merge_plan_progress(local_progress, cloud_progress):
    merged = {}
    for plan_id in sorted(set(local_progress) | set(cloud_progress)):
        merged[plan_id] = merge_plan(local_progress.get(plan_id), cloud_progress.get(plan_id))
    return merged


def merge_stores(local, cloud):
    """Pure and deterministic: neither input is modified."""
    return PersonalStore(
        bookmarks=merge_entries(local.bookmarks, cloud.bookmarks),
        highlights=merge_entries(local.highlights, cloud.highlights),
        notes=merge_entries(local.notes, cloud.notes),
        plan_progress=merge_plan_progress(local.plan_progress, cloud.plan_progress),
    )


class MergeEngine:
    def merge(self, local, cloud):
        return merge_stores(local, cloud)
