"""
Background Tasks Package

Contains Celery tasks for async processing:
- audit_tasks: audit runs, page refreshes and the stale-audit sweep
"""

from siteaudit.tasks.audit_tasks import check_stale_audits, refresh_audit_page, run_audit
