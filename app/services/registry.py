"""Module-level singletons: in-memory repositories and the engines over them.

Routers and the worker import from here so they share one set of stores.
Tests reset the stores in place (see tests/conftest.py).
"""

from __future__ import annotations

from app.repos.arrangement_repo import InMemoryArrangementRepo
from app.repos.audit_repo import InMemoryAuditRepo
from app.repos.catalog_repo import InMemoryContentCatalog
from app.repos.course_repo import InMemoryCourseRepo
from app.repos.department_repo import InMemoryDepartmentRepo
from app.repos.progress_repo import InMemoryProgressRepo
from app.repos.quiz_repo import InMemoryQuizRepo
from app.services.application_service import ContentApplicationEngine
from app.services.arrangement_service import ArrangementWorkflow
from app.services.audit_service import AuditService
from app.services.authority import AuthorityResolver
from app.services.gatekeeper import ProgressionGatekeeper
from app.services.integrity_service import ContentIntegrityEngine
from app.services.media_service import build_media_service
from app.services.progress_service import ProgressService

# --- Stores ---
course_repo = InMemoryCourseRepo()
department_repo = InMemoryDepartmentRepo()
catalog = InMemoryContentCatalog()
arrangement_repo = InMemoryArrangementRepo()
progress_repo = InMemoryProgressRepo()
quiz_repo = InMemoryQuizRepo()
audit_repo = InMemoryAuditRepo()

# --- Collaborators ---
authority = AuthorityResolver(course_repo, department_repo)
audit = AuditService(audit_repo)
media = build_media_service()

# --- Engines ---
integrity = ContentIntegrityEngine(catalog, progress_repo)
gatekeeper = ProgressionGatekeeper(catalog, quiz_repo, integrity)
application = ContentApplicationEngine(
    catalog=catalog,
    courses=course_repo,
    arrangements=arrangement_repo,
    progress=progress_repo,
    integrity=integrity,
    media=media,
    authority=authority,
    audit=audit,
)
workflow = ArrangementWorkflow(
    courses=course_repo,
    arrangements=arrangement_repo,
    catalog=catalog,
    application=application,
    authority=authority,
    audit=audit,
)
progress = ProgressService(
    catalog=catalog,
    courses=course_repo,
    progress=progress_repo,
    quizzes=quiz_repo,
    integrity=integrity,
    gatekeeper=gatekeeper,
)
