import os

from celery import Celery
from celery.utils.log import get_task_logger
from kombu.exceptions import OperationalError
from sqlalchemy.exc import SQLAlchemyError

from .database import SessionLocal
from . import permissions

# purpose: deferred, best-effort side effects of schema and record deletes
# inputs: tenant id and permission object (or object prefix) to revoke
# outputs: number of revoked grants, or False when the cleanup failed
# status: active

CELERY_BROKER_URL = os.getenv("CELERY_BROKER_URL", "memory://")
celery_app = Celery("dyntables", broker=CELERY_BROKER_URL)
celery_app.conf.task_always_eager = (
    CELERY_BROKER_URL == "memory://" or os.getenv("TESTING") == "1"
)

CLEANUP_MAX_RETRIES = int(os.getenv("CLEANUP_MAX_RETRIES", "3"))
CLEANUP_RETRY_SECONDS = int(os.getenv("CLEANUP_RETRY_SECONDS", "30"))

_logger = get_task_logger(__name__)


@celery_app.task(bind=True, name="dyntables.tasks.revoke_object_permissions")
def revoke_object_permissions(self, tenant_id: str, obj: str, prefix: bool = False):
    """Remove grants left behind by a deleted schema or record."""

    db = SessionLocal()
    try:
        removed = permissions.revoke_object(db, tenant_id, obj, prefix=prefix)
        db.commit()
        _logger.info("Revoked %s grant(s) on %s%s", removed, obj, "*" if prefix else "")
        return removed
    except SQLAlchemyError as exc:
        db.rollback()
        _logger.warning("Permission cleanup for %s failed: %s", obj, exc)
        if not celery_app.conf.task_always_eager and self.request.retries < CLEANUP_MAX_RETRIES:
            raise self.retry(exc=exc, countdown=CLEANUP_RETRY_SECONDS * (self.request.retries + 1))
        return False
    finally:
        db.close()


def enqueue_permission_cleanup(tenant_id: str, obj: str, *, prefix: bool = False) -> None:
    """Dispatch grant revocation; failures are logged, never raised to the caller."""

    if celery_app.conf.task_always_eager:
        revoke_object_permissions(tenant_id, obj, prefix)
        return
    try:
        revoke_object_permissions.delay(tenant_id, obj, prefix)
    except OperationalError:
        _logger.warning("Could not queue permission cleanup for %s", obj, exc_info=True)
