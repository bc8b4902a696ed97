import logging

from django.db import transaction
from django.db.models.signals import post_delete, post_save, pre_save
from django.dispatch import receiver

from .models import AuditFinding, AuditPackageStatus
from .notifications import notify_finding_created, send_package_status_update

logger = logging.getLogger(__name__)


def _refresh(package_id):
    package_status = AuditPackageStatus.refresh_for_package(package_id)
    transaction.on_commit(lambda: send_package_status_update(package_status))
    return package_status


@receiver(pre_save, sender=AuditFinding)
def remember_previous_package(sender, instance, **kwargs):
    instance._previous_package_id = (
        AuditFinding.objects.filter(pk=instance.pk).values_list("package_id", flat=True).first()
    )


@receiver(post_save, sender=AuditFinding)
def refresh_package_on_finding_save(sender, instance, created, **kwargs):
    package_status = _refresh(instance.package_id)
    logger.info(
        f"Package {instance.package_id} recomputed after finding {instance.id} "
        f"{'created' if created else 'updated'}: {package_status.overall_status}"
    )
    previous = getattr(instance, "_previous_package_id", None)
    if previous and previous != instance.package_id:
        _refresh(previous)
        logger.info(f"Finding {instance.id} moved from package {previous} to {instance.package_id}")
    if created:
        notify_finding_created(instance)


@receiver(post_delete, sender=AuditFinding)
def refresh_package_on_finding_delete(sender, instance, **kwargs):
    _refresh(instance.package_id)
