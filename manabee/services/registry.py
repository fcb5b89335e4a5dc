"""
Service Registry - the explicitly constructed component graph.

Built once in the application lifespan (or directly in tests) and handed to
request handlers through a FastAPI dependency.
"""

from dataclasses import dataclass
from datetime import timedelta

from manabee.config import Settings
from manabee.services.access import AccessGuard
from manabee.services.ai_provider import GenerationProvider
from manabee.services.generation import ContentGenerator
from manabee.services.identity import IdentityVerifier, ProfileProvisioner
from manabee.services.notifications import NotificationDispatcher, PushProvider
from manabee.services.question_pipeline import QuestionAnalysisPipeline
from manabee.services.quota import QuotaLedger
from manabee.services.retention import PeriodicRunner, RetentionSweeper
from manabee.services.usage import UsageAuditLog
from manabee.services.users import UserAdministration
from manabee.storage import Store


@dataclass
class ServiceRegistry:
    settings: Settings
    store: Store
    verifier: IdentityVerifier | None
    guard: AccessGuard
    quota: QuotaLedger
    usage: UsageAuditLog
    generator: ContentGenerator
    pipeline: QuestionAnalysisPipeline
    dispatcher: NotificationDispatcher
    sweeper: RetentionSweeper
    provisioner: ProfileProvisioner
    users: UserAdministration


def build_services(
    settings: Settings,
    store: Store,
    ai_provider: GenerationProvider | None = None,
    push_provider: PushProvider | None = None,
    verifier: IdentityVerifier | None = None,
) -> ServiceRegistry:
    """Wire every component against one store and one set of providers."""
    usage = UsageAuditLog(store)
    return ServiceRegistry(
        settings=settings,
        store=store,
        verifier=verifier,
        guard=AccessGuard(store),
        quota=QuotaLedger(store),
        usage=usage,
        generator=ContentGenerator(ai_provider, usage),
        pipeline=QuestionAnalysisPipeline(store, ai_provider, usage),
        dispatcher=NotificationDispatcher(store, push_provider),
        sweeper=RetentionSweeper(store, settings.quota_retention_days),
        provisioner=ProfileProvisioner(store),
        users=UserAdministration(store),
    )


def build_periodic_runner(services: ServiceRegistry) -> PeriodicRunner:
    """Daily maintenance: quota retention and stale question jobs."""
    settings = services.settings
    stale_after = timedelta(seconds=settings.stale_processing_seconds)

    runner = PeriodicRunner(settings.sweep_interval_seconds)
    runner.register("quota_retention", services.sweeper.sweep)
    runner.register("stale_questions", lambda: services.pipeline.fail_stale(stale_after))
    return runner
