"""Summary: Application factory wiring core services.

Importance: Centralizes dependency creation for the CLI and API layers.
Alternatives: Instantiate services manually in each entrypoint.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from quotedesk.ai import AiProvider, AiProviderFactory
from quotedesk.classifier import MultiLevelClassifier
from quotedesk.config import AppConfig
from quotedesk.email import GmailMailbox, Mailbox, MockMailbox
from quotedesk.email_templates import DmcProfile
from quotedesk.gazetteer import DEFAULT_GAZETTEER, Gazetteer
from quotedesk.pipeline import EmailPipeline
from quotedesk.services import BatchService, FollowUpService, StatsService
from quotedesk.storage.json_store import FollowUpRepository, QuotationRepository


@dataclass(frozen=True)
class AppServices:
    """Summary: Holds the wired services for one application instance.

    Importance: Entry points share one set of repositories and providers.
    Alternatives: Use module-level singletons.
    """

    config: AppConfig
    mailbox: Mailbox
    ai_provider: AiProvider
    quotations: QuotationRepository
    follow_ups: FollowUpRepository
    pipeline: EmailPipeline
    batch: BatchService
    follow_up: FollowUpService
    stats: StatsService


def build_mailbox(config: AppConfig) -> Mailbox:
    """Summary: Construct the configured mailbox.

    Importance: Gmail needs an access token; the mock reads a JSON fixture when present.
    Alternatives: Wire mailboxes manually at the entrypoint.
    """

    if config.mail_provider == "gmail":
        if not config.gmail_access_token:
            raise ValueError("GMAIL_ACCESS_TOKEN is required for gmail mail provider")
        return GmailMailbox(config.gmail_access_token, config.gmail_base_url)
    fixture = Path(config.mock_inbox_path)
    return MockMailbox.from_file(fixture) if fixture.exists() else MockMailbox()


def build_gazetteer(config: AppConfig) -> Gazetteer:
    if config.gazetteer_path:
        return Gazetteer.from_file(Path(config.gazetteer_path))
    return DEFAULT_GAZETTEER


def build_services(
    config: AppConfig,
    mailbox: Mailbox | None = None,
    ai_provider: AiProvider | None = None,
) -> AppServices:
    """Summary: Build application services from configuration.

    Importance: Ensures all entrypoints share the same wiring; tests can inject collaborators.
    Alternatives: Use a dependency injection framework.
    """

    mailbox = mailbox or build_mailbox(config)
    ai_provider = ai_provider or AiProviderFactory(config).build()
    quotations = QuotationRepository(config.quotations_path, config.quotations_cache_ttl)
    follow_ups = FollowUpRepository(
        config.follow_ups_path, config.follow_ups_cache_ttl, max_follow_ups=config.max_follow_ups
    )
    profile = DmcProfile.from_config(config)
    processing = config.processing_config()
    pipeline = EmailPipeline(
        mailbox=mailbox,
        ai_provider=ai_provider,
        quotations=quotations,
        follow_ups=follow_ups,
        profile=profile,
        classifier=MultiLevelClassifier(config.classification_policy()),
        gazetteer=build_gazetteer(config),
        step_limit=processing.step_limit,
    )
    return AppServices(
        config=config,
        mailbox=mailbox,
        ai_provider=ai_provider,
        quotations=quotations,
        follow_ups=follow_ups,
        pipeline=pipeline,
        batch=BatchService(
            mailbox=mailbox, quotations=quotations, pipeline=pipeline, processing=processing
        ),
        follow_up=FollowUpService(
            mailbox=mailbox, quotations=quotations, follow_ups=follow_ups, profile=profile
        ),
        stats=StatsService(quotations=quotations, follow_ups=follow_ups),
    )
