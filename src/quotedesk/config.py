"""Summary: Application configuration for QuoteDesk.

Importance: Storage paths, model choice and batch limits all come from one place.
Alternatives: Use a dedicated settings library like Pydantic Settings.
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable

from quotedesk.classifier import ClassificationPolicy, NegativeSignalPolicy


def linear_backoff(attempt: int) -> float:
    """Summary: Wait one second per failed attempt.

    Importance: Gives transient mailbox or LLM failures time to clear.
    Alternatives: Exponential backoff with jitter.
    """

    return float(attempt)


@dataclass(frozen=True)
class RetryPolicy:
    """Summary: Retry settings for per-email processing.

    Importance: Keeps attempt count and backoff out of the orchestrator loop.
    Alternatives: Inline retry constants in the batch service.
    """

    max_attempts: int = 1
    backoff: Callable[[int], float] = linear_backoff

    def delay_for(self, attempt: int) -> float:
        """Return the delay before retrying after the given failed attempt."""

        return max(0.0, self.backoff(attempt))


@dataclass(frozen=True)
class ProcessingConfig:
    """Summary: Knobs for a batch run.

    Importance: Bounds batch size, concurrency, retries, and per-email runtime.
    Alternatives: Pass loose keyword arguments to the batch service.
    """

    max_emails: int = 50
    concurrency: int = 3
    retry: RetryPolicy = field(default_factory=RetryPolicy)
    timeout_ms: int = 25000
    step_limit: int = 50


@dataclass(frozen=True)
class AppConfig:
    """Summary: Holds configuration values for providers, storage, and processing.

    Importance: Pipeline, batch and API share one immutable settings object.
    Alternatives: Pass individual settings as constructor arguments.
    """

    quotations_path: str
    follow_ups_path: str
    quotations_cache_ttl: float
    follow_ups_cache_ttl: float
    ai_provider: str
    openai_api_key: str | None
    openai_model: str
    ollama_url: str
    ollama_model: str
    mail_provider: str
    mock_inbox_path: str
    gmail_access_token: str | None
    gmail_base_url: str
    api_host: str
    api_port: int
    api_key: str
    max_emails: int
    concurrency: int
    retries: int
    per_email_timeout_ms: int
    step_limit: int
    tourism_threshold: int
    negative_signal_policy: str
    max_follow_ups: int
    dmc_name: str
    dmc_signature: str
    dmc_phone: str
    dmc_website: str
    gazetteer_path: str | None = None

    @staticmethod
    def from_env() -> "AppConfig":
        """Summary: Layer environment and .env values over config/defaults.json.

        Importance: Every setting has a documented default and an override.
        Alternatives: Parse only environment variables without a defaults file.
        """

        defaults = load_defaults(Path("config") / "defaults.json")
        load_dotenv(Path(".env"))
        return AppConfig(
            quotations_path=os.getenv("QUOTEDESK_QUOTATIONS_PATH", defaults["quotations_path"]),
            follow_ups_path=os.getenv("QUOTEDESK_FOLLOW_UPS_PATH", defaults["follow_ups_path"]),
            quotations_cache_ttl=float(
                os.getenv("QUOTEDESK_QUOTATIONS_CACHE_TTL", defaults["quotations_cache_ttl"])
            ),
            follow_ups_cache_ttl=float(
                os.getenv("QUOTEDESK_FOLLOW_UPS_CACHE_TTL", defaults["follow_ups_cache_ttl"])
            ),
            ai_provider=os.getenv("QUOTEDESK_AI_PROVIDER", defaults["ai_provider"]),
            openai_api_key=os.getenv("OPENAI_API_KEY") or defaults["openai_api_key"] or None,
            openai_model=os.getenv("OPENAI_MODEL", defaults["openai_model"]),
            ollama_url=os.getenv("OLLAMA_URL", defaults["ollama_url"]),
            ollama_model=os.getenv("OLLAMA_MODEL", defaults["ollama_model"]),
            mail_provider=os.getenv("QUOTEDESK_MAIL_PROVIDER", defaults["mail_provider"]),
            mock_inbox_path=os.getenv("QUOTEDESK_MOCK_INBOX_PATH", defaults["mock_inbox_path"]),
            gmail_access_token=os.getenv("GMAIL_ACCESS_TOKEN")
            or defaults["gmail_access_token"]
            or None,
            gmail_base_url=os.getenv("QUOTEDESK_GMAIL_BASE_URL", defaults["gmail_base_url"]),
            api_host=os.getenv("QUOTEDESK_API_HOST", defaults["api_host"]),
            api_port=int(os.getenv("QUOTEDESK_API_PORT", defaults["api_port"])),
            api_key=os.getenv("QUOTEDESK_API_KEY", defaults["api_key"]),
            max_emails=int(os.getenv("QUOTEDESK_MAX_EMAILS", defaults["max_emails"])),
            concurrency=int(os.getenv("QUOTEDESK_CONCURRENCY", defaults["concurrency"])),
            retries=int(os.getenv("QUOTEDESK_RETRIES", defaults["retries"])),
            per_email_timeout_ms=int(
                os.getenv("QUOTEDESK_PER_EMAIL_TIMEOUT_MS", defaults["per_email_timeout_ms"])
            ),
            step_limit=int(os.getenv("QUOTEDESK_STEP_LIMIT", defaults["step_limit"])),
            tourism_threshold=int(
                os.getenv("QUOTEDESK_TOURISM_THRESHOLD", defaults["tourism_threshold"])
            ),
            negative_signal_policy=os.getenv(
                "QUOTEDESK_NEGATIVE_SIGNAL_POLICY", defaults["negative_signal_policy"]
            ),
            max_follow_ups=int(os.getenv("QUOTEDESK_MAX_FOLLOW_UPS", defaults["max_follow_ups"])),
            dmc_name=os.getenv("DMC_NAME", defaults["dmc_name"]),
            dmc_signature=os.getenv("DMC_SIGNATURE", defaults["dmc_signature"]),
            dmc_phone=os.getenv("DMC_PHONE", defaults["dmc_phone"]),
            dmc_website=os.getenv("DMC_WEBSITE", defaults["dmc_website"]),
            gazetteer_path=os.getenv("QUOTEDESK_GAZETTEER_PATH")
            or defaults.get("gazetteer_path")
            or None,
        )

    def processing_config(self) -> ProcessingConfig:
        """Summary: Build the batch processing knobs.

        Importance: Keeps the orchestrator independent of the full config object.
        Alternatives: Read AppConfig fields directly in the batch service.
        """

        return ProcessingConfig(
            max_emails=self.max_emails,
            concurrency=max(1, self.concurrency),
            retry=RetryPolicy(max_attempts=max(1, self.retries)),
            timeout_ms=self.per_email_timeout_ms,
            step_limit=self.step_limit,
        )

    def classification_policy(self) -> ClassificationPolicy:
        """Summary: Build the classifier policy from configuration.

        Importance: Makes the open threshold/veto choices switchable without code changes.
        Alternatives: Hardcode the policy in the classifier.
        """

        return ClassificationPolicy(
            tourism_threshold=self.tourism_threshold,
            negative_signal_policy=NegativeSignalPolicy(self.negative_signal_policy),
        )


def load_defaults(path: Path) -> dict[str, str]:
    """Summary: Load configuration defaults from JSON.

    Importance: Missing defaults fail loudly at startup.
    Alternatives: Declare defaults on the dataclass fields.
    """

    if not path.exists():
        raise FileNotFoundError(f"Defaults file not found: {path}")
    return json.loads(path.read_text(encoding="utf-8"))


def load_dotenv(path: Path) -> None:
    """Summary: Load key-value pairs from a .env file into the environment.

    Importance: Keeps secrets like OPENAI_API_KEY out of code while supporting local workflows.
    Alternatives: Use python-dotenv or OS-specific secret stores.
    """

    if not path.exists():
        return
    for raw_line in path.read_text(encoding="utf-8").splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, value = line.split("=", 1)
        os.environ.setdefault(key.strip(), value.strip())
