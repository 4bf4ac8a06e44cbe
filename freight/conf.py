"""
Engine configuration.

Services receive an ``EngineConfig`` argument instead of reading Django
settings on their own; callers that do not pass one get a snapshot of the
current settings.
"""

from dataclasses import dataclass


@dataclass(frozen=True)
class EngineConfig:
    default_payment_terms_days: int = 30
    contention_retries: int = 3
    settlement_prefix: str = "SET"
    invoice_prefix: str = "INV"

    @classmethod
    def from_settings(cls, source=None):
        if source is None:
            from django.conf import settings as source

        return cls(
            default_payment_terms_days=getattr(
                source,
                "FREIGHT_DEFAULT_PAYMENT_TERMS_DAYS",
                cls.default_payment_terms_days,
            ),
            contention_retries=getattr(
                source, "FREIGHT_CONTENTION_RETRIES", cls.contention_retries
            ),
            settlement_prefix=getattr(
                source, "FREIGHT_SETTLEMENT_PREFIX", cls.settlement_prefix
            ),
            invoice_prefix=getattr(source, "FREIGHT_INVOICE_PREFIX", cls.invoice_prefix),
        )


def resolve(config):
    return config if config is not None else EngineConfig.from_settings()
