"""Cache TTL (Time To Live) configuration.

All TTL values are in seconds and can be overridden with CACHE_TTL_<TYPE>
environment variables, e.g. CACHE_TTL_CLAIM=600.
"""
import os

DEFAULT_TTL = {
    "claim": 900,  # 15 minutes
    "invoice": 900,
    "remittance_batch": 600,  # 10 minutes
    "patient_balance": 300,  # 5 minutes
}

FALLBACK_TTL = 600


def get_ttl(cache_type: str) -> int:
    """
    Get TTL value for a cache type.

    Args:
        cache_type: Type of cache (e.g., "claim", "remittance_batch")

    Returns:
        TTL value in seconds
    """
    env_value = os.getenv(f"CACHE_TTL_{cache_type.upper()}")
    if env_value:
        try:
            return int(env_value)
        except ValueError:
            pass
    return DEFAULT_TTL.get(cache_type, FALLBACK_TTL)


def get_claim_ttl() -> int:
    return get_ttl("claim")


def get_invoice_ttl() -> int:
    return get_ttl("invoice")


def get_remittance_batch_ttl() -> int:
    return get_ttl("remittance_batch")


def get_patient_balance_ttl() -> int:
    return get_ttl("patient_balance")
