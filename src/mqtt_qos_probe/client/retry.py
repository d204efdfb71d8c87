"""
Retry Policy for the QoS1 publish.
"""
from typing import Any, Dict

DEFAULT_RETRY_CAP = 3


class RetryPolicy:
    """
    Bounds how many resend requests a QoS1 publish survives.

    The caller increments its counter first and then asks; once the
    answer is False the session is permanently failed.
    """
    retry_cap: int

    def __init__(self, retry_cap: int = DEFAULT_RETRY_CAP):
        if retry_cap < 1:
            raise ValueError(f"retry_cap must be at least 1, got {retry_cap}")
        self.retry_cap = retry_cap

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> "RetryPolicy":
        return cls(int(config.get('retry', {}).get('retry_cap', DEFAULT_RETRY_CAP)))

    def should_retry(self, retry_count: int) -> bool:
        return retry_count < self.retry_cap
