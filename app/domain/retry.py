from dataclasses import dataclass

# Job-level retry budget. The in-process fallback attempt does not count.
MAX_RETRIES = 3


@dataclass(frozen=True)
class RetryDecision:
    retry_count: int
    requeue: bool


def decide_after_failure(retry_count: int, max_retries: int = MAX_RETRIES) -> RetryDecision:
    """
    Called once per failed dispatch. `retry_count` is the value before this
    failure; the returned count includes it.

    A job that has failed `max_retries` times stays failed.
    """
    new_count = retry_count + 1
    return RetryDecision(retry_count=new_count, requeue=new_count < max_retries)

