import logging
import time

logger = logging.getLogger(__name__)

RETRY = 'retry'
RETHROW = 'rethrow'


class RetriesExhausted(Exception):
    """
    Raised by retry() once every allowed attempt failed.

    The error of the last attempt is kept in last_error (and chained as __cause__).
    """

    def __init__(self, attempts, last_error):
        super(RetriesExhausted, self).__init__(
            "giving up after {} attempts, last error: {!r}".format(attempts, last_error))
        self.attempts = attempts
        self.last_error = last_error


def retry_decision(attempt, max_attempts):
    """
    Decide what to do after attempt number `attempt` (1-based) failed.

    Returns RETRY while attempts are left, RETHROW otherwise.
    """
    return RETRY if attempt < max_attempts else RETHROW


def retry(fn, max_attempts=10, allowed_error=None, sleep_seconds=1):
    """
    Call fn until it succeeds, sleeping sleep_seconds between attempts.

    Errors rejected by allowed_error are raised right away. When max_attempts calls
    failed, RetriesExhausted is raised from the last error.
    """
    if max_attempts <= 0:
        raise ValueError("max_attempts must be a positive value, but given {}".format(str(max_attempts)))
    attempt = 0
    while True:
        attempt += 1
        try:
            return fn()
        except Exception as e:
            if allowed_error and not allowed_error(e):
                raise
            if retry_decision(attempt, max_attempts) == RETHROW:
                raise RetriesExhausted(attempt, e) from e
            logger.debug("Retrying as error '{}' was seen; attempt #{}, sleeping for {} seconds"
                         .format(str(e), attempt, str(sleep_seconds)))
            time.sleep(sleep_seconds)
