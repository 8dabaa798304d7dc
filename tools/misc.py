import time
import logging

logger = logging.getLogger(__name__)


def retry_till_success(fun, *args, **kwargs):
    timeout = kwargs.pop('timeout', 60)
    bypassed_exception = kwargs.pop('bypassed_exception', Exception)

    deadline = time.time() + timeout
    while True:
        try:
            return fun(*args, **kwargs)
        except bypassed_exception as e:
            if time.time() > deadline:
                raise
            else:
                logger.debug("{} failed with {!r}, retrying".format(getattr(fun, '__name__', fun), e))
                # brief pause before next attempt
                time.sleep(0.25)
