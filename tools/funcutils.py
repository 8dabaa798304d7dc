import time


class RateLimitedFunction(object):
    """
    Close over a function and a time limit in seconds. The resulting object can
    be called like the function, but will not delegate to the function if that
    function was called through the object in the time limit.

    first_call_after delays the very first delegation by that many seconds
    instead of a whole limit. Clients can ignore the time limit by calling the
    function directly as the func attribute of the object.
    """
    def __init__(self, func, limit, first_call_after=0, clock=time.monotonic):
        self.func, self.limit = func, limit
        self.clock = clock
        self.last_called = clock() - limit + first_call_after

    def __call__(self, *args, **kwargs):
        now = self.clock()
        if now - self.last_called > self.limit:
            self.last_called = now
            return self.func(*args, **kwargs)

    def __repr__(self):
        return '{cls_name}(func={func}, limit={limit}, last_called={last_called})'.format(
            cls_name=self.__class__.__name__,
            func=self.func,
            limit=self.limit,
            last_called=self.last_called,
        )
