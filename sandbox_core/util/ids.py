import time
import uuid
from functools import wraps
from ..env import LOG
from ..telemetry.log import bound_logging_vars


def generate_execution_id() -> str:
    return uuid.uuid4().hex


def generate_client_id() -> str:
    return f"client-{uuid.uuid4().hex[:12]}"


def track_process(func):
    """Log entry, exit and elapsed time of a coroutine under a fresh `temp_id`."""

    @wraps(func)
    async def wrapper(*args, **kwargs):
        func_name = func.__name__
        with bound_logging_vars(temp_id=uuid.uuid4().hex[:8], func_name=func_name):
            LOG.debug(f"Enter {func_name}")
            start = time.monotonic()
            try:
                result = await func(*args, **kwargs)
            except Exception as e:
                LOG.warning(
                    f"{func_name} raised {type(e).__name__} after {time.monotonic() - start:.2f}s"
                )
                raise
            LOG.info(f"{func_name} finished in {time.monotonic() - start:.2f}s")
            return result

    return wrapper
