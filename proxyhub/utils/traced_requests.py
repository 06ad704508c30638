import logging
from contextlib import contextmanager
from typing import Dict, Optional

from opentelemetry.trace import Tracer

logger = logging.getLogger("uvicorn.error")


@contextmanager
def traced_exchange(
    tracer: Tracer,
    operation: str,
    proxy_name: Optional[str],
    method: Optional[str],
    start_message: str,
    extra_attrs: Optional[Dict] = None,
):
    """Context manager to create a span, set common proxy attributes, and log a start message."""
    with tracer.start_as_current_span(operation) as span:
        if proxy_name:
            span.set_attribute("proxy.name", proxy_name)
        if method:
            span.set_attribute("proxy.method", method)
        if extra_attrs:
            for k, v in extra_attrs.items():
                span.set_attribute(k, v)
        logger.debug(start_message)
        yield span
