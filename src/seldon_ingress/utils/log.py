import logging

LOGGER_NAME = "seldon-ingress-controller"
CONTEXT_KEYS = ["sdep", "namespace", "ingress", "trace", "leader"]


class SafeFormatter(logging.Formatter):
    def format(self, record):
        for key in CONTEXT_KEYS:
            if not hasattr(record, key):
                setattr(record, key, "")
        return super().format(record)


class ContextLoggerAdapter(logging.LoggerAdapter):
    """Carries per-deployment context into every record."""

    def __init__(self, logger, identity=""):
        super().__init__(logger, {})
        self.context = {k: "" for k in CONTEXT_KEYS}
        self.context["leader"] = identity

    def set_context(self, **kwargs):
        self.context.update(kwargs)

    def process(self, msg, kwargs):
        extra = kwargs.get("extra", {})
        combined = {**self.context, **extra}
        for k in CONTEXT_KEYS:
            combined.setdefault(k, "")
        kwargs["extra"] = combined
        return msg, kwargs


def setup_logging(level="INFO"):
    base_logger = logging.getLogger(LOGGER_NAME)
    base_logger.setLevel(level)
    handler = logging.StreamHandler()
    handler.setFormatter(SafeFormatter(
        'ts=%(asctime)s level=%(levelname)s msg="%(message)s" sdep=%(sdep)s '
        'namespace=%(namespace)s ingress=%(ingress)s trace=%(trace)s leader=%(leader)s'
    ))
    base_logger.handlers = [handler]
    return base_logger
