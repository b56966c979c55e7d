from attestgate.core.middleware.instrumentation import instrument_requests_middleware

__all__ = ["instrument_requests_middleware"]
