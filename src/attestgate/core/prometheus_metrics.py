from dataclasses import dataclass
from enum import Enum

from prometheus_client import Counter, Gauge, Histogram


class PrometheusResult(Enum):
    SUCCESS = "success"
    ERROR = "error"


@dataclass
class PrometheusMetrics:
    in_progress_requests: Gauge

    # Standard
    request_count_total: Counter  # method, endpoint
    request_duration_seconds: Histogram  # method, endpoint
    response_status_codes: Counter  # status_code
    request_error_count_total: Counter  # method, error_type

    # Attestation
    generate_challenge_count_total: Counter
    validate_challenge_latency: Histogram  # result
    verify_attestation_latency: Histogram  # platform, result
    verify_assertion_latency: Histogram  # platform, result
    verification_rejected_total: Counter  # flow(attest, assert), error
    storage_error_count_total: Counter  # operation
    purged_challenges_total: Counter


metrics = PrometheusMetrics(
    in_progress_requests=Gauge(
        "in_progress_requests", "Number of requests currently in progress."
    ),
    # Standard
    request_count_total=Counter(
        "request_count_total",
        "Total number of requests received.",
        ["method", "endpoint"],
    ),
    request_duration_seconds=Histogram(
        "request_duration_seconds",
        "Total roundtrip request duration distribution.",
        ["method", "endpoint"],
    ),
    response_status_codes=Counter(
        "response_status_codes_total",
        "Total number of response status codes.",
        ["status_code"],
    ),
    request_error_count_total=Counter(
        "request_error_count_total",
        "Total number of errors encountered.",
        ["method", "error_type"],
    ),
    # Attestation
    generate_challenge_count_total=Counter(
        "generate_challenge_count_total",
        "Total challenges issued.",
    ),
    validate_challenge_latency=Histogram(
        "validate_challenge_latency_seconds",
        "Latency of challenge validation.",
        ["result"],
    ),
    verify_attestation_latency=Histogram(
        "verify_attestation_latency_seconds",
        "Latency of initial attestation verification.",
        ["platform", "result"],
    ),
    verify_assertion_latency=Histogram(
        "verify_assertion_latency_seconds",
        "Latency of assertion verification.",
        ["platform", "result"],
    ),
    verification_rejected_total=Counter(
        "verification_rejected_total",
        "Total rejected attestations and assertions.",
        ["flow", "error"],
    ),
    storage_error_count_total=Counter(
        "storage_error_count_total",
        "Total storage backend failures.",
        ["operation"],
    ),
    purged_challenges_total=Counter(
        "purged_challenges_total",
        "Total expired challenges reclaimed.",
    ),
)
