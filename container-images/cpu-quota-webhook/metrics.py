import os

from prometheus_client import (
    CollectorRegistry,
    Counter,
    GCCollector,
    PlatformCollector,
    ProcessCollector,
    generate_latest,
)

UNKNOWN_INSTANCE = "unknown"

# labels: webhook instance, namespace and name of the admitted pod
LABELS = ["pod_mutation_name", "namespace", "pod"]


def instance_name_from_env() -> str:
    return os.environ.get("POD_NAME") or UNKNOWN_INSTANCE


class MutationMetrics:
    """Success and failure counters for admitted pods.

    Every instance owns its own registry, so separate apps (and tests) never
    share counts.
    """

    def __init__(self, instance_name: str, registry: CollectorRegistry | None = None):
        self.instance_name = instance_name or UNKNOWN_INSTANCE
        if registry is None:
            # A private registry still exposes the usual process and runtime
            # metrics, like the default one does.
            registry = CollectorRegistry()
            ProcessCollector(registry=registry)
            PlatformCollector(registry=registry)
            GCCollector(registry=registry)
        self.registry = registry

        self.success = Counter(
            "pod_mutation_success_total",
            "Total number of successful pod mutations",
            LABELS,
            registry=self.registry,
        )
        self.failure = Counter(
            "pod_mutation_failure_total",
            "Total number of failed pod mutations",
            LABELS,
            registry=self.registry,
        )

    def record_success(self, namespace: str, pod: str) -> None:
        self.success.labels(self.instance_name, namespace, pod).inc()

    def record_failure(self, namespace: str, pod: str) -> None:
        self.failure.labels(self.instance_name, namespace, pod).inc()

    def exposition(self) -> bytes:
        return generate_latest(self.registry)
