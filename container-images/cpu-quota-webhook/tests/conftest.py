import pytest

import mutate


INSTANCE_NAME = "test-webhook-pod"


def make_pod(*containers):
    """Build a pod object from (name, cpu) pairs."""
    return {
        "apiVersion": "v1",
        "kind": "Pod",
        "metadata": {"name": "test-pod", "namespace": "default"},
        "spec": {
            "containers": [
                {"name": name, "resources": {"requests": {"cpu": cpu}}}
                for name, cpu in containers
            ]
        },
    }


def make_review(obj, uid="12345", name="test-pod", namespace="default"):
    return {
        "apiVersion": "admission.k8s.io/v1",
        "kind": "AdmissionReview",
        "request": {
            "uid": uid,
            "name": name,
            "namespace": namespace,
            "operation": "CREATE",
            "object": obj,
        },
    }


@pytest.fixture()
def app():
    app = mutate.create_app(
        TESTING=True,
        INSTANCE_NAME=INSTANCE_NAME,
    )
    yield app


@pytest.fixture()
def client(app):
    return app.test_client()


@pytest.fixture()
def counts(app):
    """Return a function that reads the success and failure counters for a pod."""

    def _counts(namespace="default", pod="test-pod"):
        labels = {
            "pod_mutation_name": INSTANCE_NAME,
            "namespace": namespace,
            "pod": pod,
        }
        registry = app.metrics.registry
        return (
            registry.get_sample_value("pod_mutation_success_total", labels) or 0,
            registry.get_sample_value("pod_mutation_failure_total", labels) or 0,
        )

    return _counts
