import functools
import logging
import os
import sys

import pydantic

from flask import Flask, Response, request, current_app
from prometheus_client import CONTENT_TYPE_LATEST

from models import (
    AdmissionRequest,
    AdmissionResponse,
    AdmissionReview,
    AdmissionReviewStatus,
    PatchType,
    Pod,
    encode_patch,
)

from metrics import MutationMetrics, instance_name_from_env
from quota import (
    DEFAULT_CEILING_MILLICORES,
    DEFAULT_SKIP_CONTAINERS,
    clamp_cpu_requests,
)
from exc import (
    ApplicationError,
    ConfigurationError,
    InvalidRequestError,
    PodShapeError,
    ResponseEncodeError,
)

LOG = logging.getLogger(__name__)
logging.basicConfig(level=logging.INFO)


class DEFAULTS:
    CPU_CEILING_MILLICORES = DEFAULT_CEILING_MILLICORES
    SKIP_CONTAINERS = ",".join(DEFAULT_SKIP_CONTAINERS)
    INSTANCE_NAME = None
    CERT_FILE = "/etc/webhook/certs/tls.crt"
    KEY_FILE = "/etc/webhook/certs/tls.key"
    HOST = "0.0.0.0"
    PORT = 443
    LOG_LEVEL = "INFO"


def encode_review(review: AdmissionReview) -> str:
    return review.model_dump_json(exclude_none=True)


def jsonresponse():
    """Transforms the AdmissionReview returned by a view function into a JSON
    response."""

    def _outer(func):
        @functools.wraps(func)
        def _inner(*args, **kwargs):
            res = func(*args, **kwargs)
            try:
                body = encode_review(res)
            except (ValueError, TypeError) as err:
                LOG.error("failed to encode response: %s", err)
                raise ResponseEncodeError("could not encode response")

            return Response(body, status=200, content_type="application/json")

        return _inner

    return _outer


def review_pod(req: AdmissionRequest) -> AdmissionResponse:
    """Decide on a single admission request and record the outcome in the
    app's metrics. Exactly one of the success or failure counters moves."""

    metrics = current_app.metrics

    def deny(message):
        metrics.record_failure(req.namespace, req.name)
        return AdmissionResponse(
            uid=req.uid,
            allowed=False,
            status=AdmissionReviewStatus(message=message),
        )

    try:
        # The webhook is registered for CREATE only; a DELETE carries no
        # object and would be denied here.
        pod = Pod.model_validate(req.object)
        patch = clamp_cpu_requests(
            pod,
            ceiling=current_app.config["CPU_CEILING_MILLICORES"],
            skip_containers=current_app.config["SKIP_CONTAINERS"],
            name=req.name,
            namespace=req.namespace,
        )
    except (pydantic.ValidationError, PodShapeError) as err:
        LOG.warning("could not decode pod %s/%s: %s", req.namespace, req.name, err)
        return deny(str(err))

    # Nothing to change
    if not patch.root:
        metrics.record_success(req.namespace, req.name)
        return AdmissionResponse(uid=req.uid, allowed=True)

    try:
        encoded = encode_patch(patch)
    except (ValueError, TypeError) as err:
        LOG.error("could not encode patch for %s/%s: %s", req.namespace, req.name, err)
        return deny(str(err) or "could not encode patch")

    metrics.record_success(req.namespace, req.name)
    return AdmissionResponse(
        uid=req.uid,
        allowed=True,
        patchType=PatchType.JSONPatch,
        patch=encoded,
    )


@jsonresponse()
def mutate_pod():
    body = AdmissionReview.model_validate_json(request.get_data())
    if body.request is None:
        raise InvalidRequestError("admission review contains no request")

    return AdmissionReview(
        apiVersion=body.apiVersion,
        response=review_pod(body.request),
    )


def scrape_metrics():
    return Response(current_app.metrics.exposition(), content_type=CONTENT_TYPE_LATEST)


def handle_badrequest(err):
    LOG.warning("could not decode admission review: %s", err)
    return "could not decode request", 400, {"content-type": "text/plain"}


def handle_applicationerror(err):
    return str(err), 500, {"content-type": "text/plain"}


def health():
    return "OK", 200, {"content-type": "text/plain"}


def create_app(**config) -> Flask:
    """Use an application factory [1] to create the Flask app.

    Settings come from DEFAULTS, then from WEBHOOK_* environment variables,
    then from keyword arguments. The metrics registry and the instance name
    used to label it are created here and attached to the app, so every app
    counts independently.

    [1]: https://flask.palletsprojects.com/en/3.0.x/patterns/appfactories/
    """

    app = Flask(__name__)
    app.config.from_object(DEFAULTS)
    app.config.from_prefixed_env("WEBHOOK")
    if config:
        app.config.update(config)

    ceiling = app.config["CPU_CEILING_MILLICORES"]
    if isinstance(ceiling, bool) or not isinstance(ceiling, int) or ceiling < 0:
        raise ConfigurationError(f"invalid CPU ceiling: {ceiling!r}")

    skip = app.config["SKIP_CONTAINERS"]
    if isinstance(skip, str):
        skip = [name.strip() for name in skip.split(",") if name.strip()]
    app.config["SKIP_CONTAINERS"] = list(skip)

    instance_name = app.config["INSTANCE_NAME"] or instance_name_from_env()
    app.metrics = MutationMetrics(instance_name)
    LOG.info("webhook instance name: %s", app.metrics.instance_name)

    app.errorhandler(pydantic.ValidationError)(handle_badrequest)
    app.errorhandler(InvalidRequestError)(handle_badrequest)
    app.errorhandler(ApplicationError)(handle_applicationerror)
    app.add_url_rule("/healthz", view_func=health)
    app.add_url_rule("/metrics", view_func=scrape_metrics)
    app.add_url_rule("/mutate", view_func=mutate_pod, methods=["POST"])

    return app


def main():
    try:
        app = create_app()
    except ConfigurationError as err:
        LOG.error("%s", err)
        sys.exit(1)

    logging.getLogger().setLevel(app.config["LOG_LEVEL"])

    cert_file = app.config["CERT_FILE"]
    key_file = app.config["KEY_FILE"]
    for path in (cert_file, key_file):
        if not os.path.isfile(path):
            LOG.error("missing TLS material: %s", path)
            sys.exit(1)

    LOG.info("serving on %s:%s", app.config["HOST"], app.config["PORT"])
    app.run(
        host=app.config["HOST"],
        port=app.config["PORT"],
        ssl_context=(cert_file, key_file),
        threaded=True,
    )


if __name__ == "__main__":
    main()
