import logging
import re
from collections.abc import Iterable

from models import Patch, PatchAction, PatchOp, Pod
from exc import PodShapeError, QuantityParseError

LOG = logging.getLogger(__name__)

DEFAULT_CEILING_MILLICORES = 100
DEFAULT_SKIP_CONTAINERS = ("istio-proxy",)

# Only whole milli-CPU quantities ("250m") are understood.
MILLICORES_RE = re.compile(r"([0-9]+)m")


def parse_millicores(quantity: str) -> int:
    match = MILLICORES_RE.fullmatch(quantity)
    if match is None:
        raise QuantityParseError(f"invalid CPU quantity: {quantity!r}")

    return int(match.group(1))


def cpu_request_path(index: int) -> str:
    return f"/spec/containers/{index}/resources/requests/cpu"


def clamp_cpu_requests(
    pod: Pod,
    ceiling: int = DEFAULT_CEILING_MILLICORES,
    skip_containers: Iterable[str] = DEFAULT_SKIP_CONTAINERS,
    name: str = "",
    namespace: str = "",
) -> Patch:
    """Return a JSON patch that lowers every CPU request above `ceiling`
    milli-CPU down to the ceiling.

    Containers listed in `skip_containers` are left alone. Containers whose
    quantity cannot be parsed are logged and skipped. Operations are emitted
    in container order and their paths use the container's index in the
    original pod. `name` and `namespace` are only used for logging.

    Raises PodShapeError if a container that should be checked has no CPU
    request.
    """

    skip = set(skip_containers)
    quota = f"{ceiling}m"
    actions = []

    for i, container in enumerate(pod.spec.containers):
        if container.name in skip:
            continue

        cpu = container.cpu_request
        if cpu is None:
            raise PodShapeError(
                f"container {container.name} has no resources.requests.cpu"
            )

        try:
            millicores = parse_millicores(cpu)
        except QuantityParseError:
            LOG.warning(
                "invalid CPU format: %s %s/%s (container %s)",
                cpu,
                name,
                namespace,
                container.name,
            )
            continue

        if millicores > ceiling:
            LOG.info(
                "clamping CPU request of container %s in %s/%s from %s to %s",
                container.name,
                namespace,
                name,
                cpu,
                quota,
            )
            actions.append(
                PatchAction(op=PatchOp.REPLACE, path=cpu_request_path(i), value=quota)
            )

    return Patch(actions)
