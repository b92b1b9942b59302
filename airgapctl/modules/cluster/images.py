"""Required image catalogue and image reference helpers."""
import logging
from functools import lru_cache
from pathlib import Path
from typing import Dict, List, Tuple

import yaml

from airgapctl.modules.errors import ConfigError

logger = logging.getLogger("airgapctl.cluster.images")

IMAGES_FILE = Path(__file__).with_name("images.yaml")

K8S_IMAGES = "k8s-images"
KUBE_OVN_IMAGES = "kube-ovn-images"
MULTUS_CNI_IMAGES = "multus-cni-images"
KUBE_PROMETHEUS_IMAGES = "kube-prometheus-stack-images"
HAMI_IMAGES = "hami-images"
HAMI_WEBUI_IMAGES = "hami-webui-images"
ASCEND_DEVICE_PLUGIN_IMAGES = "ascend-device-plugin-images"

DEFAULT_REGISTRY = "docker.io"


@lru_cache(maxsize=None)
def _load_groups(path: str) -> Dict[str, Tuple[str, ...]]:
    try:
        with open(path, 'r') as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        raise ConfigError(f"parse images.yaml failed: {e}")
    return {group: tuple(images or ()) for group, images in data.items()}


def images_by_group() -> Dict[str, List[str]]:
    """Return the image catalogue keyed by group name."""
    return {group: list(images) for group, images in _load_groups(str(IMAGES_FILE)).items()}


def required_images(spec) -> List[str]:
    """Images the cluster needs, in catalogue order, without duplicates.

    `k8s-images` is always included; add-on groups follow the add-on flags.
    """
    groups = images_by_group()
    selected = [K8S_IMAGES]
    addons = spec.addons
    if addons.kube_ovn.enabled:
        selected.append(KUBE_OVN_IMAGES)
    if addons.multus_cni.enabled:
        selected.append(MULTUS_CNI_IMAGES)
    if addons.kube_prometheus.enabled:
        selected.append(KUBE_PROMETHEUS_IMAGES)
    if addons.hami.enabled:
        selected.extend([HAMI_IMAGES, HAMI_WEBUI_IMAGES, ASCEND_DEVICE_PLUGIN_IMAGES])

    images: List[str] = []
    for group in selected:
        for image in groups.get(group, []):
            if image not in images:
                images.append(image)
    logger.debug(f"Selected {len(images)} image(s) from groups: {', '.join(selected)}")
    return images


def _is_registry_host(segment: str) -> bool:
    return "." in segment or ":" in segment or segment == "localhost"


def normalize_image(image: str) -> str:
    """Expand a short reference to `<registry>/<namespace>/<name>[:tag]`.

    `nginx:1.27` becomes `docker.io/library/nginx:1.27`,
    `grafana/grafana` becomes `docker.io/grafana/grafana`.
    """
    image = image.strip()
    first, sep, rest = image.partition("/")
    if not sep:
        return f"{DEFAULT_REGISTRY}/library/{image}"
    if not _is_registry_host(first):
        return f"{DEFAULT_REGISTRY}/{image}"
    if "/" not in rest:
        return f"{first}/library/{rest}"
    return image


def split_image(image: str) -> Tuple[str, str]:
    """Split an image into (repository, tag); the tag defaults to `latest`."""
    last_slash = image.rfind("/")
    last_colon = image.rfind(":")
    if last_colon > last_slash:
        return image[:last_colon], image[last_colon + 1:]
    return image, "latest"


def replace_image_registry(image: str, registry: str) -> str:
    """Swap the registry host of an image for `registry`."""
    path = normalize_image(image).split("/", 1)[1]
    return f"{registry}/{path}"
