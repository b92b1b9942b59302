"""Mirror the required images into a Harbor-compatible private registry.

Syncing runs in two passes. The existence pass asks the registry which
images are already present; the sync pass creates missing projects and
pulls, retags and pushes only what is missing. A second run against the
same registry pushes nothing.
"""
import logging
import shutil
import subprocess
from typing import Dict, Iterable, List, Optional, Sequence, Tuple
from urllib.parse import quote

import requests

from airgapctl.config import Config
from airgapctl.modules.errors import (
    CommandError,
    ImageClientError,
    RegistryAuthError,
    RegistryError,
)
from . import images
from .config import ClusterSpec, RegistryConfig
from .models import ImageSyncItem, RegistrySyncState

logger = logging.getLogger("airgapctl.cluster.registry")

# Tried in this order
IMAGE_CLIENTS = ("nerdctl", "docker", "podman")


def build_sync_item(image: str, registry_host: str) -> ImageSyncItem:
    """Work out where an image lands in the private registry.

    The registry host replaces the first path segment; the next segment is
    the Harbor project.
    """
    source = images.normalize_image(image)
    target = images.replace_image_registry(source, registry_host)
    path = target[len(registry_host) + 1:]
    project, _, rest = path.partition("/")
    repo_name, tag = images.split_image(rest)
    return ImageSyncItem(source=source, target=target, project=project, repo_name=repo_name, tag=tag)


class HarborClient:
    """Minimal client for the Harbor v2.0 project and artifact API."""

    def __init__(
        self,
        registry: RegistryConfig,
        session: Optional[requests.Session] = None,
        timeout: int = Config.REGISTRY_TIMEOUT,
    ):
        self.base_url = f"{registry.scheme}://{registry.host}/api/v2.0"
        self.session = session or requests.Session()
        self.session.auth = (registry.username, registry.password)
        self.timeout = timeout

    def _request(self, method: str, path: str, **kwargs) -> requests.Response:
        url = f"{self.base_url}{path}"
        try:
            response = self.session.request(method, url, timeout=self.timeout, **kwargs)
        except requests.RequestException as e:
            raise RegistryError(f"{method} {url} failed: {e}") from e
        if response.status_code in (401, 403):
            raise RegistryAuthError(
                f"registry rejected credentials for {method} {url}",
                status=response.status_code,
                body=response.text,
            )
        return response

    def project_exists(self, project: str) -> bool:
        response = self._request("GET", "/projects", params={"name": project})
        if response.status_code != 200:
            raise RegistryError(f"listing project {project} failed", response.status_code, response.text)
        try:
            listed = response.json() or []
        except ValueError as e:
            raise RegistryError(f"invalid project list for {project}", response.status_code, response.text) from e
        return any(item.get("name") == project for item in listed)

    def artifact_exists(self, project: str, repo_name: str, tag: str) -> bool:
        # Harbor wants slashes in repository names double-encoded
        repo = quote(quote(repo_name, safe=""), safe="")
        path = f"/projects/{quote(project, safe='')}/repositories/{repo}/artifacts/{quote(tag, safe='')}"
        response = self._request("GET", path)
        if response.status_code == 200:
            return True
        if response.status_code == 404:
            return False
        raise RegistryError(
            f"checking {project}/{repo_name}:{tag} failed", response.status_code, response.text
        )

    def create_project(self, project: str) -> None:
        payload = {"project_name": project, "metadata": {"public": "true"}}
        response = self._request("POST", "/projects", json=payload)
        if response.status_code in (201, 409):
            return
        raise RegistryError(f"creating project {project} failed", response.status_code, response.text)


class ImageClient:
    """Local container CLI (nerdctl, docker or podman) used to pull, tag and push."""

    def __init__(self, binary: str, insecure: bool = False):
        self.binary = binary
        self.name = binary.rsplit("/", 1)[-1]
        self.insecure = insecure

    @classmethod
    def detect(cls, insecure: bool = False) -> "ImageClient":
        for name in IMAGE_CLIENTS:
            path = shutil.which(name)
            if path:
                logger.debug(f"Using {name} at {path} for image sync")
                return cls(path, insecure=insecure)
        raise ImageClientError(f"no image client found (tried {', '.join(IMAGE_CLIENTS)})")

    def _insecure_flags(self) -> List[str]:
        if not self.insecure:
            return []
        if self.name == "nerdctl":
            return ["--insecure-registry"]
        if self.name == "podman":
            return ["--tls-verify=false"]
        return []

    def _run(self, args: Sequence[str], stdin: Optional[str] = None) -> str:
        cmd = [self.binary, *args]
        display = " ".join(cmd)
        logger.debug(f"💻 Running: {Config.redact(display)}")
        result = subprocess.run(cmd, input=stdin, capture_output=True, text=True)
        output = (result.stdout or "") + (result.stderr or "")
        if result.returncode != 0:
            raise CommandError(display, result.returncode, output)
        return output.strip()

    def login(self, host: str, username: str, password: str) -> None:
        self._run(["login", *self._insecure_flags(), "-u", username, "--password-stdin", host], stdin=password)

    def pull(self, image: str) -> None:
        self._run(["pull", *self._insecure_flags(), image])

    def tag(self, source: str, target: str) -> None:
        self._run(["tag", source, target])

    def push(self, image: str) -> None:
        self._run(["push", *self._insecure_flags(), image])


class RegistrySyncEngine:
    """Plans and performs the image mirror for one run."""

    def __init__(self, registry: RegistryConfig, harbor: HarborClient, client_factory=None):
        self.registry = registry
        self.harbor = harbor
        self._client_factory = client_factory or (lambda: ImageClient.detect(insecure=registry.use_http))
        self._client: Optional[ImageClient] = None
        self._projects: Dict[str, bool] = {}

    @property
    def client(self) -> ImageClient:
        if self._client is None:
            self._client = self._client_factory()
        return self._client

    def _project_exists(self, project: str) -> bool:
        if project not in self._projects:
            self._projects[project] = self.harbor.project_exists(project)
        return self._projects[project]

    def plan(self, image_list: Iterable[str]) -> Tuple[List[ImageSyncItem], List[ImageSyncItem]]:
        """Existence pass.

        Returns:
            (items to sync, items already present)

        Raises:
            RegistryAuthError: if the registry rejects the credentials
            RegistryError: on any other unexpected answer
        """
        missing: List[ImageSyncItem] = []
        present: List[ImageSyncItem] = []
        for image in image_list:
            item = build_sync_item(image, self.registry.host)
            if self._project_exists(item.project) and self.harbor.artifact_exists(
                item.project, item.repo_name, item.tag
            ):
                present.append(item)
            else:
                missing.append(item)
        logger.info(
            f"Registry {self.registry.host}: {len(present)} image(s) present, {len(missing)} need syncing"
        )
        return missing, present

    def sync(self, items: Sequence[ImageSyncItem]) -> List[str]:
        """Sync pass: create projects, then pull, retag and push each image."""
        if not items:
            return []
        for project in dict.fromkeys(item.project for item in items):
            if not self._project_exists(project):
                logger.info(f"Creating registry project {project}")
                self.harbor.create_project(project)
                self._projects[project] = True

        client = self.client
        client.login(self.registry.host, self.registry.username, self.registry.password)
        synced = []
        for i, item in enumerate(items, start=1):
            logger.info(f"[{i}/{len(items)}] {item.source} -> {item.target}")
            client.pull(item.source)
            client.tag(item.source, item.target)
            client.push(item.target)
            synced.append(item.target)
        return synced

    def run(self, image_list: Iterable[str]) -> Tuple[List[str], List[str]]:
        missing, present = self.plan(image_list)
        synced = self.sync(missing)
        return synced, [item.target for item in present]


class RegistrySyncStep:
    """Check/act pair that syncs the mirror at most once per run.

    The check runs the existence pass and keeps its plan; the action
    syncs exactly that plan.
    """

    def __init__(self, engine: RegistrySyncEngine, image_list: Sequence[str], state: RegistrySyncState):
        self.engine = engine
        self.image_list = list(image_list)
        self.state = state
        self._missing: Optional[List[ImageSyncItem]] = None
        self._present: List[ImageSyncItem] = []

    def check(self) -> bool:
        if self.state.done:
            return True
        self._missing, self._present = self.engine.plan(self.image_list)
        if not self._missing:
            self.state.mark_done([], [item.target for item in self._present])
            return True
        return False

    def action(self) -> None:
        if self._missing is None:
            self._missing, self._present = self.engine.plan(self.image_list)
        synced = self.engine.sync(self._missing)
        self.state.mark_done(synced, [item.target for item in self._present])


def default_sync_engine(spec: ClusterSpec) -> RegistrySyncEngine:
    """Engine talking to the cluster's registry through its Harbor API."""
    return RegistrySyncEngine(spec.registry, HarborClient(spec.registry))
