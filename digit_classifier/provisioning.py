"""Locates and downloads models from a remote model registry

The registry is a plain HTTP service. ``GET {base_url}/models/{name}`` returns a
JSON manifest describing the latest version of a model::

    {"name": "mnist_v1", "version": "3", "url": "https://.../mnist.tflite",
     "sha256": "...", "size": 12345}

Downloaded models are kept under ``cache_dir/<name>/`` as ``model.tflite`` plus
the ``manifest.json`` they were downloaded with.

    Typical Usage Example:

    >>> manager = ModelManager("https://models.example.com", Path("~/.cache/models"))
    >>> provisioner = ModelProvisioner(manager)
    >>> future = provisioner.provision("mnist_v1")
    >>> path = future.result()
"""

import hashlib
import json
import logging
import os
import shutil
from concurrent.futures import Executor, Future, ThreadPoolExecutor
from pathlib import Path
from typing import Callable, Optional
from urllib.parse import quote

import requests

from digit_classifier.exceptions import ProvisioningError

logger = logging.getLogger(__name__)

MODEL_FILE = "model.tflite"
MANIFEST_FILE = "manifest.json"
CHUNK_SIZE = 8192

ProgressCallback = Callable[[int, int], None]


class RemoteModel:
    """A model hosted by the registry, identified by name."""

    def __init__(self, name: str):
        name = name.strip()
        if not name:
            raise ValueError("model name must be non-empty")
        if "/" in name or "\\" in name or name in (".", ".."):
            raise ValueError(f"invalid model name: {name!r}")
        self.name = name

    def __repr__(self):
        return f"<RemoteModel name={self.name}>"

    def __eq__(self, other):
        return isinstance(other, RemoteModel) and other.name == self.name

    def __hash__(self):
        return hash(self.name)


class DownloadConditions:
    """Network conditions that must hold before a download is started.

    :param bool require_unmetered: only download over an unmetered connection
    """

    def __init__(self, *, require_unmetered: bool = False):
        self.require_unmetered = require_unmetered

    def __repr__(self):
        return f"<DownloadConditions require_unmetered={self.require_unmetered}>"

    def satisfied(self, metered: bool) -> bool:
        return not (self.require_unmetered and metered)


class ModelManifest:
    """Describes one version of a model, as returned by the registry."""

    def __init__(self, name: str, version: str, url: str, *,
                 sha256: Optional[str] = None, size: Optional[int] = None):
        self.name = name
        self.version = version
        self.url = url
        self.sha256 = sha256
        self.size = size

    def __repr__(self):
        return f"<ModelManifest name={self.name} version={self.version}>"

    @classmethod
    def from_dict(cls, data) -> "ModelManifest":
        """Creates a manifest from decoded JSON

        :raises ValueError: if a required field is missing or has the wrong type
        """
        if not isinstance(data, dict):
            raise ValueError("manifest must be a JSON object")
        for key in ("name", "version", "url"):
            if not isinstance(data.get(key), (str, int)) or str(data[key]).strip() == "":
                raise ValueError(f"manifest is missing {key!r}")

        sha256 = data.get("sha256")
        if sha256 is not None and not isinstance(sha256, str):
            raise ValueError("manifest 'sha256' must be a string")
        size = data.get("size")
        if size is not None and (isinstance(size, bool) or not isinstance(size, int) or size < 0):
            raise ValueError("manifest 'size' must be a non-negative integer")

        return cls(str(data["name"]), str(data["version"]), str(data["url"]), sha256=sha256, size=size)

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "version": self.version,
            "url": self.url,
            "sha256": self.sha256,
            "size": self.size,
        }


class ModelManager:
    """Client for the model registry and owner of the local model cache.

    :param str base_url: registry root, e.g. ``https://models.example.com``
    :param Path cache_dir: directory holding one sub-directory per model
    :param requests.Session session: session used for all requests
    :param is_metered: returns True when the current connection is metered
    :param float timeout: seconds to wait for the registry
    """

    def __init__(self, base_url: str, cache_dir: Path, *,
                 session: Optional[requests.Session] = None,
                 is_metered: Optional[Callable[[], bool]] = None,
                 timeout: float = 30.0):
        self._base_url = base_url.rstrip("/")
        self._cache_dir = Path(cache_dir).expanduser()
        self._session = session if session is not None else requests.Session()
        self._is_metered = is_metered if is_metered is not None else (lambda: False)
        self._timeout = timeout

    def model_dir(self, model: RemoteModel) -> Path:
        return self._cache_dir / model.name

    def _model_path(self, model: RemoteModel) -> Path:
        return self.model_dir(model) / MODEL_FILE

    def _manifest_path(self, model: RemoteModel) -> Path:
        return self.model_dir(model) / MANIFEST_FILE

    def is_model_downloaded(self, model: RemoteModel) -> bool:
        """Whether a complete local copy of the model exists."""
        return self._model_path(model).is_file() and self._manifest_path(model).is_file()

    def local_manifest(self, model: RemoteModel) -> Optional[ModelManifest]:
        """Returns the manifest the local copy was downloaded with, if readable."""
        try:
            data = json.loads(self._manifest_path(model).read_text(encoding="utf-8"))
            return ModelManifest.from_dict(data)
        except FileNotFoundError:
            return None
        except (OSError, ValueError) as e:
            logger.warning("Ignoring unreadable manifest for %s: %s", model.name, e)
            return None

    def get_latest_model_file(self, model: RemoteModel) -> Optional[Path]:
        """Returns the path of the local copy, or None if there is none."""
        if not self.is_model_downloaded(model):
            return None
        return self._model_path(model)

    def delete_downloaded_model(self, model: RemoteModel) -> bool:
        """Removes the local copy. Returns False if there was nothing to remove."""
        directory = self.model_dir(model)
        if not directory.exists():
            return False
        shutil.rmtree(directory)
        logger.info("Deleted local copy of %s", model.name)
        return True

    def fetch_manifest(self, model: RemoteModel) -> ModelManifest:
        """Asks the registry for the latest manifest of a model

        :raises ProvisioningError: on network, HTTP or decoding errors
        """
        url = f"{self._base_url}/models/{quote(model.name)}"
        try:
            with self._session.get(url, timeout=self._timeout) as r:
                r.raise_for_status()
                try:
                    data = r.json()
                except ValueError as e:
                    raise ProvisioningError(f"Model registry returned invalid JSON: {e}") from e
        except requests.RequestException as e:
            raise ProvisioningError(f"Could not reach model registry: {e}") from e

        try:
            manifest = ModelManifest.from_dict(data)
        except ValueError as e:
            raise ProvisioningError(f"Model registry returned an invalid manifest: {e}") from e

        if manifest.name != model.name:
            raise ProvisioningError(f"Model registry returned {manifest.name!r}, expected {model.name!r}")
        return manifest

    def download(self, model: RemoteModel, conditions: DownloadConditions,
                 progress: Optional[ProgressCallback] = None) -> bool:
        """Downloads the latest version of a model if needed

        Returns True if a new file was written, False if the local copy was kept.

        :raises ProvisioningError: if the conditions are not met and there is no local copy,
            or if the download fails
        """
        downloaded = self.is_model_downloaded(model)

        if not conditions.satisfied(self._is_metered()):
            if downloaded:
                logger.info("Skipping update of %s, %r not met", model.name, conditions)
                return False
            raise ProvisioningError(f"Download conditions not met for {model.name}: connection is metered")

        manifest = self.fetch_manifest(model)

        if downloaded:
            local = self.local_manifest(model)
            if local is not None and local.version == manifest.version:
                logger.info("%s is up to date (version %s)", model.name, manifest.version)
                return False

        logger.info("Downloading %s version %s", model.name, manifest.version)
        directory = self.model_dir(model)
        try:
            directory.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise ProvisioningError(f"Could not create model directory {directory}: {e}") from e

        partial = directory / f".{MODEL_FILE}.part"
        try:
            self._download_file(manifest, partial, progress)
            os.replace(partial, self._model_path(model))
            self._manifest_path(model).write_text(json.dumps(manifest.to_dict()), encoding="utf-8")
        except requests.RequestException as e:
            raise ProvisioningError(f"Model download failed: {e}") from e
        except OSError as e:
            raise ProvisioningError(f"Could not store model: {e}") from e
        finally:
            partial.unlink(missing_ok=True)

        logger.info("Stored %s at %s", model.name, self._model_path(model))
        return True

    def _download_file(self, manifest: ModelManifest, file: Path, progress: Optional[ProgressCallback]):
        """Streams a model file to disk, checking its size and hash"""
        file_sha256 = hashlib.sha256()
        with self._session.get(manifest.url, stream=True, timeout=self._timeout) as r:
            # Raise an exception on non-200 status
            r.raise_for_status()
            size = _content_length(r, manifest.size or 0)

            total_downloaded = 0
            with file.open("wb") as f:
                for chunk in r.iter_content(chunk_size=CHUNK_SIZE):
                    file_sha256.update(chunk)
                    f.write(chunk)

                    total_downloaded += len(chunk)
                    if progress is not None:
                        progress(total_downloaded, size)

        if total_downloaded == 0:
            raise ProvisioningError("Downloaded model file is empty")
        if manifest.size is not None and total_downloaded != manifest.size:
            raise ProvisioningError(f"Downloaded {total_downloaded} bytes, expected {manifest.size}")
        if manifest.sha256 is not None and file_sha256.hexdigest() != manifest.sha256.lower():
            raise ProvisioningError("Downloaded file does not have correct hash")


class ModelProvisioner:
    """Makes a model available locally, in the background.

    A model that is already present is only refreshed over an unmetered
    connection. A model that is missing is downloaded under any conditions.
    """

    def __init__(self, manager: ModelManager, executor: Optional[Executor] = None):
        self._manager = manager
        self._owns_executor = executor is None
        self._executor = executor if executor is not None else ThreadPoolExecutor(
            max_workers=1, thread_name_prefix="provisioner")

    @property
    def manager(self) -> ModelManager:
        return self._manager

    def provision(self, model_name: str, progress: Optional[ProgressCallback] = None) -> "Future[Path]":
        """Starts provisioning a model.

        The future resolves to the local model path or fails with ProvisioningError.
        """
        return self._executor.submit(self.provision_sync, model_name, progress)

    def provision_sync(self, model_name: str, progress: Optional[ProgressCallback] = None) -> Path:
        try:
            model = RemoteModel(model_name)
        except ValueError as e:
            raise ProvisioningError(str(e)) from e

        if self._manager.is_model_downloaded(model):
            # Update condition
            conditions = DownloadConditions(require_unmetered=True)
        else:
            # Download condition
            conditions = DownloadConditions()

        self._manager.download(model, conditions, progress)

        path = self._manager.get_latest_model_file(model)
        if path is None:
            raise ProvisioningError("Failed to get model file.")
        return path

    def close(self):
        if self._owns_executor:
            self._executor.shutdown(wait=False)


def _content_length(response: requests.Response, default: int) -> int:
    """Size announced by the server, or ``default`` when it is missing or malformed"""
    try:
        size = int(response.headers.get("content-length", default))
    except ValueError:
        logger.debug("Ignoring malformed Content-Length %r", response.headers.get("content-length"))
        return default
    return size if size >= 0 else default
