import logging
import os
import shutil
import uuid
from typing import Dict, Any, Optional

import requests

from .errors import ScanValidationError

logger = logging.getLogger("sodascan.storage")

STORAGE_SCHEME = "storage://"


class InternalStorage:
    """
    Local directory standing in for the orchestrator's internal storage.
    Files are addressed by `storage:///<namespace>/<name>` URIs.
    """

    def __init__(self, base_dir: str):
        self.base_dir = os.path.abspath(base_dir)
        os.makedirs(self.base_dir, exist_ok=True)

    def put_file(self, local_path: str, name: str, namespace: Optional[str] = None) -> str:
        namespace = namespace or uuid.uuid4().hex
        target_dir = os.path.join(self.base_dir, namespace)
        os.makedirs(target_dir, exist_ok=True)
        shutil.copyfile(local_path, os.path.join(target_dir, name))
        uri = f"{STORAGE_SCHEME}/{namespace}/{name}"
        logger.debug("Stored %s as %s", local_path, uri)
        return uri

    def get_file(self, uri: str) -> str:
        """Resolves a storage URI to a readable local path."""
        if not uri or not uri.startswith(STORAGE_SCHEME):
            raise FileNotFoundError(f"Not an internal storage URI: {uri}")
        relative = uri[len(STORAGE_SCHEME):].lstrip("/")
        path = os.path.abspath(os.path.join(self.base_dir, relative))
        if not path.startswith(self.base_dir + os.sep) or not os.path.isfile(path):
            raise FileNotFoundError(f"No such file in internal storage: {uri}")
        return path


def resolve_input_files(files: Dict[str, Any], storage: Optional[InternalStorage] = None,
                        timeout: float = 30.0) -> Dict[str, str]:
    """
    Turns an input-files mapping into `{relative path: content}`.
    A value is inline text, a `storage://` URI, or an http(s) URL fetched with requests.
    """
    resolved = {}
    for name, value in files.items():
        if not isinstance(value, str):
            raise ScanValidationError(f"Input file '{name}' must be a string, got {type(value).__name__}")

        if value.startswith(STORAGE_SCHEME):
            if storage is None:
                raise FileNotFoundError(f"Input file '{name}' references {value} but no storage is configured")
            with open(storage.get_file(value), "r", encoding="utf-8") as f:
                resolved[name] = f.read()
        elif value.startswith(("http://", "https://")):
            resp = requests.get(value, timeout=timeout)
            resp.raise_for_status()
            resolved[name] = resp.text
        else:
            resolved[name] = value
    return resolved


def write_files(working_dir: str, files: Dict[str, str]) -> None:
    """Writes `{relative path: content}` under `working_dir`, refusing paths that escape it."""
    root = os.path.abspath(working_dir)
    for name, content in files.items():
        path = os.path.abspath(os.path.join(root, name))
        if not path.startswith(root + os.sep):
            raise ValueError(f"Input file '{name}' escapes the working directory")
        os.makedirs(os.path.dirname(path), exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            f.write(content)
