"""
IPFS HTTP RPC client -- the concrete remote store.

Every command is a POST to ``<endpoint>/api/v0/<command>``. Most calls
get the configured timeout; uploads, pins, name resolution and
publishing run without one, since cutting those short leaves the node
in a worse state than waiting.

Error bodies (``{"Message": ..., "Code": ..., "Type": "error"}``, or
an ``Error`` field on streamed lines) are turned into ``RemoteError``
subclasses here, so the rest of the engine never inspects error text.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Iterator, Optional
from urllib.parse import quote

import requests

from .models import DEFAULT_BASE_PATH, FilestoreEntry, Identity
from .remote import (
    KEY_SPACE,
    BadReferenceError,
    MalformedResponse,
    PinnedBlockError,
    RemoteError,
    RemoteStore,
    RemoteUnavailable,
)

logger = logging.getLogger("ipfs_sync.ipfs")

API = "/api/v0/"

_UNBOUNDED = None


def classify_error(message: str, code: int = 0) -> RemoteError:
    """Map node error text onto the matching exception type."""
    if message.startswith("failed to get block") or message.endswith(
        "no such file or directory"
    ):
        return BadReferenceError(message, code)
    if message.startswith("pinned"):
        parts = message.split()
        return PinnedBlockError(message, parts[2] if len(parts) >= 3 else "", code)
    return RemoteError(message, code)


def _decode(body: str) -> Any:
    """Decode a JSON body, or the last line of a newline-delimited stream."""
    text = body.strip()
    if not text:
        return None
    try:
        return json.loads(text)
    except ValueError:
        pass
    for line in reversed(text.splitlines()):
        if line.strip():
            try:
                return json.loads(line)
            except ValueError:
                return None
    return None


def _error_text(data: Any) -> str:
    if not isinstance(data, dict):
        return ""
    return data.get("Message") or data.get("Error") or ""


class IpfsClient(RemoteStore):
    """Talks to a kubo node over its HTTP RPC API.

    Args:
        endpoint: Node API address, e.g. ``http://127.0.0.1:5001``.
        base_path: MFS directory all mounts live under.
        timeout: Seconds allowed for bounded calls.
        session: Optional pre-built ``requests.Session``.
    """

    def __init__(
        self,
        endpoint: str,
        base_path: str = DEFAULT_BASE_PATH,
        timeout: float = 30.0,
        session: Optional[requests.Session] = None,
    ):
        self.endpoint = endpoint.rstrip("/")
        self.base_path = base_path
        self.timeout = timeout
        self.session = session or requests.Session()

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    def _post(self, cmd: str, params=None, timeout=_UNBOUNDED, files=None, stream=False):
        url = f"{self.endpoint}{API}{cmd}"
        try:
            return self.session.post(
                url, params=params, files=files, timeout=timeout, stream=stream
            )
        except requests.RequestException as exc:
            raise RemoteUnavailable(f"{cmd}: {exc}") from exc

    def _call(self, cmd: str, params=None, bounded: bool = True, files=None) -> Any:
        """POST ``cmd`` and return the decoded body.

        Raises:
            RemoteError: On an error body or an HTTP error status.
        """
        resp = self._post(
            cmd,
            params=params,
            timeout=self.timeout if bounded else _UNBOUNDED,
            files=files,
        )
        data = _decode(resp.text)
        error = _error_text(data)
        if error:
            code = data.get("Code", 0) if isinstance(data, dict) else 0
            raise classify_error(error, code)
        if resp.status_code >= 400:
            raise RemoteError(
                f"{cmd} failed: {resp.status_code} {resp.text.strip()}", resp.status_code
            )
        return data

    def _mfs(self, remote_path: str) -> str:
        return self.base_path + remote_path.lstrip("/")

    @staticmethod
    def _field(data: Any, name: str, cmd: str) -> Any:
        if not isinstance(data, dict) or name not in data:
            raise MalformedResponse(f"Unexpected output in {cmd}: {data!r}")
        return data[name]

    # ------------------------------------------------------------------
    # RemoteStore
    # ------------------------------------------------------------------

    def version(self) -> str:
        return self._field(self._call("version"), "Version", "version")

    def add_file(self, local_path: Path, nocopy: bool) -> str:
        return self._add(local_path, nocopy, only_hash=False)

    def hash_only(self, local_path: Path, nocopy: bool) -> str:
        return self._add(local_path, nocopy, only_hash=True)

    def _add(self, local_path: Path, nocopy: bool, only_hash: bool) -> str:
        params = {
            "nocopy": str(nocopy).lower(),
            "pin": "false",
            "quieter": "true",
        }
        if only_hash:
            params["only-hash"] = "true"
        abspath = str(Path(local_path).absolute())
        with open(local_path, "rb") as fh:
            files = {
                "file": (
                    quote(abspath, safe=""),
                    fh,
                    "application/octet-stream",
                    {"Abspath": abspath},
                )
            }
            data = self._call("add", params=params, bounded=False, files=files)
        return self._field(data, "Hash", "add")

    def make_dir(self, remote_path: str) -> None:
        self._call("files/mkdir", params={"arg": self._mfs(remote_path), "parents": "true"})

    def remove_entry(self, remote_path: str) -> None:
        self._call("files/rm", params={"arg": self._mfs(remote_path), "force": "true"})

    def link_content(self, cid: str, remote_path: str, overwrite: bool) -> None:
        if overwrite:
            try:
                self.remove_entry(remote_path)
            except BadReferenceError:
                raise
            except RemoteError as exc:
                logger.debug("Nothing to overwrite at %s: %s", remote_path, exc)
        self._call(
            "files/cp",
            params=[("arg", f"/ipfs/{cid}"), ("arg", self._mfs(remote_path))],
        )

    def current_snapshot_id(self, remote_path: str) -> str:
        try:
            data = self._call(
                "files/stat", params={"arg": self._mfs(remote_path), "hash": "true"}
            )
        except RemoteError as exc:
            logger.debug("files/stat %s failed: %s", remote_path, exc)
            return ""
        if not isinstance(data, dict):
            return ""
        return data.get("Hash", "")

    def pin_add(self, cid: str) -> None:
        resp = self._call("pin/add", params={"arg": cid}, bounded=False)
        logger.debug("Pin response: %s", resp)

    def pin_update(self, old: str, new: str) -> None:
        self._call("pin/update", params=[("arg", old), ("arg", new)], bounded=False)

    def pin_remove(self, cid: str) -> None:
        self._call("pin/rm", params={"arg": cid}, bounded=False)

    def remote_pin_add(self, cid: str, service: str) -> None:
        self._call(
            "pin/remote/add",
            params={"arg": cid, "service": service, "background": "true"},
            bounded=False,
        )

    def remote_pin_remove(self, cid: str, service: str) -> None:
        self._call(
            "pin/remote/rm",
            params={"service": service, "cid": cid, "force": "true"},
            bounded=False,
        )

    def publish(self, cid: str, name: str) -> None:
        self._call(
            "name/publish", params={"arg": cid, "key": KEY_SPACE + name}, bounded=False
        )

    def resolve(self, identity_id: str) -> str:
        data = self._call("name/resolve", params={"arg": identity_id}, bounded=False)
        path = self._field(data, "Path", "name/resolve")
        parts = path.split("/")
        if len(parts) < 3 or not parts[2]:
            raise MalformedResponse(f"Unexpected output in name/resolve: {path}")
        return parts[2]

    def generate_identity(self, name: str) -> Identity:
        data = self._call("key/gen", params={"arg": KEY_SPACE + name})
        return Identity(id=self._field(data, "Id", "key/gen"), name=name)

    def list_identities(self) -> list[Identity]:
        data = self._call("key/list")
        keys = self._field(data, "Keys", "key/list") or []
        return [
            Identity(id=key["Id"], name=key["Name"][len(KEY_SPACE):])
            for key in keys
            if key.get("Name", "").startswith(KEY_SPACE)
        ]

    def verify_integrity(self) -> Iterator[FilestoreEntry]:
        resp = self._post("filestore/verify", stream=True)
        with resp:
            if resp.status_code >= 400:
                data = _decode(resp.text)
                raise classify_error(
                    _error_text(data) or f"filestore/verify failed: {resp.status_code}",
                    resp.status_code,
                )
            try:
                for line in resp.iter_lines():
                    if not line:
                        continue
                    try:
                        raw = json.loads(line)
                    except ValueError as exc:
                        logger.warning("Error decoding filestore entry: %s", exc)
                        continue
                    yield FilestoreEntry(
                        status=raw.get("Status", 0),
                        key=(raw.get("Key") or {}).get("/", ""),
                        file_path=raw.get("FilePath", ""),
                        error=raw.get("ErrorMsg", ""),
                    )
            except requests.RequestException as exc:
                raise RemoteUnavailable(f"filestore/verify: {exc}") from exc

    def remove_backing_reference(self, ref: str) -> None:
        try:
            self._call("block/rm", params={"arg": ref})
        except PinnedBlockError as exc:
            if not exc.pinned_by:
                raise PinnedBlockError(exc.message, ref, exc.code) from exc
            raise
