import logging
import os
from pathlib import Path
from typing import List, Optional, Iterable
from urllib.parse import quote, unquote, urlsplit
from xml.etree import ElementTree

import requests

from .. import config
from ..exceptions import ConnectivityError, NotFoundError, TransferError
from .base import RemoteEntry, RemoteFileSystem, normalize_remote_path

DAV_NS = "{DAV:}"
PROPFIND_BODY = (
    '<?xml version="1.0" encoding="utf-8"?>'
    '<d:propfind xmlns:d="DAV:"><d:prop><d:resourcetype/></d:prop></d:propfind>'
)
DOWNLOAD_CHUNK_SIZE = 1024 * 1024


class WebDavClient(RemoteFileSystem):
    """
    Minimal WebDAV client (PROPFIND/MKCOL/PUT/GET/DELETE) over requests.

    Status mapping:
      401/403                 -> ConnectivityError
      404, 409 on PUT/MKCOL   -> NotFoundError (409 = parent collection missing)
      other non-2xx, timeouts -> TransferError
      connection failures     -> ConnectivityError
    """

    def __init__(self,
                 server_url: str,
                 username: Optional[str] = None,
                 password: Optional[str] = None,
                 timeout: float = config.DEFAULT_REQUEST_TIMEOUT,
                 session: Optional[requests.Session] = None):
        if not server_url:
            raise ValueError("server_url is required")
        self.server_url = server_url.rstrip("/")
        self.base_path = urlsplit(self.server_url).path.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()
        if username is not None and password is not None:
            self.session.auth = (username, password)

    # --- Request plumbing ---

    def _url(self, path: str, directory: bool = False) -> str:
        norm = normalize_remote_path(path)
        if directory and not norm.endswith("/"):
            norm += "/"
        return self.server_url + quote(norm)

    def _request(self, method: str, path: str, directory: bool = False, **kwargs) -> requests.Response:
        url = self._url(path, directory)
        try:
            return self.session.request(method, url, timeout=self.timeout, **kwargs)
        except requests.Timeout as e:
            raise TransferError(f"{method} {path} timed out after {self.timeout}s") from e
        except requests.ConnectionError as e:
            raise ConnectivityError(f"{method} {path}: cannot reach {self.server_url}: {e}") from e
        except requests.RequestException as e:
            raise TransferError(f"{method} {path} failed: {e}") from e

    def _check(self, response: requests.Response, method: str, path: str,
               ok: Iterable[int] = (200, 201, 204, 207),
               missing: Iterable[int] = (404,)):
        status = response.status_code
        if status in ok:
            return
        if status in (401, 403):
            raise ConnectivityError(f"{method} {path}: access denied ({status})")
        if status in missing:
            raise NotFoundError(f"{method} {path}: not found ({status})")
        raise TransferError(f"{method} {path}: unexpected status {status}")

    # --- RemoteFileSystem ---

    def connect(self) -> bool:
        try:
            resp = self._request("PROPFIND", "/", directory=True, headers={"Depth": "0"}, data=PROPFIND_BODY)
        except (ConnectivityError, TransferError) as e:
            logging.error(f"WebDAV connect failed: {e}")
            return False
        if resp.status_code in (200, 207):
            return True
        logging.error(f"WebDAV connect failed: status {resp.status_code}")
        return False

    def list_directory(self, path: str) -> List[RemoteEntry]:
        resp = self._request(
            "PROPFIND", path, directory=True,
            headers={"Depth": "1", "Content-Type": "application/xml"},
            data=PROPFIND_BODY,
        )
        self._check(resp, "PROPFIND", path, ok=(207,))
        return self._parse_multistatus(resp.content, path)

    def exists(self, path: str) -> bool:
        resp = self._request("PROPFIND", path, headers={"Depth": "0"}, data=PROPFIND_BODY)
        if resp.status_code == 404:
            return False
        self._check(resp, "PROPFIND", path, ok=(200, 207))
        return True

    def create_directory(self, path: str):
        resp = self._request("MKCOL", path, directory=True)
        # 405: already exists
        self._check(resp, "MKCOL", path, ok=(200, 201, 405), missing=(404, 409))

    def create_directory_recursive(self, path: str):
        current = ""
        for part in normalize_remote_path(path).strip("/").split("/"):
            if not part:
                continue
            current = f"{current}/{part}"
            self.create_directory(current)

    def upload_file(self, remote_path: str, local_path: Path):
        local_path = Path(local_path)
        try:
            size = local_path.stat().st_size
            with local_path.open("rb") as f:
                resp = self._request(
                    "PUT", remote_path, data=f,
                    headers={"Content-Type": "application/octet-stream", "Content-Length": str(size)},
                )
        except OSError as e:
            raise TransferError(f"Cannot read {local_path}: {e}") from e
        self._check(resp, "PUT", remote_path, ok=(200, 201, 204), missing=(404, 409))

    def download_file(self, remote_path: str, local_path: Path):
        local_path = Path(local_path)
        resp = self._request("GET", remote_path, stream=True)
        try:
            self._check(resp, "GET", remote_path, ok=(200,))
            tmp = local_path.with_name(f".{local_path.name}.part")
            try:
                with tmp.open("wb") as f:
                    for chunk in resp.iter_content(chunk_size=DOWNLOAD_CHUNK_SIZE):
                        if chunk:
                            f.write(chunk)
                os.replace(tmp, local_path)
            except (OSError, requests.RequestException) as e:
                tmp.unlink(missing_ok=True)
                raise TransferError(f"Download of {remote_path} failed: {e}") from e
        finally:
            resp.close()

    def delete_file(self, path: str):
        resp = self._request("DELETE", path)
        self._check(resp, "DELETE", path, ok=(200, 202, 204))

    def delete_directory(self, path: str):
        if normalize_remote_path(path) == "/":
            raise TransferError("Refusing to delete the remote root")
        resp = self._request("DELETE", path, directory=True)
        self._check(resp, "DELETE", path, ok=(200, 202, 204))

    # --- Parsing ---

    def _href_to_path(self, href: str) -> str:
        path = unquote(urlsplit(href).path)
        if self.base_path and path.startswith(self.base_path):
            path = path[len(self.base_path):]
        return normalize_remote_path(path)

    def _parse_multistatus(self, body: bytes, requested: str) -> List[RemoteEntry]:
        try:
            root = ElementTree.fromstring(body)
        except ElementTree.ParseError as e:
            raise TransferError(f"Malformed PROPFIND response for {requested}: {e}") from e

        requested_norm = normalize_remote_path(requested)
        entries = []
        for response in root.iter(f"{DAV_NS}response"):
            href = response.findtext(f"{DAV_NS}href")
            if not href:
                continue
            path = self._href_to_path(href)
            if path == requested_norm:
                continue
            is_dir = response.find(f".//{DAV_NS}resourcetype/{DAV_NS}collection") is not None
            name = path.rstrip("/").rsplit("/", 1)[-1]
            entries.append(RemoteEntry(path=path, name=name, is_directory=is_dir))
        return entries
