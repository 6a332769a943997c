"""
Driver document lookup.

Drivers upload their driving license and police clearance report from the
mobile app. The upload location changed several times, so a lookup walks a
fixed chain of resolvers (a folder listing first, then known path layouts) and
returns the first document found. When nothing is found the caller gets a
placeholder page instead of an error.
"""

import html
import re
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Optional, Sequence, Tuple
from urllib.parse import quote

import gridfs
from gridfs.errors import NoFile
import requests
import structlog
from pymongo.database import Database

from schemas import DocumentProbeResult

logger = structlog.get_logger(__name__)


class ObjectNotFound(Exception):
    def __init__(self, path: str):
        super().__init__(f"No object at {path}")
        self.path = path


class DocumentKind(str, Enum):
    LICENSE = "license"
    POLICE_REPORT = "police_report"

    @property
    def stem(self) -> str:
        return "driving_license" if self is DocumentKind.LICENSE else "police_report"

    @property
    def display_name(self) -> str:
        return "Driving License" if self is DocumentKind.LICENSE else "Police Clearance Report"

    @property
    def label(self) -> str:
        return "Driving license" if self is DocumentKind.LICENSE else "Police clearance report"


class ObjectStore:
    """Minimal object store interface used by the document probe."""

    def resolve(self, path: str) -> str:
        """Return a retrievable URL for ``path`` or raise ObjectNotFound."""
        raise NotImplementedError

    def list(self, prefix: str) -> List[str]:
        """Return the full names of the objects under ``prefix``."""
        raise NotImplementedError


class GridFSObjectStore(ObjectStore):
    """Documents kept in a GridFS bucket, served back through the API."""

    def __init__(self, db: Database, bucket: str = "fs", url_prefix: str = "/storage"):
        self.fs = gridfs.GridFS(db, collection=bucket)
        self.url_prefix = url_prefix.rstrip("/")

    def resolve(self, path: str) -> str:
        if not self.fs.exists(filename=path):
            raise ObjectNotFound(path)
        return f"{self.url_prefix}/{quote(path)}"

    def list(self, prefix: str) -> List[str]:
        names = []
        for grid_out in self.fs.find({"filename": {"$regex": "^" + re.escape(prefix)}}):
            if grid_out.filename not in names:
                names.append(grid_out.filename)
        return names

    def open(self, path: str):
        try:
            return self.fs.get_last_version(filename=path)
        except NoFile:
            raise ObjectNotFound(path)


class FirebaseStorageStore(ObjectStore):
    """Documents kept in a hosted storage bucket exposing the v0 REST API."""

    def __init__(self, bucket: str, base_url: str, timeout: float = 10, session: Optional[requests.Session] = None):
        self.bucket = bucket
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()

    def _object_url(self, path: str) -> str:
        return f"{self.base_url}/b/{self.bucket}/o/{quote(path, safe='')}"

    def resolve(self, path: str) -> str:
        r = self.session.get(self._object_url(path), timeout=self.timeout)
        if r.status_code == 404:
            raise ObjectNotFound(path)
        r.raise_for_status()
        meta = r.json()
        url = f"{self._object_url(path)}?alt=media"
        token = (meta.get("downloadTokens") or "").split(",")[0]
        if token:
            url += f"&token={token}"
        return url

    def list(self, prefix: str) -> List[str]:
        names: List[str] = []
        params = {"prefix": prefix, "delimiter": "/"}
        while True:
            r = self.session.get(f"{self.base_url}/b/{self.bucket}/o", params=params, timeout=self.timeout)
            r.raise_for_status()
            data = r.json()
            names.extend(item["name"] for item in data.get("items", []) if item.get("name"))
            page_token = data.get("nextPageToken")
            if not page_token:
                return names
            params["pageToken"] = page_token


class PathResolver:
    def __init__(self, template: str):
        self.template = template

    def describe(self, entity_id: str, kind: DocumentKind) -> str:
        return self.template.format(id=entity_id, kind=kind.value, stem=kind.stem)

    def resolve(self, store: ObjectStore, entity_id: str, kind: DocumentKind) -> Tuple[str, str]:
        path = self.describe(entity_id, kind)
        return store.resolve(path), path


class FolderListingResolver:
    """List the driver's folder once and pick the first ``<stem>*.pdf``."""

    def __init__(self, folder_template: str):
        self.folder_template = folder_template

    def describe(self, entity_id: str, kind: DocumentKind) -> str:
        return self.folder_template.format(id=entity_id) + f"{kind.stem}*.pdf"

    def resolve(self, store: ObjectStore, entity_id: str, kind: DocumentKind) -> Tuple[str, str]:
        folder = self.folder_template.format(id=entity_id)
        stem = kind.stem.lower()
        for name in store.list(folder):
            filename = name.rsplit("/", 1)[-1].lower()
            if filename.startswith(stem) and filename.endswith(".pdf"):
                return store.resolve(name), name
        raise ObjectNotFound(self.describe(entity_id, kind))


FOLDER_TEMPLATE = "driver_documents/{id}/"

PATH_TEMPLATES = (
    "driver_documents/{id}/{stem}.pdf",
    "driver_documents/{id}/{kind}.pdf",
    "drivers/{id}/{stem}.pdf",
    "drivers/{id}/{kind}.pdf",
    "uploads/drivers/{id}/{kind}.pdf",
    "documents/drivers/{id}/{stem}.pdf",
    "user_documents/{id}/{kind}.pdf",
    "{id}/{kind}.pdf",
    "{id}/documents/{kind}.pdf",
)


def default_resolvers() -> list:
    return [FolderListingResolver(FOLDER_TEMPLATE)] + [PathResolver(t) for t in PATH_TEMPLATES]


class DocumentProbe:
    def __init__(self, store: ObjectStore, resolvers: Optional[Sequence] = None):
        self.store = store
        self.resolvers = list(resolvers) if resolvers is not None else default_resolvers()

    def _chain(self, entity_id: str, kind: DocumentKind):
        # police_report renders the same path for {stem} and {kind}; try each path once
        seen = set()
        for resolver in self.resolvers:
            label = resolver.describe(entity_id, kind)
            if label in seen:
                continue
            seen.add(label)
            yield resolver, label

    def candidate_paths(self, entity_id: str) -> Dict[str, List[str]]:
        return {kind.value: [label for _, label in self._chain(entity_id, kind)] for kind in DocumentKind}

    def _first_hit(self, entity_id: str, kind: DocumentKind) -> Tuple[Optional[Tuple[str, str]], List[str]]:
        tried: List[str] = []
        for resolver, label in self._chain(entity_id, kind):
            tried.append(label)
            try:
                hit = resolver.resolve(self.store, entity_id, kind)
            except ObjectNotFound:
                logger.debug("No document at candidate", driver_id=entity_id, kind=kind.value, candidate=label)
                continue
            except Exception as exc:
                logger.warning(
                    "Document candidate lookup failed",
                    driver_id=entity_id,
                    kind=kind.value,
                    candidate=label,
                    error=str(exc),
                )
                continue
            return hit, tried
        return None, tried

    def resolve(self, entity_id: str, kind: DocumentKind) -> DocumentProbeResult:
        kind = DocumentKind(kind)
        logger.info("Fetching driver document", driver_id=entity_id, kind=kind.value)
        hit, tried = self._first_hit(entity_id, kind)
        if hit is not None:
            url, path = hit
            logger.info("Driver document found", driver_id=entity_id, kind=kind.value, path=path)
            return DocumentProbeResult(url=url, path=path, is_mock=False, tried=tried)

        reason = f"{kind.label} not found in storage. Driver may not have uploaded this document yet."
        logger.warning("No uploaded document found", driver_id=entity_id, kind=kind.value, tried=len(tried))
        return DocumentProbeResult(
            url=placeholder_document(entity_id, kind, tried),
            is_mock=True,
            error=reason,
            tried=tried,
        )

    def exists(self, entity_id: str, kind: DocumentKind) -> bool:
        hit, _ = self._first_hit(entity_id, DocumentKind(kind))
        return hit is not None


PLACEHOLDER_TEMPLATE = """<!DOCTYPE html>
<html lang="en">
<head>
<meta charset="UTF-8">
<title>Admin Document Viewer - {title}</title>
<style>
body {{ font-family: -apple-system, 'Segoe UI', Roboto, sans-serif; background: #f5f7fa; padding: 20px; }}
.container {{ max-width: 900px; margin: 0 auto; background: white; border-radius: 12px; overflow: hidden; }}
.header {{ background: linear-gradient(135deg, #667eea 0%, #764ba2 100%); color: white; padding: 40px; text-align: center; }}
.content {{ padding: 40px; }}
.alert {{ background: #fcb69f; color: #8b4513; padding: 20px; border-radius: 8px; }}
.paths li {{ font-family: monospace; }}
.footer {{ background: #f8f9fa; padding: 30px; text-align: center; color: #6c757d; }}
</style>
</head>
<body>
<div class="container">
  <div class="header">
    <h1>{title}</h1>
    <p>Administrative Document Viewer</p>
  </div>
  <div class="content">
    <div class="alert">
      <strong>Document Not Available</strong><br>
      This driver's {title_lower} was not found in storage.
    </div>
    <h3>Document Information</h3>
    <p>Document Type: {title}<br>Driver ID: {driver_id}<br>Expected Format: PDF Document<br>Storage Status: Not Found</p>
    <h3>Possible Reasons</h3>
    <ul>
      <li>Driver hasn't uploaded the document yet</li>
      <li>Document stored in a different location</li>
      <li>File path configuration issue</li>
      <li>Storage permissions need adjustment</li>
    </ul>
    <h3>Storage Paths Checked ({count})</h3>
    <ul class="paths">
{paths}
    </ul>
    <p><strong>System Check:</strong> {checked_at}</p>
  </div>
  <div class="footer">
    <p><strong>QuickCare Emergency Services</strong></p>
    <p>This is a generated placeholder, not an uploaded document.</p>
  </div>
</div>
</body>
</html>
"""


def placeholder_document(entity_id: str, kind: DocumentKind, tried: Sequence[str]) -> str:
    """Self-describing HTML page, as a data URL, explaining that no document was found."""
    page = PLACEHOLDER_TEMPLATE.format(
        title=kind.display_name,
        title_lower=kind.display_name.lower(),
        driver_id=html.escape(entity_id),
        count=len(tried),
        paths="\n".join(f"      <li>{html.escape(p)}</li>" for p in tried),
        checked_at=datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S UTC"),
    )
    return "data:text/html;charset=utf-8," + quote(page)
