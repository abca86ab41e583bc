"""Evidence blob storage.

S3/MinIO when ``OBJECT_STORE_*`` is configured, otherwise a local evidence
directory served back through ``GET /evidence/{key}``. Keys are namespaced
by organization, audit and checklist item so uploads never collide.
"""
import os
import re
import uuid
from pathlib import Path
from typing import Dict, Optional, Tuple

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from .db import ROOT_DIR
from .errors import DependencyFailure, NotFound
from .logging_config import log_event


def _safe(part: str) -> str:
    return re.sub(r"[^A-Za-z0-9_.-]", "_", str(part))


def evidence_key(org_id: str, audit_id: str, item_id: str, filename: Optional[str]) -> str:
    ext = Path(filename or "").suffix.lower()
    ext = ext if re.fullmatch(r"\.[a-z0-9]{1,10}", ext) else ""
    return f"{_safe(org_id)}/{_safe(audit_id)}/{_safe(item_id)}-{uuid.uuid4().hex}{ext}"


# --- S3/MinIO client helper ---
def _get_s3_client():
    endpoint = os.getenv("OBJECT_STORE_ENDPOINT")
    bucket = os.getenv("OBJECT_STORE_BUCKET")
    access = os.getenv("OBJECT_STORE_ACCESS_KEY")
    secret = os.getenv("OBJECT_STORE_SECRET_KEY")
    if not (endpoint and bucket and access and secret):
        return None, None
    use_path = os.getenv("OBJECT_STORE_USE_PATH_STYLE", "true").lower() in ("1", "true", "yes")
    client = boto3.client(
        "s3",
        endpoint_url=endpoint,
        aws_access_key_id=access,
        aws_secret_access_key=secret,
        region_name=os.getenv("AWS_REGION", "us-east-1"),
        config=BotoConfig(signature_version="s3v4", s3={"addressing_style": "path" if use_path else "virtual"}),
    )
    return client, bucket


class EvidenceStore:
    def upload(self, key: str, data: bytes, content_type: Optional[str] = None) -> str:
        raise NotImplementedError

    def presign_upload(self, key: str, content_type: Optional[str] = None) -> Tuple[str, Dict[str, str]]:
        raise NotImplementedError

    def public_url(self, key: str) -> str:
        raise NotImplementedError


class S3EvidenceStore(EvidenceStore):
    def __init__(self, client, bucket: str, public_base: str):
        self.client = client
        self.bucket = bucket
        self.public_base = public_base.rstrip("/")

    def upload(self, key, data, content_type=None):
        params = {"Bucket": self.bucket, "Key": key, "Body": data}
        if content_type:
            params["ContentType"] = content_type
        try:
            self.client.put_object(**params)
        except (BotoCoreError, ClientError) as e:
            log_event("evidence_upload_failed", level="error", key=key, error=str(e))
            raise DependencyFailure("Evidence upload failed")
        return self.public_url(key)

    def presign_upload(self, key, content_type=None):
        params = {"Bucket": self.bucket, "Key": key}
        headers = {}
        if content_type:
            params["ContentType"] = content_type
            headers["Content-Type"] = content_type
        ttl = int(os.getenv("PRESIGN_TTL_SECONDS", "900"))
        try:
            url = self.client.generate_presigned_url("put_object", Params=params, ExpiresIn=ttl)
        except (BotoCoreError, ClientError) as e:
            log_event("evidence_presign_failed", level="error", key=key, error=str(e))
            raise DependencyFailure("Could not presign evidence upload")
        return url, headers

    def public_url(self, key):
        return f"{self.public_base}/{self.bucket}/{key}"


class LocalEvidenceStore(EvidenceStore):
    def __init__(self, root: Path, base_url: str):
        self.root = Path(root).resolve()
        self.base_url = base_url.rstrip("/")

    def resolve(self, key: str) -> Path:
        path = (self.root / key).resolve()
        if self.root not in path.parents:
            raise NotFound("Evidence not found")
        return path

    def upload(self, key, data, content_type=None):
        path = self.resolve(key)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(data)
        except OSError as e:
            log_event("evidence_upload_failed", level="error", key=key, error=str(e))
            raise DependencyFailure("Evidence upload failed")
        return self.public_url(key)

    def presign_upload(self, key, content_type=None):
        raise DependencyFailure("Object store not configured")

    def public_url(self, key):
        return f"{self.base_url}/evidence/{key}"


def get_evidence_store() -> EvidenceStore:
    client, bucket = _get_s3_client()
    if client and bucket:
        public = os.getenv("OBJECT_STORE_PUBLIC_URL") or os.getenv("OBJECT_STORE_ENDPOINT")
        return S3EvidenceStore(client, bucket, public)
    root = Path(os.getenv("EVIDENCE_DIR", ROOT_DIR / "backend" / "evidence"))
    return LocalEvidenceStore(root, os.getenv("PUBLIC_BASE_URL", "http://localhost:8000"))
