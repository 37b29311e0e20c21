import logging
import mimetypes
import os

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError
from django.conf import settings

from .errors import IOFailure

logger = logging.getLogger(__name__)

_ARTIFACT_CONTENT_TYPES = {
    ".m3u8": "application/vnd.apple.mpegurl",
    ".m4s": "video/iso.segment",
    ".ts": "video/MP2T",
    ".m2ts": "video/MP2T",
    ".mp4": "video/mp4",
    ".mov": "video/mp4",
    ".mkv": "video/mp4",
    ".webm": "video/mp4",
}


def _session():
    return boto3.session.Session(
        aws_access_key_id=settings.S3_ACCESS_KEY,
        aws_secret_access_key=settings.S3_SECRET_KEY,
        region_name=settings.S3_REGION,
    )


def get_s3_client():
    """
    SDK client for server-side upload/download.
    """
    return _session().client(
        "s3",
        endpoint_url=settings.S3_ENDPOINT_URL,  # e.g. http://127.0.0.1:9000
        config=BotoConfig(
            s3={"addressing_style": "path"},
            signature_version="s3v4",
        ),
    )


def get_presign_client():
    """
    Separate client for generating presigned URLs that the browser will call.
    Uses S3_PUBLIC_ENDPOINT so the URL host matches what the client reaches.
    """
    return _session().client(
        "s3",
        endpoint_url=settings.S3_PUBLIC_ENDPOINT,
        config=BotoConfig(
            s3={"addressing_style": "path"},
            signature_version="s3v4",  # ensures AWS4 signing
        ),
    )


def content_type_for(name: str) -> str:
    """Content-Type for an output artifact, by extension."""
    _, ext = os.path.splitext(name.lower())
    return _ARTIFACT_CONTENT_TYPES.get(ext, "application/octet-stream")


def guess_source_content_type(filename: str) -> str | None:
    mime, _ = mimetypes.guess_type(filename)
    return mime


def create_presigned_put(key: str, content_type: str | None = None, expires: int | None = None) -> dict:
    """
    Create a presigned PUT URL so the client uploads its source file
    straight into the source bucket.

    ContentType is deliberately left out of the signed params; clients may
    still send the header, it just isn't part of the signature.
    """
    s3 = get_presign_client()
    url = s3.generate_presigned_url(
        ClientMethod="put_object",
        Params={"Bucket": settings.S3_SOURCE_BUCKET, "Key": key},
        ExpiresIn=expires or settings.S3_PRESIGN_EXPIRE_SECONDS,
        HttpMethod="PUT",
    )
    headers = {"Content-Type": content_type} if content_type else {}
    return {"url": url, "headers": headers}


def object_url(bucket: str, key: str) -> str:
    """Public URL of an object in a public-read bucket."""
    base = settings.S3_PUBLIC_ENDPOINT.rstrip("/")
    return f"{base}/{bucket}/{key}"


def fetch_source(key: str, client=None) -> tuple[bytes, str | None]:
    """
    Download a source object. Returns (bytes, content_type); the content type
    falls back to a guess from the key when the object has none.
    """
    s3 = client or get_s3_client()
    try:
        obj = s3.get_object(Bucket=settings.S3_SOURCE_BUCKET, Key=key)
        body = obj["Body"].read()
    except (BotoCoreError, ClientError) as e:
        raise IOFailure(f"cannot download source {key}: {e}") from e
    content_type = obj.get("ContentType")
    if not content_type or content_type == "binary/octet-stream":
        content_type = guess_source_content_type(key)
    return body, content_type


def put_artifact(key: str, data: bytes, content_type: str | None = None, client=None) -> str:
    """
    Upload one output artifact to the public output bucket and return its URL.
    """
    s3 = client or get_s3_client()
    try:
        s3.put_object(
            Bucket=settings.S3_OUTPUT_BUCKET,
            Key=key,
            Body=data,
            ContentType=content_type or content_type_for(key),
        )
    except (BotoCoreError, ClientError) as e:
        raise IOFailure(f"cannot upload {key}: {e}") from e
    logger.debug("Uploaded %s (%s bytes)", key, len(data))
    return object_url(settings.S3_OUTPUT_BUCKET, key)

