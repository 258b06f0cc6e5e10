import os
import uuid
from pathlib import Path
from urllib.parse import urlparse

import boto3
from botocore.exceptions import NoCredentialsError
from flask import current_app
from werkzeug.utils import secure_filename

from .errors import bad_request

EXTENSIONS = {"image/jpeg": "jpg", "image/jpg": "jpg", "image/png": "png"}
SIGNATURES = ((b"\x89PNG\r\n\x1a\n", "png"), (b"\xff\xd8\xff", "jpg"))


def _s3_client():
    return boto3.client(
        "s3",
        aws_access_key_id=os.getenv("AWS_ACCESS_KEY_ID"),
        aws_secret_access_key=os.getenv("AWS_SECRET_ACCESS_KEY"),
        region_name=current_app.config.get("S3_REGION"),
    )


def upload_file_to_s3(file, filename, bucket_name):
    s3 = _s3_client()
    try:
        s3.upload_fileobj(
            file,
            bucket_name,
            filename,
            ExtraArgs={"ACL": "public-read", "ContentType": file.mimetype},
        )
    except NoCredentialsError:
        raise Exception("AWS credentials not found. Check environment variables.")
    base_url = current_app.config.get("S3_BASE_URL") or (
        f"https://{bucket_name}.s3.amazonaws.com"
    )
    return f"{base_url}/{filename}"


def delete_file_from_s3(image_url, bucket_name):
    s3 = _s3_client()
    try:
        key = urlparse(image_url).path.lstrip("/")
        s3.delete_object(Bucket=bucket_name, Key=key)
        return True
    except NoCredentialsError:
        raise Exception("AWS credentials not found. Check environment variables.")
    except Exception as e:
        current_app.logger.error(f"Error deleting file from S3: {e}")
        return False


def validate_image(file):
    """Reject anything that is not a jpeg/png within the upload size limit."""
    if file is None or not file.filename:
        raise bad_request("No file uploaded")

    allowed = current_app.config.get("ALLOWED_PROOF_TYPES", tuple(EXTENSIONS))
    if file.mimetype not in allowed:
        raise bad_request("Only JPG and PNG images are allowed")

    file.stream.seek(0, os.SEEK_END)
    size = file.stream.tell()
    file.stream.seek(0)
    max_bytes = current_app.config.get("MAX_UPLOAD_MB", 5) * 1024 * 1024
    if size > max_bytes:
        raise bad_request(
            f"File is too large (max {current_app.config.get('MAX_UPLOAD_MB', 5)}MB)"
        )
    if size == 0:
        raise bad_request("Uploaded file is empty")

    head = file.stream.read(8)
    file.stream.seek(0)
    if sniff_image_type(head) != EXTENSIONS.get(file.mimetype):
        raise bad_request("File content is not a valid JPG or PNG image")
    return size


def sniff_image_type(head):
    for signature, ext in SIGNATURES:
        if head.startswith(signature):
            return ext
    return None


def store_image(file, folder):
    """Validate and store an uploaded image, returning its public URL.

    Files go to S3 when a bucket is configured, otherwise under UPLOAD_DIR.
    """
    validate_image(file)
    ext = EXTENSIONS.get(file.mimetype, "bin")
    stem = Path(secure_filename(file.filename)).stem or "upload"
    filename = f"{folder}/{uuid.uuid4().hex}_{stem}.{ext}"

    bucket = current_app.config.get("S3_BUCKET_NAME")
    if bucket:
        return upload_file_to_s3(file, filename, bucket)

    target = Path(current_app.config["UPLOAD_DIR"]) / filename
    target.parent.mkdir(parents=True, exist_ok=True)
    file.save(target)
    return f"/uploads/{filename}"
