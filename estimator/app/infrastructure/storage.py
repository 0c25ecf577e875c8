import io
import uuid

import boto3
from botocore.config import Config
from botocore.exceptions import ClientError, EndpointConnectionError, NoCredentialsError

from estimator.app.config import Settings
from estimator.app.logging_config import get_logger

logger = get_logger("app.infrastructure.storage")

XLSX_CONTENT_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
XML_CONTENT_TYPE = "application/xml"
JSON_CONTENT_TYPE = "application/json"


class StorageError(Exception):
    def __init__(self, key: str, reason: str):
        self.key = key
        self.reason = reason
        super().__init__(f"Storage operation on {key} failed: {reason}")


class StorageService:
    """Blob storage over an S3-compatible bucket.

    ``put`` raises ``StorageError`` so callers can decide what a failed write
    means for them; reads and existence checks degrade to ``None``/``False``.
    """

    def __init__(self, settings: Settings):
        config = Config(connect_timeout=2, read_timeout=10, retries={"max_attempts": 2})
        self.client = boto3.client(
            "s3",
            endpoint_url=settings.s3_endpoint_url,
            aws_access_key_id=settings.s3_access_key,
            aws_secret_access_key=settings.s3_secret_key,
            region_name=settings.s3_region,
            config=config,
        )
        self.bucket_name = settings.s3_bucket_name

    def put(self, key: str, data: bytes, content_type: str | None = None) -> str:
        try:
            extra_args = {}
            if content_type:
                extra_args["ContentType"] = content_type
            self.client.upload_fileobj(
                io.BytesIO(data), self.bucket_name, key, ExtraArgs=extra_args
            )
            logger.info(f"Uploaded {len(data)} bytes to {key}")
            return key
        except Exception as e:
            logger.error(f"Failed to upload file to {key}: {e}")
            raise StorageError(key, str(e)) from e

    def get(self, key: str) -> bytes | None:
        try:
            response = self.client.get_object(Bucket=self.bucket_name, Key=key)
            return response["Body"].read()
        except ClientError as e:
            error_code = e.response.get("Error", {}).get("Code", "Unknown")
            if error_code == "NoSuchKey":
                logger.debug(f"File not found: {key}")
            else:
                logger.error(f"Failed to get file {key}: {e}")
            return None
        except Exception as e:
            logger.error(f"Failed to get file {key}: {e}")
            return None

    def exists(self, key: str) -> bool:
        try:
            self.client.head_object(Bucket=self.bucket_name, Key=key)
            return True
        except ClientError as e:
            error_code = e.response.get("Error", {}).get("Code", "Unknown")
            if error_code in ("404", "NoSuchKey"):
                return False
            logger.error(f"Error checking file existence {key}: {e}")
            return False
        except Exception as e:
            logger.error(f"Error checking file existence {key}: {e}")
            return False

    def delete(self, key: str) -> bool:
        try:
            self.client.delete_object(Bucket=self.bucket_name, Key=key)
            logger.info(f"Deleted file {key}")
            return True
        except Exception as e:
            logger.error(f"Failed to delete file {key}: {e}")
            return False

    def upload_import_source(
        self, estimate_id: int, session_id: uuid.UUID, file_name: str, data: bytes
    ) -> str:
        suffix = file_name.rsplit(".", 1)[-1].lower() if "." in file_name else "xlsx"
        key = f"imports/{estimate_id}/{session_id}/source.{suffix}"
        content_type = XML_CONTENT_TYPE if suffix in {"xml", "gsfx", "gge"} else XLSX_CONTENT_TYPE
        return self.put(key, data, content_type=content_type)


def check_storage_connectivity(
    endpoint_url: str,
    access_key: str,
    secret_key: str,
    bucket_name: str,
) -> bool:
    try:
        client = boto3.client(
            "s3",
            endpoint_url=endpoint_url,
            aws_access_key_id=access_key,
            aws_secret_access_key=secret_key,
        )
        client.head_bucket(Bucket=bucket_name)
        logger.info(f"Storage connectivity check passed for bucket: {bucket_name}")
        return True
    except ClientError as e:
        error_code = e.response.get("Error", {}).get("Code", "Unknown")
        if error_code == "404":
            logger.error(f"Storage bucket not found: {bucket_name}")
        elif error_code == "403":
            logger.error(f"Storage access denied for bucket: {bucket_name}")
        else:
            logger.error(f"Storage connectivity check failed: {e}")
        return False
    except EndpointConnectionError as e:
        logger.error(f"Storage endpoint connection failed: {e}")
        return False
    except NoCredentialsError as e:
        logger.error(f"Storage credentials missing: {e}")
        return False
    except Exception as e:
        logger.error(f"Unexpected error during storage connectivity check: {e}")
        return False
