import os
import logging

import boto3
from boto3.s3.transfer import TransferConfig
from botocore.exceptions import BotoCoreError, ClientError
from tqdm import tqdm

from workspace_archiver.errors import VaultError
from workspace_archiver.ledger import log_archive_transaction
from workspace_archiver.log import log_success

logger = logging.getLogger(__name__)

STATUS_WIDTH = 13


class S3Vault:
    """Optional off-site copy of each new artifact in an S3 bucket."""

    def __init__(self, settings, client=None):
        self.settings = settings
        self.bucket = settings.s3_bucket
        self._client = client

    @property
    def client(self):
        if self._client is None:
            self._client = boto3.client("s3")
        return self._client

    def key_for(self, archive_path):
        return f"{self.settings.s3_prefix}{os.path.basename(archive_path)}"

    def transfer_config(self):
        limit_mb = self.settings.upload_limit_mb
        if limit_mb > 0:
            return TransferConfig(max_bandwidth=limit_mb * 1024 * 1024, max_concurrency=10, use_threads=True)
        return TransferConfig(use_threads=True)

    def upload(self, record, run_timestamp):
        """Uploads one artifact and verifies it with head_object. Returns the ETag."""
        s3_key = self.key_for(record.path)
        file_size = os.path.getsize(record.path)
        desc = "  " + "[NET: S3]".ljust(STATUS_WIDTH)

        try:
            with tqdm(
                total=file_size,
                unit='B',
                unit_scale=True,
                leave=True,
                ncols=100,
                bar_format="{desc} {percentage:5.1f}%|{bar}| {n_fmt}/{total_fmt} [{elapsed}<{remaining}, {rate_fmt}]"
            ) as pbar:
                pbar.set_description(desc)
                self.client.upload_file(
                    record.path,
                    self.bucket,
                    s3_key,
                    ExtraArgs={'StorageClass': self.settings.storage_class},
                    Config=self.transfer_config(),
                    Callback=pbar.update,
                )
        except (BotoCoreError, ClientError, OSError) as e:
            log_archive_transaction(self.settings.ledger_file, "VAULT_FAILURE", record.entity_identifier,
                                    record.path, file_size, run_timestamp, {"error": str(e)})
            raise VaultError(f"Upload of {os.path.basename(record.path)} to s3://{self.bucket}/{s3_key} failed: {e}")

        try:
            response = self.client.head_object(Bucket=self.bucket, Key=s3_key)
            etag = response.get('ETag', '').replace('"', '')
            metadata = response.get('ResponseMetadata', {})
        except (BotoCoreError, ClientError) as e:
            etag = "VERIFY_FAILED"
            metadata = {"error": str(e)}

        log_archive_transaction(
            self.settings.ledger_file,
            "VAULT_UPLOAD" if etag != "VERIFY_FAILED" else "VAULT_VERIFY_FAILURE",
            record.entity_identifier,
            record.path,
            file_size,
            run_timestamp,
            {
                "s3_bucket": self.bucket,
                "s3_key": s3_key,
                "storage_class": self.settings.storage_class,
                "etag": etag,
                "request_id": metadata.get('RequestId', 'N/A'),
            },
        )

        if etag == "VERIFY_FAILED":
            raise VaultError(f"Uploaded s3://{self.bucket}/{s3_key} but could not verify it")

        log_success(logger, "Vaulted %s to s3://%s/%s (ETag %s)", os.path.basename(record.path), self.bucket, s3_key, etag)
        return etag
