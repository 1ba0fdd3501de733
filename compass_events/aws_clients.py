"""aws_clients.py — boto3 client factories (DynamoDB, S3, SES).

Clients are built explicitly and handed to the stores / dispatchers that use
them; AppContext owns their lifetime and closes them on shutdown.
"""
from __future__ import annotations

from typing import Optional

import boto3
from botocore.config import Config

from compass_events.config import DYNAMODB_ENDPOINT, DYNAMODB_REGION, S3_ENDPOINT, S3_REGION, SES_REGION

__all__ = [
    "build_dynamodb_client",
    "build_s3_client",
    "build_ses_client",
]


def build_dynamodb_client(region: Optional[str] = None, endpoint_url: Optional[str] = None):
    """Create the DynamoDB low-level client."""
    kwargs = {
        "region_name": region or DYNAMODB_REGION,
        "config": Config(retries={"max_attempts": 5, "mode": "standard"}),
    }
    endpoint = endpoint_url if endpoint_url is not None else DYNAMODB_ENDPOINT
    if endpoint:
        kwargs["endpoint_url"] = endpoint
    return boto3.client("dynamodb", **kwargs)


def build_s3_client(region: Optional[str] = None, endpoint_url: Optional[str] = None):
    """Create the S3 client. Path-style addressing keeps local endpoints (MinIO, LocalStack) working."""
    kwargs = {
        "region_name": region or S3_REGION,
        "config": Config(
            retries={"max_attempts": 3, "mode": "standard"},
            s3={"addressing_style": "path"},
        ),
    }
    endpoint = endpoint_url if endpoint_url is not None else S3_ENDPOINT
    if endpoint:
        kwargs["endpoint_url"] = endpoint
    return boto3.client("s3", **kwargs)


def build_ses_client(region: Optional[str] = None):
    """Create the SES client."""
    return boto3.client(
        "ses",
        region_name=region or SES_REGION,
        config=Config(retries={"max_attempts": 3, "mode": "standard"}),
    )
