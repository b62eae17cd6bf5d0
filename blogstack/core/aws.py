from __future__ import annotations

import boto3
from botocore.config import Config

from .settings import S

_session = boto3.session.Session(region_name=S.aws_region or "us-east-1")

_ddb_kwargs = {"endpoint_url": S.ddb_endpoint_url} if S.ddb_endpoint_url else {}

ddb = _session.resource("dynamodb", **_ddb_kwargs)

# Presigned URLs must carry SigV4 so they work for every region.
s3 = _session.client("s3", config=Config(signature_version="s3v4"))
