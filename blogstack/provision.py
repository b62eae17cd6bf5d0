"""
Provision the blog table, its secondary indexes and the media bucket.

    python -m blogstack.provision create-table
    python -m blogstack.provision add-index --index GSI2
    python -m blogstack.provision configure-bucket
    python -m blogstack.provision status
    python -m blogstack.provision resume-deletions
"""
from __future__ import annotations

import argparse
import json
import logging
import sys
from typing import Any, Dict, List, Optional

from botocore.exceptions import ClientError

from blogstack.core.aws import ddb, s3
from blogstack.core.indexes import INDEXES
from blogstack.core.logconfig import configure_logging
from blogstack.core.settings import S
from blogstack.core.tables import T
from blogstack.services.cascade import resume_all

logger = logging.getLogger(__name__)

BUCKET_CORS_METHODS = ["GET", "PUT", "POST", "DELETE", "HEAD"]
BUCKET_EXPOSE_HEADERS = ["ETag", "x-amz-meta-custom-header"]


def _index_attrs(index_name: str) -> List[str]:
    if index_name == S.gsi1_name:
        return ["GSI1PK", "GSI1SK"]
    if index_name == S.gsi2_name:
        return ["GSI2PK", "GSI2SK"]
    raise ValueError(f"unknown index: {index_name}")


def gsi_definition(index_name: str) -> Dict[str, Any]:
    pk, sk = _index_attrs(index_name)
    return {
        "IndexName": index_name,
        "KeySchema": [
            {"AttributeName": pk, "KeyType": "HASH"},
            {"AttributeName": sk, "KeyType": "RANGE"},
        ],
        "Projection": {"ProjectionType": "ALL"},
    }


def attribute_definitions(index_names: List[str]) -> List[Dict[str, str]]:
    attrs = [{"AttributeName": "PK", "AttributeType": "S"}]
    for name in index_names:
        attrs.extend({"AttributeName": attr, "AttributeType": "S"} for attr in _index_attrs(name))
    return attrs


def create_table(client: Any) -> bool:
    indexes = [S.gsi1_name, S.gsi2_name]
    try:
        client.create_table(
            TableName=S.table_name,
            KeySchema=[{"AttributeName": "PK", "KeyType": "HASH"}],
            AttributeDefinitions=attribute_definitions(indexes),
            GlobalSecondaryIndexes=[gsi_definition(name) for name in indexes],
            BillingMode="PAY_PER_REQUEST",
        )
    except ClientError as exc:
        if exc.response.get("Error", {}).get("Code") == "ResourceInUseException":
            logger.info("Table %s already exists", S.table_name)
            return False
        raise
    logger.info("Creating table %s with indexes %s", S.table_name, ", ".join(indexes))
    return True


def add_index(client: Any, index_name: str) -> bool:
    desc = client.describe_table(TableName=S.table_name)["Table"]
    existing = {gsi["IndexName"] for gsi in desc.get("GlobalSecondaryIndexes", []) or []}
    if index_name in existing:
        logger.info("Index %s already exists on %s", index_name, S.table_name)
        return False
    client.update_table(
        TableName=S.table_name,
        AttributeDefinitions=attribute_definitions([index_name]),
        GlobalSecondaryIndexUpdates=[{"Create": gsi_definition(index_name)}],
    )
    logger.info("Adding index %s to %s; lookups scan until it is ACTIVE", index_name, S.table_name)
    return True


def bucket_cors() -> Dict[str, Any]:
    origins = list(dict.fromkeys(S.cors_origins + [S.frontend_url]))
    return {
        "CORSRules": [
            {
                "AllowedHeaders": ["*"],
                "AllowedMethods": BUCKET_CORS_METHODS,
                "AllowedOrigins": origins,
                "ExposeHeaders": BUCKET_EXPOSE_HEADERS,
                "MaxAgeSeconds": 3000,
            }
        ]
    }


def public_read_policy() -> Dict[str, Any]:
    return {
        "Version": "2012-10-17",
        "Statement": [
            {
                "Sid": "AllowPublicRead",
                "Effect": "Allow",
                "Principal": "*",
                "Action": "s3:GetObject",
                "Resource": f"arn:aws:s3:::{S.media_bucket}/uploads/*",
            }
        ],
    }


def configure_bucket(client: Any) -> None:
    client.put_bucket_cors(Bucket=S.media_bucket, CORSConfiguration=bucket_cors())
    logger.info("CORS applied to %s", S.media_bucket)
    client.put_bucket_policy(Bucket=S.media_bucket, Policy=json.dumps(public_read_policy()))
    logger.info("Public read policy set for uploads/ in %s", S.media_bucket)


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Provision blogstack AWS resources")
    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("create-table", help="Create the table with both secondary indexes")
    add = sub.add_parser("add-index", help="Add a missing secondary index")
    add.add_argument("--index", choices=[S.gsi1_name, S.gsi2_name, "all"], default="all")
    sub.add_parser("configure-bucket", help="Apply CORS and the uploads/ public-read policy")
    sub.add_parser("status", help="Show secondary index status")
    sub.add_parser("resume-deletions", help="Retry unfinished user deletions")
    args = parser.parse_args(argv)

    configure_logging()
    client = ddb.meta.client

    if args.command == "create-table":
        create_table(client)
    elif args.command == "add-index":
        names = [S.gsi1_name, S.gsi2_name] if args.index == "all" else [args.index]
        for name in names:
            add_index(client, name)
    elif args.command == "configure-bucket":
        configure_bucket(s3)
    elif args.command == "status":
        for name, state in INDEXES.refresh(T.blog).items():
            print(f"{name}: {state.value}")
    elif args.command == "resume-deletions":
        reports = resume_all()
        for report in reports:
            print(f"{report['userId']}: {report['status']} ({report['completedSteps']}/{report['totalSteps']})")
        if any(report["status"] != "completed" for report in reports):
            return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
