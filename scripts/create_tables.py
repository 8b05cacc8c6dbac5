#!/usr/bin/env python3
"""Create the DynamoDB tables used by the CRM webhook."""

import argparse
import sys

import boto3
from botocore.exceptions import ClientError


def table_definitions(prefix: str) -> list[dict]:
    """Table specs keyed on pk/sk, matching what the webhook Lambda expects."""
    key_schema = [
        {"AttributeName": "pk", "KeyType": "HASH"},
        {"AttributeName": "sk", "KeyType": "RANGE"},
    ]
    attributes = [
        {"AttributeName": "pk", "AttributeType": "S"},
        {"AttributeName": "sk", "AttributeType": "S"},
    ]
    return [
        {
            "TableName": f"{prefix}-identities",  # pk = EMAIL#<email>, sk = IDENTITY
            "KeySchema": key_schema,
            "AttributeDefinitions": attributes,
            "BillingMode": "PAY_PER_REQUEST",
        },
        {
            "TableName": f"{prefix}-profiles",  # pk = user_id, sk = PROFILE
            "KeySchema": key_schema,
            "AttributeDefinitions": attributes,
            "BillingMode": "PAY_PER_REQUEST",
        },
        {
            "TableName": f"{prefix}-webhook-events",  # pk = event id or body hash, sk = action
            "KeySchema": key_schema,
            "AttributeDefinitions": attributes,
            "BillingMode": "PAY_PER_REQUEST",
        },
    ]


def create_tables(dynamodb, prefix: str) -> list[str]:
    """Create any missing tables; returns the names that were created."""
    created = []
    for definition in table_definitions(prefix):
        name = definition["TableName"]
        try:
            dynamodb.create_table(**definition)
        except ClientError as e:
            if e.response["Error"]["Code"] == "ResourceInUseException":
                print(f"  {name} already exists")
                continue
            raise
        print(f"  Created {name}")
        created.append(name)

    events_table = f"{prefix}-webhook-events"
    if events_table in created:
        dynamodb.meta.client.get_waiter("table_exists").wait(TableName=events_table)
        dynamodb.meta.client.update_time_to_live(
            TableName=events_table,
            TimeToLiveSpecification={"Enabled": True, "AttributeName": "ttl"},
        )
        print(f"  Enabled TTL on {events_table}")
    return created


def main():
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--prefix", default="crmsync", help="Table name prefix (default: crmsync)")
    parser.add_argument("--region", default="us-east-1")
    args = parser.parse_args()

    dynamodb = boto3.resource("dynamodb", region_name=args.region)
    print(f"Creating tables with prefix {args.prefix!r} in {args.region}")
    try:
        create_tables(dynamodb, args.prefix)
    except ClientError as e:
        print(f"Failed: {e}", file=sys.stderr)
        sys.exit(1)
    print("\nDone!")


if __name__ == "__main__":
    main()
