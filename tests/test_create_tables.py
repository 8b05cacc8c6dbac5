"""
Tests for the table provisioning script (scripts/create_tables.py).
"""

import boto3
from moto import mock_aws

from create_tables import create_tables, table_definitions


class TestTableDefinitions:
    def test_three_pk_sk_tables(self):
        definitions = table_definitions("acme")

        names = [d["TableName"] for d in definitions]
        assert names == ["acme-identities", "acme-profiles", "acme-webhook-events"]
        for definition in definitions:
            assert [k["AttributeName"] for k in definition["KeySchema"]] == ["pk", "sk"]
            assert definition["BillingMode"] == "PAY_PER_REQUEST"


class TestCreateTables:
    @mock_aws
    def test_creates_tables_and_enables_ttl(self):
        dynamodb = boto3.resource("dynamodb", region_name="us-east-1")

        created = create_tables(dynamodb, "acme")

        assert created == ["acme-identities", "acme-profiles", "acme-webhook-events"]
        ttl = dynamodb.meta.client.describe_time_to_live(TableName="acme-webhook-events")
        assert ttl["TimeToLiveDescription"]["TimeToLiveStatus"] == "ENABLED"
        assert ttl["TimeToLiveDescription"]["AttributeName"] == "ttl"

    @mock_aws
    def test_existing_tables_are_skipped(self, capsys):
        dynamodb = boto3.resource("dynamodb", region_name="us-east-1")
        create_tables(dynamodb, "acme")

        created = create_tables(dynamodb, "acme")

        assert created == []
        assert "acme-profiles already exists" in capsys.readouterr().out
