import boto3
import pytest
from moto import mock_aws

from fleet_pricing.util.metrics import CloudWatchMetrics


@pytest.fixture()
def cloudwatch(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("AWS_DEFAULT_REGION", "us-east-1")
    with mock_aws():
        yield boto3.client("cloudwatch", region_name="us-east-1")


def test_metrics_disabled_by_default() -> None:
    metrics = CloudWatchMetrics.from_env()

    assert metrics.enabled is False
    assert metrics.client is None
    metrics.record_cost_updates(count=3)


def test_metrics_published_when_enabled(cloudwatch, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("CLOUDWATCH_METRICS_ENABLED", "true")
    monkeypatch.setenv("CLOUDWATCH_METRICS_NAMESPACE", "FleetPricingTest")
    metrics = CloudWatchMetrics.from_env()

    metrics.record_price_changes(price_list="B2C", count=4)
    metrics.record_write_rejected(error_type="ConflictError")

    listed = cloudwatch.list_metrics(Namespace="FleetPricingTest")["Metrics"]
    names = {metric["MetricName"] for metric in listed}
    assert names == {"PriceChangesApplied", "WriteRejected"}
    price_metric = next(metric for metric in listed if metric["MetricName"] == "PriceChangesApplied")
    assert price_metric["Dimensions"] == [{"Name": "price_list", "Value": "B2C"}]
