from datetime import date, datetime, timezone

import pytest

from errors import InvalidJobError
from identifiers import IdentifierSanitizer, download_job_id, generate_job_id
from models import Job, JobStatus, Lane, Operation, ReportType


def test_from_payload_parses_fields():
    job = Job.from_payload({
        "job_id": "J1",
        "seller_id": "s1",
        "identifier": "9876543210",
        "report_type": "settled_transactions_report",
        "operation": "download",
        "lane": "priority",
        "start_date": "2024-02-01",
        "end_date": "2024-02-29",
        "scheduled_for": "2024-03-01T10:00:00+00:00",
    })

    assert job.report_type == ReportType.SETTLED_TRANSACTIONS_REPORT
    assert job.operation == Operation.DOWNLOAD
    assert job.lane == Lane.PRIORITY
    assert job.start_date == date(2024, 2, 1)
    assert job.scheduled_for == datetime(2024, 3, 1, 10, tzinfo=timezone.utc)
    assert job.status == JobStatus.ENQUEUED


@pytest.mark.parametrize("bad", [
    {"jobId": "J1", "seller_id": "s1", "identifier": "x", "report_type": "listings"},
    {"seller_id": "s1", "identifier": "x"},
    {"seller_id": "s1", "identifier": "x", "report_type": "listings", "operation": "auto"},
    {"seller_id": "s1", "identifier": "x", "report_type": "listings", "start_date": "yesterday"},
    ["not", "a", "mapping"],
])
def test_from_payload_rejects(bad):
    with pytest.raises(InvalidJobError):
        Job.from_payload(bad)


def test_naive_datetimes_are_read_as_utc():
    job = Job.from_payload({"seller_id": "s1", "identifier": "x", "report_type": "listings",
                            "scheduled_for": "2024-01-01T08:00:00"})
    assert job.scheduled_for == datetime(2024, 1, 1, 8, tzinfo=timezone.utc)

    direct = Job(job_id="J1", seller_id="s1", identifier="x", report_type=ReportType.LISTINGS,
                 scheduled_for=datetime(2024, 1, 1, 8))
    direct.validate()
    assert direct.scheduled_for.tzinfo is timezone.utc


def test_validate_rejects_reversed_range():
    job = Job(job_id="J1", seller_id="s1", identifier="x", report_type=ReportType.LISTINGS,
              start_date=date(2024, 2, 1), end_date=date(2024, 1, 1))

    with pytest.raises(InvalidJobError):
        job.validate()


def test_resource_key_prefers_domain():
    job = Job(job_id="J1", seller_id="s1", identifier="acct", report_type=ReportType.LISTINGS)
    assert job.resource_key == "acct"
    job.domain = "seller.portal"
    assert job.resource_key == "seller.portal"


def test_to_dict_hides_credentials():
    job = Job(job_id="J1", seller_id="s1", identifier="acct", report_type=ReportType.LISTINGS,
              credentials={"password": "pw"}, start_date=date(2024, 1, 1))

    data = job.to_dict()

    assert "credentials" not in data
    assert data["report_type"] == "listings"
    assert data["start_date"] == "2024-01-01"
    assert job.to_dict(include_credentials=True)["credentials"] == {"password": "pw"}


@pytest.mark.parametrize("identifier, expected", [
    ("jane.doe@shop.com", "jane"),
    ("seller@shop.com", "seller_shop"),
    ("  9876543210 ", "9876543210"),
])
def test_normalize_identifier(identifier, expected):
    assert IdentifierSanitizer().normalize(identifier) == expected


def test_normalize_requires_identifier():
    with pytest.raises(InvalidJobError):
        IdentifierSanitizer().normalize("")


def test_generated_ids():
    first, second = generate_job_id("seller@shop.com"), generate_job_id("seller@shop.com")

    assert first.startswith("seller_shop_")
    assert len(first) == len("seller_shop_") + 8
    assert first != second
    assert download_job_id(first) == f"{first}:download"
