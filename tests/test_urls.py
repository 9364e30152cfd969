"""Tests for the DHIS2 endpoint URL builder."""

from __future__ import annotations

import pytest

from dhis2_sqlview.errors import InvalidUid
from dhis2_sqlview.models import MetadataKind
from dhis2_sqlview.urls import (
    EndpointOptions,
    build,
    curl_command,
    extract_uid,
    normalize_base_url,
    validate_uid,
)

UID = "OwvmJaiVIBU"


class TestValidateUid:
    """UID grammar: exactly 11 ASCII letters or digits."""

    @pytest.mark.parametrize(
        ("uid", "reason"),
        [
            ("abc-123-def", "'-'"),
            ("3fa85f64-5717-4562-b3fc-2c963f66afa6", "'-'"),
            ("short", "11 characters"),
            ("OwvmJaiVIBUx", "11 characters"),
            ("Owvm_aiVIBU", "letters and digits"),
            ("Owvm aiVIBU", "letters and digits"),
            ("Owvmé1iVIBU", "letters and digits"),
            ("", "11-character"),
        ],
    )
    def test_rejected(self, uid: str, reason: str) -> None:
        with pytest.raises(InvalidUid) as excinfo:
            validate_uid(uid)
        assert reason in excinfo.value.reason
        assert excinfo.value.details()["uid"] == repr(uid)

    def test_non_string_rejected(self) -> None:
        with pytest.raises(InvalidUid):
            validate_uid(None)

    @pytest.mark.parametrize("uid", [UID, "fbfJHSPpUQD", "00000000000", "ABCDEFGHIJK"])
    def test_accepted(self, uid: str) -> None:
        assert validate_uid(uid) == uid

    def test_invalid_uid_is_a_value_error(self) -> None:
        with pytest.raises(ValueError):
            validate_uid("abc-123-def")


class TestBuild:
    """Endpoint sets per metadata type."""

    def test_data_element_endpoints(self) -> None:
        endpoints = build("dataElements", UID, "https://x/api")
        assert endpoints.data_values is not None
        assert "dimension=dx:OwvmJaiVIBU" in (endpoints.analytics or "")
        assert endpoints.data_values.startswith("https://x/api/dataValueSets?dataElement=OwvmJaiVIBU")
        assert endpoints.metadata.startswith(f"https://x/api/dataElements/{UID}.json?fields=")

    def test_hyphenated_uid_rejected(self) -> None:
        with pytest.raises(InvalidUid):
            build("dataElements", "abc-123-def", "https://x/api")

    def test_dimension_is_one_parameter(self) -> None:
        analytics = build(MetadataKind.INDICATORS, UID, "https://x").analytics or ""
        assert analytics.count("dimension=") == 1
        assert f"dimension=dx:{UID};pe:THIS_YEAR;ou:USER_ORGUNIT" in analytics

    def test_indicator_has_no_data_values(self) -> None:
        endpoints = build("indicators", UID, "https://x")
        assert endpoints.data_values is None
        assert endpoints.analytics is not None
        assert "ouMode" not in endpoints.analytics

    def test_program_indicator(self) -> None:
        endpoints = build("programIndicators", UID, "https://x")
        assert endpoints.data_values is None
        assert "ouMode=DESCENDANTS" in (endpoints.analytics or "")
        assert "program[id,name]" in endpoints.metadata

    def test_options(self) -> None:
        options = EndpointOptions(period="LAST_12_MONTHS", org_unit="ImspTQPwCqd", include_metadata=False)
        endpoints = build("dataElements", UID, "https://x", options)
        assert f"dx:{UID};pe:LAST_12_MONTHS;ou:ImspTQPwCqd" in (endpoints.analytics or "")
        assert "includeMetadataDetails" not in (endpoints.analytics or "")
        assert "period=LAST_12_MONTHS" in (endpoints.data_values or "")

    def test_xml_format(self) -> None:
        endpoints = build("indicators", UID, "https://x", EndpointOptions(format="xml"))
        assert endpoints.metadata.startswith(f"https://x/api/indicators/{UID}.xml?")
        assert endpoints.export == f"https://x/api/indicators/{UID}.xml?download=true"

    def test_web_and_export(self) -> None:
        endpoints = build("data_element", UID, "https://play.im.dhis2.org/dev/")
        assert endpoints.web_ui == f"https://play.im.dhis2.org/dev/#/maintenance/dataElement/{UID}"
        assert endpoints.export == f"https://play.im.dhis2.org/dev/api/dataElements/{UID}.json?download=true"

    def test_unknown_kind(self) -> None:
        with pytest.raises(ValueError):
            build("organisationUnits", UID, "https://x")


@pytest.mark.parametrize(
    ("url", "expected"),
    [
        ("https://x", "https://x/api"),
        ("https://x/", "https://x/api"),
        ("https://x/api", "https://x/api"),
        ("https://x/api/", "https://x/api"),
        ("https://x/dhis/api/40/dataElements", "https://x/dhis/api"),
    ],
)
def test_normalize_base_url(url: str, expected: str) -> None:
    assert normalize_base_url(url) == expected


def test_extract_uid_round_trips_every_endpoint() -> None:
    endpoints = build("dataElements", UID, "https://x")
    for url in (endpoints.analytics, endpoints.metadata, endpoints.data_values, endpoints.export):
        assert extract_uid(url or "") == UID


def test_extract_uid_none() -> None:
    assert extract_uid("https://x/api/system/info") is None


def test_curl_command() -> None:
    command = curl_command("https://x/api/system/info", username="admin")
    assert command.startswith('curl -u "admin"')
    assert '"https://x/api/system/info"' in command
    assert "ApiToken" in curl_command("https://x/api/system/info")
