"""DHIS2 API endpoint URLs for a metadata object.

``build`` refuses anything that is not an 11-character alphanumeric UID, in
particular hyphenated UUID-style identifiers generated on the client side.
The analytics ``dimension`` parameter is a single ``dx:<uid>;pe:<period>;ou:<ou>``
value, never one ``dimension=`` per axis.
"""

from __future__ import annotations

import re
from typing import Literal
from urllib.parse import urlencode

from pydantic import BaseModel

from dhis2_sqlview.errors import InvalidUid
from dhis2_sqlview.models import MetadataKind, normalize_kind

UID_PATTERN = re.compile(r"[A-Za-z0-9]{11}")

_METADATA_FIELDS: dict[MetadataKind, str] = {
    MetadataKind.DATA_ELEMENTS: (
        "id,name,displayName,code,description,valueType,domainType,aggregationType,"
        "categoryCombo[id,name],dataElementGroups[id,name],lastUpdated,created"
    ),
    MetadataKind.INDICATORS: (
        "id,name,displayName,code,description,numerator,denominator,"
        "indicatorType[id,name],indicatorGroups[id,name],annualized,lastUpdated,created"
    ),
    MetadataKind.PROGRAM_INDICATORS: (
        "id,name,displayName,code,description,expression,filter,program[id,name],"
        "aggregationType,analyticsType,lastUpdated,created"
    ),
}

_WEB_SECTIONS: dict[MetadataKind, str] = {
    MetadataKind.DATA_ELEMENTS: "dataElement",
    MetadataKind.INDICATORS: "indicator",
    MetadataKind.PROGRAM_INDICATORS: "programIndicator",
}

_EXTRACT_PATTERNS = (
    re.compile(r"dimension=dx(?::|%3A)([A-Za-z0-9]{11})"),
    re.compile(r"/(?:dataElements|indicators|programIndicators)/([A-Za-z0-9]{11})"),
    re.compile(r"dataElement=([A-Za-z0-9]{11})"),
)


class EndpointOptions(BaseModel):
    """Dimensions and format used when building endpoint URLs."""

    period: str = "THIS_YEAR"
    org_unit: str = "USER_ORGUNIT"
    format: Literal["json", "xml", "csv"] = "json"
    include_metadata: bool = True


class ApiEndpointSet(BaseModel):
    """Endpoints for one metadata object.  ``data_values`` exists only for data elements."""

    metadata: str
    analytics: str | None = None
    data_values: str | None = None
    web_ui: str | None = None
    export: str | None = None


def validate_uid(uid: object) -> str:
    """Return ``uid`` if it is a DHIS2 UID.

    Raises:
        InvalidUid: With the reason the identifier was rejected.
    """
    if not isinstance(uid, str) or not uid:
        raise InvalidUid(uid, "expected an 11-character DHIS2 UID")
    if "-" in uid:
        raise InvalidUid(uid, "contains '-'; looks like a generated UUID, not a DHIS2 UID")
    if len(uid) != 11:
        raise InvalidUid(uid, f"expected 11 characters, got {len(uid)}")
    if not UID_PATTERN.fullmatch(uid):
        raise InvalidUid(uid, "must contain only ASCII letters and digits")
    return uid


def normalize_base_url(url: str) -> str:
    """Return the ``.../api`` root for a DHIS2 base URL."""
    url = url.strip().rstrip("/")
    if url.endswith("/api"):
        return url
    if "/api/" in url:
        return url[: url.index("/api/") + 4]
    return f"{url}/api"


def _suffix(fmt: str) -> str:
    return {"json": ".json", "xml": ".xml"}.get(fmt, "")


def _analytics_url(api: str, uid: str, kind: MetadataKind, options: EndpointOptions) -> str:
    params = {
        "dimension": f"dx:{uid};pe:{options.period};ou:{options.org_unit}",
        "displayProperty": "NAME",
        "outputFormat": "JSON",
        "skipRounding": "false",
    }
    if options.include_metadata:
        params["includeMetadataDetails"] = "true"
    params["aggregationType"] = "DEFAULT"
    if kind is MetadataKind.PROGRAM_INDICATORS:
        params["ouMode"] = "DESCENDANTS"
    return f"{api}/analytics?{urlencode(params, safe=':;')}"


def _data_values_url(api: str, uid: str, options: EndpointOptions) -> str:
    params = {
        "dataElement": uid,
        "period": options.period,
        "orgUnit": options.org_unit,
        "format": options.format.upper(),
    }
    return f"{api}/dataValueSets?{urlencode(params)}"


def build(
    kind: MetadataKind | str,
    uid: str,
    base_url: str,
    options: EndpointOptions | None = None,
) -> ApiEndpointSet:
    """Build the endpoint set for one metadata object.

    Args:
        kind: dataElements, indicators or programIndicators.
        uid: 11-character DHIS2 UID.
        base_url: Instance URL, with or without ``/api``.
        options: Period, org unit and format.

    Returns:
        ApiEndpointSet.

    Raises:
        InvalidUid: If ``uid`` is not a DHIS2 UID.
        ValueError: If ``kind`` is not a supported metadata type.
    """
    validate_uid(uid)
    kind = normalize_kind(kind)
    options = options or EndpointOptions()
    api = normalize_base_url(base_url)
    web = api[: -len("/api")]
    suffix = _suffix(options.format)

    return ApiEndpointSet(
        analytics=_analytics_url(api, uid, kind, options),
        metadata=f"{api}/{kind.value}/{uid}{suffix}?{urlencode({'fields': _METADATA_FIELDS[kind]}, safe=',[]')}",
        data_values=_data_values_url(api, uid, options) if kind is MetadataKind.DATA_ELEMENTS else None,
        web_ui=f"{web}/#/maintenance/{_WEB_SECTIONS[kind]}/{uid}",
        export=f"{api}/{kind.value}/{uid}{suffix}?download=true",
    )


def extract_uid(url: str) -> str | None:
    """Recover the metadata UID from an analytics, metadata or dataValueSets URL."""
    for pattern in _EXTRACT_PATTERNS:
        match = pattern.search(url)
        if match:
            return match.group(1)
    return None


def curl_command(url: str, username: str | None = None) -> str:
    """A curl command line for trying ``url`` by hand; the password is prompted for."""
    auth = f'-u "{username}"' if username else '-H "Authorization: ApiToken $DHIS2_TOKEN"'
    return f'curl {auth} \\\n  -H "Accept: application/json" \\\n  "{url}"'
