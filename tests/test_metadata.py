"""
Tests for request metadata extraction
"""

import json

import pytest
from starlette.datastructures import URL, Headers

from tagtrail.telemetry.metadata import (
    MAX_FIELD_LENGTH,
    MAX_LANGUAGE_LENGTH,
    build_raw_meta,
    detect_device_type,
    extract_metadata,
    extract_utm,
    filter_pii_params,
    first_query_values,
    primary_browser_lang,
    truncate_field,
)

from conftest import ANDROID_UA, DESKTOP_UA, IPHONE_UA


@pytest.mark.parametrize(
    "user_agent, expected",
    [
        (IPHONE_UA, "iOS"),
        (ANDROID_UA, "Android"),
        (DESKTOP_UA, "Desktop"),
        ("Mozilla/5.0 (compatible; Googlebot/2.1; +http://www.google.com/bot.html)", "Bot"),
        ("WhatsApp/2.23.20.0 A", "Bot"),
        ("curl/8.4.0", "Bot"),
        # Link previews from iOS apps still count as bots
        ("Mozilla/5.0 (iPhone; CPU iPhone OS 17_0) facebookexternalhit/1.1", "Bot"),
        ("SomethingElse/1.0", "Unknown"),
        ("", "Unknown"),
        (None, "Unknown"),
    ],
)
def test_detect_device_type(user_agent, expected):
    assert detect_device_type(user_agent) == expected


def test_extract_utm_missing_and_empty_values_are_none():
    utm = extract_utm({"utm_source": "newsletter", "utm_medium": "", "gclid": "abc"})
    assert utm.utm_source == "newsletter"
    assert utm.utm_medium is None
    assert utm.utm_campaign is None
    assert utm.gclid == "abc"
    assert utm.fbclid is None


def test_filter_pii_params():
    params = {
        "token": "abc",
        "city": "Warsaw",
        "user_email": "a@b.c",
        "api_key": "k",
        "Session_Id": "s",
        "utm_source": "newsletter",
    }
    assert filter_pii_params(params) == {"city": "Warsaw", "utm_source": "newsletter"}


def test_truncate_field():
    assert truncate_field(None) is None
    assert truncate_field("") == ""
    assert truncate_field("abc") == "abc"
    assert len(truncate_field("x" * (MAX_FIELD_LENGTH + 10))) == MAX_FIELD_LENGTH


def test_primary_browser_lang():
    assert primary_browser_lang("pl-PL,pl;q=0.9,en;q=0.8") == "pl-PL"
    assert primary_browser_lang("en;q=0.5") == "en"
    assert primary_browser_lang(None) is None


def test_raw_meta_drops_pii_and_unlisted_headers():
    headers = Headers(headers={
        "user-agent": IPHONE_UA,
        "cookie": "tn_visitor=abc",
        "authorization": "Bearer xyz",
        "x-forwarded-for": "203.0.113.9",
    })
    meta = json.loads(build_raw_meta(headers, URL("https://twojenfc.pl/s/T?token=abc&city=Warsaw")))

    assert meta["query"] == {"city": "Warsaw"}
    assert meta["path"] == "/s/T"
    assert meta["headers"] == {"user-agent": IPHONE_UA}


def test_extract_metadata():
    headers = Headers(headers={
        "user-agent": IPHONE_UA,
        "accept-language": "pl-PL,pl;q=0.9",
        "referer": "https://instagram.com/",
    })
    url = URL("https://twojenfc.pl/s/T?utm_source=newsletter&utm_campaign=spring")

    metadata = extract_metadata(headers, url)

    assert metadata.device_type == "iOS"
    assert metadata.utm.utm_source == "newsletter"
    assert metadata.utm.utm_campaign == "spring"
    assert metadata.referrer == "https://instagram.com/"
    assert metadata.browser_lang == "pl-PL"
    assert metadata.accept_language == "pl-PL,pl;q=0.9"
    assert metadata.path == "/s/T"
    assert metadata.query == "?utm_source=newsletter&utm_campaign=spring"


def test_repeated_campaign_parameter_keeps_first_value():
    url = URL("https://twojenfc.pl/s/T?utm_source=a&utm_source=b&gclid=&gclid=x")

    assert first_query_values(url.query) == {"utm_source": "a", "gclid": ""}

    metadata = extract_metadata(Headers(headers={}), url)
    assert metadata.utm.utm_source == "a"
    assert metadata.utm.gclid is None


def test_extract_metadata_empty_request():
    metadata = extract_metadata(Headers(headers={}), URL("https://twojenfc.pl/s/T"))

    assert metadata.device_type == "Unknown"
    assert metadata.user_agent is None
    assert metadata.referrer is None
    assert metadata.browser_lang is None
    assert metadata.query is None
    assert json.loads(metadata.raw_meta) == {"headers": {}, "query": {}, "path": "/s/T"}


def test_extract_metadata_caps_language():
    headers = Headers(headers={"accept-language": "x" * (MAX_LANGUAGE_LENGTH + 50)})
    metadata = extract_metadata(headers, URL("https://twojenfc.pl/"))
    assert len(metadata.accept_language) == MAX_LANGUAGE_LENGTH
