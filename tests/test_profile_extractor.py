"""
Unit tests for company metadata extraction and company profile resolution.
"""

import json
from unittest.mock import patch

import pytest

from src.company_profiles import get_company_profile, resolve_company_id
from src.extraction.profile_extractor import extract_company_metadata

from tests.fakes import COMPANY_URL

ABOUT_HTML = """
<html><head>
<meta property="og:title" content="Acme Robotics | LinkedIn">
<meta name="description" content="Acme builds warehouse robots.">
</head><body>
<h1>Acme Robotics</h1>
<p>12,345 followers</p>
<dl>
  <dt>Website</dt><dd>https://acme.example</dd>
  <dt>Industry</dt><dd>Automation Machinery Manufacturing</dd>
  <dt>Company size</dt><dd>201-500 employees</dd>
  <dt>Headquarters</dt><dd>Pittsburgh, PA</dd>
  <dt>Founded</dt><dd>2011</dd>
  <dt>Specialties</dt><dd>robotics, warehouse automation, and machine vision</dd>
  <dt>Type</dt><dd>Privately Held</dd>
</dl>
</body></html>
"""


class TestMetadataExtraction:
    def test_about_section(self):
        metadata = extract_company_metadata(ABOUT_HTML, COMPANY_URL + "about/")

        assert metadata.company_id == "acme"
        assert metadata.name == "Acme Robotics"
        assert metadata.description == "Acme builds warehouse robots."
        assert metadata.website == "https://acme.example"
        assert metadata.industry == "Automation Machinery Manufacturing"
        assert metadata.company_size == "201-500 employees"
        assert metadata.headquarters == "Pittsburgh, PA"
        assert metadata.founded == 2011
        assert metadata.specialties == ["robotics", "warehouse automation", "machine vision"]
        assert metadata.followers == "12,345"
        assert metadata.attributes == {"type": "Privately Held"}

    def test_json_ld_takes_precedence(self):
        org = {
            "@context": "https://schema.org",
            "@graph": [
                {"@type": "WebPage", "name": "ignored"},
                {
                    "@type": "Organization",
                    "name": "Acme Corp",
                    "url": "https://acme.example",
                    "address": {"addressLocality": "Austin", "addressRegion": "TX"},
                    "numberOfEmployees": {"value": 250},
                    "foundingDate": "1999-04-01",
                    "logo": {"contentUrl": "https://media.licdn.com/dms/image/x/company-logo_200_200/0/1"},
                },
            ],
        }
        html = (
            f'<html><head><script type="application/ld+json">{json.dumps(org)}</script></head>'
            "<body><h1>Other name</h1><dl><dt>Founded</dt><dd>2005</dd></dl></body></html>"
        )
        metadata = extract_company_metadata(html, COMPANY_URL)

        assert metadata.name == "Acme Corp"
        assert metadata.headquarters == "Austin, TX"
        assert metadata.company_size == "250"
        assert metadata.founded == 1999
        assert metadata.logo_url.endswith("company-logo_200_200/0/1")

    def test_description_falls_back_to_main_text(self):
        html = "<html><body><h1>Acme</h1><article><p>Long form text.</p></article></body></html>"
        with patch("src.extraction.profile_extractor.trafilatura.extract", return_value="Long form text.") as extract:
            metadata = extract_company_metadata(html, COMPANY_URL)
        extract.assert_called_once()
        assert metadata.description == "Long form text."

    def test_empty_markup(self):
        metadata = extract_company_metadata("", COMPANY_URL, company_id="acme")
        assert metadata.name is None
        assert metadata.specialties == []


class TestCompanyProfiles:
    @pytest.mark.parametrize("url,expected", [
        ("https://www.linkedin.com/company/Acme/", "acme"),
        ("https://www.linkedin.com/company/acme/about/?trk=x", "acme"),
        ("https://www.linkedin.com/in/someone/", None),
    ])
    def test_resolve_company_id(self, url, expected):
        assert resolve_company_id(url) == expected

    def test_profile_defaults(self):
        profile = get_company_profile("/company/acme", "https://www.linkedin.com")
        assert profile.url == "https://www.linkedin.com/company/acme"
        assert profile.about_url == "https://www.linkedin.com/company/acme/about/"
        assert profile.alternate_urls == ["https://www.linkedin.com/company/acme/"]

    def test_unresolvable_profile(self):
        with pytest.raises(ValueError):
            get_company_profile("https://www.linkedin.com/feed/", "https://www.linkedin.com")
