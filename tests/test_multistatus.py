"""
Unit tests for multistatus parsing.

Tests ElementTree parsing, propstat status filtering and the tolerant
pattern-based fallback.
"""

import pytest

from carddav_sync.api.multistatus import (
    parse_multistatus,
    parse_status,
    read_multistatus,
    same_href,
    scan_multistatus,
)
from carddav_sync.errors import ParseError
from tests.conftest import dav_response, multistatus

CARD = 'BEGIN:VCARD\r\nFN:Jane Doe\r\nEMAIL:jane@example.com\r\nEND:VCARD\r\n'


class TestParseMultistatus:
    """Tests for parse_multistatus()."""

    def test_etag_and_address_data(self):
        """Test that each response keeps its own tag and vCard."""
        body = multistatus(
            dav_response(
                '/c/1.vcf',
                '<d:getetag>"a1"</d:getetag>'
                '<card:address-data>BEGIN:VCARD&#13;\nFN:One\nEND:VCARD</card:address-data>',
            ),
            dav_response(
                '/c/2.vcf',
                '<d:getetag>"b2"</d:getetag>'
                '<card:address-data>BEGIN:VCARD\nFN:Two\nEND:VCARD</card:address-data>',
            ),
        )
        entries = parse_multistatus(body)
        assert [e.href for e in entries] == ['/c/1.vcf', '/c/2.vcf']
        assert [e.etag for e in entries] == ['"a1"', '"b2"']
        assert 'FN:Two' in entries[1].address_data

    def test_principal_and_home_set(self):
        """Test extraction of nested hrefs."""
        body = multistatus(
            dav_response(
                '/',
                '<d:current-user-principal><d:href>/p/me/</d:href>'
                '</d:current-user-principal>'
                '<card:addressbook-home-set><d:href>/h/me/</d:href>'
                '</card:addressbook-home-set>',
            )
        )
        entry = parse_multistatus(body)[0]
        assert entry.principal_href == '/p/me/'
        assert entry.home_set_href == '/h/me/'

    def test_resource_types(self):
        """Test collection and address-book detection."""
        body = multistatus(
            dav_response(
                '/h/me/contacts/',
                '<d:resourcetype><d:collection/><card:addressbook/></d:resourcetype>'
                '<d:displayname>Contacts</d:displayname>',
            ),
            dav_response('/h/me/contacts/1.vcf', '<d:resourcetype/>'),
        )
        book, member = parse_multistatus(body)
        assert book.is_collection
        assert book.is_address_book
        assert book.display_name == 'Contacts'
        assert not member.is_collection

    def test_failed_propstat_is_ignored(self):
        """Test that properties under a 404 propstat are not read."""
        body = multistatus(
            dav_response(
                '/p/',
                '<d:getetag>"x"</d:getetag>',
                status='HTTP/1.1 404 Not Found',
            )
        )
        assert parse_multistatus(body)[0].etag is None

    def test_malformed_xml_raises(self):
        """Test that broken XML is reported as ParseError."""
        with pytest.raises(ParseError):
            parse_multistatus('<d:multistatus xmlns:d="DAV:"><d:response>')


class TestScanMultistatus:
    """Tests for the pattern-based fallback."""

    def test_scan_recovers_fields(self):
        """Test recovery from a body with an undeclared prefix."""
        body = (
            '<multistatus><x:response><x:href>/c/1.vcf</x:href>'
            '<x:getetag>&quot;t1&quot;</x:getetag>'
            '<c:address-data>' + CARD + '</c:address-data>'
            '</x:response></multistatus>'
        )
        entries = scan_multistatus(body)
        assert len(entries) == 1
        assert entries[0].href == '/c/1.vcf'
        assert entries[0].etag == '"t1"'
        assert 'FN:Jane Doe' in entries[0].address_data

    def test_read_multistatus_falls_back(self):
        """Test that read_multistatus never raises on bad XML."""
        body = '<x:response><x:href>/a/</x:href><x:resourcetype><x:collection/>' \
               '</x:resourcetype></x:response>'
        entries = read_multistatus(body)
        assert entries[0].href == '/a/'
        assert entries[0].is_collection

    def test_read_multistatus_empty_body(self):
        """Test that an empty body yields no entries."""
        assert read_multistatus('') == []
        assert read_multistatus('   ') == []


class TestHelpers:
    """Tests for small helpers."""

    @pytest.mark.parametrize(
        'text,expected',
        [
            ('HTTP/1.1 200 OK', 200),
            ('HTTP/1.1 404 Not Found', 404),
            ('HTTP/2 207', 207),
            ('garbage', None),
            (None, None),
        ],
    )
    def test_parse_status(self, text, expected):
        """Test status-line parsing."""
        assert parse_status(text) == expected

    def test_same_href_ignores_host_and_trailing_slash(self):
        """Test href comparison by path."""
        assert same_href('https://h.example/a/b/', '/a/b')
        assert not same_href('/a/b/', '/a/c/')
