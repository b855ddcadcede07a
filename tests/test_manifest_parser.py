"""Tests for chat manifest extraction."""

import pytest

from shiptrack.models.shipment import IncompleteManifest, Manifest
from shiptrack.services.manifest_parser import is_manifest_command, parse_lookup, parse_manifest

FULL_MESSAGE = """!INFO
Receivers Name: Ada Obi
Receivers Address: 12 Marina Road, Lagos
Receivers Phone: +2348012345678
Recievers Country: Nigeria
Senders Name: John Smith
Senders Country: United Kingdom
"""


class TestTrigger:
    @pytest.mark.parametrize("text", ["!INFO\nx", "#info please", "  !Info"])
    def test_triggers(self, text) -> None:
        assert is_manifest_command(text)

    @pytest.mark.parametrize("text", ["hello", "INFO", "please !INFO"])
    def test_non_triggers(self, text) -> None:
        assert not is_manifest_command(text)


class TestParseManifest:
    def test_full_message(self) -> None:
        fields = parse_manifest(FULL_MESSAGE)

        assert fields == {
            "receiver_name": "Ada Obi",
            "receiver_address": "12 Marina Road, Lagos",
            "receiver_phone": "+2348012345678",
            "receiver_country": "Nigeria",
            "sender_name": "John Smith",
            "sender_country": "United Kingdom",
        }

    def test_alternate_labels(self) -> None:
        fields = parse_manifest("#INFO\nSender: Acme Ltd\nOrigin: Ghana\nDestination: Kenya\n")

        assert fields["sender_name"] == "Acme Ltd"
        assert fields["sender_country"] == "Ghana"
        assert fields["receiver_country"] == "Kenya"

    def test_labels_are_case_insensitive(self) -> None:
        assert parse_manifest("receiver name: ada")["receiver_name"] == "ada"

    def test_optional_email(self) -> None:
        assert parse_manifest("Receivers Email: ada@example.com")["receiver_email"] == "ada@example.com"

    def test_missing_fields_are_absent(self) -> None:
        fields = parse_manifest("!INFO\nReceivers Name: Ada")
        assert fields == {"receiver_name": "Ada"}


class TestManifestFromFields:
    def test_builds_manifest(self) -> None:
        manifest = Manifest.from_fields(parse_manifest(FULL_MESSAGE))

        assert manifest.duplicate_key == ("+2348012345678", "Ada Obi", "John Smith", "Nigeria")
        assert manifest.receiver_email is None

    def test_lists_missing_labels(self) -> None:
        with pytest.raises(IncompleteManifest) as exc_info:
            Manifest.from_fields({"receiver_name": "Ada", "sender_name": "John"})

        assert exc_info.value.missing == [
            "Receivers Address",
            "Receivers Phone",
            "Receivers Country",
            "Senders Country",
        ]


class TestParseLookup:
    @pytest.mark.parametrize(
        "text,expected",
        [
            ("!INFO AWB-K7QX3M9PA", "AWB-K7QX3M9PA"),
            ("#info awb-k7qx3m9pa", "AWB-K7QX3M9PA"),
            ("  !Info   AWB-K7QX3M9PA \n", "AWB-K7QX3M9PA"),
        ],
    )
    def test_status_queries(self, text, expected) -> None:
        assert parse_lookup(text) == expected

    @pytest.mark.parametrize(
        "text",
        [
            FULL_MESSAGE,
            "!INFO",
            "!INFO Receivers Name: Ada",
            "!INFO AWB-K7QX3M9PA please",
            "track AWB-K7QX3M9PA",
        ],
    )
    def test_manifests_and_other_text_are_not_lookups(self, text) -> None:
        assert parse_lookup(text) is None
