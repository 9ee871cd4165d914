"""Tests for IaC snippet rendering and model validation."""

import json

import pytest

from az_marketplace.errors import ValidationError
from az_marketplace.iac import AVAILABLE_FORMATS, generate_all_formats, render
from az_marketplace.models import (
    Offer,
    Publisher,
    Sku,
    Subscription,
    VMImageReference,
    validate_image_reference,
    validate_many,
    validate_offer,
    validate_publisher,
    validate_sku,
    validate_subscription,
)

REF = VMImageReference(
    publisher="Canonical",
    offer="0001-com-ubuntu-server-jammy",
    sku="22_04-lts-gen2",
    version="latest",
)


class TestTemplates:
    def test_arm(self):
        expected = (
            "{\n"
            '  "imageReference": {\n'
            '    "publisher": "Canonical",\n'
            '    "offer": "0001-com-ubuntu-server-jammy",\n'
            '    "sku": "22_04-lts-gen2",\n'
            '    "version": "latest"\n'
            "  }\n"
            "}"
        )
        assert generate_all_formats(REF).arm == expected

    def test_arm_is_valid_json(self):
        parsed = json.loads(render(REF, "arm"))
        assert list(parsed["imageReference"]) == ["publisher", "offer", "sku", "version"]

    def test_terraform(self):
        expected = (
            "source_image_reference {\n"
            '  publisher = "Canonical"\n'
            '  offer     = "0001-com-ubuntu-server-jammy"\n'
            '  sku       = "22_04-lts-gen2"\n'
            '  version   = "latest"\n'
            "}"
        )
        assert render(REF, "terraform") == expected

    def test_bicep(self):
        expected = (
            "imageReference: {\n"
            "  publisher: 'Canonical'\n"
            "  offer: '0001-com-ubuntu-server-jammy'\n"
            "  sku: '22_04-lts-gen2'\n"
            "  version: 'latest'\n"
            "}"
        )
        assert render(REF, "bicep") == expected

    def test_ansible_has_no_trailing_newline(self):
        expected = (
            "image:\n"
            '  publisher: "Canonical"\n'
            '  offer: "0001-com-ubuntu-server-jammy"\n'
            '  sku: "22_04-lts-gen2"\n'
            '  version: "latest"'
        )
        assert render(REF, "ansible") == expected

    def test_output_is_stable(self):
        assert generate_all_formats(REF) == generate_all_formats(REF)

    def test_available_formats(self):
        assert AVAILABLE_FORMATS == {
            "arm": "ARM Template",
            "terraform": "Terraform",
            "bicep": "Bicep",
            "ansible": "Ansible",
        }

    def test_blank_field_rejected(self):
        with pytest.raises(ValidationError) as exc_info:
            generate_all_formats(VMImageReference("Canonical", "offer", "  ", "latest"))
        assert exc_info.value.field == "sku"

    def test_unknown_format(self):
        with pytest.raises(ValueError, match="Unknown format"):
            render(REF, "pulumi")


class TestModelValidation:
    def test_valid_models_pass(self):
        validate_subscription(Subscription("id", "Dev", "Enabled", "tid"))
        validate_publisher(Publisher("Canonical", "Canonical", "eastus"))
        validate_offer(Offer("ubuntu", "ubuntu", "Canonical", "eastus"))
        validate_sku(Sku("server", "server", "Canonical", "ubuntu", "eastus", ("1.0",)))
        validate_image_reference(REF)

    def test_missing_field_named(self):
        with pytest.raises(ValidationError) as exc_info:
            validate_offer(Offer("ubuntu", "ubuntu", "", "eastus"))
        assert exc_info.value.field == "publisher"

    def test_non_string_versions(self):
        with pytest.raises(ValidationError):
            validate_sku(Sku("s", "s", "p", "o", "eastus", (1,)))  # type: ignore[arg-type]

    def test_validate_many_reports_index(self):
        pubs = [Publisher("a", "a", "eastus"), Publisher("b", "", "eastus")]
        with pytest.raises(ValidationError) as exc_info:
            validate_many(pubs, validate_publisher, "publisher")
        assert "index 1" in exc_info.value.message
        assert exc_info.value.field == "publishers[1].display_name"

    def test_subscription_round_trip_via_api_shape(self):
        sub = Subscription("id", "Dev", "Enabled", "tid")
        assert Subscription.from_api(sub.to_api()) == sub
