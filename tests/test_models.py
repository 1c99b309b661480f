"""Tests for package references and dependencies."""

import pytest

from fhirpkg.versioning.models import (
    PackageDependency,
    PackageReference,
    dependencies_to_dict,
    dict_to_dependencies,
    references_to_dict,
    split_dependency_token,
)


class TestPackageReference:
    """Identity and parsing of concrete references."""

    def test_equality_ignores_name_case(self):
        assert PackageReference("HL7.Fhir.R4.Core", "4.0.1") == PackageReference("hl7.fhir.r4.core", "4.0.1")
        assert hash(PackageReference("A", "1.0.0")) == hash(PackageReference("a", "1.0.0"))

    def test_version_must_match_exactly(self):
        assert PackageReference("a", "1.0.0") != PackageReference("a", "1.0")

    def test_not_found(self):
        """Missing name or version makes a reference not-found."""
        assert PackageReference.none("x").not_found
        assert PackageReference(None, "1.0.0").not_found
        assert str(PackageReference.none("x")) == "x@None (NOT FOUND)"

    def test_immutable(self):
        reference = PackageReference("a", "1.0.0")
        with pytest.raises(AttributeError):
            reference.version = "2.0.0"

    @pytest.mark.parametrize("text, name, version, scope", [
        ("hl7.fhir.us.core@3.2.0", "hl7.fhir.us.core", "3.2.0", None),
        ("jquery", "jquery", None, None),
        ("@types/node@18.0.0", "node", "18.0.0", "types"),
    ])
    def test_parse(self, text, name, version, scope):
        reference = PackageReference.parse(text)
        assert (reference.name, reference.version, reference.scope) == (name, version, scope)

    def test_npm_name_encodes_scope(self):
        assert PackageReference("node", "1.0.0", scope="types").npm_name == "@types%2Fnode"
        assert PackageReference("jquery", "3.5.1").npm_name == "jquery"


class TestPackageDependency:
    """Range requirements as declared in manifests."""

    @pytest.mark.parametrize("rng", [None, "", " ", "latest", "Latest"])
    def test_latest(self, rng):
        assert PackageDependency("a", rng).is_latest

    def test_str(self):
        assert str(PackageDependency("a", "1.x")) == "a 1.x"
        assert str(PackageDependency("a")) == "a (latest)"

    def test_equality_is_name_and_range(self):
        assert PackageDependency("a", "1.x") == PackageDependency("a", "1.x")
        assert PackageDependency("a", "1.x") != PackageDependency("a", "2.x")

    def test_equality_ignores_name_case(self):
        assert PackageDependency("A", "1.x") == PackageDependency("a", "1.x")
        assert len({PackageDependency("A", "1.x"), PackageDependency("a", "1.x")}) == 1


class TestConversions:
    """Dictionary shapes used by the lock file."""

    def test_references_round_trip_drops_not_found(self):
        data = references_to_dict([PackageReference("a", "1.0.0"), PackageReference.none("b")])
        assert data == {"a": "1.0.0"}

    def test_dependencies_later_duplicate_wins(self):
        data = dependencies_to_dict([PackageDependency("a", "1.x"), PackageDependency("a", "2.x")])
        assert data == {"a": "2.x"}
        assert dict_to_dependencies(data) == [PackageDependency("a", "2.x")]

    @pytest.mark.parametrize("token, expected", [
        ("hl7.fhir.r4.core", ("hl7.fhir.r4.core", None)),
        ("hl7.fhir.r4.core@4.0.x", ("hl7.fhir.r4.core", "4.0.x")),
        ("@scope/pkg@^1.0.0", ("@scope/pkg", "^1.0.0")),
        ("@scope/pkg", ("@scope/pkg", None)),
    ])
    def test_split_dependency_token(self, token, expected):
        assert split_dependency_token(token) == expected
