"""
Tests for the data models and their camelCase JSON shape.
"""

import re

import pytest

from envis.core.models.base import sort_key
from envis.core.models.environment import Environment, EnvironmentStatus, new_environment_id
from envis.core.models.host import HostEntry
from envis.core.models.metadata import CustomMetadata, JavaMetadata, parse_metadata
from envis.core.models.service import ServiceData, ServiceDataStatus, ServiceType


class TestEnvironment:
    """Environment records."""

    def test_id_format(self):
        assert re.fullmatch(r"[0-9a-f]{8}\d{10}", new_environment_id())

    def test_json_shape(self):
        env = Environment(name="dev", sort=1)
        data = env.to_json_dict()
        assert data["name"] == "dev"
        assert data["status"] == "inactive"
        assert "createdAt" in data and "updatedAt" in data
        assert "isDefault" not in data

    def test_reads_camel_case(self):
        env = Environment.model_validate({"id": "x", "name": "dev", "isDefault": True, "status": "active"})
        assert env.is_default is True
        assert env.status == EnvironmentStatus.ACTIVE
        assert env.is_active


class TestServiceData:
    """ServiceData records."""

    def test_type_alias(self):
        sd = ServiceData(type=ServiceType.NODEJS, version="v20.19.1")
        data = sd.to_json_dict()
        assert data["type"] == "nodejs"
        assert data["status"] == "inactive"
        assert ServiceData.model_validate(data).service_type == ServiceType.NODEJS

    def test_meta_helpers(self):
        sd = ServiceData(type="java", version="17", metadata={"JAVA_OPTS": " -Xmx1g ", "N": 3})
        assert sd.meta("JAVA_OPTS") == " -Xmx1g "
        assert sd.meta_str("JAVA_OPTS") == "-Xmx1g"
        assert sd.meta_str("N") == ""
        assert sd.meta("missing", "d") == "d"
        assert ServiceData(type="java", version="17").meta("x") is None

    def test_status_values(self):
        sd = ServiceData(type="custom", version="1", status="active")
        assert sd.status == ServiceDataStatus.ACTIVE
        assert sd.is_active


class TestServiceType:
    def test_parse(self):
        assert ServiceType.parse(" NodeJS ") == ServiceType.NODEJS
        with pytest.raises(ValueError):
            ServiceType.parse("cobol")

    def test_every_type_has_label(self):
        assert all(t.default_name for t in ServiceType)
        assert len(ServiceType) == 12


class TestSortKey:
    """Sorted records first, then creation order."""

    def test_order(self):
        a = Environment(name="a", sort=None, created_at="2024-01-01")
        b = Environment(name="b", sort=2, created_at="2024-01-03")
        c = Environment(name="c", sort=1, created_at="2024-01-04")
        d = Environment(name="d", sort=None, created_at="2023-12-31")
        assert [e.name for e in sorted([a, b, c, d], key=sort_key)] == ["c", "b", "d", "a"]


class TestHostEntry:
    """Hosts-file lines."""

    def test_to_line(self):
        assert HostEntry(ip="127.0.0.1", hostname="api.test").to_line() == "127.0.0.1 api.test"
        entry = HostEntry(ip="127.0.0.1", hostname="old.test", comment="legacy", enabled=False)
        assert entry.to_line() == "# 127.0.0.1 old.test # legacy"

    def test_from_line(self):
        entry = HostEntry.from_line("# 10.0.0.1   db.test  # staging")
        assert entry.ip == "10.0.0.1"
        assert entry.hostname == "db.test"
        assert entry.comment == "staging"
        assert entry.enabled is False
        assert entry.id == "10.0.0.1_db.test"

    def test_from_line_ipv6(self):
        assert HostEntry.from_line("::1 localhost").ip == "::1"

    @pytest.mark.parametrize("line", ["", "   ", "# just a comment", "999.1.1.1 bad.test", "nohost"])
    def test_non_entries(self, line):
        assert HostEntry.from_line(line) is None


class TestMetadata:
    """Typed views over the flat metadata bag."""

    def test_custom_aliases(self):
        meta = CustomMetadata.model_validate({"envVars": {"A": "1"}, "paths": ["/x"], "aliases": {"g": "git"}})
        assert meta.env_vars == {"A": "1"}
        assert meta.to_metadata() == {"paths": ["/x"], "envVars": {"A": "1"}, "aliases": {"g": "git"}}

    def test_unknown_keys_kept(self):
        meta = parse_metadata(ServiceType.JAVA, {"JAVA_HOME": "/jdk", "EXTRA": "y"})
        assert isinstance(meta, JavaMetadata)
        out = meta.to_metadata()
        assert out["JAVA_HOME"] == "/jdk"
        assert out["EXTRA"] == "y"
        assert out["MAVEN_REPO_URL"] == ""
