import pytest
import zigpy.types as t

from conftest import FakeDevice, FakeEndpoint
from error_handler import ConfigurationError, ProtocolFault
from exposes import access as ea
from modules.clusters import CLUSTER_IDS, attribute_type, cluster_label, is_integral, resolve_cluster_id
from modules.reporting import (
    ReportingConfig, Uint48Change, convert_reporting_config_time, get_endpoints_with_input_cluster,
    resolve_reporting, setup_attributes, setup_configure_for_reporting,
)
from modules.transport import AttributeRef, ReportingItem

TEMPERATURE = CLUSTER_IDS["temperature"]


class TestReportingTimes:
    @pytest.mark.parametrize("name, seconds", [
        ("MIN", 0), ("10_SECONDS", 10), ("1_MINUTE", 60), ("30_MINUTES", 1800), ("1_HOUR", 3600), ("MAX", 65000),
    ])
    def test_symbolic_names(self, name, seconds):
        assert convert_reporting_config_time(name) == seconds

    def test_integers_pass_through(self):
        assert convert_reporting_config_time(300) == 300

    def test_unknown_name_fails_fast(self):
        with pytest.raises(ConfigurationError):
            convert_reporting_config_time("2_HOURS")

    def test_negative_is_rejected(self):
        with pytest.raises(ConfigurationError):
            convert_reporting_config_time(-1)

    def test_resolve_uses_given_attribute(self):
        item = resolve_reporting(ReportingConfig(min="10_SECONDS", max="1_HOUR", change=100), "measured_value")
        assert item == ReportingItem("measured_value", 10, 3600, 100)

    def test_resolve_without_attribute_fails(self):
        with pytest.raises(ConfigurationError):
            resolve_reporting(ReportingConfig(min="MIN", max="MAX", change=1))

    def test_uint48_change_defaults_high_half(self):
        assert Uint48Change(low=10) == (10, 0)


class TestClusters:
    def test_names_resolve_to_ids(self):
        assert resolve_cluster_id("on_off") == 0x0006
        assert resolve_cluster_id(0x0402) == 0x0402

    def test_unknown_name_is_a_configuration_error(self):
        with pytest.raises(ConfigurationError):
            resolve_cluster_id("no_such_cluster")

    def test_label_falls_back_to_hex(self):
        assert cluster_label(0xFC00) == "0xFC00"
        assert cluster_label(0x0006) == "on_off"

    def test_attribute_type_from_cluster_definition(self):
        assert attribute_type("temperature", "measured_value") is t.int16s
        assert attribute_type("carbon_dioxide_concentration", 0x0000) is t.Single
        assert attribute_type(0xFC00, "whatever") is None
        assert attribute_type("temperature", 0x7777) is None

    def test_attribute_type_from_reference_tag(self):
        assert attribute_type(0xFC00, AttributeRef(id=0x0001, type=0x21)) is t.uint16_t
        assert attribute_type(0xFC00, AttributeRef(id=0x0001, type=0x39)) is t.Single

    def test_is_integral(self):
        assert is_integral(t.uint16_t)
        assert not is_integral(t.Single)
        assert not is_integral(None)


class TestSetupAttributes:
    async def test_binds_configures_then_reads_every_matching_endpoint(self):
        ep1 = FakeEndpoint(1, input_clusters=[TEMPERATURE])
        ep2 = FakeEndpoint(2, input_clusters=[0x0006])
        device = FakeDevice([ep1, ep2])
        config = ReportingConfig(attribute="measured_value", min="10_SECONDS", max="1_HOUR", change=100)

        await setup_attributes(device, None, "temperature", [config])

        assert [c[0] for c in ep1.calls] == ["bind", "configure_reporting", "read"]
        assert ep1.calls_of("configure_reporting") == [
            (TEMPERATURE, [ReportingItem("measured_value", 10, 3600, 100)]),
        ]
        assert ep1.calls_of("read") == [(TEMPERATURE, ["measured_value"])]
        assert ep2.calls == []

    async def test_attribute_ref_is_read_by_id(self):
        endpoint = FakeEndpoint(1, input_clusters=[TEMPERATURE])
        ref = AttributeRef(id=0x4000, type=0x21)
        await setup_attributes(endpoint, None, TEMPERATURE,
                               [ReportingConfig(attribute=ref, min="MIN", max="MAX", change=1)])
        assert endpoint.calls_of("read") == [(TEMPERATURE, [0x4000])]

    async def test_missing_cluster_is_a_configuration_error(self):
        device = FakeDevice([FakeEndpoint(1, input_clusters=[0x0006])])
        with pytest.raises(ConfigurationError):
            await setup_attributes(device, None, "temperature",
                                   [ReportingConfig(attribute="measured_value", min="MIN", max="MAX", change=1)])

    async def test_reporting_failure_propagates(self):
        endpoint = FakeEndpoint(1, input_clusters=[TEMPERATURE])
        endpoint.failures["configure_reporting"] = ProtocolFault("boom")
        with pytest.raises(ProtocolFault):
            await setup_attributes(endpoint, None, TEMPERATURE,
                                   [ReportingConfig(attribute="measured_value", min="MIN", max="MAX", change=1)])

    async def test_read_failure_is_only_logged(self):
        endpoint = FakeEndpoint(1, input_clusters=[TEMPERATURE])
        endpoint.failures["read"] = ProtocolFault("no answer")
        await setup_attributes(endpoint, None, TEMPERATURE,
                               [ReportingConfig(attribute="measured_value", min="MIN", max="MAX", change=1)])
        assert len(endpoint.calls_of("configure_reporting")) == 1

    async def test_read_only_skips_bind_and_reporting(self):
        endpoint = FakeEndpoint(1, input_clusters=[TEMPERATURE])
        await setup_attributes(endpoint, None, TEMPERATURE, [ReportingItem("measured_value", 0, 0, 0)],
                               configure_reporting=False)
        assert [c[0] for c in endpoint.calls] == ["read"]


class TestSetupConfigureForReporting:
    def test_nothing_to_do_without_reporting_or_get(self):
        assert setup_configure_for_reporting("temperature", "measured_value", None, ea.STATE) is None

    async def test_readable_without_reporting_only_reads(self):
        configure = setup_configure_for_reporting("temperature", "measured_value", None, ea.STATE_GET)
        endpoint = FakeEndpoint(1, input_clusters=[TEMPERATURE])
        await configure(FakeDevice([endpoint]), None)
        assert [c[0] for c in endpoint.calls] == ["read"]

    async def test_endpoint_names_filter_endpoints(self):
        reporting = ReportingConfig(min="MIN", max="MAX", change=1)
        configure = setup_configure_for_reporting("temperature", "measured_value", reporting, ea.STATE, ["2"])
        ep1 = FakeEndpoint(1, input_clusters=[TEMPERATURE])
        ep2 = FakeEndpoint(2, input_clusters=[TEMPERATURE])
        await configure(FakeDevice([ep1, ep2]), None)
        assert ep1.calls == []
        assert [c[0] for c in ep2.calls] == ["bind", "configure_reporting"]

    def test_unknown_symbolic_time_fails_at_build(self):
        with pytest.raises(ConfigurationError):
            setup_configure_for_reporting("temperature", "measured_value",
                                          ReportingConfig(min="SOMETIMES", max="MAX", change=1), ea.STATE)


def test_get_endpoints_with_input_cluster():
    ep1 = FakeEndpoint(1, input_clusters=[TEMPERATURE])
    ep2 = FakeEndpoint(2, input_clusters=[TEMPERATURE, 0x0006])
    assert get_endpoints_with_input_cluster(FakeDevice([ep1, ep2]), 0x0006) == [ep2]
