from kdnsaux.sidecar.options import DNSProbeOption, Options, new_options


def test_new_options_defaults():
    opts = new_options()
    assert opts.dnsmasq_addr == "127.0.0.1"
    assert opts.dnsmasq_port == 53
    assert opts.dnsmasq_poll_interval_ms == 5000
    assert opts.prometheus_addr == "0.0.0.0"
    assert opts.prometheus_port == 10054
    assert opts.prometheus_path == "/metrics"
    assert opts.prometheus_namespace == "kubedns"
    assert opts.probes == []


def test_probe_lists_are_independent():
    first = new_options()
    second = new_options()
    first.probes.append(
        DNSProbeOption(label="ok", server="127.0.0.1:53", name="test.local.",
                       interval=0.001, type=255)
    )
    assert len(first.probes) == 1
    assert second.probes == []


def test_options_override():
    opts = Options(prometheus_namespace="test")
    assert opts.prometheus_namespace == "test"
    assert opts.dnsmasq_port == new_options().dnsmasq_port


def test_probe_option_fields():
    probe = DNSProbeOption("kubedns", "127.0.0.1:10053", "kubernetes.default.svc.cluster.local.", 5.0, 1)
    assert probe.label == "kubedns"
    assert probe.server == "127.0.0.1:10053"
    assert probe.interval == 5.0
    assert probe.type == 1