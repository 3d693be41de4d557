from canvasproxy.workflows.doctor import build_doctor_report, format_doctor_report


def _check(report, name):
    return next(check for check in report["checks"] if check["name"] == name)


def test_doctor_reports_ok_for_memory_buffer():
    report = build_doctor_report({"CANVASPROXY_TEMP": "memory", "CANVASPROXY_TIMEOUT": "5"})
    assert report["ok"]
    assert _check(report, "requests")["status"] == "ok"
    assert _check(report, "CANVASPROXY_TEMP")["value"] == "memory"
    assert _check(report, "CANVASPROXY_TIMEOUT")["level"] == "info"


def test_doctor_flags_unwritable_temp_and_missing_ca(tmp_path):
    env = {
        "CANVASPROXY_TEMP": str(tmp_path / "missing" / "deeper"),
        "CANVASPROXY_SSL_VERIFY": str(tmp_path / "ca.pem"),
    }
    report = build_doctor_report(env)
    assert not report["ok"]
    assert _check(report, "CANVASPROXY_TEMP")["status"] == "missing"
    assert _check(report, "CANVASPROXY_SSL_VERIFY")["status"] == "missing"
    text = format_doctor_report(report)
    assert "remedy:" in text


def test_doctor_accepts_writable_directory(tmp_path):
    report = build_doctor_report({"CANVASPROXY_TEMP": str(tmp_path)})
    assert _check(report, "CANVASPROXY_TEMP")["status"] == "ok"


def test_doctor_lists_port_override_and_formats_rows():
    report = build_doctor_report({"CANVASPROXY_TEMP": "memory", "CANVASPROXY_ALLOWED_PORTS": "443,8443"})
    check = _check(report, "CANVASPROXY_ALLOWED_PORTS")
    assert check["level"] == "info"
    assert check["value"] == "443,8443"
    text = format_doctor_report(report)
    assert text.startswith("canvasproxy doctor (ok)")
    assert "[443,8443]" in text
    assert "remedy:" not in text
