import asyncio
import json
import sys

import pytest
from sqlalchemy import create_engine, func, select

from engine.scan_session import ScanSession
from engine.settings import ScannerSettings, SettingsStore
from helpers import RecordingReporter, flow_payload
from storage.models import flows
from tools.scanner_process import COMMAND_NOT_FOUND, SubprocessScanRunner


def scanner_settings(script, **options):
    return ScannerSettings(command=[sys.executable, "-c", script], **options)


def runner_for(settings, script, **options):
    settings = settings.model_copy(update={"scanner": scanner_settings(script, **options)})
    return SubprocessScanRunner(settings)


def test_scanner_output_is_routed(sqlite_settings):
    lines = [
        "Looking for flows",
        json.dumps({"status": {"text": ["Fetching flows"], "percentage": 40}}),
        json.dumps({"flow": {"id": "f1", "title": "Wifi toggle"}}),
        "{not json",
    ]
    script = "import sys\n" + "".join(f"print({line!r})\n" for line in lines) + "sys.stderr.write('slow mirror\\n')\n"
    runner = runner_for(sqlite_settings, script)
    reporter = RecordingReporter()

    code = asyncio.run(runner.run(reporter))

    assert code == 0
    assert "Looking for flows\n" in reporter.logs
    assert "{not json\n" in reporter.logs
    assert "slow mirror\n" in reporter.logs
    assert reporter.statuses == [(["Fetching flows"], 40)]
    assert runner.flows == [{"id": "f1", "title": "Wifi toggle"}]


def test_scanner_receives_core_count(sqlite_settings):
    script = "import sys; print(' '.join(sys.argv[1:]))"
    runner = runner_for(sqlite_settings.model_copy(update={"cores": 3}), script)
    reporter = RecordingReporter()
    assert asyncio.run(runner.run(reporter)) == 0
    assert reporter.logs == "--cores 3\n"


def test_cancel_terminates_scanner(sqlite_settings):
    script = "import time; print('ready', flush=True); time.sleep(30)"
    runner = runner_for(sqlite_settings, script)

    class CancelOnFirstLog(RecordingReporter):
        async def append_log(self, text):
            await super().append_log(text)
            runner.cancel()

    code = asyncio.run(asyncio.wait_for(runner.run(CancelOnFirstLog()), timeout=10))
    assert code != 0


def test_missing_scanner_command(sqlite_settings):
    settings = sqlite_settings.model_copy(update={"scanner": ScannerSettings(command=["automate-scanner-missing-binary"])})
    runner = SubprocessScanRunner(settings)
    reporter = RecordingReporter()
    assert asyncio.run(runner.run(reporter)) == COMMAND_NOT_FOUND
    assert "not found" in reporter.logs


def script_printing(lines):
    return "".join(f"print({line!r}, flush=True)\n" for line in lines)


def test_flow_line_larger_than_default_stream_limit(sqlite_settings):
    flow = dict(flow_payload(), b64Data="A" * 200000)
    runner = runner_for(sqlite_settings, script_printing([json.dumps({"flow": flow})]))
    reporter = RecordingReporter()

    code = asyncio.run(asyncio.wait_for(runner.run(reporter), timeout=30))

    assert code == 0
    assert len(runner.flows) == 1
    assert len(runner.flows[0]["b64Data"]) == 200000
    assert reporter.logs == ""


def test_overlong_line_is_dropped_and_scan_goes_on(sqlite_settings):
    lines = ["x" * 5000, json.dumps({"flow": {"id": "f1"}}), "done"]
    runner = runner_for(sqlite_settings, script_printing(lines), max_line_bytes=1024)
    reporter = RecordingReporter()

    code = asyncio.run(asyncio.wait_for(runner.run(reporter), timeout=30))

    assert code == 0
    assert "Scanner output line dropped: longer than 1024 bytes\n" in reporter.logs
    assert "xxx" not in reporter.logs
    assert reporter.logs.endswith("done\n")
    assert runner.flows == [{"id": "f1"}]


def test_malformed_status_updates_are_logged_not_applied(sqlite_settings):
    lines = [
        json.dumps({"status": {"text": ["Fetching flows"], "percentage": "n/a"}}),
        json.dumps({"status": {"text": "abc", "percentage": 10}}),
        json.dumps({"status": "halfway"}),
        json.dumps({"status": {"text": ["Fetching flows"], "percentage": "55"}}),
    ]
    runner = runner_for(sqlite_settings, script_printing(lines))
    reporter = RecordingReporter()

    code = asyncio.run(asyncio.wait_for(runner.run(reporter), timeout=30))

    assert code == 0
    assert reporter.statuses == [(["Fetching flows"], 55.0)]
    assert reporter.logs.count("Ignored malformed status update") == 3


def test_reader_failure_terminates_scanner(sqlite_settings):
    script = script_printing([json.dumps({"status": {"text": ["Fetching flows"], "percentage": 1}})])
    runner = runner_for(sqlite_settings, script + "import time\ntime.sleep(30)\n")

    class FailingReporter(RecordingReporter):
        async def update_status(self, lines, percentage):
            raise RuntimeError("observer bookkeeping failed")

    with pytest.raises(RuntimeError, match="observer bookkeeping failed"):
        asyncio.run(asyncio.wait_for(runner.run(FailingReporter()), timeout=20))
    assert runner.process.returncode is not None


def test_session_survives_bad_scanner_output(tmp_path, sqlite_settings):
    lines = [
        json.dumps({"status": {"text": ["Fetching flows"], "percentage": "n/a"}}),
        "y" * 10000,
        json.dumps({"status": {"text": ["Fetching flows"], "percentage": 80}}),
        json.dumps({"flow": flow_payload("flow-1")}),
    ]
    store = SettingsStore(str(tmp_path / "scanner.yml"))
    store.save(sqlite_settings.model_copy(update={
        "scanner": scanner_settings(script_printing(lines), max_line_bytes=4096),
    }))
    session = ScanSession(store, runner_factory=SubprocessScanRunner)

    async def scenario():
        await session.start()
        await asyncio.wait_for(session.wait(), timeout=30)

    asyncio.run(scenario())
    assert session.state.exit_code == 0
    assert session.state.status_text == ["Fetching flows", "Saving results"]
    assert "Ignored malformed status update" in session.state.logs
    assert "Scanner output line dropped" in session.state.logs
    engine = create_engine(f"sqlite:///{sqlite_settings.mysql.db_name}")
    with engine.connect() as conn:
        assert conn.execute(select(func.count()).select_from(flows)).scalar() == 1
    engine.dispose()
