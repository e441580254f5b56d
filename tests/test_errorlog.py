import threading

from errorlog import EXPORT_COLUMNS, CollectingSink, ErrorLog, Severity


def test_repeated_issue_collapses_into_summary():
    log = ErrorLog(max_detailed_rows=2)
    for row in range(1, 6):
        log.record(Severity.WARNING, row, "Quantity", "Bad number", "x", "G0_a.csv")

    entries = log.entries
    assert len(entries) == 3
    assert [e.is_summary for e in entries] == [False, False, True]
    assert entries[-1].description.endswith("(3 additional rows)")
    assert len(log.history) == 5
    assert log.warning_summary == {"Bad number": 5}


def test_summary_is_per_column_and_severity():
    log = ErrorLog(max_detailed_rows=1)
    log.warning(1, "A", "Oops")
    log.warning(2, "B", "Oops")
    log.error(3, "A", "Oops")
    assert len(log.entries) == 3
    assert not any(e.is_summary for e in log.entries)
    assert log.has_errors


def test_export_and_clear(tmp_path):
    log = ErrorLog()
    log.error(4, "Total", "Negative, really", "-1", "IND_hub.csv", "Customer: A, SKU: B")
    path = tmp_path / "errors.csv"
    log.export_csv(str(path))

    lines = path.read_text(encoding="utf-8").splitlines()
    assert lines[0] == ",".join(EXPORT_COLUMNS)
    assert '"Negative, really"' in lines[1]

    log.clear()
    assert log.entries == [] and log.history == []
    assert not log.has_errors


def test_concurrent_records_are_all_kept():
    log = ErrorLog(max_detailed_rows=10)

    def work():
        for i in range(100):
            log.info(i, "Col", "Seen")

    threads = [threading.Thread(target=work) for _ in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert len(log.history) == 400
    assert len(log.entries) == 11


def test_collecting_sink():
    sink = CollectingSink()
    sink.record(Severity.ERROR, 1, "A", "one")
    sink.record("Warning", 2, "B", "two")
    assert sink.messages() == ["one", "two"]
    assert sink.messages(Severity.WARNING) == ["two"]
