import logging

from kdnsaux.logutil import log_with_prefix


def test_each_line_is_prefixed(caplog):
    caplog.set_level(logging.INFO, logger="kdnsaux")
    log_with_prefix("docker", "first\nsecond")
    assert [r.getMessage() for r in caplog.records] == [
        "docker | first",
        "docker | second",
    ]


def test_one_record_per_line(caplog):
    caplog.set_level(logging.INFO, logger="kdnsaux")
    text = "a\nb\nc\n"
    log_with_prefix("p", text)
    assert len(caplog.records) == len(text.split("\n"))
    assert all(r.getMessage().startswith("p | ") for r in caplog.records)


def test_empty_text_gives_single_line(caplog):
    caplog.set_level(logging.INFO, logger="kdnsaux")
    log_with_prefix("x", "")
    assert [r.getMessage() for r in caplog.records] == ["x | "]