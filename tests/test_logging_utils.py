import pytest

from reading_tracker.cli import logging_utils
from reading_tracker.session.controller import ControllerPhase
from reading_tracker.transcription.capture_graph import CaptureState


@pytest.fixture(autouse=True)
def quiet_logger():
    logging_utils.set_verbose_logging(False)
    yield
    logging_utils.set_verbose_logging(False)


def test_log_line_has_time_and_colored_label(capsys):
    logging_utils.LOGGER.log(logging_utils.SESSION_LOG_LABEL, "Reading 'Emma' from page 12")

    out = capsys.readouterr().out
    assert out.startswith("[")
    assert out[9:11] == "] "
    assert "\033[38;5;208m[SESSION]\033[0m Reading 'Emma' from page 12\n" in out


def test_unknown_label_is_left_uncolored(capsys):
    logging_utils.LOGGER.log("BOOKMARK", "page 7")

    out = capsys.readouterr().out
    assert "[BOOKMARK] page 7" in out
    assert "\033[" not in out


def test_verbose_lines_follow_the_verbose_switch(capsys):
    logging_utils.LOGGER.verbose(logging_utils.CLOCK_LOG_LABEL, "tick 00:01")
    assert capsys.readouterr().out == ""

    logging_utils.set_verbose_logging(True)
    logging_utils.LOGGER.verbose(logging_utils.CLOCK_LOG_LABEL, "tick 00:02")

    assert "tick 00:02" in capsys.readouterr().out
    assert logging_utils.LOGGER.verbose_logging is True


def test_errors_go_to_stderr_with_traceback(capsys):
    try:
        raise OSError("No space left on device")
    except OSError as exc:
        logging_utils.LOGGER.log(
            logging_utils.ERROR_LOG_LABEL, "Could not save session", error=True, exc_info=exc
        )

    captured = capsys.readouterr()
    assert captured.out == ""
    assert "Could not save session" in captured.err
    assert "Traceback" in captured.err
    assert "OSError: No space left on device" in captured.err


def test_log_rejects_blank_source_and_unknown_options():
    with pytest.raises(ValueError):
        logging_utils.LOGGER.log("  ", "orphan")
    with pytest.raises(TypeError):
        logging_utils.LOGGER.log(logging_utils.STORE_LOG_LABEL, "saved", flush=True)  # type: ignore[call-arg]


@pytest.mark.parametrize(
    ("direction", "label"),
    [("", "WS"), ("←", "WS←"), ("→", "WS→"), ("<", "WS")],
)
def test_ws_log_label(direction, label):
    assert logging_utils.ws_log_label(direction) == label


def test_state_transitions_name_the_machine(capsys):
    logging_utils.set_verbose_logging(True)

    logging_utils.log_state_transition(CaptureState.IDLE, CaptureState.STARTING, "user start")
    logging_utils.log_state_transition(None, ControllerPhase.BOOK_SELECTED, "picked 'Emma'")

    lines = capsys.readouterr().out.splitlines()
    assert lines[0].endswith("CaptureState IDLE -> STARTING (user start)")
    assert lines[1].endswith("ControllerPhase entered BOOK_SELECTED (picked 'Emma')")


def test_repeated_state_is_not_logged(capsys):
    logging_utils.set_verbose_logging(True)

    logging_utils.log_state_transition(ControllerPhase.PAUSED, ControllerPhase.PAUSED, "noop")

    assert capsys.readouterr().out == ""
