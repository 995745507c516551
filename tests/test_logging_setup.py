import io
import logging

import logging_setup


def _debug_logger(name: str = "risk_monitor.tests") -> tuple[logging.Logger, io.StringIO]:
    stream = io.StringIO()
    logging_setup.configure_logging(debug=2, stream_target=stream)
    logger = logging.getLogger(name)
    logger.setLevel(logging.DEBUG)
    return logger, stream


def test_binance_and_bybit_credentials_are_redacted() -> None:
    logger, stream = _debug_logger()

    logger.debug(
        "Request headers: %s",
        {
            "X-MBX-APIKEY": "vmPUZE6mv9SD5VNHk4HlWFsOr6aKE2zvsw0MuIgwCIPy6utIco14y7Ju91duEh8A",
            "X-BAPI-API-KEY": "bybit-key-value",
            "X-BAPI-SIGN": "0f1e2d3c4b5a",
        },
    )
    logger.debug("credentials %s", {"api_key": "plain-key", "api_secret": "plain-secret"})

    output = stream.getvalue()

    for leaked in (
        "vmPUZE6mv9SD5VNHk4HlWFsOr6aKE2zvsw0MuIgwCIPy6utIco14y7Ju91duEh8A",
        "bybit-key-value",
        "0f1e2d3c4b5a",
        "plain-key",
        "plain-secret",
    ):
        assert leaked not in output
    assert output.count(logging_setup.REDACTED) >= 5


def test_signed_query_strings_are_redacted() -> None:
    logger, stream = _debug_logger()

    logger.debug(
        "GET https://fapi.binance.com/fapi/v2/account?timestamp=1700000000000&recvWindow=60000&signature=%s",
        "abcdef1234567890",
    )

    output = stream.getvalue()

    assert "abcdef1234567890" not in output
    assert "timestamp=1700000000000&recvWindow=60000&signature=***REDACTED***" in output


def test_plain_messages_are_untouched() -> None:
    logger, stream = _debug_logger()

    message = "[binance/main] Snapshot updated with 3 positions"
    logger.info(message)

    assert message in stream.getvalue()
    assert logging_setup.redact(message) == message


def test_redaction_applies_to_handlers_installed_elsewhere() -> None:
    stream = io.StringIO()
    logging_setup.configure_logging(debug=2, stream_target=io.StringIO())

    handler = logging.StreamHandler(stream)
    handler.setFormatter(logging.Formatter("%(message)s"))
    external_logger = logging.getLogger("external.http")
    external_logger.handlers = [handler]
    external_logger.propagate = False
    external_logger.setLevel(logging.DEBUG)

    external_logger.debug("payload %s", {"X-BAPI-SIGN": "leaky-sign", "secret": "should-hide"})

    output = stream.getvalue()

    assert "leaky-sign" not in output
    assert "should-hide" not in output
    assert logging_setup.REDACTED in output


def test_debug_levels_map_to_logging_levels() -> None:
    assert logging_setup.debug_to_logging_level(0) == logging.WARNING
    assert logging_setup.debug_to_logging_level(1) == logging.INFO
    assert logging_setup.debug_to_logging_level(2) == logging.DEBUG


def test_reconfiguring_replaces_the_previous_handler() -> None:
    logging_setup.configure_logging(debug=1, stream_target=io.StringIO())
    logging_setup.configure_logging(debug=1, stream_target=io.StringIO())

    marked = [
        handler
        for handler in logging.getLogger().handlers
        if getattr(handler, "_risk_monitor_handler", False)
    ]
    assert len(marked) == 1
