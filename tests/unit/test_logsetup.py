import structlog

from pricewatch.utils.logsetup import configure_logging

def test_configure_logging_picks_renderer():
    try:
        configure_logging("DEBUG", json=True)
        assert isinstance(structlog.get_config()["processors"][-1], structlog.processors.JSONRenderer)
        configure_logging("nonsense")
        assert isinstance(structlog.get_config()["processors"][-1], structlog.dev.ConsoleRenderer)
    finally:
        structlog.reset_defaults()

def test_events_carry_context():
    with structlog.testing.capture_logs() as logs:
        structlog.get_logger("resolver").warning("provider_retry", provider="coingecko", attempt=1)
    assert logs == [{"event": "provider_retry", "log_level": "warning", "provider": "coingecko", "attempt": 1}]
