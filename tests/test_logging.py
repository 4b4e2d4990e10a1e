import logging

from parsemybill.logging import ROOT_LOGGER, get_logger


def test_component_loggers_share_one_configured_parent():
    first = get_logger("storage-db")
    second = get_logger("parsemybill.web")
    root = logging.getLogger(ROOT_LOGGER)

    assert first.name == "parsemybill.storage-db"
    assert second.name == "parsemybill.web"
    assert first.handlers == [] and first.propagate
    assert len(root.handlers) >= 1
    assert root.propagate is False

    handler_count = len(root.handlers)
    get_logger("another-component")
    assert len(root.handlers) == handler_count
